"""Ways to resume a chunked generation job after a checkpoint.

The generator only needs a callable ``schedule(job_id)``. Two transports:

- ``HttpContinuation`` posts to the web app's continue endpoint, the way a
  serverless deployment re-invokes itself. Failures are logged, never
  raised: the checkpoint is already persisted and the job can be resumed
  by hand.
- ``InlineContinuation`` resumes in the current process, draining a queue
  so repeated checkpoints do not recurse.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable

import duckdb
import httpx

from . import config

log = logging.getLogger(__name__)

Continuation = Callable[[str], None]

CONTINUATION_HEADER = "x-internal-continuation-token"
# Fire-and-forget: the endpoint answers as soon as it has queued the work
CONTINUATION_TIMEOUT = 5.0


def continuation_url(job_id: str, base_url: str | None = None) -> str:
    base = (base_url or config.app_url()).rstrip("/")
    return f"{base}/api/demo-generator/{job_id}/continue"


class HttpContinuation:
    def __init__(
        self,
        base_url: str | None = None,
        secret: str | None = None,
        timeout: float = CONTINUATION_TIMEOUT,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url
        self.secret = secret if secret is not None else config.continuation_secret()
        self.timeout = timeout
        self._client = client

    def __call__(self, job_id: str) -> None:
        url = continuation_url(job_id, self.base_url)
        headers = {
            "Content-Type": "application/json",
            CONTINUATION_HEADER: self.secret or "",
        }
        log.info("Scheduling continuation for %s at %s", job_id, url)
        try:
            if self._client is not None:
                response = self._client.post(url, headers=headers, timeout=self.timeout)
            else:
                response = httpx.post(url, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException:
            log.info("Continuation request for %s sent; no response within %.0fs", job_id, self.timeout)
            return
        except httpx.RequestError as e:
            log.warning("Failed to schedule continuation for %s: %s: %s", job_id, type(e).__name__, e)
            return

        if response.status_code >= 400:
            log.warning(
                "Continuation endpoint returned %d for %s: %s",
                response.status_code,
                job_id,
                response.text[:200],
            )


class InlineContinuation:
    """Resume jobs in-process until each one stops checkpointing."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, **generator_kwargs: Any):
        self.conn = conn
        self.generator_kwargs = generator_kwargs
        self.queue: deque[str] = deque()
        self.invocations = 0
        self._draining = False

    def __call__(self, job_id: str) -> None:
        self.queue.append(job_id)
        if self._draining:
            return
        self.drain()

    def drain(self) -> None:
        from .generator import ChunkedGenerator

        self._draining = True
        try:
            while self.queue:
                job_id = self.queue.popleft()
                self.invocations += 1
                log.debug("Inline continuation #%d for %s", self.invocations, job_id)
                ChunkedGenerator(
                    self.conn, job_id, continuation=self, **self.generator_kwargs
                ).continue_generation()
        finally:
            self._draining = False
