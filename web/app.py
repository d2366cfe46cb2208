"""Demo generator web API: job control, continuation endpoint, KPI and patch contracts.

Usage:
    uvicorn web.app:app --reload
    # or: python -m web.app
"""

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from typing import Any, Callable

import duckdb
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, Depends, FastAPI, Header, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from demogen import config
from demogen.continuation import CONTINUATION_HEADER, HttpContinuation
from demogen.defaults import build_config
from demogen.errors import (
    DemoGenError,
    JobNotFoundError,
    PatchBlockedError,
    PlanValidationError,
    TenantNotFoundError,
)
from demogen.generator import (
    ChunkedGenerator,
    create_generation_job,
    get_job_status,
    start_generation,
)
from demogen.growth_planner import GrowthPlanner
from demogen.kpi import KpiAggregator
from demogen.models import GenerationMode, PatchPlan
from demogen.patch_engine import apply_patch, get_patch_status, preview_patch
from demogen.plan_validator import validate_plan
from demogen.store import connect, read_generation_job

log = logging.getLogger(__name__)

STREAM_POLL_SECONDS = 0.5

# --- Dependencies ---

_conn: duckdb.DuckDBPyConnection | None = None


def get_conn() -> Iterator[duckdb.DuckDBPyConnection]:
    """A cursor of its own per request; the database is opened once per process."""
    global _conn
    if _conn is None:
        _conn = connect(config.db_path())
    cursor = _conn.cursor()
    try:
        yield cursor
    finally:
        cursor.close()


def get_continuation() -> Callable[[str], None]:
    return HttpContinuation()


def _http_error(e: DemoGenError) -> HTTPException:
    if isinstance(e, (JobNotFoundError, TenantNotFoundError)):
        return HTTPException(404, str(e))
    if isinstance(e, PlanValidationError):
        return HTTPException(400, {"message": str(e), "errors": e.errors})
    if isinstance(e, PatchBlockedError):
        return HTTPException(400, {"message": str(e), "blockers": e.blockers})
    return HTTPException(400, str(e))


def _parse_patch_plan(payload: dict[str, Any]) -> PatchPlan:
    try:
        return PatchPlan.from_dict(payload)
    except (TypeError, ValueError, KeyError) as e:
        raise HTTPException(400, f"Invalid patch plan: {e}")


# --- App ---

app = FastAPI(title="demogen", docs_url=None, redoc_url=None)


# --- Generation jobs ---


@app.post("/api/demo-generator/preview")
def preview_generation(payload: dict[str, Any] = Body(...)):
    """Validate a generation config and estimate its size, without creating a job."""
    try:
        cfg = build_config(payload)
    except (TypeError, ValueError, KeyError) as e:
        raise HTTPException(400, f"Invalid config: {e}")

    if cfg.mode == GenerationMode.MONTHLY_PLAN:
        if cfg.monthly_plan is None:
            raise HTTPException(400, "monthly_plan is required in monthly-plan mode")
        return {"mode": cfg.mode.value, "validation": validate_plan(cfg.monthly_plan).to_dict()}

    planner = GrowthPlanner(cfg)
    ok, errors = planner.validate()
    return {
        "mode": cfg.mode.value,
        "valid": ok,
        "errors": errors,
        "months": planner.preview() if ok else [],
        "estimated_seconds": planner.estimate_generation_time() if ok else 0,
    }


@app.post("/api/demo-generator")
def create_generation(
    background: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    conn: duckdb.DuckDBPyConnection = Depends(get_conn),
    continuation: Callable[[str], None] = Depends(get_continuation),
):
    """Create a generation job and start its first chunk in the background."""
    seed = payload.pop("seed", None)
    try:
        cfg = build_config(payload)
    except (TypeError, ValueError, KeyError) as e:
        raise HTTPException(400, f"Invalid config: {e}")
    try:
        job_id = create_generation_job(conn, cfg, seed=seed)
    except DemoGenError as e:
        raise _http_error(e)

    background.add_task(_run_first_chunk, conn.cursor(), job_id, continuation)
    return {"job_id": job_id, "status": "pending"}


@app.post("/api/demo-generator/{job_id}/continue")
def continue_generation(
    job_id: str,
    background: BackgroundTasks,
    token: str | None = Header(default=None, alias=CONTINUATION_HEADER),
    conn: duckdb.DuckDBPyConnection = Depends(get_conn),
    continuation: Callable[[str], None] = Depends(get_continuation),
):
    """Resume a checkpointed job. Answers immediately; the work runs after the response."""
    secret = config.continuation_secret()
    if not token or token != secret:
        log.warning("Continuation for %s without a valid token; treating as manual retry", job_id)

    job = read_generation_job(conn, job_id)
    if job is None:
        raise HTTPException(404, f"Generation job {job_id} not found")
    if job["status"] != "running":
        return {"job_id": job_id, "status": job["status"], "scheduled": False}

    background.add_task(_run_chunk, conn.cursor(), job_id, continuation)
    return {"job_id": job_id, "status": job["status"], "scheduled": True}


# Background work gets a cursor of its own; the request's cursor closes with the request.


def _run_first_chunk(
    conn: duckdb.DuckDBPyConnection, job_id: str, continuation: Callable[[str], None]
) -> None:
    try:
        start_generation(conn, job_id, continuation)
    finally:
        conn.close()


def _run_chunk(
    conn: duckdb.DuckDBPyConnection, job_id: str, continuation: Callable[[str], None]
) -> None:
    try:
        ChunkedGenerator(conn, job_id, continuation).continue_generation()
    except DemoGenError:
        log.exception("Continuation for %s failed", job_id)
    finally:
        conn.close()


@app.get("/api/demo-generator/{job_id}")
def generation_status(job_id: str, conn: duckdb.DuckDBPyConnection = Depends(get_conn)):
    try:
        return get_job_status(conn, job_id)
    except DemoGenError as e:
        raise _http_error(e)


@app.get("/api/demo-generator/{job_id}/stream")
async def stream_generation(job_id: str, conn: duckdb.DuckDBPyConnection = Depends(get_conn)):
    """SSE stream of job log lines until the job finishes."""
    if read_generation_job(conn, job_id) is None:
        raise HTTPException(404, "Job not found")

    stream_conn = conn.cursor()

    async def event_generator() -> AsyncGenerator[dict[str, str], None]:
        sent = 0
        try:
            while True:
                status = await asyncio.to_thread(get_job_status, stream_conn, job_id)
                lines = status["logs"]
                while sent < len(lines):
                    entry = lines[sent]
                    yield {"event": "log", "data": f"[{entry['level']}] {entry['message']}"}
                    sent += 1

                yield {"event": "progress", "data": str(status["progress"])}
                if status["status"] in ("completed", "failed"):
                    yield {"event": "done", "data": status["status"]}
                    break

                await asyncio.sleep(STREAM_POLL_SECONDS)
        finally:
            stream_conn.close()

    return EventSourceResponse(event_generator())


# --- KPIs and patches ---


@app.get("/api/tenants/{tenant_id}/kpis")
def tenant_kpis(
    tenant_id: str,
    from_month: str = Query(alias="from"),
    to_month: str = Query(alias="to"),
    reported: bool = False,
    conn: duckdb.DuckDBPyConnection = Depends(get_conn),
):
    aggregator = KpiAggregator(conn, tenant_id)
    if reported:
        snapshots = aggregator.query_reported_kpis(from_month, to_month)
    else:
        snapshots = aggregator.query_monthly_kpis(from_month, to_month)
    return [s.to_dict() for s in snapshots]


@app.post("/api/tenants/{tenant_id}/patch/validate")
def validate_patch(
    tenant_id: str,
    payload: dict[str, Any] = Body(...),
    conn: duckdb.DuckDBPyConnection = Depends(get_conn),
):
    plan = _parse_patch_plan(payload)
    try:
        validation, preview = preview_patch(conn, tenant_id, plan)
    except DemoGenError as e:
        raise _http_error(e)
    return {"validation": validation.to_dict(), "preview": preview.to_dict()}


@app.post("/api/tenants/{tenant_id}/patch/apply")
def apply_tenant_patch(
    tenant_id: str,
    payload: dict[str, Any] = Body(...),
    conn: duckdb.DuckDBPyConnection = Depends(get_conn),
):
    plan = _parse_patch_plan(payload)
    try:
        return apply_patch(conn, tenant_id, plan)
    except DemoGenError as e:
        raise _http_error(e)
    except Exception as e:
        log.exception("Patch for tenant %s failed", tenant_id)
        raise HTTPException(500, f"Patch failed: {e}")


@app.get("/api/patch-jobs/{job_id}")
def patch_status(job_id: str, conn: duckdb.DuckDBPyConnection = Depends(get_conn)):
    try:
        return get_patch_status(conn, job_id)
    except DemoGenError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web.app:app", host="0.0.0.0", port=8000, reload=True)
