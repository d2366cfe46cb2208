"""Environment-driven settings.

The CLI and the web app load a ``.env`` file before anything here is read,
so values can come from either the process environment or that file.
"""

from __future__ import annotations

import os

DEFAULT_DB_PATH = "demogen.db"
DEFAULT_APP_URL = "http://localhost:8000"
DEFAULT_MAX_EXECUTION_SECONDS = 50.0
DEFAULT_BATCH_SIZE = 200


def db_path() -> str:
    return os.environ.get("DEMOGEN_DB_PATH") or DEFAULT_DB_PATH


def app_url() -> str:
    url = os.environ.get("APP_URL") or DEFAULT_APP_URL
    if not url.startswith("http"):
        url = f"https://{url}"
    return url.rstrip("/")


def continuation_secret() -> str | None:
    return os.environ.get("INTERNAL_API_SECRET") or os.environ.get("SESSION_SECRET")


def max_execution_seconds() -> float:
    raw = os.environ.get("DEMOGEN_MAX_EXECUTION_SECONDS")
    return float(raw) if raw else DEFAULT_MAX_EXECUTION_SECONDS


def batch_size() -> int:
    raw = os.environ.get("DEMOGEN_BATCH_SIZE")
    return max(1, int(raw)) if raw else DEFAULT_BATCH_SIZE
