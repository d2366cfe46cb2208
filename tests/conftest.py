"""Shared fixtures and helpers for the demogen test suite."""

from typing import Any

import duckdb
import pytest

from demogen.store import init_store


@pytest.fixture
def conn():
    """In-memory DuckDB connection with the full schema, for each test."""
    c = duckdb.connect(":memory:")
    init_store(c)
    yield c
    c.close()


class RecordingContinuation:
    """Continuation stub that only records the job ids it was asked to resume."""

    def __init__(self):
        self.calls: list[str] = []

    def __call__(self, job_id: str) -> None:
        self.calls.append(job_id)


def _plan_dict(**overrides: Any) -> dict[str, Any]:
    """A small two-month plan, valid against any current date."""
    plan = {
        "months": [
            {
                "month": "2024-01",
                "targets": {
                    "leads_created": 20,
                    "contacts_created": 40,
                    "companies_created": 10,
                    "deals_created": 12,
                    "closed_won_count": 4,
                    "closed_won_value": 48000,
                    "pipeline_added_value": 120000,
                },
            },
            {
                "month": "2024-02",
                "targets": {
                    "leads_created": 25,
                    "contacts_created": 50,
                    "companies_created": 12,
                    "deals_created": 15,
                    "closed_won_count": 5,
                    "closed_won_value": 60000,
                    "pipeline_added_value": 150000,
                },
            },
        ],
        "tolerances": {"count_tolerance": 0, "value_tolerance": 0.005},
    }
    plan.update(overrides)
    return plan


def _config_dict(**overrides: Any) -> dict[str, Any]:
    data = {
        "tenant_name": "Acme Demo",
        "country": "US",
        "industry": "saas",
        "team_size": 4,
        "mode": "monthly-plan",
        "monthly_plan": _plan_dict(),
    }
    data.update(overrides)
    return data


def _generate(
    conn: duckdb.DuckDBPyConnection, seed: str = "golden-seed", **generator_kwargs: Any
) -> str:
    """Create and run a generation job to completion in-process; returns the job id."""
    from demogen.continuation import InlineContinuation
    from demogen.defaults import build_config
    from demogen.generator import create_generation_job, start_generation

    job_id = create_generation_job(conn, build_config(_config_dict()), seed=seed)
    start_generation(conn, job_id, InlineContinuation(conn, **generator_kwargs), **generator_kwargs)
    return job_id


def _tenant_of(conn: duckdb.DuckDBPyConnection, job_id: str) -> str:
    row = conn.execute(
        "SELECT created_tenant_id FROM generation_jobs WHERE id = ?", [job_id]
    ).fetchone()
    return row[0]


@pytest.fixture
def tenant(conn):
    """A fully generated demo tenant; yields its id."""
    job_id = _generate(conn)
    return _tenant_of(conn, job_id)
