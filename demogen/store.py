"""DuckDB persistence for tenants, CRM records and jobs.

Centralizes creation and persistence for:
- CRM tables (tenants, users, pipelines, pipeline_stages, tags, companies,
  contacts, deals, activities)
- demo_tenant_metadata
- generation_jobs / patch_jobs
- metric_overrides

Structured job columns (config, state blob, logs, reports) are JSON text.
CRM rows are written in batches through a Polars DataFrame registered on
the connection.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime
from typing import Any

import duckdb
import polars as pl

from .catalog import quote_ident
from .models import OVERRIDE_METRICS, utcnow
from .rng import SeededRNG

log = logging.getLogger(__name__)

DEMO_COLUMNS = [
    ("demo_generated", "BOOLEAN"),
    ("demo_job_id", "VARCHAR"),
    ("demo_source_month", "VARCHAR"),
]

AUDIT_COLUMNS = [
    ("created_at", "TIMESTAMP"),
    ("updated_at", "TIMESTAMP"),
    ("deleted_at", "TIMESTAMP"),
]

# Column layout for every table written through insert_rows
CRM_TABLES: dict[str, list[tuple[str, str]]] = {
    "tenants": [
        ("id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("slug", "VARCHAR"),
        ("country", "VARCHAR"),
        ("timezone", "VARCHAR"),
        ("currency", "VARCHAR"),
        ("industry", "VARCHAR"),
        ("created_at", "TIMESTAMP"),
    ],
    "users": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("email", "VARCHAR"),
        ("first_name", "VARCHAR"),
        ("last_name", "VARCHAR"),
        ("role", "VARCHAR"),
        ("is_active", "BOOLEAN"),
        *DEMO_COLUMNS,
        *AUDIT_COLUMNS,
    ],
    "pipelines": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("is_default", "BOOLEAN"),
        ("created_at", "TIMESTAMP"),
    ],
    "pipeline_stages": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("pipeline_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("position", "INTEGER"),
        ("probability", "INTEGER"),
        ("color", "VARCHAR"),
        ("is_won", "BOOLEAN"),
        ("is_lost", "BOOLEAN"),
        ("created_at", "TIMESTAMP"),
        ("deleted_at", "TIMESTAMP"),
    ],
    "tags": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("color", "VARCHAR"),
        ("created_at", "TIMESTAMP"),
    ],
    "companies": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("domain", "VARCHAR"),
        ("industry", "VARCHAR"),
        ("size", "VARCHAR"),
        ("owner_id", "VARCHAR"),
        ("street", "VARCHAR"),
        ("city", "VARCHAR"),
        ("state", "VARCHAR"),
        ("postal_code", "VARCHAR"),
        ("country", "VARCHAR"),
        ("phone", "VARCHAR"),
        ("website", "VARCHAR"),
        *DEMO_COLUMNS,
        *AUDIT_COLUMNS,
    ],
    "contacts": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("first_name", "VARCHAR"),
        ("last_name", "VARCHAR"),
        ("email", "VARCHAR"),
        ("phone", "VARCHAR"),
        ("status", "VARCHAR"),
        ("company_id", "VARCHAR"),
        ("owner_id", "VARCHAR"),
        *DEMO_COLUMNS,
        *AUDIT_COLUMNS,
    ],
    "deals": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("value", "DECIMAL(14,2)"),
        ("currency", "VARCHAR"),
        ("stage_id", "VARCHAR"),
        ("contact_id", "VARCHAR"),
        ("company_id", "VARCHAR"),
        ("owner_id", "VARCHAR"),
        ("expected_close_date", "DATE"),
        ("closed_at", "TIMESTAMP"),
        *DEMO_COLUMNS,
        *AUDIT_COLUMNS,
    ],
    "activities": [
        ("id", "VARCHAR"),
        ("tenant_id", "VARCHAR"),
        ("type", "VARCHAR"),
        ("subject", "VARCHAR"),
        ("description", "VARCHAR"),
        ("contact_id", "VARCHAR"),
        ("company_id", "VARCHAR"),
        ("deal_id", "VARCHAR"),
        ("owner_id", "VARCHAR"),
        ("completed", "BOOLEAN"),
        ("scheduled_at", "TIMESTAMP"),
        ("completed_at", "TIMESTAMP"),
        ("duration_minutes", "INTEGER"),
        *DEMO_COLUMNS,
        *AUDIT_COLUMNS,
    ],
}

RECORD_TABLES = ("companies", "contacts", "deals", "activities")

JSON_COLUMNS = {
    "generation_jobs": {
        "config",
        "generation_state",
        "logs",
        "metrics",
        "verification_report",
    },
    "patch_jobs": {
        "patch_plan",
        "tolerances",
        "logs",
        "before_kpis",
        "after_kpis",
        "diff_report",
        "metrics",
    },
}


def _polars_type(sql_type: str) -> Any:
    if sql_type == "VARCHAR":
        return pl.Utf8
    if sql_type == "BOOLEAN":
        return pl.Boolean
    if sql_type == "INTEGER":
        return pl.Int64
    if sql_type == "TIMESTAMP":
        return pl.Datetime("us")
    if sql_type == "DATE":
        return pl.Date
    return pl.Float64


def dumps(value: Any) -> str:
    """JSON text for a structured column; dates become ISO strings."""
    return json.dumps(value, sort_keys=True, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def new_id(rng: SeededRNG | None = None) -> str:
    """Record id; seeded when an rng is given so reruns reproduce ids."""
    if rng is not None:
        return rng.uuid()
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def connect(path: str = ":memory:") -> duckdb.DuckDBPyConnection:
    """Open a database and make sure every table exists."""
    conn = duckdb.connect(path)
    init_store(conn)
    return conn


def init_store(conn: duckdb.DuckDBPyConnection) -> None:
    """Ensure all tables exist."""
    ensure_crm_tables(conn)
    ensure_tenant_metadata(conn)
    ensure_generation_jobs(conn)
    ensure_patch_jobs(conn)
    ensure_metric_overrides(conn)


def ensure_crm_tables(conn: duckdb.DuckDBPyConnection) -> None:
    for table, columns in CRM_TABLES.items():
        cols = ",\n    ".join(
            f"{quote_ident(name)} {sql_type}" + (" PRIMARY KEY" if name == "id" else "")
            for name, sql_type in columns
        )
        conn.execute(f"CREATE TABLE IF NOT EXISTS {quote_ident(table)} (\n    {cols}\n)")


def ensure_tenant_metadata(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS demo_tenant_metadata (
            tenant_id VARCHAR PRIMARY KEY,
            generation_job_id VARCHAR,
            is_demo_generated BOOLEAN DEFAULT true,
            seed VARCHAR,
            country VARCHAR,
            industry VARCHAR,
            start_date DATE,
            created_at TIMESTAMP DEFAULT current_timestamp
        )
        """
    )


def ensure_generation_jobs(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS generation_jobs (
            id VARCHAR PRIMARY KEY,
            status VARCHAR NOT NULL,
            generation_phase VARCHAR NOT NULL,
            progress INTEGER DEFAULT 0,
            current_step VARCHAR,
            seed VARCHAR NOT NULL,
            mode VARCHAR,
            config VARCHAR,
            generation_state VARCHAR,
            logs VARCHAR,
            metrics VARCHAR,
            verification_report VARCHAR,
            verification_passed BOOLEAN,
            created_tenant_id VARCHAR,
            error_message VARCHAR,
            error_stack VARCHAR,
            created_at TIMESTAMP,
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )


def ensure_patch_jobs(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS patch_jobs (
            id VARCHAR PRIMARY KEY,
            tenant_id VARCHAR NOT NULL,
            original_job_id VARCHAR,
            mode VARCHAR NOT NULL,
            plan_type VARCHAR NOT NULL,
            patch_plan VARCHAR,
            seed VARCHAR NOT NULL,
            range_start_month VARCHAR,
            range_end_month VARCHAR,
            tolerances VARCHAR,
            status VARCHAR NOT NULL,
            progress INTEGER DEFAULT 0,
            current_step VARCHAR,
            logs VARCHAR,
            before_kpis VARCHAR,
            after_kpis VARCHAR,
            diff_report VARCHAR,
            metrics VARCHAR,
            error_message VARCHAR,
            error_stack VARCHAR,
            created_at TIMESTAMP,
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )


def ensure_metric_overrides(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS metric_overrides (
            id VARCHAR PRIMARY KEY,
            tenant_id VARCHAR NOT NULL,
            month VARCHAR NOT NULL,
            contacts_created INTEGER DEFAULT 0,
            companies_created INTEGER DEFAULT 0,
            deals_created INTEGER DEFAULT 0,
            closed_won_count INTEGER DEFAULT 0,
            closed_won_value DOUBLE DEFAULT 0,
            activities_created INTEGER DEFAULT 0,
            patch_job_id VARCHAR,
            created_at TIMESTAMP,
            updated_at TIMESTAMP,
            UNIQUE (tenant_id, month)
        )
        """
    )


# ---------------------------------------------------------------------------
# Batched inserts
# ---------------------------------------------------------------------------


def _coerce(value: Any, sql_type: str) -> Any:
    # State blobs round-trip dates through JSON as ISO strings
    if isinstance(value, str):
        if sql_type == "TIMESTAMP":
            return datetime.fromisoformat(value)
        if sql_type == "DATE":
            return date.fromisoformat(value[:10])
    return value


def insert_rows(
    conn: duckdb.DuckDBPyConnection, table: str, rows: list[dict[str, Any]]
) -> int:
    """Insert a batch of row dicts into a CRM table; returns rows written.

    Missing columns are written as NULL.
    """
    if not rows:
        return 0
    columns = CRM_TABLES[table]
    schema = {name: _polars_type(sql_type) for name, sql_type in columns}
    data = [
        {name: _coerce(row.get(name), sql_type) for name, sql_type in columns}
        for row in rows
    ]
    df = pl.DataFrame(data, schema=schema)
    col_list = ", ".join(quote_ident(name) for name in schema)
    conn.register("_df", df)
    try:
        conn.execute(
            f"INSERT INTO {quote_ident(table)} ({col_list}) SELECT {col_list} FROM _df"
        )
    finally:
        conn.unregister("_df")
    log.debug("Inserted %d rows into %s", df.height, table)
    return df.height


def _fetch_dicts(
    conn: duckdb.DuckDBPyConnection, sql: str, params: list[Any] | None = None
) -> list[dict[str, Any]]:
    cur = conn.execute(sql, params or [])
    names = [d[0] for d in cur.description]
    return [dict(zip(names, row)) for row in cur.fetchall()]


def _decode(table: str, row: dict[str, Any]) -> dict[str, Any]:
    for col in JSON_COLUMNS.get(table, ()):
        raw = row.get(col)
        row[col] = json.loads(raw) if raw else None
    return row


def _update(
    conn: duckdb.DuckDBPyConnection, table: str, job_id: str, fields: dict[str, Any]
) -> None:
    json_cols = JSON_COLUMNS.get(table, set())
    fields = {**fields, "updated_at": utcnow()}
    assignments = ", ".join(f"{quote_ident(k)} = ?" for k in fields)
    values = [dumps(v) if k in json_cols and v is not None else v for k, v in fields.items()]
    conn.execute(
        f"UPDATE {quote_ident(table)} SET {assignments} WHERE id = ?",
        [*values, job_id],
    )


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


def read_tenant(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> dict[str, Any] | None:
    rows = _fetch_dicts(conn, "SELECT * FROM tenants WHERE id = ?", [tenant_id])
    return rows[0] if rows else None


def persist_tenant_metadata(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    *,
    generation_job_id: str,
    seed: str,
    country: str,
    industry: str,
    start_date: date | None,
) -> None:
    conn.execute("DELETE FROM demo_tenant_metadata WHERE tenant_id = ?", [tenant_id])
    conn.execute(
        """
        INSERT INTO demo_tenant_metadata
            (tenant_id, generation_job_id, is_demo_generated, seed, country, industry, start_date, created_at)
        VALUES (?, ?, true, ?, ?, ?, ?, ?)
        """,
        [tenant_id, generation_job_id, seed, country, industry, start_date, utcnow()],
    )


def read_tenant_metadata(
    conn: duckdb.DuckDBPyConnection, tenant_id: str
) -> dict[str, Any] | None:
    rows = _fetch_dicts(
        conn, "SELECT * FROM demo_tenant_metadata WHERE tenant_id = ?", [tenant_id]
    )
    return rows[0] if rows else None


def read_stage_classes(
    conn: duckdb.DuckDBPyConnection, tenant_id: str
) -> dict[str, list[str]]:
    """Stage ids of a tenant split into won / lost / open, in position order."""
    rows = conn.execute(
        """
        SELECT id, is_won, is_lost
        FROM pipeline_stages
        WHERE tenant_id = ? AND deleted_at IS NULL
        ORDER BY position
        """,
        [tenant_id],
    ).fetchall()
    out: dict[str, list[str]] = {"won": [], "lost": [], "open": []}
    for stage_id, is_won, is_lost in rows:
        kind = "won" if is_won else "lost" if is_lost else "open"
        out[kind].append(stage_id)
    return out


def read_active_user_ids(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT id FROM users
        WHERE tenant_id = ? AND deleted_at IS NULL AND is_active
        ORDER BY created_at, id
        """,
        [tenant_id],
    ).fetchall()
    return [r[0] for r in rows]


def count_job_records(conn: duckdb.DuckDBPyConnection, job_id: str) -> int:
    """Number of CRM records tagged with a job id."""
    total = 0
    for table in RECORD_TABLES:
        row = conn.execute(
            f"SELECT COUNT(*) FROM {quote_ident(table)} WHERE demo_job_id = ?", [job_id]
        ).fetchone()
        total += int(row[0]) if row else 0
    return total


# ---------------------------------------------------------------------------
# Generation jobs
# ---------------------------------------------------------------------------


def insert_generation_job(
    conn: duckdb.DuckDBPyConnection,
    job_id: str,
    *,
    seed: str,
    mode: str,
    config: dict[str, Any],
) -> None:
    now = utcnow()
    conn.execute(
        """
        INSERT INTO generation_jobs
            (id, status, generation_phase, progress, current_step, seed, mode,
             config, generation_state, logs, created_at, updated_at)
        VALUES (?, 'pending', 'init', 0, 'Queued', ?, ?, ?, ?, ?, ?, ?)
        """,
        [job_id, seed, mode, dumps(config), dumps({}), dumps([]), now, now],
    )


def read_generation_job(
    conn: duckdb.DuckDBPyConnection, job_id: str
) -> dict[str, Any] | None:
    rows = _fetch_dicts(conn, "SELECT * FROM generation_jobs WHERE id = ?", [job_id])
    return _decode("generation_jobs", rows[0]) if rows else None


def update_generation_job(
    conn: duckdb.DuckDBPyConnection, job_id: str, **fields: Any
) -> None:
    _update(conn, "generation_jobs", job_id, fields)


# ---------------------------------------------------------------------------
# Patch jobs
# ---------------------------------------------------------------------------


def insert_patch_job(
    conn: duckdb.DuckDBPyConnection,
    job_id: str,
    *,
    tenant_id: str,
    original_job_id: str | None,
    mode: str,
    plan_type: str,
    patch_plan: dict[str, Any],
    seed: str,
    range_start_month: str,
    range_end_month: str,
    tolerances: dict[str, Any],
) -> None:
    now = utcnow()
    conn.execute(
        """
        INSERT INTO patch_jobs
            (id, tenant_id, original_job_id, mode, plan_type, patch_plan, seed,
             range_start_month, range_end_month, tolerances, status, progress,
             current_step, logs, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', 0, 'Queued', ?, ?, ?)
        """,
        [
            job_id,
            tenant_id,
            original_job_id,
            mode,
            plan_type,
            dumps(patch_plan),
            seed,
            range_start_month,
            range_end_month,
            dumps(tolerances),
            dumps([]),
            now,
            now,
        ],
    )


def read_patch_job(conn: duckdb.DuckDBPyConnection, job_id: str) -> dict[str, Any] | None:
    rows = _fetch_dicts(conn, "SELECT * FROM patch_jobs WHERE id = ?", [job_id])
    return _decode("patch_jobs", rows[0]) if rows else None


def update_patch_job(conn: duckdb.DuckDBPyConnection, job_id: str, **fields: Any) -> None:
    _update(conn, "patch_jobs", job_id, fields)


# ---------------------------------------------------------------------------
# Metric overrides
# ---------------------------------------------------------------------------


def read_metric_overrides(
    conn: duckdb.DuckDBPyConnection, tenant_id: str
) -> dict[str, dict[str, float]]:
    """Override deltas per month for a tenant."""
    cols = ", ".join(OVERRIDE_METRICS)
    rows = conn.execute(
        f"SELECT month, {cols} FROM metric_overrides WHERE tenant_id = ? ORDER BY month",
        [tenant_id],
    ).fetchall()
    return {r[0]: dict(zip(OVERRIDE_METRICS, (float(v or 0) for v in r[1:]))) for r in rows}


def upsert_metric_override(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    month: str,
    deltas: dict[str, float],
    *,
    patch_job_id: str,
) -> dict[str, float]:
    """Add deltas onto the month's override row; returns the new totals."""
    existing = read_metric_overrides(conn, tenant_id).get(month)
    now = utcnow()
    if existing is None:
        totals = {m: deltas.get(m, 0) for m in OVERRIDE_METRICS}
        cols = ", ".join(OVERRIDE_METRICS)
        marks = ", ".join("?" for _ in OVERRIDE_METRICS)
        conn.execute(
            f"""
            INSERT INTO metric_overrides
                (id, tenant_id, month, {cols}, patch_job_id, created_at, updated_at)
            VALUES (?, ?, ?, {marks}, ?, ?, ?)
            """,
            [new_id(), tenant_id, month, *totals.values(), patch_job_id, now, now],
        )
        return totals

    totals = {m: existing[m] + deltas.get(m, 0) for m in OVERRIDE_METRICS}
    assignments = ", ".join(f"{m} = ?" for m in OVERRIDE_METRICS)
    conn.execute(
        f"""
        UPDATE metric_overrides
        SET {assignments}, patch_job_id = ?, updated_at = ?
        WHERE tenant_id = ? AND month = ?
        """,
        [*totals.values(), patch_job_id, now, tenant_id, month],
    )
    return totals
