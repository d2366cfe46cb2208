"""Per-month KPI aggregation over a tenant's persisted records.

Months are UTC windows ``[first day 00:00, first day of next month 00:00)``
keyed by ``created_at``. Soft-deleted rows (``deleted_at`` set) never
count. Deal metrics are split by the stage flags: closed-won is every deal
in a won stage, pipeline value is every deal not in a lost stage.
"""

from __future__ import annotations

import logging

import duckdb

from .models import (
    COUNT_METRICS,
    OVERRIDE_METRICS,
    PATCH_METRICS,
    MonthlyKpiSnapshot,
    utcnow,
)
from .monthly_allocator import month_range
from .store import read_metric_overrides

log = logging.getLogger(__name__)


def month_span(from_month: str, to_month: str) -> list[str]:
    """YYYY-MM labels from ``from_month`` to ``to_month`` inclusive."""
    year, month = (int(p) for p in from_month.split("-"))
    end_year, end_month = (int(p) for p in to_month.split("-"))
    out: list[str] = []
    while (year, month) <= (end_year, end_month):
        out.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            month, year = 1, year + 1
    return out


def empty_metrics() -> dict[str, float]:
    return {m: 0 if m in COUNT_METRICS else 0.0 for m in PATCH_METRICS}


class KpiAggregator:
    def __init__(self, conn: duckdb.DuckDBPyConnection, tenant_id: str):
        self.conn = conn
        self.tenant_id = tenant_id

    def query_monthly_kpis(self, from_month: str, to_month: str) -> list[MonthlyKpiSnapshot]:
        """Actual metrics for every month in the range (zeros included)."""
        months = month_span(from_month, to_month)
        if not months:
            return []
        start, _ = month_range(months[0])
        _, end = month_range(months[-1])
        by_month = {m: empty_metrics() for m in months}

        self._contacts(by_month, start, end)
        self._count("companies", "companies_created", by_month, start, end)
        self._deals(by_month, start, end)
        self._count("activities", "activities_created", by_month, start, end)

        now = utcnow().isoformat(timespec="milliseconds") + "Z"
        return [MonthlyKpiSnapshot(month=m, metrics=by_month[m], snapshot_at=now) for m in months]

    def create_snapshot(self, months: list[str]) -> list[MonthlyKpiSnapshot]:
        if not months:
            return []
        ordered = sorted(months)
        return self.query_monthly_kpis(ordered[0], ordered[-1])

    def query_reported_kpis(self, from_month: str, to_month: str) -> list[MonthlyKpiSnapshot]:
        """Actual metrics with metric overrides layered on top."""
        snapshots = self.query_monthly_kpis(from_month, to_month)
        overrides = read_metric_overrides(self.conn, self.tenant_id)
        for snap in snapshots:
            delta = overrides.get(snap.month)
            if not delta:
                continue
            for metric in OVERRIDE_METRICS:
                value = snap.metrics[metric] + delta[metric]
                snap.metrics[metric] = int(value) if metric in COUNT_METRICS else round(value, 2)
        return snapshots

    # --- Queries ---

    def _contacts(self, by_month, start, end) -> None:
        rows = self.conn.execute(
            """
            SELECT strftime(created_at, '%Y-%m') AS month,
                   COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE status = 'lead') AS leads
            FROM contacts
            WHERE tenant_id = ? AND deleted_at IS NULL
              AND created_at >= ? AND created_at < ?
            GROUP BY 1
            """,
            [self.tenant_id, start, end],
        ).fetchall()
        for month, total, leads in rows:
            if month in by_month:
                by_month[month]["contacts_created"] = int(total)
                by_month[month]["leads_created"] = int(leads)

    def _count(self, table: str, metric: str, by_month, start, end) -> None:
        rows = self.conn.execute(
            f"""
            SELECT strftime(created_at, '%Y-%m') AS month, COUNT(*)
            FROM {table}
            WHERE tenant_id = ? AND deleted_at IS NULL
              AND created_at >= ? AND created_at < ?
            GROUP BY 1
            """,
            [self.tenant_id, start, end],
        ).fetchall()
        for month, total in rows:
            if month in by_month:
                by_month[month][metric] = int(total)

    def _deals(self, by_month, start, end) -> None:
        rows = self.conn.execute(
            """
            SELECT strftime(d.created_at, '%Y-%m') AS month,
                   COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE s.is_won) AS won,
                   CAST(COALESCE(SUM(d.value) FILTER (WHERE s.is_won), 0) AS DOUBLE) AS won_value,
                   CAST(COALESCE(SUM(d.value) FILTER (WHERE s.is_lost IS NOT TRUE), 0) AS DOUBLE)
                       AS pipeline_value
            FROM deals d
            LEFT JOIN pipeline_stages s
              ON s.id = d.stage_id AND s.deleted_at IS NULL
            WHERE d.tenant_id = ? AND d.deleted_at IS NULL
              AND d.created_at >= ? AND d.created_at < ?
            GROUP BY 1
            """,
            [self.tenant_id, start, end],
        ).fetchall()
        for month, total, won, won_value, pipeline_value in rows:
            if month not in by_month:
                continue
            m = by_month[month]
            m["deals_created"] = int(total)
            m["closed_won_count"] = int(won)
            m["closed_won_value"] = round(float(won_value), 2)
            m["pipeline_added_value"] = round(float(pipeline_value), 2)
