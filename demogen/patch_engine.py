"""Apply KPI patches to an existing demo tenant.

Three modes:

- ``additive``: only creates records; a negative delta blocks the patch.
- ``reconcile``: deletes demo-generated records first for negative deltas,
  then creates records for positive ones.
- ``metrics-only``: records nothing; adds override deltas that the
  reported KPIs layer on top of actual counts.

Record-creating patches run in one pass: context, KPI snapshot before,
deltas, mutation, KPI snapshot after, diff report. Every created record is
tagged with the patch job id and its source month. A job that already has
tagged records skips straight to re-measurement, and a completed job is
returned untouched.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timedelta
from typing import Any

import duckdb

from .defaults import DEFAULT_TOLERANCES
from .diff import PatchDiffReport, compute_diff
from .errors import JobNotFoundError, PatchBlockedError, PlanValidationError, TenantNotFoundError
from .generator import ACTIVITY_SUBJECTS, ACTIVITY_TYPES, fix_lead_count
from .kpi import KpiAggregator
from .localization import LocalizationProvider, get_provider
from .models import (
    OVERRIDE_METRICS,
    MonthlyKpiSnapshot,
    PatchJobMetrics,
    PatchMode,
    PatchMonth,
    PatchPlan,
    ToleranceConfig,
    log_entry,
    utcnow,
)
from .monthly_allocator import MonthlyAllocator, month_range
from .patch_validator import (
    ACTIVITIES_PER_CONTACT,
    PatchPreview,
    PatchValidation,
    compute_deltas,
    generate_preview,
    validate_demo_tenant,
    validate_patch_plan,
)
from .rng import SeededRNG, generate_seed
from .store import (
    count_job_records,
    insert_patch_job,
    insert_rows,
    new_id,
    read_active_user_ids,
    read_patch_job,
    read_stage_classes,
    read_tenant,
    read_tenant_metadata,
    update_patch_job,
    upsert_metric_override,
)
from .templates import IndustryTemplate, get_template
from .value_allocator import ValueAllocator, ValueConstraints

log = logging.getLogger(__name__)

# Deletion and addition order within a month
DELETE_ORDER = ("activities", "deals", "contacts", "companies")
PATCH_WHALE_RATIO = 0.1
INSERT_BATCH = 500
LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


# ---------------------------------------------------------------------------
# Request-level entry points
# ---------------------------------------------------------------------------


def _require_tenant(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> None:
    if read_tenant(conn, tenant_id) is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    check = validate_demo_tenant(conn, tenant_id)
    if not check.valid:
        raise PlanValidationError([check.error or "Tenant cannot be patched"])


def current_kpis(
    conn: duckdb.DuckDBPyConnection, tenant_id: str, plan: PatchPlan
) -> list[MonthlyKpiSnapshot]:
    """KPIs the plan is measured against: reported for metrics-only, actual otherwise."""
    months = plan.sorted_months()
    if not months:
        return []
    aggregator = KpiAggregator(conn, tenant_id)
    if plan.mode == PatchMode.METRICS_ONLY:
        return aggregator.query_reported_kpis(months[0], months[-1])
    return aggregator.query_monthly_kpis(months[0], months[-1])


def preview_patch(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    plan: PatchPlan,
    now: datetime | None = None,
) -> tuple[PatchValidation, PatchPreview]:
    """Validate a plan and estimate its effect without touching anything."""
    if read_tenant(conn, tenant_id) is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    kpis = current_kpis(conn, tenant_id, plan)
    validation = validate_patch_plan(conn, tenant_id, plan, kpis, now=now)
    preview = generate_preview(plan, kpis)
    if plan.mode != PatchMode.ADDITIVE:
        preview.blockers = []
        preview.feasible = validation.valid
    else:
        preview.feasible = preview.feasible and validation.valid
    return validation, preview


def apply_patch(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    plan: PatchPlan,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Validate, create a patch job and run it to completion.

    Returns the finished job row. Raises before creating the job when the
    tenant is not a demo tenant, the plan is invalid, or an additive plan
    would have to reduce a metric.
    """
    _require_tenant(conn, tenant_id)
    kpis = current_kpis(conn, tenant_id, plan)

    validation = validate_patch_plan(conn, tenant_id, plan, kpis, now=now)
    if not validation.valid:
        raise PlanValidationError(validation.errors)

    _, blockers = compute_deltas(plan, kpis)
    if plan.mode == PatchMode.ADDITIVE and blockers:
        raise PatchBlockedError(blockers)

    metadata = read_tenant_metadata(conn, tenant_id) or {}
    months = plan.sorted_months()
    job_id = new_id()
    seed = plan.seed or generate_seed()
    tolerances = plan.tolerances or DEFAULT_TOLERANCES
    insert_patch_job(
        conn,
        job_id,
        tenant_id=tenant_id,
        original_job_id=metadata.get("generation_job_id"),
        mode=plan.mode.value,
        plan_type=plan.plan_type.value,
        patch_plan=plan.to_dict(),
        seed=seed,
        range_start_month=months[0],
        range_end_month=months[-1],
        tolerances=tolerances.to_dict(),
    )
    log.info("Created %s patch job %s for tenant %s", plan.mode.value, job_id, tenant_id)

    if plan.mode == PatchMode.METRICS_ONLY:
        apply_metric_overrides(conn, job_id)
    else:
        PatchEngine(conn, job_id).execute()
    return read_patch_job(conn, job_id) or {}


def get_patch_status(conn: duckdb.DuckDBPyConnection, job_id: str) -> dict[str, Any]:
    job = read_patch_job(conn, job_id)
    if job is None:
        raise JobNotFoundError(f"Patch job {job_id} not found")
    return job


# ---------------------------------------------------------------------------
# Job runner base
# ---------------------------------------------------------------------------


class _PatchJobRunner:
    def __init__(self, conn: duckdb.DuckDBPyConnection, job_id: str):
        self.conn = conn
        self.job_id = job_id
        self.job: dict[str, Any] = {}
        self.logs: list[dict[str, Any]] = []
        self.metrics = PatchJobMetrics()

    def _load(self) -> dict[str, Any]:
        job = read_patch_job(self.conn, self.job_id)
        if job is None:
            raise JobNotFoundError(f"Patch job {self.job_id} not found")
        self.job = job
        self.logs = list(job["logs"] or [])
        return job

    @property
    def plan(self) -> PatchPlan:
        return PatchPlan.from_dict(self.job["patch_plan"])

    @property
    def tolerances(self) -> ToleranceConfig:
        return ToleranceConfig.from_dict(self.job["tolerances"])

    def _log(self, level: str, message: str, data: dict[str, Any] | None = None) -> None:
        self.logs.append(log_entry(level, message, data))
        log.log(LOG_LEVELS.get(level, logging.INFO), "[patch %s] %s", self.job_id[:8], message)

    def _update(self, **fields: Any) -> None:
        update_patch_job(self.conn, self.job_id, logs=self.logs, **fields)

    def _progress(self, progress: int, step: str) -> None:
        self._update(progress=progress, current_step=step)

    def _handle_error(self, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        log.error("Patch job %s failed: %s", self.job_id, message)
        self._log("error", message)
        self._update(
            status="failed",
            error_message=message,
            error_stack=traceback.format_exc(),
            metrics=self.metrics.to_dict(),
            completed_at=utcnow(),
        )


# ---------------------------------------------------------------------------
# Metrics-only
# ---------------------------------------------------------------------------


class MetricOverrideApplier(_PatchJobRunner):
    """Adds override deltas; reported KPIs move, records do not."""

    def execute(self) -> dict[str, Any]:
        job = self._load()
        if job["status"] == "completed":
            self._log("info", "Job already completed. Returning cached results.")
            return job

        try:
            self._update(status="running", progress=0, current_step="Initializing", started_at=utcnow())
            plan = self.plan
            aggregator = KpiAggregator(self.conn, job["tenant_id"])
            start, end = job["range_start_month"], job["range_end_month"]

            before = aggregator.query_reported_kpis(start, end)
            self._update(before_kpis=[s.to_dict() for s in before])
            deltas, _ = compute_deltas(plan, before)

            applied: list[PatchMonth] = []
            for d in deltas:
                overridable = {k: v for k, v in d.metrics.items() if k in OVERRIDE_METRICS}
                ignored = sorted(set(d.metrics) - set(overridable))
                if ignored:
                    self._log("warn", f"{d.month}: ignoring non-overridable metrics {', '.join(ignored)}")
                if not any(overridable.values()):
                    continue
                totals = upsert_metric_override(
                    self.conn, job["tenant_id"], d.month, overridable, patch_job_id=self.job_id
                )
                self.metrics.metric_overrides_applied += 1
                applied.append(PatchMonth(d.month, overridable))
                self._log("info", f"Override for {d.month} now {totals}", {"month": d.month, "deltas": overridable})

            after = aggregator.query_reported_kpis(start, end)
            report = compute_diff(before, after, applied, self.tolerances)
            self._update(
                status="completed",
                progress=100,
                current_step="Complete",
                after_kpis=[s.to_dict() for s in after],
                diff_report=report.to_dict(),
                metrics=self.metrics.to_dict(),
                completed_at=utcnow(),
            )
            self._log("info", f"Applied {self.metrics.metric_overrides_applied} metric overrides")
            self._update()
        except Exception as e:
            self._handle_error(e)
            raise
        return read_patch_job(self.conn, self.job_id) or {}


def apply_metric_overrides(conn: duckdb.DuckDBPyConnection, job_id: str) -> dict[str, Any]:
    return MetricOverrideApplier(conn, job_id).execute()


# ---------------------------------------------------------------------------
# Record-creating patches
# ---------------------------------------------------------------------------


class PatchEngine(_PatchJobRunner):
    def execute(self) -> dict[str, Any]:
        job = self._load()
        if job["status"] == "completed":
            self._log("info", "Job already completed. Returning cached results.")
            return job

        try:
            self._run()
        except Exception as e:
            self._handle_error(e)
            raise
        return read_patch_job(self.conn, self.job_id) or {}

    def _run(self) -> None:
        job = self.job
        self._update(status="running", progress=0, current_step="Initializing", started_at=utcnow())
        self._log("info", f"Starting patch job {self.job_id}")

        self._load_context()
        self._progress(5, "Context loaded")

        plan = self.plan
        aggregator = KpiAggregator(self.conn, job["tenant_id"])
        start, end = job["range_start_month"], job["range_end_month"]

        self._log("info", "Taking KPI snapshot (before)")
        before = aggregator.query_monthly_kpis(start, end)
        self._update(before_kpis=[s.to_dict() for s in before])
        self._progress(15, "Before snapshot complete")

        self._log("info", "Computing deltas")
        deltas, blockers = compute_deltas(plan, before)
        if plan.mode == PatchMode.ADDITIVE and blockers:
            raise PatchBlockedError(blockers)
        self._progress(20, "Deltas computed")

        existing = count_job_records(self.conn, self.job_id)
        if existing > 0:
            self._log("warn", f"Idempotency detected: {existing} records already exist for this job")
        else:
            if plan.mode == PatchMode.RECONCILE:
                self._log("info", "Reconcile mode: executing deletions for negative deltas")
                self._reconcile_deletions(deltas)
                self._progress(40, "Deletions complete")
            self._log("info", "Executing patch (additions)")
            self._execute_additions(deltas)
        self._progress(80, "Patch execution complete")

        self._log("info", "Taking KPI snapshot (after)")
        after = aggregator.query_monthly_kpis(start, end)
        self._progress(90, "After snapshot complete")

        report: PatchDiffReport = compute_diff(before, after, deltas, self.tolerances)
        self._log("info", f"Patch completed. {self.metrics.records_created} records created.")
        if not report.overall_passed:
            self._log(
                "warn",
                f"KPI verification: {report.failed_metrics}/{report.total_metrics} metrics failed",
            )
        self._update(
            status="completed",
            progress=100,
            current_step="Complete",
            after_kpis=[s.to_dict() for s in after],
            diff_report=report.to_dict(),
            metrics=self.metrics.to_dict(),
            completed_at=utcnow(),
        )

    # --- Context ---

    def _load_context(self) -> None:
        tenant_id = self.job["tenant_id"]
        metadata = read_tenant_metadata(self.conn, tenant_id)
        if metadata is None:
            raise TenantNotFoundError("Tenant metadata not found")

        self.user_ids = read_active_user_ids(self.conn, tenant_id)
        if not self.user_ids:
            raise ValueError("No active users found for tenant")

        stages = read_stage_classes(self.conn, tenant_id)
        if not any(stages.values()):
            raise ValueError("No pipeline stages found for tenant")
        self.won_stage_ids = stages["won"]
        self.lost_stage_ids = stages["lost"]
        self.open_stage_ids = stages["open"]

        tenant = read_tenant(self.conn, tenant_id) or {}
        self.tenant_id = tenant_id
        self.currency = tenant.get("currency") or "USD"
        self.industry = metadata["industry"]
        self.template: IndustryTemplate = get_template(self.industry)
        self.rng = SeededRNG(self.job["seed"])
        self.loc: LocalizationProvider = get_provider(metadata["country"], self.rng.child("loc"))
        self.ids = SeededRNG(f"{self.job_id}-ids")

    # --- Reconcile deletions ---

    def _reconcile_deletions(self, deltas: list[PatchMonth]) -> None:
        for d in deltas:
            need = {k: max(0, -v) for k, v in d.metrics.items()}
            plan = {
                "activities": int(need.get("activities_created", 0)),
                "deals": int(need.get("deals_created", 0)),
                "contacts": int(need.get("contacts_created", 0)),
                "companies": int(need.get("companies_created", 0)),
                "closed_won_value": need.get("closed_won_value", 0),
                "closed_won_count": int(need.get("closed_won_count", 0)),
            }
            if not any(plan.values()):
                continue
            self._log("info", f"Reconcile {d.month}: deleting {plan}", {"month": d.month, **plan})

            for entity in DELETE_ORDER:
                if entity == "deals" and not plan["deals"]:
                    if plan["closed_won_value"] or plan["closed_won_count"]:
                        n = self._delete_won_deals_for_value(
                            d.month, plan["closed_won_value"], plan["closed_won_count"]
                        )
                        self.metrics.deleted("deals", n)
                    continue
                if plan[entity]:
                    n = self._delete_newest(entity, d.month, plan[entity])
                    self.metrics.deleted(entity, n)

    @staticmethod
    def _month_filter(alias: str) -> str:
        return (
            f"({alias}.demo_source_month = ? OR ({alias}.demo_source_month IS NULL "
            f"AND {alias}.created_at >= ? AND {alias}.created_at < ?))"
        )

    def _delete_newest(self, table: str, month: str, count: int) -> int:
        """Delete up to ``count`` of the month's newest demo records.

        Contacts still referenced by a deal or activity, and companies still
        referenced by a contact, deal or activity, are never selected.
        """
        start, end = month_range(month)
        guard = ""
        if table == "contacts":
            guard = (
                " AND NOT EXISTS (SELECT 1 FROM deals d WHERE d.contact_id = t.id AND d.tenant_id = t.tenant_id)"
                " AND NOT EXISTS (SELECT 1 FROM activities a WHERE a.contact_id = t.id AND a.tenant_id = t.tenant_id)"
            )
        elif table == "companies":
            guard = (
                " AND NOT EXISTS (SELECT 1 FROM contacts c WHERE c.company_id = t.id AND c.tenant_id = t.tenant_id)"
                " AND NOT EXISTS (SELECT 1 FROM deals d WHERE d.company_id = t.id AND d.tenant_id = t.tenant_id)"
                " AND NOT EXISTS (SELECT 1 FROM activities a WHERE a.company_id = t.id AND a.tenant_id = t.tenant_id)"
            )
        rows = self.conn.execute(
            f"""
            SELECT t.id FROM {table} t
            WHERE t.tenant_id = ? AND t.demo_generated
              AND {self._month_filter('t')}{guard}
            ORDER BY t.created_at DESC, t.id DESC
            LIMIT ?
            """,
            [self.tenant_id, month, start, end, count],
        ).fetchall()
        ids = [r[0] for r in rows]
        self._delete_ids(table, ids)
        if ids:
            self._log("info", f"Deleted {len(ids)} {table} for {month}")
        return len(ids)

    def _delete_won_deals_for_value(self, month: str, value: float, count: int) -> int:
        """Delete won deals, smallest first, until both reductions are met."""
        if not self.won_stage_ids:
            return 0
        start, end = month_range(month)
        rows = self.conn.execute(
            f"""
            SELECT t.id, CAST(t.value AS DOUBLE) FROM deals t
            WHERE t.tenant_id = ? AND t.demo_generated
              AND {self._month_filter('t')}
              AND list_contains(?, t.stage_id)
            ORDER BY t.value ASC, t.id
            """,
            [self.tenant_id, month, start, end, self.won_stage_ids],
        ).fetchall()

        ids: list[str] = []
        removed_value = 0.0
        for deal_id, deal_value in rows:
            if removed_value >= value and len(ids) >= count:
                break
            ids.append(deal_id)
            removed_value += deal_value or 0.0
        self._delete_ids("deals", ids)
        if ids:
            self._log("info", f"Deleted {len(ids)} won deals ({removed_value:,.2f}) for {month}")
        return len(ids)

    def _delete_ids(self, table: str, ids: list[str]) -> None:
        if not ids:
            return
        if table == "deals":
            # Surviving activities keep their contact but lose the deal link
            self.conn.execute(
                "UPDATE activities SET deal_id = NULL WHERE tenant_id = ? AND list_contains(?, deal_id)",
                [self.tenant_id, ids],
            )
        self.conn.execute(
            f"DELETE FROM {table} WHERE tenant_id = ? AND list_contains(?, id)",
            [self.tenant_id, ids],
        )

    # --- Additions ---

    def _execute_additions(self, deltas: list[PatchMonth]) -> None:
        total = len(deltas)
        for i, d in enumerate(deltas, start=1):
            self._log("info", f"Processing month {d.month}")
            self._add_month(d)
            self._progress(20 + round(i / total * 60), f"Processed {i}/{total} months")

    def _add_month(self, delta: PatchMonth) -> None:
        month = delta.month
        want = {k: max(0, v) for k, v in delta.metrics.items()}
        rng = self.rng.child(month)
        clock = MonthlyAllocator(rng.child("time"))

        won = int(want.get("closed_won_count", 0))
        deals = int(want.get("deals_created", 0))
        if won > deals:
            self._log("warn", f"{month}: creating {won} deals to cover {won} closed-won")
            deals = won
        contacts = int(want.get("contacts_created", 0))
        activities = int(want.get("activities_created", 0))
        if not activities and "activities_created" not in delta.metrics:
            activities = contacts * ACTIVITIES_PER_CONTACT

        counts = {
            "companies_created": int(want.get("companies_created", 0)),
            "contacts_created": contacts,
            "leads_created": min(int(want.get("leads_created", 0)), contacts),
            "deals_created": deals,
            "activities_created": activities,
        }
        if not any(counts.values()):
            return
        allocation = MonthlyAllocator(rng.child("alloc")).allocate_month(month, counts)
        days = allocation.business_days()

        companies = self._company_rows(rng, clock, days, month)
        contacts_rows = self._contact_rows(rng, clock, days, month, companies, counts["leads_created"])
        deal_rows = self._deal_rows(
            rng, clock, days, month, contacts_rows, companies,
            won, want.get("closed_won_value", 0.0), want.get("pipeline_added_value", 0.0),
        )
        activity_rows = self._activity_rows(rng, clock, days, month, contacts_rows)

        for entity, rows in (
            ("companies", companies),
            ("contacts", contacts_rows),
            ("deals", deal_rows),
            ("activities", activity_rows),
        ):
            for i in range(0, len(rows), INSERT_BATCH):
                insert_rows(self.conn, entity, rows[i : i + INSERT_BATCH])
            self.metrics.created(entity, len(rows))

    def _tags(self, month: str) -> dict[str, Any]:
        return {
            "demo_generated": True,
            "demo_job_id": self.job_id,
            "demo_source_month": month,
        }

    def _company_rows(self, rng, clock, days, month) -> list[dict[str, Any]]:
        rows = []
        for day in days:
            for _ in range(clock.records_for_day(day, "companies")):
                ts = clock.generate_timestamp(day.date)
                name = self.loc.company_name(self.industry)
                rows.append(
                    {
                        "id": self.ids.uuid(),
                        "tenant_id": self.tenant_id,
                        "name": name,
                        "domain": self.loc.company_domain(name),
                        "industry": self.template.name,
                        "owner_id": rng.pick(self.user_ids),
                        "city": self.loc.city(),
                        "country": self.loc.country_name,
                        **self._tags(month),
                        "created_at": ts,
                        "updated_at": ts,
                    }
                )
        return rows

    def _contact_rows(self, rng, clock, days, month, companies, leads) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        flags: list[bool] = []
        for day in days:
            count = clock.records_for_day(day, "contacts")
            day_leads = min(count, clock.records_for_day(day, "leads"))
            day_companies = [c for c in companies if c["created_at"].date() == day.date]
            for i in range(count):
                ts = clock.generate_timestamp(day.date)
                gender = "male" if rng.chance() else "female"
                first, last = self.loc.first_name(gender), self.loc.last_name()
                company = rng.pick(day_companies) if day_companies and rng.chance(0.7) else None
                rows.append(
                    {
                        "id": self.ids.uuid(),
                        "tenant_id": self.tenant_id,
                        "first_name": first,
                        "last_name": last,
                        "email": self.loc.email(first, last),
                        "phone": self.loc.phone(),
                        "status": None,
                        "company_id": company["id"] if company else None,
                        "owner_id": rng.pick(self.user_ids),
                        **self._tags(month),
                        "created_at": ts,
                        "updated_at": ts,
                    }
                )
                flags.append(i < day_leads)
        for row, lead in zip(rows, fix_lead_count(flags, leads)):
            row["status"] = "lead" if lead else rng.pick(("prospect", "customer"))
        return rows

    def _deal_rows(
        self, rng, clock, days, month, contacts, companies, won, won_value, pipeline_value
    ) -> list[dict[str, Any]]:
        total = sum(clock.records_for_day(day, "deals") for day in days)
        if not total:
            return []
        d = self.template.deals
        pool = ValueAllocator(rng.child("values")).allocate_pipeline_values(
            total,
            won,
            pipeline_value,
            won_value,
            ValueConstraints(d.min_value, d.max_value, d.avg_value, whale_ratio=PATCH_WHALE_RATIO),
        )
        roles = rng.shuffle(
            [("won", v) for v in pool.closed_won_values]
            + [("open", v) for v in pool.open_values]
            + [("lost", v) for v in pool.lost_values]
        )

        rows: list[dict[str, Any]] = []
        cursor = 0
        for day in days:
            for _ in range(clock.records_for_day(day, "deals")):
                if cursor >= len(roles):
                    break
                role, value = roles[cursor]
                cursor += 1
                stage_id, closed = self._stage_for(rng, role)
                ts = clock.generate_timestamp(day.date)
                contact = rng.pick(contacts) if contacts else None
                company = rng.pick(companies) if companies else None
                title = f"{contact['first_name']} {contact['last_name']}" if contact else "Deal"
                rows.append(
                    {
                        "id": self.ids.uuid(),
                        "tenant_id": self.tenant_id,
                        "name": f"{title} - {self.template.name}",
                        "value": round(value, 2),
                        "currency": self.currency,
                        "stage_id": stage_id,
                        "contact_id": contact["id"] if contact else None,
                        "company_id": company["id"] if company else None,
                        "owner_id": rng.pick(self.user_ids),
                        "expected_close_date": day.date + timedelta(days=rng.randint(7, 90)),
                        "closed_at": ts + timedelta(hours=rng.randint(1, 72)) if closed else None,
                        **self._tags(month),
                        "created_at": ts,
                        "updated_at": ts,
                    }
                )
        return rows

    def _stage_for(self, rng: SeededRNG, role: str) -> tuple[str, bool]:
        if role == "won" and self.won_stage_ids:
            return rng.pick(self.won_stage_ids), True
        if role == "lost" and self.lost_stage_ids:
            return rng.pick(self.lost_stage_ids), True
        if self.open_stage_ids:
            return rng.pick(self.open_stage_ids), False
        return rng.pick(self.lost_stage_ids or self.won_stage_ids), True

    def _activity_rows(self, rng, clock, days, month, contacts) -> list[dict[str, Any]]:
        rows = []
        for day in days:
            for _ in range(clock.records_for_day(day, "activities")):
                ts = clock.generate_timestamp(day.date)
                contact = rng.pick(contacts) if contacts else None
                kind = rng.pick(ACTIVITY_TYPES)
                completed = rng.chance(0.8)
                rows.append(
                    {
                        "id": self.ids.uuid(),
                        "tenant_id": self.tenant_id,
                        "type": kind,
                        "subject": rng.pick(ACTIVITY_SUBJECTS[kind]),
                        "contact_id": contact["id"] if contact else None,
                        "company_id": contact["company_id"] if contact else None,
                        "owner_id": rng.pick(self.user_ids),
                        "completed": completed,
                        "scheduled_at": ts,
                        "completed_at": ts if completed else None,
                        "duration_minutes": rng.randint(5, 35) if kind == "call" else None,
                        **self._tags(month),
                        "created_at": ts,
                        "updated_at": ts,
                    }
                )
        return rows
