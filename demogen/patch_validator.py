"""Patch plan validation, delta computation and previews.

Everything here runs before a patch job exists; a plan that fails here
never mutates anything.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any

import duckdb

from .models import (
    COUNT_METRICS,
    MAX_PLAN_MONTHS,
    MONTH_RE,
    OVERRIDE_METRICS,
    MonthlyKpiSnapshot,
    PatchMode,
    PatchMonth,
    PatchPlan,
    PatchPlanType,
    current_month,
)
from .plan_validator import RECORDS_PER_SECOND
from .store import read_tenant_metadata

GROWTH_WARN_PCT = 200
GROWTH_METRICS = ("contacts_created", "deals_created")
LARGE_PATCH_RECORDS = 10000
# Activities estimated per contact when a delta names none
ACTIVITIES_PER_CONTACT = 2


@dataclass
class TenantValidation:
    valid: bool
    error: str | None = None
    start_date: date | None = None


@dataclass
class PatchValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EstimatedRecords:
    contacts: int = 0
    companies: int = 0
    deals: int = 0
    activities: int = 0

    @property
    def total(self) -> int:
        return self.contacts + self.companies + self.deals + self.activities


@dataclass
class PatchPreview:
    computed_deltas: list[PatchMonth]
    estimated_records: EstimatedRecords
    estimated_deletions: EstimatedRecords
    warnings: list[str]
    blockers: list[str]
    feasible: bool
    estimated_duration_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _month_label(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def validate_demo_tenant(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> TenantValidation:
    """Only tenants the generator created may be patched."""
    metadata = read_tenant_metadata(conn, tenant_id)
    if metadata is None:
        return TenantValidation(
            valid=False,
            error="Tenant is not a demo-generated tenant. Only demo tenants can be patched.",
        )
    if not metadata.get("is_demo_generated"):
        return TenantValidation(valid=False, error="Tenant is marked as non-demo. Cannot patch.")
    return TenantValidation(valid=True, start_date=metadata.get("start_date"))


def validate_patch_plan(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    plan: PatchPlan,
    current_kpis: list[MonthlyKpiSnapshot],
    now: datetime | None = None,
) -> PatchValidation:
    tenant = validate_demo_tenant(conn, tenant_id)
    if not tenant.valid:
        return PatchValidation(valid=False, errors=[tenant.error or "Invalid tenant"])

    errors: list[str] = []
    warnings: list[str] = []

    if not plan.months:
        errors.append("At least one month must be specified in the patch plan.")
    if len(plan.months) > MAX_PLAN_MONTHS:
        errors.append(f"Patch plan cannot span more than {MAX_PLAN_MONTHS} months.")

    seen: set[str] = set()
    for m in plan.months:
        if m.month in seen:
            errors.append(f"Duplicate month in plan: {m.month}")
        seen.add(m.month)

    this_month = current_month(now)
    start_month = _month_label(tenant.start_date) if tenant.start_date else None
    current_by = {k.month: k for k in current_kpis}

    for m in plan.months:
        if not MONTH_RE.match(m.month):
            errors.append(f"Invalid month format: {m.month}. Expected YYYY-MM.")
            continue
        if m.month > this_month:
            errors.append(f"Month {m.month} is in the future. Cannot patch future months.")
        if start_month and m.month < start_month:
            errors.append(
                f"Month {m.month} is before tenant creation date. "
                f"Tenant was created in {start_month}."
            )
        errors.extend(_logical_errors(m))

        if plan.mode == PatchMode.ADDITIVE:
            for key, value in m.metrics.items():
                if value < 0:
                    errors.append(f"{m.month}: {key} cannot be negative ({value}) in ADDITIVE mode.")
            if plan.plan_type == PatchPlanType.TARGETS and m.month in current_by:
                current = current_by[m.month]
                for key, target in m.metrics.items():
                    have = current.get(key)
                    if target - have < 0:
                        errors.append(
                            f"{m.month}: Cannot reduce {key} from {_fmt(key, have)} to "
                            f"{_fmt(key, target)} in ADDITIVE mode. Use RECONCILE mode or increase target."
                        )

        if plan.mode == PatchMode.METRICS_ONLY:
            ignored = sorted(k for k in m.metrics if k not in OVERRIDE_METRICS)
            if ignored:
                warnings.append(
                    f"{m.month}: {', '.join(ignored)} cannot be overridden and will be ignored "
                    "in METRICS-ONLY mode."
                )

    warnings.extend(_growth_warnings(plan))
    return PatchValidation(valid=not errors, errors=errors, warnings=warnings)


def _fmt(metric: str, value: float) -> str:
    return str(int(value)) if metric in COUNT_METRICS else f"{value:g}"


def _logical_errors(m: PatchMonth) -> list[str]:
    x = m.metrics
    errors: list[str] = []
    if "closed_won_count" in x and "deals_created" in x and x["closed_won_count"] > x["deals_created"]:
        errors.append(
            f"{m.month}: closed_won_count ({x['closed_won_count']}) cannot exceed "
            f"deals_created ({x['deals_created']})."
        )
    if "leads_created" in x and "contacts_created" in x and x["leads_created"] > x["contacts_created"]:
        errors.append(
            f"{m.month}: leads_created ({x['leads_created']}) cannot exceed "
            f"contacts_created ({x['contacts_created']})."
        )
    if x.get("closed_won_value", 0) > 0 and not x.get("closed_won_count"):
        errors.append(
            f"{m.month}: closed_won_value ({x['closed_won_value']}) requires closed_won_count > 0."
        )
    return errors


def _growth_warnings(plan: PatchPlan) -> list[str]:
    warnings: list[str] = []
    ordered = sorted(plan.months, key=lambda m: m.month)
    for prev, curr in zip(ordered, ordered[1:]):
        for metric in GROWTH_METRICS:
            p = prev.metrics.get(metric, 0)
            c = curr.metrics.get(metric, 0)
            if p > 0 and c > 0:
                growth = (c - p) / p * 100
                if growth > GROWTH_WARN_PCT:
                    warnings.append(
                        f"{curr.month}: {metric} growth rate ({growth:.0f}%) is unusually high "
                        f"compared to {prev.month}."
                    )
    return warnings


def compute_deltas(
    plan: PatchPlan, current_kpis: list[MonthlyKpiSnapshot]
) -> tuple[list[PatchMonth], list[str]]:
    """Per-month deltas the plan asks for, and any additive-mode blockers.

    ``targets`` plans subtract the current value; ``deltas`` plans are used
    as given. A blocked metric gets a zero delta.
    """
    current_by = {k.month: k for k in current_kpis}
    deltas: list[PatchMonth] = []
    blockers: list[str] = []

    for m in plan.months:
        current = current_by.get(m.month)
        out: dict[str, float] = {}
        for metric, value in m.metrics.items():
            have = current.get(metric) if current else 0
            if plan.plan_type == PatchPlanType.TARGETS:
                delta = value - have
                if plan.mode == PatchMode.ADDITIVE and delta < 0:
                    blockers.append(
                        f"{m.month}: Cannot reduce {metric} from {_fmt(metric, have)} to "
                        f"{_fmt(metric, value)} in ADDITIVE mode."
                    )
                    delta = 0
            else:
                delta = value
                if plan.mode == PatchMode.ADDITIVE and delta < 0:
                    blockers.append(
                        f"{m.month}: Negative delta ({_fmt(metric, value)}) for {metric} "
                        "not allowed in ADDITIVE mode."
                    )
                    delta = 0
            out[metric] = int(delta) if metric in COUNT_METRICS else round(delta, 2)
        deltas.append(PatchMonth(month=m.month, metrics=out))

    return deltas, blockers


def generate_preview(
    plan: PatchPlan,
    current_kpis: list[MonthlyKpiSnapshot],
    deltas: list[PatchMonth] | None = None,
) -> PatchPreview:
    """Estimate what applying the plan would create and delete."""
    blockers: list[str] = []
    if deltas is None:
        deltas, blockers = compute_deltas(plan, current_kpis)
    warnings: list[str] = []
    create = EstimatedRecords()
    delete = EstimatedRecords()

    if plan.mode == PatchMode.METRICS_ONLY:
        # Overrides only; no records move
        deltas = [
            PatchMonth(d.month, {k: v for k, v in d.metrics.items() if k in OVERRIDE_METRICS})
            for d in deltas
        ]
    else:
        for d in deltas:
            x = d.metrics
            for kind, metric in (
                ("contacts", "contacts_created"),
                ("companies", "companies_created"),
                ("deals", "deals_created"),
            ):
                n = int(x.get(metric, 0))
                if n > 0:
                    setattr(create, kind, getattr(create, kind) + n)
                elif n < 0:
                    setattr(delete, kind, getattr(delete, kind) - n)

            contacts = int(x.get("contacts_created", 0))
            activities = int(x.get("activities_created", 0))
            if activities > 0:
                create.activities += activities
            elif activities < 0:
                delete.activities -= activities
            elif contacts > 0:
                create.activities += contacts * ACTIVITIES_PER_CONTACT

        if create.total == 0 and delete.total == 0:
            warnings.append(
                "This patch will not create or delete any records. All metrics are already at target levels."
            )
        if create.total > LARGE_PATCH_RECORDS:
            warnings.append(
                f"Large patch: {create.total} records will be created. This may take several minutes."
            )
        if delete.total > 0:
            warnings.append(
                f"Reconcile mode: {delete.total} demo-generated records will be deleted."
            )

    touched = create.total + delete.total
    return PatchPreview(
        computed_deltas=deltas,
        estimated_records=create,
        estimated_deletions=delete,
        warnings=warnings,
        blockers=blockers,
        feasible=not blockers,
        estimated_duration_seconds=math.ceil(touched / RECORDS_PER_SECOND),
    )
