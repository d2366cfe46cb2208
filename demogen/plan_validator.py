"""Validation of explicit monthly plans before a generation job is created."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import MAX_PLAN_MONTHS, MONTH_RE, MonthlyPlan, MonthlyTarget, current_month

GROWTH_WARN_PCT = 200
DECLINE_WARN_PCT = -50
GROWTH_METRICS = ("contacts_created", "deals_created", "closed_won_value")
# Records the engine inserts per second, roughly
RECORDS_PER_SECOND = 100


@dataclass
class ValidationIssue:
    path: str
    message: str
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = {"path": self.path, "message": self.message}
        if self.suggestion:
            out["suggestion"] = self.suggestion
        return out


@dataclass
class DerivedMetrics:
    total_contacts: int = 0
    total_leads: int = 0
    total_companies: int = 0
    total_deals: int = 0
    total_closed_won_count: int = 0
    total_closed_won_value: float = 0.0
    total_pipeline_value: float = 0.0
    avg_deal_size: float = 0.0
    overall_win_rate: float = 0.0  # percent
    avg_monthly_growth: float = 0.0  # percent


@dataclass
class PlanValidationResult:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    derived: DerivedMetrics | None = None
    estimated_generation_seconds: int = 0

    def error_messages(self) -> list[str]:
        return [f"{e.path}: {e.message}" for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "derived": vars(self.derived) if self.derived else None,
            "estimated_generation_seconds": self.estimated_generation_seconds,
        }


def validate_plan(plan: MonthlyPlan, now: datetime | None = None) -> PlanValidationResult:
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if not plan.months:
        errors.append(
            ValidationIssue("months", "At least one month is required", "Add at least one month to the plan")
        )
        return PlanValidationResult(valid=False, errors=errors, warnings=warnings)

    if len(plan.months) > MAX_PLAN_MONTHS:
        errors.append(
            ValidationIssue(
                "months",
                f"Plan has {len(plan.months)} months, maximum is {MAX_PLAN_MONTHS}",
                f"Reduce the plan to {MAX_PLAN_MONTHS} months or less",
            )
        )

    this_month = current_month(now)
    prev = ""
    for i, month in enumerate(plan.months):
        _validate_month(month, i, this_month, prev, errors, warnings)
        prev = month.month

    _check_growth(plan.months, warnings)
    derived = derive_metrics(plan.months)
    records = derived.total_contacts + derived.total_companies + derived.total_deals

    return PlanValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        derived=derived,
        estimated_generation_seconds=math.ceil(records / RECORDS_PER_SECOND),
    )


def _validate_month(
    month: MonthlyTarget,
    index: int,
    this_month: str,
    prev: str,
    errors: list[ValidationIssue],
    warnings: list[ValidationIssue],
) -> None:
    base = f"months[{index}]"
    t = month.targets

    if not MONTH_RE.match(month.month):
        errors.append(
            ValidationIssue(f"{base}.month", f"Invalid month format: {month.month}", "Use YYYY-MM format (e.g., 2025-01)")
        )
    if month.month > this_month:
        errors.append(
            ValidationIssue(f"{base}.month", f"Month {month.month} is in the future", "Use a month that is not in the future")
        )
    if prev and month.month <= prev:
        errors.append(
            ValidationIssue(
                f"{base}.month",
                "Months must be in chronological order",
                f"{month.month} should come after {prev}",
            )
        )

    for key, value in t.to_dict().items():
        if value < 0:
            errors.append(
                ValidationIssue(f"{base}.targets.{key}", f"{key} cannot be negative", "Use 0 or a positive number")
            )

    if t.leads_created > t.contacts_created:
        errors.append(
            ValidationIssue(
                f"{base}.targets.leads_created",
                f"Leads ({t.leads_created}) cannot exceed contacts ({t.contacts_created})",
                "Leads are a subset of contacts. Increase contacts or decrease leads.",
            )
        )
    if t.closed_won_count > t.deals_created:
        errors.append(
            ValidationIssue(
                f"{base}.targets.closed_won_count",
                f"Closed won count ({t.closed_won_count}) cannot exceed deals created ({t.deals_created})",
                "Increase deals created or decrease closed won count.",
            )
        )
    if t.closed_won_value > 0 and t.closed_won_count == 0:
        errors.append(
            ValidationIssue(
                f"{base}.targets.closed_won_value",
                "Cannot have closed won value without closed won deals",
                "Set closed_won_count > 0 or closed_won_value = 0",
            )
        )

    if 0 < t.pipeline_added_value < t.closed_won_value:
        warnings.append(
            ValidationIssue(
                f"{base}.targets.pipeline_added_value",
                f"Pipeline added value ({t.pipeline_added_value}) is less than closed won value "
                f"({t.closed_won_value}). This is unusual unless deals from previous months are closing.",
            )
        )
    if t.contacts_created + t.deals_created == 0:
        warnings.append(
            ValidationIssue(
                base,
                f"Month {month.month} has no contacts or deals. Consider removing this month or adding some activity.",
            )
        )

    o = month.overrides
    if o is None:
        return
    if o.avg_deal_size is not None and t.closed_won_count > 0 and t.closed_won_value > 0:
        implied = o.avg_deal_size * t.closed_won_count
        if abs(implied - t.closed_won_value) / t.closed_won_value > 0.1:
            warnings.append(
                ValidationIssue(
                    f"{base}.overrides.avg_deal_size",
                    f"avg_deal_size override implies {implied:.2f} total, but closed_won_value is "
                    f"{t.closed_won_value}. Consider adjusting.",
                )
            )
    if o.win_rate is not None and t.deals_created > 0:
        implied_won = round(t.deals_created * o.win_rate / 100)
        if abs(implied_won - t.closed_won_count) > 2:
            warnings.append(
                ValidationIssue(
                    f"{base}.overrides.win_rate",
                    f"win_rate override of {o.win_rate}% implies ~{implied_won} won deals, but "
                    f"closed_won_count is {t.closed_won_count}.",
                )
            )


def _check_growth(months: list[MonthlyTarget], warnings: list[ValidationIssue]) -> None:
    for i in range(1, len(months)):
        prev, curr = months[i - 1], months[i]
        for metric in GROWTH_METRICS:
            prev_val = prev.targets.get(metric)
            curr_val = curr.targets.get(metric)
            if prev_val <= 0:
                continue
            growth = (curr_val - prev_val) / prev_val * 100
            path = f"months[{i}].targets.{metric}"
            if growth > GROWTH_WARN_PCT:
                warnings.append(
                    ValidationIssue(
                        path,
                        f"{metric} shows {growth:.0f}% growth from {prev.month} to {curr.month}. "
                        "This is unusually high.",
                    )
                )
            if growth < DECLINE_WARN_PCT:
                warnings.append(
                    ValidationIssue(
                        path,
                        f"{metric} shows {abs(growth):.0f}% decline from {prev.month} to {curr.month}. "
                        "Ensure this is intentional.",
                    )
                )


def derive_metrics(months: list[MonthlyTarget]) -> DerivedMetrics:
    d = DerivedMetrics()
    for m in months:
        t = m.targets
        d.total_contacts += t.contacts_created
        d.total_leads += t.leads_created
        d.total_companies += t.companies_created
        d.total_deals += t.deals_created
        d.total_closed_won_count += t.closed_won_count
        d.total_closed_won_value += t.closed_won_value
        d.total_pipeline_value += t.pipeline_added_value

    if d.total_closed_won_count:
        d.avg_deal_size = d.total_closed_won_value / d.total_closed_won_count
    if d.total_deals:
        d.overall_win_rate = d.total_closed_won_count / d.total_deals * 100

    rates = []
    for prev, curr in zip(months, months[1:]):
        if prev.targets.contacts_created > 0:
            p = prev.targets.contacts_created
            rates.append((curr.targets.contacts_created - p) / p * 100)
    if rates:
        d.avg_monthly_growth = sum(rates) / len(rates)
    return d
