"""Growth-curve planning: one aggregate target set spread over months.

The months run from the config's start date up to and including the
current month. Each month gets a weight from the growth curve (optionally
scaled by a seasonal multiplier), weights are normalized, and every target
is split by weight. ``to_monthly_targets`` turns the result into the same
``MonthlyTarget`` list an explicit monthly plan carries, so both modes go
through the one generation state machine.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime

from .errors import PlanValidationError
from .models import (
    MAX_PLAN_MONTHS,
    GenerationConfig,
    MonthlyMetricTargets,
    MonthlyTarget,
    utcnow,
)
from .templates import IndustryTemplate

# Multiplier per calendar month (1 = January)
SEASONAL_MULTIPLIERS = {
    1: 0.9,
    2: 0.95,
    3: 1.05,
    4: 1.0,
    5: 1.0,
    6: 1.1,
    7: 0.85,
    8: 0.85,
    9: 1.1,
    10: 1.05,
    11: 1.0,
    12: 0.9,
}

CURVES = ("linear", "exponential", "logistic", "step", "flat")


@dataclass
class GrowthTargets:
    leads: int
    contacts: int
    companies: int
    deals: int
    pipeline_value: float
    closed_won_value: float


@dataclass
class MonthPlan:
    year: int
    month: int  # 1..12
    targets: GrowthTargets | None = None

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def curve_weights(n: int, curve: str, rate: float) -> list[float]:
    """Unnormalized weight per month index for a growth curve."""
    if curve == "linear":
        return [1 + i * rate / 100 for i in range(n)]
    if curve == "exponential":
        return [(1 + rate / 100) ** i for i in range(n)]
    if curve == "logistic":
        midpoint = n / 2
        steepness = n / 6
        return [1 / (1 + math.exp(-(i - midpoint) / steepness)) for i in range(n)]
    if curve == "step":
        return [float(i // 3 + 1) for i in range(n)]
    return [1.0] * n


class GrowthPlanner:
    def __init__(self, config: GenerationConfig, now: date | datetime | None = None):
        if config.start_date is None:
            raise PlanValidationError(["start_date is required for growth-curve mode"])
        self.config = config
        self.start = _as_date(config.start_date)
        self.end = _as_date(now) if now is not None else utcnow().date()
        if self.start > self.end:
            raise PlanValidationError(["Start date cannot be in the future"])
        self.months = self._calculate_months()

    def _calculate_months(self) -> list[MonthPlan]:
        months: list[MonthPlan] = []
        year, month = self.start.year, self.start.month
        while (year, month) <= (self.end.year, self.end.month):
            months.append(MonthPlan(year=year, month=month))
            month += 1
            if month > 12:
                month, year = 1, year + 1
        return months

    def month_count(self) -> int:
        return len(self.months)

    def plan(self) -> list[MonthPlan]:
        """Monthly targets for every month in range."""
        n = len(self.months)
        if n == 0:
            return []

        growth = self.config.growth
        weights = curve_weights(n, growth.curve, growth.monthly_rate)
        if growth.seasonality:
            weights = [
                w * SEASONAL_MULTIPLIERS.get(m.month, 1.0)
                for w, m in zip(weights, self.months)
            ]
        total = sum(weights)
        normalized = [w / total for w in weights]

        t = self.config.targets
        planned: list[MonthPlan] = []
        for m, w in zip(self.months, normalized):
            leads = max(1, round(t.leads * w))
            contacts = max(1, round(t.contacts * w))
            planned.append(
                MonthPlan(
                    year=m.year,
                    month=m.month,
                    targets=GrowthTargets(
                        # Leads are a subset of contacts
                        leads=min(leads, contacts),
                        contacts=contacts,
                        companies=max(1, round(t.companies * w)),
                        deals=max(1, round(t.closed_won_count * w)),
                        pipeline_value=t.pipeline_value * w,
                        closed_won_value=t.closed_won_value * w,
                    ),
                )
            )
        return planned

    def preview(self) -> list[dict[str, float]]:
        return [
            {
                "month": m.label,
                "leads": m.targets.leads,
                "contacts": m.targets.contacts,
                "deals": m.targets.deals,
                "pipeline_value": round(m.targets.pipeline_value),
                "closed_won_value": round(m.targets.closed_won_value),
            }
            for m in self.plan()
        ]

    def estimate_generation_time(self) -> int:
        """Rough wall-clock seconds for the whole build."""
        t = self.config.targets
        total = (
            t.leads
            + t.contacts
            + t.companies
            + t.closed_won_count
            + t.leads * 2
            + self.config.team_size
        )
        return max(5, math.ceil(total / 10000 * 1.5))

    def validate(self) -> tuple[bool, list[str]]:
        errors: list[str] = []
        n = len(self.months)
        t = self.config.targets

        if n == 0:
            errors.append("No months in the plan range")
        if n > MAX_PLAN_MONTHS:
            errors.append(f"Maximum {MAX_PLAN_MONTHS} months supported")
        if self.config.growth.curve not in CURVES:
            errors.append(f"Unknown growth curve: {self.config.growth.curve}")
        if t.leads < n:
            errors.append("Leads count too low for number of months")
        if t.leads > t.contacts:
            errors.append("Leads cannot exceed contacts - leads are a subset of contacts")
        if t.closed_won_value > t.pipeline_value:
            errors.append("Closed won value cannot exceed pipeline value")
        return not errors, errors

    def to_monthly_targets(self, template: IndustryTemplate) -> list[MonthlyTarget]:
        """Growth plan as explicit monthly targets.

        Planned deals become the closed-won count; deals created is scaled
        up by the template win rate so the won share looks realistic.
        """
        win_rate = template.deals.win_rate or 1.0
        out: list[MonthlyTarget] = []
        for m in self.plan():
            t = m.targets
            won = t.deals
            out.append(
                MonthlyTarget(
                    month=m.label,
                    targets=MonthlyMetricTargets(
                        leads_created=t.leads,
                        contacts_created=t.contacts,
                        companies_created=t.companies,
                        deals_created=max(won, round(won / win_rate)),
                        closed_won_count=won,
                        closed_won_value=round(t.closed_won_value, 2),
                        pipeline_added_value=round(t.pipeline_value, 2),
                    ),
                )
            )
        return out
