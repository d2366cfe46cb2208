"""Spread monthly targets across business days.

Every month is broken into calendar days. Weekdays carry a weight (Tuesday
to Thursday are the busiest, Friday the quietest) and weekends carry none,
so nothing is ever placed on a Saturday or Sunday.

- Count metrics get a weighted share per day, jittered by up to 30 %,
  then nudged one unit at a time until the month total is exact.
- Value metrics get a jittered weighted share per day and the last business
  day absorbs the exact remainder.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from .models import VALUE_METRICS, MonthlyTarget
from .rng import SeededRNG

# Monday=0 .. Sunday=6
WEEKDAY_WEIGHTS = {0: 0.8, 1: 1.2, 2: 1.2, 3: 1.2, 4: 0.6, 5: 0.0, 6: 0.0}

COUNT_JITTER = 0.3
VALUE_JITTER = 0.2

# Metric that sizes each record kind
RECORD_METRICS = {
    "contacts": "contacts_created",
    "leads": "leads_created",
    "companies": "companies_created",
    "deals": "deals_created",
    "activities": "activities_created",
}


@dataclass
class DayAllocation:
    date: date
    is_business_day: bool
    metrics: dict[str, float] = field(default_factory=dict)


@dataclass
class MonthAllocation:
    month: str
    start_date: date
    end_date: date
    total_business_days: int
    days: list[DayAllocation]
    targets: dict[str, float]

    def business_days(self) -> list[DayAllocation]:
        return [d for d in self.days if d.is_business_day]

    def total(self, metric: str) -> float:
        return sum(d.metrics.get(metric, 0) for d in self.days)


@dataclass
class AllocationPlan:
    months: list[MonthAllocation]
    total_records: int


def month_bounds(month: str) -> tuple[date, date]:
    """First and last calendar day of a YYYY-MM month."""
    year, mon = (int(p) for p in month.split("-"))
    last = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1), date(year, mon, last)


def month_range(month: str) -> tuple[datetime, datetime]:
    """UTC [start, next month start) window for a YYYY-MM month."""
    first, last = month_bounds(month)
    start = datetime(first.year, first.month, 1)
    end = datetime.combine(last + timedelta(days=1), datetime.min.time())
    return start, end


def is_business_day(day: date) -> bool:
    return WEEKDAY_WEIGHTS[day.weekday()] > 0


class MonthlyAllocator:
    def __init__(self, rng: SeededRNG):
        self.rng = rng

    def create_allocation_plan(self, months: Iterable[MonthlyTarget]) -> AllocationPlan:
        allocations = [self.allocate_month(m.month, m.targets.to_dict()) for m in months]
        total = 0
        for a in allocations:
            total += int(
                a.targets.get("contacts_created", 0)
                + a.targets.get("companies_created", 0)
                + a.targets.get("deals_created", 0)
            )
        return AllocationPlan(months=allocations, total_records=total)

    def allocate_month(self, month: str, targets: dict[str, float]) -> MonthAllocation:
        """Allocate every metric in ``targets`` across the month's days."""
        first, last = month_bounds(month)
        days = [
            DayAllocation(date=first + timedelta(days=i), is_business_day=False)
            for i in range((last - first).days + 1)
        ]
        for d in days:
            d.is_business_day = is_business_day(d.date)

        business = [d for d in days if d.is_business_day]
        if not business:
            # Degenerate calendar: keep everything on the first day
            days[0].is_business_day = True
            business = [days[0]]

        weights = [WEEKDAY_WEIGHTS[d.date.weekday()] or 1.0 for d in business]

        for metric, target in targets.items():
            if metric in VALUE_METRICS:
                shares = self._allocate_value(float(target), weights)
            else:
                shares = self._allocate_count(int(round(target)), weights)
            for d, share in zip(business, shares):
                d.metrics[metric] = share

        return MonthAllocation(
            month=month,
            start_date=first,
            end_date=last,
            total_business_days=len(business),
            days=days,
            targets=dict(targets),
        )

    def _allocate_count(self, total: int, weights: list[float]) -> list[int]:
        if total <= 0:
            return [0] * len(weights)

        total_w = sum(weights)
        counts: list[int] = []
        for w in weights:
            ideal = w / total_w * total
            jitter = self.rng.uniform(-COUNT_JITTER, COUNT_JITTER) * ideal
            counts.append(max(0, round(ideal + jitter)))

        remaining = total - sum(counts)
        while remaining != 0:
            idx = self.rng.randint(0, len(counts) - 1)
            if remaining > 0:
                counts[idx] += 1
                remaining -= 1
            elif counts[idx] > 0:
                counts[idx] -= 1
                remaining += 1
        return counts

    def _allocate_value(self, total: float, weights: list[float]) -> list[float]:
        if total <= 0:
            return [0.0] * len(weights)

        total_w = sum(weights)
        ideals = [w / total_w * total for w in weights]
        values = [
            ideal + self.rng.uniform(-VALUE_JITTER, VALUE_JITTER) * ideal
            for ideal in ideals[:-1]
        ]

        allocated = sum(values)
        if allocated > total - ideals[-1] * (1 - VALUE_JITTER) and allocated > 0:
            # Jitter overshot; shrink the leading days so the last stays positive
            factor = (total - ideals[-1]) / allocated
            values = [v * factor for v in values]

        values.append(max(0.0, total - sum(values)))
        return values

    # --- Records and timestamps ---

    def records_for_day(self, day: DayAllocation, kind: str) -> int:
        """Number of records of ``kind`` (contacts, deals, ...) for a day."""
        if not day.is_business_day:
            return 0
        return int(round(day.metrics.get(RECORD_METRICS[kind], 0)))

    def generate_business_hour(self) -> int:
        """Hour of day biased toward core hours (10-16)."""
        if self.rng.chance(0.8):
            return self.rng.randint(10, 16)
        return 9 if self.rng.chance(0.5) else self.rng.randint(17, 18)

    def generate_timestamp(self, day: date) -> datetime:
        return datetime(
            day.year,
            day.month,
            day.day,
            self.generate_business_hour(),
            self.rng.randint(0, 59),
            self.rng.randint(0, 59),
        )

    def flatten_to_records(
        self, plan: AllocationPlan, kind: str
    ) -> list[tuple[date, str]]:
        """One (day, month) entry per record of ``kind`` across the plan."""
        out: list[tuple[date, str]] = []
        for month in plan.months:
            for day in month.days:
                out.extend([(day.date, month.month)] * self.records_for_day(day, kind))
        return out
