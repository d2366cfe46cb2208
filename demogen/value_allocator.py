"""Monetary value allocation with exact totals.

Generates N deal values that look like real pipeline data (log-normal body,
occasional whales) and then adjusts them so they sum to a target total to
the cent. Used by both the generator (per-month deal pools) and the patch
engine (new deals for a month delta).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from .rng import SeededRNG

# Whole-set error below this fraction of the target is absorbed by one value
SMALL_DIFF_RATIO = 0.01
CENT = 0.01
# Share of non-won deals that stay open (the rest are lost)
OPEN_DEAL_SHARE = 0.6


@dataclass
class ValueConstraints:
    min_value: float
    max_value: float
    avg_value: float
    whale_ratio: float = 0.05  # probability, 0..1


@dataclass
class AllocationResult:
    values: list[float] = field(default_factory=list)
    sum: float = 0.0
    avg_value: float = 0.0
    min_value: float = 0.0
    max_value: float = 0.0


@dataclass
class PipelineValues:
    closed_won_values: list[float]
    open_values: list[float]
    lost_values: list[float]

    @property
    def pipeline_values(self) -> list[float]:
        """Values of every non-won deal (open first, then lost)."""
        return self.open_values + self.lost_values


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


class ValueAllocator:
    def __init__(self, rng: SeededRNG):
        self.rng = rng

    def allocate_values(
        self, count: int, target_total: float, constraints: ValueConstraints
    ) -> AllocationResult:
        """Produce ``count`` values summing to ``target_total`` (2-dp rounding)."""
        if count <= 0 or target_total <= 0:
            return AllocationResult()

        c = constraints
        target_avg = target_total / count
        values: list[float] = []

        for _ in range(count):
            if self.rng.chance(c.whale_ratio):
                lo = max(c.avg_value * 1.5, target_avg * 1.5)
                # Keep the whale floor inside the configured range
                lo = _clamp(lo, c.min_value, c.max_value)
                values.append(self.rng.uniform(lo, c.max_value))
            else:
                value = self.rng.log_normal(math.log(target_avg), 0.4)
                values.append(_clamp(value, c.min_value, c.max_value * 0.8))

        values = self._adjust_to_target(values, target_total, c)
        total = sum(values)
        return AllocationResult(
            values=values,
            sum=round(total, 2),
            avg_value=total / len(values),
            min_value=min(values),
            max_value=max(values),
        )

    def _adjust_to_target(
        self, values: list[float], target: float, c: ValueConstraints
    ) -> list[float]:
        values = [round(v, 2) for v in values]
        n = len(values)
        diff = target - sum(values)

        if abs(diff) < target * SMALL_DIFF_RATIO:
            idx = n - 1
            if values[idx] + diff < CENT:
                idx = values.index(max(values))
            values[idx] = round(values[idx] + diff, 2)
            return values

        # Rescale everything but the last value, which takes the remainder
        scale = target / sum(values)
        others = values[:-1]
        scaled = [round(_clamp(v * scale, c.min_value, c.max_value), 2) for v in others]
        last = target - sum(others) * scale
        values = scaled + [round(last, 2)]

        remaining = target - sum(values)
        if abs(remaining) > CENT:
            step = abs(diff / n) * 2
            for _ in range(n):
                if abs(remaining) <= CENT:
                    break
                idx = self.rng.randint(0, n - 1)
                adjustment = math.copysign(min(abs(remaining), step), remaining)
                candidate = round(values[idx] + adjustment, 2)
                if c.min_value <= candidate <= c.max_value:
                    values[idx] = candidate
                    remaining = target - sum(values)

        if abs(remaining) > CENT / 2:
            idx = values.index(max(values))
            values[idx] = round(values[idx] + remaining, 2)

        return values

    def allocate_pipeline_values(
        self,
        total_deals: int,
        closed_won_count: int,
        pipeline_value: float,
        closed_won_value: float,
        constraints: ValueConstraints,
    ) -> PipelineValues:
        """Split one month's deals into closed-won, open and lost value pools.

        Closed-won values sum to ``closed_won_value``; open values sum to the
        pipeline left after closed-won; lost values are drawn without a sum
        constraint. When there is no pipeline left to spread, every non-won
        deal is lost. Closed-won deals with no value to share are worth zero,
        so the pools always hold one entry per deal.
        """
        won = self.allocate_values(closed_won_count, closed_won_value, constraints)
        won_values = won.values or [0.0] * max(0, closed_won_count)

        remaining_deals = max(0, total_deals - closed_won_count)
        remaining_pipeline = max(0.0, pipeline_value - closed_won_value)
        open_count = math.ceil(remaining_deals * OPEN_DEAL_SHARE)
        open_ = self.allocate_values(open_count, remaining_pipeline, constraints)

        lost_count = remaining_deals - len(open_.values)
        lost = [
            round(self.rng.uniform(constraints.min_value, constraints.avg_value), 2)
            for _ in range(lost_count)
        ]
        return PipelineValues(
            closed_won_values=won_values,
            open_values=open_.values,
            lost_values=lost,
        )

    def generate_single_value(self, constraints: ValueConstraints) -> float:
        c = constraints
        if self.rng.chance(c.whale_ratio):
            lo = _clamp(c.avg_value * 2, c.min_value, c.max_value)
            return round(self.rng.uniform(lo, c.max_value), 2)
        value = self.rng.log_normal(math.log(c.avg_value), 0.4)
        return round(_clamp(value, c.min_value, c.max_value), 2)
