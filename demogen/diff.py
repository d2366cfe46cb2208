"""Before/after KPI diffing for patch reporting.

A patch records a KPI snapshot of its month range before and after it
mutates anything. The diff checks, per metric the patch touched, that the
measured change matches the intended delta:

    |after - (before + delta)| <= tolerance

Count metrics use the absolute count tolerance; value metrics use the
relative value tolerance scaled by ``|delta|``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .models import MonthlyKpiSnapshot, PatchMonth, ToleranceConfig, is_value_metric

log = logging.getLogger(__name__)


@dataclass
class KpiDiffEntry:
    """One metric's movement across a patch."""

    metric: str
    before: float
    after: float
    delta: float  # after - before
    delta_percent: float
    target: float  # the intended delta
    passed: bool


@dataclass
class MonthlyKpiDiff:
    month: str
    entries: list[KpiDiffEntry]
    all_passed: bool


@dataclass
class PatchDiffReport:
    months: list[MonthlyKpiDiff] = field(default_factory=list)
    overall_passed: bool = True
    total_metrics: int = 0
    passed_metrics: int = 0
    failed_metrics: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatchDiffReport:
        return cls(
            months=[
                MonthlyKpiDiff(
                    month=m["month"],
                    entries=[KpiDiffEntry(**e) for e in m.get("entries") or []],
                    all_passed=m.get("all_passed", True),
                )
                for m in data.get("months") or []
            ],
            overall_passed=data.get("overall_passed", True),
            total_metrics=data.get("total_metrics", 0),
            passed_metrics=data.get("passed_metrics", 0),
            failed_metrics=data.get("failed_metrics", 0),
        )


def compute_diff(
    before: list[MonthlyKpiSnapshot],
    after: list[MonthlyKpiSnapshot],
    deltas: list[PatchMonth],
    tolerances: ToleranceConfig,
) -> PatchDiffReport:
    """Diff two snapshots against the deltas a patch meant to apply.

    Months with no after snapshot are skipped.
    """
    before_by = {s.month: s for s in before}
    after_by = {s.month: s for s in after}
    report = PatchDiffReport()

    for month_delta in deltas:
        a = after_by.get(month_delta.month)
        if a is None:
            continue
        b = before_by.get(month_delta.month)
        entries: list[KpiDiffEntry] = []

        for metric, intended in month_delta.metrics.items():
            before_value = b.get(metric) if b else 0
            after_value = a.get(metric)
            moved = after_value - before_value
            if before_value > 0:
                delta_percent = moved / before_value * 100
            else:
                delta_percent = 100.0 if after_value > 0 else 0.0

            miss = abs(after_value - (before_value + intended))
            if is_value_metric(metric):
                passed = miss <= abs(intended) * tolerances.value_tolerance + 1e-9
            else:
                passed = miss <= tolerances.count_tolerance

            entries.append(
                KpiDiffEntry(
                    metric=metric,
                    before=before_value,
                    after=after_value,
                    delta=round(moved, 2),
                    delta_percent=round(delta_percent, 2),
                    target=intended,
                    passed=passed,
                )
            )

        n_passed = sum(1 for e in entries if e.passed)
        report.total_metrics += len(entries)
        report.passed_metrics += n_passed
        report.failed_metrics += len(entries) - n_passed
        report.months.append(
            MonthlyKpiDiff(
                month=month_delta.month,
                entries=entries,
                all_passed=n_passed == len(entries),
            )
        )

    report.overall_passed = report.failed_metrics == 0
    return report


def _fmt_value(metric: str, value: float) -> str:
    if is_value_metric(metric):
        return f"{value:,.2f}"
    return f"{int(value)}"


def format_diff_report(report: PatchDiffReport) -> str:
    """Format a diff report for terminal display.

    Returns a multi-line string ready for click.echo(). Returns empty
    string if the report covers no months.
    """
    if not report.months:
        return ""

    lines: list[str] = []
    for m in report.months:
        lines.append(f"  {m.month}:")
        for e in m.entries:
            mark = "+" if e.passed else "!"
            moved = _fmt_value(e.metric, e.delta)
            if e.delta > 0:
                moved = "+" + moved
            lines.append(
                f"    {mark} {e.metric:<22s} "
                f"{_fmt_value(e.metric, e.before)} -> {_fmt_value(e.metric, e.after)}"
                f"  ({moved}, want {_fmt_value(e.metric, e.target)})"
            )

    status = "passed" if report.overall_passed else "FAILED"
    lines.append(
        f"  {report.passed_metrics}/{report.total_metrics} metrics {status}"
    )
    return "\n".join(lines)
