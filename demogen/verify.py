"""Verification of generated tenants against their monthly plan.

Count metrics pass when ``|actual - target| <= count_tolerance``. Value
metrics pass when ``|actual - target| <= value_tolerance * target``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .models import PLAN_METRICS, MonthlyKpiSnapshot, MonthlyPlan, ToleranceConfig, is_value_metric, utcnow

log = logging.getLogger(__name__)


@dataclass
class MetricVerification:
    metric: str
    target: float
    actual: float
    diff: float
    diff_percent: float
    passed: bool
    tolerance: float


@dataclass
class MonthVerification:
    month: str
    metrics: list[MetricVerification]
    passed: bool


@dataclass
class VerificationReport:
    job_id: str
    tenant_id: str
    generated_at: str
    overall_passed: bool
    total_metrics: int
    passed_metrics: int
    failed_metrics: int
    months: list[MonthVerification] = field(default_factory=list)
    tolerances: ToleranceConfig = field(default_factory=ToleranceConfig)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def verify_metric(
    metric: str, target: float, actual: float, tolerances: ToleranceConfig
) -> MetricVerification:
    diff = actual - target
    if target > 0:
        diff_percent = diff / target * 100
    else:
        diff_percent = 100.0 if actual > 0 else 0.0

    if is_value_metric(metric):
        tolerance = tolerances.value_tolerance
        allowed = tolerance * target
    else:
        tolerance = tolerances.count_tolerance
        allowed = tolerance

    return MetricVerification(
        metric=metric,
        target=target,
        actual=actual,
        diff=round(diff, 2),
        diff_percent=round(diff_percent, 2),
        passed=abs(diff) <= allowed + 1e-9,
        tolerance=tolerance,
    )


def build_verification_report(
    job_id: str,
    tenant_id: str,
    plan: MonthlyPlan,
    actuals: list[MonthlyKpiSnapshot],
    tolerances: ToleranceConfig | None = None,
) -> VerificationReport:
    """Compare every planned month against the measured snapshot for it.

    Months missing from ``actuals`` are measured as all zeros.
    """
    tolerances = tolerances or plan.tolerances
    by_month = {s.month: s for s in actuals}
    months: list[MonthVerification] = []
    passed_total = failed_total = 0

    for target in plan.months:
        snap = by_month.get(target.month)
        results = [
            verify_metric(
                metric,
                target.targets.get(metric),
                snap.get(metric) if snap else 0,
                tolerances,
            )
            for metric in PLAN_METRICS
        ]
        n_passed = sum(1 for r in results if r.passed)
        passed_total += n_passed
        failed_total += len(results) - n_passed
        months.append(
            MonthVerification(
                month=target.month, metrics=results, passed=n_passed == len(results)
            )
        )

    report = VerificationReport(
        job_id=job_id,
        tenant_id=tenant_id,
        generated_at=utcnow().isoformat(timespec="milliseconds") + "Z",
        overall_passed=failed_total == 0,
        total_metrics=passed_total + failed_total,
        passed_metrics=passed_total,
        failed_metrics=failed_total,
        months=months,
        tolerances=tolerances,
    )
    log.debug(
        "Verification for job %s: %d/%d metrics passed",
        job_id,
        passed_total,
        report.total_metrics,
    )
    return report


def format_verification_report(report: VerificationReport) -> str:
    """Terminal rendering: one line per month plus failing metrics."""
    lines = [
        f"Verification: {'PASSED' if report.overall_passed else 'FAILED'} "
        f"({report.passed_metrics}/{report.total_metrics} metrics)"
    ]
    for month in report.months:
        mark = "ok" if month.passed else "FAIL"
        lines.append(f"  {month.month}  {mark}")
        for m in month.metrics:
            if m.passed:
                continue
            lines.append(
                f"      {m.metric:<22s} target={m.target:g} actual={m.actual:g} "
                f"diff={m.diff:+g} ({m.diff_percent:+.2f}%)"
            )
    return "\n".join(lines)
