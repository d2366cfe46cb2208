from demogen.diff import PatchDiffReport, compute_diff, format_diff_report
from demogen.models import MonthlyKpiSnapshot, PatchMonth, ToleranceConfig

TOL = ToleranceConfig(count_tolerance=0, value_tolerance=0.005)


def _snap(month, **metrics):
    return MonthlyKpiSnapshot(month=month, metrics=metrics)


class TestComputeDiff:
    """compute_diff checks measured movement against intended deltas."""

    def test_exact_movement_passes(self):
        before = [_snap("2024-01", contacts_created=10, closed_won_value=1000.0)]
        after = [_snap("2024-01", contacts_created=15, closed_won_value=1500.0)]
        deltas = [PatchMonth("2024-01", {"contacts_created": 5, "closed_won_value": 500.0})]

        report = compute_diff(before, after, deltas, TOL)
        assert report.overall_passed
        assert report.total_metrics == 2
        entry = report.months[0].entries[0]
        assert entry.metric == "contacts_created"
        assert entry.before == 10
        assert entry.after == 15
        assert entry.delta == 5
        assert entry.delta_percent == 50.0
        assert entry.target == 5

    def test_short_count_fails(self):
        before = [_snap("2024-01", deals_created=4)]
        after = [_snap("2024-01", deals_created=6)]
        deltas = [PatchMonth("2024-01", {"deals_created": 3})]

        report = compute_diff(before, after, deltas, TOL)
        assert not report.overall_passed
        assert report.failed_metrics == 1
        assert not report.months[0].all_passed

    def test_value_tolerance_scales_with_delta(self):
        before = [_snap("2024-01", closed_won_value=0.0)]
        after = [_snap("2024-01", closed_won_value=10040.0)]
        deltas = [PatchMonth("2024-01", {"closed_won_value": 10000.0})]
        assert compute_diff(before, after, deltas, TOL).overall_passed

        after = [_snap("2024-01", closed_won_value=10060.0)]
        assert not compute_diff(before, after, deltas, TOL).overall_passed

    def test_negative_delta(self):
        before = [_snap("2024-01", companies_created=8)]
        after = [_snap("2024-01", companies_created=5)]
        deltas = [PatchMonth("2024-01", {"companies_created": -3})]
        report = compute_diff(before, after, deltas, TOL)
        assert report.overall_passed
        assert report.months[0].entries[0].delta == -3

    def test_month_without_after_snapshot_is_skipped(self):
        deltas = [PatchMonth("2024-05", {"contacts_created": 1})]
        report = compute_diff([], [], deltas, TOL)
        assert report.months == []
        assert report.overall_passed

    def test_zero_before_percent(self):
        before = [_snap("2024-01", contacts_created=0)]
        after = [_snap("2024-01", contacts_created=2)]
        deltas = [PatchMonth("2024-01", {"contacts_created": 2})]
        entry = compute_diff(before, after, deltas, TOL).months[0].entries[0]
        assert entry.delta_percent == 100.0


class TestReportSerialization:
    def test_from_dict_restores_report(self):
        before = [_snap("2024-01", contacts_created=1)]
        after = [_snap("2024-01", contacts_created=4)]
        deltas = [PatchMonth("2024-01", {"contacts_created": 3})]
        report = compute_diff(before, after, deltas, TOL)

        restored = PatchDiffReport.from_dict(report.to_dict())
        assert restored == report


class TestFormatDiffReport:
    def test_empty_report(self):
        assert format_diff_report(PatchDiffReport()) == ""

    def test_lines(self):
        before = [_snap("2024-01", contacts_created=1, closed_won_value=0.0)]
        after = [_snap("2024-01", contacts_created=4, closed_won_value=2500.0)]
        deltas = [PatchMonth("2024-01", {"contacts_created": 3, "closed_won_value": 2500.0})]
        text = format_diff_report(compute_diff(before, after, deltas, TOL))

        assert "2024-01:" in text
        assert "contacts_created" in text
        assert "1 -> 4" in text
        assert "0.00 -> 2,500.00" in text
        assert "2/2 metrics passed" in text
