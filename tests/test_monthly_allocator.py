"""Tests for demogen/monthly_allocator.py: business-day allocation."""

from datetime import date

import pytest

from demogen.models import MonthlyMetricTargets, MonthlyTarget
from demogen.monthly_allocator import MonthlyAllocator, month_bounds, month_range
from demogen.rng import SeededRNG


class TestMonthHelpers:
    def test_month_bounds_leap_year(self):
        assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))

    def test_month_range_end_is_next_month(self):
        start, end = month_range("2024-12")
        assert start.month == 12
        assert (end.year, end.month, end.day) == (2025, 1, 1)


class TestAllocateMonth:
    def test_counts_are_exact(self):
        alloc = MonthlyAllocator(SeededRNG("counts")).allocate_month(
            "2024-03", {"contacts_created": 137, "deals_created": 9}
        )
        assert alloc.total("contacts_created") == 137
        assert alloc.total("deals_created") == 9

    def test_value_is_exact(self):
        alloc = MonthlyAllocator(SeededRNG("values")).allocate_month(
            "2024-03", {"closed_won_value": 48123.45}
        )
        assert alloc.total("closed_won_value") == pytest.approx(48123.45)

    def test_nothing_on_weekends(self):
        alloc = MonthlyAllocator(SeededRNG("weekend")).allocate_month(
            "2024-06", {"contacts_created": 500}
        )
        for day in alloc.days:
            if day.date.weekday() >= 5:
                assert not day.is_business_day
                assert day.metrics.get("contacts_created", 0) == 0

    def test_covers_every_calendar_day(self):
        alloc = MonthlyAllocator(SeededRNG("days")).allocate_month("2024-04", {})
        assert len(alloc.days) == 30
        assert alloc.total_business_days == 22

    def test_zero_target(self):
        alloc = MonthlyAllocator(SeededRNG("zero")).allocate_month("2024-04", {"deals_created": 0})
        assert alloc.total("deals_created") == 0


class TestPlanAndRecords:
    def test_allocation_plan_total_records(self):
        months = [
            MonthlyTarget(
                "2024-01",
                MonthlyMetricTargets(contacts_created=10, companies_created=3, deals_created=2),
            ),
            MonthlyTarget("2024-02", MonthlyMetricTargets(contacts_created=5)),
        ]
        plan = MonthlyAllocator(SeededRNG("plan")).create_allocation_plan(months)
        assert [m.month for m in plan.months] == ["2024-01", "2024-02"]
        assert plan.total_records == 20

    def test_flatten_to_records(self):
        months = [MonthlyTarget("2024-01", MonthlyMetricTargets(contacts_created=25))]
        allocator = MonthlyAllocator(SeededRNG("flat"))
        plan = allocator.create_allocation_plan(months)
        records = allocator.flatten_to_records(plan, "contacts")
        assert len(records) == 25
        assert all(month == "2024-01" and day.weekday() < 5 for day, month in records)

    def test_timestamps_in_business_hours(self):
        allocator = MonthlyAllocator(SeededRNG("hours"))
        for _ in range(100):
            ts = allocator.generate_timestamp(date(2024, 1, 10))
            assert ts.date() == date(2024, 1, 10)
            assert 9 <= ts.hour <= 18
