"""Tests for demogen/patch_validator.py: patch validation, deltas and previews."""

from datetime import date, datetime

from demogen.models import MonthlyKpiSnapshot, PatchMode, PatchMonth, PatchPlan, PatchPlanType
from demogen.patch_validator import (
    compute_deltas,
    generate_preview,
    validate_demo_tenant,
    validate_patch_plan,
)
from demogen.store import insert_rows, persist_tenant_metadata

NOW = datetime(2024, 6, 15)


def _demo_tenant(conn, tenant_id="t"):
    insert_rows(conn, "tenants", [{"id": tenant_id, "name": "Demo"}])
    persist_tenant_metadata(
        conn,
        tenant_id,
        generation_job_id="job",
        seed="s",
        country="US",
        industry="saas",
        start_date=date(2024, 1, 1),
    )


def _plan(mode="additive", plan_type="targets", months=None):
    return PatchPlan(
        mode=PatchMode(mode),
        plan_type=PatchPlanType(plan_type),
        months=months or [PatchMonth("2024-02", {"contacts_created": 60})],
    )


def _kpis(**metrics):
    return [MonthlyKpiSnapshot(month="2024-02", metrics=metrics)]


class TestDemoTenant:
    def test_non_demo_tenant(self, conn):
        insert_rows(conn, "tenants", [{"id": "real", "name": "Real"}])
        result = validate_demo_tenant(conn, "real")
        assert not result.valid
        assert "demo" in result.error

    def test_demo_tenant(self, conn):
        _demo_tenant(conn)
        result = validate_demo_tenant(conn, "t")
        assert result.valid
        assert result.start_date == date(2024, 1, 1)


class TestValidatePatchPlan:
    def test_valid_additive(self, conn):
        _demo_tenant(conn)
        result = validate_patch_plan(conn, "t", _plan(), _kpis(contacts_created=50), now=NOW)
        assert result.valid, result.errors

    def test_rejects_non_demo(self, conn):
        result = validate_patch_plan(conn, "missing", _plan(), [], now=NOW)
        assert not result.valid

    def test_additive_cannot_reduce(self, conn):
        _demo_tenant(conn)
        result = validate_patch_plan(conn, "t", _plan(), _kpis(contacts_created=80), now=NOW)
        assert not result.valid
        assert any("Cannot reduce contacts_created from 80 to 60" in e for e in result.errors)

    def test_reconcile_may_reduce(self, conn):
        _demo_tenant(conn)
        plan = _plan(mode="reconcile")
        result = validate_patch_plan(conn, "t", plan, _kpis(contacts_created=80), now=NOW)
        assert result.valid

    def test_additive_negative_delta(self, conn):
        _demo_tenant(conn)
        plan = _plan(plan_type="deltas", months=[PatchMonth("2024-02", {"deals_created": -1})])
        result = validate_patch_plan(conn, "t", plan, [], now=NOW)
        assert not result.valid

    def test_month_rules(self, conn):
        _demo_tenant(conn)
        plan = _plan(
            months=[
                PatchMonth("2023-12", {"contacts_created": 1}),
                PatchMonth("2024-09", {"contacts_created": 1}),
                PatchMonth("2024-9", {"contacts_created": 1}),
                PatchMonth("2024-03", {"contacts_created": 1}),
                PatchMonth("2024-03", {"contacts_created": 2}),
            ]
        )
        errors = validate_patch_plan(conn, "t", plan, [], now=NOW).errors
        assert any("before tenant creation" in e for e in errors)
        assert any("in the future" in e for e in errors)
        assert any("Invalid month format" in e for e in errors)
        assert any("Duplicate month" in e for e in errors)

    def test_logical_rules(self, conn):
        _demo_tenant(conn)
        plan = _plan(
            months=[
                PatchMonth(
                    "2024-02",
                    {"deals_created": 2, "closed_won_count": 3, "leads_created": 9, "contacts_created": 4},
                )
            ]
        )
        errors = validate_patch_plan(conn, "t", plan, [], now=NOW).errors
        assert any("closed_won_count (3) cannot exceed deals_created (2)" in e for e in errors)
        assert any("leads_created (9) cannot exceed contacts_created (4)" in e for e in errors)

    def test_metrics_only_warns_on_ignored(self, conn):
        _demo_tenant(conn)
        plan = _plan(
            mode="metrics-only",
            plan_type="deltas",
            months=[PatchMonth("2024-02", {"contacts_created": 5, "pipeline_added_value": 100.0})],
        )
        result = validate_patch_plan(conn, "t", plan, [], now=NOW)
        assert result.valid
        assert any("pipeline_added_value" in w for w in result.warnings)


class TestComputeDeltas:
    def test_targets_subtract_current(self):
        deltas, blockers = compute_deltas(_plan(), _kpis(contacts_created=50))
        assert deltas[0].metrics == {"contacts_created": 10}
        assert blockers == []

    def test_additive_block_zeroes_metric(self):
        deltas, blockers = compute_deltas(_plan(), _kpis(contacts_created=70))
        assert deltas[0].metrics == {"contacts_created": 0}
        assert len(blockers) == 1

    def test_reconcile_keeps_negative(self):
        deltas, blockers = compute_deltas(_plan(mode="reconcile"), _kpis(contacts_created=70))
        assert deltas[0].metrics == {"contacts_created": -10}
        assert blockers == []

    def test_deltas_used_as_given(self):
        plan = _plan(plan_type="deltas", months=[PatchMonth("2024-02", {"closed_won_value": 1234.5})])
        deltas, _ = compute_deltas(plan, _kpis(closed_won_value=99.0))
        assert deltas[0].metrics == {"closed_won_value": 1234.5}


class TestPreview:
    def test_additions_and_default_activities(self):
        preview = generate_preview(_plan(), _kpis(contacts_created=50))
        assert preview.estimated_records.contacts == 10
        assert preview.estimated_records.activities == 20
        assert preview.feasible

    def test_deletions(self):
        plan = _plan(
            mode="reconcile",
            plan_type="deltas",
            months=[PatchMonth("2024-02", {"companies_created": -4, "deals_created": 3})],
        )
        preview = generate_preview(plan, [])
        assert preview.estimated_deletions.companies == 4
        assert preview.estimated_records.deals == 3
        assert any("will be deleted" in w for w in preview.warnings)

    def test_blocked_preview(self):
        preview = generate_preview(_plan(), _kpis(contacts_created=70))
        assert not preview.feasible
        assert preview.blockers

    def test_noop_warning(self):
        preview = generate_preview(_plan(), _kpis(contacts_created=60))
        assert any("will not create or delete" in w for w in preview.warnings)

    def test_metrics_only_moves_no_records(self):
        plan = _plan(
            mode="metrics-only",
            plan_type="deltas",
            months=[PatchMonth("2024-02", {"contacts_created": 5, "leads_created": 2})],
        )
        preview = generate_preview(plan, [])
        assert preview.estimated_records.total == 0
        assert preview.computed_deltas[0].metrics == {"contacts_created": 5}
