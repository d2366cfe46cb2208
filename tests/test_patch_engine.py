"""Tests for demogen/patch_engine.py: additive, reconcile and metrics-only patches."""

import pytest

from demogen.errors import PlanValidationError, TenantNotFoundError
from demogen.kpi import KpiAggregator
from demogen.models import PatchPlan
from demogen.patch_engine import PatchEngine, apply_patch, get_patch_status, preview_patch
from demogen.store import insert_rows, read_metric_overrides, update_patch_job


def _plan(mode="additive", plan_type="targets", month="2024-02", seed="patch-seed", **metrics):
    return PatchPlan.from_dict(
        {
            "mode": mode,
            "plan_type": plan_type,
            "months": [{"month": month, "metrics": metrics}],
            "seed": seed,
        }
    )


def _kpi(conn, tenant, month, metric, reported=False):
    aggregator = KpiAggregator(conn, tenant)
    query = aggregator.query_reported_kpis if reported else aggregator.query_monthly_kpis
    return query(month, month)[0].get(metric)


def _orphans(conn, table, column, parent):
    return conn.execute(
        f"""
        SELECT COUNT(*) FROM {table} t
        WHERE t.{column} IS NOT NULL
          AND NOT EXISTS (SELECT 1 FROM {parent} p WHERE p.id = t.{column})
        """
    ).fetchone()[0]


class TestAdditive:
    def test_targets_reached(self, conn, tenant):
        plan = _plan(
            contacts_created=60,
            companies_created=15,
            deals_created=18,
            closed_won_count=6,
            closed_won_value=75000,
            pipeline_added_value=170000,
        )
        job = apply_patch(conn, tenant, plan)

        assert job["status"] == "completed", job["error_message"]
        assert job["diff_report"]["overall_passed"] is True
        assert _kpi(conn, tenant, "2024-02", "contacts_created") == 60
        assert _kpi(conn, tenant, "2024-02", "companies_created") == 15
        assert _kpi(conn, tenant, "2024-02", "deals_created") == 18
        assert _kpi(conn, tenant, "2024-02", "closed_won_count") == 6
        assert _kpi(conn, tenant, "2024-02", "closed_won_value") == pytest.approx(75000)
        assert _kpi(conn, tenant, "2024-02", "pipeline_added_value") == pytest.approx(170000)
        # Untouched month stays put
        assert _kpi(conn, tenant, "2024-01", "contacts_created") == 40

    def test_records_tagged_with_patch_job(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=5))
        rows = conn.execute(
            "SELECT demo_source_month, COUNT(*) FROM contacts WHERE demo_job_id = ? GROUP BY 1",
            [job["id"]],
        ).fetchall()
        assert rows == [("2024-02", 5)]

    def test_default_activities_per_contact(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=5))
        metrics = job["metrics"]
        assert metrics["by_entity"]["contacts"]["created"] == 5
        assert metrics["by_entity"]["activities"]["created"] == 10
        assert metrics["records_created"] == 15

    def test_explicit_leads(self, conn, tenant):
        apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=10, leads_created=4))
        assert _kpi(conn, tenant, "2024-02", "leads_created") == 29

    def test_reduction_rejected_before_job(self, conn, tenant):
        with pytest.raises(PlanValidationError, match="Cannot reduce"):
            apply_patch(conn, tenant, _plan(contacts_created=10))
        assert conn.execute("SELECT COUNT(*) FROM patch_jobs").fetchone()[0] == 0

    def test_negative_delta_rejected(self, conn, tenant):
        with pytest.raises(PlanValidationError):
            apply_patch(conn, tenant, _plan(plan_type="deltas", deals_created=-1))

    def test_unknown_tenant(self, conn):
        with pytest.raises(TenantNotFoundError):
            apply_patch(conn, "nope", _plan(contacts_created=1))

    def test_non_demo_tenant(self, conn):
        insert_rows(conn, "tenants", [{"id": "real", "name": "Real"}])
        with pytest.raises(PlanValidationError, match="demo"):
            apply_patch(conn, "real", _plan(contacts_created=1))


class TestReconcile:
    def test_deletes_newest_deals(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(mode="reconcile", deals_created=13))
        assert job["status"] == "completed", job["error_message"]
        assert _kpi(conn, tenant, "2024-02", "deals_created") == 13
        assert job["metrics"]["by_entity"]["deals"]["deleted"] == 2
        assert job["metrics"]["records_deleted"] == 2

    def test_never_orphans_contacts_or_companies(self, conn, tenant):
        apply_patch(
            conn,
            tenant,
            _plan(mode="reconcile", plan_type="deltas", month="2024-01", companies_created=-10),
        )
        apply_patch(
            conn,
            tenant,
            _plan(mode="reconcile", plan_type="deltas", month="2024-01", contacts_created=-40),
        )
        assert _orphans(conn, "contacts", "company_id", "companies") == 0
        assert _orphans(conn, "deals", "company_id", "companies") == 0
        assert _orphans(conn, "deals", "contact_id", "contacts") == 0
        assert _orphans(conn, "activities", "contact_id", "contacts") == 0
        assert _orphans(conn, "activities", "company_id", "companies") == 0

    def test_deleted_deals_unlinked_from_activities(self, conn, tenant):
        linked = conn.execute(
            "SELECT COUNT(*) FROM activities WHERE deal_id IS NOT NULL AND tenant_id = ?", [tenant]
        ).fetchone()[0]
        assert linked > 0

        job = apply_patch(
            conn,
            tenant,
            _plan(
                mode="reconcile",
                plan_type="deltas",
                month="2024-01",
                deals_created=-12,
                companies_created=-10,
            ),
        )
        assert job["status"] == "completed", job["error_message"]
        assert job["metrics"]["by_entity"]["deals"]["deleted"] == 12
        assert _orphans(conn, "activities", "deal_id", "deals") == 0
        assert _orphans(conn, "activities", "company_id", "companies") == 0
        assert _orphans(conn, "contacts", "company_id", "companies") == 0

    def test_company_held_by_activity_survives(self, conn, tenant):
        company_id = conn.execute(
            """
            SELECT id FROM companies
            WHERE tenant_id = ? AND demo_source_month = '2024-01'
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            [tenant],
        ).fetchone()[0]
        # Leave the company referenced by a single activity only
        conn.execute("UPDATE contacts SET company_id = NULL WHERE company_id = ?", [company_id])
        conn.execute("UPDATE deals SET company_id = NULL WHERE company_id = ?", [company_id])
        conn.execute("UPDATE activities SET company_id = NULL WHERE company_id = ?", [company_id])
        conn.execute(
            "UPDATE activities SET company_id = ? WHERE id = (SELECT MIN(id) FROM activities WHERE tenant_id = ?)",
            [company_id, tenant],
        )

        apply_patch(
            conn,
            tenant,
            _plan(mode="reconcile", plan_type="deltas", month="2024-01", companies_created=-10),
        )
        assert conn.execute("SELECT COUNT(*) FROM companies WHERE id = ?", [company_id]).fetchone()[0] == 1

    def test_won_count_reduction_deletes_smallest_won_deal(self, conn, tenant):
        smallest = conn.execute(
            """
            SELECT d.id FROM deals d JOIN pipeline_stages s ON s.id = d.stage_id
            WHERE d.tenant_id = ? AND s.is_won AND d.demo_source_month = '2024-02'
            ORDER BY d.value, d.id LIMIT 1
            """,
            [tenant],
        ).fetchone()[0]

        job = apply_patch(conn, tenant, _plan(mode="reconcile", closed_won_count=4))
        assert job["status"] == "completed", job["error_message"]
        assert _kpi(conn, tenant, "2024-02", "closed_won_count") == 4
        assert conn.execute("SELECT COUNT(*) FROM deals WHERE id = ?", [smallest]).fetchone()[0] == 0

    def test_additions_after_deletions(self, conn, tenant):
        job = apply_patch(
            conn,
            tenant,
            _plan(mode="reconcile", plan_type="deltas", deals_created=-1, contacts_created=3),
        )
        assert job["metrics"]["by_entity"]["deals"]["deleted"] == 1
        assert job["metrics"]["by_entity"]["contacts"]["created"] == 3
        assert _kpi(conn, tenant, "2024-02", "contacts_created") == 53


class TestMetricsOnly:
    def test_overrides_accumulate(self, conn, tenant):
        first = apply_patch(
            conn, tenant, _plan(mode="metrics-only", plan_type="deltas", month="2024-01", contacts_created=5)
        )
        apply_patch(
            conn, tenant, _plan(mode="metrics-only", plan_type="deltas", month="2024-01", contacts_created=3)
        )

        assert first["metrics"]["metric_overrides_applied"] == 1
        assert first["metrics"]["records_created"] == 0
        assert _kpi(conn, tenant, "2024-01", "contacts_created", reported=True) == 48
        assert _kpi(conn, tenant, "2024-01", "contacts_created") == 40
        assert read_metric_overrides(conn, tenant)["2024-01"]["contacts_created"] == 8

    def test_targets_measured_against_reported(self, conn, tenant):
        apply_patch(conn, tenant, _plan(mode="metrics-only", month="2024-01", contacts_created=50))
        assert _kpi(conn, tenant, "2024-01", "contacts_created", reported=True) == 50
        job = apply_patch(conn, tenant, _plan(mode="metrics-only", month="2024-01", contacts_created=45))
        assert _kpi(conn, tenant, "2024-01", "contacts_created", reported=True) == 45
        assert job["diff_report"]["overall_passed"] is True

    def test_non_overridable_metrics_ignored(self, conn, tenant):
        job = apply_patch(
            conn,
            tenant,
            _plan(
                mode="metrics-only",
                plan_type="deltas",
                contacts_created=2,
                pipeline_added_value=5000.0,
            ),
        )
        assert job["status"] == "completed"
        assert any("ignoring non-overridable" in entry["message"] for entry in job["logs"])
        assert _kpi(conn, tenant, "2024-02", "pipeline_added_value", reported=True) == pytest.approx(150000)

    def test_no_records_move(self, conn, tenant):
        before = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
        apply_patch(conn, tenant, _plan(mode="metrics-only", plan_type="deltas", contacts_created=100))
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == before


class TestIdempotency:
    def test_completed_job_returns_cached(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=4))
        count = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]

        again = PatchEngine(conn, job["id"]).execute()
        assert again["status"] == "completed"
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == count

    def test_rerun_with_existing_records_skips_mutation(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=4))
        count = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
        update_patch_job(conn, job["id"], status="running")

        again = PatchEngine(conn, job["id"]).execute()
        assert again["status"] == "completed"
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == count
        assert any("Idempotency detected" in entry["message"] for entry in again["logs"])

    def test_seed_recorded(self, conn, tenant):
        job = apply_patch(conn, tenant, _plan(plan_type="deltas", contacts_created=1, seed="fixed"))
        assert get_patch_status(conn, job["id"])["seed"] == "fixed"


class TestPreview:
    def test_preview_does_not_mutate(self, conn, tenant):
        validation, preview = preview_patch(conn, tenant, _plan(contacts_created=60))
        assert validation.valid
        assert preview.feasible
        assert preview.estimated_records.contacts == 10
        assert conn.execute("SELECT COUNT(*) FROM patch_jobs").fetchone()[0] == 0

    def test_preview_activity_estimate_matches_apply(self, conn, tenant):
        plan = _plan(plan_type="deltas", contacts_created=7)
        _, preview = preview_patch(conn, tenant, plan)
        job = apply_patch(conn, tenant, plan)
        created = job["metrics"]["by_entity"]["activities"]["created"]
        assert preview.estimated_records.activities == created == 14

    def test_preview_blocked(self, conn, tenant):
        validation, preview = preview_patch(conn, tenant, _plan(contacts_created=10))
        assert not validation.valid
        assert not preview.feasible
        assert preview.blockers

    def test_preview_reconcile_not_blocked(self, conn, tenant):
        validation, preview = preview_patch(conn, tenant, _plan(mode="reconcile", contacts_created=10))
        assert validation.valid
        assert preview.blockers == []
        assert preview.estimated_deletions.contacts == 40

    def test_preview_unknown_tenant(self, conn):
        with pytest.raises(TenantNotFoundError):
            preview_patch(conn, "nope", _plan(contacts_created=1))
