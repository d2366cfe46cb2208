"""Tests for demogen/store.py: schema, batched inserts and job rows."""

from datetime import datetime

from demogen.catalog import list_tables
from demogen.rng import SeededRNG
from demogen.store import (
    count_job_records,
    insert_generation_job,
    insert_rows,
    new_id,
    read_generation_job,
    read_metric_overrides,
    read_stage_classes,
    update_generation_job,
    upsert_metric_override,
)


class TestSchema:
    def test_all_tables_created(self, conn):
        tables = set(list_tables(conn))
        assert {
            "tenants",
            "users",
            "pipelines",
            "pipeline_stages",
            "tags",
            "companies",
            "contacts",
            "deals",
            "activities",
            "demo_tenant_metadata",
            "generation_jobs",
            "patch_jobs",
            "metric_overrides",
        } <= tables

    def test_init_is_idempotent(self, conn):
        from demogen.store import init_store

        init_store(conn)
        init_store(conn)


class TestInsertRows:
    def test_missing_columns_are_null(self, conn):
        n = insert_rows(conn, "companies", [{"id": "c1", "tenant_id": "t1", "name": "Acme"}])
        assert n == 1
        row = conn.execute("SELECT name, domain, demo_generated FROM companies").fetchone()
        assert row == ("Acme", None, None)

    def test_iso_strings_coerced(self, conn):
        insert_rows(
            conn,
            "deals",
            [
                {
                    "id": "d1",
                    "tenant_id": "t1",
                    "value": 1234.5,
                    "expected_close_date": "2024-02-10",
                    "created_at": "2024-01-15T10:30:00",
                }
            ],
        )
        created, close, value = conn.execute(
            "SELECT created_at, expected_close_date, CAST(value AS DOUBLE) FROM deals"
        ).fetchone()
        assert created == datetime(2024, 1, 15, 10, 30)
        assert close.isoformat() == "2024-02-10"
        assert value == 1234.5

    def test_empty_batch(self, conn):
        assert insert_rows(conn, "contacts", []) == 0

    def test_count_job_records(self, conn):
        insert_rows(conn, "contacts", [{"id": "a", "demo_job_id": "job"}, {"id": "b", "demo_job_id": "job"}])
        insert_rows(conn, "deals", [{"id": "d", "demo_job_id": "job"}, {"id": "e", "demo_job_id": "other"}])
        assert count_job_records(conn, "job") == 3


class TestIds:
    def test_seeded_ids_repeat(self):
        assert new_id(SeededRNG("x")) == new_id(SeededRNG("x"))

    def test_unseeded_ids_differ(self):
        assert new_id() != new_id()


class TestStages:
    def test_stage_classes_in_position_order(self, conn):
        insert_rows(
            conn,
            "pipeline_stages",
            [
                {"id": "won", "tenant_id": "t", "position": 2, "is_won": True, "is_lost": False},
                {"id": "open-b", "tenant_id": "t", "position": 1, "is_won": False, "is_lost": False},
                {"id": "open-a", "tenant_id": "t", "position": 0, "is_won": False, "is_lost": False},
                {"id": "lost", "tenant_id": "t", "position": 3, "is_won": False, "is_lost": True},
            ],
        )
        assert read_stage_classes(conn, "t") == {
            "won": ["won"],
            "lost": ["lost"],
            "open": ["open-a", "open-b"],
        }


class TestGenerationJobRows:
    def test_json_columns_round_trip(self, conn):
        insert_generation_job(conn, "j1", seed="s", mode="monthly-plan", config={"industry": "saas"})
        update_generation_job(
            conn,
            "j1",
            status="running",
            generation_state={"tenant_id": "t1", "pending_contacts": []},
            logs=[{"level": "info", "message": "hi"}],
        )
        job = read_generation_job(conn, "j1")
        assert job["status"] == "running"
        assert job["generation_phase"] == "init"
        assert job["config"] == {"industry": "saas"}
        assert job["generation_state"]["pending_contacts"] == []
        assert job["logs"][0]["message"] == "hi"
        assert job["metrics"] is None

    def test_missing_job(self, conn):
        assert read_generation_job(conn, "nope") is None


class TestMetricOverrides:
    def test_upsert_accumulates(self, conn):
        upsert_metric_override(conn, "t", "2024-01", {"contacts_created": 5}, patch_job_id="p1")
        totals = upsert_metric_override(
            conn, "t", "2024-01", {"contacts_created": 3, "closed_won_value": 100.5}, patch_job_id="p2"
        )
        assert totals["contacts_created"] == 8
        assert totals["closed_won_value"] == 100.5
        stored = read_metric_overrides(conn, "t")
        assert stored["2024-01"]["contacts_created"] == 8
        assert stored["2024-01"]["deals_created"] == 0

    def test_overrides_are_per_tenant(self, conn):
        upsert_metric_override(conn, "t1", "2024-01", {"deals_created": 2}, patch_job_id="p")
        assert read_metric_overrides(conn, "t2") == {}
