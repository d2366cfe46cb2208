"""Tests for demogen/generator.py: the chunked generation state machine."""

from datetime import date, datetime

import pytest

from demogen.defaults import build_config
from demogen.errors import JobNotFoundError, PlanValidationError
from demogen.generator import (
    ChunkedGenerator,
    create_generation_job,
    fix_lead_count,
    get_job_status,
    start_generation,
)
from demogen.kpi import KpiAggregator
from demogen.models import PLAN_METRICS, GenerationConfig, GenerationMode, GrowthConfig, VolumeTargets
from demogen.store import connect, read_generation_job, update_generation_job
from tests.conftest import RecordingContinuation, _config_dict, _generate, _plan_dict, _tenant_of


class TrippingClock:
    """Fake clock that jumps past the time budget once enough contacts exist."""

    def __init__(self, conn, threshold):
        self.conn = conn
        self.threshold = threshold
        self.tripped = False
        self.now = 0.0

    def __call__(self):
        if not self.tripped:
            n = self.conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
            if n >= self.threshold:
                self.tripped = True
                self.now += 1000
        return self.now


def _contacts(conn, tenant_id):
    return conn.execute(
        """
        SELECT first_name, last_name, email, status, created_at
        FROM contacts WHERE tenant_id = ?
        ORDER BY created_at, email, first_name, last_name
        """,
        [tenant_id],
    ).fetchall()


def _deals(conn, tenant_id):
    return conn.execute(
        """
        SELECT CAST(value AS DOUBLE), created_at, closed_at, expected_close_date
        FROM deals WHERE tenant_id = ?
        ORDER BY created_at, value
        """,
        [tenant_id],
    ).fetchall()


class TestFixLeadCount:
    def test_clears_surplus_from_back(self):
        assert fix_lead_count([True, True, True, False], 2) == [True, True, False, False]

    def test_fills_deficit_from_front(self):
        assert fix_lead_count([False, True, False, False], 3) == [True, True, True, False]

    def test_caps_at_length(self):
        assert fix_lead_count([False, False], 5) == [True, True]

    def test_does_not_mutate_input(self):
        flags = [True, True]
        fix_lead_count(flags, 0)
        assert flags == [True, True]


class TestCreateJob:
    def test_creates_pending_job(self, conn):
        job_id = create_generation_job(conn, build_config(_config_dict()), seed="s1")
        job = read_generation_job(conn, job_id)
        assert job["status"] == "pending"
        assert job["generation_phase"] == "init"
        assert job["seed"] == "s1"
        assert job["config"]["start_date"] == "2024-01-01"

    def test_random_seed_when_missing(self, conn):
        job_id = create_generation_job(conn, build_config(_config_dict()))
        assert len(read_generation_job(conn, job_id)["seed"]) == 32

    def test_unknown_industry(self, conn):
        with pytest.raises(PlanValidationError, match="Unknown industry"):
            create_generation_job(conn, build_config(_config_dict(industry="mining")))

    def test_invalid_plan(self, conn):
        plan = _plan_dict()
        plan["months"][0]["targets"]["leads_created"] = 999
        with pytest.raises(PlanValidationError) as exc:
            create_generation_job(conn, build_config(_config_dict(monthly_plan=plan)))
        assert any("leads_created" in e for e in exc.value.errors)

    def test_missing_plan(self, conn):
        cfg = GenerationConfig(mode=GenerationMode.MONTHLY_PLAN)
        with pytest.raises(PlanValidationError):
            create_generation_job(conn, cfg)

    def test_growth_curve_becomes_monthly_plan(self, conn):
        cfg = GenerationConfig(
            start_date=date(2024, 1, 1),
            mode=GenerationMode.GROWTH_CURVE,
            team_size=3,
            targets=VolumeTargets(
                leads=60,
                contacts=120,
                companies=30,
                pipeline_value=300000,
                closed_won_value=90000,
                closed_won_count=9,
            ),
            growth=GrowthConfig(curve="linear", monthly_rate=10, seasonality=False),
        )
        job_id = create_generation_job(conn, cfg, seed="growth", now=datetime(2024, 3, 15))
        plan = read_generation_job(conn, job_id)["config"]["monthly_plan"]
        assert [m["month"] for m in plan["months"]] == ["2024-01", "2024-02", "2024-03"]
        assert plan["metadata"] == {"source": "growth-curve"}

        start_generation(conn, job_id, RecordingContinuation())
        status = get_job_status(conn, job_id)
        assert status["status"] == "completed", status["error_message"]
        assert status["verification_passed"] is True

    def test_growth_curve_validation(self, conn):
        cfg = GenerationConfig(
            start_date=date(2024, 1, 1),
            mode=GenerationMode.GROWTH_CURVE,
            targets=VolumeTargets(leads=500, contacts=100),
        )
        with pytest.raises(PlanValidationError, match="subset"):
            create_generation_job(conn, cfg, now=datetime(2024, 3, 15))


class TestFullRun:
    def test_completes_and_verifies(self, conn):
        job_id = _generate(conn)
        status = get_job_status(conn, job_id)
        assert status["status"] == "completed", status["error_message"]
        assert status["phase"] == "completed"
        assert status["progress"] == 100
        assert status["verification_passed"] is True
        assert status["metrics"]["contacts"] == 90
        assert status["metrics"]["companies"] == 22
        assert status["metrics"]["deals"] == 27
        assert status["metrics"]["users"] == 4
        assert status["metrics"]["tags"] == 8

    def test_kpis_match_plan_exactly(self, conn, tenant):
        snaps = KpiAggregator(conn, tenant).query_monthly_kpis("2024-01", "2024-02")
        plan = _plan_dict()
        for snap, month in zip(snaps, plan["months"]):
            for metric in PLAN_METRICS:
                target = month["targets"][metric]
                if metric in ("closed_won_value", "pipeline_added_value"):
                    assert snap.get(metric) == pytest.approx(target, rel=0.005)
                else:
                    assert snap.get(metric) == target, metric

    def test_zero_value_wins_keep_deal_count(self, conn):
        from demogen.continuation import InlineContinuation

        month = {
            "month": "2024-01",
            "targets": {
                "leads_created": 5,
                "contacts_created": 10,
                "companies_created": 3,
                "deals_created": 12,
                "closed_won_count": 3,
                "closed_won_value": 0,
                "pipeline_added_value": 0,
            },
        }
        cfg = build_config(_config_dict(monthly_plan=_plan_dict(months=[month])))
        job_id = create_generation_job(conn, cfg, seed="zero-wins")
        start_generation(conn, job_id, InlineContinuation(conn))

        status = get_job_status(conn, job_id)
        assert status["status"] == "completed", status["error_message"]
        assert status["verification_passed"] is True
        snap = KpiAggregator(conn, status["tenant_id"]).query_monthly_kpis("2024-01", "2024-01")[0]
        assert snap.get("deals_created") == 12
        assert snap.get("closed_won_count") == 3
        assert snap.get("closed_won_value") == 0

    def test_records_tagged_with_job_and_month(self, conn):
        job_id = _generate(conn)
        rows = conn.execute(
            "SELECT DISTINCT demo_job_id, demo_source_month, demo_generated FROM contacts ORDER BY 2"
        ).fetchall()
        assert rows == [(job_id, "2024-01", True), (job_id, "2024-02", True)]

    def test_no_weekend_records(self, conn, tenant):
        for table in ("companies", "contacts", "deals"):
            n = conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE tenant_id = ? AND isodow(created_at) >= 6",
                [tenant],
            ).fetchone()[0]
            assert n == 0, table

    def test_activities_follow_parent_in_same_month(self, conn, tenant):
        bad = conn.execute(
            """
            SELECT COUNT(*) FROM activities a
            JOIN deals d ON d.id = a.deal_id
            WHERE a.tenant_id = ?
              AND (a.created_at < d.created_at
                   OR strftime(a.created_at, '%Y-%m') <> d.demo_source_month)
            """,
            [tenant],
        ).fetchone()[0]
        assert bad == 0
        per_deal = conn.execute(
            """
            SELECT MIN(n), MAX(n) FROM (
                SELECT COUNT(*) AS n FROM activities WHERE tenant_id = ? AND deal_id IS NOT NULL
                GROUP BY deal_id
            )
            """,
            [tenant],
        ).fetchone()
        assert per_deal[0] >= 2
        assert per_deal[1] <= 8

    def test_state_blob_drained(self, conn):
        job_id = _generate(conn)
        state = read_generation_job(conn, job_id)["generation_state"]
        for key in ("pending_companies", "pending_contacts", "pending_deals", "pending_activities"):
            assert state[key] == []
        assert len(state["contact_ids"]) == 90

    def test_tenant_metadata_written(self, conn):
        job_id = _generate(conn)
        tenant_id = _tenant_of(conn, job_id)
        row = conn.execute(
            "SELECT generation_job_id, seed, industry, start_date FROM demo_tenant_metadata WHERE tenant_id = ?",
            [tenant_id],
        ).fetchone()
        assert row == (job_id, "golden-seed", "saas", date(2024, 1, 1))

    def test_same_seed_same_data(self, conn):
        other = connect()
        try:
            a = _tenant_of(conn, _generate(conn, seed="repeat"))
            b = _tenant_of(other, _generate(other, seed="repeat"))
            assert _contacts(conn, a) == _contacts(other, b)
            assert _deals(conn, a) == _deals(other, b)
        finally:
            other.close()

    def test_different_seed_different_data(self, conn):
        a = _tenant_of(conn, _generate(conn, seed="one"))
        b = _tenant_of(conn, _generate(conn, seed="two"))
        assert _contacts(conn, a) != _contacts(conn, b)


class TestResume:
    def test_timeout_mid_phase_resumes_same_phase(self, conn):
        clock = TrippingClock(conn, threshold=10)
        recorder = RecordingContinuation()
        job_id = create_generation_job(conn, build_config(_config_dict()), seed="resume")
        kwargs = {"clock": clock, "max_execution_seconds": 60, "batch_size": 10}

        start_generation(conn, job_id, recorder, **kwargs)
        status = get_job_status(conn, job_id)
        assert recorder.calls == [job_id]
        assert status["status"] == "running"
        assert status["phase"] == "contacts"
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == 10
        state = read_generation_job(conn, job_id)["generation_state"]
        assert len(state["pending_contacts"]) == 80

        ChunkedGenerator(conn, job_id, recorder, **kwargs).continue_generation()
        status = get_job_status(conn, job_id)
        assert status["status"] == "completed", status["error_message"]
        assert status["verification_passed"] is True
        assert recorder.calls == [job_id]
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == 90

    def test_resumed_run_matches_uninterrupted(self, conn):
        clock = TrippingClock(conn, threshold=10)
        recorder = RecordingContinuation()
        job_id = create_generation_job(conn, build_config(_config_dict()), seed="resume")
        kwargs = {"clock": clock, "max_execution_seconds": 60, "batch_size": 10}
        start_generation(conn, job_id, recorder, **kwargs)
        ChunkedGenerator(conn, job_id, recorder, **kwargs).continue_generation()
        resumed = _tenant_of(conn, job_id)

        other = connect()
        try:
            straight = _tenant_of(other, _generate(other, seed="resume", batch_size=10))
            assert _contacts(conn, resumed) == _contacts(other, straight)
            assert _deals(conn, resumed) == _deals(other, straight)
            count = "SELECT COUNT(*) FROM activities WHERE tenant_id = ?"
            assert (
                conn.execute(count, [resumed]).fetchone()[0]
                == other.execute(count, [straight]).fetchone()[0]
            )
        finally:
            other.close()

    def test_inline_continuation_drains_chunks(self, conn):
        from demogen.continuation import InlineContinuation

        # Each clock read is one tick; a two-tick budget checkpoints every couple of steps
        kwargs = {"max_execution_seconds": 2, "batch_size": 25}
        ticks = iter(range(1_000_000))
        kwargs["clock"] = lambda: float(next(ticks))
        inline = InlineContinuation(conn, **kwargs)
        job_id = create_generation_job(conn, build_config(_config_dict()), seed="inline")
        start_generation(conn, job_id, inline, **kwargs)

        status = get_job_status(conn, job_id)
        assert status["status"] == "completed", status["error_message"]
        assert status["verification_passed"] is True
        assert inline.invocations > 5


class TestJobControl:
    def test_completed_job_is_not_rerun(self, conn):
        job_id = _generate(conn)
        before = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
        ChunkedGenerator(conn, job_id, RecordingContinuation()).continue_generation()
        start_generation(conn, job_id, RecordingContinuation())
        assert conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0] == before

    def test_missing_job(self, conn):
        with pytest.raises(JobNotFoundError):
            ChunkedGenerator(conn, "nope", RecordingContinuation()).continue_generation()
        with pytest.raises(JobNotFoundError):
            get_job_status(conn, "nope")
        with pytest.raises(JobNotFoundError):
            start_generation(conn, "nope", RecordingContinuation())

    def test_error_marks_job_failed(self, conn):
        job_id = create_generation_job(conn, build_config(_config_dict()), seed="boom")
        config = read_generation_job(conn, job_id)["config"]
        config["industry"] = "mining"
        update_generation_job(conn, job_id, config=config)

        start_generation(conn, job_id, RecordingContinuation())
        status = get_job_status(conn, job_id)
        assert status["status"] == "failed"
        assert "Unknown industry" in status["error_message"]
        assert status["logs"][-1]["level"] == "error"
        assert read_generation_job(conn, job_id)["error_stack"]
