"""CLI entry point for the demo tenant generator.

Usage:
    demogen init-db

    # Generate a tenant from a monthly plan or growth-curve config
    demogen generate plan.json --seed demo-1

    # Inspect and verify
    demogen status JOB_ID
    demogen verify JOB_ID
    demogen kpis TENANT_ID --from 2024-01 --to 2024-06

    # Patch an existing demo tenant
    demogen patch validate TENANT_ID patch.json
    demogen patch apply TENANT_ID patch.json
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import find_dotenv, load_dotenv

# Load .env by walking upward from the CWD.
_dotenv_path = find_dotenv(usecwd=True)
DOTENV_PATH = Path(_dotenv_path) if _dotenv_path else None
if _dotenv_path:
    load_dotenv(_dotenv_path)

from demogen import config
from demogen.catalog import count_rows_display, has_column, list_tables
from demogen.continuation import HttpContinuation, InlineContinuation
from demogen.defaults import build_config
from demogen.diff import PatchDiffReport, format_diff_report
from demogen.errors import DemoGenError, PlanValidationError
from demogen.generator import (
    ChunkedGenerator,
    create_generation_job,
    get_job_status,
    start_generation,
)
from demogen.kpi import KpiAggregator
from demogen.models import PATCH_METRICS, GenerationConfig, PatchPlan, is_value_metric
from demogen.patch_engine import apply_patch, preview_patch
from demogen.store import connect, read_generation_job
from demogen.verify import build_verification_report, format_verification_report

log = logging.getLogger(__name__)


def _configure_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        raise click.ClickException(f"Failed to read {path}: {e}")
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a JSON object")
    return data


def _load_generation_config(path: Path) -> GenerationConfig:
    """Accept a full config, or a bare monthly plan ({"months": [...]})."""
    data = _read_json(path)
    if "months" in data and "monthly_plan" not in data:
        data = {"mode": "monthly-plan", "monthly_plan": data}
    try:
        return build_config(data)
    except (TypeError, ValueError, KeyError) as e:
        raise click.ClickException(f"Invalid generation config in {path}: {e}")


def _load_patch_plan(path: Path) -> PatchPlan:
    data = _read_json(path)
    try:
        return PatchPlan.from_dict(data)
    except (TypeError, ValueError, KeyError) as e:
        raise click.ClickException(f"Invalid patch plan in {path}: {e}")


def _fmt(metric: str, value: float) -> str:
    return f"{value:,.2f}" if is_value_metric(metric) else str(int(value))


db_option = click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help="DuckDB file (default: $DEMOGEN_DB_PATH or demogen.db)",
)
quiet_option = click.option("--quiet", "-q", is_flag=True, help="Suppress verbose output")


def _open(db_path: Path | None):
    return connect(str(db_path or config.db_path()))


@click.group()
def main():
    """demogen: deterministic demo CRM tenants."""


@main.command("init-db")
@db_option
def init_db(db_path: Path | None):
    """Create the database schema."""
    conn = _open(db_path)
    try:
        click.echo(f"Initialized {db_path or config.db_path()}")
        for name in list_tables(conn):
            click.echo(f"  {name}")
    finally:
        conn.close()


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--seed", default=None, help="Seed string (default: random)")
@click.option(
    "--http",
    "use_http",
    is_flag=True,
    help="Schedule continuations through the web app instead of running inline",
)
@click.option("--max-seconds", type=float, default=None, help="Time budget per invocation")
@click.option("--batch-size", type=int, default=None, help="Rows per insert batch")
@db_option
@quiet_option
def generate(
    plan_file: Path,
    seed: str | None,
    use_http: bool,
    max_seconds: float | None,
    batch_size: int | None,
    db_path: Path | None,
    quiet: bool,
):
    """Create a demo tenant from PLAN_FILE (monthly plan or growth-curve config)."""
    _configure_logging(quiet)
    cfg = _load_generation_config(plan_file)

    conn = _open(db_path)
    try:
        try:
            job_id = create_generation_job(conn, cfg, seed=seed)
        except PlanValidationError as e:
            for err in e.errors:
                click.echo(f"  ! {err}", err=True)
            raise click.ClickException("Plan validation failed")

        kwargs: dict[str, Any] = {
            "max_execution_seconds": max_seconds,
            "batch_size": batch_size,
        }
        continuation = HttpContinuation() if use_http else InlineContinuation(conn, **kwargs)
        start_generation(conn, job_id, continuation, **kwargs)

        status = get_job_status(conn, job_id)
    finally:
        conn.close()

    click.echo(f"Job: {job_id}")
    click.echo(f"Status: {status['status']} ({status['progress']}%)")
    if status["tenant_id"]:
        click.echo(f"Tenant: {status['tenant_id']}")
    if status["status"] == "failed":
        raise click.ClickException(status["error_message"] or "Generation failed")
    if status["verification_passed"] is not None:
        click.echo(f"Verification: {'passed' if status['verification_passed'] else 'FAILED'}")


@main.command("continue")
@click.argument("job_id")
@db_option
@quiet_option
def continue_(job_id: str, db_path: Path | None, quiet: bool):
    """Resume a running generation job in-process."""
    _configure_logging(quiet)
    conn = _open(db_path)
    try:
        try:
            ChunkedGenerator(conn, job_id, InlineContinuation(conn)).continue_generation()
            status = get_job_status(conn, job_id)
        except DemoGenError as e:
            raise click.ClickException(str(e))
    finally:
        conn.close()
    click.echo(f"Status: {status['status']} ({status['progress']}%) {status['current_step'] or ''}")


@main.command()
@click.argument("job_id")
@click.option("--logs", "show_logs", is_flag=True, help="Print the job log")
@db_option
def status(job_id: str, show_logs: bool, db_path: Path | None):
    """Show a generation job's status."""
    conn = _open(db_path)
    try:
        try:
            s = get_job_status(conn, job_id)
        except DemoGenError as e:
            raise click.ClickException(str(e))
    finally:
        conn.close()

    click.echo(f"Job: {s['id']}")
    click.echo(f"Status: {s['status']}")
    click.echo(f"Phase: {s['phase']}")
    click.echo(f"Progress: {s['progress']}%")
    if s["current_step"]:
        click.echo(f"Step: {s['current_step']}")
    if s["tenant_id"]:
        click.echo(f"Tenant: {s['tenant_id']}")
    if s["error_message"]:
        click.echo(f"Error: {s['error_message']}")
    metrics = s["metrics"] or {}
    if metrics:
        click.echo("\nMetrics:")
        for key in ("users", "companies", "contacts", "deals", "activities"):
            click.echo(f"  {key}: {metrics.get(key, 0)}")
    if show_logs:
        click.echo("\nLog:")
        for entry in s["logs"]:
            click.echo(f"  {entry['timestamp']} [{entry['level']}] {entry['message']}")


@main.command()
@click.argument("job_id")
@db_option
def verify(job_id: str, db_path: Path | None):
    """Re-measure a generated tenant against its plan."""
    conn = _open(db_path)
    try:
        job = read_generation_job(conn, job_id)
        if job is None:
            raise click.ClickException(f"Generation job {job_id} not found")
        if not job["created_tenant_id"]:
            raise click.ClickException(f"Job {job_id} has not created a tenant yet")
        cfg = GenerationConfig.from_dict(job["config"])
        if cfg.monthly_plan is None:
            raise click.ClickException(f"Job {job_id} has no monthly plan")
        plan = cfg.monthly_plan
        actuals = KpiAggregator(conn, job["created_tenant_id"]).create_snapshot(
            [m.month for m in plan.months]
        )
        report = build_verification_report(job_id, job["created_tenant_id"], plan, actuals)
    finally:
        conn.close()

    click.echo(format_verification_report(report))
    if not report.overall_passed:
        sys.exit(1)


@main.command()
@click.argument("tenant_id")
@click.option("--from", "from_month", required=True, help="First month (YYYY-MM)")
@click.option("--to", "to_month", required=True, help="Last month (YYYY-MM)")
@click.option("--reported", is_flag=True, help="Include metric overrides")
@db_option
def kpis(tenant_id: str, from_month: str, to_month: str, reported: bool, db_path: Path | None):
    """Print monthly KPIs for a tenant."""
    conn = _open(db_path)
    try:
        aggregator = KpiAggregator(conn, tenant_id)
        if reported:
            snapshots = aggregator.query_reported_kpis(from_month, to_month)
        else:
            snapshots = aggregator.query_monthly_kpis(from_month, to_month)
    finally:
        conn.close()

    for snap in snapshots:
        click.echo(f"{snap.month}:")
        for metric in PATCH_METRICS:
            click.echo(f"  {metric:<22s} {_fmt(metric, snap.get(metric))}")


@main.group()
def patch():
    """Validate and apply KPI patches to demo tenants."""


@patch.command("validate")
@click.argument("tenant_id")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@db_option
def patch_validate(tenant_id: str, plan_file: Path, db_path: Path | None):
    """Check PLAN_FILE against TENANT_ID and preview its effect."""
    plan = _load_patch_plan(plan_file)
    conn = _open(db_path)
    try:
        try:
            validation, preview = preview_patch(conn, tenant_id, plan)
        except DemoGenError as e:
            raise click.ClickException(str(e))
    finally:
        conn.close()

    click.echo(f"Valid: {'yes' if validation.valid else 'no'}")
    for err in validation.errors:
        click.echo(f"  ! {err}")
    for warn in validation.warnings + preview.warnings:
        click.echo(f"  ~ {warn}")
    for blocker in preview.blockers:
        click.echo(f"  x {blocker}")

    click.echo("\nDeltas:")
    for d in preview.computed_deltas:
        parts = [f"{k}={_fmt(k, v)}" for k, v in d.metrics.items()]
        click.echo(f"  {d.month}: {', '.join(parts) or '(none)'}")
    c, x = preview.estimated_records, preview.estimated_deletions
    click.echo(
        f"\nCreate: {c.contacts} contacts, {c.companies} companies, "
        f"{c.deals} deals, {c.activities} activities"
    )
    if x.total:
        click.echo(
            f"Delete: {x.contacts} contacts, {x.companies} companies, "
            f"{x.deals} deals, {x.activities} activities"
        )
    click.echo(f"Estimated duration: {preview.estimated_duration_seconds}s")
    if not (validation.valid and preview.feasible):
        sys.exit(1)


@patch.command("apply")
@click.argument("tenant_id")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@db_option
@quiet_option
def patch_apply(tenant_id: str, plan_file: Path, db_path: Path | None, quiet: bool):
    """Apply PLAN_FILE to TENANT_ID."""
    _configure_logging(quiet)
    plan = _load_patch_plan(plan_file)
    conn = _open(db_path)
    try:
        try:
            job = apply_patch(conn, tenant_id, plan)
        except DemoGenError as e:
            raise click.ClickException(str(e))
    finally:
        conn.close()

    metrics = job.get("metrics") or {}
    click.echo(f"Patch job: {job['id']}")
    click.echo(f"Status: {job['status']}")
    click.echo(
        f"Records: +{metrics.get('records_created', 0)} / -{metrics.get('records_deleted', 0)}"
    )
    if metrics.get("metric_overrides_applied"):
        click.echo(f"Overrides applied: {metrics['metric_overrides_applied']}")
    if job.get("diff_report"):
        text = format_diff_report(PatchDiffReport.from_dict(job["diff_report"]))
        if text:
            click.echo("\nDiff:")
            click.echo(text)


@main.command()
@click.option("--tenant", "tenant_id", default=None, help="Count only rows owned by this tenant")
@click.option(
    "--exclude",
    "exclude_prefixes",
    multiple=True,
    help="Skip tables whose name starts with this prefix (repeatable)",
)
@db_option
def tables(tenant_id: str | None, exclude_prefixes: tuple[str, ...], db_path: Path | None):
    """List tables with row counts."""
    conn = _open(db_path)
    try:
        for name in list_tables(conn, exclude_prefixes=exclude_prefixes):
            if tenant_id is None:
                count = count_rows_display(conn, name)
            elif has_column(conn, name, "tenant_id"):
                count = count_rows_display(conn, name, where="tenant_id = ?", params=[tenant_id])
            else:
                count = "-"
            click.echo(f"  {name:<24s} {count}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
