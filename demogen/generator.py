"""Resumable, time-boxed generation of a demo tenant.

A generation job walks a fixed list of phases:

    init -> tenant -> users -> pipeline -> tags -> companies -> contacts
         -> deals -> activities -> verify -> completed

Every invocation loads the job row, resumes at the persisted phase, and
keeps going until the work is done or the time budget is spent. On a
time-out the phase pointer and the state blob are written back and a
continuation is scheduled; the process may exit right after.

The record phases (companies, contacts, deals, activities) first
materialize their whole pending list into the state blob, then insert it
front-to-back in batches. A phase is complete only when its pending list
is empty, so a crash or time-out mid-phase resumes with the remaining
queue. Records get their ids when the pending list is built, which keeps
reruns and resumes reproducible.
"""

from __future__ import annotations

import logging
import re
import time
import traceback
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable

import duckdb

from . import config as settings
from .defaults import DEFAULT_TOLERANCES
from .errors import JobNotFoundError, PlanValidationError
from .growth_planner import GrowthPlanner
from .kpi import KpiAggregator
from .localization import LocalizationProvider, get_provider
from .models import (
    GenerationConfig,
    GenerationMode,
    MonthlyPlan,
    log_entry,
    utcnow,
)
from .monthly_allocator import AllocationPlan, MonthlyAllocator, month_range
from .plan_validator import validate_plan
from .rng import SeededRNG, generate_seed
from .store import (
    insert_generation_job,
    insert_rows,
    new_id,
    persist_tenant_metadata,
    read_generation_job,
    update_generation_job,
)
from .templates import IndustryTemplate, get_template
from .value_allocator import ValueAllocator, ValueConstraints
from .verify import build_verification_report

log = logging.getLogger(__name__)

Continuation = Callable[[str], None]


class Phase(str, Enum):
    INIT = "init"
    TENANT = "tenant"
    USERS = "users"
    PIPELINE = "pipeline"
    TAGS = "tags"
    COMPANIES = "companies"
    CONTACTS = "contacts"
    DEALS = "deals"
    ACTIVITIES = "activities"
    VERIFY = "verify"
    COMPLETED = "completed"


PHASES = list(Phase)

# phase -> (next phase, progress once done, step label)
PHASE_ADVANCE = {
    Phase.INIT: (Phase.TENANT, 5, "Creating tenant"),
    Phase.TENANT: (Phase.USERS, 10, "Creating users"),
    Phase.USERS: (Phase.PIPELINE, 15, "Creating pipeline"),
    Phase.PIPELINE: (Phase.TAGS, 20, "Creating tags"),
    Phase.TAGS: (Phase.COMPANIES, 25, "Preparing companies"),
    Phase.COMPANIES: (Phase.CONTACTS, 40, "Preparing contacts"),
    Phase.CONTACTS: (Phase.DEALS, 55, "Preparing deals"),
    Phase.DEALS: (Phase.ACTIVITIES, 70, "Preparing activities"),
    Phase.ACTIVITIES: (Phase.VERIFY, 90, "Verifying"),
}

# record phase -> (progress at start, progress span while inserting)
BATCH_PROGRESS = {
    Phase.COMPANIES: (25, 15),
    Phase.CONTACTS: (40, 15),
    Phase.DEALS: (55, 15),
    Phase.ACTIVITIES: (70, 20),
}

TAG_DEFS = (
    ("VIP", "#fbbf24"),
    ("Enterprise", "#3b82f6"),
    ("SMB", "#10b981"),
    ("Partner", "#8b5cf6"),
    ("Referral", "#f97316"),
    ("Inbound", "#06b6d4"),
    ("Hot Lead", "#ef4444"),
    ("Cold", "#6b7280"),
)
COMPANY_SIZES = ("1-10", "11-50", "51-200", "201-500", "500+")
NON_LEAD_STATUSES = ("prospect", "prospect", "customer", "churned", "other")
DEAL_TYPES = ("New Business", "Upsell", "Renewal", "Expansion")
ACTIVITY_TYPES = ("call", "email", "meeting", "note", "task")
ACTIVITY_SUBJECTS = {
    "call": ("Discovery call", "Follow-up call", "Demo call", "Check-in call"),
    "email": ("Introduction email", "Proposal sent", "Follow-up email", "Thank you email"),
    "meeting": ("Initial meeting", "Product demo", "Negotiation meeting", "Contract review"),
    "note": ("Meeting notes", "Call summary", "Client feedback", "Internal notes"),
    "task": ("Send proposal", "Schedule demo", "Prepare contract", "Follow up"),
}
DEAL_ACTIVITIES = (2, 8)
CONTACT_ACTIVITIES = (1, 3)
# Share of deal-less contacts that still get some activity
CONTACT_ACTIVITY_RATE = 0.3
LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def fix_lead_count(flags: list[bool], needed: int) -> list[bool]:
    """Make exactly ``min(needed, len(flags))`` flags true.

    Surplus leads are cleared from the back; a deficit is filled from the
    first non-lead entries.
    """
    out = list(flags)
    assigned = sum(out)
    for idx in range(len(out) - 1, -1, -1):
        if assigned <= needed:
            break
        if out[idx]:
            out[idx] = False
            assigned -= 1
    for idx, lead in enumerate(out):
        if assigned >= needed:
            break
        if not lead:
            out[idx] = True
            assigned += 1
    return out


@dataclass
class GenerationState:
    """Everything a job needs to resume, persisted as the state blob."""

    tenant_id: str | None = None
    user_ids: list[str] = field(default_factory=list)
    pipeline_id: str | None = None
    stage_map: dict[str, str] = field(default_factory=dict)
    won_stage_ids: list[str] = field(default_factory=list)
    lost_stage_ids: list[str] = field(default_factory=list)
    open_stage_ids: list[str] = field(default_factory=list)
    tag_ids: list[str] = field(default_factory=list)
    company_ids: list[str] = field(default_factory=list)
    contact_ids: list[str] = field(default_factory=list)
    deal_ids: list[str] = field(default_factory=list)
    activities_created: int = 0
    # None = not prepared yet; [] = phase finished
    pending_companies: list[dict[str, Any]] | None = None
    pending_contacts: list[dict[str, Any]] | None = None
    pending_deals: list[dict[str, Any]] | None = None
    pending_activities: list[dict[str, Any]] | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GenerationState:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


# ---------------------------------------------------------------------------
# Job creation
# ---------------------------------------------------------------------------


def create_generation_job(
    conn: duckdb.DuckDBPyConnection,
    config: GenerationConfig,
    seed: str | None = None,
    now: datetime | None = None,
) -> str:
    """Validate the generation targets and create a pending job.

    Growth-curve configs are converted to an explicit monthly plan here so
    both modes run through the same state machine.
    """
    try:
        template = get_template(config.industry)
    except ValueError as e:
        raise PlanValidationError([str(e)]) from None

    if config.mode == GenerationMode.GROWTH_CURVE:
        planner = GrowthPlanner(config, now=now)
        ok, errors = planner.validate()
        if not ok:
            raise PlanValidationError(errors)
        config.monthly_plan = MonthlyPlan(
            months=planner.to_monthly_targets(template),
            tolerances=DEFAULT_TOLERANCES,
            metadata={"source": "growth-curve"},
        )
    else:
        if config.monthly_plan is None:
            raise PlanValidationError(["monthly_plan is required in monthly-plan mode"])
        result = validate_plan(config.monthly_plan, now=now)
        if not result.valid:
            raise PlanValidationError(result.error_messages())

    if config.start_date is None and config.monthly_plan.months:
        year, month = (int(p) for p in config.monthly_plan.months[0].month.split("-"))
        config.start_date = date(year, month, 1)

    job_id = new_id()
    seed = seed or generate_seed()
    insert_generation_job(conn, job_id, seed=seed, mode=config.mode.value, config=config.to_dict())
    log.info(
        "Created generation job %s (%s, %d months, seed %s)",
        job_id,
        config.mode.value,
        len(config.monthly_plan.months),
        seed,
    )
    return job_id


def start_generation(
    conn: duckdb.DuckDBPyConnection,
    job_id: str,
    continuation: Continuation,
    **generator_kwargs: Any,
) -> None:
    """Mark a pending job running and run its first chunk."""
    job = read_generation_job(conn, job_id)
    if job is None:
        raise JobNotFoundError(f"Generation job {job_id} not found")
    if job["status"] != "pending":
        log.info("Job %s is %s, not starting", job_id, job["status"])
        return
    update_generation_job(conn, job_id, status="running", started_at=utcnow(), current_step="Starting")
    ChunkedGenerator(conn, job_id, continuation, **generator_kwargs).continue_generation()


def get_job_status(conn: duckdb.DuckDBPyConnection, job_id: str) -> dict[str, Any]:
    """Status object for a generation job (no state blob)."""
    job = read_generation_job(conn, job_id)
    if job is None:
        raise JobNotFoundError(f"Generation job {job_id} not found")
    return {
        "id": job["id"],
        "status": job["status"],
        "phase": job["generation_phase"],
        "progress": job["progress"],
        "current_step": job["current_step"],
        "seed": job["seed"],
        "mode": job["mode"],
        "tenant_id": job["created_tenant_id"],
        "logs": job["logs"] or [],
        "metrics": job["metrics"],
        "verification_passed": job["verification_passed"],
        "error_message": job["error_message"],
    }


# ---------------------------------------------------------------------------
# Chunked generator
# ---------------------------------------------------------------------------


class ChunkedGenerator:
    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        job_id: str,
        continuation: Continuation,
        clock: Callable[[], float] = time.monotonic,
        max_execution_seconds: float | None = None,
        batch_size: int | None = None,
    ):
        self.conn = conn
        self.job_id = job_id
        self.continuation = continuation
        self.clock = clock
        self.max_execution_seconds = (
            max_execution_seconds
            if max_execution_seconds is not None
            else settings.max_execution_seconds()
        )
        self.batch_size = batch_size or settings.batch_size()

        self.started = 0.0
        self.state = GenerationState()
        self.logs: list[dict[str, Any]] = []

    # --- Entry point ---

    def continue_generation(self) -> None:
        """Run phases from the persisted pointer until done or out of time."""
        self.started = self.clock()
        job = read_generation_job(self.conn, self.job_id)
        if job is None:
            raise JobNotFoundError(f"Generation job {self.job_id} not found")
        if job["status"] != "running":
            log.info("Job %s is %s, skipping", self.job_id, job["status"])
            return

        self.state = GenerationState.from_dict(job["generation_state"])
        self.logs = list(job["logs"] or [])
        try:
            self._initialize(job)
            self._process_phases(Phase(job["generation_phase"] or Phase.INIT.value))
        except Exception as e:
            log.exception("Generation error for %s", self.job_id)
            self.mark_failed(e)

    def _initialize(self, job: dict[str, Any]) -> None:
        self.config = GenerationConfig.from_dict(job["config"])
        if self.config.monthly_plan is None:
            raise PlanValidationError(["Job has no monthly plan"])
        self.plan: MonthlyPlan = self.config.monthly_plan
        self.seed: str = job["seed"]
        self.rng = SeededRNG(self.seed)
        self.template: IndustryTemplate = get_template(self.config.industry)
        self.allocation: AllocationPlan = MonthlyAllocator(
            self.rng.child("alloc")
        ).create_allocation_plan(self.plan.months)

        if not self.state.metrics:
            self.state.metrics = {
                "tenant_id": self.state.tenant_id or "",
                "users": 0,
                "contacts": 0,
                "companies": 0,
                "deals": 0,
                "activities": 0,
                "pipeline_stages": 0,
                "tags": 0,
                "total_pipeline_value": 0.0,
                "total_closed_won_value": 0.0,
                "closed_won_count": 0,
                "monthly_breakdown": [],
            }

    def out_of_time(self) -> bool:
        return self.clock() - self.started > self.max_execution_seconds

    def _process_phases(self, phase: Phase) -> None:
        self._log("info", f"Continuing from phase: {phase.value}")
        for current in PHASES[PHASES.index(phase):]:
            if current is Phase.COMPLETED:
                return
            if self.out_of_time():
                self._log("info", f"Timeout approaching, scheduling continuation at phase: {current.value}")
                self._suspend(current)
                return
            if not self._run_phase(current):
                self._log("info", f"Timeout approaching, scheduling continuation in phase: {current.value}")
                self._suspend(current)
                return

    def _run_phase(self, phase: Phase) -> bool:
        """Run one phase; False when it still has pending work."""
        if phase is Phase.VERIFY:
            self._finalize()
            return True

        handler = {
            Phase.INIT: lambda: True,
            Phase.TENANT: self._create_tenant,
            Phase.USERS: self._create_users,
            Phase.PIPELINE: self._create_pipeline,
            Phase.TAGS: self._create_tags,
            Phase.COMPANIES: self._create_companies,
            Phase.CONTACTS: self._create_contacts,
            Phase.DEALS: self._create_deals,
            Phase.ACTIVITIES: self._create_activities,
        }[phase]
        if handler() is False:
            return False

        next_phase, progress, step = PHASE_ADVANCE[phase]
        self._save(generation_phase=next_phase.value, progress=progress, current_step=step)
        return True

    # --- Per-phase helpers ---

    def _phase_rng(self, phase: Phase) -> SeededRNG:
        return self.rng.child(phase.value)

    def _localization(self, phase: Phase) -> LocalizationProvider:
        return get_provider(self.config.country, self._phase_rng(phase).child("loc"))

    def _timestamps(self, phase: Phase) -> MonthlyAllocator:
        return MonthlyAllocator(self._phase_rng(phase).child("time"))

    def _ids(self, phase: Phase) -> SeededRNG:
        # Keyed on the job so two jobs sharing a seed never collide
        return SeededRNG(f"{self.job_id}-{phase.value}-ids")

    def _demo_tags(self, month: str | None = None) -> dict[str, Any]:
        return {
            "demo_generated": True,
            "demo_job_id": self.job_id,
            "demo_source_month": month,
        }

    # --- Setup phases ---

    def _create_tenant(self) -> None:
        if self.state.tenant_id:
            self._log("info", f"Tenant already exists: {self.state.tenant_id}")
            return

        cfg = self.config
        name = cfg.tenant_name or f"Demo - {cfg.industry} ({cfg.country})"
        tenant_id = self._ids(Phase.TENANT).uuid()
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
        insert_rows(
            self.conn,
            "tenants",
            [
                {
                    "id": tenant_id,
                    "name": name,
                    "slug": f"{slug}-{tenant_id[:8]}",
                    "country": cfg.country,
                    "timezone": cfg.timezone,
                    "currency": cfg.currency,
                    "industry": cfg.industry,
                    "created_at": utcnow(),
                }
            ],
        )
        self.state.tenant_id = tenant_id
        self.state.metrics["tenant_id"] = tenant_id
        update_generation_job(self.conn, self.job_id, created_tenant_id=tenant_id)
        persist_tenant_metadata(
            self.conn,
            tenant_id,
            generation_job_id=self.job_id,
            seed=self.seed,
            country=cfg.country,
            industry=cfg.industry,
            start_date=cfg.start_date,
        )
        self._log("info", f"Created tenant: {name} ({tenant_id})")

    def _create_users(self) -> None:
        if self.state.user_ids:
            self._log("info", f"Users already exist: {len(self.state.user_ids)}")
            return

        rng = self._phase_rng(Phase.USERS)
        loc = self._localization(Phase.USERS)
        ids = self._ids(Phase.USERS)
        now = utcnow()
        rows = []
        for i in range(max(1, self.config.team_size)):
            gender = "male" if rng.chance() else "female"
            first, last = loc.first_name(gender), loc.last_name()
            rows.append(
                {
                    "id": ids.uuid(),
                    "tenant_id": self.state.tenant_id,
                    "email": loc.email(first, last, "demo.example.com"),
                    "first_name": first,
                    "last_name": last,
                    "role": "owner" if i == 0 else "member",
                    "is_active": True,
                    **self._demo_tags(),
                    "created_at": now,
                    "updated_at": now,
                }
            )
        insert_rows(self.conn, "users", rows)
        self.state.user_ids = [r["id"] for r in rows]
        self.state.metrics["users"] = len(rows)
        self._log("info", f"Created {len(rows)} users")

    def _create_pipeline(self) -> None:
        if self.state.stage_map:
            self._log("info", "Pipeline already exists")
            return

        ids = self._ids(Phase.PIPELINE)
        now = utcnow()
        pipeline_id = ids.uuid()
        insert_rows(
            self.conn,
            "pipelines",
            [
                {
                    "id": pipeline_id,
                    "tenant_id": self.state.tenant_id,
                    "name": self.template.pipeline_name,
                    "is_default": True,
                    "created_at": now,
                }
            ],
        )

        rows = []
        for position, stage in enumerate(self.template.stages):
            stage_id = ids.uuid()
            rows.append(
                {
                    "id": stage_id,
                    "tenant_id": self.state.tenant_id,
                    "pipeline_id": pipeline_id,
                    "name": stage.name,
                    "position": position,
                    "probability": stage.probability,
                    "color": stage.color,
                    "is_won": stage.type == "won",
                    "is_lost": stage.type == "lost",
                    "created_at": now,
                }
            )
            self.state.stage_map[stage.name] = stage_id
            if stage.type == "won":
                self.state.won_stage_ids.append(stage_id)
            elif stage.type == "lost":
                self.state.lost_stage_ids.append(stage_id)
            else:
                self.state.open_stage_ids.append(stage_id)

        insert_rows(self.conn, "pipeline_stages", rows)
        self.state.pipeline_id = pipeline_id
        self.state.metrics["pipeline_stages"] = len(rows)
        self._log("info", f"Created {len(rows)} pipeline stages")

    def _create_tags(self) -> None:
        if self.state.tag_ids:
            return

        ids = self._ids(Phase.TAGS)
        now = utcnow()
        rows = [
            {
                "id": ids.uuid(),
                "tenant_id": self.state.tenant_id,
                "name": name,
                "color": color,
                "created_at": now,
            }
            for name, color in TAG_DEFS
        ]
        insert_rows(self.conn, "tags", rows)
        self.state.tag_ids = [r["id"] for r in rows]
        self.state.metrics["tags"] = len(rows)
        self._log("info", f"Created {len(rows)} tags")

    # --- Record phases ---

    def _insert_pending(
        self,
        phase: Phase,
        table: str,
        pending: list[dict[str, Any]],
        created_ids: list[str] | None,
    ) -> bool:
        """Insert ``pending`` from the front in batches until empty or out of time."""
        base, span = BATCH_PROGRESS[phase]
        while pending:
            if self.out_of_time():
                return False
            batch = pending[: self.batch_size]
            insert_rows(self.conn, table, batch)
            del pending[: len(batch)]

            if created_ids is not None:
                created_ids.extend(r["id"] for r in batch)
                done = len(created_ids)
            else:
                self.state.activities_created += len(batch)
                done = self.state.activities_created

            progress = base + round((1 - len(pending) / (len(pending) + done)) * span)
            self._save(progress=progress, current_step=f"Creating {table} ({done} created)")
        return True

    def _create_companies(self) -> bool:
        if self.state.pending_companies is None:
            self.state.pending_companies = self._prepare_companies()
            self.state.company_ids = []
            self._log("info", f"Prepared {len(self.state.pending_companies)} companies for creation")

        if not self._insert_pending(
            Phase.COMPANIES, "companies", self.state.pending_companies, self.state.company_ids
        ):
            return False
        self.state.metrics["companies"] = len(self.state.company_ids)
        self._log("info", f"Created {len(self.state.company_ids)} companies")
        return True

    def _prepare_companies(self) -> list[dict[str, Any]]:
        rng = self._phase_rng(Phase.COMPANIES)
        loc = self._localization(Phase.COMPANIES)
        clock = self._timestamps(Phase.COMPANIES)
        ids = self._ids(Phase.COMPANIES)
        rows: list[dict[str, Any]] = []

        for month in self.allocation.months:
            for day in month.business_days():
                for _ in range(clock.records_for_day(day, "companies")):
                    name = loc.company_name(self.config.industry)
                    domain = loc.company_domain(name)
                    address = loc.full_address()
                    created = clock.generate_timestamp(day.date)
                    rows.append(
                        {
                            "id": ids.uuid(),
                            "tenant_id": self.state.tenant_id,
                            "name": name,
                            "domain": domain,
                            "industry": self.template.name,
                            "size": rng.pick(COMPANY_SIZES),
                            "owner_id": rng.pick(self.state.user_ids),
                            "street": address.street,
                            "city": address.city,
                            "state": address.state,
                            "postal_code": address.postal_code,
                            "country": address.country,
                            "phone": loc.phone(),
                            "website": f"https://{domain}",
                            **self._demo_tags(month.month),
                            "created_at": created,
                            "updated_at": created,
                        }
                    )
        return rows

    def _create_contacts(self) -> bool:
        if self.state.pending_contacts is None:
            self.state.pending_contacts = self._prepare_contacts()
            self.state.contact_ids = []
            self._log("info", f"Prepared {len(self.state.pending_contacts)} contacts for creation")

        if not self._insert_pending(
            Phase.CONTACTS, "contacts", self.state.pending_contacts, self.state.contact_ids
        ):
            return False
        self.state.metrics["contacts"] = len(self.state.contact_ids)
        self._log("info", f"Created {len(self.state.contact_ids)} contacts")
        return True

    def _prepare_contacts(self) -> list[dict[str, Any]]:
        """Contacts per business day, with exactly the month's lead count.

        Day lead shares are honoured first; any shortfall (a day whose lead
        share exceeds its contact share) is filled from the month's
        remaining contacts in order.
        """
        rng = self._phase_rng(Phase.CONTACTS)
        loc = self._localization(Phase.CONTACTS)
        clock = self._timestamps(Phase.CONTACTS)
        ids = self._ids(Phase.CONTACTS)
        rows: list[dict[str, Any]] = []

        for month in self.allocation.months:
            target = self.plan.month(month.month)
            leads_needed = target.targets.leads_created if target else 0
            month_rows: list[dict[str, Any]] = []
            is_lead: list[bool] = []

            for day in month.business_days():
                count = clock.records_for_day(day, "contacts")
                day_leads = min(count, clock.records_for_day(day, "leads"))
                for i in range(count):
                    gender = "male" if rng.chance() else "female"
                    first, last = loc.first_name(gender), loc.last_name()
                    has_company = bool(self.state.company_ids) and rng.chance(0.7)
                    created = clock.generate_timestamp(day.date)
                    month_rows.append(
                        {
                            "id": ids.uuid(),
                            "tenant_id": self.state.tenant_id,
                            "first_name": first,
                            "last_name": last,
                            "email": loc.email(first, last),
                            "phone": loc.phone(),
                            "status": None,
                            "company_id": rng.pick(self.state.company_ids) if has_company else None,
                            "owner_id": rng.pick(self.state.user_ids),
                            **self._demo_tags(month.month),
                            "created_at": created,
                            "updated_at": created,
                        }
                    )
                    is_lead.append(i < day_leads)

            for row, lead in zip(month_rows, fix_lead_count(is_lead, leads_needed)):
                row["status"] = "lead" if lead else rng.pick(NON_LEAD_STATUSES)
            rows.extend(month_rows)
        return rows

    def _create_deals(self) -> bool:
        if self.state.pending_deals is None:
            self.state.pending_deals = self._prepare_deals()
            self.state.deal_ids = []
            self._log("info", f"Prepared {len(self.state.pending_deals)} deals for creation")

        if not self._insert_pending(
            Phase.DEALS, "deals", self.state.pending_deals, self.state.deal_ids
        ):
            return False
        self.state.metrics["deals"] = len(self.state.deal_ids)
        self._log("info", f"Created {len(self.state.deal_ids)} deals")
        return True

    def _prepare_deals(self) -> list[dict[str, Any]]:
        """Deals per business day, drawing from a per-month value pool.

        The month's won / open / lost values are computed first, shuffled,
        and consumed in day order, so the month's closed-won value and
        pipeline value land exactly on target.
        """
        rng = self._phase_rng(Phase.DEALS)
        loc = self._localization(Phase.DEALS)
        clock = self._timestamps(Phase.DEALS)
        ids = self._ids(Phase.DEALS)
        values = ValueAllocator(rng.child("values"))
        d = self.template.deals
        constraints = ValueConstraints(
            min_value=d.min_value,
            max_value=d.max_value,
            avg_value=d.avg_value,
            whale_ratio=self.config.realism.whale_ratio / 100,
        )
        rows: list[dict[str, Any]] = []

        for month in self.allocation.months:
            target = self.plan.month(month.month)
            if target is None:
                continue
            t = target.targets
            pool = values.allocate_pipeline_values(
                t.deals_created,
                t.closed_won_count,
                t.pipeline_added_value,
                t.closed_won_value,
                constraints,
            )
            roles = (
                [("won", v) for v in pool.closed_won_values]
                + [("open", v) for v in pool.open_values]
                + [("lost", v) for v in pool.lost_values]
            )
            roles = rng.shuffle(roles)
            cursor = 0

            for day in month.business_days():
                for _ in range(clock.records_for_day(day, "deals")):
                    if cursor >= len(roles):
                        break
                    role, value = roles[cursor]
                    cursor += 1
                    rows.append(self._deal_row(ids, rng, loc, clock, day.date, month.month, role, value))
        return rows

    def _deal_row(
        self,
        ids: SeededRNG,
        rng: SeededRNG,
        loc: LocalizationProvider,
        clock: MonthlyAllocator,
        day: date,
        month: str,
        role: str,
        value: float,
    ) -> dict[str, Any]:
        s = self.state
        if role == "lost" and not s.lost_stage_ids:
            role = "open"
        if role == "open" and not s.open_stage_ids:
            role = "lost"

        created = clock.generate_timestamp(day)
        closed_at = None
        if role == "won":
            stage_id = rng.pick(s.won_stage_ids)
            closed_at = created + timedelta(hours=rng.randint(1, 72))
        elif role == "lost":
            stage_id = rng.pick(s.lost_stage_ids)
            closed_at = created + timedelta(hours=rng.randint(1, 72))
        else:
            stage_id = rng.pick(s.open_stage_ids)

        return {
            "id": ids.uuid(),
            "tenant_id": s.tenant_id,
            "name": f"{loc.company_name(self.config.industry)} - {rng.pick(DEAL_TYPES)}",
            "value": round(value, 2),
            "currency": self.config.currency,
            "stage_id": stage_id,
            "contact_id": rng.pick(s.contact_ids) if s.contact_ids else None,
            "company_id": rng.pick(s.company_ids) if s.company_ids else None,
            "owner_id": rng.pick(s.user_ids),
            "expected_close_date": day + timedelta(days=rng.randint(7, 90)),
            "closed_at": closed_at,
            **self._demo_tags(month),
            "created_at": created,
            "updated_at": created,
        }

    def _create_activities(self) -> bool:
        if self.state.pending_activities is None:
            self.state.pending_activities = self._prepare_activities()
            self._log("info", f"Prepared {len(self.state.pending_activities)} activities for creation")

        if not self._insert_pending(
            Phase.ACTIVITIES, "activities", self.state.pending_activities, None
        ):
            return False
        self.state.metrics["activities"] = self.state.activities_created
        self._log("info", f"Created {self.state.activities_created} activities")
        return True

    def _prepare_activities(self) -> list[dict[str, Any]]:
        """2-8 activities per deal, and a few for contacts without a deal.

        Every activity lands after its parent's creation and inside the
        same month.
        """
        rng = self._phase_rng(Phase.ACTIVITIES)
        ids = self._ids(Phase.ACTIVITIES)
        rows: list[dict[str, Any]] = []

        deals = self.conn.execute(
            """
            SELECT id, contact_id, company_id, owner_id, demo_source_month, created_at
            FROM deals
            WHERE demo_job_id = ?
            """,
            [self.job_id],
        ).fetchall()
        # Ties on created_at fall back to creation order, not to the job-keyed ids
        deal_order = {deal_id: i for i, deal_id in enumerate(self.state.deal_ids)}
        deals.sort(key=lambda r: (r[5], deal_order.get(r[0], 0)))
        for deal_id, contact_id, company_id, owner_id, month, created in deals:
            for _ in range(rng.randint(*DEAL_ACTIVITIES)):
                rows.append(
                    self._activity_row(
                        ids, rng, month, created, contact_id, company_id, deal_id, owner_id
                    )
                )

        loose = self.conn.execute(
            """
            SELECT c.id, c.company_id, c.owner_id, c.demo_source_month, c.created_at
            FROM contacts c
            WHERE c.demo_job_id = ?
              AND NOT EXISTS (SELECT 1 FROM deals d WHERE d.contact_id = c.id)
            """,
            [self.job_id],
        ).fetchall()
        contact_order = {contact_id: i for i, contact_id in enumerate(self.state.contact_ids)}
        loose.sort(key=lambda r: (r[4], contact_order.get(r[0], 0)))
        for contact_id, company_id, owner_id, month, created in loose:
            if not rng.chance(CONTACT_ACTIVITY_RATE):
                continue
            for _ in range(rng.randint(*CONTACT_ACTIVITIES)):
                rows.append(
                    self._activity_row(
                        ids, rng, month, created, contact_id, company_id, None, owner_id
                    )
                )
        return rows

    def _activity_row(
        self,
        ids: SeededRNG,
        rng: SeededRNG,
        month: str,
        parent_created: datetime,
        contact_id: str | None,
        company_id: str | None,
        deal_id: str | None,
        owner_id: str | None,
    ) -> dict[str, Any]:
        _, month_end = month_range(month)
        room = int((month_end - parent_created).total_seconds() // 60) - 1
        at = parent_created + timedelta(minutes=rng.randint(0, max(0, min(room, 14 * 24 * 60))))
        kind = rng.pick(ACTIVITY_TYPES)
        completed = rng.chance(0.7)
        return {
            "id": ids.uuid(),
            "tenant_id": self.state.tenant_id,
            "type": kind,
            "subject": rng.pick(ACTIVITY_SUBJECTS[kind]),
            "description": f"Demo activity for {kind}",
            "contact_id": contact_id,
            "company_id": company_id,
            "deal_id": deal_id,
            "owner_id": owner_id or rng.pick(self.state.user_ids),
            "completed": completed,
            "scheduled_at": at,
            "completed_at": at if completed else None,
            "duration_minutes": rng.randint(5, 60) if kind in ("call", "meeting") else None,
            **self._demo_tags(month),
            "created_at": at,
            "updated_at": at,
        }

    # --- Verify / finish ---

    def _finalize(self) -> None:
        self._log("info", "Finalizing generation")
        months = [m.month for m in self.plan.months]
        actuals = KpiAggregator(self.conn, self.state.tenant_id).create_snapshot(months)
        report = build_verification_report(
            self.job_id, self.state.tenant_id, self.plan, actuals, self.plan.tolerances
        )

        m = self.state.metrics
        m["closed_won_count"] = int(sum(s.get("closed_won_count") for s in actuals))
        m["total_closed_won_value"] = round(sum(s.get("closed_won_value") for s in actuals), 2)
        m["total_pipeline_value"] = round(sum(s.get("pipeline_added_value") for s in actuals), 2)
        m["monthly_breakdown"] = [{"month": s.month, **s.metrics} for s in actuals]

        if report.overall_passed:
            self._log("info", f"Verification passed: {report.passed_metrics}/{report.total_metrics} metrics")
        else:
            self._log(
                "warn",
                f"Verification failed: {report.failed_metrics}/{report.total_metrics} metrics outside tolerance",
            )
        self._log(
            "info",
            f"Generation completed: {m['contacts']} contacts, {m['companies']} companies, {m['deals']} deals",
        )
        self._save(
            status="completed",
            generation_phase=Phase.COMPLETED.value,
            progress=100,
            current_step="Completed",
            metrics=m,
            verification_report=report.to_dict(),
            verification_passed=report.overall_passed,
            completed_at=utcnow(),
        )

    # --- Persistence ---

    def _save(self, **updates: Any) -> None:
        update_generation_job(
            self.conn,
            self.job_id,
            generation_state=self.state.to_dict(),
            logs=self.logs,
            **updates,
        )

    def _suspend(self, phase: Phase) -> None:
        """Checkpoint at ``phase`` and ask for another invocation."""
        self._save(generation_phase=phase.value)
        self.continuation(self.job_id)

    def mark_failed(self, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        self._log("error", f"Generation failed: {message}")
        self._save(
            status="failed",
            error_message=message,
            error_stack=traceback.format_exc(),
            completed_at=utcnow(),
        )

    def _log(self, level: str, message: str, data: dict[str, Any] | None = None) -> None:
        self.logs.append(log_entry(level, message, data))
        log.log(LOG_LEVELS.get(level, logging.INFO), "[%s] %s", self.job_id[:8], message)
