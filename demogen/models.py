"""Plan, job and report data types.

Plans arrive as JSON (CLI files, HTTP bodies) with snake_case keys and are
parsed into these dataclasses with ``from_dict``. Everything that is
persisted goes back out through ``to_dict`` so it can be stored as JSON text.

Metric names are shared across plans, KPI snapshots, overrides and reports:

    leads_created, contacts_created, companies_created, deals_created,
    closed_won_count, closed_won_value, pipeline_added_value,
    activities_created
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

# --- Metric names ---

COUNT_METRICS = (
    "leads_created",
    "contacts_created",
    "companies_created",
    "deals_created",
    "closed_won_count",
    "activities_created",
)
VALUE_METRICS = ("closed_won_value", "pipeline_added_value")

# Metrics a monthly generation plan targets (activities are not planned)
PLAN_METRICS = (
    "leads_created",
    "contacts_created",
    "companies_created",
    "deals_created",
    "closed_won_count",
    "closed_won_value",
    "pipeline_added_value",
)
# Metrics a patch plan may carry
PATCH_METRICS = PLAN_METRICS + ("activities_created",)
# Metrics a metrics-only override can adjust
OVERRIDE_METRICS = (
    "contacts_created",
    "companies_created",
    "deals_created",
    "closed_won_count",
    "closed_won_value",
    "activities_created",
)

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

MAX_PLAN_MONTHS = 24


def is_value_metric(metric: str) -> bool:
    return metric in VALUE_METRICS


def utcnow() -> datetime:
    """Naive UTC now; all stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def current_month(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"{now.year:04d}-{now.month:02d}"


# ---------------------------------------------------------------------------
# Monthly plans
# ---------------------------------------------------------------------------


@dataclass
class MonthlyMetricTargets:
    leads_created: int = 0
    contacts_created: int = 0
    companies_created: int = 0
    deals_created: int = 0
    closed_won_count: int = 0
    closed_won_value: float = 0.0
    pipeline_added_value: float = 0.0

    def get(self, metric: str) -> float:
        return getattr(self, metric, 0)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonthlyMetricTargets:
        kwargs: dict[str, Any] = {}
        for metric in PLAN_METRICS:
            if metric in data and data[metric] is not None:
                raw = data[metric]
                kwargs[metric] = float(raw) if is_value_metric(metric) else int(raw)
        return cls(**kwargs)


@dataclass
class TargetOverrides:
    """Optional shape hints for one month."""

    avg_deal_size: float | None = None
    win_rate: float | None = None  # percent
    conversion_rate: float | None = None  # percent


@dataclass
class MonthlyTarget:
    month: str  # YYYY-MM
    targets: MonthlyMetricTargets
    overrides: TargetOverrides | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"month": self.month, "targets": self.targets.to_dict()}
        if self.overrides is not None:
            out["overrides"] = asdict(self.overrides)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonthlyTarget:
        overrides = data.get("overrides")
        return cls(
            month=str(data["month"]),
            targets=MonthlyMetricTargets.from_dict(data.get("targets") or {}),
            overrides=TargetOverrides(**overrides) if overrides else None,
        )


@dataclass
class ToleranceConfig:
    """Absolute count tolerance and relative value tolerance."""

    count_tolerance: float = 0
    value_tolerance: float = 0.005

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ToleranceConfig:
        if not data:
            return cls()
        return cls(
            count_tolerance=data.get("count_tolerance", 0),
            value_tolerance=data.get("value_tolerance", 0.005),
        )


@dataclass
class MonthlyPlan:
    months: list[MonthlyTarget]
    tolerances: ToleranceConfig = field(default_factory=ToleranceConfig)
    metadata: dict[str, Any] = field(default_factory=dict)

    def month(self, label: str) -> MonthlyTarget | None:
        for m in self.months:
            if m.month == label:
                return m
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "months": [m.to_dict() for m in self.months],
            "tolerances": self.tolerances.to_dict(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonthlyPlan:
        return cls(
            months=[MonthlyTarget.from_dict(m) for m in data.get("months") or []],
            tolerances=ToleranceConfig.from_dict(data.get("tolerances")),
            metadata=dict(data.get("metadata") or {}),
        )


# ---------------------------------------------------------------------------
# Generation config
# ---------------------------------------------------------------------------


class GenerationMode(str, Enum):
    GROWTH_CURVE = "growth-curve"
    MONTHLY_PLAN = "monthly-plan"


@dataclass
class VolumeTargets:
    leads: int = 400
    contacts: int = 500
    companies: int = 200
    pipeline_value: float = 500000
    closed_won_value: float = 150000
    closed_won_count: int = 100


@dataclass
class GrowthConfig:
    curve: str = "exponential"  # linear | exponential | logistic | step
    monthly_rate: float = 15  # percent
    seasonality: bool = True


@dataclass
class ChannelMix:
    seo: float = 25
    meta: float = 20
    google: float = 25
    affiliates: float = 15
    referrals: float = 10
    direct: float = 5


@dataclass
class RealismConfig:
    drop_off_rate: float = 20  # percent
    whale_ratio: float = 5  # percent
    response_sla_hours: float = 4


@dataclass
class GenerationConfig:
    tenant_name: str = ""
    country: str = "US"
    timezone: str = "America/New_York"
    currency: str = "USD"
    industry: str = "saas"
    start_date: date | None = None
    team_size: int = 8
    mode: GenerationMode = GenerationMode.MONTHLY_PLAN
    targets: VolumeTargets = field(default_factory=VolumeTargets)
    growth: GrowthConfig = field(default_factory=GrowthConfig)
    channel_mix: ChannelMix = field(default_factory=ChannelMix)
    realism: RealismConfig = field(default_factory=RealismConfig)
    monthly_plan: MonthlyPlan | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_name": self.tenant_name,
            "country": self.country,
            "timezone": self.timezone,
            "currency": self.currency,
            "industry": self.industry,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "team_size": self.team_size,
            "mode": self.mode.value,
            "targets": asdict(self.targets),
            "growth": asdict(self.growth),
            "channel_mix": asdict(self.channel_mix),
            "realism": asdict(self.realism),
            "monthly_plan": self.monthly_plan.to_dict() if self.monthly_plan else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        start = data.get("start_date")
        plan = data.get("monthly_plan")
        mode = data.get("mode") or (
            GenerationMode.MONTHLY_PLAN.value if plan else GenerationMode.GROWTH_CURVE.value
        )
        return cls(
            tenant_name=data.get("tenant_name", ""),
            country=data.get("country", "US"),
            timezone=data.get("timezone", "America/New_York"),
            currency=data.get("currency", "USD"),
            industry=data.get("industry", "saas"),
            start_date=date.fromisoformat(start[:10]) if start else None,
            team_size=int(data.get("team_size", 8)),
            mode=GenerationMode(mode),
            targets=VolumeTargets(**(data.get("targets") or {})),
            growth=GrowthConfig(**(data.get("growth") or {})),
            channel_mix=ChannelMix(**(data.get("channel_mix") or {})),
            realism=RealismConfig(**(data.get("realism") or {})),
            monthly_plan=MonthlyPlan.from_dict(plan) if plan else None,
        )


# ---------------------------------------------------------------------------
# Patches
# ---------------------------------------------------------------------------


class PatchMode(str, Enum):
    ADDITIVE = "additive"
    RECONCILE = "reconcile"
    METRICS_ONLY = "metrics-only"


class PatchPlanType(str, Enum):
    TARGETS = "targets"
    DELTAS = "deltas"


@dataclass
class PatchMonth:
    month: str
    metrics: dict[str, float]  # partial; absent metric = unchanged


@dataclass
class PatchPlan:
    mode: PatchMode
    plan_type: PatchPlanType
    months: list[PatchMonth]
    tolerances: ToleranceConfig | None = None
    seed: str | None = None

    def sorted_months(self) -> list[str]:
        return sorted(m.month for m in self.months)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "plan_type": self.plan_type.value,
            "months": [{"month": m.month, "metrics": m.metrics} for m in self.months],
            "tolerances": self.tolerances.to_dict() if self.tolerances else None,
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatchPlan:
        months: list[PatchMonth] = []
        for m in data.get("months") or []:
            metrics = {
                k: float(v) if is_value_metric(k) else int(v)
                for k, v in (m.get("metrics") or {}).items()
                if k in PATCH_METRICS and v is not None
            }
            months.append(PatchMonth(month=str(m["month"]), metrics=metrics))
        tolerances = data.get("tolerances")
        return cls(
            mode=PatchMode(data.get("mode", "additive")),
            plan_type=PatchPlanType(data.get("plan_type", "targets")),
            months=months,
            tolerances=ToleranceConfig.from_dict(tolerances) if tolerances else None,
            seed=data.get("seed"),
        )


@dataclass
class EntityCounts:
    created: int = 0
    modified: int = 0
    deleted: int = 0


PATCH_ENTITIES = ("contacts", "companies", "deals", "activities")


@dataclass
class PatchJobMetrics:
    records_created: int = 0
    records_modified: int = 0
    records_deleted: int = 0
    by_entity: dict[str, EntityCounts] = field(
        default_factory=lambda: {e: EntityCounts() for e in PATCH_ENTITIES}
    )
    metric_overrides_applied: int = 0

    def created(self, entity: str, n: int = 1) -> None:
        self.by_entity[entity].created += n
        self.records_created += n

    def deleted(self, entity: str, n: int = 1) -> None:
        self.by_entity[entity].deleted += n
        self.records_deleted += n

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Snapshots and job logs
# ---------------------------------------------------------------------------


@dataclass
class MonthlyKpiSnapshot:
    month: str
    metrics: dict[str, float]
    snapshot_at: str = ""

    def get(self, metric: str) -> float:
        return self.metrics.get(metric, 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonthlyKpiSnapshot:
        return cls(
            month=data["month"],
            metrics=dict(data.get("metrics") or {}),
            snapshot_at=data.get("snapshot_at", ""),
        )


@dataclass
class LogEntry:
    timestamp: str
    level: str  # info | warn | error
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
        }
        if self.data is not None:
            out["data"] = self.data
        return out


def log_entry(level: str, message: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a job log entry as a JSON-ready dict."""
    return LogEntry(
        timestamp=utcnow().isoformat(timespec="milliseconds") + "Z",
        level=level,
        message=message,
        data=data,
    ).to_dict()
