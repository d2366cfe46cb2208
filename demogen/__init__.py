"""demogen: deterministic demo tenant generation and KPI patching."""

from .rng import SeededRNG, generate_seed
from .value_allocator import ValueAllocator, ValueConstraints
from .monthly_allocator import MonthlyAllocator
from .growth_planner import GrowthPlanner
from .plan_validator import validate_plan
from .kpi import KpiAggregator
from .verify import build_verification_report, verify_metric
from .diff import compute_diff
from .patch_validator import compute_deltas, generate_preview, validate_patch_plan
from .generator import ChunkedGenerator, Phase, create_generation_job, start_generation
from .patch_engine import PatchEngine, apply_metric_overrides, apply_patch, preview_patch
from .continuation import HttpContinuation, InlineContinuation
from .models import GenerationConfig, MonthlyPlan, PatchPlan, ToleranceConfig
from .errors import (
    DemoGenError,
    JobNotFoundError,
    PatchBlockedError,
    PlanValidationError,
    TenantNotFoundError,
)

__all__ = [
    # Randomness and allocation
    "SeededRNG",
    "generate_seed",
    "ValueAllocator",
    "ValueConstraints",
    "MonthlyAllocator",
    # Planning
    "GrowthPlanner",
    "validate_plan",
    # Measurement
    "KpiAggregator",
    "build_verification_report",
    "verify_metric",
    "compute_diff",
    # Generation
    "ChunkedGenerator",
    "Phase",
    "create_generation_job",
    "start_generation",
    "HttpContinuation",
    "InlineContinuation",
    # Patching
    "validate_patch_plan",
    "compute_deltas",
    "generate_preview",
    "PatchEngine",
    "apply_patch",
    "apply_metric_overrides",
    "preview_patch",
    # Models
    "GenerationConfig",
    "MonthlyPlan",
    "PatchPlan",
    "ToleranceConfig",
    # Errors
    "DemoGenError",
    "PlanValidationError",
    "PatchBlockedError",
    "TenantNotFoundError",
    "JobNotFoundError",
]
