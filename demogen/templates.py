"""Industry templates: pipeline stages, deal economics, activity volumes."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StageTemplate:
    name: str
    type: str  # open | won | lost
    probability: int
    avg_days_in_stage: int
    color: str


@dataclass(frozen=True)
class DealProfile:
    min_value: float
    max_value: float
    avg_value: float
    cycle_days_min: int
    cycle_days_max: int
    win_rate: float  # 0..1


@dataclass(frozen=True)
class LeadProfile:
    conversion_rate: float
    qualification_rate: float


@dataclass(frozen=True)
class ActivityProfile:
    avg_per_contact: int
    avg_per_deal: int
    call_to_email_ratio: float


@dataclass(frozen=True)
class IndustryTemplate:
    id: str
    name: str
    pipeline_name: str
    stages: tuple[StageTemplate, ...]
    deals: DealProfile
    leads: LeadProfile
    activities: ActivityProfile
    company_patterns: tuple[str, ...] = field(default_factory=tuple)

    def stages_of(self, kind: str) -> list[StageTemplate]:
        return [s for s in self.stages if s.type == kind]


def _stages(*rows: tuple[str, str, int, int, str]) -> tuple[StageTemplate, ...]:
    return tuple(StageTemplate(*row) for row in rows)


_TEMPLATES: dict[str, IndustryTemplate] = {
    "trading": IndustryTemplate(
        id="trading",
        name="Trading / Forex / CFD",
        pipeline_name="Trading Pipeline",
        stages=_stages(
            ("New Lead", "open", 10, 2, "#6366f1"),
            ("Contacted", "open", 20, 3, "#8b5cf6"),
            ("Qualified", "open", 35, 5, "#a855f7"),
            ("Demo Scheduled", "open", 50, 4, "#d946ef"),
            ("Demo Completed", "open", 65, 7, "#ec4899"),
            ("Funded", "open", 80, 14, "#f43f5e"),
            ("Active Trader", "won", 100, 0, "#22c55e"),
            ("VIP", "won", 100, 0, "#fbbf24"),
            ("Churned", "lost", 0, 0, "#ef4444"),
            ("Disqualified", "lost", 0, 0, "#9ca3af"),
        ),
        deals=DealProfile(500, 100000, 5000, 7, 45, 0.25),
        leads=LeadProfile(0.40, 0.30),
        activities=ActivityProfile(8, 12, 0.6),
        company_patterns=(
            "{Word} Trading",
            "{Word} Capital",
            "{Name} Investments",
            "{Word} Markets",
            "{Word} Financial",
            "{Name} Trading Group",
            "{Word} FX",
            "{Word} Global Markets",
        ),
    ),
    "igaming": IndustryTemplate(
        id="igaming",
        name="iGaming / Online Casino",
        pipeline_name="Player Pipeline",
        stages=_stages(
            ("Registration", "open", 15, 1, "#6366f1"),
            ("KYC Pending", "open", 30, 2, "#8b5cf6"),
            ("KYC Verified", "open", 50, 3, "#a855f7"),
            ("First Deposit", "open", 70, 5, "#d946ef"),
            ("Active Player", "won", 100, 0, "#22c55e"),
            ("VIP", "won", 100, 0, "#fbbf24"),
            ("High Roller", "won", 100, 0, "#f59e0b"),
            ("Dormant", "lost", 0, 0, "#9ca3af"),
            ("Self-Excluded", "lost", 0, 0, "#ef4444"),
        ),
        deals=DealProfile(50, 50000, 500, 1, 30, 0.35),
        leads=LeadProfile(0.60, 0.25),
        activities=ActivityProfile(5, 8, 0.3),
        company_patterns=(
            "{Word} Casino",
            "{Word} Gaming",
            "{Word} Bet",
            "{Word} Play",
            "{Word} Slots",
            "{Word} Poker",
            "{Word} Sports",
            "{Word} Games",
        ),
    ),
    "saas": IndustryTemplate(
        id="saas",
        name="SaaS / Software",
        pipeline_name="SaaS Sales Pipeline",
        stages=_stages(
            ("Lead", "open", 10, 3, "#6366f1"),
            ("Discovery", "open", 20, 7, "#8b5cf6"),
            ("Demo", "open", 35, 7, "#a855f7"),
            ("Trial", "open", 50, 14, "#d946ef"),
            ("Proposal", "open", 65, 10, "#ec4899"),
            ("Negotiation", "open", 80, 14, "#f43f5e"),
            ("Closed Won", "won", 100, 0, "#22c55e"),
            ("Closed Lost", "lost", 0, 0, "#ef4444"),
            ("No Decision", "lost", 0, 0, "#9ca3af"),
        ),
        deals=DealProfile(500, 100000, 12000, 30, 120, 0.22),
        leads=LeadProfile(0.30, 0.35),
        activities=ActivityProfile(10, 15, 0.5),
        company_patterns=(
            "{Word} Software",
            "{Word} Tech",
            "{Word} Systems",
            "{Word} Solutions",
            "{Word} Cloud",
            "{Word} Labs",
            "{Word} IO",
            "{Word} HQ",
            "{Word} App",
        ),
    ),
    "ecommerce": IndustryTemplate(
        id="ecommerce",
        name="E-commerce / Retail",
        pipeline_name="E-commerce Pipeline",
        stages=_stages(
            ("Visitor", "open", 5, 1, "#6366f1"),
            ("Cart Added", "open", 20, 1, "#8b5cf6"),
            ("Checkout Started", "open", 40, 1, "#a855f7"),
            ("Payment Pending", "open", 70, 1, "#d946ef"),
            ("Purchased", "won", 100, 0, "#22c55e"),
            ("Repeat Customer", "won", 100, 0, "#fbbf24"),
            ("VIP Customer", "won", 100, 0, "#f59e0b"),
            ("Abandoned", "lost", 0, 0, "#ef4444"),
            ("Refunded", "lost", 0, 0, "#f97316"),
        ),
        deals=DealProfile(20, 2000, 150, 1, 7, 0.45),
        leads=LeadProfile(0.70, 0.20),
        activities=ActivityProfile(3, 4, 0.2),
        company_patterns=(
            "{Word} Store",
            "{Word} Shop",
            "{Word} Market",
            "{Word} Goods",
            "{Word} Direct",
            "{Word} Outlet",
            "{Word} Express",
            "{Word} Mart",
        ),
    ),
    "realestate": IndustryTemplate(
        id="realestate",
        name="Real Estate",
        pipeline_name="Real Estate Pipeline",
        stages=_stages(
            ("Inquiry", "open", 10, 1, "#6366f1"),
            ("Viewing Scheduled", "open", 25, 5, "#8b5cf6"),
            ("Viewing Done", "open", 40, 7, "#a855f7"),
            ("Offer Made", "open", 60, 14, "#d946ef"),
            ("Negotiation", "open", 75, 21, "#ec4899"),
            ("Contract Signed", "open", 90, 30, "#f43f5e"),
            ("Closed", "won", 100, 0, "#22c55e"),
            ("Lost", "lost", 0, 0, "#ef4444"),
        ),
        deals=DealProfile(50000, 2000000, 350000, 60, 180, 0.15),
        leads=LeadProfile(0.25, 0.40),
        activities=ActivityProfile(6, 15, 0.7),
        company_patterns=(
            "{Word} Realty",
            "{Word} Properties",
            "{Name} Real Estate",
            "{Word} Homes",
            "{Word} Land {Suffix}",
        ),
    ),
    "finserv": IndustryTemplate(
        id="finserv",
        name="Financial Services",
        pipeline_name="Financial Services Pipeline",
        stages=_stages(
            ("Lead", "open", 10, 2, "#6366f1"),
            ("Consultation", "open", 25, 7, "#8b5cf6"),
            ("Application", "open", 50, 14, "#a855f7"),
            ("Underwriting", "open", 70, 21, "#d946ef"),
            ("Approval", "open", 85, 7, "#ec4899"),
            ("Funded", "won", 100, 0, "#22c55e"),
            ("Declined", "lost", 0, 0, "#ef4444"),
            ("Withdrawn", "lost", 0, 0, "#f97316"),
        ),
        deals=DealProfile(5000, 500000, 50000, 30, 90, 0.35),
        leads=LeadProfile(0.35, 0.45),
        activities=ActivityProfile(8, 12, 0.6),
        company_patterns=(
            "{Word} Financial",
            "{Word} Capital",
            "{Name} Advisors",
            "{Word} Wealth",
            "{Word} Investment {Suffix}",
        ),
    ),
}

INDUSTRIES = tuple(_TEMPLATES)


def get_template(industry: str) -> IndustryTemplate:
    """Return the template for an industry id; unknown ids raise."""
    try:
        return _TEMPLATES[industry]
    except KeyError:
        raise ValueError(f"Unknown industry template: {industry}") from None


def all_templates() -> list[IndustryTemplate]:
    return list(_TEMPLATES.values())
