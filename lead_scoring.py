"""
Lead Scoring Engine
===================
Bounded 0-100 lead-quality score used to rank follow-up.

Factors (default points):
- Budget range      (0-25)
- Urgency           (0-25)
- Decision maker    (0-15)
- Timeframe         (0-20)
- Contact complete  (0-10)  email AND phone on file
- Lead source       (0-5)   referral / website

Each factor is capped before summing and the total is clamped to 100.
The score is a projection of the contact's current fields; recompute it
whenever they change and never store it as the source of truth.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from proposal_errors import InvalidInput

MAX_LEAD_SCORE = 100


class BudgetRange(str, Enum):
    UNDER_1000 = "under-1000"
    FROM_1000 = "1000-2000"
    FROM_2000 = "2000-5000"
    FROM_5000 = "5000-10000"
    OVER_10000 = "10000+"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"    # Active leak
    URGENT = "urgent"          # 1-2 weeks
    MODERATE = "moderate"      # 1-3 months
    PLANNING = "planning"      # 3+ months


class Timeframe(str, Enum):
    IMMEDIATE = "immediate"
    ONE_MONTH = "1-month"
    ONE_TO_THREE_MONTHS = "1-3months"
    THREE_TO_SIX_MONTHS = "3-6months"
    SIX_MONTHS_PLUS = "6months+"


class LeadQuality(str, Enum):
    """Quality bands shown next to the score"""
    HIGH = "High Quality"              # 80-100: call today
    MEDIUM = "Medium Quality"          # 60-79: active follow-up
    NEEDS_NURTURING = "Needs Nurturing"  # 0-59: nurture sequence


class LeadScoringWeights(BaseModel):
    """Point tables and per-factor caps. Injected so sales ops can tune them."""

    model_config = ConfigDict(frozen=True)

    budget_points: dict[BudgetRange, int] = Field(default_factory=lambda: {
        BudgetRange.OVER_10000: 25,
        BudgetRange.FROM_5000: 20,
        BudgetRange.FROM_2000: 15,
        BudgetRange.FROM_1000: 10,
        BudgetRange.UNDER_1000: 0,
    })
    urgency_points: dict[Urgency, int] = Field(default_factory=lambda: {
        Urgency.IMMEDIATE: 25,
        Urgency.URGENT: 20,
        Urgency.MODERATE: 10,
        Urgency.PLANNING: 0,
    })
    timeframe_points: dict[Timeframe, int] = Field(default_factory=lambda: {
        Timeframe.IMMEDIATE: 20,
        Timeframe.ONE_MONTH: 15,
        Timeframe.ONE_TO_THREE_MONTHS: 10,
        Timeframe.THREE_TO_SIX_MONTHS: 0,
        Timeframe.SIX_MONTHS_PLUS: 0,
    })
    decision_maker_points: int = Field(15, ge=0)
    contact_complete_points: int = Field(10, ge=0)
    high_quality_source_points: int = Field(5, ge=0)
    high_quality_sources: frozenset[str] = frozenset({"referral", "website"})

    budget_cap: int = Field(25, ge=0)
    urgency_cap: int = Field(25, ge=0)
    decision_maker_cap: int = Field(15, ge=0)
    timeframe_cap: int = Field(20, ge=0)
    contact_cap: int = Field(10, ge=0)
    source_cap: int = Field(5, ge=0)

    @field_validator("high_quality_sources", mode="before")
    @classmethod
    def _normalize_sources(cls, value):
        if isinstance(value, str):
            value = [value]
        return frozenset(str(source).strip().lower() for source in value)

    @model_validator(mode="after")
    def _check_points(self) -> "LeadScoringWeights":
        for table_name in ("budget_points", "urgency_points", "timeframe_points"):
            if any(points < 0 for points in getattr(self, table_name).values()):
                raise ValueError(f"{table_name} contains negative points")
        return self


DEFAULT_WEIGHTS = LeadScoringWeights()


@dataclass(frozen=True)
class LeadScoreInputs:
    """Qualification signals read off a contact / lead record."""
    budget_range: Optional[BudgetRange] = None
    urgency: Optional[Urgency] = None
    decision_maker: bool = False
    timeframe: Optional[Timeframe] = None
    has_email: bool = False
    has_phone: bool = False
    lead_source: Optional[str] = None


@dataclass
class LeadScoreBreakdown:
    """Capped contribution of every factor plus the clamped total"""
    budget: int = 0
    urgency: int = 0
    decision_maker: int = 0
    timeframe: int = 0
    contact: int = 0
    source: int = 0
    total: int = field(init=False)
    quality: LeadQuality = field(init=False)

    def __post_init__(self):
        self.total = max(0, min(MAX_LEAD_SCORE, sum([
            self.budget,
            self.urgency,
            self.decision_maker,
            self.timeframe,
            self.contact,
            self.source,
        ])))

        if self.total >= 80:
            self.quality = LeadQuality.HIGH
        elif self.total >= 60:
            self.quality = LeadQuality.MEDIUM
        else:
            self.quality = LeadQuality.NEEDS_NURTURING

    def to_dict(self) -> dict:
        return {
            "budget": self.budget,
            "urgency": self.urgency,
            "decision_maker": self.decision_maker,
            "timeframe": self.timeframe,
            "contact": self.contact,
            "source": self.source,
            "total": self.total,
            "quality": self.quality.value,
        }


def _bucket(enum_cls, value: Any, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = [member.value for member in enum_cls]
        raise InvalidInput(f"Unknown {field_name} '{value}'. Allowed: {allowed}", field=field_name) from exc


def score_lead_breakdown(
    inputs: LeadScoreInputs,
    weights: Optional[LeadScoringWeights] = None,
) -> LeadScoreBreakdown:
    """Score every factor against the weights and return the capped parts."""
    weights = weights or DEFAULT_WEIGHTS

    budget = _bucket(BudgetRange, inputs.budget_range, "budget_range")
    urgency = _bucket(Urgency, inputs.urgency, "urgency")
    timeframe = _bucket(Timeframe, inputs.timeframe, "timeframe")

    source = (inputs.lead_source or "").strip().lower()
    source_points = weights.high_quality_source_points if source in weights.high_quality_sources else 0

    return LeadScoreBreakdown(
        budget=min(weights.budget_cap, weights.budget_points.get(budget, 0) if budget else 0),
        urgency=min(weights.urgency_cap, weights.urgency_points.get(urgency, 0) if urgency else 0),
        decision_maker=min(
            weights.decision_maker_cap,
            weights.decision_maker_points if inputs.decision_maker else 0,
        ),
        timeframe=min(weights.timeframe_cap, weights.timeframe_points.get(timeframe, 0) if timeframe else 0),
        contact=min(
            weights.contact_cap,
            weights.contact_complete_points if inputs.has_email and inputs.has_phone else 0,
        ),
        source=min(weights.source_cap, source_points),
    )


def score_lead(inputs: LeadScoreInputs, weights: Optional[LeadScoringWeights] = None) -> int:
    """Lead score in [0, 100]. Unknown bucket values raise InvalidInput."""
    return score_lead_breakdown(inputs, weights).total


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value.strip() if isinstance(value, str) else value


_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


def _flag(value: Any, field_name: str) -> bool:
    """Read a yes/no column that may arrive as a bool, a 0/1 or a string."""
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if not text or text in _FALSE_STRINGS:
            return False
        if text in _TRUE_STRINGS:
            return True
    raise InvalidInput(f"{field_name} must be a yes/no value, got {value!r}", field=field_name)


def build_lead_score_inputs(record: Mapping[str, Any]) -> LeadScoreInputs:
    """
    Read LeadScoreInputs off a contact / lead record.

    Expects the stored column names (budget_range, urgency, decision_maker,
    timeframe, email, phone, lead_source). Blank strings count as unspecified.
    decision_maker accepts bools, 0/1 and yes/no strings; anything else is
    rejected rather than guessed.
    """
    return LeadScoreInputs(
        budget_range=_bucket(BudgetRange, _blank_to_none(record.get("budget_range")), "budget_range"),
        urgency=_bucket(Urgency, _blank_to_none(record.get("urgency")), "urgency"),
        decision_maker=_flag(record.get("decision_maker"), "decision_maker"),
        timeframe=_bucket(Timeframe, _blank_to_none(record.get("timeframe")), "timeframe"),
        has_email=bool(_blank_to_none(record.get("email"))),
        has_phone=bool(_blank_to_none(record.get("phone"))),
        lead_source=_blank_to_none(record.get("lead_source")),
    )
