"""
Data contracts for conversation analysis.

Every component returns one of these Pydantic models, and every model
clamps its own bounded fields (confidences 0-100, urgency 1-10, costs >= 0)
so nothing out of range leaves the library.

Usage:
    from convintel.analysis.models import AnalysisContext, PipelineStage

    context = AnalysisContext(
        contact_name="Jane Doe",
        current_stage=PipelineStage.LEAD,
        days_since_contact=2,
    )
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─── Enumerations ─────────────────────────────────────────────────────

class PipelineStage(str, Enum):
    LEAD = "Lead"
    NEW_OPPORTUNITY = "New Opportunity"
    ACTIVE_OPPORTUNITY = "Active Opportunity"
    UNDER_CONTRACT = "Under Contract"
    CLOSED = "Closed"


STAGE_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.LEAD,
    PipelineStage.NEW_OPPORTUNITY,
    PipelineStage.ACTIVE_OPPORTUNITY,
    PipelineStage.UNDER_CONTRACT,
    PipelineStage.CLOSED,
)


class MotivationLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Timeframe(str, Enum):
    IMMEDIATE = "Immediate"
    ONE_TO_THREE_MONTHS = "1-3 months"
    THREE_TO_SIX_MONTHS = "3-6 months"
    SIX_PLUS_MONTHS = "6+ months"


class ActionType(str, Enum):
    CALL = "Call"
    TEXT = "Text"
    EMAIL = "Email"
    MEETING = "Meeting"
    SEND_LISTING = "Send Listing"
    FOLLOW_UP = "Follow-up"


class ReplyTone(str, Enum):
    PROFESSIONAL = "Professional"
    FRIENDLY = "Friendly"
    URGENT = "Urgent"
    CASUAL = "Casual"


class TransitionLevel(str, Enum):
    AUTO = "auto"       # System may apply without review
    REVIEW = "review"   # Surface to the user as a suggestion
    MANUAL = "manual"   # User decides


class ConversationType(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WHATSAPP = "whatsapp"
    GENERIC = "generic"


class ReplyChannel(str, Enum):
    TEXT = "text"
    EMAIL = "email"


def round_half_up(value: float) -> int:
    """Round halves upward (62.5 → 63), unlike the built-in round()."""
    return int(math.floor(value + 0.5))


def clamp_score(value: Any, low: int = 0, high: int = 100) -> int:
    """Coerce to an int and clamp into [low, high]. NaN and junk become low."""
    if isinstance(value, bool) or value is None:
        return low
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if math.isnan(number):
        return low
    return round_half_up(min(max(number, low), high))


class _Contract(BaseModel):
    model_config = ConfigDict(validate_assignment=True)


# ─── Pattern Detection ────────────────────────────────────────────────

class PatternSignals(_Contract):
    """Zero-cost behavioral flags from rule-based matching."""

    buying_intent: bool = False
    selling_intent: bool = False
    urgency: bool = False
    specific_property: bool = False
    preapproval: bool = False
    showings: bool = False
    offer_accepted: bool = False
    closing: bool = False
    confidence: int = 0
    matched_patterns: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class PropertyNumbers(BaseModel):
    """Numbers pulled straight out of the text by regex."""

    beds: Optional[int] = None
    baths: Optional[float] = None
    price: Optional[int] = None
    sqft: Optional[int] = None


# ─── Entity Extraction ────────────────────────────────────────────────

class MotivationAssessment(_Contract):
    level: Optional[MotivationLevel] = None
    confidence: int = 0
    indicators: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class TimeframeAssessment(_Contract):
    range: Optional[Timeframe] = None
    confidence: int = 0
    indicators: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class PropertyPreferences(_Contract):
    location: Optional[str] = None
    price_range: Optional[str] = None
    property_type: Optional[str] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    must_haves: list[str] = Field(default_factory=list)


class BudgetInfo(_Contract):
    range: Optional[str] = None
    preapproved: bool = False
    mentioned: bool = False


class ExtractedEntities(_Contract):
    """Structured attributes pulled from a conversation by the mini tier."""

    motivation: MotivationAssessment = Field(default_factory=MotivationAssessment)
    timeframe: TimeframeAssessment = Field(default_factory=TimeframeAssessment)
    property_preferences: PropertyPreferences = Field(default_factory=PropertyPreferences)
    budget: BudgetInfo = Field(default_factory=BudgetInfo)


# ─── Stage Detection ──────────────────────────────────────────────────

class StageTransition(_Contract):
    from_stage: PipelineStage
    to_stage: PipelineStage
    confidence: int = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class StageIndicators(_Contract):
    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)


class StageDetectionResult(_Contract):
    current_stage: PipelineStage = PipelineStage.LEAD
    confidence: int = 0
    reasoning: str = ""
    suggested_transition: Optional[StageTransition] = None
    indicators: StageIndicators = Field(default_factory=StageIndicators)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class StageAnalysis(StageDetectionResult):
    """Stage detection plus the governance level for its suggestion."""

    transition_level: TransitionLevel = TransitionLevel.MANUAL


class TransitionValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None


# ─── Next Action ──────────────────────────────────────────────────────

class BehavioralContext(_Contract):
    factor: str = ""
    explanation: str = ""


class NextActionRecommendation(_Contract):
    action_type: ActionType = ActionType.CALL
    urgency: int = 5
    script: str = ""
    rationale: str = ""
    behavioral_context: BehavioralContext = Field(default_factory=BehavioralContext)
    behavioral_factors: list[str] = Field(default_factory=list)
    estimated_timeframe: str = ""

    @field_validator("urgency", mode="before")
    @classmethod
    def _clamp_urgency(cls, v: Any) -> int:
        return clamp_score(v, 1, 10)


# ─── Reply Draft ──────────────────────────────────────────────────────

class ReplyDraft(_Contract):
    greeting: str = ""
    acknowledgment: str = ""
    value_proposition: str = ""
    next_step: str = ""
    closing: str = ""
    full_reply: str = ""
    tone: ReplyTone = ReplyTone.PROFESSIONAL
    edit_suggestions: list[str] = Field(default_factory=list)


# ─── Context & Aggregate ──────────────────────────────────────────────

class AnalysisContext(BaseModel):
    """Caller-supplied, read-only facts about the relationship."""

    contact_id: Optional[str] = None
    contact_name: str = ""
    current_stage: PipelineStage = PipelineStage.LEAD
    motivation_level: Optional[MotivationLevel] = None
    timeframe: Optional[Timeframe] = None
    days_since_contact: int = Field(0, ge=0)
    last_message_from: str = "client"  # client, agent
    conversation_type: Optional[str] = None  # text, email, call-followup
    generate_reply: bool = True
    property_preferences: Optional[dict[str, Any]] = None

    @property
    def first_name(self) -> str:
        return first_name(self.contact_name)


class ModelUsageFlags(_Contract):
    rule_based: bool = False
    mini: bool = False
    full: bool = False


class AnalysisMetadata(_Contract):
    total_estimated_cost: float = 0.0
    model_usage: ModelUsageFlags = Field(default_factory=ModelUsageFlags)
    processing_time_ms: float = 0.0
    confidence: int = 0

    @field_validator("total_estimated_cost", "processing_time_ms", mode="before")
    @classmethod
    def _non_negative(cls, v: Any) -> float:
        return max(float(v or 0.0), 0.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return clamp_score(v)


class AnalysisResult(_Contract):
    """Everything one analysis produced. Always fully populated."""

    patterns: PatternSignals = Field(default_factory=PatternSignals)
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    stage: StageAnalysis = Field(default_factory=StageAnalysis)
    next_action: NextActionRecommendation = Field(default_factory=NextActionRecommendation)
    reply_draft: ReplyDraft = Field(default_factory=ReplyDraft)
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)


class QuickAnalysis(BaseModel):
    urgency: bool = False
    buying_intent: bool = False
    selling_intent: bool = False
    priority: int = 0


# ─── Contact Record (deterministic engines) ───────────────────────────

class ContactRecord(BaseModel):
    """The slice of a stored contact the rule engines need."""

    id: str
    name: str
    pipeline_stage: PipelineStage = PipelineStage.LEAD
    motivation_level: Optional[MotivationLevel] = None
    timeframe: Optional[Timeframe] = None
    days_since_contact: int = Field(0, ge=0)
    preapproval_status: bool = False
    last_interaction_date: Optional[str] = None
    seven_day_rule_flag: bool = False
    created_at: Optional[str] = None
    property_preferences: Optional[dict[str, Any]] = None


def first_name(full_name: str) -> str:
    """First whitespace-separated token of a name ('' stays '')."""
    parts = full_name.strip().split()
    return parts[0] if parts else full_name.strip()
