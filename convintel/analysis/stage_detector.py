"""
Stage Detector & Transition Validator — the full tier.

detect_stage() asks the reasoning model which pipeline stage a conversation
belongs to and whether a move is warranted. Everything else in this module
is pure governance over that answer:

- validate_stage_transition(): is the move allowed by the pipeline graph?
- get_transition_level(): auto / review / manual by confidence
- should_transition_stage(): confidence and evidence gate
- calculate_stage_progression(): signed confidence of the move

Nothing here applies a transition; callers persist accepted moves.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from convintel.analysis.models import (
    STAGE_ORDER,
    PipelineStage,
    StageDetectionResult,
    StageIndicators,
    StageTransition,
    TransitionLevel,
    TransitionValidation,
)
from convintel.exceptions import InferenceError
from convintel.llm.client import CompletionOptions, InferenceClient, complete_structured
from convintel.llm.llm_config import TASK_TEMPERATURES, TaskType
from convintel.llm.parsing import as_mapping, as_number, as_str_list, as_text

logger = logging.getLogger(__name__)

AUTO_CONFIDENCE = 90
REVIEW_CONFIDENCE = 70
MIN_POSITIVE_INDICATORS = 2

UNAVAILABLE_REASONING = "Stage detection unavailable - using current stage"

STAGE_SYSTEM_PROMPT = """You are an expert real estate agent analyzing client conversations to determine pipeline stages.

Pipeline Stages:
1. Lead - Initial contact, minimal engagement, qualifying stage
2. New Opportunity - Motivated, has timeframe, discussing property needs
3. Active Opportunity - Viewing properties, high engagement, 7-day rule applies
4. Under Contract - Offer accepted, in closing process
5. Closed - Transaction completed, follow-up phase

Stage Transition Criteria:
- Lead → New Opportunity: High motivation + specific timeframe + property preferences
- New Opportunity → Active Opportunity: Completed showings + active engagement + 7-day activity
- Active Opportunity → Under Contract: Offer accepted by seller
- Under Contract → Closed: Closing completed, documents signed

Analyze the conversation and determine:
1. Most appropriate current stage
2. Confidence level (0-100)
3. Reasoning for stage determination
4. If a stage transition is warranted
5. Positive indicators supporting the stage
6. Negative indicators (evidence against the stage)

Return ONLY valid JSON."""


# ---------------------------------------------------------------------------
# Transition graph
# ---------------------------------------------------------------------------

# Moves allowed out of each stage (self-loops included)
VALID_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.LEAD: frozenset({
        PipelineStage.NEW_OPPORTUNITY, PipelineStage.LEAD,
    }),
    PipelineStage.NEW_OPPORTUNITY: frozenset({
        PipelineStage.ACTIVE_OPPORTUNITY, PipelineStage.LEAD,
        PipelineStage.NEW_OPPORTUNITY,
    }),
    PipelineStage.ACTIVE_OPPORTUNITY: frozenset({
        PipelineStage.UNDER_CONTRACT, PipelineStage.NEW_OPPORTUNITY,
        PipelineStage.ACTIVE_OPPORTUNITY,
    }),
    PipelineStage.UNDER_CONTRACT: frozenset({
        PipelineStage.CLOSED, PipelineStage.ACTIVE_OPPORTUNITY,
        PipelineStage.UNDER_CONTRACT,
    }),
    PipelineStage.CLOSED: frozenset({PipelineStage.CLOSED}),  # terminal
}

# Keyed by the TARGET stage: the source stages from which arriving at the
# target is still acceptable even though the forward table does not list it.
REVERSE_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.LEAD: frozenset(),
    PipelineStage.NEW_OPPORTUNITY: frozenset({PipelineStage.LEAD}),
    PipelineStage.ACTIVE_OPPORTUNITY: frozenset({
        PipelineStage.NEW_OPPORTUNITY, PipelineStage.LEAD,
    }),
    PipelineStage.UNDER_CONTRACT: frozenset({
        PipelineStage.ACTIVE_OPPORTUNITY, PipelineStage.NEW_OPPORTUNITY,
    }),
    PipelineStage.CLOSED: frozenset(),
}


def normalize_pipeline_stage(value: Any) -> Optional[PipelineStage]:
    """Map free text onto a canonical stage by case-insensitive containment."""
    if isinstance(value, PipelineStage):
        return value
    text = as_text(value)
    if text is None:
        return None
    lowered = text.lower()
    for stage in STAGE_ORDER:
        if stage.value.lower() in lowered:
            return stage
    return None


def validate_stage_transition(
    from_stage: PipelineStage | str,
    to_stage: PipelineStage | str,
) -> TransitionValidation:
    """
    Check a move against the pipeline graph.

    Rejections are returned, never raised.
    """
    source = normalize_pipeline_stage(from_stage)
    target = normalize_pipeline_stage(to_stage)
    if source is None or target is None:
        return TransitionValidation(
            valid=False,
            reason=f"Unknown pipeline stage: {from_stage if source is None else to_stage}",
        )

    if target in VALID_TRANSITIONS[source]:
        return TransitionValidation(valid=True)

    if source in REVERSE_TRANSITIONS[target]:
        return TransitionValidation(valid=True, reason="Reverse transition allowed")

    return TransitionValidation(
        valid=False,
        reason=f"Cannot transition from {source.value} to {target.value}",
    )


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def build_stage_prompt(text: str, current_stage: Optional[PipelineStage]) -> str:
    if current_stage is not None:
        context = f'Current Stage: {current_stage.value}\n\nConversation:\n"{text}"'
    else:
        context = f'Conversation:\n"{text}"'

    return f"""{context}

Determine the appropriate pipeline stage and return JSON with this structure:
{{
  "currentStage": "Lead|New Opportunity|Active Opportunity|Under Contract|Closed",
  "confidence": 0-100,
  "reasoning": "Explanation of why this stage fits",
  "suggestedTransition": {{
    "from": "current stage",
    "to": "recommended stage",
    "confidence": 0-100
  }},
  "indicators": {{
    "positive": ["evidence supporting this stage"],
    "negative": ["evidence against this stage"]
  }}
}}"""


def normalize_stage_detection(
    raw: Mapping[str, Any],
    current_stage: Optional[PipelineStage],
) -> StageDetectionResult:
    fallback = current_stage or PipelineStage.LEAD
    stage = normalize_pipeline_stage(raw.get("currentStage") or raw.get("current_stage"))

    suggestion = as_mapping(raw.get("suggestedTransition") or raw.get("suggested_transition"))
    transition: Optional[StageTransition] = None
    if as_text(suggestion.get("to")):
        transition = StageTransition(
            from_stage=normalize_pipeline_stage(suggestion.get("from")) or fallback,
            to_stage=normalize_pipeline_stage(suggestion.get("to")) or PipelineStage.LEAD,
            confidence=as_number(suggestion.get("confidence")),
        )

    indicators = as_mapping(raw.get("indicators"))
    return StageDetectionResult(
        current_stage=stage or fallback,
        confidence=as_number(raw.get("confidence")),
        reasoning=as_text(raw.get("reasoning")) or "",
        suggested_transition=transition,
        indicators=StageIndicators(
            positive=as_str_list(indicators.get("positive")),
            negative=as_str_list(indicators.get("negative")),
        ),
    )


def default_stage_detection(current_stage: Optional[PipelineStage]) -> StageDetectionResult:
    return StageDetectionResult(
        current_stage=current_stage or PipelineStage.LEAD,
        confidence=0,
        reasoning=UNAVAILABLE_REASONING,
    )


async def detect_stage(
    text: str,
    current_stage: Optional[PipelineStage | str],
    client: InferenceClient,
    *,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> StageDetectionResult:
    """Classify the conversation's pipeline stage with the full tier."""
    stage = normalize_pipeline_stage(current_stage)
    options = CompletionOptions(
        temperature=TASK_TEMPERATURES[TaskType.STAGE_DETECTION],
        expect_structured_output=True,
        model=model,
    )
    try:
        raw = await complete_structured(
            client,
            STAGE_SYSTEM_PROMPT,
            build_stage_prompt(text, stage),
            options,
            timeout=timeout,
            stage=TaskType.STAGE_DETECTION.value,
        )
        return normalize_stage_detection(raw, stage)
    except InferenceError as e:
        logger.warning(
            "stage_detection_failed",
            extra={"error": str(e)[:200], "error_type": type(e).__name__},
        )
        return default_stage_detection(stage)
    except Exception as e:
        logger.exception(
            "stage_detection_unexpected_error",
            extra={"error": str(e)[:200]},
        )
        return default_stage_detection(stage)


# ---------------------------------------------------------------------------
# Governance
# ---------------------------------------------------------------------------

def get_transition_level(result: StageDetectionResult) -> TransitionLevel:
    """How much human confirmation the suggested move needs."""
    if result.suggested_transition is None:
        return TransitionLevel.MANUAL

    confidence = result.suggested_transition.confidence
    if confidence >= AUTO_CONFIDENCE:
        return TransitionLevel.AUTO
    if confidence >= REVIEW_CONFIDENCE:
        return TransitionLevel.REVIEW
    return TransitionLevel.MANUAL


def should_transition_stage(result: StageDetectionResult) -> bool:
    """High confidence, or medium confidence backed by enough evidence."""
    if result.suggested_transition is None:
        return False

    confidence = result.suggested_transition.confidence
    if confidence >= AUTO_CONFIDENCE:
        return True
    return (
        confidence >= REVIEW_CONFIDENCE
        and len(result.indicators.positive) >= MIN_POSITIVE_INDICATORS
    )


def calculate_stage_progression(
    current_stage: PipelineStage | str,
    result: StageDetectionResult,
) -> int:
    """+confidence for a forward move, -confidence backward, 0 otherwise."""
    stage = normalize_pipeline_stage(current_stage)
    if stage is None or result.suggested_transition is None:
        return 0

    current_index = STAGE_ORDER.index(stage)
    suggested_index = STAGE_ORDER.index(result.suggested_transition.to_stage)
    confidence = result.suggested_transition.confidence

    if suggested_index > current_index:
        return confidence
    if suggested_index < current_index:
        return -confidence
    return 0
