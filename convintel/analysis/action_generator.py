"""
Next Action Generator — the full tier.

Recommends the single best next step for the agent, with a script, a
rationale and the behavioral factor behind it. When inference fails the
recommendation comes from a small deterministic table instead; the 7-day
rule for Active Opportunities overrides everything else in that table.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from convintel.analysis.models import (
    ActionType,
    AnalysisContext,
    BehavioralContext,
    MotivationLevel,
    NextActionRecommendation,
    PipelineStage,
    Timeframe,
)
from convintel.exceptions import InferenceError
from convintel.llm.client import CompletionOptions, InferenceClient, complete_structured
from convintel.llm.llm_config import TASK_TEMPERATURES, TaskType
from convintel.llm.parsing import as_mapping, as_text

logger = logging.getLogger(__name__)

SEVEN_DAY_RULE_DAYS = 7
DEFAULT_URGENCY = 5

DEFAULT_SCRIPT = "Follow up with client to discuss their real estate needs."
DEFAULT_RATIONALE = "Maintain engagement with client."
DEFAULT_FACTOR = "General engagement"
DEFAULT_EXPLANATION = "Regular communication important for relationship building."
DEFAULT_TIMEFRAME = "This week"

ACTION_SYSTEM_PROMPT = """You are an expert real estate coach recommending next actions for agents.

Action Types:
- Call: For urgent matters, relationship building, complex discussions
- Text: Quick updates, reminders, low urgency check-ins
- Email: Formal communications, detailed information, documents
- Meeting: Property showings, strategy discussions, important updates
- Send Listing: When new properties match client criteria
- Follow-up: General check-ins when no specific action needed

Urgency Scale (1-10):
10: Critical - 7-day rule violation, immediate attention required
9: Urgent - Time-sensitive opportunity or issue
7-8: High - Important but not emergency
5-6: Medium - Routine priority actions
3-4: Low - Can wait a day or two
1-2: Minimal - Nice to have when time permits

Generate actionable, specific recommendations with scripts the agent can use.

Return ONLY valid JSON."""


def build_action_prompt(text: str, context: AnalysisContext) -> str:
    preferences = (
        json.dumps(context.property_preferences)
        if context.property_preferences
        else "None"
    )
    motivation = context.motivation_level.value if context.motivation_level else "Not set"
    timeframe = context.timeframe.value if context.timeframe else "Not set"

    return f"""Current Context:
- Pipeline Stage: {context.current_stage.value}
- Motivation Level: {motivation}
- Timeframe: {timeframe}
- Days Since Contact: {context.days_since_contact}
- Property Preferences: {preferences}

Recent Conversation:
"{text}"

Recommend the best next action and return JSON with this structure:
{{
  "actionType": "Call|Text|Email|Meeting|Send Listing|Follow-up",
  "urgency": 1-10,
  "script": "Specific script the agent should use",
  "rationale": "Why this action matters now",
  "behavioralContext": {{
    "factor": "Primary behavioral factor driving this action",
    "explanation": "Detailed explanation"
  }},
  "estimatedTimeframe": "When this should be completed (e.g., 'Today', 'This week', 'Within 48 hours')"
}}"""


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_action_type(value: Any) -> ActionType:
    """Case-insensitive containment against the known types; Call otherwise."""
    text = as_text(value)
    if text is None:
        return ActionType.CALL
    lowered = text.lower()
    for action_type in ActionType:
        if action_type.value.lower() in lowered:
            return action_type
    return ActionType.CALL


def normalize_next_action(raw: Mapping[str, Any]) -> NextActionRecommendation:
    behavioral = as_mapping(raw.get("behavioralContext") or raw.get("behavioral_context"))
    factor = as_text(behavioral.get("factor")) or DEFAULT_FACTOR

    return NextActionRecommendation(
        action_type=normalize_action_type(raw.get("actionType") or raw.get("action_type")),
        # Missing or zero urgency falls back before clamping
        urgency=raw.get("urgency") or DEFAULT_URGENCY,
        script=as_text(raw.get("script")) or DEFAULT_SCRIPT,
        rationale=as_text(raw.get("rationale")) or DEFAULT_RATIONALE,
        behavioral_context=BehavioralContext(
            factor=factor,
            explanation=as_text(behavioral.get("explanation")) or DEFAULT_EXPLANATION,
        ),
        behavioral_factors=[factor],
        estimated_timeframe=(
            as_text(raw.get("estimatedTimeframe") or raw.get("estimated_timeframe"))
            or DEFAULT_TIMEFRAME
        ),
    )


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

def default_next_action(context: AnalysisContext) -> NextActionRecommendation:
    """Rule-based recommendation used whenever inference is unavailable."""
    stage = context.current_stage
    days = context.days_since_contact

    if stage is PipelineStage.ACTIVE_OPPORTUNITY and days >= SEVEN_DAY_RULE_DAYS:
        return _recommendation(
            ActionType.CALL,
            10,
            script=(
                "Hi [Name], I want to ensure I'm providing the best service. With the "
                "market changing weekly, should I send you fresh listings or schedule "
                "another showing tour?"
            ),
            rationale="CRITICAL: 7-day rule violation - immediate re-engagement required",
            factor="7-Day Rule Violation",
            explanation=(
                f"{days} days without contact in Active Opportunity stage. Active "
                "opportunities at risk of going cold without weekly contact."
            ),
            timeframe="Today",
        )

    if stage is PipelineStage.LEAD and context.motivation_level is None:
        return _recommendation(
            ActionType.CALL,
            7,
            script=(
                "Hi [Name], I wanted to follow up and learn more about your real estate "
                "goals. What's motivating your move, and what's your ideal timeline?"
            ),
            rationale="Qualification needed: Determine motivation level and timeframe",
            factor="Lead Qualification",
            explanation=(
                "Need to establish motivation and timeframe to advance lead to "
                "opportunity stage."
            ),
            timeframe="This week",
        )

    if stage is PipelineStage.NEW_OPPORTUNITY and context.timeframe is Timeframe.IMMEDIATE:
        return _recommendation(
            ActionType.CALL,
            8,
            script=(
                "Hi [Name], given your immediate timeline, let's schedule showings for "
                "the top properties that match your criteria. When are you available "
                "this week?"
            ),
            rationale="Urgent timeline requires accelerated showing schedule",
            factor="Immediate Timeframe",
            explanation=(
                "Client needs immediate action - should prioritize property showings "
                "and offer preparation."
            ),
            timeframe="Within 48 hours",
        )

    return _recommendation(
        ActionType.TEXT,
        5,
        script="Hi [Name], just checking in. Any updates on your real estate search?",
        rationale="Routine check-in to maintain engagement",
        factor="General Engagement",
        explanation=(
            "Regular communication important for relationship building and staying "
            "top of mind."
        ),
        timeframe="This week",
    )


def _recommendation(
    action_type: ActionType,
    urgency: int,
    *,
    script: str,
    rationale: str,
    factor: str,
    explanation: str,
    timeframe: str,
) -> NextActionRecommendation:
    return NextActionRecommendation(
        action_type=action_type,
        urgency=urgency,
        script=script,
        rationale=rationale,
        behavioral_context=BehavioralContext(factor=factor, explanation=explanation),
        behavioral_factors=[factor],
        estimated_timeframe=timeframe,
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

async def generate_next_action(
    text: str,
    context: AnalysisContext,
    client: InferenceClient,
    *,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> NextActionRecommendation:
    """Recommend the next action with the full tier, falling back to rules."""
    options = CompletionOptions(
        temperature=TASK_TEMPERATURES[TaskType.ACTION_GENERATION],
        expect_structured_output=True,
        model=model,
    )
    try:
        raw = await complete_structured(
            client,
            ACTION_SYSTEM_PROMPT,
            build_action_prompt(text, context),
            options,
            timeout=timeout,
            stage=TaskType.ACTION_GENERATION.value,
        )
        return normalize_next_action(raw)
    except InferenceError as e:
        logger.warning(
            "action_generation_failed",
            extra={
                "contact_id": context.contact_id,
                "error": str(e)[:200],
                "error_type": type(e).__name__,
            },
        )
        return default_next_action(context)
    except Exception as e:
        logger.exception(
            "action_generation_unexpected_error",
            extra={"contact_id": context.contact_id, "error": str(e)[:200]},
        )
        return default_next_action(context)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

STAGE_DEFAULT_ACTIONS: dict[PipelineStage, ActionType] = {
    PipelineStage.LEAD: ActionType.CALL,
    PipelineStage.NEW_OPPORTUNITY: ActionType.CALL,
    PipelineStage.ACTIVE_OPPORTUNITY: ActionType.CALL,
    PipelineStage.UNDER_CONTRACT: ActionType.TEXT,
    PipelineStage.CLOSED: ActionType.EMAIL,
}


def get_stage_default_action(stage: PipelineStage | str) -> ActionType:
    try:
        return STAGE_DEFAULT_ACTIONS[PipelineStage(stage)]
    except ValueError:
        return ActionType.CALL


@dataclass
class UrgencyFactors:
    """Inputs to calculate_action_urgency()."""

    days_since_contact: int
    stage: PipelineStage
    seven_day_rule_violation: bool = False
    timeframe: Optional[Timeframe] = None
    motivation: Optional[MotivationLevel] = None


def calculate_action_urgency(factors: UrgencyFactors) -> int:
    """Additive 1-10 urgency score."""
    urgency = DEFAULT_URGENCY

    if factors.seven_day_rule_violation:
        urgency += 5

    if factors.days_since_contact >= 7:
        urgency += 3
    elif factors.days_since_contact >= 3:
        urgency += 1

    if factors.timeframe is Timeframe.IMMEDIATE:
        urgency += 2

    if factors.motivation is MotivationLevel.HIGH:
        urgency += 1

    if factors.stage is PipelineStage.ACTIVE_OPPORTUNITY:
        urgency += 1
    elif factors.stage is PipelineStage.CLOSED:
        urgency -= 3

    return min(max(urgency, 1), 10)
