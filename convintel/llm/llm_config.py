"""
LLM Configuration — Cost tiers, task types and pricing constants.

Defines the three execution tiers a conversation task can be routed to,
what each tier costs, and which tier each analysis stage is wired to.

Usage:
    from convintel.llm.llm_config import ModelTier, TaskType, TIER_PROFILES

    profile = TIER_PROFILES[ModelTier.MINI]
    # → TierProfile(tier=ModelTier.MINI, model="gpt-4o-mini", ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tiers & Task Types
# ---------------------------------------------------------------------------

class ModelTier(str, Enum):
    """Cost tiers, cheapest first."""

    RULE_BASED = "rule-based"   # Regex matching, free
    MINI = "mini"               # Cheap extraction model
    FULL = "full"               # Reasoning / generation model


class TaskType(str, Enum):
    """Units of analysis work the router can classify."""

    PATTERN_DETECTION = "pattern_detection"
    ENTITY_EXTRACTION = "entity_extraction"
    STAGE_DETECTION = "stage_detection"
    ACTION_GENERATION = "action_generation"
    REPLY_GENERATION = "reply_generation"


REASONING_TASKS = frozenset({TaskType.STAGE_DETECTION, TaskType.ACTION_GENERATION})
GENERATION_TASKS = frozenset({TaskType.REPLY_GENERATION})


# ---------------------------------------------------------------------------
# Tier Profile
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierProfile:
    """Pricing and default model for one tier."""

    tier: ModelTier
    model: str
    cost_per_1m_input: float = 0.0   # USD per 1M input tokens
    cost_per_1m_output: float = 0.0  # USD per 1M output tokens
    assumed_output_tokens: int = 0   # Output size used for estimates

    def estimate_cost(
        self, input_tokens: int, output_tokens: Optional[int] = None
    ) -> float:
        """Estimated USD cost for a call of the given size."""
        if output_tokens is None:
            output_tokens = self.assumed_output_tokens
        input_cost = (max(input_tokens, 0) / 1_000_000) * self.cost_per_1m_input
        output_cost = (max(output_tokens, 0) / 1_000_000) * self.cost_per_1m_output
        return input_cost + output_cost


# ---------------------------------------------------------------------------
# Default Profiles
# ---------------------------------------------------------------------------

RULE_BASED = TierProfile(
    tier=ModelTier.RULE_BASED,
    model="rule-based",
)

GPT_4O_MINI = TierProfile(
    tier=ModelTier.MINI,
    model="gpt-4o-mini",
    cost_per_1m_input=0.15,
    cost_per_1m_output=0.60,
    assumed_output_tokens=100,
)

GPT_4O = TierProfile(
    tier=ModelTier.FULL,
    model="gpt-4o",
    cost_per_1m_input=2.50,
    cost_per_1m_output=10.00,
    assumed_output_tokens=500,
)

TIER_PROFILES: dict[ModelTier, TierProfile] = {
    ModelTier.RULE_BASED: RULE_BASED,
    ModelTier.MINI: GPT_4O_MINI,
    ModelTier.FULL: GPT_4O,
}


# ---------------------------------------------------------------------------
# Stage Wiring
# ---------------------------------------------------------------------------

# The tier each analysis stage is implemented for. The analyzer only runs a
# stage when the router picks exactly this tier.
STAGE_TIERS: dict[TaskType, ModelTier] = {
    TaskType.PATTERN_DETECTION: ModelTier.RULE_BASED,
    TaskType.ENTITY_EXTRACTION: ModelTier.MINI,
    TaskType.STAGE_DETECTION: ModelTier.FULL,
    TaskType.ACTION_GENERATION: ModelTier.FULL,
    TaskType.REPLY_GENERATION: ModelTier.FULL,
}

# Sampling temperature per task
TASK_TEMPERATURES: dict[TaskType, float] = {
    TaskType.ENTITY_EXTRACTION: 0.1,
    TaskType.STAGE_DETECTION: 0.2,
    TaskType.ACTION_GENERATION: 0.3,
    TaskType.REPLY_GENERATION: 0.4,
}


def resolve_task_type(task_type: str | TaskType) -> TaskType:
    """Coerce a string to TaskType. Raises ValueError for unknown names."""
    if isinstance(task_type, TaskType):
        return task_type
    return TaskType(task_type)


def profile_for_tier(
    tier: ModelTier, model_override: Optional[str] = None
) -> TierProfile:
    """Tier profile, optionally with a deployment-specific model name."""
    profile = TIER_PROFILES[tier]
    if model_override and tier is not ModelTier.RULE_BASED:
        return replace(profile, model=model_override)
    return profile
