"""
Task Router — Cost-tiered routing for conversation analysis work.

Decides which tier handles a task:
- Rule-based (free) → pattern detection when high-precision phrasing is present
- Mini (cheap) → extraction-style work that needs no reasoning or generation
- Full (expensive) → stage reasoning, action planning and reply drafting

Routing is a pure function of (task type, text): no I/O, never fails for a
valid task type. Actual spend is tracked separately by ModelUsageTracker,
which the analyzer feeds with every route it executes.

Usage:
    from convintel.llm.router import route_task, ModelUsageTracker

    route = route_task("entity_extraction", conversation)
    print(route.tier, f"${route.estimated_cost:.6f}")

    tracker = ModelUsageTracker()
    tracker.record_usage(route)
    tracker.get_stats()
"""

from __future__ import annotations

import logging
import math
import re
import threading
from dataclasses import asdict, dataclass
from typing import Any

from convintel.llm.llm_config import (
    GENERATION_TASKS,
    REASONING_TASKS,
    TIER_PROFILES,
    ModelTier,
    TaskType,
    resolve_task_type,
)

logger = logging.getLogger(__name__)


AMBIGUITY_INDICATORS = (
    "maybe", "possibly", "might", "could be", "not sure",
    "probably", "somewhat", "kind of", "sort of",
)

HIGH_CONFIDENCE_PATTERNS = (
    # Buying / selling intent
    re.compile(r"\b(looking to buy|want to purchase|interested in buying)\b", re.I),
    re.compile(r"\b(looking to sell|want to sell|thinking of selling)\b", re.I),
    # Urgency
    re.compile(r"\b(asap|immediately|right now|urgent)\b", re.I),
    # Showings
    re.compile(r"\b(saw \d+ home|showing|viewed|visited|tour)\b", re.I),
    # Offer accepted
    re.compile(r"\b(offer accepted|under contract|seller accepted)\b", re.I),
    # Closing
    re.compile(r"\b(closed|closing complete|got the keys|funding)\b", re.I),
    # Pre-approval
    re.compile(r"\b(pre-approval|pre-qualified|pre-approved)\b", re.I),
)


# ---------------------------------------------------------------------------
# Value Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskComplexity:
    """Per-call complexity assessment. Never persisted."""

    token_count: int
    has_ambiguity: bool
    requires_reasoning: bool
    requires_generation: bool
    has_high_confidence_patterns: bool


@dataclass(frozen=True)
class ModelRoute:
    """Routing decision: which tier, which model, what it should cost."""

    tier: ModelTier
    model: str
    estimated_cost: float   # USD, never negative
    reason: str


# ---------------------------------------------------------------------------
# Complexity & Cost
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


def has_obvious_patterns(text: str) -> bool:
    """True when any high-precision phrasing is present."""
    return any(pattern.search(text) for pattern in HIGH_CONFIDENCE_PATTERNS)


def assess_task_complexity(task_type: str | TaskType, text: str) -> TaskComplexity:
    """Analyze a task to decide how much model it needs."""
    task = resolve_task_type(task_type)
    lowered = text.lower()

    return TaskComplexity(
        token_count=estimate_tokens(text),
        has_ambiguity=any(word in lowered for word in AMBIGUITY_INDICATORS),
        requires_reasoning=task in REASONING_TASKS,
        requires_generation=task in GENERATION_TASKS,
        has_high_confidence_patterns=has_obvious_patterns(text),
    )


def estimate_cost(tier: ModelTier, input_tokens: int) -> float:
    """Estimated USD cost of one call on `tier` using its assumed output size."""
    return TIER_PROFILES[tier].estimate_cost(input_tokens)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def route_task(task_type: str | TaskType, text: str) -> ModelRoute:
    """
    Route a task to the cheapest tier that can handle it.

    Args:
        task_type: One of the TaskType values (enum or its string value)
        text: The conversation text the task will operate on

    Returns:
        ModelRoute with tier, model, estimated cost and reason
    """
    task = resolve_task_type(task_type)
    complexity = assess_task_complexity(task, text)

    # Tier 1: rule-based for high-confidence patterns
    if task is TaskType.PATTERN_DETECTION and complexity.has_high_confidence_patterns:
        return ModelRoute(
            tier=ModelTier.RULE_BASED,
            model=TIER_PROFILES[ModelTier.RULE_BASED].model,
            estimated_cost=0.0,
            reason="High-confidence patterns detected, using rule-based matching",
        )

    # Tier 2: mini for simple tasks
    if not complexity.requires_reasoning and not complexity.requires_generation:
        return ModelRoute(
            tier=ModelTier.MINI,
            model=TIER_PROFILES[ModelTier.MINI].model,
            estimated_cost=estimate_cost(ModelTier.MINI, complexity.token_count),
            reason="Simple extraction task, using cost-effective mini model",
        )

    # Tier 3: full for reasoning and generation
    return ModelRoute(
        tier=ModelTier.FULL,
        model=TIER_PROFILES[ModelTier.FULL].model,
        estimated_cost=estimate_cost(ModelTier.FULL, complexity.token_count),
        reason="Complex reasoning or generation required, using full model",
    )


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageStats:
    """Snapshot of cumulative tier usage."""

    rule_based_count: int = 0
    mini_count: int = 0
    full_count: int = 0
    total_estimated_cost: float = 0.0

    @property
    def total_calls(self) -> int:
        return self.rule_based_count + self.mini_count + self.full_count

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_estimated_cost"] = round(self.total_estimated_cost, 6)
        return data


class ModelUsageTracker:
    """
    Cumulative per-tier usage counters.

    Injected into each ConversationAnalyzer so callers decide the scope
    (per request, per tenant, per process). Safe to share between threads
    and between concurrent tasks; counters only reset on an explicit
    reset() call.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats = UsageStats()

    def record_usage(self, route: ModelRoute) -> None:
        """Count one executed stage and add its estimated cost."""
        with self._lock:
            if route.tier is ModelTier.RULE_BASED:
                self._stats.rule_based_count += 1
            elif route.tier is ModelTier.MINI:
                self._stats.mini_count += 1
                self._stats.total_estimated_cost += route.estimated_cost
            elif route.tier is ModelTier.FULL:
                self._stats.full_count += 1
                self._stats.total_estimated_cost += route.estimated_cost

    def get_stats(self) -> UsageStats:
        """Return a copy of the current counters."""
        with self._lock:
            return UsageStats(
                rule_based_count=self._stats.rule_based_count,
                mini_count=self._stats.mini_count,
                full_count=self._stats.full_count,
                total_estimated_cost=self._stats.total_estimated_cost,
            )

    def reset(self) -> None:
        """Reset counters (e.g., start of a billing period or test run)."""
        with self._lock:
            self._stats = UsageStats()
        logger.info("usage_tracker_reset")


# Process-wide convenience instance for scripts and the CLI. Services should
# construct their own tracker and pass it to ConversationAnalyzer.
default_usage_tracker = ModelUsageTracker()
