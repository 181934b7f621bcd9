"""
Tests for cost-tier routing and usage tracking.

Covers:
1. Complexity assessment — tokens, ambiguity, reasoning/generation flags
2. route_task — tier selection and cost estimates
3. ModelUsageTracker — counting, cost accumulation, reset, thread safety
"""

from __future__ import annotations

import threading

import pytest

from convintel.llm.llm_config import (
    GPT_4O,
    GPT_4O_MINI,
    STAGE_TIERS,
    ModelTier,
    TaskType,
    profile_for_tier,
)
from convintel.llm.router import (
    ModelRoute,
    ModelUsageTracker,
    assess_task_complexity,
    estimate_cost,
    estimate_tokens,
    has_obvious_patterns,
    route_task,
)


PLAIN_TEXT = "Hello there, hope the weekend went well for you and the family."
PATTERN_TEXT = "We are looking to buy ASAP and already pre-approved."


# ===========================================================================
# Complexity
# ===========================================================================

class TestComplexity:

    def test_token_estimate_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_ambiguity_detected_case_insensitively(self):
        c = assess_task_complexity("entity_extraction", "MAYBE next spring, Not Sure yet")
        assert c.has_ambiguity is True

    def test_no_ambiguity(self):
        c = assess_task_complexity("entity_extraction", PLAIN_TEXT)
        assert c.has_ambiguity is False

    @pytest.mark.parametrize("task", [TaskType.STAGE_DETECTION, TaskType.ACTION_GENERATION])
    def test_reasoning_tasks(self, task):
        c = assess_task_complexity(task, PLAIN_TEXT)
        assert c.requires_reasoning is True
        assert c.requires_generation is False

    def test_reply_requires_generation(self):
        c = assess_task_complexity(TaskType.REPLY_GENERATION, PLAIN_TEXT)
        assert c.requires_generation is True
        assert c.requires_reasoning is False

    def test_high_confidence_patterns(self):
        assert has_obvious_patterns(PATTERN_TEXT) is True
        assert has_obvious_patterns(PLAIN_TEXT) is False

    def test_unknown_task_type_rejected(self):
        with pytest.raises(ValueError):
            assess_task_complexity("summarize", PLAIN_TEXT)


# ===========================================================================
# Routing
# ===========================================================================

class TestRouteTask:

    @pytest.mark.parametrize("task", list(TaskType))
    @pytest.mark.parametrize("text", ["", PLAIN_TEXT, PATTERN_TEXT, "maybe " * 200])
    def test_route_is_total_and_non_negative(self, task, text):
        route = route_task(task, text)
        assert route.tier in set(ModelTier)
        assert route.estimated_cost >= 0
        if route.tier is ModelTier.RULE_BASED:
            assert route.estimated_cost == 0.0

    def test_pattern_detection_with_patterns_is_rule_based(self):
        route = route_task("pattern_detection", PATTERN_TEXT)
        assert route.tier is ModelTier.RULE_BASED
        assert route.estimated_cost == 0.0
        assert route.model == "rule-based"

    def test_pattern_detection_without_patterns_goes_to_mini(self):
        route = route_task("pattern_detection", PLAIN_TEXT)
        assert route.tier is ModelTier.MINI

    def test_entity_extraction_is_mini_even_when_ambiguous(self):
        # The ambiguity flag never changes the tier.
        route = route_task(TaskType.ENTITY_EXTRACTION, "maybe, not sure, possibly")
        assert route.tier is ModelTier.MINI

    @pytest.mark.parametrize("task", [
        TaskType.STAGE_DETECTION,
        TaskType.ACTION_GENERATION,
        TaskType.REPLY_GENERATION,
    ])
    def test_reasoning_and_generation_go_to_full(self, task):
        assert route_task(task, PATTERN_TEXT).tier is ModelTier.FULL

    def test_mini_cost(self):
        text = "x" * 400  # 100 tokens
        route = route_task(TaskType.ENTITY_EXTRACTION, text)
        expected = 100 * 0.15 / 1_000_000 + 100 * 0.60 / 1_000_000
        assert route.estimated_cost == pytest.approx(expected)

    def test_full_cost(self):
        text = "x" * 400
        route = route_task(TaskType.STAGE_DETECTION, text)
        expected = 100 * 2.50 / 1_000_000 + 500 * 10.00 / 1_000_000
        assert route.estimated_cost == pytest.approx(expected)

    def test_estimate_cost_rule_based_is_free(self):
        assert estimate_cost(ModelTier.RULE_BASED, 10_000) == 0.0

    def test_explicit_output_tokens(self):
        assert GPT_4O_MINI.estimate_cost(0, 1_000_000) == pytest.approx(0.60)
        assert GPT_4O.estimate_cost(1_000_000, 0) == pytest.approx(2.50)


class TestStageWiring:

    def test_every_task_is_wired(self):
        assert set(STAGE_TIERS) == set(TaskType)

    def test_wiring(self):
        assert STAGE_TIERS[TaskType.PATTERN_DETECTION] is ModelTier.RULE_BASED
        assert STAGE_TIERS[TaskType.ENTITY_EXTRACTION] is ModelTier.MINI
        assert STAGE_TIERS[TaskType.REPLY_GENERATION] is ModelTier.FULL

    def test_profile_override_keeps_pricing(self):
        profile = profile_for_tier(ModelTier.FULL, "gpt-4o-2024-08-06")
        assert profile.model == "gpt-4o-2024-08-06"
        assert profile.cost_per_1m_input == GPT_4O.cost_per_1m_input

    def test_rule_based_ignores_override(self):
        assert profile_for_tier(ModelTier.RULE_BASED, "anything").model == "rule-based"


# ===========================================================================
# Usage tracking
# ===========================================================================

def _route(tier: ModelTier, cost: float) -> ModelRoute:
    return ModelRoute(tier=tier, model="m", estimated_cost=cost, reason="test")


class TestModelUsageTracker:

    def test_starts_empty(self):
        stats = ModelUsageTracker().get_stats()
        assert stats.total_calls == 0
        assert stats.total_estimated_cost == 0.0

    def test_records_per_tier(self):
        tracker = ModelUsageTracker()
        tracker.record_usage(_route(ModelTier.RULE_BASED, 0.0))
        tracker.record_usage(_route(ModelTier.MINI, 0.001))
        tracker.record_usage(_route(ModelTier.FULL, 0.01))
        tracker.record_usage(_route(ModelTier.FULL, 0.01))

        stats = tracker.get_stats()
        assert stats.rule_based_count == 1
        assert stats.mini_count == 1
        assert stats.full_count == 2
        assert stats.total_estimated_cost == pytest.approx(0.021)

    def test_get_stats_returns_copy(self):
        tracker = ModelUsageTracker()
        snapshot = tracker.get_stats()
        tracker.record_usage(_route(ModelTier.MINI, 0.5))
        assert snapshot.mini_count == 0

    def test_reset(self):
        tracker = ModelUsageTracker()
        tracker.record_usage(_route(ModelTier.MINI, 0.5))
        tracker.reset()
        assert tracker.get_stats().total_calls == 0

    def test_to_dict(self):
        tracker = ModelUsageTracker()
        tracker.record_usage(_route(ModelTier.FULL, 0.0052501))
        data = tracker.get_stats().to_dict()
        assert data["full_count"] == 1
        assert data["total_estimated_cost"] == 0.00525

    def test_independent_trackers(self):
        a, b = ModelUsageTracker(), ModelUsageTracker()
        a.record_usage(_route(ModelTier.MINI, 0.1))
        assert b.get_stats().mini_count == 0

    def test_thread_safe_counting(self):
        tracker = ModelUsageTracker()
        route = _route(ModelTier.MINI, 0.001)

        def worker():
            for _ in range(500):
                tracker.record_usage(route)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = tracker.get_stats()
        assert stats.mini_count == 4000
        assert stats.total_estimated_cost == pytest.approx(4.0)
