"""
Tests for the ConversationAnalyzer orchestration.

Covers:
1. Full runs — stage order, usage flags, cost accumulation, tracker wiring
2. Router/analyzer tier coupling — stages run only on their own tier
3. Degradation — failing collaborators and unexpected errors never raise
4. Confidence aggregation and quick_analyze priority
"""

from __future__ import annotations

import logging

import pytest

from convintel.analysis import conversation_analyzer as analyzer_module
from convintel.analysis.conversation_analyzer import (
    ConversationAnalyzer,
    calculate_overall_confidence,
    quick_analyze,
)
from convintel.analysis.models import (
    ActionType,
    AnalysisContext,
    AnalysisResult,
    MotivationLevel,
    PipelineStage,
    TransitionLevel,
)
from convintel.config.schema import IntelSettings, TierModels
from convintel.llm.llm_config import TaskType
from convintel.llm.router import ModelUsageTracker, route_task
from convintel.observability.logging_config import get_analysis_id
from convintel.testing.fake_inference import FakeInferenceClient


BUYER_TEXT = (
    "I need to buy a house ASAP, pre-approved already, "
    "looking in 3 bedroom homes under $400,000"
)
PLAIN_TEXT = "Hi, thanks for the info yesterday. Let me talk it over with my partner."

ENTITIES = {
    "motivation": {"level": "High", "confidence": 88, "indicators": ["ASAP"]},
    "timeframe": {"range": "Immediate", "confidence": 91, "indicators": ["ASAP"]},
    "propertyPreferences": {"beds": 3},
    "budget": {"range": "$400,000", "preapproved": True, "mentioned": True},
}
STAGE = {
    "currentStage": "Lead",
    "confidence": 82,
    "reasoning": "High motivation, timeline and criteria",
    "suggestedTransition": {"from": "Lead", "to": "New Opportunity", "confidence": 82},
    "indicators": {"positive": ["pre-approved", "ASAP"], "negative": []},
}
ACTION = {
    "actionType": "Call",
    "urgency": 7,
    "script": "Hi Jane, let's line up showings this week.",
    "rationale": "Ready buyer",
    "behavioralContext": {"factor": "Urgency", "explanation": "ASAP timeline"},
    "estimatedTimeframe": "Today",
}
REPLY = {
    "greeting": "Hi Jane,",
    "acknowledgment": "Great news on the pre-approval.",
    "valueProposition": "I have three homes in mind.",
    "nextStep": "Are you free Saturday?",
    "closing": "Best,",
    "fullReply": "Hi Jane, ...",
    "tone": "Friendly",
}


@pytest.fixture
def context() -> AnalysisContext:
    return AnalysisContext(
        contact_id="contact-1",
        contact_name="Jane Doe",
        current_stage=PipelineStage.LEAD,
        days_since_contact=1,
    )


@pytest.fixture
def tracker() -> ModelUsageTracker:
    return ModelUsageTracker()


def _expected_cost(text: str, tasks) -> float:
    return sum(route_task(task, text).estimated_cost for task in tasks)


# ===========================================================================
# Full run
# ===========================================================================

class TestAnalyze:

    @pytest.mark.asyncio
    async def test_full_run(self, context, tracker):
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        analyzer = ConversationAnalyzer(client, usage_tracker=tracker)

        result = await analyzer.analyze(BUYER_TEXT, context)

        assert result.patterns.confidence == 95
        assert result.entities.motivation.level is MotivationLevel.HIGH
        assert result.stage.current_stage is PipelineStage.LEAD
        assert result.stage.transition_level is TransitionLevel.REVIEW
        assert result.next_action.action_type is ActionType.CALL
        assert result.reply_draft.acknowledgment == "Great news on the pre-approval."

        usage = result.metadata.model_usage
        assert (usage.rule_based, usage.mini, usage.full) == (True, True, True)
        assert client.call_count == 4
        assert result.metadata.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_cost_and_tracker(self, context, tracker):
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        analyzer = ConversationAnalyzer(client, usage_tracker=tracker)

        result = await analyzer.analyze(BUYER_TEXT, context)

        assert result.metadata.total_estimated_cost == pytest.approx(
            _expected_cost(BUYER_TEXT, list(TaskType))
        )
        stats = analyzer.get_usage_stats()
        assert stats.rule_based_count == 1
        assert stats.mini_count == 1
        assert stats.full_count == 3
        assert stats.total_estimated_cost == pytest.approx(result.metadata.total_estimated_cost)

    @pytest.mark.asyncio
    async def test_overall_confidence(self, context):
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        result = await ConversationAnalyzer(client).analyze(BUYER_TEXT, context)
        # (95 + 88 + 91 + 82 + 70) / 5 = 85.2
        assert result.metadata.confidence == 85

    @pytest.mark.asyncio
    async def test_reply_skipped_when_disabled(self, context, tracker):
        context.generate_reply = False
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION])
        analyzer = ConversationAnalyzer(client, usage_tracker=tracker)

        result = await analyzer.analyze(BUYER_TEXT, context)

        assert client.call_count == 3
        assert result.reply_draft.full_reply == ""
        assert tracker.get_stats().full_count == 2

    @pytest.mark.asyncio
    async def test_models_and_timeout_from_settings(self, context):
        settings = IntelSettings(
            models=TierModels(mini="small-v2", full="large-v2"),
            inference_timeout_seconds=5,
        )
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        await ConversationAnalyzer(client, settings=settings).analyze(BUYER_TEXT, context)

        models = [call.options.model for call in client.calls]
        assert models == ["small-v2", "large-v2", "large-v2", "large-v2"]

    @pytest.mark.asyncio
    async def test_logged_model_matches_called_model(self, context, caplog):
        settings = IntelSettings(models=TierModels(mini="claude-haiku", full="claude-sonnet"))
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])

        with caplog.at_level(logging.DEBUG, logger="convintel.analysis.conversation_analyzer"):
            await ConversationAnalyzer(client, settings=settings).analyze(BUYER_TEXT, context)

        logged = [
            r.model for r in caplog.records
            if r.getMessage() == "stage_executed" and r.tier != "rule-based"
        ]
        called = [call.options.model for call in client.calls]
        assert logged == called == [
            "claude-haiku", "claude-sonnet", "claude-sonnet", "claude-sonnet",
        ]

    @pytest.mark.asyncio
    async def test_default_tracker_is_per_analyzer(self, context):
        a = ConversationAnalyzer(FakeInferenceClient(default=ENTITIES))
        b = ConversationAnalyzer(FakeInferenceClient(default=ENTITIES))

        await a.analyze(BUYER_TEXT, context)

        assert a.get_usage_stats().total_calls == 5
        assert b.get_usage_stats().total_calls == 0

    @pytest.mark.asyncio
    async def test_reset_usage_stats(self, context, tracker):
        analyzer = ConversationAnalyzer(FakeInferenceClient(), usage_tracker=tracker)
        await analyzer.analyze(BUYER_TEXT, context)
        analyzer.reset_usage_stats()
        assert tracker.get_stats().total_calls == 0

    @pytest.mark.asyncio
    async def test_analysis_id_cleared_afterwards(self, context):
        await ConversationAnalyzer(FakeInferenceClient()).analyze(BUYER_TEXT, context)
        assert get_analysis_id() is None


# ===========================================================================
# Tier coupling
# ===========================================================================

class TestTierCoupling:
    """
    A stage runs only when the router's tier equals the stage's wired tier.
    Nothing escalates: a mismatch leaves that slot at its default.
    """

    @pytest.mark.asyncio
    async def test_pattern_detection_skipped_without_high_confidence_phrasing(
        self, context, tracker
    ):
        # Router sends pattern detection to the mini tier for plain text,
        # so the rule-based stage does not run at all.
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        analyzer = ConversationAnalyzer(client, usage_tracker=tracker)

        result = await analyzer.analyze(PLAIN_TEXT, context)

        assert result.metadata.model_usage.rule_based is False
        assert result.patterns.confidence == 0
        assert result.patterns.matched_patterns == []
        assert tracker.get_stats().rule_based_count == 0
        # Later stages are unaffected
        assert result.entities.motivation.level is MotivationLevel.HIGH
        assert client.call_count == 4

    @pytest.mark.asyncio
    async def test_skipped_pattern_stage_is_not_costed(self, context):
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        result = await ConversationAnalyzer(client).analyze(PLAIN_TEXT, context)

        expected = _expected_cost(PLAIN_TEXT, [
            TaskType.ENTITY_EXTRACTION,
            TaskType.STAGE_DETECTION,
            TaskType.ACTION_GENERATION,
            TaskType.REPLY_GENERATION,
        ])
        assert result.metadata.total_estimated_cost == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_ambiguous_text_still_extracts_entities(self, context):
        client = FakeInferenceClient([ENTITIES, STAGE, ACTION, REPLY])
        result = await ConversationAnalyzer(client).analyze(
            "Maybe we could be moving, not sure, probably next year", context
        )
        assert result.metadata.model_usage.mini is True
        assert result.entities.motivation.level is MotivationLevel.HIGH

    @pytest.mark.asyncio
    async def test_mismatched_route_skips_stage(self, context, monkeypatch):
        real_route = analyzer_module.route_task

        def forced(task, text):
            route = real_route(task, text)
            if task is TaskType.ENTITY_EXTRACTION:
                return real_route(TaskType.STAGE_DETECTION, text)  # full tier
            return route

        monkeypatch.setattr(analyzer_module, "route_task", forced)
        client = FakeInferenceClient([STAGE, ACTION, REPLY])

        result = await ConversationAnalyzer(client).analyze(BUYER_TEXT, context)

        assert result.metadata.model_usage.mini is False
        assert result.entities.motivation.confidence == 0
        assert client.call_count == 3


# ===========================================================================
# Degradation
# ===========================================================================

class TestDegradation:

    @pytest.mark.asyncio
    async def test_all_inference_fails(self, tracker):
        context = AnalysisContext(
            contact_name="Sam Lee",
            current_stage=PipelineStage.ACTIVE_OPPORTUNITY,
            days_since_contact=7,
        )
        client = FakeInferenceClient(default=RuntimeError("provider down"))

        result = await ConversationAnalyzer(client, usage_tracker=tracker).analyze(
            BUYER_TEXT, context
        )

        assert result.entities.motivation.confidence == 0
        assert result.stage.current_stage is PipelineStage.ACTIVE_OPPORTUNITY
        assert result.stage.reasoning == "Stage detection unavailable - using current stage"
        assert result.next_action.urgency == 10
        assert result.reply_draft.closing == "Talk soon!"
        # Attempted stages are still counted
        assert tracker.get_stats().full_count == 3
        # Only pattern confidence (95) and urgency*10 (100) contribute
        assert result.metadata.confidence == 98

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_partial_result(self, context, monkeypatch):
        def explode(text):
            raise RuntimeError("regex engine on fire")

        monkeypatch.setattr(analyzer_module, "detect_patterns", explode)
        client = FakeInferenceClient([ENTITIES])

        result = await ConversationAnalyzer(client).analyze(BUYER_TEXT, context)

        assert isinstance(result, AnalysisResult)
        assert result.stage.current_stage is PipelineStage.LEAD
        assert result.stage.transition_level is TransitionLevel.MANUAL
        assert result.next_action.urgency == 5
        assert client.call_count == 0
        assert get_analysis_id() is None


# ===========================================================================
# Aggregation & quick analysis
# ===========================================================================

class TestOverallConfidence:

    def test_zero_scores_are_dropped(self):
        result = AnalysisResult()
        result.patterns.confidence = 70
        # urgency defaults to 5 → 50
        assert calculate_overall_confidence(result) == 60

    def test_low_but_nonzero_signals_count(self):
        result = AnalysisResult()
        result.entities.motivation.confidence = 1
        result.next_action.urgency = 1
        # (1 + 10) / 2 = 5.5
        assert calculate_overall_confidence(result) == 6


class TestQuickAnalyze:

    def test_priority_components(self):
        quick = quick_analyze("Offer accepted! We need to move quickly, looking to buy")
        # urgency 30 + intent 20 + offer accepted 25
        assert quick.priority == 75
        assert quick.urgency is True
        assert quick.buying_intent is True

    def test_all_signals_reach_100(self):
        quick = quick_analyze(
            "Looking to buy ASAP. We saw 3 homes, offer accepted, and closed last week."
        )
        assert quick.priority == 100

    def test_nothing_detected(self):
        assert quick_analyze("hello").priority == 0

    def test_method_delegates(self):
        analyzer = ConversationAnalyzer(FakeInferenceClient())
        assert analyzer.quick_analyze("looking to sell").selling_intent is True
