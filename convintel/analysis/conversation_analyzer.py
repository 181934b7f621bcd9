"""
Conversation Analyzer — orchestrates the analysis stages.

Runs the five stages in a fixed order, asking the router before each one
which tier the task needs:

    1. pattern detection   (rule-based)
    2. entity extraction   (mini)
    3. stage detection     (full)
    4. next action         (full)
    5. reply draft         (full, optional)

A stage only runs when the router's tier matches the tier that stage is
implemented for; otherwise it is skipped and its slot keeps the default.
Every stage absorbs its own inference failures, and analyze() catches
anything else at the top level, so a call always returns a complete
AnalysisResult.

Usage:
    analyzer = ConversationAnalyzer(client, usage_tracker=ModelUsageTracker())
    result = await analyzer.analyze(conversation, AnalysisContext(...))
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from typing import Iterable, Mapping, Optional

from convintel.analysis.action_generator import generate_next_action
from convintel.analysis.entity_extractor import batch_extract_entities, extract_entities
from convintel.analysis.models import (
    AnalysisContext,
    AnalysisResult,
    ExtractedEntities,
    NextActionRecommendation,
    QuickAnalysis,
    StageAnalysis,
    round_half_up,
)
from convintel.analysis.pattern_detector import detect_patterns
from convintel.analysis.reply_generator import generate_reply
from convintel.analysis.stage_detector import detect_stage, get_transition_level
from convintel.config.schema import IntelSettings
from convintel.llm.client import InferenceClient
from convintel.llm.llm_config import STAGE_TIERS, TaskType, profile_for_tier
from convintel.llm.router import ModelRoute, ModelUsageTracker, UsageStats, route_task
from convintel.observability.logging_config import reset_analysis_id, set_analysis_id

logger = logging.getLogger(__name__)

# Priority weights for quick_analyze()
QUICK_PRIORITY_WEIGHTS = {
    "urgency": 30,
    "intent": 20,
    "showings": 15,
    "offer_accepted": 25,
    "closing": 10,
}


def calculate_overall_confidence(result: AnalysisResult) -> int:
    """Rounded mean of the non-zero component scores; 0 when all are zero."""
    scores = [
        result.patterns.confidence,
        result.entities.motivation.confidence,
        result.entities.timeframe.confidence,
        result.stage.confidence,
        result.next_action.urgency * 10,
    ]
    valid = [s for s in scores if s > 0]
    if not valid:
        return 0
    return round_half_up(sum(valid) / len(valid))


def quick_analyze(text: str) -> QuickAnalysis:
    """Pattern-only triage with a 0-100 priority score. No inference."""
    patterns = detect_patterns(text)

    priority = 0
    if patterns.urgency:
        priority += QUICK_PRIORITY_WEIGHTS["urgency"]
    if patterns.buying_intent or patterns.selling_intent:
        priority += QUICK_PRIORITY_WEIGHTS["intent"]
    if patterns.showings:
        priority += QUICK_PRIORITY_WEIGHTS["showings"]
    if patterns.offer_accepted:
        priority += QUICK_PRIORITY_WEIGHTS["offer_accepted"]
    if patterns.closing:
        priority += QUICK_PRIORITY_WEIGHTS["closing"]

    return QuickAnalysis(
        urgency=patterns.urgency,
        buying_intent=patterns.buying_intent,
        selling_intent=patterns.selling_intent,
        priority=min(priority, 100),
    )


def initial_result(context: AnalysisContext) -> AnalysisResult:
    """Defaults every slot so a skipped or failed stage leaves valid data."""
    return AnalysisResult(
        stage=StageAnalysis(current_stage=context.current_stage),
        next_action=NextActionRecommendation(),
    )


class ConversationAnalyzer:
    """
    Cost-aware analysis pipeline over one InferenceClient.

    Args:
        client: Adapter for the hosted models (see convintel.llm.client)
        usage_tracker: Where executed routes are counted. A fresh tracker
            is created when omitted, scoping counts to this analyzer.
        settings: Model names, timeout and batch size. Defaults apply
            when omitted.
    """

    def __init__(
        self,
        client: InferenceClient,
        *,
        usage_tracker: Optional[ModelUsageTracker] = None,
        settings: Optional[IntelSettings] = None,
    ) -> None:
        self.client = client
        self.usage_tracker = usage_tracker or ModelUsageTracker()
        self.settings = settings or IntelSettings()

    # ─── Full analysis ────────────────────────────────────────────────

    async def analyze(self, text: str, context: AnalysisContext) -> AnalysisResult:
        """Run every applicable stage and aggregate the results. Never raises."""
        start = time.monotonic()
        result = initial_result(context)
        token = set_analysis_id(uuid.uuid4().hex[:12])
        timeout = self.settings.inference_timeout_seconds

        logger.info(
            "analysis_started",
            extra={
                "contact_id": context.contact_id,
                "current_stage": context.current_stage.value,
                "text_length": len(text),
            },
        )

        try:
            # Tier 1: pattern detection
            route = self._route(TaskType.PATTERN_DETECTION, text)
            if route is not None:
                result.patterns = detect_patterns(text)
                result.metadata.model_usage.rule_based = True
                self._record(result, route)

            # Tier 2: entity extraction
            route = self._route(TaskType.ENTITY_EXTRACTION, text)
            if route is not None:
                result.entities = await extract_entities(
                    text, self.client, model=route.model, timeout=timeout
                )
                result.metadata.model_usage.mini = True
                self._record(result, route)

            # Tier 3: stage detection
            route = self._route(TaskType.STAGE_DETECTION, text)
            if route is not None:
                detection = await detect_stage(
                    text, context.current_stage, self.client,
                    model=route.model, timeout=timeout,
                )
                result.stage = StageAnalysis(
                    **detection.model_dump(),
                    transition_level=get_transition_level(detection),
                )
                result.metadata.model_usage.full = True
                self._record(result, route)

            # Tier 3: next action
            route = self._route(TaskType.ACTION_GENERATION, text)
            if route is not None:
                result.next_action = await generate_next_action(
                    text, context, self.client, model=route.model, timeout=timeout
                )
                result.metadata.model_usage.full = True
                self._record(result, route)

            # Tier 3: reply draft
            if context.generate_reply is not False:
                route = self._route(TaskType.REPLY_GENERATION, text)
                if route is not None:
                    result.reply_draft = await generate_reply(
                        text, context, self.client, model=route.model, timeout=timeout
                    )
                    result.metadata.model_usage.full = True
                    self._record(result, route)

            result.metadata.confidence = calculate_overall_confidence(result)

        except Exception as e:
            logger.exception(
                "analysis_failed",
                extra={"contact_id": context.contact_id, "error": str(e)[:200]},
            )
        finally:
            result.metadata.processing_time_ms = round((time.monotonic() - start) * 1000, 1)
            logger.info(
                "analysis_complete",
                extra={
                    "contact_id": context.contact_id,
                    "estimated_cost": round(result.metadata.total_estimated_cost, 6),
                    "confidence": result.metadata.confidence,
                    "duration_ms": result.metadata.processing_time_ms,
                },
            )
            reset_analysis_id(token)

        return result

    def _route(self, task: TaskType, text: str) -> Optional[ModelRoute]:
        """The route on the configured model when it lands on the stage's tier."""
        route = route_task(task, text)
        if route.tier is not STAGE_TIERS[task]:
            logger.debug(
                "stage_skipped",
                extra={
                    "task_type": task.value,
                    "tier": route.tier.value,
                    "expected_tier": STAGE_TIERS[task].value,
                },
            )
            return None
        configured = self.settings.models.for_tier(route.tier)
        profile = profile_for_tier(route.tier, configured)
        return replace(route, model=profile.model)

    def _record(self, result: AnalysisResult, route: ModelRoute) -> None:
        self.usage_tracker.record_usage(route)
        result.metadata.total_estimated_cost += route.estimated_cost
        logger.debug(
            "stage_executed",
            extra={
                "tier": route.tier.value,
                "model": route.model,
                "estimated_cost": route.estimated_cost,
            },
        )

    # ─── Lightweight entry points ─────────────────────────────────────

    def quick_analyze(self, text: str) -> QuickAnalysis:
        return quick_analyze(text)

    async def extract_batch(
        self, items: Iterable[Mapping[str, str]]
    ) -> dict[str, ExtractedEntities]:
        """Entity extraction for many conversations, chunked per settings."""
        return await batch_extract_entities(
            items,
            self.client,
            chunk_size=self.settings.batch_chunk_size,
            model=self.settings.models.mini,
            timeout=self.settings.inference_timeout_seconds,
        )

    # ─── Usage ────────────────────────────────────────────────────────

    def get_usage_stats(self) -> UsageStats:
        return self.usage_tracker.get_stats()

    def reset_usage_stats(self) -> None:
        self.usage_tracker.reset()


