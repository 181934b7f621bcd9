"""
Deterministic pipeline-stage engine.

Forward-only stage advancement from hard signals, one step at a time:

    Lead → New Opportunity           timeframe + specific property + High motivation (85)
    New Opportunity → Active         showings + activity within 7 days (90)
    Active → Under Contract          offer accepted (95)
    Under Contract → Closed          closing completed (100)

signals_from_analysis() derives the signals from an AnalysisResult so the
model-based stage suggestion can be cross-checked against these rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from convintel.analysis.models import (
    AnalysisResult,
    MotivationLevel,
    PipelineStage,
)

ACTIVE_WINDOW_DAYS = 7


@dataclass(frozen=True)
class PipelineSignals:
    current_stage: PipelineStage
    has_timeframe: bool = False
    has_specific_property: bool = False
    motivation: Optional[MotivationLevel] = None
    has_home_showings: bool = False
    days_since_last_activity: int = 0
    offer_accepted: bool = False
    closing_completed: bool = False


@dataclass(frozen=True)
class PipelineStageResult:
    new_stage: PipelineStage
    confidence: int
    rationale: str

    @property
    def changed(self) -> bool:
        return self.confidence > 0


def determine_pipeline_stage(signals: PipelineSignals) -> PipelineStageResult:
    stage = signals.current_stage

    if stage is PipelineStage.LEAD and (
        signals.has_timeframe
        and signals.has_specific_property
        and signals.motivation is MotivationLevel.HIGH
    ):
        return PipelineStageResult(
            PipelineStage.NEW_OPPORTUNITY,
            85,
            "Meets criteria: High motivation + timeframe + specific property",
        )

    if stage is PipelineStage.NEW_OPPORTUNITY and (
        signals.has_home_showings
        and signals.days_since_last_activity <= ACTIVE_WINDOW_DAYS
    ):
        return PipelineStageResult(
            PipelineStage.ACTIVE_OPPORTUNITY,
            90,
            "Active showings + engagement within 7 days",
        )

    if stage is PipelineStage.ACTIVE_OPPORTUNITY and signals.offer_accepted:
        return PipelineStageResult(PipelineStage.UNDER_CONTRACT, 95, "Offer accepted by seller")

    if stage is PipelineStage.UNDER_CONTRACT and signals.closing_completed:
        return PipelineStageResult(PipelineStage.CLOSED, 100, "Closing completed successfully")

    return PipelineStageResult(stage, 0, "No change")


def signals_from_analysis(
    result: AnalysisResult,
    current_stage: PipelineStage,
    days_since_last_activity: int = 0,
) -> PipelineSignals:
    """Map pattern flags and extracted entities onto engine signals."""
    entities = result.entities
    patterns = result.patterns
    return PipelineSignals(
        current_stage=current_stage,
        has_timeframe=entities.timeframe.range is not None,
        has_specific_property=(
            patterns.specific_property
            or entities.property_preferences.location is not None
        ),
        motivation=entities.motivation.level,
        has_home_showings=patterns.showings,
        days_since_last_activity=days_since_last_activity,
        offer_accepted=patterns.offer_accepted,
        closing_completed=patterns.closing,
    )
