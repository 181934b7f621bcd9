"""
Priority Score Calculator.

0-100 score for ordering a contact list by who needs attention first:

    motivation        High 30, Medium 20, Low 10, unset 5
    days since contact  0-1 → 25, 2-3 → 20, 4-7 → 15, 8-14 → 10, 15+ → 5
    pipeline stage    Active 20, New 15, Under Contract 10, Lead 5, Closed 0
    new lead bonus    +15 for a High-motivation Lead created within 2 days
    timeframe         Immediate 10, 1-3 mo 7, 3-6 mo 5, 6+ mo 2
    7-day rule flag   +10
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from convintel.analysis.models import (
    ContactRecord,
    MotivationLevel,
    PipelineStage,
    Timeframe,
)
from convintel.engines.action_recommendation import UrgencyLevel

MOTIVATION_SCORES = {
    MotivationLevel.HIGH: 30,
    MotivationLevel.MEDIUM: 20,
    MotivationLevel.LOW: 10,
}
UNSET_MOTIVATION_SCORE = 5

STAGE_SCORES = {
    PipelineStage.LEAD: 5,
    PipelineStage.NEW_OPPORTUNITY: 15,
    PipelineStage.ACTIVE_OPPORTUNITY: 20,
    PipelineStage.UNDER_CONTRACT: 10,
    PipelineStage.CLOSED: 0,
}

TIMEFRAME_SCORES = {
    Timeframe.IMMEDIATE: 10,
    Timeframe.ONE_TO_THREE_MONTHS: 7,
    Timeframe.THREE_TO_SIX_MONTHS: 5,
    Timeframe.SIX_PLUS_MONTHS: 2,
}

NEW_LEAD_BONUS = 15
NEW_LEAD_MAX_AGE_DAYS = 2
SEVEN_DAY_BONUS = 10


@dataclass
class PriorityFactors:
    motivation_level: Optional[MotivationLevel]
    days_since_contact: int
    pipeline_stage: PipelineStage
    timeframe: Optional[Timeframe] = None
    seven_day_rule_flag: bool = False
    created_at: Optional[str] = None  # ISO-8601


def days_since_contact_score(days: int) -> int:
    if days <= 1:
        return 25
    if days <= 3:
        return 20
    if days <= 7:
        return 15
    if days <= 14:
        return 10
    return 5


def _days_since(timestamp: str, now: datetime) -> Optional[int]:
    try:
        created = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).days


def new_lead_bonus(factors: PriorityFactors, now: Optional[datetime] = None) -> int:
    if factors.pipeline_stage is not PipelineStage.LEAD:
        return 0
    if factors.motivation_level is not MotivationLevel.HIGH or not factors.created_at:
        return 0

    age = _days_since(factors.created_at, now or datetime.now(timezone.utc))
    if age is not None and age <= NEW_LEAD_MAX_AGE_DAYS:
        return NEW_LEAD_BONUS
    return 0


def calculate_score(factors: PriorityFactors, now: Optional[datetime] = None) -> int:
    score = MOTIVATION_SCORES.get(factors.motivation_level, UNSET_MOTIVATION_SCORE)
    score += days_since_contact_score(factors.days_since_contact)
    score += STAGE_SCORES[factors.pipeline_stage]
    score += new_lead_bonus(factors, now)
    score += TIMEFRAME_SCORES.get(factors.timeframe, 0)
    if factors.seven_day_rule_flag:
        score += SEVEN_DAY_BONUS
    return min(score, 100)


def calculate_priority_score(
    contact: ContactRecord, now: Optional[datetime] = None
) -> int:
    return calculate_score(
        PriorityFactors(
            motivation_level=contact.motivation_level,
            days_since_contact=contact.days_since_contact,
            pipeline_stage=contact.pipeline_stage,
            timeframe=contact.timeframe,
            seven_day_rule_flag=contact.seven_day_rule_flag,
            created_at=contact.created_at,
        ),
        now,
    )


def calculate_batch_priority_scores(
    contacts: Iterable[ContactRecord], now: Optional[datetime] = None
) -> dict[str, int]:
    return {c.id: calculate_priority_score(c, now) for c in contacts}


def get_priority_level(score: int) -> UrgencyLevel:
    if score >= 80:
        return UrgencyLevel.CRITICAL
    if score >= 60:
        return UrgencyLevel.HIGH
    if score >= 40:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW
