"""
Deterministic Next Action Engine.

Recommends an action for a stored contact without any inference, from
pipeline stage, motivation, timeframe, pre-approval and days since contact.
The 7-day rule is checked first and short-circuits the stage logic.

Used for daily action lists where every contact needs a recommendation and
per-contact model calls would be too slow or too expensive.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable

from convintel.analysis.models import (
    ActionType,
    ContactRecord,
    MotivationLevel,
    NextActionRecommendation,
    PipelineStage,
    Timeframe,
    first_name,
)
from convintel.engines.seven_day_monitor import check_seven_day_rule, stable_script_index

logger = logging.getLogger(__name__)


class UrgencyLevel(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def get_urgency_level(urgency: int) -> UrgencyLevel:
    if urgency >= 9:
        return UrgencyLevel.CRITICAL
    if urgency >= 7:
        return UrgencyLevel.HIGH
    if urgency >= 5:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def _action(
    action_type: ActionType,
    urgency: int,
    script: str,
    rationale: str,
    factors: list[str],
) -> NextActionRecommendation:
    return NextActionRecommendation(
        action_type=action_type,
        urgency=urgency,
        script=script,
        rationale=rationale,
        behavioral_factors=factors,
    )


def reengagement_script(contact: ContactRecord) -> str:
    name = first_name(contact.name)
    scripts = (
        f"Hi {name}, I wanted to check in with you. The market is moving quickly, and I "
        "want to make sure you're seeing the latest opportunities. Are you still "
        "actively looking?",
        f"{name}, it's been a week since we last connected. I have some new listings "
        "that match your criteria. When's a good time to discuss?",
        f"Hi {name}, just touching base. With the market changing weekly, I want to "
        "ensure I'm providing the best service. How's your search going?",
    )
    return scripts[stable_script_index(contact.id, len(scripts))]


# ---------------------------------------------------------------------------
# Stage rules
# ---------------------------------------------------------------------------

def _lead_action(contact: ContactRecord) -> NextActionRecommendation:
    name = first_name(contact.name)
    days = contact.days_since_contact
    timeframe = contact.timeframe
    motivation = contact.motivation_level

    if days >= 7:
        goal = timeframe.value.lower() if timeframe else "buy or sell"
        return _action(
            ActionType.CALL,
            9,
            f"Hi {name}, it's been a while since we connected. I wanted to check in - "
            f"are you still looking to {goal}?",
            f"Urgent: {days} days since contact with new lead - at risk of going cold",
            [
                "Lead Stage",
                f"{days} Days Since Contact",
                f"{motivation.value} Motivation" if motivation else "Unknown Motivation",
            ],
        )

    if timeframe is None or timeframe is Timeframe.SIX_PLUS_MONTHS:
        return _action(
            ActionType.CALL,
            6,
            f"Hi {name}, I'd love to understand your timeline better. Are you looking to "
            "make a move in the next few months, or is this more long-term?",
            "Qualification needed: No timeframe established",
            ["Lead Stage", "No Timeframe"],
        )

    if motivation in (MotivationLevel.LOW, MotivationLevel.MEDIUM):
        return _action(
            ActionType.CALL,
            5,
            f"Hi {name}, I came across some opportunities that might interest you. Do you "
            "have a few minutes to chat about what you're looking for?",
            "Motivation building needed - engage to uncover urgency",
            ["Lead Stage", f"{motivation.value} Motivation"],
        )

    return _action(
        ActionType.CALL,
        7,
        f"Hi {name}, following up on our conversation. What questions can I answer "
        "about your real estate goals?",
        "Regular contact to maintain engagement and qualify opportunity",
        ["Lead Stage"],
    )


def _new_opportunity_action(contact: ContactRecord) -> NextActionRecommendation:
    name = first_name(contact.name)
    days = contact.days_since_contact
    high_motivation = contact.motivation_level is MotivationLevel.HIGH

    if not contact.preapproval_status and high_motivation:
        return _action(
            ActionType.CALL,
            8,
            f"Hi {name}, with your motivation to find the right property, it's crucial we "
            "get your pre-approval in place. This will make your offers much stronger. "
            "Have you spoken with a lender yet?",
            "Pre-approval required for offer submission - high motivation needs readiness",
            ["New Opportunity", "No Pre-approval", "High Motivation"],
        )

    if days >= 5 and high_motivation:
        goal = contact.timeframe.value.lower() if contact.timeframe else "move forward"
        return _action(
            ActionType.CALL,
            7,
            f"Hi {name}, I know you're motivated to {goal}. I want to make sure I'm "
            "providing the best service. When can we connect?",
            "High motivation + 5+ days = check in to maintain momentum",
            ["New Opportunity", "High Motivation", f"{days} Days Since Contact"],
        )

    return _action(
        ActionType.MEETING,
        6,
        f"Hi {name}, I'd like to better understand exactly what you're looking for. Can "
        "we schedule a quick call to discuss your must-haves vs. nice-to-haves?",
        "Gather detailed requirements to move toward Active Opportunity",
        ["New Opportunity", "Requirements Gathering"],
    )


def _active_opportunity_action(contact: ContactRecord) -> NextActionRecommendation:
    name = first_name(contact.name)
    days = contact.days_since_contact

    if days <= 3:
        return _action(
            ActionType.SEND_LISTING,
            6,
            f"Hi {name}, based on what we discussed, I found a property that matches your "
            "criteria. Would you like me to send over the details?",
            "Active showing phase - provide value with relevant listings",
            ["Active Opportunity", "Recent Contact"],
        )

    if days <= 6:
        return _action(
            ActionType.TEXT,
            5,
            f"Hi {name}, just checking in. Any updates on your end? I'm seeing some new "
            "inventory hit the market.",
            "Maintain contact before 7-day rule threshold",
            ["Active Opportunity", "Pre-7-Day Check"],
        )

    return _action(
        ActionType.CALL,
        7,
        f"Hi {name}, I want to ensure I'm providing great service. The market is moving "
        "quickly - should I send you fresh listings or schedule another showing?",
        "Maintain momentum in active showing phase",
        ["Active Opportunity"],
    )


def _under_contract_action(contact: ContactRecord) -> NextActionRecommendation:
    return _action(
        ActionType.TEXT,
        5,
        f"Hi {first_name(contact.name)}, checking in on your closing progress. Any "
        "questions or updates from the lender?",
        "Maintain contact during under contract period - be proactive with issues",
        ["Under Contract", "Closing Support"],
    )


def _closed_action(contact: ContactRecord) -> NextActionRecommendation:
    name = first_name(contact.name)
    days = contact.days_since_contact

    if days <= 30:
        return _action(
            ActionType.EMAIL,
            4,
            f"Hi {name}, thank you again for choosing me as your agent. Would you be "
            "willing to share a brief review of your experience? It would mean a lot "
            "to me.",
            "Post-closing: Request testimonial while experience is fresh",
            ["Closed", "Testimonial Request"],
        )

    if days <= 90:
        return _action(
            ActionType.EMAIL,
            3,
            f"Hi {name}, I hope you're enjoying your new home! If you know anyone looking "
            "to buy or sell, I'd appreciate the introduction.",
            "Post-closing: Leverage satisfaction for referrals",
            ["Closed", "Referral Request"],
        )

    return _action(
        ActionType.EMAIL,
        2,
        f"Hi {name}, just checking in. How are you enjoying your home? Is there anything "
        "I can help you with?",
        "Long-term relationship maintenance",
        ["Closed", "Relationship Maintenance"],
    )


STAGE_RULES = {
    PipelineStage.LEAD: _lead_action,
    PipelineStage.NEW_OPPORTUNITY: _new_opportunity_action,
    PipelineStage.ACTIVE_OPPORTUNITY: _active_opportunity_action,
    PipelineStage.UNDER_CONTRACT: _under_contract_action,
    PipelineStage.CLOSED: _closed_action,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def recommend_next_action(contact: ContactRecord) -> NextActionRecommendation:
    """Rule-based recommendation for one contact."""
    if check_seven_day_rule(contact).should_flag:
        return _action(
            ActionType.CALL,
            10,
            reengagement_script(contact),
            "CRITICAL: 7-day rule violation - immediate re-engagement required",
            ["7-Day Rule", contact.pipeline_stage.value],
        )

    return STAGE_RULES[contact.pipeline_stage](contact)


def recommend_batch(
    contacts: Iterable[ContactRecord],
) -> dict[str, NextActionRecommendation]:
    actions = {contact.id: recommend_next_action(contact) for contact in contacts}
    logger.debug("batch_actions_generated", extra={"count": len(actions)})
    return actions
