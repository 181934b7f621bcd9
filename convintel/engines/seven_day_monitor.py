"""
Seven-Day Rule Monitor.

Active Opportunity contacts must hear from the agent at least once a week.
A contact that has had at least one interaction and has gone 7+ days
without contact is flagged for immediate follow-up. Contacts with no
recorded interaction are never flagged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from convintel.analysis.models import ContactRecord, PipelineStage, first_name

logger = logging.getLogger(__name__)

THRESHOLD_DAYS = 7
WARNING_DAYS = 5
CRITICAL_DAYS = 7
APPLICABLE_STAGES = frozenset({PipelineStage.ACTIVE_OPPORTUNITY})


class AlertLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SevenDayRuleCheck:
    should_flag: bool
    days_since_contact: int
    reason: str


def _is_monitored(contact: ContactRecord) -> bool:
    return (
        contact.pipeline_stage in APPLICABLE_STAGES
        and bool(contact.last_interaction_date)
    )


def check_seven_day_rule(contact: ContactRecord) -> SevenDayRuleCheck:
    days = contact.days_since_contact

    if contact.pipeline_stage not in APPLICABLE_STAGES:
        return SevenDayRuleCheck(False, days, "Not in Active Opportunity stage")

    if not contact.last_interaction_date:
        return SevenDayRuleCheck(False, days, "No previous interaction")

    should_flag = days >= THRESHOLD_DAYS
    reason = (
        f"{days} days without contact in Active Opportunity"
        if should_flag
        else "Within 7-day contact window"
    )
    return SevenDayRuleCheck(should_flag, days, reason)


def check_batch_seven_day_rule(
    contacts: Iterable[ContactRecord],
) -> dict[str, SevenDayRuleCheck]:
    return {contact.id: check_seven_day_rule(contact) for contact in contacts}


def get_seven_day_violations(contacts: Iterable[ContactRecord]) -> list[ContactRecord]:
    """Contacts currently in violation, in input order."""
    violations = [c for c in contacts if check_seven_day_rule(c).should_flag]
    if violations:
        logger.info(
            "seven_day_violations_found",
            extra={"count": len(violations)},
        )
    return violations


def get_days_until_seven_day_rule(contact: ContactRecord) -> Optional[int]:
    """Days left before the rule trips (0 once reached); None when not monitored."""
    if not _is_monitored(contact):
        return None
    return max(0, THRESHOLD_DAYS - contact.days_since_contact)


def get_seven_day_rule_action(contact: ContactRecord) -> Optional[str]:
    """Priority message for a flagged contact, None otherwise."""
    if not check_seven_day_rule(contact).should_flag:
        return None

    days_over = contact.days_since_contact - THRESHOLD_DAYS
    if days_over == 0:
        return "URGENT: 7-day rule reached today. Contact immediately to maintain engagement."
    return (
        f"CRITICAL: {days_over} days past 7-day rule. "
        "Active opportunity at risk of going cold."
    )


def get_seven_day_alert_level(contact: ContactRecord) -> AlertLevel:
    if not _is_monitored(contact):
        return AlertLevel.NONE
    if contact.days_since_contact >= CRITICAL_DAYS:
        return AlertLevel.CRITICAL
    if contact.days_since_contact >= WARNING_DAYS:
        return AlertLevel.WARNING
    return AlertLevel.NONE


# ---------------------------------------------------------------------------
# Re-engagement scripts
# ---------------------------------------------------------------------------

def java_hash_code(value: str) -> int:
    """32-bit signed string hash (h = 31*h + c), stable across processes."""
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def stable_script_index(key: str, count: int) -> int:
    """Deterministic index in [0, count) derived from `key`."""
    return abs(java_hash_code(key)) % count


def get_seven_day_reengagement_script(contact: ContactRecord) -> str:
    name = first_name(contact.name)
    scripts = (
        f"Hi {name}, I wanted to check in with you. The market is moving quickly, and I "
        "want to make sure you're seeing the latest opportunities. Are you still "
        "actively looking?",
        f"{name}, it's been a week since we last connected. I have some new listings "
        "that match your criteria. When's a good time to discuss?",
        f"Hi {name}, just touching base. With interest rates fluctuating, I want to "
        "ensure you're positioned to act when the right property comes along. How's "
        "your search going?",
    )
    return scripts[stable_script_index(contact.id, len(scripts))]
