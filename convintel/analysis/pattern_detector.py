"""
Rule-Based Pattern Detector — the free tier.

Zero-cost behavioral signal detection using regex categories, plus a few
pure extractors (phones, emails, property numbers, message-export format).

Confidence is a staircase over the number of distinct categories that
matched, not over raw match counts:

    0 → 0, 1 → 70, 2 → 80, 3 → 90, 4+ → 95
"""

from __future__ import annotations

import logging
import re
from typing import Pattern

from convintel.analysis.models import ConversationType, PatternSignals, PropertyNumbers

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Signal categories (evaluated in this order)
# ---------------------------------------------------------------------------

BUYING_PATTERNS = (
    re.compile(
        r"looking to buy|want to purchase|interested in buying|buyer's agent|"
        r"representing me to buy|need to buy|buy a (?:house|home|place|condo)",
        re.I,
    ),
)

SELLING_PATTERNS = (
    re.compile(
        r"looking to sell|want to sell|thinking of selling|just listed|"
        r"going to list|listing my home",
        re.I,
    ),
)

URGENCY_PATTERNS = (
    re.compile(
        r"\b(asap|immediately|right now|urgent|as soon as possible|need to|quickly|soon)\b",
        re.I,
    ),
)

SPECIFIC_PROPERTY_PATTERNS = (
    re.compile(r"\b(in \w+ area|in \w+ neighborhood|near|downtown|suburb)\b", re.I),
    re.compile(r"\b(\d+)\s*(?:bedrooms?|beds?)\b", re.I),
    re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:bathrooms?|baths?)\b", re.I),
    re.compile(r"\b(pool|garage|yard|garden|acre|lot)\b", re.I),
    re.compile(r"(under \$\d{3,}|up to \$\d{3,}|budget \$\d{3,})", re.I),
    re.compile(r"\b(sqft|square foot|square feet)\b", re.I),
)

PREAPPROVAL_PATTERNS = (
    re.compile(
        r"\b(pre-approval|pre-qualified|pre-approved|mortgage approval|lender|loan officer)\b",
        re.I,
    ),
)

SHOWING_PATTERNS = (
    re.compile(
        r"\b(saw \d+ homes?|showing|viewed|visited|tour|looking at homes|went to see|"
        r"saw a house|saw a property)\b",
        re.I,
    ),
)

OFFER_ACCEPTED_PATTERNS = (
    re.compile(
        r"\b(offer accepted|under contract|seller accepted|they accepted|they took our offer)\b",
        re.I,
    ),
)

CLOSING_PATTERNS = (
    re.compile(
        r"\b(closed|closing complete|got the keys|funding|documents signed|closing table|closed on)\b",
        re.I,
    ),
)

# (flag attribute, tag, patterns)
SIGNAL_CATEGORIES: tuple[tuple[str, str, tuple[Pattern[str], ...]], ...] = (
    ("buying_intent", "buying-intent", BUYING_PATTERNS),
    ("selling_intent", "selling-intent", SELLING_PATTERNS),
    ("urgency", "urgency", URGENCY_PATTERNS),
    ("specific_property", "specific-property", SPECIFIC_PROPERTY_PATTERNS),
    ("preapproval", "preapproval", PREAPPROVAL_PATTERNS),
    ("showings", "showings", SHOWING_PATTERNS),
    ("offer_accepted", "offer-accepted", OFFER_ACCEPTED_PATTERNS),
    ("closing", "closing", CLOSING_PATTERNS),
)

SUFFICIENT_CONFIDENCE = 80


def calculate_pattern_confidence(match_count: int) -> int:
    """Staircase confidence over the number of distinct matched categories."""
    if match_count <= 0:
        return 0
    if match_count == 1:
        return 70
    if match_count == 2:
        return 80
    if match_count == 3:
        return 90
    return 95


def detect_patterns(text: str) -> PatternSignals:
    """Detect behavioral signals in conversation text using rule-based matching."""
    flags: dict[str, bool] = {}
    matched: list[str] = []

    for attribute, tag, patterns in SIGNAL_CATEGORIES:
        hit = any(pattern.search(text) for pattern in patterns)
        flags[attribute] = hit
        if hit:
            matched.append(tag)

    return PatternSignals(
        **flags,
        confidence=calculate_pattern_confidence(len(matched)),
        matched_patterns=matched,
    )


def is_pattern_detection_sufficient(text: str) -> bool:
    """True when the free tier alone is confident enough to act on."""
    return detect_patterns(text).confidence >= SUFFICIENT_CONFIDENCE


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

PHONE_PATTERNS = (
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\b\+?1?[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\b\d{10}\b"),
)

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

BEDS_PATTERN = re.compile(r"(\d+)\s*(?:bedrooms?|beds?)\b", re.I)
BATHS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:bathrooms?|baths?)\b", re.I)
PRICE_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d{3,})(\s?[kKmM]\b)?")
SQFT_PATTERN = re.compile(
    r"(\d{1,3}(?:,\d{3})+|\d{3,})\s*(?:sq\.?\s?ft|sqft|square feet|square foot)", re.I
)

_NON_DIGITS = re.compile(r"\D")


def extract_phone_numbers(text: str) -> list[str]:
    """
    Extract phone numbers as digit strings.

    The three shapes overlap on purpose; results are deduplicated after
    normalization, so "555-123-4567" and "5551234567" yield one entry.
    """
    phones: dict[str, None] = {}

    for pattern in PHONE_PATTERNS:
        for match in pattern.findall(text):
            cleaned = _NON_DIGITS.sub("", match)
            if len(cleaned) >= 10:
                phones.setdefault(cleaned, None)

    return list(phones)


def extract_emails(text: str) -> list[str]:
    """Extract email addresses (syntax check only)."""
    return EMAIL_PATTERN.findall(text)


def _to_int(number: str) -> int:
    return int(number.replace(",", ""))


def extract_property_numbers(text: str) -> PropertyNumbers:
    """Beds, baths, price and square footage; first match per category."""
    result = PropertyNumbers()

    beds = BEDS_PATTERN.search(text)
    if beds:
        result.beds = int(beds.group(1))

    baths = BATHS_PATTERN.search(text)
    if baths:
        result.baths = float(baths.group(1))

    price = PRICE_PATTERN.search(text)
    if price:
        amount = _to_int(price.group(1))
        suffix = (price.group(2) or "").strip().lower()
        if suffix == "k":
            amount *= 1_000
        elif suffix == "m":
            amount *= 1_000_000
        result.price = amount

    sqft = SQFT_PATTERN.search(text)
    if sqft:
        result.sqft = _to_int(sqft.group(1))

    return result


_IOS_TIMESTAMP = re.compile(r"Today\s+\d{1,2}:\d{2}\s*(AM|PM)", re.I)
_ANDROID_DATE = re.compile(r"\d{1,2}/\d{2}/\d{2,4}")
_ANDROID_TIME_LINE = re.compile(r"^\d{1,2}:\d{2}\s*(AM|PM)", re.M)
_WHATSAPP_TIME = re.compile(r"\d{1,2}:\d{2}\s*(AM|PM)", re.I)
_WHATSAPP_MARKER = re.compile(r"encrypted|WhatsApp", re.I)


def detect_conversation_type(text: str) -> ConversationType:
    """Guess which messaging app a pasted conversation came from."""
    if _IOS_TIMESTAMP.search(text):
        return ConversationType.IOS
    if _ANDROID_DATE.search(text) and _ANDROID_TIME_LINE.search(text):
        return ConversationType.ANDROID
    if _WHATSAPP_TIME.search(text) and _WHATSAPP_MARKER.search(text):
        return ConversationType.WHATSAPP
    return ConversationType.GENERIC
