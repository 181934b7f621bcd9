"""
Entity Extractor — the mini tier.

Pulls motivation, timeframe, property preferences and budget out of a
conversation with one cheap structured inference call. Free-text levels
and timeframes are fuzzy-normalized onto the canonical enums.

Failure contract: any collaborator error, timeout or unparseable answer
yields a fully defaulted ExtractedEntities. Nothing is raised.

Usage:
    entities = await extract_entities(conversation, client)
    by_id = await batch_extract_entities(
        [{"id": "c1", "text": "..."}, {"id": "c2", "text": "..."}],
        client,
    )
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional

from convintel.analysis.models import (
    BudgetInfo,
    ExtractedEntities,
    MotivationAssessment,
    MotivationLevel,
    PropertyPreferences,
    Timeframe,
    TimeframeAssessment,
    round_half_up,
)
from convintel.exceptions import InferenceError
from convintel.llm.client import CompletionOptions, InferenceClient, complete_structured
from convintel.llm.llm_config import TASK_TEMPERATURES, TaskType
from convintel.llm.parsing import as_mapping, as_number, as_str_list, as_text

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5

EXTRACTION_SYSTEM_PROMPT = """You are a real estate conversation analyzer. Extract key entities from the conversation and return ONLY valid JSON.

Analyze the following:
1. Motivation level (High/Medium/Low) - look for enthusiasm, urgency, commitment
2. Timeframe (Immediate/1-3 months/3-6 months/6+ months) - look for specific timing mentions
3. Property preferences - location, price range, property type, beds, baths, must-have features
4. Budget - price range mentioned, pre-approval status

Return confidence scores (0-100) and specific text indicators that support your analysis.

IMPORTANT: Return ONLY valid JSON, no additional text."""


def build_extraction_prompt(text: str) -> str:
    return f"""Analyze this real estate conversation:

"{text}"

Extract:
1. Motivation level with confidence and indicators
2. Timeframe with confidence and indicators
3. Property preferences (location, price, type, beds, baths, must-haves)
4. Budget information (range, pre-approval status)

Return as JSON with this structure:
{{
  "motivation": {{ "level": "High|Medium|Low", "confidence": 0-100, "indicators": ["text evidence"] }},
  "timeframe": {{ "range": "Immediate|1-3 months|3-6 months|6+ months", "confidence": 0-100, "indicators": ["text evidence"] }},
  "propertyPreferences": {{ "location": "...", "priceRange": "...", "propertyType": "...", "beds": number, "baths": number, "mustHaves": ["..."] }},
  "budget": {{ "range": "...", "preapproved": boolean, "mentioned": boolean }}
}}"""


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_motivation(level: Any) -> Optional[MotivationLevel]:
    text = as_text(level)
    if text is None:
        return None
    lowered = text.lower()
    if "high" in lowered:
        return MotivationLevel.HIGH
    if "medium" in lowered or "moderate" in lowered:
        return MotivationLevel.MEDIUM
    if "low" in lowered:
        return MotivationLevel.LOW
    return None


def normalize_timeframe(value: Any) -> Optional[Timeframe]:
    text = as_text(value)
    if text is None:
        return None
    lowered = text.lower()
    if any(s in lowered for s in ("immediate", "asap", "right now")):
        return Timeframe.IMMEDIATE
    if any(s in lowered for s in ("1-3", "next couple", "few months")):
        return Timeframe.ONE_TO_THREE_MONTHS
    if any(s in lowered for s in ("3-6", "6 months", "half year")):
        return Timeframe.THREE_TO_SIX_MONTHS
    if any(s in lowered for s in ("6+", "year", "someday")):
        return Timeframe.SIX_PLUS_MONTHS
    return None


def _optional_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def normalize_entities(raw: Mapping[str, Any]) -> ExtractedEntities:
    """Turn a raw model payload into validated, clamped entities."""
    motivation = as_mapping(raw.get("motivation"))
    timeframe = as_mapping(raw.get("timeframe"))
    prefs = as_mapping(raw.get("propertyPreferences") or raw.get("property_preferences"))
    budget = as_mapping(raw.get("budget"))

    return ExtractedEntities(
        motivation=MotivationAssessment(
            level=normalize_motivation(motivation.get("level")),
            confidence=as_number(motivation.get("confidence")),
            indicators=as_str_list(motivation.get("indicators")),
        ),
        timeframe=TimeframeAssessment(
            range=normalize_timeframe(timeframe.get("range")),
            confidence=as_number(timeframe.get("confidence")),
            indicators=as_str_list(timeframe.get("indicators")),
        ),
        property_preferences=PropertyPreferences(
            location=as_text(prefs.get("location")),
            price_range=as_text(prefs.get("priceRange") or prefs.get("price_range")),
            property_type=as_text(prefs.get("propertyType") or prefs.get("property_type")),
            beds=_optional_number(prefs.get("beds")),
            baths=_optional_number(prefs.get("baths")),
            must_haves=as_str_list(prefs.get("mustHaves") or prefs.get("must_haves")),
        ),
        budget=BudgetInfo(
            range=as_text(budget.get("range")),
            preapproved=bool(budget.get("preapproved")),
            mentioned=bool(budget.get("mentioned")),
        ),
    )


def default_entities() -> ExtractedEntities:
    """All-null, all-zero entities used whenever extraction fails."""
    return ExtractedEntities()


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

async def extract_entities(
    text: str,
    client: InferenceClient,
    *,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ExtractedEntities:
    """Extract entities from conversation text with the mini tier."""
    options = CompletionOptions(
        temperature=TASK_TEMPERATURES[TaskType.ENTITY_EXTRACTION],
        expect_structured_output=True,
        model=model,
    )
    try:
        raw = await complete_structured(
            client,
            EXTRACTION_SYSTEM_PROMPT,
            build_extraction_prompt(text),
            options,
            timeout=timeout,
            stage=TaskType.ENTITY_EXTRACTION.value,
        )
        return normalize_entities(raw)
    except InferenceError as e:
        logger.warning(
            "entity_extraction_failed",
            extra={"error": str(e)[:200], "error_type": type(e).__name__},
        )
        return default_entities()
    except Exception as e:
        # Normalization bugs must not escape the stage either
        logger.exception(
            "entity_extraction_unexpected_error",
            extra={"error": str(e)[:200]},
        )
        return default_entities()


async def batch_extract_entities(
    items: Iterable[Mapping[str, str]],
    client: InferenceClient,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> dict[str, ExtractedEntities]:
    """
    Extract entities for many conversations.

    Items ({"id", "text"}) are split into chunks of `chunk_size`. Chunks run
    strictly one after another; items inside a chunk run concurrently. Each
    item degrades to defaults on its own, so one failure never affects its
    siblings. Items without an id are keyed by their position.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")

    pending = list(items)
    results: dict[str, ExtractedEntities] = {}

    async def extract_item(item: Mapping[str, str]) -> ExtractedEntities:
        return await extract_entities(item["text"], client, model=model, timeout=timeout)

    for start in range(0, len(pending), chunk_size):
        chunk = pending[start:start + chunk_size]
        outcomes = await asyncio.gather(
            *(extract_item(item) for item in chunk),
            return_exceptions=True,
        )
        for index, (item, outcome) in enumerate(zip(chunk, outcomes), start):
            item_id = str(item.get("id", index))
            if isinstance(outcome, Exception):
                logger.warning(
                    "batch_item_failed",
                    extra={"contact_id": item_id, "error": repr(outcome)[:200]},
                )
                outcome = default_entities()
            elif isinstance(outcome, BaseException):
                raise outcome
            results[item_id] = outcome

        logger.debug(
            "batch_chunk_complete",
            extra={"chunk_start": start, "chunk_items": len(chunk)},
        )

    return results


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def calculate_entity_confidence(entities: ExtractedEntities) -> int:
    """Mean of the non-zero evidence scores, rounded; 0 when nothing scored."""
    scores = [
        entities.motivation.confidence,
        entities.timeframe.confidence,
        50 if entities.budget.mentioned else 0,
        30 if entities.property_preferences.location else 0,
        20 if entities.property_preferences.beds else 0,
    ]
    valid = [s for s in scores if s > 0]
    if not valid:
        return 0
    return round_half_up(sum(valid) / len(valid))


def are_entities_sufficient(entities: ExtractedEntities) -> bool:
    """True when at least one decision-relevant attribute is known."""
    return (
        entities.motivation.level is not None
        or entities.timeframe.range is not None
        or entities.property_preferences.location is not None
        or entities.budget.mentioned
    )
