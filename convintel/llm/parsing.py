"""Defensive parsing of structured (JSON) model output."""

from __future__ import annotations

import json
from typing import Any, Optional

from convintel.exceptions import StructuredOutputError


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` wrapper if the model added one."""
    text = text.strip()
    if "```" not in text:
        return text
    parts = text.split("```")
    body = parts[1] if len(parts) > 1 else text
    if body.lower().startswith("json"):
        body = body[4:]
    return body.strip()


def parse_structured_response(
    text: Optional[str], *, stage: Optional[str] = None
) -> dict[str, Any]:
    """
    Parse model output into a JSON object.

    The text is tried as-is first; a fenced wrapper is only stripped when
    that fails, so backticks inside string values are left alone.

    Raises:
        StructuredOutputError: empty output, invalid JSON, or a JSON value
                               that is not an object.
    """
    if text is None or not text.strip():
        raise StructuredOutputError("Empty response from model", stage=stage)

    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as e:
        body = strip_code_fences(text)
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise StructuredOutputError(
                f"Response is not valid JSON: {e.msg}", raw_text=text, stage=stage
            ) from e

    if not isinstance(data, dict):
        raise StructuredOutputError(
            f"Expected a JSON object, got {type(data).__name__}",
            raw_text=text,
            stage=stage,
        )
    return data


# ---------------------------------------------------------------------------
# Field coercion helpers used by the stage normalizers
# ---------------------------------------------------------------------------

def as_number(value: Any, default: float = 0.0) -> float:
    """Best-effort numeric coercion; bools and junk fall back to default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("%"))
        except ValueError:
            return default
    return default


def as_text(value: Any) -> Optional[str]:
    """Non-empty string or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def as_str_list(value: Any) -> list[str]:
    """List of strings; anything that is not a list becomes []."""
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)
