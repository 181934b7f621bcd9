"""
Structured logging configuration for the conversation intelligence core.

Uses Python's built-in logging with a JSONFormatter for production and a
colored text formatter for local work. All modules keep calling
logging.getLogger(__name__); structured fields travel in the `extra` dict.

Environments:
- production: JSON to stdout (machine-readable)
- development/staging/test: Colored text to stderr (human-readable)

Usage:
    from convintel.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from CONVINTEL_ENV

    logger = logging.getLogger(__name__)
    logger.info("stage_executed", extra={
        "task_type": "entity_extraction",
        "tier": "mini",
        "estimated_cost": 0.00006,
    })
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Analysis Context ─────────────────────────────────────────────────

# Context variable rather than thread-local: concurrent analyses share a
# thread under asyncio and must not see each other's id.
_analysis_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "convintel_analysis_id", default=None
)


def set_analysis_id(analysis_id: str) -> contextvars.Token:
    """
    Bind an analysis id to the current context.

    Returns the token needed by reset_analysis_id() to restore the
    previous value when the analysis finishes.
    """
    return _analysis_id.set(analysis_id)


def get_analysis_id() -> Optional[str]:
    """Get the current analysis id, or None outside an analysis."""
    return _analysis_id.get()


def reset_analysis_id(token: Optional[contextvars.Token] = None) -> None:
    """Restore the previous analysis id (or clear it when no token)."""
    if token is not None:
        _analysis_id.reset(token)
    else:
        _analysis_id.set(None)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects analysis_id into every log record emitted during an analysis."""

    def filter(self, record: logging.LogRecord) -> bool:
        analysis_id = get_analysis_id()
        if analysis_id:
            record.analysis_id = analysis_id  # type: ignore[attr-defined]
        return True


# ─── Formatters ───────────────────────────────────────────────────────

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The structured fields a caller attached to a record via `extra`."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for log shippers.

        {"timestamp": "...", "level": "INFO",
         "logger": "convintel.analysis.conversation_analyzer",
         "message": "stage_executed", "analysis_id": "...",
         "task_type": "entity_extraction", "tier": "mini", ...}

    Values json can't encode (sets, enums from pydantic models) are
    written with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_fields(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """
    Short colored lines for a terminal:

        12:04:51 INFO  convintel.analysis.conversation_analyzer: stage_executed [tier=mini ...]

    Only the fields the analysis pipeline emits are shown, in a fixed order.
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    FIELDS = (
        "analysis_id", "contact_id", "task_type", "tier", "model",
        "estimated_cost", "confidence", "current_stage", "duration_ms",
        "error_type", "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        fields = " ".join(
            f"{key}={getattr(record, key)}"
            for key in self.FIELDS
            if getattr(record, key, None) is not None
        )
        line = (
            f"{self.formatTime(record, '%H:%M:%S')} "
            f"{color}{record.levelname:<5}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if fields:
            line += f" [{fields}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ─── Setup ────────────────────────────────────────────────────────────

# SDK and transport loggers log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Install a single handler on the root logger.

    JSON to stdout when the environment is "production", colored text to
    stderr otherwise. The environment comes from CONVINTEL_ENV when `env`
    is not given. Calling this again replaces the previous handler.
    """
    if env is None:
        env = os.environ.get("CONVINTEL_ENV", "development")
    production = env.strip().lower() == "production"

    handler = logging.StreamHandler(sys.stdout if production else sys.stderr)
    handler.setFormatter(JSONFormatter() if production else DevFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
