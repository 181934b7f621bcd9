"""
Custom exception hierarchy for the conversation intelligence core.

Structured error handling with clear categories:
- Configuration errors (caught at startup)
- Inference errors (absorbed at each analysis stage boundary)

Rejected stage transitions and routing mismatches are not errors; they
are returned or skipped as ordinary data.

Usage:
    from convintel.exceptions import InferenceError, StructuredOutputError

    try:
        payload = await complete_structured(client, system, user, options)
    except InferenceError as e:
        logger.warning("entity_extraction_failed", extra={"error": str(e)})
        return default_entities()
"""

from __future__ import annotations

from typing import Optional


class ConvIntelError(Exception):
    """
    Base exception for all conversation intelligence errors.

    All custom exceptions inherit from this, so you can catch
    `ConvIntelError` to handle any library-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(ConvIntelError):
    """
    Raised when settings are missing, unreadable, or fail validation.

    Examples:
    - convintel.yaml is empty or not valid YAML
    - inference_timeout_seconds is not positive
    - Unknown inference provider
    """

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.config_path = config_path


class ProviderNotConfiguredError(ConfigurationError):
    """Raised when an inference adapter is used without its SDK client."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider


# ── Inference Errors ──────────────────────────────────────────────


class InferenceError(ConvIntelError):
    """
    Raised when the inference collaborator fails or misbehaves.

    Every analysis stage catches this and degrades to its typed default,
    so it never surfaces past the stage that issued the call.
    """

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.service = service
        self.stage = stage


class StructuredOutputError(InferenceError):
    """The collaborator answered, but not with a parseable JSON object."""

    def __init__(
        self,
        message: str,
        *,
        raw_text: str = "",
        service: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, service=service, stage=stage, details=details)
        self.raw_text = raw_text[:500]


class InferenceTimeoutError(InferenceError):
    """The collaborator did not answer within the per-call time budget."""

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float = 0.0,
        service: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, service=service, stage=stage, details=details)
        self.timeout_seconds = timeout_seconds
