"""
Pydantic configuration schema for the conversation intelligence core.

Settings are read from config/convintel.yaml (see loader.py). Only
operational knobs live here; cost constants are fixed in
convintel.llm.llm_config because estimates must stay comparable across
deployments.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from convintel.llm.llm_config import ModelTier


class InferenceProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class TierModels(BaseModel):
    """Model names used for the two paid tiers."""
    mini: str = Field("gpt-4o-mini", description="Cheap extraction model")
    full: str = Field("gpt-4o", description="Reasoning and generation model")

    def for_tier(self, tier: ModelTier) -> Optional[str]:
        """Configured model for a paid tier; None for rule-based."""
        if tier is ModelTier.MINI:
            return self.mini
        if tier is ModelTier.FULL:
            return self.full
        return None


class IntelSettings(BaseModel):
    """Top-level settings for an analyzer deployment."""

    environment: str = "development"
    provider: InferenceProvider = InferenceProvider.OPENAI
    models: TierModels = Field(default_factory=TierModels)
    inference_timeout_seconds: float = Field(
        30.0, description="Upper bound on a single inference call"
    )
    batch_chunk_size: int = Field(
        5, description="Items extracted concurrently per batch chunk"
    )
    ollama_base_url: Optional[str] = "http://localhost:11434"

    @field_validator("inference_timeout_seconds")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("inference_timeout_seconds must be positive")
        return v

    @field_validator("batch_chunk_size")
    @classmethod
    def chunk_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_chunk_size must be at least 1")
        return v

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return v.lower().strip()
