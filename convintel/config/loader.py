"""
Configuration loader for the conversation intelligence core.

Loads config/convintel.yaml, applies CONVINTEL_* environment overrides,
validates the result against the Pydantic schema and caches it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from convintel.config.schema import IntelSettings
from convintel.exceptions import ConfigurationError

CONFIG_FILENAME = "convintel.yaml"

# Environment variable -> dotted settings key
ENV_OVERRIDES: dict[str, str] = {
    "CONVINTEL_ENV": "environment",
    "CONVINTEL_PROVIDER": "provider",
    "CONVINTEL_MINI_MODEL": "models.mini",
    "CONVINTEL_FULL_MODEL": "models.full",
    "CONVINTEL_TIMEOUT_SECONDS": "inference_timeout_seconds",
    "CONVINTEL_BATCH_CHUNK_SIZE": "batch_chunk_size",
    "CONVINTEL_OLLAMA_BASE_URL": "ollama_base_url",
}

# Module-level cache: resolved path (or "<defaults>") -> IntelSettings
_loaded_settings: dict[str, IntelSettings] = {}


def find_config_file() -> Optional[Path]:
    """Locate config/convintel.yaml by walking up from this file."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        candidate = parent / "config" / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for var, dotted in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value is None or value.strip() == "":
            continue
        target = raw
        *parents, leaf = dotted.split(".")
        for key in parents:
            target = target.setdefault(key, {})
        target[leaf] = value.strip()
    return raw


def load_settings(config_path: Optional[str | Path] = None) -> IntelSettings:
    """
    Load and validate analyzer settings.

    Args:
        config_path: Optional explicit path to a YAML file. If not provided,
                     config/convintel.yaml is searched for; when absent the
                     schema defaults (plus environment overrides) are used.

    Raises:
        ConfigurationError: If an explicit file is missing, the file is
                            empty or not a mapping, or validation fails.
    """
    if config_path is not None:
        path: Optional[Path] = Path(config_path)
        if not path.exists():
            raise ConfigurationError(
                f"Config not found: {path}", config_path=str(path)
            )
    else:
        path = find_config_file()

    cache_key = str(path.resolve()) if path else "<defaults>"
    if cache_key in _loaded_settings:
        return _loaded_settings[cache_key]

    raw: dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Config is not valid YAML: {path}", config_path=str(path)
            ) from e

        if loaded is None:
            raise ConfigurationError(
                f"Config file is empty: {path}", config_path=str(path)
            )
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Config must be a mapping: {path}", config_path=str(path)
            )
        raw = loaded

    raw = _apply_env_overrides(raw)

    try:
        settings = IntelSettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid analyzer settings:\n{e}",
            config_path=str(path) if path else None,
        ) from e

    _loaded_settings[cache_key] = settings
    return settings


def clear_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    _loaded_settings.clear()
