"""Configuration loading: optional JSON file plus environment overrides."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic.alias_generators import to_camel

from nimbridge.config.schema import Config
from nimbridge.logging import get_logger

logger = get_logger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}

# env var -> (section, field, caster)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "NIM_API_BASE": ("upstream", "api_base", str),
    "NIM_API_KEY": ("upstream", "api_key", str),
    "PORT": ("server", "port", int),
    "NIMBRIDGE_MEMORY_BACKEND": ("memory", "backend", str),
    "NIMBRIDGE_MEMORY_DIR": ("memory", "directory", str),
    "NIMBRIDGE_REDIS_URL": ("memory", "redis_url", str),
    "NIMBRIDGE_SHOW_REASONING": ("stream", "show_reasoning", lambda v: v.strip().lower() in _TRUTHY),
    "NIMBRIDGE_THINKING_MODE": ("upstream", "thinking_mode", lambda v: v.strip().lower() in _TRUTHY),
    "NIMBRIDGE_LOG_LEVEL": ("logging", "level", str),
}


def get_config_path() -> Path:
    return Path(os.environ.get("NIMBRIDGE_CONFIG", "~/.nimbridge/config.json")).expanduser()


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    for env_name, (section, field, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError:
            logger.warning("Ignoring invalid environment override", env=env_name)
            continue
        section_data = data.setdefault(section, {})
        section_data.pop(to_camel(field), None)
        section_data[field] = value
    return data


def load_config(path: Path | None = None) -> Config:
    """Load config from *path* (or the default location) and the environment.

    A missing file yields defaults; an unreadable file is logged and ignored.
    """
    path = path or get_config_path()
    data: dict[str, Any] = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load config, using defaults", path=str(path), error=str(e))
            data = {}
    return Config.model_validate(_apply_env_overrides(data))
