from __future__ import annotations

import os
from dataclasses import dataclass

from charsmith.config_env import load_env

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineSettings:
    default_source: str = "PHB"
    keep_legacy_combined_selections: bool = True
    max_level: int = 20


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def load_settings() -> EngineSettings:
    """Build settings from the environment (.env files included)."""
    load_env()
    try:
        max_level = int(os.getenv("CHARSMITH_MAX_LEVEL", "20"))
    except ValueError:
        max_level = 20
    return EngineSettings(
        default_source=os.getenv("CHARSMITH_DEFAULT_SOURCE", "PHB").strip() or "PHB",
        keep_legacy_combined_selections=_flag("CHARSMITH_KEEP_LEGACY_COMBINED", "true"),
        max_level=max_level,
    )
