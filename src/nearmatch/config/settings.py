# src/nearmatch/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/nearmatch/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `NEARMATCH_LOG_LEVEL`)
- an external YAML file via `NEARMATCH_CONFIG_PATH`

Design rule:
- Tuning knobs live in YAML, not hard-coded in business logic. The geo/proximity core
  never reads settings; only the request layer and CLI do.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from nearmatch.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `nearmatch.config`."""
    text = resources.files("nearmatch.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "NearMatch"
    timezone: str = "UTC"
    log_level: str = "INFO"


class ProximitySettings(BaseModel):
    default_radius_m: float = Field(1000, gt=0)
    max_radius_m: float = Field(50_000, gt=0)
    default_limit: int = Field(50, ge=1)
    max_limit: int = Field(200, ge=1)
    default_max_age_seconds: float = Field(900, gt=0)
    max_max_age_seconds: float = Field(86_400, gt=0)
    max_clock_skew_seconds: float = Field(5, ge=0)
    online_window_seconds: float = Field(30, ge=0)
    index_cell_deg: float = Field(0.05, gt=0, le=90)

    @model_validator(mode="after")
    def _validate_defaults_within_maxima(self) -> "ProximitySettings":
        if self.default_radius_m > self.max_radius_m:
            raise ValueError("proximity.default_radius_m must not exceed proximity.max_radius_m")
        if self.default_limit > self.max_limit:
            raise ValueError("proximity.default_limit must not exceed proximity.max_limit")
        if self.default_max_age_seconds > self.max_max_age_seconds:
            raise ValueError("proximity.default_max_age_seconds must not exceed proximity.max_max_age_seconds")
        return self


class MovementSettings(BaseModel):
    min_delta_m: float = Field(10, ge=0)
    use_reported_accuracy: bool = True


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    proximity: ProximitySettings = Field(default_factory=ProximitySettings)
    movement: MovementSettings = Field(default_factory=MovementSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload."""
    load_dotenv_if_present()
    data = dict(data)
    log_level = os.getenv("NEARMATCH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    tz = os.getenv("NEARMATCH_TIMEZONE")
    if tz:
        data.setdefault("app", {})["timezone"] = tz
    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("NEARMATCH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
