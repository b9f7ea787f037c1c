# src/proxenrich/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/proxenrich/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `PROXENRICH_ORACLE_API_KEY`)
- an external YAML file via `PROXENRICH_CONFIG_PATH`

Design rule:
- Tuning knobs (thresholds, band, budget, delay) live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import copy
import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from proxenrich.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `proxenrich.config`."""
    text = resources.files("proxenrich.config").joinpath(filename).read_text(encoding="utf-8")
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
    name: str = "proxenrich"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class StoreSettings(BaseModel):
    points_path: str = "data/points.json"
    results_path: str = "data/results.json"


class DedupeSettings(BaseModel):
    threshold_m: float = Field(50.0, gt=0)


class EnrichmentSettings(BaseModel):
    candidate_min_km: float = Field(0.2, ge=0)
    candidate_max_km: float = Field(3.0, gt=0)
    acceptance_km: float = Field(5.0, gt=0)
    call_budget: int = Field(500, ge=0)
    inter_call_delay_ms: float = Field(1000, ge=0)
    mirror_edges: bool = False

    @model_validator(mode="after")
    def _validate_band(self) -> "EnrichmentSettings":
        if self.candidate_min_km >= self.candidate_max_km:
            raise ValueError("enrichment.candidate_min_km must be below candidate_max_km")
        return self


class RetrySettings(BaseModel):
    max_attempts: int = Field(0, ge=0)
    base_delay_seconds: float = Field(1.0, ge=0)
    max_delay_seconds: float = Field(30.0, ge=0)


class OracleSettings(BaseModel):
    base_url: str = "https://router.hereapi.com/v8/routes"
    transport_mode: str = "car"
    api_key: str | None = None
    retry: RetrySettings = Field(default_factory=RetrySettings)


DEFAULT_PLACE_CATEGORIES = [
    "200-2000-0011",
    "100-1000-0000",
    "700-7450-0114",
    "200-2100-0019",
    "400-4100-0036",
    "600-6100-0062",
    "600-6900-0103",
    "600-6000-0061",
    "600-6300-0064",
    "600-6800-0000",
    "700-7000-0107",
]


class PlacesSettings(BaseModel):
    base_url: str = "https://browse.search.hereapi.com/v1/browse"
    # Falls back to oracle.api_key when unset (same provider account).
    api_key: str | None = None
    limit: int = Field(100, ge=1, le=100)
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_PLACE_CATEGORIES))
    categories_per_seed: int = Field(2, ge=1)
    min_distance_m: float = Field(200, ge=0)
    max_distance_m: float = Field(1500, gt=0)
    max_per_category: int = Field(3, ge=1)
    request_delay_ms: float = Field(0, ge=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @model_validator(mode="after")
    def _validate_window(self) -> "PlacesSettings":
        if self.min_distance_m >= self.max_distance_m:
            raise ValueError("places.min_distance_m must be below max_distance_m")
        if self.categories_per_seed > len(self.categories):
            raise ValueError("places.categories_per_seed exceeds the number of categories")
        return self


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    dedupe: DedupeSettings = Field(default_factory=DedupeSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    places: PlacesSettings = Field(default_factory=PlacesSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("PROXENRICH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    points_path = os.getenv("PROXENRICH_POINTS_PATH")
    if points_path:
        data.setdefault("store", {})["points_path"] = points_path

    results_path = os.getenv("PROXENRICH_RESULTS_PATH")
    if results_path:
        data.setdefault("store", {})["results_path"] = results_path

    api_key = os.getenv("PROXENRICH_ORACLE_API_KEY")
    if api_key:
        data.setdefault("oracle", {})["api_key"] = api_key

    places_key = os.getenv("PROXENRICH_PLACES_API_KEY")
    if places_key:
        data.setdefault("places", {})["api_key"] = places_key

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("PROXENRICH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def _logging_config() -> dict[str, Any]:
    return _read_package_yaml("logging.yaml")


def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (a fresh copy; callers adjust levels in place)."""
    return copy.deepcopy(_logging_config())
