"""Runtime knobs for the valuation engine, overridable through the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Mapping


logger = logging.getLogger(__name__)

_ENV_PREFIX = "CARDVALUE_"


def _env_float(name: str, default: float, *, clamp_min: float | None = None, clamp_max: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float for %s: %s; using default %.2f", name, raw, default)
        return default
    if clamp_min is not None:
        value = max(clamp_min, value)
    if clamp_max is not None:
        value = min(clamp_max, value)
    return value


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


@dataclass(frozen=True)
class ValuationSettings:
    ema_alpha: float = 0.3
    ema_min_sample_size: int = 2
    max_days_old: int = 60
    elite_max_days_old: int = 540
    elite_overall: int = 85
    confidence_level: float = 0.8
    max_comparables: int = 50
    max_overall_gap: int = 11
    grid_window_days: int = 540
    grid_min_sample_size: int = 5
    grid_batch_size: int = 1000
    grid_change_threshold: float = 0.05
    grid_cache_seconds: int = 3600
    regression_days_back: int = 60
    regression_cache_seconds: int = 6 * 3600

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ValuationSettings":
        known = {key: value for key, value in overrides.items() if key in self.__dataclass_fields__}
        unknown = sorted(set(overrides) - set(known))
        if unknown:
            logger.warning("Ignoring unknown settings: %s", ", ".join(unknown))
        return replace(self, **known)


def load_settings() -> ValuationSettings:
    """Build settings from defaults plus any CARDVALUE_* environment overrides."""

    defaults = ValuationSettings()
    return ValuationSettings(
        ema_alpha=_env_float(f"{_ENV_PREFIX}EMA_ALPHA", defaults.ema_alpha, clamp_min=0.01, clamp_max=1.0),
        ema_min_sample_size=_env_int(f"{_ENV_PREFIX}EMA_MIN_SAMPLE_SIZE", defaults.ema_min_sample_size, min_value=1),
        max_days_old=_env_int(f"{_ENV_PREFIX}MAX_DAYS_OLD", defaults.max_days_old, min_value=1),
        elite_max_days_old=_env_int(f"{_ENV_PREFIX}ELITE_MAX_DAYS_OLD", defaults.elite_max_days_old, min_value=1),
        elite_overall=_env_int(f"{_ENV_PREFIX}ELITE_OVERALL", defaults.elite_overall, min_value=1),
        confidence_level=_env_float(
            f"{_ENV_PREFIX}CONFIDENCE_LEVEL", defaults.confidence_level, clamp_min=0.5, clamp_max=0.99
        ),
        max_comparables=_env_int(f"{_ENV_PREFIX}MAX_COMPARABLES", defaults.max_comparables, min_value=1),
        max_overall_gap=_env_int(f"{_ENV_PREFIX}MAX_OVERALL_GAP", defaults.max_overall_gap, min_value=0),
        grid_window_days=_env_int(f"{_ENV_PREFIX}GRID_WINDOW_DAYS", defaults.grid_window_days, min_value=1),
        grid_min_sample_size=_env_int(f"{_ENV_PREFIX}GRID_MIN_SAMPLE_SIZE", defaults.grid_min_sample_size, min_value=1),
        grid_batch_size=_env_int(f"{_ENV_PREFIX}GRID_BATCH_SIZE", defaults.grid_batch_size, min_value=1),
        grid_change_threshold=_env_float(
            f"{_ENV_PREFIX}GRID_CHANGE_THRESHOLD", defaults.grid_change_threshold, clamp_min=0.0
        ),
        grid_cache_seconds=_env_int(f"{_ENV_PREFIX}GRID_CACHE_SECONDS", defaults.grid_cache_seconds, min_value=0),
        regression_days_back=_env_int(f"{_ENV_PREFIX}REGRESSION_DAYS_BACK", defaults.regression_days_back, min_value=1),
        regression_cache_seconds=_env_int(
            f"{_ENV_PREFIX}REGRESSION_CACHE_SECONDS", defaults.regression_cache_seconds, min_value=0
        ),
    )
