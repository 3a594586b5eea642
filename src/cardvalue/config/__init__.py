"""Configuration helpers for position tables and engine settings."""

from .positions import (
    GRID_AGES,
    OVERALL_BRACKETS,
    POSITIONS,
    OverallBracket,
    PositionProfile,
    age_factor,
    bracket_for,
    clamp_age,
    get_bracket,
    get_position,
    is_valid_position,
    regression_code,
)
from .settings import ValuationSettings, load_settings

__all__ = [
    "GRID_AGES",
    "OVERALL_BRACKETS",
    "POSITIONS",
    "OverallBracket",
    "PositionProfile",
    "ValuationSettings",
    "age_factor",
    "bracket_for",
    "clamp_age",
    "get_bracket",
    "get_position",
    "is_valid_position",
    "load_settings",
    "regression_code",
]
