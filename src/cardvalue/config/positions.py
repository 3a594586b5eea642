"""Position, age and overall-bracket tables used by the valuation engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple


@dataclass(frozen=True)
class PositionProfile:
    code: str
    regression_code: int
    market_factor: float
    heuristic_base_price: float
    static_factor: float
    outfield: bool = True


_POSITION_PROFILES: Dict[str, PositionProfile] = {
    "GK": PositionProfile("GK", 0, 0.70, 15.0, 1.00, outfield=False),
    "CB": PositionProfile("CB", 1, 0.75, 20.0, 1.05),
    "LB": PositionProfile("LB", 2, 0.85, 25.0, 1.10),
    "RB": PositionProfile("RB", 2, 0.85, 25.0, 1.10),
    "LWB": PositionProfile("LWB", 3, 0.55, 30.0, 1.00),
    "RWB": PositionProfile("RWB", 3, 0.55, 30.0, 1.00),
    "CDM": PositionProfile("CDM", 4, 0.90, 35.0, 1.15),
    "CM": PositionProfile("CM", 5, 1.00, 25.0, 1.00),
    "CAM": PositionProfile("CAM", 6, 1.00, 40.0, 1.20),
    "LM": PositionProfile("LM", 5, 0.95, 25.0, 1.10),
    "RM": PositionProfile("RM", 5, 0.95, 25.0, 1.10),
    "LW": PositionProfile("LW", 7, 1.05, 35.0, 1.15),
    "RW": PositionProfile("RW", 7, 1.05, 35.0, 1.15),
    "CF": PositionProfile("CF", 8, 1.05, 45.0, 1.00),
    "ST": PositionProfile("ST", 9, 1.10, 50.0, 1.25),
}

POSITIONS: Tuple[str, ...] = tuple(_POSITION_PROFILES)

DEFAULT_POSITION = "CM"

MIN_GRID_AGE = 16
MAX_GRID_AGE = 40
GRID_AGES: Tuple[int, ...] = tuple(range(MIN_GRID_AGE, MAX_GRID_AGE + 1))

# Age curve shared by the theoretical grid multiplier; 25-26 is the 1.0 peak.
AGE_FACTORS: Mapping[int, float] = {
    16: 3.0, 17: 2.8, 18: 2.6, 19: 2.4, 20: 2.2, 21: 2.0, 22: 1.8, 23: 1.5,
    24: 1.2, 25: 1.0, 26: 1.0, 27: 0.98, 28: 0.95, 29: 0.90, 30: 0.85,
    31: 0.75, 32: 0.65, 33: 0.55, 34: 0.45, 35: 0.35,
}
LATE_CAREER_AGE_FACTOR = 0.30

REFERENCE_OVERALL_MIDPOINT = 77


@dataclass(frozen=True)
class OverallBracket:
    low: int
    high: int

    @property
    def label(self) -> str:
        return f"{self.low}-{self.high}"

    @property
    def midpoint(self) -> int:
        return round((self.low + self.high) / 2)

    def contains(self, overall: int) -> bool:
        return self.low <= overall <= self.high


OVERALL_BRACKETS: Tuple[OverallBracket, ...] = tuple(
    OverallBracket(low, low + 2) for low in range(40, 98, 3)
)
_BRACKETS_BY_LABEL: Dict[str, OverallBracket] = {b.label: b for b in OVERALL_BRACKETS}


def get_position(code: str) -> PositionProfile:
    """Fetch the profile for a position code, raising KeyError if unknown."""

    key = code.strip().upper()
    if key not in _POSITION_PROFILES:
        raise KeyError(f"Unknown position {code!r}")
    return _POSITION_PROFILES[key]


def is_valid_position(code: str | None) -> bool:
    return bool(code) and code.strip().upper() in _POSITION_PROFILES


def regression_code(code: str | None) -> int:
    """Small integer grouping similar roles; unknown positions encode as CM."""

    if not is_valid_position(code):
        return _POSITION_PROFILES[DEFAULT_POSITION].regression_code
    return get_position(code).regression_code


def clamp_age(age: int) -> int:
    return max(MIN_GRID_AGE, min(MAX_GRID_AGE, int(age)))


def age_factor(age: int) -> float:
    if age in AGE_FACTORS:
        return AGE_FACTORS[age]
    if age > 35:
        return LATE_CAREER_AGE_FACTOR
    return 1.0


def bracket_for(overall: int) -> OverallBracket:
    """Map an overall rating to its 3-point bracket; anything below 40 uses 40-42."""

    for bracket in reversed(OVERALL_BRACKETS):
        if overall >= bracket.low:
            return bracket
    return OVERALL_BRACKETS[0]


def get_bracket(label: str) -> OverallBracket:
    if label not in _BRACKETS_BY_LABEL:
        raise KeyError(f"Unknown overall bracket {label!r}")
    return _BRACKETS_BY_LABEL[label]
