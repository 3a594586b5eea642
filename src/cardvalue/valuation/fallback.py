"""Static ballpark estimate that needs no data access at all."""

from __future__ import annotations

from dataclasses import dataclass

from cardvalue.config.positions import get_position
from cardvalue.models import PlayerProfile

LOW_RANGE_FACTOR = 0.6
HIGH_RANGE_FACTOR = 1.4


@dataclass(frozen=True)
class StaticEstimate:
    value: int
    low: int
    high: int


def tier_bonus(overall: int) -> float:
    if overall >= 85:
        return 1.5
    if overall >= 80:
        return 1.2
    return 1.0


def static_estimate(profile: PlayerProfile) -> StaticEstimate:
    base = max(1.0, (profile.overall / 10) ** 2.5) * 100
    position_factor = get_position(profile.primary_position).static_factor
    age_adjustment = 1.0 if profile.age <= 28 else 1.0 - (profile.age - 28) * 0.02
    value = max(1, round(base * position_factor * age_adjustment * tier_bonus(profile.overall)))
    return StaticEstimate(
        value=value,
        low=min(value, round(value * LOW_RANGE_FACTOR)),
        high=max(value, round(value * HIGH_RANGE_FACTOR)),
    )
