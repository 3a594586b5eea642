"""Position x age x overall-bracket market multipliers.

A grid maps every ``(position, age, bracket)`` combination to a dimensionless
price multiplier relative to the baseline cohort (CM, age 25, 76-78). It is
used to translate a comparable sale into what the same money would buy for
the target player's profile.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Literal, Mapping, Tuple

from cardvalue.config.positions import (
    GRID_AGES,
    OVERALL_BRACKETS,
    POSITIONS,
    REFERENCE_OVERALL_MIDPOINT,
    OverallBracket,
    age_factor,
    bracket_for,
    clamp_age,
    get_bracket,
    get_position,
    is_valid_position,
)
from cardvalue.models import PlayerProfile, SaleRecord

logger = logging.getLogger(__name__)

GridKey = Tuple[str, int, str]

DEFAULT_BASELINE_PRICE = 74.32
THEORETICAL_CONFIDENCE = 0.20
INTERPOLATED_CONFIDENCE_SCALE = 0.5
MAX_NEIGHBOUR_DISTANCE = 10
GRID_SIZE = len(POSITIONS) * len(GRID_AGES) * len(OVERALL_BRACKETS)

MIN_GRID_RATIO = 0.1
MAX_GRID_RATIO = 10.0
OVERALL_STEP_FACTOR = 1.12
MIN_OVERALL_RATIO = 0.125
MAX_OVERALL_RATIO = 8.0


@dataclass(frozen=True)
class MultiplierEntry:
    position: str
    age: int
    overall_bracket: str
    multiplier: float
    sample_size: int = 0
    avg_price: float = 0.0
    confidence_score: float = THEORETICAL_CONFIDENCE

    @property
    def key(self) -> GridKey:
        return (self.position, self.age, self.overall_bracket)

    @property
    def is_direct(self) -> bool:
        return self.sample_size > 0

    @property
    def bracket(self) -> OverallBracket:
        return get_bracket(self.overall_bracket)

    def as_dict(self) -> dict:
        return {
            "position": self.position,
            "age": self.age,
            "overall_bracket": self.overall_bracket,
            "multiplier": round(self.multiplier, 4),
            "sample_size": self.sample_size,
            "avg_price": round(self.avg_price, 2),
            "confidence_score": round(self.confidence_score, 3),
        }


def grid_key(position: str, age: int, overall: int) -> GridKey:
    return (get_position(position).code, clamp_age(age), bracket_for(overall).label)


def iter_grid_keys() -> Iterator[GridKey]:
    for position in POSITIONS:
        for age in GRID_AGES:
            for bracket in OVERALL_BRACKETS:
                yield (position, age, bracket.label)


def theoretical_multiplier(position: str, age: int, bracket: OverallBracket | str) -> float:
    """Closed-form multiplier from the position, age and overall factor tables."""

    if isinstance(bracket, str):
        bracket = get_bracket(bracket)
    overall_factor = (bracket.midpoint / REFERENCE_OVERALL_MIDPOINT) ** 2
    return get_position(position).market_factor * age_factor(clamp_age(age)) * overall_factor


def theoretical_entry(key: GridKey, baseline_price: float = DEFAULT_BASELINE_PRICE) -> MultiplierEntry:
    position, age, label = key
    multiplier = theoretical_multiplier(position, age, label)
    return MultiplierEntry(
        position=position,
        age=age,
        overall_bracket=label,
        multiplier=multiplier,
        sample_size=0,
        avg_price=multiplier * baseline_price,
        confidence_score=THEORETICAL_CONFIDENCE,
    )


class MultiplierGrid:
    """Immutable snapshot of multiplier entries keyed by ``(position, age, bracket)``."""

    def __init__(self, entries: Iterable[MultiplierEntry] = (), *, loaded_at: float | None = None):
        self._entries: Mapping[GridKey, MultiplierEntry] = MappingProxyType(
            {entry.key: entry for entry in entries}
        )
        self.loaded_at = loaded_at if loaded_at is not None else time.monotonic()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[MultiplierEntry]:
        return iter(self._entries.values())

    @property
    def is_complete(self) -> bool:
        return all(key in self._entries for key in iter_grid_keys())

    def get(self, key: GridKey) -> MultiplierEntry | None:
        return self._entries.get(key)

    def entry_for(self, position: str, age: int, overall: int) -> MultiplierEntry | None:
        return self._entries.get(grid_key(position, age, overall))

    def lookup(self, position: str, age: int, overall: int) -> float:
        """Stored multiplier for the combination, or the theoretical one when absent."""

        key = grid_key(position, age, overall)
        entry = self._entries.get(key)
        if entry is not None and entry.multiplier > 0 and math.isfinite(entry.multiplier):
            return entry.multiplier
        return theoretical_multiplier(*key)

    def direct_entries(self, position: str | None = None) -> List[MultiplierEntry]:
        code = get_position(position).code if position else None
        return [
            entry
            for entry in self._entries.values()
            if entry.is_direct and (code is None or entry.position == code)
        ]


def build_theoretical_grid(baseline_price: float = DEFAULT_BASELINE_PRICE) -> MultiplierGrid:
    """Full grid of closed-form multipliers, used before the first rebuild."""

    return MultiplierGrid(theoretical_entry(key, baseline_price) for key in iter_grid_keys())


def neighbour_distance(entry: MultiplierEntry, age: int, bracket: OverallBracket) -> int:
    return abs(entry.age - age) + 2 * abs(entry.bracket.midpoint - bracket.midpoint)


def interpolate_entry(
    key: GridKey,
    neighbours: Iterable[MultiplierEntry],
    baseline_price: float,
) -> MultiplierEntry | None:
    """Inverse-distance weighted entry from same-position neighbours, if any are close enough."""

    position, age, label = key
    bracket = get_bracket(label)
    weighted_multiplier = 0.0
    weighted_confidence = 0.0
    total_weight = 0.0
    for neighbour in neighbours:
        distance = neighbour_distance(neighbour, age, bracket)
        if distance > MAX_NEIGHBOUR_DISTANCE:
            continue
        weight = 1.0 / (distance + 1)
        weighted_multiplier += neighbour.multiplier * weight
        weighted_confidence += neighbour.confidence_score * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    multiplier = weighted_multiplier / total_weight
    return MultiplierEntry(
        position=position,
        age=age,
        overall_bracket=label,
        multiplier=multiplier,
        sample_size=0,
        avg_price=multiplier * baseline_price,
        confidence_score=INTERPOLATED_CONFIDENCE_SCALE * weighted_confidence / total_weight,
    )


def complete_grid(
    direct_entries: Iterable[MultiplierEntry],
    baseline_price: float = DEFAULT_BASELINE_PRICE,
) -> MultiplierGrid:
    """Fill every combination missing from ``direct_entries``."""

    by_position: Dict[str, List[MultiplierEntry]] = {}
    direct: Dict[GridKey, MultiplierEntry] = {}
    for entry in direct_entries:
        direct[entry.key] = entry
        by_position.setdefault(entry.position, []).append(entry)

    entries: List[MultiplierEntry] = []
    interpolated = 0
    theoretical = 0
    for key in iter_grid_keys():
        if key in direct:
            entries.append(direct[key])
            continue
        entry = interpolate_entry(key, by_position.get(key[0], ()), baseline_price)
        if entry is None:
            entry = theoretical_entry(key, baseline_price)
            theoretical += 1
        else:
            interpolated += 1
        entries.append(entry)

    logger.info(
        "Completed multiplier grid: direct=%d interpolated=%d theoretical=%d",
        len(direct),
        interpolated,
        theoretical,
    )
    return MultiplierGrid(entries)


@dataclass(frozen=True)
class PlayerTraits:
    position: str | None
    age: int | None
    overall: int | None

    @classmethod
    def of_sale(cls, sale: SaleRecord) -> "PlayerTraits":
        return cls(sale.seller_player_position, sale.seller_player_age, sale.seller_player_overall)

    @classmethod
    def of_profile(cls, profile: PlayerProfile) -> "PlayerTraits":
        return cls(profile.primary_position, profile.age, profile.overall)

    @property
    def complete(self) -> bool:
        return is_valid_position(self.position) and self.age is not None and self.overall is not None


AdjustmentMethod = Literal["grid", "overall", "none"]


@dataclass(frozen=True)
class PriceAdjustment:
    original: float
    adjusted: int
    factor: float
    method: AdjustmentMethod


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def adjust_sale_price(
    price: float,
    source: PlayerTraits,
    target: PlayerTraits,
    grid: MultiplierGrid,
) -> PriceAdjustment:
    """Translate a comparable sale price from the seller's card to the target card."""

    if source.complete and target.complete:
        source_multiplier = grid.lookup(source.position, source.age, source.overall)
        target_multiplier = grid.lookup(target.position, target.age, target.overall)
        if source_multiplier > 0 and math.isfinite(target_multiplier):
            factor = _clamp(target_multiplier / source_multiplier, MIN_GRID_RATIO, MAX_GRID_RATIO)
            return PriceAdjustment(price, max(1, round(price * factor)), factor, "grid")
        logger.warning("Unusable multipliers %s -> %s; using overall-only adjustment", source, target)

    if source.overall is not None and target.overall is not None:
        factor = _clamp(
            OVERALL_STEP_FACTOR ** (target.overall - source.overall),
            MIN_OVERALL_RATIO,
            MAX_OVERALL_RATIO,
        )
        return PriceAdjustment(price, max(1, round(price * factor)), factor, "overall")

    return PriceAdjustment(price, max(1, round(price)), 1.0, "none")


GridLoader = Callable[[], Iterable[MultiplierEntry]]


class GridProvider:
    """Caches the persisted grid and swaps in fresh snapshots by reference."""

    def __init__(
        self,
        loader: GridLoader,
        *,
        max_age_seconds: float = 3600,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._max_age_seconds = max_age_seconds
        self._monotonic = monotonic
        self._snapshot: MultiplierGrid | None = None

    @property
    def snapshot(self) -> MultiplierGrid | None:
        return self._snapshot

    def is_stale(self) -> bool:
        snapshot = self._snapshot
        if snapshot is None:
            return True
        return self._monotonic() - snapshot.loaded_at >= self._max_age_seconds

    def current(self) -> MultiplierGrid:
        """Return the cached snapshot, reloading from the store once it goes stale.

        A reload failure keeps serving the previous snapshot when there is one.
        Missing combinations resolve to theoretical multipliers at lookup time.
        """

        if not self.is_stale():
            return self._snapshot  # type: ignore[return-value]
        previous = self._snapshot
        try:
            entries = list(self._loader())
        except Exception:
            if previous is None:
                raise
            logger.warning("Failed to reload multiplier grid; serving previous snapshot", exc_info=True)
            return previous
        if not entries:
            logger.warning("No persisted multipliers found; lookups use theoretical values")
        snapshot = MultiplierGrid(entries, loaded_at=self._monotonic())
        self._snapshot = snapshot
        return snapshot

    def publish(self, grid: MultiplierGrid) -> None:
        self._snapshot = MultiplierGrid(grid, loaded_at=self._monotonic())

    def invalidate(self) -> None:
        self._snapshot = None
