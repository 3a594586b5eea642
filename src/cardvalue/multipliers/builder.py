"""Batch rebuild of the market multiplier grid from recorded sales."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from statistics import fmean, median
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from cardvalue.config.positions import bracket_for, clamp_age, get_position, is_valid_position
from cardvalue.config.settings import ValuationSettings
from cardvalue.models import MS_PER_DAY, Clock, SaleRecord, system_clock
from cardvalue.multipliers.grid import (
    DEFAULT_BASELINE_PRICE,
    GridKey,
    MultiplierEntry,
    MultiplierGrid,
    complete_grid,
    theoretical_multiplier,
)
from cardvalue.persistence import RUN_COMPLETED, RUN_FAILED, MarketStore
from cardvalue.pricing.statistics import coefficient_of_variation, remove_outliers_iqr

logger = logging.getLogger(__name__)

BASELINE_POSITION = "CM"
BASELINE_AGE = 25
BASELINE_AGE_WINDOW = range(23, 28)
BASELINE_BRACKET = "76-78"
BASELINE_MIN_SALES = 3
GRID_IQR_MULTIPLIER = 2.0
GRID_MIN_KEEP_RATIO = 0.5
FULL_SAMPLE_SIZE = 20

# Plausibility window for direct multipliers, as a ratio to the closed-form value.
MIN_DIRECT_MULTIPLIER = 0.01
MIN_THEORETICAL_RATIO = 0.2
MAX_THEORETICAL_RATIO = 5.0
YOUTH_AGE = 19
YOUTH_MIN_RATIO = 0.4
VETERAN_AGE = 31
VETERAN_MAX_RATIO = 3.0
ELITE_MIDPOINT = 90
ELITE_MAX_RATIO = 3.0
POSITION_MAX_RATIO: Dict[str, float] = {"GK": 3.0, "CB": 3.5, "LWB": 3.5, "RWB": 3.5}


@dataclass(frozen=True)
class Baseline:
    price: float
    source: str


@dataclass
class RebuildResult:
    success: bool
    run_id: str
    metrics: Dict[str, int] = field(default_factory=dict)
    baseline: Optional[Baseline] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "metrics": dict(self.metrics),
            "baseline_price": round(self.baseline.price, 2) if self.baseline else None,
            "baseline_source": self.baseline.source if self.baseline else None,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


def group_sales(sales: Sequence[SaleRecord]) -> Dict[GridKey, List[float]]:
    groups: Dict[GridKey, List[float]] = {}
    for sale in sales:
        if not sale.has_profile or not is_valid_position(sale.seller_player_position):
            continue
        key = (
            get_position(sale.seller_player_position).code,
            clamp_age(sale.seller_player_age),
            bracket_for(sale.seller_player_overall).label,
        )
        groups.setdefault(key, []).append(float(sale.price))
    return groups


def baseline_price(groups: Mapping[GridKey, List[float]]) -> Baseline:
    """Mean price of the reference cohort, widening to nearby ages, then the whole market."""

    reference = groups.get((BASELINE_POSITION, BASELINE_AGE, BASELINE_BRACKET), [])
    if len(reference) >= BASELINE_MIN_SALES:
        return Baseline(fmean(reference), "reference")

    broader = [
        price
        for age in BASELINE_AGE_WINDOW
        for price in groups.get((BASELINE_POSITION, age, BASELINE_BRACKET), [])
    ]
    if broader:
        return Baseline(fmean(broader), "broader-age")

    every_price = [price for prices in groups.values() for price in prices]
    if every_price:
        return Baseline(float(median(every_price)), "global-median")

    logger.warning("No sales available for a baseline; using default %.2f", DEFAULT_BASELINE_PRICE)
    return Baseline(DEFAULT_BASELINE_PRICE, "default")


def clean_prices(prices: Sequence[float]) -> List[float]:
    report = remove_outliers_iqr(prices, GRID_IQR_MULTIPLIER)
    if len(report.filtered) >= len(prices) * GRID_MIN_KEEP_RATIO:
        return report.filtered
    return list(prices)


def direct_entry(key: GridKey, prices: Sequence[float], baseline: float) -> MultiplierEntry:
    cleaned = clean_prices(prices)
    avg_price = fmean(cleaned)
    sample_score = min(1.0, len(cleaned) / FULL_SAMPLE_SIZE)
    consistency_score = max(0.1, 1.0 - coefficient_of_variation(cleaned))
    position, age, label = key
    return MultiplierEntry(
        position=position,
        age=age,
        overall_bracket=label,
        multiplier=avg_price / baseline,
        sample_size=len(cleaned),
        avg_price=avg_price,
        confidence_score=(sample_score + consistency_score) / 2,
    )


def is_valid_multiplier(entry: MultiplierEntry) -> bool:
    """Whether a direct multiplier is plausible for its position, age and overall bracket.

    Rejected cells are left to interpolation or the theoretical value, so a single
    noisy cohort cannot leak into its neighbours.
    """

    if entry.multiplier < MIN_DIRECT_MULTIPLIER:
        return False
    ratio = entry.multiplier / theoretical_multiplier(entry.position, entry.age, entry.overall_bracket)

    ceiling = POSITION_MAX_RATIO.get(entry.position, MAX_THEORETICAL_RATIO)
    if entry.age >= VETERAN_AGE:
        ceiling = min(ceiling, VETERAN_MAX_RATIO)
    if entry.bracket.midpoint >= ELITE_MIDPOINT:
        ceiling = min(ceiling, ELITE_MAX_RATIO)
    floor = YOUTH_MIN_RATIO if entry.age < YOUTH_AGE else MIN_THEORETICAL_RATIO
    return floor <= ratio <= ceiling


def relative_change(old: float, new: float) -> float:
    if old <= 0:
        return float("inf")
    return abs(new - old) / old


class GridBuilder:
    """Rebuilds the full grid and persists only the entries that moved."""

    def __init__(
        self,
        store: MarketStore,
        *,
        settings: ValuationSettings | None = None,
        clock: Clock = system_clock,
        on_publish: Callable[[MultiplierGrid], None] | None = None,
    ):
        self._store = store
        self._settings = settings or ValuationSettings()
        self._clock = clock
        self._on_publish = on_publish

    def iter_sales(self, since_ms: int) -> Iterator[SaleRecord]:
        batch_size = self._settings.grid_batch_size
        offset = 0
        while True:
            page = self._store.fetch_sales_page(since_ms, offset, batch_size)
            yield from page
            if len(page) < batch_size:
                return
            offset += batch_size

    def rebuild(
        self,
        window_days: int | None = None,
        min_sample_size: int | None = None,
        force_update: bool = False,
    ) -> RebuildResult:
        window_days = window_days or self._settings.grid_window_days
        min_sample_size = min_sample_size or self._settings.grid_min_sample_size
        started = time.perf_counter()
        run = self._store.create_run(
            window_days=window_days,
            min_sample_size=min_sample_size,
            force_update=force_update,
        )
        logger.info(
            "Starting multiplier rebuild %s (window=%dd min_sample=%d force=%s)",
            run.run_id,
            window_days,
            min_sample_size,
            force_update,
        )
        try:
            since_ms = self._clock() - window_days * MS_PER_DAY
            sales = list(self.iter_sales(since_ms))
            groups = group_sales(sales)
            baseline = baseline_price(groups)
            candidates = [
                direct_entry(key, prices, baseline.price)
                for key, prices in groups.items()
                if len(prices) >= min_sample_size
            ]
            direct = [entry for entry in candidates if is_valid_multiplier(entry)]
            rejected = [entry for entry in candidates if not is_valid_multiplier(entry)]
            for entry in rejected:
                logger.warning(
                    "Rejected implausible multiplier %.3f for %s/%d/%s (%d sales)",
                    entry.multiplier,
                    entry.position,
                    entry.age,
                    entry.overall_bracket,
                    entry.sample_size,
                )
            grid = complete_grid(direct, baseline.price)

            existing = {entry.key: entry for entry in self._store.load_multipliers()}
            added: List[MultiplierEntry] = []
            updated: List[MultiplierEntry] = []
            unchanged = 0
            threshold = self._settings.grid_change_threshold
            for entry in grid:
                previous = existing.get(entry.key)
                if previous is None:
                    added.append(entry)
                elif force_update or relative_change(previous.multiplier, entry.multiplier) > threshold:
                    updated.append(entry)
                else:
                    unchanged += 1
            if added or updated:
                self._store.apply_multiplier_changes(added + updated)

            metrics = {
                "combinations_analyzed": len(grid),
                "combinations_updated": len(updated),
                "combinations_added": len(added),
                "combinations_unchanged": unchanged,
                "direct_combinations": len(direct),
                "rejected_combinations": len(rejected),
                "sales_analyzed": len(sales),
                "window_days": window_days,
            }
        except Exception as exc:
            logger.exception("Multiplier rebuild %s failed", run.run_id)
            self._store.finish_run(run.run_id, status=RUN_FAILED, error_message=str(exc))
            return RebuildResult(
                success=False,
                run_id=run.run_id,
                error=str(exc),
                duration_ms=int((time.perf_counter() - started) * 1000),
            )

        self._store.finish_run(run.run_id, status=RUN_COMPLETED, metrics=metrics)
        logger.info(
            "Multiplier rebuild %s complete: added=%d updated=%d unchanged=%d sales=%d baseline=%.2f (%s)",
            run.run_id,
            len(added),
            len(updated),
            unchanged,
            len(sales),
            baseline.price,
            baseline.source,
        )
        if self._on_publish is not None and (added or updated):
            self._on_publish(MultiplierGrid(self._store.load_multipliers()))
        return RebuildResult(
            success=True,
            run_id=run.run_id,
            metrics=metrics,
            baseline=baseline,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    def latest_update_info(self, history: int = 5) -> dict:
        summary = self._store.multiplier_summary()
        runs = self._store.list_runs(limit=history)
        return {
            "total_multipliers": summary.total_multipliers,
            "direct_multipliers": summary.direct_multipliers,
            "average_confidence": round(summary.average_confidence, 3),
            "last_update": summary.last_updated.isoformat() if summary.last_updated else None,
            "history": [
                {
                    "run_id": run.run_id,
                    "status": run.status,
                    "started_at": run.started_at.isoformat(),
                    "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                    "metrics": run.metrics,
                    "error_message": run.error_message,
                }
                for run in runs
            ],
        }
