"""Turn raw sales into time-weighted observations."""

from __future__ import annotations

import math
from typing import Iterable, List

from cardvalue.config.settings import ValuationSettings
from cardvalue.models import MS_PER_DAY, SaleRecord, WeightedSaleObservation

DECAY_LAMBDA = 0.05
DEFAULT_MAX_DAYS_OLD = 60


def time_weight(days_old: float) -> float:
    """Exponential recency weight; a 10-day-old sale keeps ~60% weight."""

    return math.exp(-DECAY_LAMBDA * max(0.0, days_old))


def max_days_for(overall: int, settings: ValuationSettings | None = None) -> int:
    """Lookback window for a player; elite cards trade rarely so they look further back."""

    settings = settings or ValuationSettings()
    if overall >= settings.elite_overall:
        return settings.elite_max_days_old
    return settings.max_days_old


def normalize_sales(
    sales: Iterable[SaleRecord],
    *,
    now_ms: int,
    max_days_old: float = DEFAULT_MAX_DAYS_OLD,
) -> List[WeightedSaleObservation]:
    """Filter unusable sales and return observations ordered oldest to newest."""

    observations: List[WeightedSaleObservation] = []
    for sale in sales:
        if sale.purchase_timestamp_ms is None or sale.price <= 0:
            continue
        # Clock skew can put a sale slightly in the future; treat it as brand new.
        days_old = max(0.0, (now_ms - sale.purchase_timestamp_ms) / MS_PER_DAY)
        if days_old > max_days_old:
            continue
        observations.append(
            WeightedSaleObservation(
                price=float(sale.price),
                timestamp_ms=int(sale.purchase_timestamp_ms),
                days_old=days_old,
                time_weight=time_weight(days_old),
            )
        )
    observations.sort(key=lambda obs: obs.timestamp_ms)
    return observations
