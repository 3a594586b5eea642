"""Canonical models shared across the store, engine and API layers."""

from .player import PlayerProfile
from .sale import (
    MS_PER_DAY,
    Clock,
    SaleObservation,
    SaleRecord,
    WeightedSaleObservation,
    system_clock,
)
from .valuation import (
    Confidence,
    DataQuality,
    MarketContext,
    MarketValueResult,
    PriceRange,
    ValuationMethod,
)

__all__ = [
    "MS_PER_DAY",
    "Clock",
    "Confidence",
    "DataQuality",
    "MarketContext",
    "MarketValueResult",
    "PlayerProfile",
    "PriceRange",
    "SaleObservation",
    "SaleRecord",
    "ValuationMethod",
    "WeightedSaleObservation",
    "system_clock",
]
