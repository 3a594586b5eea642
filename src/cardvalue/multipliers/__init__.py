"""Market multiplier grid; the batch rebuild lives in :mod:`cardvalue.multipliers.builder`."""

from .grid import (
    DEFAULT_BASELINE_PRICE,
    GRID_SIZE,
    GridProvider,
    MultiplierEntry,
    MultiplierGrid,
    PlayerTraits,
    PriceAdjustment,
    adjust_sale_price,
    build_theoretical_grid,
    complete_grid,
    theoretical_multiplier,
)

__all__ = [
    "DEFAULT_BASELINE_PRICE",
    "GRID_SIZE",
    "GridProvider",
    "MultiplierEntry",
    "MultiplierGrid",
    "PlayerTraits",
    "PriceAdjustment",
    "adjust_sale_price",
    "build_theoretical_grid",
    "complete_grid",
    "theoretical_multiplier",
]
