"""Sale normalisation, EMA pricing and robust statistics."""

from .ema import EMAResult, calculate_ema, estimate_from_sales, grade_confidence
from .normalizer import max_days_for, normalize_sales, time_weight
from .statistics import (
    CenteredRange,
    MarketAnalysis,
    analyze_market_prices,
    centered_price_range,
    coefficient_of_variation,
    robust_average,
)

__all__ = [
    "CenteredRange",
    "EMAResult",
    "MarketAnalysis",
    "analyze_market_prices",
    "calculate_ema",
    "centered_price_range",
    "coefficient_of_variation",
    "estimate_from_sales",
    "grade_confidence",
    "max_days_for",
    "normalize_sales",
    "robust_average",
    "time_weight",
]
