"""Pricing strategies and the tagged outcomes they produce.

Each strategy returns a frozen outcome record; :func:`cardvalue.valuation.service.assemble_result`
is the only place that turns an outcome into a :class:`MarketValueResult`.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from cardvalue.config.positions import bracket_for, clamp_age
from cardvalue.config.settings import ValuationSettings
from cardvalue.models import Confidence, DataQuality, PlayerProfile, SaleRecord
from cardvalue.multipliers.grid import (
    MultiplierGrid,
    PlayerTraits,
    PriceAdjustment,
    adjust_sale_price,
    neighbour_distance,
)
from cardvalue.pricing.ema import EMAResult, calculate_ema
from cardvalue.pricing.normalizer import max_days_for, normalize_sales
from cardvalue.pricing.statistics import CenteredRange, MarketAnalysis, analyze_market_prices, centered_price_range
from cardvalue.regression.predictor import PredictionResult
from cardvalue.valuation.fallback import StaticEstimate

EMA_SALES_THRESHOLD = 5
STATISTICAL_SALES_THRESHOLD = 2
INTERPOLATION_AGE_WINDOW = 5
INTERPOLATION_MIDPOINT_WINDOW = 10
LOW_CONFIDENCE_LEVEL = 0.6
PREDICTION_CONFIDENCE_LEVELS = {"high": 0.8, "medium": 0.7, "low": 0.6}


@dataclass(frozen=True)
class AdjustedSale:
    sale: SaleRecord
    adjustment: PriceAdjustment

    @property
    def price(self) -> int:
        return self.adjustment.adjusted

    def as_sale(self) -> SaleRecord:
        return self.sale.model_copy(update={"price": float(self.adjustment.adjusted)})


@dataclass(frozen=True)
class EmaOutcome:
    ema: EMAResult
    analysis: MarketAnalysis
    price_range: CenteredRange
    data_quality: DataQuality
    window_days: int
    adjustments: dict


@dataclass(frozen=True)
class StatisticalOutcome:
    value: int
    analysis: MarketAnalysis
    price_range: CenteredRange
    confidence: Confidence
    data_quality: DataQuality
    sample_size: int
    adjustments: dict
    stale_window_days: Optional[int] = None


@dataclass(frozen=True)
class InterpolatedOutcome:
    value: int
    price_range: CenteredRange
    segments_used: int
    supporting_sales: int
    sample_size: int


@dataclass(frozen=True)
class PredictionOutcome:
    prediction: PredictionResult
    price_range: CenteredRange
    sample_size: int


@dataclass(frozen=True)
class StaticOutcome:
    estimate: StaticEstimate
    stage: str
    error: str


ValuationOutcome = Union[EmaOutcome, StatisticalOutcome, InterpolatedOutcome, PredictionOutcome, StaticOutcome]


def filter_comparables(
    sales: Sequence[SaleRecord],
    profile: PlayerProfile,
    max_overall_gap: int,
) -> List[SaleRecord]:
    """Sales with a price, a timestamp and an overall close enough to the target."""

    return [
        sale
        for sale in sales
        if sale.price > 0
        and sale.purchase_timestamp_ms is not None
        and sale.seller_player_overall is not None
        and abs(sale.seller_player_overall - profile.overall) <= max_overall_gap
    ]


def adjust_comparables(
    sales: Sequence[SaleRecord],
    profile: PlayerProfile,
    grid: MultiplierGrid,
) -> List[AdjustedSale]:
    target = PlayerTraits.of_profile(profile)
    return [
        AdjustedSale(sale, adjust_sale_price(sale.price, PlayerTraits.of_sale(sale), target, grid))
        for sale in sales
    ]


def adjustment_summary(adjusted: Sequence[AdjustedSale]) -> dict:
    methods = Counter(item.adjustment.method for item in adjusted)
    factors = [item.adjustment.factor for item in adjusted]
    return {
        "grid": methods.get("grid", 0),
        "overall": methods.get("overall", 0),
        "none": methods.get("none", 0),
        "min_factor": round(min(factors), 4) if factors else None,
        "max_factor": round(max(factors), 4) if factors else None,
    }


def grade_data_quality(ema: EMAResult) -> DataQuality:
    span = ema.span_days
    density = ema.sample_size / max(1.0, span)
    if ema.sample_size >= 15 and ema.newest_sale_days <= 7 and span >= 14 and density >= 0.5:
        return "excellent"
    if ema.sample_size >= 10 and ema.newest_sale_days <= 14 and span >= 7:
        return "good"
    if ema.sample_size >= 5 and ema.newest_sale_days <= 30:
        return "fair"
    return "poor"


def ema_strategy(
    adjusted: Sequence[AdjustedSale],
    profile: PlayerProfile,
    *,
    now_ms: int,
    settings: ValuationSettings,
) -> Optional[EmaOutcome]:
    """EMA over the adjusted sales inside the recency window; None when too few are recent."""

    window_days = max_days_for(profile.overall, settings)
    observations = normalize_sales((item.as_sale() for item in adjusted), now_ms=now_ms, max_days_old=window_days)
    if len(observations) < max(STATISTICAL_SALES_THRESHOLD, settings.ema_min_sample_size):
        return None
    ema = calculate_ema(observations, alpha=settings.ema_alpha, min_sample_size=settings.ema_min_sample_size)
    prices = [obs.price for obs in observations]
    return EmaOutcome(
        ema=ema,
        analysis=analyze_market_prices(prices, confidence_level=settings.confidence_level),
        price_range=centered_price_range(prices, ema.value, settings.confidence_level),
        data_quality=grade_data_quality(ema),
        window_days=window_days,
        adjustments=adjustment_summary(adjusted),
    )


def statistical_strategy(
    adjusted: Sequence[AdjustedSale],
    settings: ValuationSettings,
    *,
    stale_window_days: Optional[int] = None,
) -> StatisticalOutcome:
    prices = [float(item.price) for item in adjusted]
    analysis = analyze_market_prices(prices, confidence_level=settings.confidence_level, remove_outliers=True)
    value = max(1, round(analysis.average.value))
    stale = stale_window_days is not None
    return StatisticalOutcome(
        value=value,
        analysis=analysis,
        price_range=centered_price_range(
            analysis.values,
            value,
            LOW_CONFIDENCE_LEVEL if stale else settings.confidence_level,
        ),
        confidence="low" if stale else "medium",
        data_quality="poor" if stale else "fair",
        sample_size=len(prices),
        adjustments=adjustment_summary(adjusted),
        stale_window_days=stale_window_days,
    )


def interpolated_strategy(
    profile: PlayerProfile,
    grid: MultiplierGrid,
    *,
    sample_size: int = 0,
) -> Optional[InterpolatedOutcome]:
    """Blend the average prices of nearby grid segments, rescaled to the target card."""

    target_age = clamp_age(profile.age)
    target_bracket = bracket_for(profile.overall)
    target_multiplier = grid.lookup(profile.primary_position, profile.age, profile.overall)

    prices: List[float] = []
    weighted_total = 0.0
    total_weight = 0.0
    supporting_sales = 0
    for entry in grid.direct_entries(profile.primary_position):
        if abs(entry.age - target_age) > INTERPOLATION_AGE_WINDOW:
            continue
        if abs(entry.bracket.midpoint - target_bracket.midpoint) > INTERPOLATION_MIDPOINT_WINDOW:
            continue
        if entry.multiplier <= 0 or entry.avg_price <= 0:
            continue
        rescaled = entry.avg_price * target_multiplier / entry.multiplier
        weight = entry.sample_size / (neighbour_distance(entry, target_age, target_bracket) + 1)
        prices.append(rescaled)
        weighted_total += rescaled * weight
        total_weight += weight
        supporting_sales += entry.sample_size

    if total_weight <= 0:
        return None
    value = max(1, round(weighted_total / total_weight))
    return InterpolatedOutcome(
        value=value,
        price_range=centered_price_range(prices, value, LOW_CONFIDENCE_LEVEL),
        segments_used=len(prices),
        supporting_sales=supporting_sales,
        sample_size=sample_size,
    )


def prediction_strategy(prediction: PredictionResult, *, sample_size: int = 0) -> PredictionOutcome:
    level = PREDICTION_CONFIDENCE_LEVELS[prediction.confidence]
    return PredictionOutcome(
        prediction=prediction,
        price_range=centered_price_range([], prediction.value, level),
        sample_size=sample_size,
    )
