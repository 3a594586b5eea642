"""Valuation orchestrator: pick a pricing strategy and assemble the result."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Optional

from cardvalue.config.settings import ValuationSettings
from cardvalue.models import (
    Clock,
    MarketContext,
    MarketValueResult,
    PlayerProfile,
    PriceRange,
    system_clock,
)
from cardvalue.multipliers.grid import GridProvider
from cardvalue.persistence import ComparableSearch, MarketStore
from cardvalue.pricing.normalizer import max_days_for
from cardvalue.regression.predictor import RegressionPredictor
from cardvalue.valuation.fallback import static_estimate
from cardvalue.valuation.strategies import (
    EMA_SALES_THRESHOLD,
    STATISTICAL_SALES_THRESHOLD,
    EmaOutcome,
    InterpolatedOutcome,
    PredictionOutcome,
    StaticOutcome,
    StatisticalOutcome,
    ValuationOutcome,
    adjust_comparables,
    ema_strategy,
    filter_comparables,
    interpolated_strategy,
    prediction_strategy,
    statistical_strategy,
)

logger = logging.getLogger(__name__)

_CONFIDENCE_NOTES = {
    "high": "High confidence due to good sample size and recent data.",
    "medium": "Medium confidence with decent sample size.",
    "low": "Lower confidence due to limited or older sales data.",
}


class ValuationStageError(RuntimeError):
    """Wraps a failure with the pipeline stage it happened in."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


class ValuationService:
    """Request-scoped market valuation over a shared store, grid cache and regression cache."""

    def __init__(
        self,
        store: MarketStore,
        *,
        settings: ValuationSettings | None = None,
        clock: Clock = system_clock,
        grid_provider: GridProvider | None = None,
        predictor: RegressionPredictor | None = None,
    ):
        self.store = store
        self.settings = settings or ValuationSettings()
        self._clock = clock
        self.grid_provider = grid_provider or GridProvider(
            store.load_multipliers,
            max_age_seconds=self.settings.grid_cache_seconds,
        )
        self.predictor = predictor or RegressionPredictor(
            store.fetch_training_sales,
            settings=self.settings,
            clock=clock,
        )

    async def value_player(self, profile: PlayerProfile) -> MarketValueResult:
        """Estimate a card's market value. Never raises; failures yield the static estimate."""

        started = time.perf_counter()
        search: Optional[ComparableSearch] = None
        try:
            search = await self._read(
                "fetch-comparables",
                self.store.fetch_comparable_sales,
                profile,
                max_results=self.settings.max_comparables,
                expand_search=True,
            )
            outcome = await self._select_outcome(profile, search)
            result = assemble_result(outcome, profile=profile, search=search, elapsed_ms=_elapsed_ms(started))
        except Exception as exc:
            stage = exc.stage if isinstance(exc, ValuationStageError) else "assemble"
            logger.exception(
                "Market value calculation failed for player %s at stage %s",
                profile.label(),
                stage,
            )
            outcome = StaticOutcome(static_estimate(profile), stage=stage, error=str(exc))
            return assemble_result(outcome, profile=profile, search=None, elapsed_ms=_elapsed_ms(started))

        logger.info(
            "Market value for player %s: $%d via %s (n=%d)",
            profile.label(),
            result.estimated_value,
            result.method,
            result.sample_size,
        )
        return result

    async def _read(self, stage: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as exc:
            raise ValuationStageError(stage, exc) from exc

    def _compute(self, stage: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            raise ValuationStageError(stage, exc) from exc

    async def _select_outcome(self, profile: PlayerProfile, search: ComparableSearch) -> ValuationOutcome:
        comparables = filter_comparables(search.sales, profile, self.settings.max_overall_gap)
        grid = await self._read("load-grid", self.grid_provider.current)

        if len(comparables) >= STATISTICAL_SALES_THRESHOLD:
            adjusted = self._compute("adjust-prices", adjust_comparables, comparables, profile, grid)
            if len(adjusted) >= EMA_SALES_THRESHOLD:
                outcome = self._compute(
                    "ema",
                    ema_strategy,
                    adjusted,
                    profile,
                    now_ms=self._clock(),
                    settings=self.settings,
                )
                if outcome is not None:
                    return outcome
                logger.debug("No recent comparables for %s; using statistical estimate", profile.label())
                return self._compute(
                    "statistics",
                    statistical_strategy,
                    adjusted,
                    self.settings,
                    stale_window_days=max_days_for(profile.overall, self.settings),
                )
            return self._compute("statistics", statistical_strategy, adjusted, self.settings)

        interpolated = self._compute(
            "interpolate",
            interpolated_strategy,
            profile,
            grid,
            sample_size=len(comparables),
        )
        if interpolated is not None:
            return interpolated

        prediction = await self._read("predict", self.predictor.predict, profile)
        return prediction_strategy(prediction, sample_size=len(comparables))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _market_context(sample_size: int) -> MarketContext:
    if sample_size >= 10:
        return MarketContext(
            summary=f"Strong data confidence with {sample_size} recent sales",
            details="Market value based purely on historical transaction data",
        )
    if sample_size >= 2:
        return MarketContext(
            summary=f"Limited data with {sample_size} recent sales",
            details="Estimate based on available transaction history",
        )
    return MarketContext(
        summary="No recent sales data available",
        details="Estimated using player characteristics and market patterns",
    )


def assemble_result(
    outcome: ValuationOutcome,
    *,
    profile: PlayerProfile,
    search: Optional[ComparableSearch],
    elapsed_ms: int = 0,
) -> MarketValueResult:
    """Single dispatcher from a strategy outcome to the public result."""

    criteria = search.search_criteria if search is not None else "no search"
    breakdown: dict = {"calculation_time_ms": elapsed_ms}
    if search is not None:
        breakdown["search"] = {
            "criteria": search.search_criteria,
            "attempts": search.attempts,
            "candidates": search.sample_size,
            "lookback_days": search.lookback_days,
        }

    if isinstance(outcome, EmaOutcome):
        ema = outcome.ema
        breakdown.update(
            ema=ema.as_dict(),
            statistical=outcome.analysis.as_dict(),
            adjustments=outcome.adjustments,
            range_half_width=round(outcome.price_range.half_width_ratio, 4),
        )
        return MarketValueResult(
            estimated_value=ema.value,
            price_range=PriceRange(low=outcome.price_range.low, high=outcome.price_range.high),
            confidence=ema.confidence,
            method="ema",
            sample_size=ema.sample_size,
            data_quality=outcome.data_quality,
            explanation=(
                f"Based on exponential moving average of {ema.sample_size} recent sales. "
                f"{_CONFIDENCE_NOTES[ema.confidence]}"
            ),
            based_on=f"{ema.sample_size} sales over last {math.ceil(ema.oldest_sale_days)} days ({criteria})",
            market_context=_market_context(ema.sample_size),
            breakdown=breakdown,
        )

    if isinstance(outcome, StatisticalOutcome):
        analysis = outcome.analysis
        breakdown.update(
            statistical=analysis.as_dict(),
            adjustments=outcome.adjustments,
            range_half_width=round(outcome.price_range.half_width_ratio, 4),
        )
        if outcome.stale_window_days is not None:
            explanation = (
                f"Based on {analysis.average.method} of {outcome.sample_size} sales, all older than "
                f"{outcome.stale_window_days} days. Market may have moved since."
            )
        else:
            explanation = (
                f"Based on {analysis.average.method} of {outcome.sample_size} sales. "
                "Limited data available, so estimate has higher uncertainty."
            )
        return MarketValueResult(
            estimated_value=outcome.value,
            price_range=PriceRange(low=outcome.price_range.low, high=outcome.price_range.high),
            confidence=outcome.confidence,
            method="trimmed-mean",
            sample_size=outcome.sample_size,
            data_quality=outcome.data_quality,
            explanation=explanation,
            based_on=f"{outcome.sample_size} sales ({criteria})",
            market_context=_market_context(outcome.sample_size),
            breakdown=breakdown,
        )

    if isinstance(outcome, InterpolatedOutcome):
        breakdown.update(
            interpolation={
                "segments_used": outcome.segments_used,
                "supporting_sales": outcome.supporting_sales,
            },
            range_half_width=round(outcome.price_range.half_width_ratio, 4),
        )
        return MarketValueResult(
            estimated_value=outcome.value,
            price_range=PriceRange(low=outcome.price_range.low, high=outcome.price_range.high),
            confidence="low",
            method="interpolated",
            sample_size=outcome.sample_size,
            data_quality="poor",
            explanation=(
                f"Interpolated from {outcome.segments_used} similar {profile.primary_position} market segments "
                f"covering {outcome.supporting_sales} sales. This is a rough estimate due to limited market data."
            ),
            based_on=f"Similar players: {profile.primary_position}, age {profile.age}±5, overall {profile.overall}±10",
            market_context=_market_context(outcome.sample_size),
            breakdown=breakdown,
        )

    if isinstance(outcome, PredictionOutcome):
        prediction = outcome.prediction
        breakdown.update(
            prediction=prediction.as_dict(),
            range_half_width=round(outcome.price_range.half_width_ratio, 4),
        )
        if prediction.method == "regression":
            data_quality = "good" if prediction.confidence == "high" else "fair"
        else:
            data_quality = "poor"
        return MarketValueResult(
            estimated_value=prediction.value,
            price_range=PriceRange(low=outcome.price_range.low, high=outcome.price_range.high),
            confidence="low",
            method="regression" if prediction.method == "regression" else "position-estimate",
            sample_size=outcome.sample_size,
            data_quality=data_quality,
            explanation=f"{prediction.explanation}. This is a rough estimate due to limited market data.",
            based_on=prediction.based_on,
            market_context=_market_context(outcome.sample_size),
            breakdown=breakdown,
        )

    if isinstance(outcome, StaticOutcome):
        estimate = outcome.estimate
        breakdown.update(error_stage=outcome.stage, error=outcome.error)
        return MarketValueResult(
            estimated_value=estimate.value,
            price_range=PriceRange(low=estimate.low, high=estimate.high),
            confidence="low",
            method="position-estimate",
            sample_size=0,
            data_quality="poor",
            explanation="System error - using position-based estimate",
            based_on="Overall rating and position multipliers only",
            market_context=MarketContext(
                summary="System error - limited data available",
                details="Emergency fallback pricing based on player attributes only",
            ),
            breakdown=breakdown,
        )

    raise TypeError(f"Unknown valuation outcome {type(outcome).__name__}")
