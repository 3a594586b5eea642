"""Price prediction for cards with no usable comparable sales."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple

from cardvalue.config.positions import get_position
from cardvalue.config.settings import ValuationSettings
from cardvalue.models import MS_PER_DAY, Clock, Confidence, PlayerProfile, SaleRecord, system_clock
from cardvalue.pricing.statistics import analyze_market_prices
from cardvalue.regression.model import (
    InsufficientTrainingData,
    RegressionModel,
    SingularMatrixError,
    TrainingPoint,
    train_regression,
)

logger = logging.getLogger(__name__)

MIN_SALES_PER_PLAYER = 2
REFERENCE_OVERALL = 70
OVERALL_EXPONENT = 2.5

PredictionMethod = Literal["regression", "position-average", "overall-average"]
TrainingSource = Callable[[int], Sequence[Tuple[SaleRecord, PlayerProfile]]]


@dataclass(frozen=True)
class PredictionResult:
    value: int
    confidence: Confidence
    method: PredictionMethod
    explanation: str
    based_on: str
    similar_players: int = 0
    model: Optional[RegressionModel] = None

    def as_dict(self) -> dict:
        payload = {
            "value": self.value,
            "confidence": self.confidence,
            "method": self.method,
            "explanation": self.explanation,
            "based_on": self.based_on,
            "similar_players": self.similar_players,
        }
        if self.model is not None:
            payload["model"] = self.model.as_dict()
        return payload


def build_training_points(pairs: Sequence[Tuple[SaleRecord, PlayerProfile]]) -> List[TrainingPoint]:
    """One point per player: robust average of their sales, kept when two or more survive screening."""

    prices: Dict[str, List[float]] = {}
    profiles: Dict[str, PlayerProfile] = {}
    for sale, profile in pairs:
        if sale.price <= 0 or not profile.player_id:
            continue
        prices.setdefault(profile.player_id, []).append(float(sale.price))
        profiles[profile.player_id] = profile

    points: List[TrainingPoint] = []
    for player_id, player_prices in prices.items():
        if len(player_prices) < MIN_SALES_PER_PLAYER:
            continue
        analysis = analyze_market_prices(player_prices)
        if analysis.final_count < MIN_SALES_PER_PLAYER:
            continue
        points.append(TrainingPoint(profiles[player_id], analysis.average.value, analysis.final_count))
    return points


def position_heuristic(profile: PlayerProfile) -> float:
    base = get_position(profile.primary_position).heuristic_base_price
    overall_factor = (profile.overall / REFERENCE_OVERALL) ** OVERALL_EXPONENT
    if profile.age <= 24:
        age_adjustment = 1.2
    elif profile.age >= 30:
        age_adjustment = 0.8
    else:
        age_adjustment = 1.0
    return base * overall_factor * age_adjustment


def minimal_heuristic(profile: PlayerProfile) -> int:
    return max(1, profile.overall - 50)


class RegressionPredictor:
    """Memoises the trained model (or its absence) for a fixed staleness window."""

    def __init__(
        self,
        training_source: TrainingSource,
        *,
        settings: ValuationSettings | None = None,
        clock: Clock = system_clock,
    ):
        self._training_source = training_source
        self._settings = settings or ValuationSettings()
        self._clock = clock
        self._model: Optional[RegressionModel] = None
        self._checked_at_ms: Optional[int] = None

    def invalidate(self) -> None:
        self._model = None
        self._checked_at_ms = None

    def is_stale(self) -> bool:
        if self._checked_at_ms is None:
            return True
        return self._clock() - self._checked_at_ms >= self._settings.regression_cache_seconds * 1000

    def model(self) -> Optional[RegressionModel]:
        if not self.is_stale():
            return self._model
        now_ms = self._clock()
        since_ms = now_ms - self._settings.regression_days_back * MS_PER_DAY
        points = build_training_points(self._training_source(since_ms))
        try:
            model: Optional[RegressionModel] = train_regression(points, trained_at_ms=now_ms)
        except InsufficientTrainingData as exc:
            logger.warning("Skipping regression model: %s", exc)
            model = None
        except SingularMatrixError as exc:
            logger.warning("Regression training matrix is singular, using heuristics: %s", exc)
            model = None
        self._model = model
        self._checked_at_ms = now_ms
        return model

    def predict(self, profile: PlayerProfile) -> PredictionResult:
        model = self.model()
        if model is not None:
            raw = model.predict(profile)
            if math.isfinite(raw):
                return PredictionResult(
                    value=max(1, round(raw)),
                    confidence=model.confidence,
                    method="regression",
                    explanation=(
                        f"Predicted using regression model trained on {model.training_size} players "
                        f"(R² = {model.r2_score:.2f})"
                    ),
                    based_on="Statistical model based on overall, age, position, and key stats",
                    similar_players=model.training_size,
                    model=model,
                )
            logger.warning("Regression produced a non-finite price for %s", profile.label())
        return self.heuristic(profile)

    def heuristic(self, profile: PlayerProfile) -> PredictionResult:
        estimate = round(position_heuristic(profile))
        if estimate >= 1:
            base = get_position(profile.primary_position).heuristic_base_price
            return PredictionResult(
                value=estimate,
                confidence="low",
                method="position-average",
                explanation=(
                    f"Estimated using position-based formula "
                    f"({profile.primary_position} players typically ${base:g} base)"
                ),
                based_on=f"Position: {profile.primary_position}, Overall: {profile.overall}, Age: {profile.age}",
            )
        return PredictionResult(
            value=minimal_heuristic(profile),
            confidence="low",
            method="overall-average",
            explanation="Basic estimate based on overall rating only",
            based_on=f"Overall rating: {profile.overall}",
        )
