"""Exponential moving average pricing over time-weighted sales."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

from cardvalue.models import Confidence, SaleRecord, WeightedSaleObservation
from cardvalue.pricing.normalizer import DEFAULT_MAX_DAYS_OLD, normalize_sales

DEFAULT_ALPHA = 0.3
DEFAULT_MIN_SAMPLE_SIZE = 2
EMA_MIN_SAMPLE_SIZE = 5

EmaMethod = Literal["ema", "weighted-average", "simple-average"]


@dataclass(frozen=True)
class EMAResult:
    value: int
    confidence: Confidence
    sample_size: int
    oldest_sale_days: float
    newest_sale_days: float
    method: EmaMethod

    @property
    def span_days(self) -> float:
        return self.oldest_sale_days - self.newest_sale_days

    def as_dict(self) -> dict:
        return {
            "value": self.value,
            "confidence": self.confidence,
            "sample_size": self.sample_size,
            "oldest_sale_days": round(self.oldest_sale_days, 2),
            "newest_sale_days": round(self.newest_sale_days, 2),
            "method": self.method,
        }


def true_ema(observations: Sequence[WeightedSaleObservation], alpha: float) -> float:
    """Seed with the oldest price and blend each newer sale in chronological order."""

    if not observations:
        return 0.0
    ema = observations[0].price
    for obs in observations[1:]:
        ema = alpha * obs.price + (1 - alpha) * ema
    return ema


def time_weighted_average(observations: Sequence[WeightedSaleObservation]) -> float:
    total_weight = sum(obs.time_weight for obs in observations)
    if total_weight <= 0:
        return 0.0
    return sum(obs.price * obs.time_weight for obs in observations) / total_weight


def grade_confidence(observations: Sequence[WeightedSaleObservation]) -> Confidence:
    sample_size = len(observations)
    if sample_size == 0:
        return "low"
    newest = min(obs.days_old for obs in observations)
    mean_weight = sum(obs.time_weight for obs in observations) / sample_size

    if sample_size >= 10 and newest <= 7 and mean_weight >= 0.5:
        return "high"
    if sample_size >= 5 or (newest <= 3 and sample_size >= 3):
        return "medium"
    return "low"


def calculate_ema(
    observations: Sequence[WeightedSaleObservation],
    *,
    alpha: float = DEFAULT_ALPHA,
    min_sample_size: int = DEFAULT_MIN_SAMPLE_SIZE,
) -> EMAResult:
    """Price a card from observations already ordered oldest to newest."""

    if not observations:
        return EMAResult(
            value=0,
            confidence="low",
            sample_size=0,
            oldest_sale_days=0.0,
            newest_sale_days=0.0,
            method="simple-average",
        )

    oldest = max(obs.days_old for obs in observations)
    newest = min(obs.days_old for obs in observations)
    sample_size = len(observations)

    if sample_size < min_sample_size:
        simple_average = sum(obs.price for obs in observations) / sample_size
        return EMAResult(
            value=round(simple_average),
            confidence="low",
            sample_size=sample_size,
            oldest_sale_days=oldest,
            newest_sale_days=newest,
            method="simple-average",
        )

    method: EmaMethod
    if sample_size >= EMA_MIN_SAMPLE_SIZE:
        value = true_ema(observations, alpha)
        method = "ema"
    else:
        value = time_weighted_average(observations)
        method = "weighted-average"

    return EMAResult(
        value=round(value),
        confidence=grade_confidence(observations),
        sample_size=sample_size,
        oldest_sale_days=oldest,
        newest_sale_days=newest,
        method=method,
    )


def estimate_from_sales(
    sales: Iterable[SaleRecord],
    *,
    now_ms: int,
    alpha: float = DEFAULT_ALPHA,
    max_days_old: float = DEFAULT_MAX_DAYS_OLD,
    min_sample_size: int = DEFAULT_MIN_SAMPLE_SIZE,
) -> EMAResult:
    observations = normalize_sales(sales, now_ms=now_ms, max_days_old=max_days_old)
    return calculate_ema(observations, alpha=alpha, min_sample_size=min_sample_size)
