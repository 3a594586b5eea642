"""Outlier-resistant price statistics and price intervals."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from statistics import fmean, median, pstdev
from typing import List, Literal, Sequence

from cardvalue.models import Confidence

AverageMethod = Literal["trimmed-mean", "median", "mean"]
Volatility = Literal["low", "medium", "high"]

IDEAL_SAMPLE_SIZE = 15
DEFAULT_TRIM_PERCENT = 0.1
DEFAULT_CONFIDENCE_LEVEL = 0.8


@dataclass(frozen=True)
class RobustAverage:
    value: float
    method: AverageMethod
    confidence: Confidence


@dataclass(frozen=True)
class OutlierReport:
    filtered: List[float]
    removed: List[float]
    q1: float = 0.0
    q3: float = 0.0
    lower_bound: float = 0.0
    upper_bound: float = 0.0


@dataclass(frozen=True)
class SuspiciousReport:
    suspicious_count: int
    patterns: List[str]
    clean_values: List[float]


@dataclass(frozen=True)
class SpreadRange:
    low: float
    high: float
    center: float
    volatility: Volatility
    method: Literal["dynamic", "fallback"]


@dataclass(frozen=True)
class CenteredRange:
    low: int
    high: int
    center: int
    half_width_ratio: float
    volatility: Volatility


@dataclass(frozen=True)
class MarketAnalysis:
    original_count: int
    final_count: int
    average: RobustAverage
    price_range: SpreadRange
    confidence_factor: float
    standard_deviation: float
    recommendation: str
    outliers: OutlierReport | None = None
    suspicious: SuspiciousReport | None = None
    values: List[float] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "original_count": self.original_count,
            "final_count": self.final_count,
            "average": round(self.average.value, 2),
            "average_method": self.average.method,
            "average_confidence": self.average.confidence,
            "range_low": round(self.price_range.low, 2),
            "range_high": round(self.price_range.high, 2),
            "volatility": self.price_range.volatility,
            "confidence_factor": round(self.confidence_factor, 3),
            "standard_deviation": round(self.standard_deviation, 2),
            "outliers_removed": len(self.outliers.removed) if self.outliers else 0,
            "suspicious_count": self.suspicious.suspicious_count if self.suspicious else 0,
            "recommendation": self.recommendation,
        }


def mean(values: Sequence[float]) -> float:
    return fmean(values) if values else 0.0


def standard_deviation(values: Sequence[float]) -> float:
    return pstdev(values) if len(values) > 1 else 0.0


def coefficient_of_variation(values: Sequence[float]) -> float:
    avg = mean(values)
    if avg <= 0:
        return 0.0
    return standard_deviation(values) / avg


def trimmed_mean(values: Sequence[float], trim_percent: float = DEFAULT_TRIM_PERCENT) -> float:
    if not values:
        return 0.0
    if len(values) <= 2:
        return mean(values)
    ordered = sorted(values)
    trim = int(len(ordered) * trim_percent)
    trimmed = ordered[trim:len(ordered) - trim]
    return mean(trimmed) if trimmed else mean(values)


def robust_average(
    values: Sequence[float],
    *,
    trim_percent: float = DEFAULT_TRIM_PERCENT,
    use_median_fallback: bool = True,
    min_sample_size: int = 5,
) -> RobustAverage:
    """Trimmed mean for healthy samples, median or mean for tiny ones."""

    if not values:
        return RobustAverage(0.0, "mean", "low")
    if len(values) < min_sample_size:
        if use_median_fallback and len(values) >= 3:
            return RobustAverage(float(median(values)), "median", "low")
        return RobustAverage(mean(values), "mean", "low")

    confidence: Confidence
    if len(values) >= 15:
        confidence = "high"
    elif len(values) >= 8:
        confidence = "medium"
    else:
        confidence = "low"
    return RobustAverage(trimmed_mean(values, trim_percent), "trimmed-mean", confidence)


def iqr_bounds(values: Sequence[float], multiplier: float) -> tuple[float, float, float, float]:
    ordered = sorted(values)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    return q1, q3, q1 - multiplier * iqr, q3 + multiplier * iqr


def remove_outliers_iqr(values: Sequence[float], multiplier: float = 1.5) -> OutlierReport:
    if len(values) < 4:
        return OutlierReport(filtered=list(values), removed=[])
    q1, q3, lower, upper = iqr_bounds(values, multiplier)
    filtered = [v for v in values if lower <= v <= upper]
    removed = [v for v in values if v < lower or v > upper]
    return OutlierReport(filtered, removed, q1=q1, q3=q3, lower_bound=lower, upper_bound=upper)


def detect_suspicious_patterns(values: Sequence[float]) -> SuspiciousReport:
    """Flag round-number asks and $1 private transfers that rarely reflect the market."""

    patterns: List[str] = []
    clean: List[float] = []
    suspicious = 0
    for value in values:
        flagged = False
        if value > 0 and value % 100 == 0:
            patterns.append(f"Round hundred: ${value:g}")
            flagged = True
        elif value > 0 and value % 50 == 0:
            patterns.append(f"Round fifty: ${value:g}")
            flagged = True
        if value == 1:
            patterns.append(f"Potential private trade: ${value:g}")
            flagged = True
        if flagged:
            suspicious += 1
        else:
            clean.append(value)
    return SuspiciousReport(suspicious, list(dict.fromkeys(patterns)), clean)


def confidence_factor(sample_size: int, ideal_sample_size: int = IDEAL_SAMPLE_SIZE) -> float:
    if sample_size <= 0:
        return 0.0
    if sample_size >= ideal_sample_size:
        return 1.0
    return math.sqrt(sample_size / ideal_sample_size)


def _volatility(values: Sequence[float]) -> Volatility:
    if len(values) < 5:
        return "medium"
    cv = coefficient_of_variation(values)
    if cv < 0.15:
        return "low"
    if cv > 0.35:
        return "high"
    return "medium"


def spread_range(values: Sequence[float], confidence_level: float = DEFAULT_CONFIDENCE_LEVEL) -> SpreadRange:
    """Mean plus or minus a volatility-scaled number of standard deviations."""

    if not values:
        return SpreadRange(0.0, 0.0, 0.0, "medium", "fallback")
    center = mean(values)
    std = standard_deviation(values)
    volatility = _volatility(values)
    wide = confidence_level >= 0.9
    z = {
        "low": 1.2 if wide else 0.8,
        "medium": 1.64 if wide else 1.28,
        "high": 2.2 if wide else 1.8,
    }[volatility]
    spread = std * z
    return SpreadRange(
        low=max(0.0, center - spread),
        high=center + spread,
        center=center,
        volatility=volatility,
        method="dynamic" if len(values) >= 5 else "fallback",
    )


_BASE_HALF_WIDTH = {"low": 0.15, "medium": 0.20, "high": 0.35}
_SMALL_SAMPLE_HALF_WIDTH = 0.25
_NO_DATA_HALF_WIDTH = 0.30


def range_half_width(values: Sequence[float], confidence_level: float = DEFAULT_CONFIDENCE_LEVEL) -> float:
    """Relative half-width k of a centered interval.

    k starts from the observed volatility (or a flat band for small samples),
    then narrows as the caller's confidence level and the sample size grow.
    """

    if not values:
        base = _NO_DATA_HALF_WIDTH
    elif len(values) >= 5 and standard_deviation(values) > 0:
        base = _BASE_HALF_WIDTH[_volatility(values)]
    else:
        base = _SMALL_SAMPLE_HALF_WIDTH
    level = min(0.99, max(0.5, confidence_level))
    level_factor = 1.8 - level
    sample_factor = max(0.75, 1.0 - 0.01 * len(values))
    return min(0.9, base * level_factor * sample_factor)


def centered_price_range(
    values: Sequence[float],
    estimate: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> CenteredRange:
    """Interval [estimate*(1-k), estimate*(1+k)] that always contains the rounded estimate."""

    center = max(0, round(estimate))
    k = range_half_width(values, confidence_level)
    low = min(center, max(1, round(center * (1 - k))))
    high = max(center, round(center * (1 + k)))
    return CenteredRange(
        low=low,
        high=high,
        center=center,
        half_width_ratio=k,
        volatility=_volatility(values) if values else "medium",
    )


def _recommendation(count: int) -> str:
    if count == 0:
        return "Insufficient data for reliable estimate"
    if count < 3:
        return "Low confidence - very limited sales data"
    if count < 8:
        return "Medium confidence - some recent sales available"
    return "High confidence - good sample of recent sales"


def analyze_market_prices(
    prices: Sequence[float],
    *,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    remove_outliers: bool = True,
    detect_suspicious: bool = True,
) -> MarketAnalysis:
    """Screen, de-outlier and summarise a raw price list."""

    working = [float(p) for p in prices]
    original_count = len(working)

    suspicious = None
    if detect_suspicious:
        suspicious = detect_suspicious_patterns(working)
        if len(suspicious.clean_values) >= max(2, len(working) * 0.7):
            working = suspicious.clean_values

    outliers = None
    if remove_outliers and len(working) >= 5:
        outliers = remove_outliers_iqr(working)
        if len(outliers.filtered) >= max(2, len(working) * 0.6):
            working = outliers.filtered

    return MarketAnalysis(
        original_count=original_count,
        final_count=len(working),
        average=robust_average(working),
        price_range=spread_range(working, confidence_level),
        confidence_factor=confidence_factor(len(working)),
        standard_deviation=standard_deviation(working),
        recommendation=_recommendation(len(working)),
        outliers=outliers,
        suspicious=suspicious,
        values=working,
    )
