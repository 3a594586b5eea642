"""Output value objects returned by the valuation orchestrator."""

from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict

Confidence = Literal["high", "medium", "low"]
ValuationMethod = Literal["ema", "trimmed-mean", "regression", "interpolated", "position-estimate"]
DataQuality = Literal["excellent", "good", "fair", "poor"]


class PriceRange(BaseModel):
    low: int = Field(..., ge=0)
    high: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class MarketContext(BaseModel):
    summary: str
    details: str

    model_config = ConfigDict(frozen=True)


class MarketValueResult(BaseModel):
    """Final estimate with its range, confidence grade and provenance."""

    estimated_value: int = Field(..., ge=0)
    price_range: PriceRange
    confidence: Confidence
    method: ValuationMethod
    sample_size: int = Field(..., ge=0)
    data_quality: DataQuality
    explanation: str
    based_on: str
    market_context: MarketContext | None = None
    breakdown: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _range_contains_estimate(self) -> "MarketValueResult":
        if not (self.price_range.low <= self.estimated_value <= self.price_range.high):
            raise ValueError(
                f"price range {self.price_range.low}-{self.price_range.high} "
                f"does not contain estimate {self.estimated_value}"
            )
        return self
