"""Valuation orchestrator and the strategies it chooses between."""

from .fallback import StaticEstimate, static_estimate
from .service import ValuationService, ValuationStageError, assemble_result
from .strategies import (
    EmaOutcome,
    InterpolatedOutcome,
    PredictionOutcome,
    StaticOutcome,
    StatisticalOutcome,
    ValuationOutcome,
)

__all__ = [
    "EmaOutcome",
    "InterpolatedOutcome",
    "PredictionOutcome",
    "StaticEstimate",
    "StaticOutcome",
    "StatisticalOutcome",
    "ValuationOutcome",
    "ValuationService",
    "ValuationStageError",
    "assemble_result",
    "static_estimate",
]
