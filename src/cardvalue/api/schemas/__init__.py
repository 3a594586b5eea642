"""Pydantic models for API I/O."""

from .multipliers import (
    GridRunResponse,
    GridStatusResponse,
    MultiplierLookupResponse,
    RebuildRequest,
    RebuildResponse,
)
from .valuation import ValuationRequest

__all__ = [
    "GridRunResponse",
    "GridStatusResponse",
    "MultiplierLookupResponse",
    "RebuildRequest",
    "RebuildResponse",
    "ValuationRequest",
]
