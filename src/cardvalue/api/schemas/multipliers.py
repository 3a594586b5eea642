from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RebuildRequest(BaseModel):
    window_days: Optional[int] = Field(default=None, ge=1)
    min_sample_size: Optional[int] = Field(default=None, ge=1)
    force_update: bool = False


class RebuildResponse(BaseModel):
    success: bool
    run_id: str
    metrics: Dict[str, int] = Field(default_factory=dict)
    baseline_price: Optional[float] = None
    baseline_source: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0


class GridRunResponse(BaseModel):
    run_id: str
    status: Literal["running", "completed", "failed"]
    started_at: str
    completed_at: Optional[str] = None
    metrics: dict = Field(default_factory=dict)
    error_message: Optional[str] = None


class GridStatusResponse(BaseModel):
    total_multipliers: int
    direct_multipliers: int
    average_confidence: float
    last_update: Optional[str] = None
    history: List[GridRunResponse]


class MultiplierLookupResponse(BaseModel):
    position: str
    age: int
    overall: int
    overall_bracket: str
    multiplier: float
    source: Literal["grid", "theoretical"]
    sample_size: int = 0
    confidence_score: Optional[float] = None
