from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class ValuationRequest(BaseModel):
    player_id: Optional[str] = None
    overall: Optional[int] = Field(default=None, ge=1, le=99)
    age: Optional[int] = Field(default=None, ge=1, le=60)
    primary_position: Optional[str] = None
    pace: int = Field(default=0, ge=0, le=99)
    shooting: int = Field(default=0, ge=0, le=99)
    passing: int = Field(default=0, ge=0, le=99)
    dribbling: int = Field(default=0, ge=0, le=99)
    defense: int = Field(default=0, ge=0, le=99)
    physical: int = Field(default=0, ge=0, le=99)
    goalkeeping: int = Field(default=0, ge=0, le=99)

    @model_validator(mode="after")
    def _profile_or_id(self) -> "ValuationRequest":
        if self.player_id is None and not self.has_profile:
            raise ValueError("provide player_id or overall, age and primary_position")
        return self

    @property
    def has_profile(self) -> bool:
        return self.overall is not None and self.age is not None and bool(self.primary_position)
