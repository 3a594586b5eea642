"""Player attribute snapshot used as valuation input."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from cardvalue.config.positions import get_position


class PlayerProfile(BaseModel):
    """Immutable snapshot of the card being valued."""

    player_id: str | None = None
    overall: int = Field(..., ge=1, le=99)
    age: int = Field(..., ge=1, le=60)
    primary_position: str
    pace: int = Field(default=0, ge=0, le=99)
    shooting: int = Field(default=0, ge=0, le=99)
    passing: int = Field(default=0, ge=0, le=99)
    dribbling: int = Field(default=0, ge=0, le=99)
    defense: int = Field(default=0, ge=0, le=99)
    physical: int = Field(default=0, ge=0, le=99)
    goalkeeping: int = Field(default=0, ge=0, le=99)

    model_config = ConfigDict(frozen=True)

    @field_validator("player_id", mode="before")
    @classmethod
    def _coerce_player_id(cls, value):
        if value is None:
            return None
        return str(value)

    @field_validator("primary_position")
    @classmethod
    def _known_position(cls, value: str) -> str:
        try:
            return get_position(value).code
        except KeyError as exc:
            raise ValueError(str(exc)) from exc

    def label(self) -> str:
        return self.player_id or f"{self.primary_position}/{self.overall}/{self.age}"
