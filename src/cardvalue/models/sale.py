"""Sale records and the time-weighted observations derived from them."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

MS_PER_DAY = 86_400_000

Clock = Callable[[], int]


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


class SaleRecord(BaseModel):
    """A completed marketplace sale, as returned by the sales store."""

    price: float
    purchase_timestamp_ms: int | None = None
    sale_id: str | None = None
    player_id: str | None = None
    seller_address: str | None = None
    buyer_address: str | None = None
    seller_player_overall: int | None = Field(default=None, ge=1, le=99)
    seller_player_age: int | None = Field(default=None, ge=1)
    seller_player_position: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_profile(self) -> bool:
        return (
            self.seller_player_overall is not None
            and self.seller_player_age is not None
            and bool(self.seller_player_position)
        )


@dataclass(frozen=True)
class SaleObservation:
    price: float
    timestamp_ms: int
    days_old: float


@dataclass(frozen=True)
class WeightedSaleObservation(SaleObservation):
    time_weight: float
