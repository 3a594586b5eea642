"""Helpers to load marketplace CSV exports and emit canonical records."""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from pydantic import BaseModel, ValidationError

from cardvalue.config.positions import is_valid_position
from cardvalue.models import PlayerProfile, SaleRecord

logger = logging.getLogger(__name__)

DEFAULT_SALES_MAPPING = {
    "sale_id": "id",
    "player_id": "player_id",
    "price": "price",
    "purchase_time": "purchase_date_time",
    "seller": "seller_wallet_address",
    "buyer": "buyer_wallet_address",
    "overall": "player_overall",
    "age": "player_age",
    "position": "player_position",
}

DEFAULT_PLAYERS_MAPPING = {
    "player_id": "id",
    "overall": "overall",
    "age": "age",
    "position": "positions",
    "pace": "pace",
    "shooting": "shooting",
    "passing": "passing",
    "dribbling": "dribbling",
    "defense": "defense",
    "physical": "physical",
    "goalkeeping": "goalkeeping",
}

_SECONDARY_RATINGS = ("pace", "shooting", "passing", "dribbling", "defense", "physical", "goalkeeping")


def _extract(row: Mapping[str, str], mapping: Mapping[str, str], key: str) -> Optional[str]:
    column = mapping.get(key)
    if column is None:
        return None
    value = row.get(column)
    if value is None:
        return None
    value = value.strip()
    return value or None


class SaleRow(BaseModel):
    raw_sale_id: Optional[str] = None
    raw_player_id: Optional[str] = None
    raw_price: str
    raw_purchase_time: Optional[str] = None
    raw_seller: Optional[str] = None
    raw_buyer: Optional[str] = None
    raw_overall: Optional[str] = None
    raw_age: Optional[str] = None
    raw_position: Optional[str] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, str], mapping: Mapping[str, str]) -> "SaleRow":
        return cls(
            raw_sale_id=_extract(row, mapping, "sale_id"),
            raw_player_id=_extract(row, mapping, "player_id"),
            raw_price=_extract(row, mapping, "price") or "0",
            raw_purchase_time=_extract(row, mapping, "purchase_time"),
            raw_seller=_extract(row, mapping, "seller"),
            raw_buyer=_extract(row, mapping, "buyer"),
            raw_overall=_extract(row, mapping, "overall"),
            raw_age=_extract(row, mapping, "age"),
            raw_position=_extract(row, mapping, "position"),
        )


class PlayerRow(BaseModel):
    raw_player_id: Optional[str] = None
    raw_overall: Optional[str] = None
    raw_age: Optional[str] = None
    raw_position: Optional[str] = None
    ratings: dict[str, Optional[str]] = {}

    @classmethod
    def from_mapping(cls, row: Mapping[str, str], mapping: Mapping[str, str]) -> "PlayerRow":
        return cls(
            raw_player_id=_extract(row, mapping, "player_id"),
            raw_overall=_extract(row, mapping, "overall"),
            raw_age=_extract(row, mapping, "age"),
            raw_position=_extract(row, mapping, "position"),
            ratings={name: _extract(row, mapping, name) for name in _SECONDARY_RATINGS},
        )


@dataclass
class ImportReport:
    rows: int = 0
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "rows": self.rows,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors[:20],
        }


def parse_price(raw: str) -> float:
    text = re.sub(r"[$,\s]", "", raw)
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"price '{raw}' is not numeric") from None


def parse_timestamp_ms(raw: Optional[str]) -> Optional[int]:
    """Accept epoch seconds, epoch milliseconds or an ISO-8601 timestamp."""

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if re.fullmatch(r"\d+(\.\d+)?", text):
        value = float(text)
        # Ten-digit values are epoch seconds.
        return int(value * 1000) if value < 1e11 else int(value)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"timestamp '{raw}' is not recognised") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        raise ValueError(f"'{raw}' is not an integer") from None


def _primary_position(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    tokens = [token.strip().upper() for token in re.split(r"[/,|\s]+", raw) if token.strip()]
    return tokens[0] if tokens else None


def load_sales_csv(path: Path, *, mapping: Mapping[str, str] | None = None) -> List[SaleRow]:
    mapping = mapping or DEFAULT_SALES_MAPPING
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        return [SaleRow.from_mapping(row, mapping) for row in reader]


def load_players_csv(path: Path, *, mapping: Mapping[str, str] | None = None) -> List[PlayerRow]:
    mapping = mapping or DEFAULT_PLAYERS_MAPPING
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        return [PlayerRow.from_mapping(row, mapping) for row in reader]


def rows_to_sales(rows: Sequence[SaleRow], report: ImportReport | None = None) -> List[SaleRecord]:
    report = report if report is not None else ImportReport()
    sales: List[SaleRecord] = []
    for index, row in enumerate(rows, start=1):
        report.rows += 1
        try:
            position = _primary_position(row.raw_position)
            if position is not None and not is_valid_position(position):
                logger.debug("Row %d: unknown position %s dropped", index, row.raw_position)
                position = None
            sale = SaleRecord(
                price=parse_price(row.raw_price),
                purchase_timestamp_ms=parse_timestamp_ms(row.raw_purchase_time),
                sale_id=row.raw_sale_id,
                player_id=row.raw_player_id,
                seller_address=row.raw_seller,
                buyer_address=row.raw_buyer,
                seller_player_overall=_parse_int(row.raw_overall),
                seller_player_age=_parse_int(row.raw_age),
                seller_player_position=position,
            )
        except (ValueError, ValidationError) as exc:
            report.skipped += 1
            report.errors.append(f"row {index}: {exc}")
            continue
        if sale.price <= 0:
            report.skipped += 1
            report.errors.append(f"row {index}: non-positive price")
            continue
        sales.append(sale)
        report.imported += 1
    return sales


def rows_to_players(rows: Sequence[PlayerRow], report: ImportReport | None = None) -> List[PlayerProfile]:
    report = report if report is not None else ImportReport()
    players: List[PlayerProfile] = []
    for index, row in enumerate(rows, start=1):
        report.rows += 1
        try:
            ratings = {name: _parse_int(value) or 0 for name, value in row.ratings.items()}
            player = PlayerProfile(
                player_id=row.raw_player_id,
                overall=_parse_int(row.raw_overall),
                age=_parse_int(row.raw_age),
                primary_position=_primary_position(row.raw_position) or "",
                **ratings,
            )
        except (ValueError, ValidationError) as exc:
            report.skipped += 1
            report.errors.append(f"row {index}: {exc}")
            continue
        players.append(player)
        report.imported += 1
    return players
