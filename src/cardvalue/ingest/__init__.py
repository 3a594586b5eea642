"""Input adapters that normalize raw marketplace exports."""

from .sales import (
    ImportReport,
    PlayerRow,
    SaleRow,
    load_players_csv,
    load_sales_csv,
    parse_timestamp_ms,
    rows_to_players,
    rows_to_sales,
)

__all__ = [
    "ImportReport",
    "PlayerRow",
    "SaleRow",
    "load_players_csv",
    "load_sales_csv",
    "parse_timestamp_ms",
    "rows_to_players",
    "rows_to_sales",
]
