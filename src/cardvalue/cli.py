"""Command-line interface for valuing cards and maintaining the multiplier grid."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from cardvalue.config.settings import load_settings
from cardvalue.config_loader import SettingsProfile
from cardvalue.ingest import ImportReport, load_players_csv, load_sales_csv, rows_to_players, rows_to_sales
from cardvalue.ingest.sales import DEFAULT_PLAYERS_MAPPING, DEFAULT_SALES_MAPPING
from cardvalue.models import PlayerProfile
from cardvalue.multipliers.builder import GridBuilder
from cardvalue.persistence import DEFAULT_DB_PATH, MarketStore
from cardvalue.valuation import ValuationService


def _parse_mapping(entries: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for entry in entries:
        if "=" not in entry:
            raise ValueError(f"Invalid mapping entry '{entry}', expected key=value")
        key, value = entry.split("=", 1)
        mapping[key.strip()] = value.strip()
    return mapping


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Estimate player card market values")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--profile", type=Path, default=None, help="Load settings profile JSON")
    parser.add_argument("--save-profile", type=Path, default=None, help="Save effective settings to JSON")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (e.g., INFO, DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    value = sub.add_parser("value", help="Value a single card")
    value.add_argument("--player-id", default=None, help="Stored player id (uses its snapshot)")
    value.add_argument("--overall", type=int, default=None)
    value.add_argument("--age", type=int, default=None)
    value.add_argument("--position", default=None, help="Primary position, e.g. ST")
    for rating in ("pace", "shooting", "passing", "dribbling", "defense", "physical", "goalkeeping"):
        value.add_argument(f"--{rating}", type=int, default=0)

    rebuild = sub.add_parser("rebuild-grid", help="Rebuild market multipliers from recorded sales")
    rebuild.add_argument("--window-days", type=int, default=None)
    rebuild.add_argument("--min-sample-size", type=int, default=None)
    rebuild.add_argument("--force", action="store_true", help="Rewrite every multiplier")

    status = sub.add_parser("grid-status", help="Show multiplier coverage and recent rebuilds")
    status.add_argument("--history", type=int, default=5)

    for name, help_text in (
        ("import-sales", "Import a sales CSV export"),
        ("import-players", "Import a player snapshot CSV"),
    ):
        importer = sub.add_parser(name, help=help_text)
        importer.add_argument("csv", type=Path)
        importer.add_argument(
            "--column",
            action="append",
            default=[],
            help="Column mapping override (e.g., price=sale_price)",
        )
    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    db_path: Path | str = DEFAULT_DB_PATH
    if args.profile:
        profile = SettingsProfile.load(args.profile)
        settings = profile.apply(settings)
        db_path = profile.db_path or db_path
    if args.db:
        db_path = args.db
    if args.save_profile:
        SettingsProfile.from_settings(settings, db_path=str(db_path)).save(args.save_profile)
        print(f"Saved settings profile to {args.save_profile}")

    store = MarketStore(db_path)

    if args.command == "value":
        if args.overall is not None and args.age is not None and args.position:
            try:
                player = PlayerProfile(
                    player_id=args.player_id,
                    overall=args.overall,
                    age=args.age,
                    primary_position=args.position,
                    pace=args.pace,
                    shooting=args.shooting,
                    passing=args.passing,
                    dribbling=args.dribbling,
                    defense=args.defense,
                    physical=args.physical,
                    goalkeeping=args.goalkeeping,
                )
            except ValidationError as exc:
                print(f"Invalid player profile: {exc}")
                return 2
        elif args.player_id:
            player = store.get_player(args.player_id)
            if player is None:
                print(f"Player {args.player_id} not found")
                return 1
        else:
            print("Provide --player-id or --overall, --age and --position")
            return 2
        result = asyncio.run(ValuationService(store, settings=settings).value_player(player))
        _print_json(result.model_dump())
        return 0

    if args.command == "rebuild-grid":
        result = GridBuilder(store, settings=settings).rebuild(
            args.window_days,
            args.min_sample_size,
            args.force,
        )
        _print_json(result.as_dict())
        return 0 if result.success else 1

    if args.command == "grid-status":
        _print_json(GridBuilder(store, settings=settings).latest_update_info(args.history))
        return 0

    try:
        mapping = _parse_mapping(args.column)
    except ValueError as exc:
        print(exc)
        return 2
    report = ImportReport()
    if args.command == "import-sales":
        rows = load_sales_csv(args.csv, mapping=DEFAULT_SALES_MAPPING | mapping)
        saved = store.save_sales(rows_to_sales(rows, report))
    else:
        rows = load_players_csv(args.csv, mapping=DEFAULT_PLAYERS_MAPPING | mapping)
        saved = store.save_players(rows_to_players(rows, report))
    print(f"Imported {saved}/{report.rows} rows from {args.csv} ({report.skipped} skipped)")
    for error in report.errors[:5]:
        print(f"  {error}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
