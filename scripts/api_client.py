"""Lightweight REST client for the cardvalue API."""

from __future__ import annotations

import argparse
import json

import httpx


def build_profile(raw: str) -> dict:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid profile JSON: {exc}") from exc


def main() -> None:
    parser = argparse.ArgumentParser(description="Interact with the cardvalue REST API")
    parser.add_argument("base_url", help="Base URL of the API, e.g. http://localhost:8000")
    parser.add_argument("--player-id", help="Value a stored player by id")
    parser.add_argument(
        "--profile",
        default="",
        help='JSON player profile, e.g. {"overall": 84, "age": 24, "primary_position": "ST"}',
    )
    parser.add_argument("--rebuild", action="store_true", help="Rebuild the multiplier grid and exit")
    parser.add_argument("--force", action="store_true", help="Rewrite every multiplier when rebuilding")
    parser.add_argument("--status", action="store_true", help="Show multiplier grid status and exit")
    parser.add_argument("--history", type=int, default=5, help="Number of rebuild runs to list with --status")
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url, timeout=120.0) as client:
        if args.rebuild:
            resp = client.post("/multipliers/rebuild", json={"force_update": args.force})
            resp.raise_for_status()
            print(json.dumps(resp.json(), indent=2))
            return
        if args.status:
            resp = client.get("/multipliers/status", params={"history": args.history})
            resp.raise_for_status()
            print(json.dumps(resp.json(), indent=2))
            return

        payload = build_profile(args.profile)
        if args.player_id:
            payload["player_id"] = args.player_id
        if not payload:
            raise SystemExit("--player-id or --profile is required unless using --rebuild/--status")

        resp = client.post("/valuations", json=payload)
        if resp.status_code == 404:
            raise SystemExit(f"player {args.player_id} not found")
        resp.raise_for_status()
        result = resp.json()
        print(f"Estimated value: ${result['estimated_value']} "
              f"(${result['price_range']['low']}-${result['price_range']['high']})")
        print(f"Method: {result['method']}, confidence: {result['confidence']}, "
              f"data quality: {result['data_quality']}")
        print(result["explanation"])
        print(json.dumps(result["breakdown"], indent=2))


if __name__ == "__main__":
    main()
