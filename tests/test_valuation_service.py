import logging
import sqlite3
from pathlib import Path

import pytest

from cardvalue.config import ValuationSettings
from cardvalue.models import MS_PER_DAY, MarketValueResult, PlayerProfile, SaleRecord
from cardvalue.multipliers import MultiplierEntry, theoretical_multiplier
from cardvalue.persistence import MarketStore
from cardvalue.valuation import ValuationService, static_estimate
from tests.test_regression import _linear_price, _random_profiles

NOW = 1_700_000_000_000


def _clock() -> int:
    return NOW


def _sale(sale_id: str, price: float, position: str, age: int, overall: int, days_ago: float, **kwargs) -> SaleRecord:
    return SaleRecord(
        sale_id=sale_id,
        price=price,
        purchase_timestamp_ms=NOW - int(days_ago * MS_PER_DAY),
        seller_player_overall=overall,
        seller_player_age=age,
        seller_player_position=position,
        **kwargs,
    )


def _assert_consistent(result: MarketValueResult) -> None:
    assert result.price_range.low <= result.estimated_value <= result.price_range.high
    assert result.sample_size >= 0
    assert result.explanation
    assert "calculation_time_ms" in result.breakdown


@pytest.fixture()
def store(tmp_path: Path) -> MarketStore:
    return MarketStore(tmp_path / "market.sqlite", clock=_clock)


class _BrokenSalesStore(MarketStore):
    def fetch_comparable_sales(self, profile, *, max_results=50, expand_search=True):
        raise sqlite3.OperationalError("no such table: sales")


class _BrokenGridStore(MarketStore):
    def load_multipliers(self):
        raise sqlite3.OperationalError("database is locked")


@pytest.mark.anyio
async def test_recent_elite_striker_uses_ema(store: MarketStore):
    prices = [488, 492, 497, 503, 509, 513, 517, 494, 506, 511, 499, 491]
    store.save_sales([_sale(f"s{i}", price, "ST", 23, 90, days_ago=0.4 * i) for i, price in enumerate(prices)])
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=90, age=23, primary_position="ST"))

    _assert_consistent(result)
    assert result.method == "ema"
    assert result.confidence == "high"
    # Twelve sales spread over under five days cannot reach "good", which needs a 7-day span.
    assert result.data_quality == "fair"
    assert result.sample_size == 12
    assert min(prices) <= result.estimated_value <= max(prices)
    assert result.breakdown["search"]["attempts"] == 1
    assert result.breakdown["adjustments"]["grid"] == 12


@pytest.mark.anyio
async def test_data_quality_reflects_time_span(store: MarketStore):
    store.save_sales([_sale(f"s{i}", 61 + i, "CM", 27, 84, days_ago=1 + i) for i in range(12)])
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=84, age=27, primary_position="CM"))

    _assert_consistent(result)
    assert result.method == "ema"
    assert result.data_quality == "good"
    assert result.confidence == "high"


@pytest.mark.anyio
async def test_no_sales_uses_position_estimate(store: MarketStore):
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=75, age=26, primary_position="LW"))

    _assert_consistent(result)
    assert result.method == "position-estimate"
    assert result.confidence == "low"
    assert result.sample_size == 0
    assert result.estimated_value > 0
    assert result.breakdown["prediction"]["method"] == "position-average"


@pytest.mark.anyio
async def test_few_sales_use_statistics_and_resist_outlier(store: MarketStore):
    store.save_sales(
        [
            _sale("a", 100, "CB", 30, 70, days_ago=3),
            _sale("b", 1000, "CB", 30, 70, days_ago=2),
            _sale("c", 110, "CB", 30, 70, days_ago=1),
        ]
    )
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=70, age=30, primary_position="CB"))

    _assert_consistent(result)
    assert result.method == "trimmed-mean"
    assert result.confidence == "medium"
    assert result.data_quality == "fair"
    assert result.sample_size == 3
    assert result.estimated_value == 110
    assert result.price_range.high < 400


@pytest.mark.anyio
async def test_stale_comparables_fall_back_to_statistics(store: MarketStore):
    prices = [61, 63, 64, 66, 67, 69]
    store.save_sales([_sale(f"s{i}", price, "ST", 25, 80, days_ago=100 + 10 * i) for i, price in enumerate(prices)])
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=80, age=25, primary_position="ST"))

    _assert_consistent(result)
    assert result.method == "trimmed-mean"
    assert result.confidence == "low"
    assert result.data_quality == "poor"
    assert "older than 60 days" in result.explanation


@pytest.mark.anyio
async def test_comparables_with_distant_overall_are_ignored(store: MarketStore):
    store.save_sales([_sale(f"s{i}", 30 + i, "CM", 25, 63, days_ago=2) for i in range(3)])
    service = ValuationService(store, settings=ValuationSettings(max_overall_gap=5), clock=_clock)

    result = await service.value_player(PlayerProfile(overall=70, age=25, primary_position="CM"))

    _assert_consistent(result)
    assert result.method == "position-estimate"
    assert result.sample_size == 0


@pytest.mark.anyio
async def test_interpolates_from_nearby_grid_segments(store: MarketStore):
    store.apply_multiplier_changes(
        [MultiplierEntry("ST", 25, "76-78", 2.0, sample_size=10, avg_price=150.0, confidence_score=0.7)]
    )
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=80, age=26, primary_position="ST"))

    _assert_consistent(result)
    assert result.method == "interpolated"
    assert result.confidence == "low"
    assert result.data_quality == "poor"
    assert result.estimated_value == round(150.0 * theoretical_multiplier("ST", 26, "79-81") / 2.0)
    assert result.breakdown["interpolation"]["segments_used"] == 1


@pytest.mark.anyio
async def test_regression_prediction_without_comparables(store: MarketStore):
    profiles = _random_profiles(40)
    store.save_players(profiles)
    sales = []
    for profile in profiles:
        for offset, days_ago in ((0.25, 2), (0.75, 5)):
            sales.append(
                _sale(
                    f"{profile.player_id}-{days_ago}",
                    _linear_price(profile) + offset,
                    profile.primary_position,
                    profile.age,
                    profile.overall,
                    days_ago=days_ago,
                    player_id=profile.player_id,
                )
            )
    store.save_sales(sales)
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=85, age=29, primary_position="GK", goalkeeping=86))

    _assert_consistent(result)
    assert result.method == "regression"
    assert result.confidence == "low"
    assert result.sample_size == 0
    assert result.data_quality in {"good", "fair"}
    assert result.breakdown["prediction"]["model"]["training_size"] == 40


@pytest.mark.anyio
async def test_store_failure_returns_static_estimate(tmp_path: Path, caplog):
    store = _BrokenSalesStore(tmp_path / "market.sqlite", clock=_clock)
    service = ValuationService(store, clock=_clock)
    profile = PlayerProfile(player_id="card-9", overall=86, age=31, primary_position="CAM")

    with caplog.at_level(logging.ERROR):
        result = await service.value_player(profile)

    _assert_consistent(result)
    assert result.method == "position-estimate"
    assert result.confidence == "low"
    assert result.sample_size == 0
    assert result.data_quality == "poor"
    assert result.explanation.startswith("System error")
    assert result.estimated_value == static_estimate(profile).value
    assert result.breakdown["error_stage"] == "fetch-comparables"
    assert "card-9" in caplog.text
    assert "fetch-comparables" in caplog.text


@pytest.mark.anyio
async def test_grid_failure_returns_static_estimate(tmp_path: Path):
    store = _BrokenGridStore(tmp_path / "market.sqlite", clock=_clock)
    service = ValuationService(store, clock=_clock)

    result = await service.value_player(PlayerProfile(overall=66, age=22, primary_position="RB"))

    _assert_consistent(result)
    assert result.method == "position-estimate"
    assert result.breakdown["error_stage"] == "load-grid"


def test_static_estimate_range():
    estimate = static_estimate(PlayerProfile(overall=90, age=30, primary_position="ST"))
    assert estimate.low <= estimate.value <= estimate.high
    assert estimate.low == round(estimate.value * 0.6)
    assert estimate.high == round(estimate.value * 1.4)
