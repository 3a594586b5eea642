import logging
import sqlite3
from pathlib import Path

import pytest

from cardvalue.config import ValuationSettings
from cardvalue.models import MS_PER_DAY, SaleRecord
from cardvalue.multipliers import MultiplierEntry, MultiplierGrid, theoretical_multiplier
from cardvalue.multipliers.builder import GridBuilder, baseline_price, direct_entry, is_valid_multiplier
from cardvalue.persistence import RUN_COMPLETED, RUN_FAILED, MarketStore

NOW = 1_700_000_000_000


def _clock() -> int:
    return NOW


def _sale(sale_id: str, price: float, position: str, age: int, overall: int, days_ago: float = 3) -> SaleRecord:
    return SaleRecord(
        sale_id=sale_id,
        price=price,
        purchase_timestamp_ms=NOW - int(days_ago * MS_PER_DAY),
        seller_player_overall=overall,
        seller_player_age=age,
        seller_player_position=position,
    )


def _seed_sales() -> list[SaleRecord]:
    sales = [_sale(f"cm{i}", 70 + i, "CM", 25, 77) for i in range(7)]
    sales += [_sale(f"st{i}", 480 + 7 * i, "ST", 23, 90) for i in range(6)]
    sales += [_sale(f"cb{i}", 30 + i, "CB", 30, 70) for i in range(3)]
    # Outside the default window.
    sales.append(_sale("old", 999, "CM", 25, 77, days_ago=600))
    return sales


@pytest.fixture()
def store(tmp_path: Path) -> MarketStore:
    store = MarketStore(tmp_path / "market.sqlite", clock=_clock)
    store.save_sales(_seed_sales())
    return store


class _FailingStore(MarketStore):
    def apply_multiplier_changes(self, entries):
        raise sqlite3.OperationalError("disk I/O error")


def test_rebuild_populates_complete_grid(store: MarketStore):
    published: list[MultiplierGrid] = []
    builder = GridBuilder(store, clock=_clock, on_publish=published.append)

    result = builder.rebuild()

    assert result.success
    assert result.metrics["combinations_analyzed"] == 7500
    assert result.metrics["combinations_added"] == 7500
    assert result.metrics["combinations_updated"] == 0
    assert result.metrics["direct_combinations"] == 2
    assert result.metrics["rejected_combinations"] == 0
    assert result.metrics["sales_analyzed"] == 16
    assert result.baseline is not None
    assert result.baseline.source == "reference"
    assert result.baseline.price == pytest.approx(73.0)

    grid = MultiplierGrid(store.load_multipliers())
    assert grid.is_complete
    assert grid.get(("CM", 25, "76-78")).multiplier == pytest.approx(1.0)
    assert grid.get(("ST", 23, "88-90")).sample_size == 6
    assert grid.get(("CB", 30, "70-72")).sample_size == 0

    run = store.get_run(result.run_id)
    assert run.status == RUN_COMPLETED
    assert run.metrics["combinations_added"] == 7500
    assert len(published) == 1
    assert len(published[0]) == 7500


def test_rebuild_twice_is_idempotent(store: MarketStore):
    published: list[MultiplierGrid] = []
    builder = GridBuilder(store, clock=_clock, on_publish=published.append)
    builder.rebuild()

    second = builder.rebuild()

    assert second.success
    assert second.metrics["combinations_updated"] == 0
    assert second.metrics["combinations_added"] == 0
    assert second.metrics["combinations_unchanged"] == 7500
    assert len(published) == 1


def test_force_update_rewrites_every_entry(store: MarketStore):
    builder = GridBuilder(store, clock=_clock)
    builder.rebuild()
    forced = builder.rebuild(force_update=True)
    assert forced.metrics["combinations_updated"] == 7500
    assert forced.metrics["combinations_unchanged"] == 0


def test_rebuild_pages_through_sales(store: MarketStore):
    builder = GridBuilder(store, settings=ValuationSettings(grid_batch_size=4), clock=_clock)
    result = builder.rebuild()
    assert result.metrics["sales_analyzed"] == 16


def test_min_sample_size_override(store: MarketStore):
    result = GridBuilder(store, clock=_clock).rebuild(min_sample_size=3)
    assert result.metrics["direct_combinations"] == 3


def test_failed_rebuild_marks_run_and_keeps_grid(tmp_path: Path):
    db_path = tmp_path / "market.sqlite"
    healthy = MarketStore(db_path, clock=_clock)
    healthy.save_sales(_seed_sales())
    GridBuilder(healthy, clock=_clock).rebuild()
    before = {entry.key: entry.multiplier for entry in healthy.load_multipliers()}

    failing = _FailingStore(db_path, clock=_clock)
    published: list[MultiplierGrid] = []
    result = GridBuilder(failing, clock=_clock, on_publish=published.append).rebuild(force_update=True)

    assert not result.success
    assert "disk I/O error" in result.error
    run = failing.get_run(result.run_id)
    assert run.status == RUN_FAILED
    assert run.error_message == "disk I/O error"
    after = {entry.key: entry.multiplier for entry in healthy.load_multipliers()}
    assert after == before
    assert published == []


def test_latest_update_info(store: MarketStore):
    builder = GridBuilder(store, clock=_clock)
    builder.rebuild()
    builder.rebuild()

    info = builder.latest_update_info(history=5)

    assert info["total_multipliers"] == 7500
    assert info["direct_multipliers"] == 2
    assert 0 < info["average_confidence"] <= 1
    assert info["last_update"] is not None
    assert len(info["history"]) == 2
    assert all(run["status"] == RUN_COMPLETED for run in info["history"])


def test_baseline_fallback_chain():
    assert baseline_price({}).source == "default"
    assert baseline_price({}).price == pytest.approx(74.32)

    broader = baseline_price({("CM", 24, "76-78"): [60.0, 80.0]})
    assert broader.source == "broader-age"
    assert broader.price == pytest.approx(70.0)

    few_reference = baseline_price({("CM", 25, "76-78"): [50.0, 52.0], ("CM", 27, "76-78"): [60.0]})
    assert few_reference.source == "broader-age"
    assert few_reference.price == pytest.approx(54.0)

    market = baseline_price({("ST", 25, "88-90"): [10.0, 20.0, 30.0]})
    assert market.source == "global-median"
    assert market.price == pytest.approx(20.0)


def test_direct_entry_confidence_blends_size_and_consistency():
    entry = direct_entry(("ST", 23, "88-90"), [100.0] * 20, baseline=50.0)
    assert entry.multiplier == pytest.approx(2.0)
    assert entry.sample_size == 20
    assert entry.confidence_score == pytest.approx(1.0)

    noisy = direct_entry(("ST", 23, "88-90"), [40.0, 60.0, 80.0, 100.0, 120.0], baseline=50.0)
    assert noisy.confidence_score < 0.7


def _scaled_entry(position: str, age: int, bracket: str, ratio: float) -> MultiplierEntry:
    return MultiplierEntry(
        position,
        age,
        bracket,
        theoretical_multiplier(position, age, bracket) * ratio,
        sample_size=5,
        avg_price=100.0,
    )


@pytest.mark.parametrize(
    "position, age, bracket, ratio, expected",
    [
        ("CM", 25, "76-78", 1.0, True),
        ("ST", 25, "76-78", 4.5, True),
        ("ST", 25, "76-78", 5.5, False),
        ("ST", 33, "76-78", 3.5, False),
        ("GK", 25, "76-78", 3.5, False),
        ("CM", 25, "76-78", 3.5, True),
        ("CM", 25, "91-93", 3.5, False),
        ("CM", 17, "76-78", 0.3, False),
        ("CM", 25, "76-78", 0.3, True),
        ("CM", 25, "76-78", 0.1, False),
    ],
)
def test_is_valid_multiplier(position: str, age: int, bracket: str, ratio: float, expected: bool):
    assert is_valid_multiplier(_scaled_entry(position, age, bracket, ratio)) is expected


def test_is_valid_multiplier_rejects_near_zero():
    entry = MultiplierEntry("CM", 25, "76-78", 0.005, sample_size=5, avg_price=0.4)
    assert not is_valid_multiplier(entry)


def test_rebuild_drops_implausible_cells(tmp_path: Path, caplog):
    store = MarketStore(tmp_path / "market.sqlite", clock=_clock)
    sales = [_sale(f"cm{i}", 75, "CM", 25, 77) for i in range(5)]
    sales += [_sale(f"cb{i}", 4990 + 5 * i, "CB", 35, 41) for i in range(5)]
    store.save_sales(sales)

    with caplog.at_level(logging.WARNING):
        result = GridBuilder(store, clock=_clock).rebuild()

    assert result.success
    assert result.metrics["direct_combinations"] == 1
    assert result.metrics["rejected_combinations"] == 1
    assert "CB/35/40-42" in caplog.text

    grid = MultiplierGrid(store.load_multipliers())
    rejected = grid.get(("CB", 35, "40-42"))
    assert rejected.sample_size == 0
    assert rejected.multiplier == pytest.approx(theoretical_multiplier("CB", 35, "40-42"))
    assert grid.direct_entries("CB") == []
    assert all(
        entry.multiplier == pytest.approx(theoretical_multiplier(entry.position, entry.age, entry.overall_bracket))
        for entry in grid
        if entry.position == "CB"
    )
