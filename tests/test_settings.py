import logging
from pathlib import Path

import pytest

from cardvalue.config import ValuationSettings, load_settings
from cardvalue.config_loader import SettingsProfile


def test_load_settings_defaults(monkeypatch):
    monkeypatch.delenv("CARDVALUE_EMA_ALPHA", raising=False)
    settings = load_settings()
    assert settings.ema_alpha == pytest.approx(0.3)
    assert settings.max_days_old == 60
    assert settings.elite_max_days_old == 540
    assert settings.grid_batch_size == 1000


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("CARDVALUE_EMA_ALPHA", "0.5")
    monkeypatch.setenv("CARDVALUE_GRID_WINDOW_DAYS", "90")
    monkeypatch.setenv("CARDVALUE_CONFIDENCE_LEVEL", "2")
    settings = load_settings()
    assert settings.ema_alpha == pytest.approx(0.5)
    assert settings.grid_window_days == 90
    assert settings.confidence_level == pytest.approx(0.99)


def test_load_settings_ignores_bad_values(monkeypatch, caplog):
    monkeypatch.setenv("CARDVALUE_EMA_ALPHA", "fast")
    monkeypatch.setenv("CARDVALUE_MAX_COMPARABLES", "lots")
    with caplog.at_level(logging.WARNING):
        settings = load_settings()
    assert settings.ema_alpha == pytest.approx(0.3)
    assert settings.max_comparables == 50
    assert "CARDVALUE_EMA_ALPHA" in caplog.text


def test_with_overrides_skips_unknown_keys(caplog):
    with caplog.at_level(logging.WARNING):
        settings = ValuationSettings().with_overrides({"max_days_old": 30, "turbo": True})
    assert settings.max_days_old == 30
    assert "turbo" in caplog.text


def test_settings_profile_round_trip(tmp_path: Path):
    settings = ValuationSettings(ema_alpha=0.4, grid_min_sample_size=8)
    path = tmp_path / "profile.json"
    SettingsProfile.from_settings(settings, db_path="market.sqlite").save(path)

    loaded = SettingsProfile.load(path)
    assert loaded.db_path == "market.sqlite"
    assert loaded.apply(ValuationSettings()) == settings
