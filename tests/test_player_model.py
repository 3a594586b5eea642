import pytest
from pydantic import ValidationError

from cardvalue.models import MarketValueResult, PlayerProfile, PriceRange, SaleRecord


def test_player_profile_is_frozen():
    profile = PlayerProfile(player_id=7, overall=84, age=24, primary_position="st")

    assert profile.player_id == "7"
    assert profile.primary_position == "ST"
    assert profile.pace == 0

    with pytest.raises((TypeError, ValidationError)):
        profile.overall = 90  # type: ignore[misc]


def test_player_profile_rejects_unknown_position():
    with pytest.raises(ValidationError):
        PlayerProfile(overall=70, age=25, primary_position="SW")


def test_player_profile_rejects_out_of_range_overall():
    with pytest.raises(ValidationError):
        PlayerProfile(overall=100, age=25, primary_position="CM")


def test_player_label_falls_back_to_traits():
    profile = PlayerProfile(overall=81, age=29, primary_position="CB")
    assert profile.label() == "CB/81/29"


def test_sale_record_profile_flag():
    full = SaleRecord(price=12.5, seller_player_overall=70, seller_player_age=22, seller_player_position="LW")
    partial = SaleRecord(price=12.5, seller_player_overall=70)
    assert full.has_profile
    assert not partial.has_profile


def test_market_value_result_range_must_contain_estimate():
    with pytest.raises(ValidationError):
        MarketValueResult(
            estimated_value=30,
            price_range=PriceRange(low=10, high=20),
            confidence="low",
            method="ema",
            sample_size=5,
            data_quality="fair",
            explanation="",
            based_on="",
        )
