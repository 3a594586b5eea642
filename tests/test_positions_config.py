import pytest

from cardvalue.config import (
    GRID_AGES,
    OVERALL_BRACKETS,
    POSITIONS,
    age_factor,
    bracket_for,
    clamp_age,
    get_bracket,
    get_position,
    regression_code,
)


def test_get_position_handles_lowercase():
    profile = get_position("cam")
    assert profile.code == "CAM"
    assert profile.outfield


def test_get_position_missing_raises():
    with pytest.raises(KeyError):
        get_position("SW")


def test_grid_dimensions():
    assert len(POSITIONS) == 15
    assert len(GRID_AGES) == 25
    assert len(OVERALL_BRACKETS) == 20
    assert OVERALL_BRACKETS[0].label == "40-42"
    assert OVERALL_BRACKETS[-1].label == "97-99"


@pytest.mark.parametrize(
    "overall, label",
    [(1, "40-42"), (39, "40-42"), (40, "40-42"), (77, "76-78"), (78, "76-78"), (79, "79-81"), (99, "97-99")],
)
def test_bracket_for(overall: int, label: str):
    assert bracket_for(overall).label == label


def test_bracket_midpoint_and_lookup():
    bracket = get_bracket("76-78")
    assert bracket.midpoint == 77
    assert bracket.contains(76)
    assert not bracket.contains(79)
    with pytest.raises(KeyError):
        get_bracket("75-77")


def test_age_helpers():
    assert clamp_age(12) == 16
    assert clamp_age(45) == 40
    assert age_factor(25) == pytest.approx(1.0)
    assert age_factor(16) > age_factor(30)
    assert age_factor(38) == pytest.approx(0.30)


def test_regression_code_defaults_to_central_midfield():
    assert regression_code("GK") == 0
    assert regression_code("ST") == 9
    assert regression_code(None) == regression_code("CM")
    assert regression_code("XX") == regression_code("CM")
