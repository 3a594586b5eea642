import math

import pytest

from cardvalue.pricing.statistics import (
    analyze_market_prices,
    centered_price_range,
    confidence_factor,
    detect_suspicious_patterns,
    range_half_width,
    remove_outliers_iqr,
    robust_average,
    trimmed_mean,
)


def test_single_outlier_does_not_dominate_small_sample():
    prices = [100, 1000, 110]
    analysis = analyze_market_prices(prices)

    assert analysis.average.method == "median"
    assert analysis.average.value == pytest.approx(110)
    naive_mean = sum(prices) / len(prices)
    assert abs(analysis.average.value - 105) < abs(analysis.average.value - naive_mean)

    price_range = centered_price_range(analysis.values, analysis.average.value)
    assert price_range.low <= 110 <= price_range.high
    assert price_range.high < naive_mean


def test_trimmed_mean_drops_tails():
    values = [10, 11, 12, 13, 14, 15, 16, 17, 18, 1000]
    assert trimmed_mean(values) == pytest.approx(14.5)


def test_robust_average_small_samples():
    assert robust_average([5, 7]).method == "mean"
    assert robust_average([5, 7]).value == pytest.approx(6)
    assert robust_average([5, 7, 30]).method == "median"
    large = robust_average(list(range(1, 16)))
    assert large.method == "trimmed-mean"
    assert large.confidence == "high"


def test_iqr_removes_high_outlier():
    report = remove_outliers_iqr([10, 11, 12, 13, 14, 100])
    assert report.removed == [100]
    assert report.upper_bound == pytest.approx(18.5)


def test_iqr_needs_four_values():
    report = remove_outliers_iqr([1, 2, 500])
    assert report.filtered == [1, 2, 500]
    assert report.removed == []


def test_detect_suspicious_patterns():
    report = detect_suspicious_patterns([100, 150, 1, 123])
    assert report.suspicious_count == 3
    assert report.clean_values == [123]
    assert any("private" in pattern for pattern in report.patterns)


def test_suspicious_screen_skipped_when_it_would_discard_too_much():
    analysis = analyze_market_prices([100, 200, 300, 123])
    assert analysis.final_count == 4
    assert analysis.suspicious is not None
    assert analysis.suspicious.suspicious_count == 3


def test_analysis_removes_outlier_from_healthy_sample():
    prices = [41, 43, 44, 45, 46, 47, 48, 49, 480]
    analysis = analyze_market_prices(prices)
    assert analysis.original_count == 9
    assert analysis.final_count == 8
    assert 43 <= analysis.average.value <= 48
    assert analysis.recommendation.startswith("High confidence")


def test_confidence_factor():
    assert confidence_factor(0) == 0.0
    assert confidence_factor(6) == pytest.approx(math.sqrt(6 / 15))
    assert confidence_factor(40) == 1.0


@pytest.mark.parametrize("estimate", [0, 0.4, 1, 3, 57.5, 12_345])
@pytest.mark.parametrize("values", [[], [5.0], [10.0, 500.0], [20.0, 21.0, 22.0, 23.0, 90.0, 95.0]])
def test_centered_range_contains_estimate(values, estimate):
    price_range = centered_price_range(values, estimate)
    assert price_range.low <= price_range.center <= price_range.high
    assert price_range.center == max(0, round(estimate))


def test_half_width_shrinks_with_confidence_and_sample_size():
    values = [95.0, 100.0, 104.0, 110.0, 97.0, 102.0]
    assert range_half_width(values, 0.95) < range_half_width(values, 0.6)
    assert range_half_width([100.0] * 20) < range_half_width([100.0] * 3)
    assert range_half_width([]) > range_half_width([100.0] * 3)
