"""
Tests for the time-series feature extractor (statistics + anomaly flags).
"""

from __future__ import annotations

import math
from typing import List

import pytest

from src.data_processing.feature_extractor import (
    CalculatedFeatures,
    FeatureThresholds,
    compute_features,
)
from src.insights.errors import InvalidInput
from src.insights.models import TimeSeriesPoint


def series(*values: float) -> List[TimeSeriesPoint]:
    return [TimeSeriesPoint(date=f"202401{i + 1:02d}", value=v) for i, v in enumerate(values)]


# ========================================================================================
# BASIC STATISTICS
# ========================================================================================

class TestBasicStatistics:

    def test_empty_current_series_raises(self):
        with pytest.raises(InvalidInput):
            compute_features([], series(1, 2, 3))

    def test_non_finite_value_raises(self):
        with pytest.raises(InvalidInput):
            compute_features(series(1, float("nan"), 3), [])

    @pytest.mark.parametrize("bad", [None, "n/a", object()])
    def test_non_numeric_value_raises_invalid_input(self, bad):
        with pytest.raises(InvalidInput):
            compute_features([TimeSeriesPoint(date="20240101", value=bad)], [])

    def test_non_numeric_previous_value_raises_invalid_input(self):
        with pytest.raises(InvalidInput):
            compute_features(series(1, 2), [TimeSeriesPoint(date="20230101", value=None)])

    def test_total_average_min_max(self):
        f = compute_features(series(4, 1, 7, 8), [])
        assert f.total == 20
        assert f.average == 5
        assert f.min == 1
        assert f.max == 8
        assert f.count == 4

    def test_median_even_length_averages_middle_values(self):
        assert compute_features(series(4, 1, 3, 2), []).median == 2.5

    def test_median_odd_length_takes_middle_value(self):
        assert compute_features(series(9, 1, 5), []).median == 5

    def test_population_standard_deviation(self):
        # population std of this classic sample is exactly 2 (sample std would be ~2.14)
        f = compute_features(series(2, 4, 4, 4, 5, 5, 7, 9), [])
        assert f.std_dev == pytest.approx(2.0)

    def test_trend_is_ols_slope(self):
        assert compute_features(series(1, 3, 5, 7), []).trend == pytest.approx(2.0)
        assert compute_features(series(10, 8, 6), []).trend == pytest.approx(-2.0)

    def test_single_point_is_not_degenerate(self):
        f = compute_features(series(42), [])
        assert f.trend == 0.0
        assert f.std_dev == 0.0
        assert f.median == 42
        assert f.outliers == []
        for value in (f.total, f.average, f.median, f.std_dev, f.trend, f.yoy_change):
            assert math.isfinite(value)

    def test_deterministic_for_same_input(self):
        cur, prev = series(3, 9, 1, 14, 2, 8), series(5, 5, 5, 5, 5, 5)
        first = compute_features(cur, prev)
        second = compute_features(cur, prev)
        assert isinstance(first, CalculatedFeatures)
        assert first == second


# ========================================================================================
# YEAR OVER YEAR
# ========================================================================================

class TestYearOverYear:

    def test_yoy_change_on_totals(self):
        f = compute_features(series(60, 60), series(50, 50))
        assert f.yoy_change == pytest.approx(20.0)

    def test_yoy_with_different_lengths(self):
        f = compute_features(series(50, 50, 50), series(100))
        assert f.yoy_change == pytest.approx(50.0)

    def test_zero_previous_total_gives_exactly_zero(self):
        assert compute_features(series(10, 20), series(0, 0)).yoy_change == 0.0
        assert compute_features(series(10, 20), []).yoy_change == 0.0


# ========================================================================================
# ANOMALIES
# ========================================================================================

class TestAnomalies:

    def test_exact_thirty_percent_is_not_a_spike(self):
        assert compute_features(series(100, 130), []).spikes == []

    def test_just_above_thirty_percent_is_a_spike(self):
        f = compute_features(series(100, 130.01), [])
        assert len(f.spikes) == 1
        assert f.spikes[0].date == "20240102"
        assert f.spikes[0].value == 130.01
        assert f.spikes[0].change == pytest.approx(30.01)

    def test_dip_threshold_is_strict(self):
        assert compute_features(series(100, 80), []).dips == []
        f = compute_features(series(100, 79), [])
        assert len(f.dips) == 1
        assert f.dips[0].change == pytest.approx(-21.0)

    def test_changes_between_thresholds_are_ignored(self):
        f = compute_features(series(100, 125, 105), [])
        assert f.spikes == []
        assert f.dips == []

    def test_spikes_are_point_over_point(self):
        f = compute_features(series(100, 140, 190, 100), [])
        assert [s.date for s in f.spikes] == ["20240102", "20240103"]
        assert [d.date for d in f.dips] == ["20240104"]

    def test_jump_from_zero_is_an_infinite_spike(self):
        f = compute_features(series(0, 500, 520), [])
        assert len(f.spikes) == 1
        assert f.spikes[0].date == "20240102"
        assert f.spikes[0].value == 500
        assert math.isinf(f.spikes[0].change) and f.spikes[0].change > 0
        assert f.dips == []

    def test_zero_to_zero_is_skipped(self):
        f = compute_features(series(0, 0, 0), [])
        assert f.spikes == []
        assert f.dips == []

    def test_recovery_after_outage_is_flagged(self):
        f = compute_features(series(120, 0, 0, 130), [])
        assert [d.date for d in f.dips] == ["20240102"]
        assert [s.date for s in f.spikes] == ["20240104"]

    def test_outlier_against_whole_series(self):
        # mean 19, population std 27 -> z(100) = 3, z(10) = 1/3
        f = compute_features(series(*([10] * 9 + [100])), [])
        assert len(f.outliers) == 1
        assert f.outliers[0].value == 100
        assert f.outliers[0].z_score == pytest.approx(3.0)

    def test_constant_series_has_no_outliers(self):
        f = compute_features(series(7, 7, 7, 7, 7), [])
        assert f.std_dev == 0.0
        assert f.outliers == []

    def test_thresholds_are_configurable(self):
        th = FeatureThresholds(spike_pct=10.0, dip_pct=-5.0, outlier_z=0.5)
        f = compute_features(series(100, 115, 108), [], thresholds=th)
        assert [s.date for s in f.spikes] == ["20240102"]
        assert [d.date for d in f.dips] == ["20240103"]
        assert len(f.outliers) >= 1

    def test_to_dict_is_serializable_shape(self):
        d = compute_features(series(100, 140), []).to_dict()
        assert set(d) >= {"total", "average", "median", "std_dev", "trend", "yoy_change", "spikes"}
        assert d["spikes"][0]["change"] == pytest.approx(40.0)
