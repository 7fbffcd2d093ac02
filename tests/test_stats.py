"""Tests for the statistics kernel"""

import math

import pytest

from homelab_insights import stats


class TestMeanAndStddev:

    def test_mean(self):
        assert stats.mean([1, 2, 3, 4]) == 2.5

    def test_mean_of_empty_series_is_zero(self):
        assert stats.mean([]) == 0.0

    def test_stddev_is_population_form(self):
        # population stddev of 2,4,4,4,5,5,7,9 is exactly 2
        assert stats.stddev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)

    def test_stddev_of_constant_series_is_zero(self):
        assert stats.stddev([7, 7, 7]) == 0.0

    def test_stddev_of_empty_series_is_zero(self):
        assert stats.stddev([]) == 0.0


class TestZscore:

    def test_zscore(self):
        assert stats.zscore(14, 10, 2) == pytest.approx(2.0)
        assert stats.zscore(6, 10, 2) == pytest.approx(-2.0)

    def test_zero_stddev_returns_zero(self):
        assert stats.zscore(1000, 10, 0) == 0.0


class TestLinearSlope:

    def test_exact_line(self):
        points = [(x, 3 * x + 1) for x in range(10)]
        assert stats.linear_slope(points) == pytest.approx(3.0)

    def test_negative_slope(self):
        assert stats.linear_slope([(0, 10), (1, 8), (2, 6)]) == pytest.approx(-2.0)

    def test_fewer_than_two_points(self):
        assert stats.linear_slope([]) == 0.0
        assert stats.linear_slope([(1, 5)]) == 0.0

    def test_duplicate_x_values_have_zero_denominator(self):
        assert stats.linear_slope([(2, 1), (2, 5), (2, 9)]) == 0.0

    def test_indexed_slope(self):
        assert stats.indexed_slope([50, 54, 58, 62]) == pytest.approx(4.0)

    def test_never_returns_nan(self):
        assert not math.isnan(stats.linear_slope([(0, 0), (0, 0)]))


class TestDeviationAndSeverity:

    def test_deviation_percent(self):
        assert stats.deviation_percent(150, 100) == pytest.approx(50.0)
        assert stats.deviation_percent(50, 100) == pytest.approx(50.0)

    def test_deviation_percent_zero_expected(self):
        assert stats.deviation_percent(42, 0) == 0.0

    def test_max_severity(self):
        assert stats.max_severity(["low", "critical", "medium"]) == "critical"
        assert stats.max_severity(["medium", "high"]) == "high"

    def test_max_severity_empty(self):
        assert stats.max_severity([]) == "info"

    def test_severity_rank_order(self):
        ranks = [stats.severity_rank(s) for s in ("info", "low", "medium", "high", "critical")]
        assert ranks == sorted(ranks)
