"""Tests for capacity forecasting"""

from datetime import timedelta

import pytest

from homelab_insights import metrics_store as m
from homelab_insights.capacity import daily_averages, forecast_capacity, predict_capacity
from homelab_insights.exceptions import UnknownResourceException
from homelab_insights.records import CapacityPoint, MetricSample

from conftest import NOW


def points(values, capacity=100.0):
    return [CapacityPoint(day=f"2026-02-{i + 1:02d}", used=v, capacity=capacity) for i, v in enumerate(values)]


class TestForecastCapacity:

    def test_flat_usage_has_no_exhaustion_date(self, config):
        prediction = forecast_capacity("storage", points([50.0] * 10), config, now=NOW)

        assert prediction.days_until_full is None
        assert prediction.predicted_full_date is None
        assert prediction.growth_rate_per_day == pytest.approx(0.0)
        assert "stable or decreasing" in prediction.trend_analysis
        assert prediction.recommendations == []

    def test_shrinking_usage_is_stable(self, config):
        prediction = forecast_capacity("storage", points([80 - i for i in range(10)]), config, now=NOW)
        assert prediction.days_until_full is None
        assert "stable or decreasing" in prediction.trend_analysis

    def test_linear_growth_from_50_to_90(self, config):
        prediction = forecast_capacity("storage", points([50 + 4 * i for i in range(11)]), config, now=NOW)

        assert prediction.growth_rate_per_day == pytest.approx(4.0)
        # (100 - 90) / 4 = 2.5, floored
        assert prediction.days_until_full == 2
        assert prediction.predicted_full_date == NOW + timedelta(days=2)
        assert prediction.current_usage_percent == pytest.approx(90.0)
        assert "full in approximately 2 days" in prediction.trend_analysis
        assert prediction.recommendations

    def test_insufficient_points(self, config):
        assert forecast_capacity("storage", points([50.0 + i for i in range(6)]), config, now=NOW) is None

    def test_days_until_full_is_at_least_one(self, config):
        prediction = forecast_capacity("storage", points([95.0 + i for i in range(8)]), config, now=NOW)
        # latest 102 already exceeds capacity
        assert prediction.days_until_full == 1

    def test_slow_growth_is_healthy_without_recommendations(self, config):
        prediction = forecast_capacity("storage", points([10 + 0.1 * i for i in range(10)]), config, now=NOW)

        assert prediction.days_until_full > config.CAPACITY_WARNING_DAYS
        assert "healthy" in prediction.trend_analysis
        assert prediction.recommendations == []

    def test_confidence_is_documented_heuristic(self, config):
        """Documented heuristic: 0.9 with 30+ daily points, 0.7 otherwise"""
        short = forecast_capacity("storage", points([50 + i for i in range(7)]), config, now=NOW)
        long = forecast_capacity("storage", points([50 + i * 0.5 for i in range(30)]), config, now=NOW)
        assert short.confidence == 0.7
        assert long.confidence == 0.9

    def test_memory_above_high_usage_adds_ram_recommendation(self, config):
        prediction = forecast_capacity("memory", points([70 + 2 * i for i in range(8)]), config, now=NOW)

        assert prediction.days_until_full < config.CAPACITY_WARNING_DAYS
        assert any("RAM" in r for r in prediction.recommendations)

    def test_zero_capacity_reports_zero_percent(self, config):
        prediction = forecast_capacity("storage", points([0.0] * 8, capacity=0.0), config, now=NOW)
        assert prediction.current_usage_percent == 0.0


class TestDailyAverages:

    def test_groups_by_utc_day(self):
        day = NOW.replace(hour=0)
        samples = [
            MetricSample(timestamp=day + timedelta(hours=1), value=10.0),
            MetricSample(timestamp=day + timedelta(hours=20), value=20.0),
            MetricSample(timestamp=day + timedelta(days=1, hours=3), value=40.0),
        ]
        assert list(daily_averages(samples).values()) == [15.0, 40.0]


class TestPredictCapacity:

    def seed_pool(self, reader, pool, start_percent, days=30, total=1000.0):
        for i in range(days):
            ts = NOW - timedelta(days=days - 1 - i)
            for hour_offset in (0, 6):
                at = ts - timedelta(hours=hour_offset)
                reader.add(m.POOL_TOTAL_BYTES, total, at, pool)
                reader.add(m.POOL_USED_BYTES, total * (start_percent + i) / 100, at, pool)

    def test_storage_rising_one_percent_per_day(self, reader, config):
        self.seed_pool(reader, "tank", 60)

        prediction = predict_capacity(reader, "storage", config, now=NOW)

        assert prediction.growth_rate_per_day == pytest.approx(10.0)
        # latest day is 89% full, so 11 days of 1% growth remain
        assert prediction.days_until_full in (10, 11)
        assert prediction.recommendations
        assert prediction.confidence == 0.9

    def test_storage_sums_pools(self, reader, config):
        self.seed_pool(reader, "tank", 60, days=10)
        self.seed_pool(reader, "backup", 20, days=10, total=3000.0)

        prediction = predict_capacity(reader, "storage", config, now=NOW)

        # 690 + 870 used of 4000 on the latest day
        assert prediction.current_usage == pytest.approx(690.0 + 870.0)
        assert prediction.current_usage_percent == pytest.approx(39.0)

    def test_memory_uses_daily_ram_average(self, reader, config):
        reader.add_series(m.RAM_PERCENT, [50.0] * 10, NOW - timedelta(days=9), timedelta(days=1))

        prediction = predict_capacity(reader, "memory", config, now=NOW)

        assert prediction.resource == "memory"
        assert prediction.current_usage_percent == pytest.approx(50.0)
        assert prediction.days_until_full is None

    def test_insufficient_history_returns_none(self, reader, config):
        self.seed_pool(reader, "tank", 60, days=3)
        assert predict_capacity(reader, "storage", config, now=NOW) is None

    def test_swap_is_not_collected(self, reader, config):
        assert predict_capacity(reader, "swap", config, now=NOW) is None

    def test_unknown_resource(self, reader, config):
        with pytest.raises(UnknownResourceException) as exc_info:
            predict_capacity(reader, "gpu", config, now=NOW)
        assert exc_info.value.status_code == 400
