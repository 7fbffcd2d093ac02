"""Tests for disk failure prediction"""

from dataclasses import replace
from datetime import timedelta

import pytest

from homelab_insights import metrics_store as m
from homelab_insights.disk_predictor import (
    ACTION_MONITOR,
    ACTION_NEED_DATA,
    ACTION_PRECAUTION,
    ACTION_ROUTINE,
    ACTION_URGENT,
    assess_disk_risk,
    monitored_disks,
    predict_disk_failure,
    read_smart_history,
)
from homelab_insights.records import SmartSample

from conftest import NOW


def healthy_history(count=10, **overrides):
    history = []
    for i in range(count):
        sample = SmartSample(
            timestamp=NOW - timedelta(days=count - i),
            temperature=38.0,
            power_on_hours=8760.0,
            reallocated_sectors=0.0,
            pending_sectors=0.0,
            health_failed=False,
        )
        history.append(replace(sample, **overrides))
    return history


class TestAssessDiskRisk:

    def test_healthy_disk(self, config):
        result = assess_disk_risk("sda", healthy_history(), config)

        assert result.failure_probability == 0
        assert result.days_until_failure is None
        assert result.contributing_factors == ["No concerning indicators detected"]
        assert result.recommended_action == ACTION_ROUTINE

    @pytest.mark.parametrize("count", [0, 1])
    def test_insufficient_history(self, config, count):
        result = assess_disk_risk("sda", healthy_history(count), config)

        assert result.failure_probability == 0
        assert result.confidence == 0
        assert result.days_until_failure is None
        assert result.contributing_factors == ["Insufficient historical data"]
        assert result.recommended_action == ACTION_NEED_DATA

    def test_reallocated_sectors_add_forty_points(self, config):
        healthy = assess_disk_risk("sda", healthy_history(), config)
        worn = assess_disk_risk("sda", healthy_history(reallocated_sectors=10.0), config)

        assert worn.failure_probability - healthy.failure_probability >= 40
        assert worn.contributing_factors[0] == "10 reallocated sectors detected (stable)"

    @pytest.mark.parametrize("field_name,value", [
        ("reallocated_sectors", 5.0),
        ("pending_sectors", 3.0),
        ("health_failed", True),
    ])
    def test_worse_counters_never_lower_probability(self, config, field_name, value):
        base_overrides = {"temperature": 52.0, "power_on_hours": 5 * 8760.0}
        base = assess_disk_risk("sda", healthy_history(**base_overrides), config)
        worse = assess_disk_risk("sda", healthy_history(**base_overrides, **{field_name: value}), config)

        assert worse.failure_probability > base.failure_probability

    def test_probability_is_clamped_to_100(self, config):
        history = healthy_history(
            reallocated_sectors=80.0,
            pending_sectors=12.0,
            temperature=58.0,
            power_on_hours=6 * 8760.0,
            health_failed=True,
        )
        result = assess_disk_risk("sda", history, config)

        assert result.failure_probability == 100
        assert result.recommended_action == ACTION_URGENT
        assert result.days_until_failure == 30

    def test_increasing_reallocated_sectors_extrapolate_days(self, config):
        history = healthy_history()
        history = [replace(s, reallocated_sectors=float(2 * i)) for i, s in enumerate(history)]

        result = assess_disk_risk("sda", history, config)

        # latest 18 sectors rising 2 per sample: (100 - 18) / 2 = 41
        assert result.days_until_failure == 41
        assert "INCREASING" in result.contributing_factors[0]

    def test_extrapolation_floors_at_one_day(self, config):
        history = [replace(s, reallocated_sectors=float(100 + 10 * i)) for i, s in enumerate(healthy_history())]
        assert assess_disk_risk("sda", history, config).days_until_failure == 1

    def test_moderate_risk_defaults_to_ninety_days(self, config):
        # pending + hot = 45
        result = assess_disk_risk("sda", healthy_history(pending_sectors=2.0, temperature=55.0), config)

        assert result.failure_probability == 45
        assert result.days_until_failure == 90
        assert result.recommended_action == ACTION_PRECAUTION

    def test_monitor_band(self, config):
        result = assess_disk_risk("sda", healthy_history(pending_sectors=1.0), config)
        assert result.failure_probability == 30
        assert result.recommended_action == ACTION_MONITOR
        assert result.days_until_failure is None

    def test_rising_temperature(self, config):
        history = [replace(s, temperature=30.0 + i) for i, s in enumerate(healthy_history())]
        result = assess_disk_risk("sda", history, config)

        assert "Temperature rising over time" in result.contributing_factors
        assert result.failure_probability == config.DISK_RISING_TEMPERATURE_WEIGHT

    def test_old_drive(self, config):
        result = assess_disk_risk("sda", healthy_history(power_on_hours=4.5 * 8760), config)
        assert result.contributing_factors == ["Drive age: 4.5 years"]

    def test_confidence_is_documented_heuristic(self, config):
        """Documented heuristic: min(100, n/30*100), halved without risk factors"""
        quiet = assess_disk_risk("sda", healthy_history(15), config)
        risky = assess_disk_risk("sda", healthy_history(15, pending_sectors=1.0), config)
        saturated = assess_disk_risk("sda", healthy_history(60, pending_sectors=1.0), config)

        assert quiet.confidence == pytest.approx(25.0)
        assert risky.confidence == pytest.approx(50.0)
        assert saturated.confidence == 100.0


class TestReadSmartHistory:

    def seed(self, reader, disk, reallocated, days=5):
        start = NOW - timedelta(days=days)
        step = timedelta(days=1)
        reader.add_series(m.SMART_TEMPERATURE, [40.0] * days, start, step, disk)
        reader.add_series(m.SMART_POWER_ON_HOURS, [1000.0 + 24 * i for i in range(days)], start, step, disk)
        reader.add_series(m.SMART_REALLOCATED_SECTORS, reallocated, start, step, disk)
        reader.add_series(m.SMART_PENDING_SECTORS, [0.0] * days, start, step, disk)

    def test_joins_counters_by_timestamp(self, reader):
        self.seed(reader, "sda", [0.0, 0.0, 1.0, 2.0, 3.0])

        history = read_smart_history(reader, "sda", NOW - timedelta(days=30))

        assert len(history) == 5
        assert [s.reallocated_sectors for s in history] == [0.0, 0.0, 1.0, 2.0, 3.0]
        assert history[-1].power_on_hours == 1096.0
        assert not any(s.health_failed for s in history)

    def test_health_flag(self, reader):
        self.seed(reader, "sda", [0.0] * 5)
        reader.add(m.SMART_HEALTH_FAILED, 1.0, NOW - timedelta(days=1), "sda")

        history = read_smart_history(reader, "sda", NOW - timedelta(days=30))

        assert history[-1].health_failed

    def test_predict_and_list_disks(self, reader, config):
        self.seed(reader, "sda", [0.0] * 5)
        self.seed(reader, "sdb", [4.0] * 5)

        assert monitored_disks(reader, config, now=NOW) == ["sda", "sdb"]
        result = predict_disk_failure(reader, "sdb", config, now=NOW)
        assert result.failure_probability == 40
        assert result.data_points == 5

    def test_unknown_disk_has_insufficient_data(self, reader, config):
        result = predict_disk_failure(reader, "nvme9", config, now=NOW)
        assert result.contributing_factors == ["Insufficient historical data"]

    def test_counters_a_few_seconds_apart_share_a_snapshot(self, reader, config):
        start = NOW - timedelta(days=5)
        step = timedelta(days=1)
        reader.add_series(m.SMART_REALLOCATED_SECTORS, [10.0] * 5, start, step, "sdc")
        reader.add_series(m.SMART_TEMPERATURE, [40.0] * 5, start + timedelta(seconds=1), step, "sdc")

        history = read_smart_history(reader, "sdc", NOW - timedelta(days=30), config)
        result = predict_disk_failure(reader, "sdc", config, now=NOW)

        assert len(history) == 5
        assert [s.temperature for s in history] == [40.0] * 5
        assert result.failure_probability >= 40
        assert result.contributing_factors == ["10 reallocated sectors detected (stable)"]

    def test_missing_counter_carries_last_value_forward(self, reader, config):
        start = NOW - timedelta(days=4)
        step = timedelta(days=1)
        reader.add_series(m.SMART_TEMPERATURE, [40.0] * 4, start, step, "sdd")
        reader.add(m.SMART_REALLOCATED_SECTORS, 12.0, start, "sdd")
        reader.add(m.SMART_HEALTH_FAILED, 1.0, start + step, "sdd")

        history = read_smart_history(reader, "sdd", NOW - timedelta(days=30), config)

        assert [s.reallocated_sectors for s in history] == [12.0] * 4
        assert [s.health_failed for s in history] == [True] * 4
