"""
Disk Failure Prediction

Turns a disk's SMART history into an additive risk score, a days-to-failure
estimate and a recommended action. Persisting the assessment is left to the
caller.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from . import metrics_store as m
from . import stats
from .config import Settings, settings as default_settings
from .metrics_store import MetricsReader
from .records import DiskRiskAssessment, SmartSample, as_utc, utc_now

logger = logging.getLogger("homelab_insights.disk_predictor")

HOURS_PER_YEAR = 8760

INSUFFICIENT_DATA_FACTOR = "Insufficient historical data"
NO_FACTORS = "No concerning indicators detected"

ACTION_URGENT = "URGENT: Order replacement drive immediately. Plan data migration within 1 week."
ACTION_PRECAUTION = "Order replacement drive as precaution. Increase backup frequency."
ACTION_MONITOR = "Monitor closely. Verify backups are current."
ACTION_ROUTINE = "Continue regular monitoring"
ACTION_NEED_DATA = "Continue monitoring - need more data points"


def read_smart_history(
    reader: MetricsReader,
    disk_name: str,
    since: datetime,
    config: Settings = default_settings,
) -> List[SmartSample]:
    """Merge the per-counter SMART series of one disk into snapshots.

    Counters reported within DISK_SAMPLE_TOLERANCE_SECONDS of each other
    belong to the same snapshot. A counter missing from a snapshot carries
    its last known value forward; before its first report it takes that
    first value, and a counter never reported is 0.
    """
    series = {
        "temperature": m.SMART_TEMPERATURE,
        "power_on_hours": m.SMART_POWER_ON_HOURS,
        "reallocated_sectors": m.SMART_REALLOCATED_SECTORS,
        "pending_sectors": m.SMART_PENDING_SECTORS,
        "health_failed": m.SMART_HEALTH_FAILED,
    }

    readings: List[Tuple[datetime, str, float]] = []
    for field_name, metric in series.items():
        for sample in reader.query(metric, dimension=disk_name, since=since):
            readings.append((as_utc(sample.timestamp), field_name, sample.value))
    readings.sort(key=lambda reading: reading[0])

    tolerance = timedelta(seconds=config.DISK_SAMPLE_TOLERANCE_SECONDS)
    snapshots: List[Tuple[datetime, Dict[str, float]]] = []
    for timestamp, field_name, value in readings:
        if (
            not snapshots
            or timestamp - snapshots[-1][0] > tolerance
            or field_name in snapshots[-1][1]
        ):
            snapshots.append((timestamp, {}))
        snapshots[-1][1][field_name] = value

    known: Dict[str, float] = {}
    for _, values in snapshots:
        for field_name, value in values.items():
            known.setdefault(field_name, value)

    history = []
    for timestamp, values in snapshots:
        known.update(values)
        history.append(SmartSample(
            timestamp=timestamp,
            temperature=known.get("temperature", 0.0),
            power_on_hours=known.get("power_on_hours", 0.0),
            reallocated_sectors=known.get("reallocated_sectors", 0.0),
            pending_sectors=known.get("pending_sectors", 0.0),
            health_failed=known.get("health_failed", 0.0) >= 1.0,
        ))
    return history


def _recommended_action(probability: float) -> str:
    if probability > 70:
        return ACTION_URGENT
    if probability > 40:
        return ACTION_PRECAUTION
    if probability > 20:
        return ACTION_MONITOR
    return ACTION_ROUTINE


def assess_disk_risk(
    disk_name: str,
    history: Sequence[SmartSample],
    config: Settings = default_settings,
) -> DiskRiskAssessment:
    """
    Score failure risk from SMART history.

    Each indicator adds a fixed weight and the total is clamped to [0, 100],
    so worse counters never lower the probability. With fewer than two
    samples the result carries zero risk and zero confidence.
    """
    if len(history) < 2:
        return DiskRiskAssessment(
            disk_name=disk_name,
            failure_probability=0.0,
            days_until_failure=None,
            confidence=0.0,
            contributing_factors=[INSUFFICIENT_DATA_FACTOR],
            recommended_action=ACTION_NEED_DATA,
            data_points=len(history),
        )

    latest = history[-1]
    factors: List[str] = []
    risk = 0.0

    reallocated_slope = stats.indexed_slope([s.reallocated_sectors for s in history])
    if latest.reallocated_sectors > 0:
        risk += config.DISK_REALLOCATED_WEIGHT
        direction = "INCREASING" if reallocated_slope > 0 else "stable"
        factors.append(
            f"{latest.reallocated_sectors:.0f} reallocated sectors detected ({direction})"
        )

    if latest.pending_sectors > 0:
        risk += config.DISK_PENDING_WEIGHT
        factors.append(f"{latest.pending_sectors:.0f} pending sectors")

    temperatures = [s.temperature for s in history]
    avg_temperature = stats.mean(temperatures)
    if avg_temperature > config.DISK_HIGH_TEMPERATURE:
        risk += config.DISK_HIGH_TEMPERATURE_WEIGHT
        factors.append(f"High average temperature: {avg_temperature:.1f}°C")
    if stats.indexed_slope(temperatures) > config.DISK_TEMPERATURE_SLOPE:
        risk += config.DISK_RISING_TEMPERATURE_WEIGHT
        factors.append("Temperature rising over time")

    age_years = latest.power_on_hours / HOURS_PER_YEAR
    if age_years > config.DISK_MAX_AGE_YEARS:
        risk += config.DISK_AGE_WEIGHT
        factors.append(f"Drive age: {age_years:.1f} years")

    if latest.health_failed:
        risk += config.DISK_FAILED_HEALTH_WEIGHT
        factors.append("SMART health status: FAILED")

    probability = min(100.0, max(0.0, risk))

    days_until_failure: Optional[int] = None
    if reallocated_slope > 0:
        remaining = config.DISK_CRITICAL_SECTORS - latest.reallocated_sectors
        days_until_failure = max(1, math.floor(remaining / reallocated_slope))
    elif probability > 70:
        days_until_failure = 30
    elif probability > 40:
        days_until_failure = 90

    # Documented heuristic carried over for compatibility, not a statistical interval
    confidence = min(100.0, (len(history) / 30) * 100 * (1 if factors else 0.5))

    return DiskRiskAssessment(
        disk_name=disk_name,
        failure_probability=probability,
        days_until_failure=days_until_failure,
        confidence=confidence,
        contributing_factors=factors or [NO_FACTORS],
        recommended_action=_recommended_action(probability),
        data_points=len(history),
    )


def predict_disk_failure(
    reader: MetricsReader,
    disk_name: str,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> DiskRiskAssessment:
    """Read the lookback window of one disk and assess it"""
    since = (now or utc_now()) - timedelta(days=config.DISK_LOOKBACK_DAYS)
    assessment = assess_disk_risk(disk_name, read_smart_history(reader, disk_name, since, config), config)
    logger.info(
        f"Disk {disk_name}: {assessment.failure_probability:.1f}% failure probability "
        f"from {assessment.data_points} samples"
    )
    return assessment


def monitored_disks(
    reader: MetricsReader,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> List[str]:
    """Disks that reported any SMART counter within the lookback window"""
    since = (now or utc_now()) - timedelta(days=config.DISK_LOOKBACK_DAYS)
    disks = set()
    for metric in (m.SMART_REALLOCATED_SECTORS, m.SMART_PENDING_SECTORS, m.SMART_TEMPERATURE):
        disks.update(reader.dimensions(metric, since=since))
    return sorted(disks)
