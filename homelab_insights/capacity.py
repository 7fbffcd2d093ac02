"""
Capacity Forecasting

Projects when a steadily growing resource (pool storage, memory) will run
out of headroom by extrapolating a least-squares trend over daily
aggregates.
"""

import logging
import math
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from . import metrics_store as m
from . import stats
from .config import Settings, settings as default_settings
from .exceptions import UnknownResourceException
from .metrics_store import MetricsReader
from .records import CapacityPoint, CapacityPrediction, MetricSample, as_utc, utc_now

logger = logging.getLogger("homelab_insights.capacity")

RESOURCES = ("storage", "memory", "swap")

RECOMMENDATIONS = {
    "storage": [
        "Plan storage expansion or data cleanup within the next 60 days",
        "Review and delete old snapshots",
        "Identify large files that can be archived or deleted",
    ],
    "memory": [
        "Review container memory usage patterns",
        "Set memory limits on containers without one",
    ],
}


def daily_averages(samples: Sequence[MetricSample]) -> "OrderedDict[str, float]":
    """Average of samples per UTC calendar day, in day order"""
    buckets: Dict[str, List[float]] = {}
    for sample in samples:
        day = as_utc(sample.timestamp).date().isoformat()
        buckets.setdefault(day, []).append(sample.value)
    return OrderedDict((day, stats.mean(values)) for day, values in sorted(buckets.items()))


def forecast_capacity(
    resource: str,
    points: Sequence[CapacityPoint],
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> Optional[CapacityPrediction]:
    """
    Forecast exhaustion from daily (used, capacity) points.

    Returns None when fewer than CAPACITY_MIN_DATA_POINTS days are available.
    ``days_until_full`` is None whenever the growth rate is not positive.
    """
    if len(points) < config.CAPACITY_MIN_DATA_POINTS:
        return None

    now = now or utc_now()
    growth_rate = stats.linear_slope([(i, p.used) for i, p in enumerate(points)])

    latest = points[-1]
    usage_percent = (latest.used / latest.capacity) * 100 if latest.capacity else 0.0

    days_until_full: Optional[int] = None
    if growth_rate > 0:
        days_until_full = max(1, math.floor((latest.capacity - latest.used) / growth_rate))

    label = resource.capitalize()
    trend_analysis = f"{label} is currently {usage_percent:.1f}% full."
    if days_until_full is not None and days_until_full < config.CAPACITY_WARNING_DAYS:
        trend_analysis += (
            f" At current growth rate, {resource} will be full in approximately "
            f"{days_until_full} days."
        )
    elif growth_rate <= 0:
        trend_analysis += f" {label} usage is stable or decreasing."
    else:
        trend_analysis += f" {label} capacity is healthy."

    recommendations: List[str] = []
    if days_until_full is not None and days_until_full < config.CAPACITY_WARNING_DAYS:
        recommendations.extend(RECOMMENDATIONS.get(resource, [f"Plan {resource} expansion"]))
        if resource == "memory" and usage_percent > config.MEMORY_HIGH_USAGE_PERCENT:
            recommendations.append("Consider upgrading RAM or reducing container memory limits")

    return CapacityPrediction(
        resource=resource,
        current_usage=latest.used,
        current_usage_percent=usage_percent,
        growth_rate_per_day=growth_rate,
        predicted_full_date=(
            now + timedelta(days=days_until_full) if days_until_full is not None else None
        ),
        days_until_full=days_until_full,
        confidence=(
            config.CAPACITY_HIGH_CONFIDENCE
            if len(points) >= config.CAPACITY_HIGH_CONFIDENCE_POINTS
            else config.CAPACITY_LOW_CONFIDENCE
        ),
        recommendations=recommendations,
        trend_analysis=trend_analysis,
    )


def storage_points(reader: MetricsReader, since: datetime) -> List[CapacityPoint]:
    """Daily pool usage summed across every pool"""
    used_by_day: Dict[str, float] = {}
    total_by_day: Dict[str, float] = {}

    for pool in reader.dimensions(m.POOL_USED_BYTES, since=since):
        used = daily_averages(reader.query(m.POOL_USED_BYTES, dimension=pool, since=since))
        total = daily_averages(reader.query(m.POOL_TOTAL_BYTES, dimension=pool, since=since))
        for day, value in used.items():
            if day not in total:
                continue
            used_by_day[day] = used_by_day.get(day, 0.0) + value
            total_by_day[day] = total_by_day.get(day, 0.0) + total[day]

    return [
        CapacityPoint(day=day, used=used_by_day[day], capacity=total_by_day[day])
        for day in sorted(used_by_day)
    ]


def memory_points(reader: MetricsReader, since: datetime) -> List[CapacityPoint]:
    """Daily average RAM percentage against a capacity of 100"""
    return [
        CapacityPoint(day=day, used=value, capacity=100.0)
        for day, value in daily_averages(reader.query(m.RAM_PERCENT, since=since)).items()
    ]


def predict_capacity(
    reader: MetricsReader,
    resource: str,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> Optional[CapacityPrediction]:
    """Read the lookback window for one resource and forecast it"""
    if resource not in RESOURCES:
        raise UnknownResourceException(resource, RESOURCES)

    now = now or utc_now()
    since = now - timedelta(days=config.CAPACITY_LOOKBACK_DAYS)

    if resource == "storage":
        points = storage_points(reader, since)
    elif resource == "memory":
        points = memory_points(reader, since)
    else:
        # No swap series is collected yet
        return None

    prediction = forecast_capacity(resource, points, config, now=now)
    if prediction is None:
        logger.debug(f"Not enough daily data to forecast {resource} ({len(points)} days)")
    return prediction
