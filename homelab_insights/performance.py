"""
Performance Trend Analysis

Classifies the multi-week behaviour of host metrics as stable, improving,
degrading or volatile by comparing the first and most recent week of the
analysis period.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from . import metrics_store as m
from . import stats
from .config import Settings, settings as default_settings
from .metrics_store import MetricsReader
from .records import MetricSample, PerformanceTrend, as_utc, utc_now

logger = logging.getLogger("homelab_insights.performance")

WEEK = timedelta(days=7)


@dataclass(frozen=True)
class TrendProfile:
    label: str
    unit: str
    noun: str
    degrading: List[str]
    volatile: List[str]
    per_dimension: bool = False


TREND_PROFILES: Dict[str, TrendProfile] = {
    m.CPU_PERCENT: TrendProfile(
        label="CPU Usage",
        unit="%",
        noun="CPU usage",
        degrading=[
            "Investigate processes causing increased CPU usage",
            "Consider upgrading CPU or optimizing workloads",
        ],
        volatile=[
            "Investigate causes of CPU usage spikes",
            "Consider implementing CPU limits on containers",
        ],
    ),
    m.RAM_PERCENT: TrendProfile(
        label="Memory Usage",
        unit="%",
        noun="Memory usage",
        degrading=["Consider adding more RAM", "Review container memory limits"],
        volatile=[
            "Look for containers with bursty memory allocation",
            "Set memory reservations on critical containers",
        ],
    ),
    m.POOL_PERCENT_USED: TrendProfile(
        label="Storage Usage",
        unit="%",
        noun="Storage pool usage",
        degrading=["Plan storage expansion", "Delete old snapshots", "Archive unused data"],
        volatile=[
            "Check for large temporary datasets being created and removed",
            "Review snapshot and replication schedules",
        ],
        per_dimension=True,
    ),
    m.SMART_TEMPERATURE: TrendProfile(
        label="Disk Temperature",
        unit="°C",
        noun="Disk temperature",
        degrading=["Improve case airflow", "Add additional case fans", "Check ambient temperature"],
        volatile=[
            "Check that case fans run at a steady speed",
            "Look for scrubs or heavy I/O bursts heating the disks",
        ],
        per_dimension=True,
    ),
}


def classify_trend(
    mu: float,
    sigma: float,
    change_percent: float,
    config: Settings = default_settings,
) -> str:
    """Volatility first, then week-over-week change; zero mean is never volatile"""
    if mu != 0 and sigma / mu > config.TREND_VOLATILITY_RATIO:
        return "volatile"
    if change_percent > config.TREND_CHANGE_PERCENT:
        return "degrading"
    if change_percent < -config.TREND_CHANGE_PERCENT:
        return "improving"
    return "stable"


def week_change_percent(
    samples: Sequence[MetricSample],
    cutoff: datetime,
    now: datetime,
) -> float:
    """Percent change from the first week of the period to the last week

    Returns 0 when either week has no samples or the first week averages 0.
    """
    cutoff, now = as_utc(cutoff), as_utc(now)
    first = [s.value for s in samples if cutoff <= as_utc(s.timestamp) < cutoff + WEEK]
    last = [s.value for s in samples if now - WEEK < as_utc(s.timestamp) <= now]
    if not first or not last:
        return 0.0

    first_avg = stats.mean(first)
    if first_avg == 0:
        return 0.0
    return (stats.mean(last) - first_avg) / first_avg * 100


def analyze_metric_trend(
    metric: str,
    samples: Sequence[MetricSample],
    period_days: int,
    cutoff: datetime,
    now: datetime,
    config: Settings = default_settings,
    dimension: Optional[str] = None,
) -> Optional[PerformanceTrend]:
    """Trend of one metric, or of one pool or disk; None with fewer than two samples"""
    if len(samples) < 2:
        return None

    profile = TREND_PROFILES[metric]
    values = [s.value for s in samples]
    mu = stats.mean(values)
    sigma = stats.stddev(values)
    change = week_change_percent(samples, cutoff, now)
    trend = classify_trend(mu, sigma, change, config)
    noun = f'{profile.noun} on "{dimension}"' if dimension else profile.noun

    if trend == "degrading":
        analysis = f"{noun} has increased by {change:.1f}% over the last {period_days} days."
        recommendations = list(profile.degrading)
    elif trend == "improving":
        analysis = f"{noun} has decreased by {abs(change):.1f}% over the last {period_days} days."
        recommendations = []
    elif trend == "volatile":
        analysis = (
            f"{noun} fluctuates heavily around {mu:.1f}{profile.unit} "
            f"(std deviation {sigma:.1f}) over the last {period_days} days."
        )
        recommendations = list(profile.volatile)
    else:
        analysis = (
            f"{noun} has remained stable around {mu:.1f}{profile.unit} "
            f"over the last {period_days} days."
        )
        recommendations = []

    return PerformanceTrend(
        metric=profile.label,
        period_days=period_days,
        trend=trend,
        average_value=mu,
        min_value=min(values),
        max_value=max(values),
        std_deviation=sigma,
        variance=sigma ** 2,
        change_percent=change,
        analysis=analysis,
        recommendations=recommendations,
        dimension=dimension,
    )


def analyze_trends(
    reader: MetricsReader,
    period_days: Optional[int] = None,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> List[PerformanceTrend]:
    """Trend every tracked metric; pool and disk metrics are trended per pool or disk"""
    period_days = period_days or config.TREND_PERIOD_DAYS
    now = now or utc_now()
    cutoff = now - timedelta(days=period_days)

    trends = []
    for metric, profile in TREND_PROFILES.items():
        if profile.per_dimension:
            for dimension in reader.dimensions(metric, since=cutoff):
                samples = reader.query(metric, dimension=dimension, since=cutoff, until=now)
                trend = analyze_metric_trend(
                    metric, samples, period_days, cutoff, now, config, dimension=dimension
                )
                if trend:
                    trends.append(trend)
        else:
            samples = reader.query(metric, since=cutoff, until=now)
            trend = analyze_metric_trend(metric, samples, period_days, cutoff, now, config)
            if trend:
                trends.append(trend)

    logger.info(f"Analyzed {len(trends)} performance trends over {period_days} days")
    return trends
