"""
Anomaly Detection

Flags metrics whose latest sample deviates abnormally from the recent
distribution (z-score rule), plus absolute threshold rules for memory
pressure, pool fill and SMART counters.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from . import metrics_store as m
from . import stats
from .config import Settings, settings as default_settings
from .metrics_store import MetricsReader
from .records import AnomalyFinding, MetricSample, utc_now

logger = logging.getLogger("homelab_insights.anomaly")


@dataclass(frozen=True)
class MetricProfile:
    """Display name, unit and remediation advice for one tracked metric"""
    label: str
    unit: str
    spike_recommendation: str
    drop_recommendation: str
    per_dimension: bool = False


METRIC_PROFILES = {
    m.CPU_PERCENT: MetricProfile(
        label="CPU Usage",
        unit="%",
        spike_recommendation="Investigate high CPU processes with htop or docker stats",
        drop_recommendation="Review system logs for unexpected shutdowns or service failures",
    ),
    m.RAM_PERCENT: MetricProfile(
        label="Memory Usage",
        unit="%",
        spike_recommendation=(
            "Review container memory limits, consider stopping unused containers, or add more RAM"
        ),
        drop_recommendation="Check for containers that stopped unexpectedly or were OOM-killed",
    ),
    m.POOL_PERCENT_USED: MetricProfile(
        label="Pool Capacity",
        unit="%",
        spike_recommendation=(
            "Delete old snapshots, move data to another pool, or add more storage capacity"
        ),
        drop_recommendation="Confirm the freed space was an intended cleanup and not a destroyed dataset",
        per_dimension=True,
    ),
    m.SMART_REALLOCATED_SECTORS: MetricProfile(
        label="Reallocated Sectors",
        unit=" sectors",
        spike_recommendation="Back up critical data, run a long SMART self-test and order a replacement disk",
        drop_recommendation="Verify the disk was not swapped and that SMART data was not reset",
        per_dimension=True,
    ),
    m.SMART_PENDING_SECTORS: MetricProfile(
        label="Pending Sectors",
        unit=" sectors",
        spike_recommendation="Run a scrub on the affected pool and watch for sectors becoming reallocated",
        drop_recommendation="Pending sectors were remapped or cleared; check the reallocated sector count",
        per_dimension=True,
    ),
}

SMART_LABELS = {
    METRIC_PROFILES[m.SMART_REALLOCATED_SECTORS].label,
    METRIC_PROFILES[m.SMART_PENDING_SECTORS].label,
    "Disk Health",
}


def detect_metric_anomaly(
    metric: str,
    samples: Sequence[MetricSample],
    config: Settings = default_settings,
    dimension: Optional[str] = None,
) -> Optional[AnomalyFinding]:
    """
    Z-score check of the latest sample against the whole window.

    Returns None with fewer than two samples, with zero variance, or when
    |z| does not exceed ANOMALY_Z_THRESHOLD.
    """
    if len(samples) < 2:
        return None

    values = [s.value for s in samples]
    mu = stats.mean(values)
    sigma = stats.stddev(values)
    latest = values[-1]
    z = stats.zscore(latest, mu, sigma)

    if abs(z) <= config.ANOMALY_Z_THRESHOLD:
        return None

    profile = METRIC_PROFILES.get(metric) or MetricProfile(
        label=metric,
        unit="",
        spike_recommendation=f"Investigate the increase in {metric}",
        drop_recommendation=f"Investigate the decrease in {metric}",
    )
    is_spike = latest > mu
    subject = f'{profile.label} on "{dimension}"' if dimension else profile.label

    return AnomalyFinding(
        metric=profile.label,
        kind="spike" if is_spike else "drop",
        severity="high" if abs(z) > config.ANOMALY_HIGH_Z_THRESHOLD else "medium",
        current_value=latest,
        expected_value=mu,
        deviation_percent=stats.deviation_percent(latest, mu),
        description=(
            f"{subject} is {latest:.1f}{profile.unit} "
            f"(expected ~{mu:.1f}{profile.unit}, z-score {z:.2f})"
        ),
        recommendation=profile.spike_recommendation if is_spike else profile.drop_recommendation,
        dimension=dimension,
    )


def _latest(samples: Sequence[MetricSample]) -> Optional[float]:
    return samples[-1].value if samples else None


def detect_threshold_anomalies(
    reader: MetricsReader,
    since: datetime,
    config: Settings = default_settings,
) -> List[AnomalyFinding]:
    """Absolute threshold rules for memory, pool fill and SMART counters"""
    findings: List[AnomalyFinding] = []

    ram = reader.query(m.RAM_PERCENT, since=since)
    latest_ram = _latest(ram)
    if latest_ram is not None and latest_ram > config.MEMORY_PRESSURE_PERCENT:
        avg_ram = stats.mean([s.value for s in ram])
        findings.append(AnomalyFinding(
            metric="Memory Usage",
            kind="spike",
            severity="critical" if latest_ram > config.MEMORY_CRITICAL_PERCENT else "high",
            current_value=latest_ram,
            expected_value=avg_ram,
            deviation_percent=stats.deviation_percent(latest_ram, avg_ram),
            description=f"Memory usage is critically high at {latest_ram:.1f}%",
            recommendation=METRIC_PROFILES[m.RAM_PERCENT].spike_recommendation,
        ))

    for pool in reader.dimensions(m.POOL_PERCENT_USED, since=since):
        fill = _latest(reader.query(m.POOL_PERCENT_USED, dimension=pool, since=since))
        if fill is None or fill <= config.POOL_FILL_WARNING_PERCENT:
            continue
        expected = config.POOL_EXPECTED_PERCENT
        findings.append(AnomalyFinding(
            metric="Pool Capacity",
            kind="trend",
            severity="critical" if fill > config.POOL_FILL_CRITICAL_PERCENT else "high",
            current_value=fill,
            expected_value=expected,
            deviation_percent=stats.deviation_percent(fill, expected),
            description=f'Pool "{pool}" is {fill:.1f}% full',
            recommendation=METRIC_PROFILES[m.POOL_PERCENT_USED].spike_recommendation,
            dimension=pool,
        ))

    for disk in reader.dimensions(m.SMART_REALLOCATED_SECTORS, since=since):
        reallocated = _latest(reader.query(m.SMART_REALLOCATED_SECTORS, dimension=disk, since=since)) or 0
        pending = _latest(reader.query(m.SMART_PENDING_SECTORS, dimension=disk, since=since)) or 0
        temperature = _latest(reader.query(m.SMART_TEMPERATURE, dimension=disk, since=since)) or 0

        if not (
            reallocated > config.SMART_REALLOCATED_WARNING
            or pending > config.SMART_PENDING_WARNING
            or temperature > config.SMART_TEMPERATURE_WARNING
        ):
            continue

        critical = (
            reallocated > config.SMART_REALLOCATED_CRITICAL
            or pending > config.SMART_PENDING_CRITICAL
        )
        findings.append(AnomalyFinding(
            metric="Disk Health",
            kind="pattern",
            severity="critical" if critical else "high",
            current_value=reallocated,
            expected_value=0,
            deviation_percent=100.0,
            description=(
                f'Disk "{disk}" has {reallocated:.0f} reallocated sectors, '
                f"{pending:.0f} pending sectors and runs at {temperature:.0f}°C"
            ),
            recommendation=(
                "Order replacement disk immediately, backup critical data, prepare for disk failure"
            ),
            dimension=disk,
        ))

    return findings


def detect_anomalies(
    reader: MetricsReader,
    window_hours: Optional[int] = None,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> List[AnomalyFinding]:
    """
    Run the z-score rule over every tracked metric, then the threshold rules.

    A threshold finding is dropped when the z-score rule already flagged the
    same metric and dimension in this pass.
    """
    window_hours = window_hours or config.ANOMALY_WINDOW_HOURS
    since = (now or utc_now()) - timedelta(hours=window_hours)

    findings: List[AnomalyFinding] = []
    for metric, profile in METRIC_PROFILES.items():
        if profile.per_dimension:
            for dimension in reader.dimensions(metric, since=since):
                samples = reader.query(metric, dimension=dimension, since=since)
                finding = detect_metric_anomaly(metric, samples, config, dimension=dimension)
                if finding:
                    findings.append(finding)
        else:
            samples = reader.query(metric, since=since)
            finding = detect_metric_anomaly(metric, samples, config)
            if finding:
                findings.append(finding)

    flagged = {(f.metric, f.dimension) for f in findings}
    flagged_disks = {f.dimension for f in findings if f.metric in SMART_LABELS}

    for finding in detect_threshold_anomalies(reader, since, config):
        if (finding.metric, finding.dimension) in flagged:
            continue
        if finding.metric == "Disk Health" and finding.dimension in flagged_disks:
            continue
        findings.append(finding)

    logger.info(f"Anomaly pass over {window_hours}h found {len(findings)} anomalies")
    return findings
