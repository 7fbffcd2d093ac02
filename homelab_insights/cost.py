"""
Cost Optimization Advisor

Rule-based savings estimates over the current resource snapshot. Figures
are deterministic linear estimates, not a pricing oracle.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from . import metrics_store as m
from . import stats
from .config import Settings, settings as default_settings
from .metrics_store import MetricsReader
from .records import CostOpportunity, CostReport, utc_now

logger = logging.getLogger("homelab_insights.cost")

TB = 1024 ** 4

# Rough power model: CPU, RAM, per-TB disks and per-container overhead
BASE_CPU_WATTS = 65
BASE_RAM_WATTS = 20
DISKS_PER_TB = 3
WATTS_PER_DISK = 5
WATTS_PER_CONTAINER = 2
HOURS_PER_MONTH = 24 * 30

STATE_WINDOW = timedelta(hours=1)
IDLE_WINDOW = timedelta(hours=24)
CPU_AVERAGE_WINDOW = timedelta(days=7)


def _latest_per_dimension(reader: MetricsReader, metric: str, since: datetime) -> Dict[str, float]:
    latest = {}
    for dimension in reader.dimensions(metric, since=since):
        samples = reader.query(metric, dimension=dimension, since=since)
        if samples:
            latest[dimension] = samples[-1].value
    return latest


def current_state(
    reader: MetricsReader,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> Dict[str, float]:
    """Storage, container count and estimated power draw over the last hour"""
    since = (now or utc_now()) - STATE_WINDOW

    total_bytes = sum(_latest_per_dimension(reader, m.POOL_TOTAL_BYTES, since).values())
    storage_tb = total_bytes / TB
    containers = len(reader.dimensions(m.CONTAINER_CPU_PERCENT, since=since))

    watts = (
        BASE_CPU_WATTS
        + BASE_RAM_WATTS
        + storage_tb * DISKS_PER_TB * WATTS_PER_DISK
        + containers * WATTS_PER_CONTAINER
    )
    monthly_cost = watts * HOURS_PER_MONTH * config.COST_KWH_PRICE_USD / 1000

    return {
        "total_storage_tb": storage_tb,
        "active_containers": containers,
        "estimated_power_watts": round(watts),
        "estimated_monthly_cost_usd": round(monthly_cost, 2),
    }


def idle_container_opportunity(
    reader: MetricsReader,
    config: Settings,
    now: datetime,
) -> Optional[CostOpportunity]:
    since = now - IDLE_WINDOW
    idle = 0
    for container in reader.dimensions(m.CONTAINER_CPU_PERCENT, since=since):
        samples = reader.query(m.CONTAINER_CPU_PERCENT, dimension=container, since=since)
        quiet = sum(1 for s in samples if s.value < config.COST_IDLE_CPU_PERCENT)
        if quiet > config.COST_IDLE_MIN_SAMPLES:
            idle += 1

    if idle <= config.COST_IDLE_CONTAINER_THRESHOLD:
        return None

    return CostOpportunity(
        category="compute",
        title="Stop idle containers",
        description=f"{idle} containers have been idle for 24+ hours.",
        potential_savings_usd=round(idle * config.COST_IDLE_CONTAINER_SAVINGS_USD, 2),
        difficulty="easy",
        implementation_steps=[
            "Review idle containers with docker ps",
            "Stop non-essential containers",
            "Consider using container orchestration with auto-scaling",
        ],
    )


def snapshot_opportunity(
    reader: MetricsReader,
    config: Settings,
    now: datetime,
) -> Optional[CostOpportunity]:
    count = sum(_latest_per_dimension(reader, m.SNAPSHOT_COUNT, now - IDLE_WINDOW).values())
    if count <= config.COST_SNAPSHOT_THRESHOLD:
        return None

    return CostOpportunity(
        category="storage",
        title="Reduce snapshot retention",
        description=(
            f"You have {count:.0f} snapshots. Consider implementing automated snapshot cleanup."
        ),
        # Disks are already purchased
        potential_savings_usd=0.0,
        difficulty="easy",
        implementation_steps=[
            "Review the snapshot policy of each pool",
            "Delete snapshots older than 30 days",
            "Set up automated snapshot rotation",
        ],
    )


def power_opportunity(
    reader: MetricsReader,
    state: Dict[str, float],
    config: Settings,
    now: datetime,
) -> Optional[CostOpportunity]:
    samples = reader.query(m.CPU_PERCENT, since=now - CPU_AVERAGE_WINDOW)
    if not samples:
        return None

    avg_cpu = stats.mean([s.value for s in samples])
    if avg_cpu >= config.COST_LOW_CPU_PERCENT:
        return None

    return CostOpportunity(
        category="power",
        title="Enable CPU power saving features",
        description=f"Average CPU usage is only {avg_cpu:.1f}%. Enable power saving modes.",
        potential_savings_usd=round(
            state["estimated_monthly_cost_usd"] * config.COST_POWER_SAVING_RATIO, 2
        ),
        difficulty="medium",
        implementation_steps=[
            "Enable Intel SpeedStep in BIOS",
            'Set CPU governor to "powersave" for non-critical workloads',
            "Consider consolidating workloads to fewer cores",
        ],
    )


def generate_cost_optimizations(
    reader: MetricsReader,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> CostReport:
    """Run every cost rule against the current snapshot"""
    now = now or utc_now()
    state = current_state(reader, config, now)

    opportunities: List[CostOpportunity] = []
    for opportunity in (
        snapshot_opportunity(reader, config, now),
        idle_container_opportunity(reader, config, now),
        power_opportunity(reader, state, config, now),
    ):
        if opportunity:
            opportunities.append(opportunity)

    total = round(sum(o.potential_savings_usd for o in opportunities), 2)
    logger.info(f"Found {len(opportunities)} cost opportunities worth ${total:.2f}/month")
    return CostReport(
        current_state=state,
        opportunities=opportunities,
        total_potential_savings_usd=total,
    )
