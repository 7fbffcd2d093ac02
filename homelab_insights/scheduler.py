"""Background insight generation loop for Homelab Insights"""

import asyncio
import logging
from typing import Optional

from .engine import InsightAggregator
from .metrics_store import SQLiteMetricsStore

logger = logging.getLogger("homelab_insights.scheduler")


class InsightScheduler:
    """Runs ``generate()`` on a fixed interval until stopped

    After every cycle, expired insights and history older than
    ``retention_days`` are deleted, along with old raw samples when a
    metrics store is given.
    """

    def __init__(
        self,
        aggregator: InsightAggregator,
        interval_seconds: float = 900,
        retention_days: int = 90,
        metrics_store: Optional[SQLiteMetricsStore] = None,
    ):
        self.aggregator = aggregator
        self.interval_seconds = interval_seconds
        self.retention_days = retention_days
        self.metrics_store = metrics_store
        self.running = False
        self.cycles_run = 0
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()

    async def start(self):
        """Start the background loop"""
        if self.running:
            return
        self.running = True
        self._wakeup.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Insight scheduler started, interval {self.interval_seconds}s")

    async def stop(self):
        """Stop the loop, letting a running cycle finish"""
        self.running = False
        self._wakeup.set()
        if self._task:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Insight scheduler stopped")

    async def _loop(self):
        while self.running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def run_once(self):
        """Run one cycle then the retention cleanup; errors are logged and never end the loop"""
        try:
            report = await self.aggregator.generate()
            self.cycles_run += 1
            if report.failures:
                logger.warning(f"Scheduled cycle finished with failed analyzers: {sorted(report.failures)}")
        except Exception as e:
            logger.error(f"Scheduled insight cycle failed: {e}")

        await self.cleanup()

    async def cleanup(self):
        try:
            await asyncio.to_thread(
                self.aggregator.persistence.cleanup_expired,
                self.aggregator.clock(),
                self.retention_days,
            )
            if self.metrics_store is not None:
                await asyncio.to_thread(self.metrics_store.cleanup_old_samples, self.retention_days)
        except Exception as e:
            logger.error(f"Retention cleanup failed: {e}")
