"""
Metrics Store

Read surface over time-stamped numeric samples grouped by metric name and
an optional dimension (disk name, pool name, container id). Collectors
write samples through ``record``/``record_many``; the analyzers only read.
"""

import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .exceptions import MetricsStoreException
from .records import MetricSample, to_db_timestamp, utc_now

logger = logging.getLogger("homelab_insights.metrics_store")

DEFAULT_METRICS_DB_PATH = os.getenv("METRICS_DB_PATH", "./data/metrics.db")

# Host metrics
CPU_PERCENT = "cpu_percent"
RAM_PERCENT = "ram_percent"

# Pool metrics, dimension = pool name
POOL_USED_BYTES = "pool.used_bytes"
POOL_TOTAL_BYTES = "pool.total_bytes"
POOL_PERCENT_USED = "pool.percent_used"

# SMART metrics, dimension = disk name
SMART_TEMPERATURE = "smart.temperature"
SMART_POWER_ON_HOURS = "smart.power_on_hours"
SMART_REALLOCATED_SECTORS = "smart.reallocated_sectors"
SMART_PENDING_SECTORS = "smart.pending_sectors"
SMART_HEALTH_FAILED = "smart.health_failed"  # 1.0 when the drive reports FAILED

# Container metrics, dimension = container id
CONTAINER_CPU_PERCENT = "container.cpu_percent"

# Snapshot counts, dimension = pool name
SNAPSHOT_COUNT = "snapshot.count"


class MetricsReader(ABC):
    """Read-only query surface consumed by the analyzers"""

    @abstractmethod
    def query(
        self,
        metric: str,
        dimension: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[MetricSample]:
        """Samples for a metric in ascending timestamp order, possibly empty

        A ``dimension`` of None matches samples of every dimension.
        """

    @abstractmethod
    def dimensions(self, metric: str, since: Optional[datetime] = None) -> List[str]:
        """Distinct non-empty dimensions that reported the metric"""


class SQLiteMetricsStore(MetricsReader):
    """SQLite-backed metrics store

    The database path can be configured via the METRICS_DB_PATH environment
    variable. Every call opens its own connection so the store can be shared
    across analyzer threads and tolerates concurrent writers.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path or DEFAULT_METRICS_DB_PATH)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup"""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        """Create the samples table and indexes if missing"""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS metric_samples (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        metric TEXT NOT NULL,
                        dimension TEXT NOT NULL DEFAULT '',
                        value REAL NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_samples_metric_time
                    ON metric_samples(metric, dimension, timestamp)
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_samples_timestamp
                    ON metric_samples(timestamp)
                """)
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise MetricsStoreException("initialization", str(e)) from e

    def record(
        self,
        metric: str,
        value: float,
        dimension: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Record a single sample"""
        self.record_many([(metric, dimension, timestamp or utc_now(), value)])

    def record_many(
        self,
        samples: Iterable[Tuple[str, Optional[str], datetime, float]],
    ) -> int:
        """Record (metric, dimension, timestamp, value) tuples in one transaction"""
        rows = [
            (to_db_timestamp(ts), metric, dimension or "", float(value))
            for metric, dimension, ts, value in samples
        ]
        if not rows:
            return 0

        try:
            with self._get_connection() as conn:
                conn.executemany("""
                    INSERT INTO metric_samples (timestamp, metric, dimension, value)
                    VALUES (?, ?, ?, ?)
                """, rows)
                conn.commit()
        except sqlite3.Error as e:
            raise MetricsStoreException("write", str(e)) from e

        logger.debug(f"Recorded {len(rows)} metric samples")
        return len(rows)

    def query(
        self,
        metric: str,
        dimension: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[MetricSample]:
        query = "SELECT timestamp, value FROM metric_samples WHERE metric = ?"
        params: list = [metric]

        if dimension is not None:
            query += " AND dimension = ?"
            params.append(dimension)

        if since:
            query += " AND timestamp >= ?"
            params.append(to_db_timestamp(since))

        if until:
            query += " AND timestamp <= ?"
            params.append(to_db_timestamp(until))

        query += " ORDER BY timestamp ASC, id ASC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise MetricsStoreException("query", str(e)) from e

        return [
            MetricSample(
                timestamp=datetime.fromisoformat(row["timestamp"]),
                value=row["value"],
            )
            for row in rows
        ]

    def dimensions(self, metric: str, since: Optional[datetime] = None) -> List[str]:
        query = "SELECT DISTINCT dimension FROM metric_samples WHERE metric = ? AND dimension != ''"
        params: list = [metric]

        if since:
            query += " AND timestamp >= ?"
            params.append(to_db_timestamp(since))

        query += " ORDER BY dimension ASC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise MetricsStoreException("dimensions", str(e)) from e

        return [row["dimension"] for row in rows]

    def cleanup_old_samples(self, days: int = 90) -> int:
        """Remove samples older than specified days"""
        cutoff = utc_now() - timedelta(days=days)

        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    "DELETE FROM metric_samples WHERE timestamp < ?",
                    (to_db_timestamp(cutoff),)
                )
                conn.commit()
                deleted = result.rowcount
        except sqlite3.Error as e:
            raise MetricsStoreException("cleanup", str(e)) from e

        logger.info(f"Cleaned up {deleted} old metric samples")
        return deleted
