"""pytest configuration for homelab-insights tests"""

import asyncio
import os
import sys
import tempfile
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

# Add the parent directory to the path so we can import homelab_insights
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep the module-level settings away from ./data and from a running scheduler
_temp_dir = tempfile.mkdtemp(prefix="homelab-insights-tests-")
os.environ.setdefault("METRICS_DB_PATH", os.path.join(_temp_dir, "metrics.db"))
os.environ.setdefault("INSIGHTS_DB_PATH", os.path.join(_temp_dir, "insights.db"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SUMMARIZER_PROVIDER", "none")

from homelab_insights.config import Settings  # noqa: E402
from homelab_insights.metrics_store import MetricsReader  # noqa: E402
from homelab_insights.records import MetricSample, as_utc  # noqa: E402
from homelab_insights.summarizer import Summarizer  # noqa: E402


NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryMetricsReader(MetricsReader):
    """MetricsReader fake backed by plain lists"""

    def __init__(self):
        self.samples: Dict[Tuple[str, str], List[MetricSample]] = defaultdict(list)
        self.failing: Dict[str, Exception] = {}

    def add(self, metric: str, value: float, timestamp: datetime, dimension: Optional[str] = None):
        self.samples[(metric, dimension or "")].append(MetricSample(timestamp=timestamp, value=value))

    def add_series(self, metric: str, values, start: datetime, step: timedelta, dimension: Optional[str] = None):
        for i, value in enumerate(values):
            self.add(metric, value, start + step * i, dimension)

    def fail(self, metric: str, error: Exception):
        """Make every query for metric raise error"""
        self.failing[metric] = error

    def query(self, metric, dimension=None, since=None, until=None):
        if metric in self.failing:
            raise self.failing[metric]
        result = []
        for (name, dim), samples in self.samples.items():
            if name != metric or (dimension is not None and dim != dimension):
                continue
            for sample in samples:
                ts = as_utc(sample.timestamp)
                if since is not None and ts < as_utc(since):
                    continue
                if until is not None and ts > as_utc(until):
                    continue
                result.append(sample)
        return sorted(result, key=lambda s: as_utc(s.timestamp))

    def dimensions(self, metric, since=None):
        if metric in self.failing:
            raise self.failing[metric]
        return sorted({
            dim for (name, dim), samples in self.samples.items()
            if name == metric and dim and any(
                since is None or as_utc(s.timestamp) >= as_utc(since) for s in samples
            )
        })


class FakeSummarizer(Summarizer):
    """Summarizer fake with scriptable availability, output and latency"""

    name = "fake"

    def __init__(self, text="Narrative summary", available=True, error=None, delay=0.0):
        self.text = text
        self.available = available
        self.error = error
        self.delay = delay
        self.calls = []

    async def is_available(self) -> bool:
        return self.available

    async def complete(self, system_prompt: str, prompt: str) -> str:
        self.calls.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def reader():
    return InMemoryMetricsReader()


@pytest.fixture
def config():
    """Settings with defaults only, independent of the environment"""
    return Settings(_env_file=None, SCHEDULER_ENABLED=False, SUMMARIZER_PROVIDER="none")


@pytest.fixture
def metrics_db_path(tmp_path):
    return str(tmp_path / "metrics.db")


@pytest.fixture
def insights_db_path(tmp_path):
    return str(tmp_path / "insights.db")
