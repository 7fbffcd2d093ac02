"""
Analysis records

Typed results produced by the analyzers and consumed by the aggregator
and the insights store. All records are created fresh on each analysis
cycle and serialize with ``to_dict()`` for storage and the API.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class MetricSample:
    """A single time-stamped value read from the metrics store"""
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class SmartSample:
    """SMART counters for one disk at one point in time"""
    timestamp: datetime
    temperature: float = 0.0
    power_on_hours: float = 0.0
    reallocated_sectors: float = 0.0
    pending_sectors: float = 0.0
    health_failed: bool = False


@dataclass(frozen=True)
class CapacityPoint:
    """Daily aggregate of used and total capacity for one resource"""
    day: str
    used: float
    capacity: float


@dataclass
class AnomalyFinding:
    """A metric whose latest sample deviates from its recent distribution"""
    metric: str
    kind: str  # "spike", "drop", "trend", "pattern"
    severity: str  # "low", "medium", "high", "critical"
    current_value: float
    expected_value: float
    deviation_percent: float
    description: str
    recommendation: str
    dimension: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnomalyReport:
    """Result of one anomaly detection pass"""
    detected: bool
    anomalies: List[AnomalyFinding]
    summary: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "summary": self.summary,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CapacityPrediction:
    """Projection of when a resource runs out of headroom"""
    resource: str
    current_usage: float
    current_usage_percent: float
    growth_rate_per_day: float
    predicted_full_date: Optional[datetime]
    days_until_full: Optional[int]
    confidence: float
    recommendations: List[str] = field(default_factory=list)
    trend_analysis: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["predicted_full_date"] = (
            self.predicted_full_date.isoformat() if self.predicted_full_date else None
        )
        return data


@dataclass
class PerformanceTrend:
    """Multi-week behaviour classification for one metric"""
    metric: str
    period_days: int
    trend: str  # "improving", "stable", "degrading", "volatile"
    average_value: float
    min_value: float
    max_value: float
    std_deviation: float
    variance: float
    change_percent: float
    analysis: str
    recommendations: List[str] = field(default_factory=list)
    dimension: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DiskRiskAssessment:
    """Failure risk for one disk derived from its SMART history"""
    disk_name: str
    failure_probability: float
    days_until_failure: Optional[int]
    confidence: float
    contributing_factors: List[str]
    recommended_action: str
    data_points: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CostOpportunity:
    """A single savings opportunity found by the cost rules"""
    category: str  # "storage", "compute", "power", "network"
    title: str
    description: str
    potential_savings_usd: float
    difficulty: str  # "easy", "medium", "hard"
    implementation_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CostReport:
    """Current resource snapshot plus every opportunity found"""
    current_state: Dict[str, float]
    opportunities: List[CostOpportunity]
    total_potential_savings_usd: float
    analysis: str = "Review the optimization opportunities above."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_state": dict(self.current_state),
            "opportunities": [o.to_dict() for o in self.opportunities],
            "total_potential_savings_usd": self.total_potential_savings_usd,
            "analysis": self.analysis,
        }


@dataclass
class Insight:
    """A ranked, deduplicated, time-bounded finding surfaced to operators"""
    id: str
    type: str  # "anomaly", "capacity", "cost", "performance", "general"
    title: str
    summary: str
    details: str
    severity: str  # "info", "low", "medium", "high", "critical"
    actionable: bool
    actions: List[str]
    generated_at: datetime
    expires_at: Optional[datetime]
    dismissed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "summary": self.summary,
            "details": self.details,
            "severity": self.severity,
            "actionable": self.actionable,
            "actions": list(self.actions),
            "generated_at": self.generated_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "dismissed": self.dismissed,
        }


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width ISO form so timestamps compare correctly as text"""
    return as_utc(value).isoformat(timespec="microseconds")
