"""Pydantic models for the Homelab Insights API"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field("healthy", description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=_now)
    services: Dict[str, str] = Field(default_factory=dict, description="Service statuses")


class InsightModel(BaseModel):
    """A ranked, time-bounded finding"""
    id: str
    type: Literal["anomaly", "capacity", "cost", "performance", "general"]
    title: str
    summary: str
    details: str
    severity: Literal["info", "low", "medium", "high", "critical"]
    actionable: bool
    actions: List[str] = Field(default_factory=list)
    generated_at: datetime
    expires_at: Optional[datetime] = None
    dismissed: bool = False


class InsightListResponse(BaseModel):
    """Active insights, most severe first"""
    insights: List[InsightModel] = Field(default_factory=list)
    total: int = Field(0, description="Number of insights returned")


class GenerateInsightsResponse(BaseModel):
    """Result of one generation cycle"""
    insights: List[InsightModel] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict, description="Failed analyzers and their errors")
    partial: bool = Field(False, description="Whether any analyzer failed")
    state: str
    generated_at: Optional[datetime] = None


class DismissResponse(BaseModel):
    success: bool
    insight_id: str


class AnomalyModel(BaseModel):
    metric: str
    kind: Literal["spike", "drop", "trend", "pattern"]
    severity: Literal["low", "medium", "high", "critical"]
    current_value: float
    expected_value: float
    deviation_percent: float
    description: str
    recommendation: str
    dimension: Optional[str] = None


class AnomalyReportResponse(BaseModel):
    detected: bool
    anomalies: List[AnomalyModel] = Field(default_factory=list)
    summary: str
    timestamp: datetime


class CapacityPredictionModel(BaseModel):
    resource: str
    current_usage: float
    current_usage_percent: float
    growth_rate_per_day: float
    predicted_full_date: Optional[datetime] = None
    days_until_full: Optional[int] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    recommendations: List[str] = Field(default_factory=list)
    trend_analysis: str


class CapacityResponse(BaseModel):
    predictions: List[CapacityPredictionModel] = Field(default_factory=list)


class DiskPredictionModel(BaseModel):
    disk_name: str
    failure_probability: float = Field(..., ge=0.0, le=100.0)
    days_until_failure: Optional[int] = None
    confidence: float = Field(..., ge=0.0, le=100.0)
    contributing_factors: List[str] = Field(default_factory=list)
    recommended_action: str
    data_points: int = 0


class PerformanceTrendModel(BaseModel):
    metric: str
    period_days: int
    trend: Literal["improving", "stable", "degrading", "volatile"]
    average_value: float
    min_value: float
    max_value: float
    std_deviation: float
    variance: float
    change_percent: float
    analysis: str
    recommendations: List[str] = Field(default_factory=list)
    dimension: Optional[str] = None


class TrendsResponse(BaseModel):
    trends: List[PerformanceTrendModel] = Field(default_factory=list)


class CostOpportunityModel(BaseModel):
    category: Literal["storage", "compute", "power", "network"]
    title: str
    description: str
    potential_savings_usd: float
    difficulty: Literal["easy", "medium", "hard"]
    implementation_steps: List[str] = Field(default_factory=list)


class CostReportResponse(BaseModel):
    current_state: Dict[str, float]
    opportunities: List[CostOpportunityModel] = Field(default_factory=list)
    total_potential_savings_usd: float
    analysis: str


class SampleIn(BaseModel):
    """One metric sample pushed by a collector"""
    metric: str = Field(..., min_length=1, max_length=128, description="Metric name, e.g. pool.used_bytes")
    value: float
    dimension: Optional[str] = Field(None, max_length=128, description="Disk, pool or container name")
    timestamp: Optional[datetime] = Field(None, description="Sample time, defaults to now")


class SampleBatchRequest(BaseModel):
    """Batch of samples to ingest"""
    samples: List[SampleIn] = Field(..., min_length=1, max_length=5000)


class SampleBatchResponse(BaseModel):
    accepted: int


class HistoryParams(BaseModel):
    """Validated parameters for history endpoints"""
    limit: int = Field(
        100,
        ge=1,
        le=500,
        description="Maximum number of rows to return (1-500)"
    )


def dump(record: Any) -> Dict[str, Any]:
    """Serialize an analysis record for a response model"""
    return record.to_dict()
