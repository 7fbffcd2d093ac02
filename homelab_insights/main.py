"""Main FastAPI application for Homelab Insights"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .capacity import RESOURCES
from .config import settings
from .engine import InsightAggregator
from .exceptions import (
    InsightsException,
    InsightNotFoundException,
    UnknownResourceException,
    insights_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .metrics_store import SQLiteMetricsStore
from .middleware import RequestLoggingMiddleware
from .models import (
    AnomalyReportResponse,
    CapacityResponse,
    CostReportResponse,
    DiskPredictionModel,
    DismissResponse,
    GenerateInsightsResponse,
    HealthResponse,
    HistoryParams,
    InsightListResponse,
    SampleBatchRequest,
    SampleBatchResponse,
    TrendsResponse,
    dump,
)
from .persistence import SQLiteInsightsStore
from .records import utc_now
from .scheduler import InsightScheduler
from .structured_logger import configure_logging
from .summarizer import build_summarizer
from . import metrics as prom_metrics

logger = logging.getLogger("homelab_insights")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire stores, aggregator and scheduler for the application's lifetime"""
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    logger.info(f"Homelab Insights v{__version__} starting...")

    metrics_store = SQLiteMetricsStore(settings.METRICS_DB_PATH)
    insights_store = SQLiteInsightsStore(settings.INSIGHTS_DB_PATH)
    summarizer = build_summarizer(settings)
    aggregator = InsightAggregator(
        reader=metrics_store,
        persistence=insights_store,
        summarizer=summarizer,
        config=settings,
    )
    scheduler = InsightScheduler(
        aggregator,
        interval_seconds=settings.INSIGHTS_INTERVAL_SECONDS,
        retention_days=settings.HISTORY_RETENTION_DAYS,
        metrics_store=metrics_store,
    )

    app.state.metrics_store = metrics_store
    app.state.insights_store = insights_store
    app.state.aggregator = aggregator
    app.state.scheduler = scheduler

    logger.info(f"Summarizer: {summarizer.name if summarizer else 'disabled'}")
    if settings.SCHEDULER_ENABLED:
        await scheduler.start()

    yield

    logger.info("Homelab Insights shutting down...")
    await scheduler.stop()


app = FastAPI(
    title="Homelab Insights",
    description="Anomaly, capacity, disk risk, trend and cost insights for a home lab",
    version=__version__,
    lifespan=lifespan,
)

app.add_exception_handler(InsightsException, insights_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_aggregator(request: Request) -> InsightAggregator:
    return request.app.state.aggregator


def get_insights_store(request: Request) -> SQLiteInsightsStore:
    return request.app.state.insights_store


def get_metrics_store(request: Request) -> SQLiteMetricsStore:
    return request.app.state.metrics_store


@app.get("/", tags=["root"])
async def root():
    """Root endpoint"""
    return {
        "name": "Homelab Insights",
        "version": __version__,
        "status": "running",
        "endpoints": [
            "/health",
            "/metrics",
            "/v1/insights",
            "/v1/insights/generate (POST)",
            "/v1/insights/{insight_id}/dismiss (POST)",
            "/v1/anomalies",
            "/v1/anomalies/history",
            "/v1/capacity",
            "/v1/disks/predictions",
            "/v1/disks/{disk_name}/prediction",
            "/v1/trends",
            "/v1/cost",
            "/v1/samples (POST)",
        ],
    }


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request):
    """Health check endpoint"""
    aggregator: InsightAggregator = request.app.state.aggregator
    scheduler: InsightScheduler = request.app.state.scheduler
    report = settings.get_config_report()

    services = {
        "aggregator": aggregator.state.value,
        "scheduler": "running" if scheduler.running else "stopped",
        "summarizer": aggregator.summarizer.name if aggregator.summarizer else "disabled",
    }
    if aggregator.last_report and aggregator.last_report.failures:
        services["last_cycle"] = "partial"
    elif aggregator.last_report:
        services["last_cycle"] = "complete"

    return HealthResponse(
        status="degraded" if report["config_issues"] or services.get("last_cycle") == "partial" else "healthy",
        version=__version__,
        services=services,
    )


@app.get("/metrics", tags=["monitoring"])
async def metrics_endpoint():
    """
    Prometheus metrics endpoint.

    Exposes HTTP request metrics, cycle outcomes, analyzer timings and
    summarizer calls in Prometheus exposition format.
    """
    return prom_metrics.get_metrics_response()


# =============================================================================
# Insights
# =============================================================================

@app.get("/v1/insights", response_model=InsightListResponse, tags=["insights"])
async def list_insights(
    type: Optional[str] = Query(None, description="Only insights of this type"),
    include_dismissed: bool = Query(False),
    store: SQLiteInsightsStore = Depends(get_insights_store),
):
    """Active (unexpired) insights, most severe first"""
    insights = store.list_insights(include_dismissed=include_dismissed, insight_type=type)
    return InsightListResponse(insights=[dump(i) for i in insights], total=len(insights))


@app.post("/v1/insights/generate", response_model=GenerateInsightsResponse, tags=["insights"])
async def generate_insights(aggregator: InsightAggregator = Depends(get_aggregator)):
    """Run a generation cycle now and return its insights and failed analyzers"""
    report = await aggregator.generate()
    return report.to_dict()


@app.post("/v1/insights/{insight_id}/dismiss", response_model=DismissResponse, tags=["insights"])
async def dismiss_insight(insight_id: str, store: SQLiteInsightsStore = Depends(get_insights_store)):
    """Hide an insight until it is replaced in a later window"""
    if not store.dismiss_insight(insight_id):
        raise InsightNotFoundException(insight_id)
    return DismissResponse(success=True, insight_id=insight_id)


# =============================================================================
# Analyzer accessors
# =============================================================================

@app.get("/v1/anomalies", response_model=AnomalyReportResponse, tags=["analysis"])
async def detect_anomalies(
    window_hours: int = Query(24, ge=1, le=24 * 30, description="Look-back window in hours"),
    aggregator: InsightAggregator = Depends(get_aggregator),
):
    report = await aggregator.detect_anomalies(window_hours)
    return dump(report)


@app.get("/v1/anomalies/history", tags=["analysis"])
async def anomaly_history(
    hours: int = Query(24 * 7, ge=1, le=24 * 90),
    params: HistoryParams = Depends(),
    store: SQLiteInsightsStore = Depends(get_insights_store),
):
    since = utc_now() - timedelta(hours=hours)
    return {"anomalies": store.get_anomaly_history(since=since, limit=params.limit)}


@app.get("/v1/capacity", response_model=CapacityResponse, tags=["analysis"])
async def predict_capacity(
    resource: Optional[str] = Query(None, description=f"One of {', '.join(RESOURCES)}"),
    aggregator: InsightAggregator = Depends(get_aggregator),
):
    if resource is not None and resource not in RESOURCES:
        raise UnknownResourceException(resource, RESOURCES)
    predictions = await aggregator.predict_capacity(resource)
    return CapacityResponse(predictions=[dump(p) for p in predictions])


@app.get("/v1/capacity/history", tags=["analysis"])
async def capacity_history(
    resource: Optional[str] = Query(None),
    params: HistoryParams = Depends(),
    store: SQLiteInsightsStore = Depends(get_insights_store),
):
    return {"predictions": store.get_capacity_history(resource=resource, limit=params.limit)}


@app.get("/v1/disks/predictions", tags=["analysis"])
async def disk_predictions(store: SQLiteInsightsStore = Depends(get_insights_store)):
    """Latest stored prediction for every disk, riskiest first"""
    return {"predictions": store.latest_disk_predictions()}


@app.get("/v1/disks/{disk_name}/prediction", response_model=DiskPredictionModel, tags=["analysis"])
async def predict_disk_failure(disk_name: str, aggregator: InsightAggregator = Depends(get_aggregator)):
    assessment = await aggregator.predict_disk_failure(disk_name)
    return dump(assessment)


@app.get("/v1/trends", response_model=TrendsResponse, tags=["analysis"])
async def analyze_trends(
    period_days: int = Query(30, ge=7, le=365, description="Analysis period in days"),
    aggregator: InsightAggregator = Depends(get_aggregator),
):
    trends = await aggregator.analyze_trends(period_days)
    return TrendsResponse(trends=[dump(t) for t in trends])


@app.get("/v1/cost", response_model=CostReportResponse, tags=["analysis"])
async def cost_optimizations(aggregator: InsightAggregator = Depends(get_aggregator)):
    report = await aggregator.generate_cost_optimizations()
    return dump(report)


# =============================================================================
# Ingest
# =============================================================================

@app.post("/v1/samples", response_model=SampleBatchResponse, tags=["ingest"])
async def ingest_samples(
    batch: SampleBatchRequest,
    store: SQLiteMetricsStore = Depends(get_metrics_store),
):
    """Store a batch of metric samples from a collector"""
    now = utc_now()
    accepted = store.record_many(
        (s.metric, s.dimension, s.timestamp or now, s.value) for s in batch.samples
    )
    return SampleBatchResponse(accepted=accepted)
