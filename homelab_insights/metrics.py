"""Prometheus metrics for Homelab Insights"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Request metrics
http_requests_total = Counter(
    'homelab_insights_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'homelab_insights_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Generation cycle metrics
insight_cycles_total = Counter(
    'homelab_insights_cycles_total',
    'Total insight generation cycles',
    ['outcome']  # complete, partial
)

analyzer_duration_seconds = Histogram(
    'homelab_insights_analyzer_duration_seconds',
    'Analyzer pass duration in seconds',
    ['analyzer']
)

analyzer_failures_total = Counter(
    'homelab_insights_analyzer_failures_total',
    'Analyzer passes that raised',
    ['analyzer']
)

insights_generated_total = Counter(
    'homelab_insights_generated_total',
    'Insights produced by generation cycles',
    ['type', 'severity']
)

# Summarizer metrics
summarizer_requests_total = Counter(
    'homelab_insights_summarizer_requests_total',
    'Total summarizer requests',
    ['provider', 'status']  # success, error, timeout, unavailable
)

# State
active_insights = Gauge(
    'homelab_insights_active_insights',
    'Insights stored by the latest generation cycle'
)


def track_request(method: str, endpoint: str, status_code: int, duration_ms: float):
    """Track an HTTP request"""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status_code=str(status_code)
    ).inc()
    http_request_duration_seconds.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_ms / 1000)


def track_analyzer(analyzer: str, duration_ms: float, success: bool = True):
    """Track one analyzer pass"""
    analyzer_duration_seconds.labels(analyzer=analyzer).observe(duration_ms / 1000)
    if not success:
        analyzer_failures_total.labels(analyzer=analyzer).inc()


def track_cycle(insights: list, failed: bool = False):
    """Track a finished generation cycle and the insights it produced"""
    insight_cycles_total.labels(outcome='partial' if failed else 'complete').inc()
    for insight in insights:
        insights_generated_total.labels(type=insight.type, severity=insight.severity).inc()
    active_insights.set(len(insights))


def track_summarizer(provider: str, status: str):
    """Track a summarizer call"""
    summarizer_requests_total.labels(provider=provider, status=status).inc()


def get_metrics_response() -> Response:
    """Generate Prometheus metrics response"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
