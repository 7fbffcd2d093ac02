"""Tests for Prometheus metrics module

Cycle outcomes, analyzer failures and summarizer fallbacks are the signals
an operator alerts on, so each tracking function is checked here.
"""

from unittest.mock import Mock, patch

from homelab_insights import metrics
from homelab_insights.records import Insight

from conftest import NOW


def make_insight(insight_type, severity):
    return Insight(
        id=f"{insight_type}-x-1",
        type=insight_type,
        title="t",
        summary="s",
        details="d",
        severity=severity,
        actionable=False,
        actions=[],
        generated_at=NOW,
        expires_at=None,
    )


class TestMetricsTracking:
    """Test metrics tracking functions"""

    def test_track_request_increments_counter(self):
        with patch.object(metrics.http_requests_total, 'labels') as mock_labels:
            mock_counter = Mock()
            mock_labels.return_value = mock_counter

            metrics.track_request("GET", "/v1/insights", 200, 150.0)

            mock_labels.assert_called_once_with(method="GET", endpoint="/v1/insights", status_code="200")
            mock_counter.inc.assert_called_once()

    def test_track_request_converts_ms_to_seconds(self):
        with patch.object(metrics.http_request_duration_seconds, 'labels') as mock_labels:
            mock_histogram = Mock()
            mock_labels.return_value = mock_histogram

            metrics.track_request("POST", "/v1/insights/generate", 200, 500.0)

            mock_histogram.observe.assert_called_once_with(0.5)

    def test_track_analyzer_success(self):
        with patch.object(metrics.analyzer_duration_seconds, 'labels') as mock_duration, \
                patch.object(metrics.analyzer_failures_total, 'labels') as mock_failures:
            metrics.track_analyzer("capacity", 250.0)

            mock_duration.assert_called_once_with(analyzer="capacity")
            mock_duration.return_value.observe.assert_called_once_with(0.25)
            mock_failures.assert_not_called()

    def test_track_analyzer_failure(self):
        with patch.object(metrics.analyzer_failures_total, 'labels') as mock_failures:
            metrics.track_analyzer("disk", 10.0, success=False)

            mock_failures.assert_called_once_with(analyzer="disk")
            mock_failures.return_value.inc.assert_called_once()

    def test_track_cycle(self):
        insights = [make_insight("anomaly", "critical"), make_insight("cost", "info")]

        with patch.object(metrics.insight_cycles_total, 'labels') as mock_cycles, \
                patch.object(metrics.insights_generated_total, 'labels') as mock_generated, \
                patch.object(metrics.active_insights, 'set') as mock_set:
            metrics.track_cycle(insights, failed=True)

            mock_cycles.assert_called_once_with(outcome="partial")
            assert mock_generated.call_count == 2
            mock_generated.assert_any_call(type="anomaly", severity="critical")
            mock_set.assert_called_once_with(2)

    def test_track_summarizer(self):
        with patch.object(metrics.summarizer_requests_total, 'labels') as mock_labels:
            metrics.track_summarizer("ollama", "timeout")

            mock_labels.assert_called_once_with(provider="ollama", status="timeout")
            mock_labels.return_value.inc.assert_called_once()


class TestMetricsResponse:

    def test_exposition_format(self):
        metrics.track_summarizer("openai", "success")

        response = metrics.get_metrics_response()

        assert response.media_type.startswith("text/plain")
        assert b"homelab_insights_summarizer_requests_total" in response.body
