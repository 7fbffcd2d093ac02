"""API tests against the full application with per-test stores"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from homelab_insights import metrics_store as m
from homelab_insights.engine import InsightAggregator
from homelab_insights.main import app
from homelab_insights.metrics_store import SQLiteMetricsStore
from homelab_insights.persistence import SQLiteInsightsStore


@pytest.fixture
def client(tmp_path, config):
    """Run the lifespan, then swap in stores under tmp_path"""
    with TestClient(app) as test_client:
        metrics_store = SQLiteMetricsStore(str(tmp_path / "metrics.db"))
        insights_store = SQLiteInsightsStore(str(tmp_path / "insights.db"))
        app.state.metrics_store = metrics_store
        app.state.insights_store = insights_store
        app.state.aggregator = InsightAggregator(metrics_store, insights_store, config=config)
        yield test_client


def push_memory_pressure(client, percent=97.0):
    now = datetime.now(timezone.utc)
    samples = [
        {"metric": m.RAM_PERCENT, "value": percent, "timestamp": (now - timedelta(minutes=10 * i)).isoformat()}
        for i in range(6)
    ]
    response = client.post("/v1/samples", json={"samples": samples})
    assert response.status_code == 200
    return response


class TestRootAndHealth:

    def test_root_returns_status(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Homelab Insights"
        assert data["status"] == "running"
        assert "/v1/insights" in data["endpoints"]

    def test_health_reports_services(self, client):
        data = client.get("/health").json()

        assert data["services"]["aggregator"] == "idle"
        assert data["services"]["scheduler"] == "stopped"
        assert data["services"]["summarizer"] == "disabled"
        # scheduler is disabled in tests, which is a reported config issue
        assert data["status"] == "degraded"

    def test_health_after_cycle(self, client):
        client.post("/v1/insights/generate")
        assert client.get("/health").json()["services"]["last_cycle"] == "complete"

    def test_metrics_endpoint(self, client):
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "homelab_insights_http_requests_total" in response.text


class TestIngest:

    def test_accepts_batch(self, client):
        response = push_memory_pressure(client)
        assert response.json() == {"accepted": 6}
        assert len(app.state.metrics_store.query(m.RAM_PERCENT)) == 6

    def test_timestamp_defaults_to_now(self, client):
        client.post("/v1/samples", json={"samples": [{"metric": m.CPU_PERCENT, "value": 12.5}]})
        assert app.state.metrics_store.query(m.CPU_PERCENT)[0].value == 12.5

    def test_empty_batch_rejected(self, client):
        response = client.post("/v1/samples", json={"samples": []})
        assert response.status_code == 422

    def test_blank_metric_rejected(self, client):
        response = client.post("/v1/samples", json={"samples": [{"metric": "", "value": 1.0}]})
        assert response.status_code == 422


class TestInsights:

    def test_empty(self, client):
        assert client.get("/v1/insights").json() == {"insights": [], "total": 0}

    def test_generate_list_and_dismiss(self, client):
        push_memory_pressure(client)

        generated = client.post("/v1/insights/generate").json()

        assert generated["state"] == "done"
        assert generated["partial"] is False
        assert [i["severity"] for i in generated["insights"]] == ["critical"]
        insight_id = generated["insights"][0]["id"]

        listed = client.get("/v1/insights").json()
        assert listed["total"] == 1
        assert listed["insights"][0]["id"] == insight_id

        assert client.post(f"/v1/insights/{insight_id}/dismiss").json()["success"] is True
        assert client.get("/v1/insights").json()["total"] == 0
        assert client.get("/v1/insights", params={"include_dismissed": True}).json()["total"] == 1

    def test_filter_by_type(self, client):
        push_memory_pressure(client)
        client.post("/v1/insights/generate")

        assert client.get("/v1/insights", params={"type": "cost"}).json()["total"] == 0
        assert client.get("/v1/insights", params={"type": "anomaly"}).json()["total"] == 1

    def test_dismiss_unknown_insight(self, client):
        response = client.post("/v1/insights/nope/dismiss")

        assert response.status_code == 404
        assert response.json()["type"] == "InsightNotFoundException"


class TestAnalysisEndpoints:

    def test_anomalies(self, client):
        push_memory_pressure(client)

        data = client.get("/v1/anomalies", params={"window_hours": 6}).json()

        assert data["detected"] is True
        assert data["anomalies"][0]["metric"] == "Memory Usage"
        assert data["summary"] == "Detected 1 anomalies in system metrics."

    def test_anomaly_history_after_cycle(self, client):
        push_memory_pressure(client)
        client.post("/v1/insights/generate")

        data = client.get("/v1/anomalies/history", params={"hours": 1}).json()

        assert len(data["anomalies"]) == 1
        assert data["anomalies"][0]["severity"] == "critical"

    def test_history_limit_is_validated(self, client):
        assert client.get("/v1/anomalies/history", params={"limit": 0}).status_code == 422

    def test_capacity_without_history(self, client):
        assert client.get("/v1/capacity").json() == {"predictions": []}

    def test_capacity_unknown_resource(self, client):
        response = client.get("/v1/capacity", params={"resource": "gpu"})

        assert response.status_code == 400
        assert "storage" in response.json()["details"]["supported"]

    def test_capacity_history(self, client):
        assert client.get("/v1/capacity/history", params={"resource": "storage"}).json() == {"predictions": []}

    def test_disk_prediction_is_recorded(self, client):
        data = client.get("/v1/disks/sda/prediction").json()

        assert data["disk_name"] == "sda"
        assert data["contributing_factors"] == ["Insufficient historical data"]

        stored = client.get("/v1/disks/predictions").json()["predictions"]
        assert [p["disk_name"] for p in stored] == ["sda"]

    def test_trends_period_is_validated(self, client):
        assert client.get("/v1/trends", params={"period_days": 3}).status_code == 422
        assert client.get("/v1/trends", params={"period_days": 7}).json() == {"trends": []}

    def test_cost(self, client):
        data = client.get("/v1/cost").json()

        assert data["opportunities"] == []
        assert data["total_potential_savings_usd"] == 0
        assert data["current_state"]["estimated_power_watts"] == 85
