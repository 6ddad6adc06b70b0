"""Tests for the HTTP read path."""
import pytest
from fastapi.testclient import TestClient

from src.config import Config
from src.main import ExporterService
from src.store import InMemorySnapshotStore


@pytest.fixture
def service():
    config = Config(**{"store": {"backend": "memory"}, "flush": {"interval_s": 60}})
    return ExporterService(config, store=InMemorySnapshotStore())


@pytest.fixture
def client(service):
    return TestClient(service.control_api.app)


def test_metrics_endpoint_renders_flushed_snapshots(service, client):
    service.collector.increment_counter("http_requests", 3, {"route": "/a"})
    service.collector.record_histogram("latency_ms", 12)
    service.engine.flush()

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; version=0.0.4; charset=utf-8"
    assert "# TYPE http_requests counter" in response.text
    assert 'http_requests{route="/a"} 3.0' in response.text
    assert "latency_ms_count 1.0" in response.text


def test_metrics_endpoint_is_not_cached(service, client):
    assert client.get("/metrics").text == ""

    service.collector.set_gauge("depth", 2)
    service.engine.flush()

    assert "depth 2.0" in client.get("/metrics").text


def test_render_failure_returns_500(service, client, monkeypatch):
    def broken_scan(pattern):
        raise RuntimeError("boom")

    monkeypatch.setattr(service.store, "scan_keys", broken_scan)
    service.collector.increment_counter("hits", 1)

    assert client.get("/metrics").status_code == 500
    assert service.collector.counter_value("hits") == 1


def test_json_endpoint(service, client):
    service.collector.set_gauge("depth", 2)
    service.engine.flush()

    body = client.get("/metrics/json").json()

    assert body["count"] == 1
    assert body["metrics"]["metrics:gauge:depth"]["value"] == 2


def test_force_flush_and_status(service, client):
    service.collector.increment_counter("hits", 1, {"route": "/a"})
    service.collector.increment_counter("hits", 1, {"route": "/b"})

    flushed = client.post("/control/flush").json()
    assert flushed["counters"] == 2
    assert flushed["written"] is True

    status = client.get("/status").json()
    assert status["flush_count"] == 1
    assert status["last_flush"]["counters"] == 2
    assert status["config"]["interval_s"] == 60


def test_status_counts_live_series(service, client):
    service.collector.set_gauge("depth", 1, {"queue": "a"})
    service.collector.set_gauge("depth", 1, {"queue": "b"})

    assert client.get("/status").json()["series"] == {"depth": 2}


def test_healthz(client):
    body = client.get("/healthz").json()
    assert body["status"] == "healthy"
    assert body["store"] is True


def test_selfmetrics(service, client):
    service.engine.flush()
    response = client.get("/selfmetrics")

    assert response.status_code == 200
    assert 'snapshot_exporter_flushes_total{outcome="empty"} 1.0' in response.text


def test_log_level(client):
    assert client.post("/control/loglevel", json={"level": "debug"}).json()["level"] == "DEBUG"
    assert client.post("/control/loglevel", json={"level": "verbose"}).status_code == 400


def test_generate_records_sample_metrics(service, client):
    response = client.post("/control/generate")
    assert response.status_code == 200
    assert response.json()["status"] == "test_metrics_generated"

    client.post("/control/flush")
    text = client.get("/metrics").text

    assert 'test_requests_total{method="GET",status="200"} 1.0' in text
    assert 'test_active_connections{service="api"} 42.0' in text
    assert 'test_request_duration_seconds_count{method="GET"} 1.0' in text
    assert 'test_request_duration_seconds_sum{method="GET"} 0.125' in text
