"""Prometheus export endpoint contract tests.

Checks that the scrape endpoint is reachable and exposes the expected
metric names. Absolute counter values are process-global and not checked.
"""

from fastapi.testclient import TestClient

from transform_copilot.api.main import app
from transform_copilot.api.observability.metrics import normalize_path


def test_prometheus_metrics_endpoint_returns_200():
    c = TestClient(app)
    c.get("/health/live")
    r = c.get("/metrics")
    assert r.status_code == 200
    assert "transform_http_requests_total" in r.text
    assert "transform_nodes_total" in r.text


def test_health_and_snapshot_counters(client):
    r1 = client.get("/health/live")
    assert r1.status_code == 200
    assert r1.json() == {"status": "ok"}

    data = client.get("/api/v1/metrics/snapshot").json()["counters"]
    assert data.get("health_live", 0) == 1


def test_readiness(client, monkeypatch, tmp_path):
    monkeypatch.setenv("TRANSFORM_PROFILES_DIR", str(tmp_path))
    r = client.get("/api/v1/health/ready")
    assert r.status_code == 200
    assert r.json() == {"status": "ready", "profiles_dir": str(tmp_path)}

    not_a_dir = tmp_path / "profiles.yml"
    not_a_dir.write_text("x: 1\n", encoding="utf-8")
    monkeypatch.setenv("TRANSFORM_PROFILES_DIR", str(not_a_dir))
    r = client.get("/api/v1/health/ready")
    assert r.status_code == 503
    assert r.json()["problems"] == [f"profiles_dir_not_a_directory:{not_a_dir}"]


def test_normalize_path():
    assert normalize_path("/api/v1/projects/parse") == "/api/v1/projects/parse"
    assert normalize_path("/items/42") == "/items/:id"
    assert normalize_path("/api/v1/projects/lineage/extra/bits") == "/api/v1/projects/lineage/:rest"
    assert normalize_path("") == "/"


def test_readiness_reports_bad_settings(client, monkeypatch, tmp_path):
    monkeypatch.setenv("TRANSFORM_PROFILES_DIR", str(tmp_path))
    monkeypatch.setenv("TRANSFORM_THREADS", "many")
    r = client.get("/api/v1/health/ready")
    assert r.status_code == 503
    problems = r.json()["problems"]
    assert len(problems) == 1 and problems[0].startswith("invalid_settings:TRANSFORM_THREADS")
