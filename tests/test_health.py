from fastapi.testclient import TestClient

from zenux_api.db import engine as db_engine
from zenux_api.main import app
from zenux_api.services.observability import emit_audit_event, record_metric


def test_liveness_and_service_info():
    client = TestClient(app)
    assert client.get("/health/live").json() == {"status": "alive"}
    assert client.get("/health").json()["status"] == "ok"


def test_readiness_checks_database(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'ready.db'}")
    monkeypatch.setattr(db_engine, "_engine", None)
    monkeypatch.setattr(db_engine, "_session_factory", None)

    response = TestClient(app).get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"database": "ok"}}


def test_readiness_reports_unreachable_database(monkeypatch):
    async def unhealthy() -> bool:
        return False

    monkeypatch.setattr("zenux_api.main.check_db_health", unhealthy)

    response = TestClient(app).get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"database": "unreachable"}


def test_internal_metrics_and_audit():
    record_metric("relay.chat", 12.0, success=True, ttfb_ms=4.0)
    record_metric("relay.chat", 30.0, success=False, failure_code="upstream_timeout")
    emit_audit_event("auth.unverified_user_id", user_id="u-1")
    client = TestClient(app)

    metrics = client.get("/internal/metrics").json()["metrics"]
    events = client.get("/internal/audit", params={"limit": 5}).json()["events"]

    assert metrics["relay.chat"]["count"] == 2
    assert metrics["relay.chat"]["avg_ttfb_ms"] == 4.0
    assert metrics["relay.chat"]["failure_codes"] == {"upstream_timeout": 1}
    assert [(e["event"], e["user_id"]) for e in events] == [("auth.unverified_user_id", "u-1")]


def test_audit_buffer_is_bounded(monkeypatch):
    monkeypatch.setenv("AUDIT_EVENT_BUFFER", "2")
    for i in range(3):
        emit_audit_event("auth.unverified_user_id", user_id=f"u-{i}")

    events = TestClient(app).get("/internal/audit").json()["events"]

    assert [e["user_id"] for e in events] == ["u-1", "u-2"]
