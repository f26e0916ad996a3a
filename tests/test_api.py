from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import main
import worker
from config import SimulationTiming
from state import utcnow
from worker import PHASES

START_ENDPOINTS = [
    ("/api/driver-scan", "Driver scan initiated"),
    ("/api/driver-update", "Driver update initiated"),
    ("/api/windows-update", "Windows Update scan initiated"),
]


@pytest.mark.parametrize("path,message", START_ENDPOINTS)
def test_start_endpoints_acknowledge(client, store, path, message):
    resp = client.post(path)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "started"
    assert body["message"] == message
    assert isinstance(body["sessionId"], str) and body["sessionId"]
    assert body["timestamp"]
    assert body["sessionId"] in store


def test_settings_stored_verbatim(client, store):
    settings = {"includeOptional": True, "categories": ["display", "audio"], "nested": {"a": 1}}
    session_id = client.post("/api/driver-update", json=settings).json()["sessionId"]
    assert store.get(session_id).settings == settings


def test_driver_scan_scenario(slow_client):
    session_id = slow_client.post("/api/driver-scan").json()["sessionId"]
    body = slow_client.get(f"/api/status/{session_id}").json()
    assert body["sessionId"] == session_id
    assert body["status"] in ("Starting", PHASES[0])
    assert body["progress"] < 100
    assert "results" not in body
    assert "success" not in body


def test_driver_scan_completes(client, store, poll_until_terminal):
    session_id = client.post("/api/driver-scan", json={}).json()["sessionId"]
    seen = poll_until_terminal(client, session_id)

    final = seen[-1]
    assert final["status"] == "Completed"
    assert final["progress"] == 100
    assert final["success"] is True
    devices = final["results"]["devices"]
    assert devices
    assert final["results"]["systemInfo"]["totalDevices"] == len(devices)
    assert final["startTime"] == store.get(session_id).startTime.isoformat()
    assert final["elapsedTime"] >= 0


def test_progress_is_monotonic_and_bounded(client, poll_until_terminal):
    session_id = client.post("/api/windows-update").json()["sessionId"]
    progress = [body["progress"] for body in poll_until_terminal(client, session_id)]
    assert progress == sorted(progress)
    assert all(0 <= p <= 100 for p in progress)


def test_terminal_reads_are_idempotent(client, poll_until_terminal):
    session_id = client.post("/api/driver-update").json()["sessionId"]
    poll_until_terminal(client, session_id)

    first = client.get(f"/api/status/{session_id}").json()
    second = client.get(f"/api/status/{session_id}").json()
    assert first["results"] == second["results"]
    assert first["success"] == second["success"]
    assert len(first["results"]["devicesUpdated"]) == 3


def test_concurrent_sessions_are_independent(slow_client, store):
    first = slow_client.post("/api/driver-scan").json()["sessionId"]
    second = slow_client.post("/api/driver-scan").json()["sessionId"]
    assert first != second

    slow_client.post(f"/api/cancel/{first}")
    scheduler = slow_client.app.state.scheduler
    assert store.get(first).status == "Cancelled"
    assert store.get(second).status != "Cancelled"
    assert not scheduler.is_running(first)
    assert scheduler.is_running(second)


def test_status_unknown_session(client):
    resp = client.get("/api/status/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Session not found"}


def test_cancel_unknown_session(client):
    resp = client.post("/api/cancel/does-not-exist")
    assert resp.status_code == 404
    assert "error" in resp.json()


def test_cancel_running_session(slow_client, store):
    session_id = slow_client.post("/api/driver-scan").json()["sessionId"]
    resp = slow_client.post(f"/api/cancel/{session_id}")
    assert resp.status_code == 200
    assert resp.json() == {
        "sessionId": session_id,
        "status": "cancelled",
        "message": "Operation cancelled successfully",
    }

    body = slow_client.get(f"/api/status/{session_id}").json()
    assert body["status"] == "Cancelled"
    assert body["progress"] < 100
    assert "results" not in body
    assert not slow_client.app.state.scheduler.is_running(session_id)


def test_cancel_completed_session_keeps_results(client, poll_until_terminal):
    session_id = client.post("/api/driver-scan").json()["sessionId"]
    before = poll_until_terminal(client, session_id)[-1]

    resp = client.post(f"/api/cancel/{session_id}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"

    after = client.get(f"/api/status/{session_id}").json()
    assert after["status"] == "Completed"
    assert after["results"] == before["results"]
    assert after["success"] is True


def test_failed_session_reports_error(client, monkeypatch, poll_until_terminal):
    def explode(session, rng=None):
        raise RuntimeError("update catalog unavailable")

    monkeypatch.setitem(worker.RESULT_BUILDERS, "windows-update", explode)
    session_id = client.post("/api/windows-update").json()["sessionId"]
    final = poll_until_terminal(client, session_id)[-1]

    assert final["status"] == "Failed"
    assert final["success"] is False
    assert final["error"] == "update catalog unavailable"
    assert "results" not in final


def test_expired_session_returns_404(client, store, poll_until_terminal):
    session_id = client.post("/api/driver-scan").json()["sessionId"]
    poll_until_terminal(client, session_id)
    store.get(session_id).startTime = utcnow() - timedelta(hours=1)

    assert client.app.state.reaper.sweep() == 1
    assert client.get(f"/api/status/{session_id}").status_code == 404


def test_health(client):
    client.post("/api/driver-scan")
    client.post("/api/windows-update")
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["sessions"] == 2
    assert body["uptime"] >= 0
    assert body["timestamp"]


def test_system_info(client):
    resp = client.get("/api/system-info")
    assert resp.status_code == 200
    body = resp.json()
    assert {"computerName", "operatingSystem", "totalRAM", "processor", "totalDevices"} <= body.keys()


def test_system_info_failure_is_500(client, monkeypatch):
    def broken():
        raise OSError("no /proc")

    monkeypatch.setattr(main, "get_system_info", broken)
    resp = client.get("/api/system-info")
    assert resp.status_code == 500
    assert resp.json() == {"error": "no /proc"}


def test_invalid_body_is_rejected(client, store):
    resp = client.post("/api/driver-scan", json=[1, 2, 3])
    assert resp.status_code == 422
    assert "error" in resp.json()
    assert len(store) == 0


def test_landing_page(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")


def test_cors_is_permissive(client):
    resp = client.get("/health", headers={"Origin": "http://example.com"})
    assert resp.headers["access-control-allow-origin"] == "*"


def test_unexpected_error_is_500_with_cors_headers(store):
    app = main.create_app(store=store, timing=SimulationTiming(start_delay=0.0))

    @app.get("/api/explode")
    def explode():
        raise RuntimeError("kaboom")

    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/explode", headers={"Origin": "http://example.com"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "kaboom"}
    assert resp.headers["access-control-allow-origin"] == "*"
