from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from copilot import server
from copilot.services.registry import RunRegistry
from tests.utils import FakeConnector


@pytest.fixture
def fake_registry(monkeypatch) -> RunRegistry:
    registry = RunRegistry(connector_factory=FakeConnector)
    monkeypatch.setattr(server, "registry", registry)
    return registry


@pytest.fixture
def client(fake_registry) -> TestClient:
    with TestClient(server.app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["active_runs"] == 0
    assert "gemini_key_configured" in body


def test_runs_listing_starts_empty(client: TestClient) -> None:
    assert client.get("/runs").json() == {}


def test_unknown_run_is_404(client: TestClient) -> None:
    resp = client.get("/runs/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "run not found"}


def test_ping_pong(client: TestClient) -> None:
    with client.websocket_connect("/ws/live") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_unknown_mode_is_rejected(client: TestClient) -> None:
    with client.websocket_connect("/ws/live") as ws:
        ws.send_json({"type": "start", "mode": "triple"})
        msg = ws.receive_json()
        assert msg["type"] == "error"
        assert "triple" in msg["message"]


def test_start_and_stop_run(client: TestClient, fake_registry: RunRegistry) -> None:
    with client.websocket_connect("/ws/live") as ws:
        ws.send_json({"type": "start"})

        statuses = [ws.receive_json() for _ in range(3)]
        assert [m["data"]["status"] for m in statuses] == ["capturing", "connecting", "analyzing"]

        started = ws.receive_json()
        assert started["type"] == "started"
        run_id = started["data"]["run_id"]
        assert started["data"]["status"] == "analyzing"

        assert client.get("/runs").json()[run_id]["status"] == "analyzing"
        assert client.get(f"/runs/{run_id}").json()["active"] is True

        ws.send_json({"type": "start"})
        assert ws.receive_json() == {"type": "error", "message": "Run already active"}

        ws.send_json({"type": "stop"})
        assert ws.receive_json()["data"]["status"] == "stopping"
        assert ws.receive_json()["data"]["status"] == "idle"
        stopped = ws.receive_json()
        assert stopped["type"] == "stopped"
        assert stopped["data"]["status"] == "idle"

    assert fake_registry.active_count == 0


def test_failed_run_frees_the_slot(client: TestClient, fake_registry: RunRegistry) -> None:
    with client.websocket_connect("/ws/live") as ws:
        ws.send_json({"type": "start"})
        for _ in range(3):
            ws.receive_json()
        run_id = ws.receive_json()["data"]["run_id"]
        run = fake_registry.get(run_id)

        # Reconnection ran out: the run reports a fatal error on its own
        client.portal.call(run._fail, "Transcript service closed unexpectedly: gone")

        assert ws.receive_json() == {
            "type": "error",
            "message": "Transcript service closed unexpectedly: gone",
        }
        assert ws.receive_json()["data"]["status"] == "error"
        assert fake_registry.active_count == 0

        ws.send_json({"type": "start"})
        statuses = [ws.receive_json()["data"]["status"] for _ in range(3)]
        assert statuses == ["capturing", "connecting", "analyzing"]
        assert ws.receive_json()["type"] == "started"

        ws.send_json({"type": "stop"})
        for _ in range(3):
            ws.receive_json()

    assert fake_registry.active_count == 0
