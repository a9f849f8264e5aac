"""Unit tests for the FastAPI control service."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from fakes import FakeDeviceLink, never, respond
from lockcycle.link import DISCONNECTED
from lockcycle.server import create_app


def _poll(
    client: TestClient, path: str, until: Callable[[Any], bool], timeout: float = 5.0
) -> Any:
    deadline = time.monotonic() + timeout
    while True:
        response = client.get(path)
        data = response.json() if response.status_code == 200 else None
        if data is not None and until(data):
            return data
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} did not reach the expected state: {data}")
        time.sleep(0.02)


@pytest.fixture
def client(bench_file: Path) -> Iterator[TestClient]:
    """A client for a service on the fast simulated bench."""
    with TestClient(create_app(bench_file)) as test_client:
        yield test_client


def _finished(client: TestClient) -> dict[str, Any]:
    return _poll(client, "/run/status", lambda d: d["ended_at"] is not None)


class TestHealthAndStatus:
    """Tests for read-only service endpoints."""

    def test_health(self, client: TestClient) -> None:
        """Health reports the bench and the runner state."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "bench_id": "bench-test", "state": "idle"}

    def test_idle_status(self, client: TestClient) -> None:
        """Before any run the status is idle."""
        data = client.get("/run/status").json()

        assert data["state"] == "idle"
        assert data["run_id"] is None
        assert data["message"] == "Ready"


class TestRunControl:
    """Tests for starting and controlling runs."""

    def test_run_bench_configuration(self, client: TestClient) -> None:
        """POST /run without a body uses the bench test section."""
        response = client.post("/run")

        assert response.status_code == 200
        assert response.json()["target_cycles"] == 3
        data = _finished(client)
        assert data["state"] == "completed"
        assert data["current_cycle"] == 3
        assert data["progress"] == 100.0
        assert data["statistics"]["success_rate"] == 100.0
        assert data["ended_at"] is not None

    def test_run_with_request_body(self, client: TestClient) -> None:
        """A request body overrides the bench configuration."""
        body = {"target_cycles": 2, "inter_command_delay_ms": 0, "steps": ["lock"]}

        response = client.post("/run", json=body)

        assert response.status_code == 200
        data = _finished(client)
        assert data["current_cycle"] == 2

    def test_invalid_configuration(self, client: TestClient) -> None:
        """An out-of-range configuration is rejected with 422."""
        response = client.post("/run", json={"target_cycles": 0})

        assert response.status_code == 422
        assert client.get("/run/status").json()["state"] == "idle"

    def test_second_run_conflicts(self, client: TestClient) -> None:
        """Starting while a run exists is a 409 until reset."""
        client.post("/run", json={"target_cycles": 1000, "inter_command_delay_ms": 0})

        assert client.post("/run").status_code == 409

        assert client.post("/stop").status_code == 200
        _finished(client)
        assert client.post("/run").status_code == 409
        assert client.post("/reset").json()["state"] == "idle"
        assert client.post("/run").status_code == 200

    def test_pause_resume_stop(self, client: TestClient) -> None:
        """Pause, resume and stop drive the state machine."""
        client.post("/run", json={"target_cycles": 1000, "inter_command_delay_ms": 0})

        assert client.post("/pause").json()["state"] == "paused"
        assert client.post("/pause").status_code == 409
        assert client.post("/resume").json()["state"] == "running"
        assert client.post("/stop").json()["state"] == "stopped"

        data = _finished(client)
        assert data["state"] == "stopped"
        assert data["statistics"] is not None

    def test_controls_when_idle(self, client: TestClient) -> None:
        """Control endpoints without a run are conflicts."""
        for path in ("/pause", "/resume", "/stop", "/reset"):
            assert client.post(path).status_code == 409

    def test_disconnected_link(self) -> None:
        """Starting against a disconnected device is a 503."""
        app = create_app(link=FakeDeviceLink(connected=False))
        with TestClient(app) as test_client:
            assert test_client.get("/health").json()["status"] == "disconnected"

            response = test_client.post("/run", json={"target_cycles": 1})

        assert response.status_code == 503

    def test_no_bench_requires_body(self) -> None:
        """Without a bench file a request body is required."""
        with TestClient(create_app(link=FakeDeviceLink())) as test_client:
            assert test_client.post("/run").status_code == 422

    def test_shutdown_stops_active_run(self) -> None:
        """Closing the service stops a run that is still in flight."""
        link = FakeDeviceLink(default=never())
        with TestClient(create_app(link=link)) as test_client:
            test_client.post("/run", json={"target_cycles": 5, "response_timeout_ms": 100})

        assert link.listener_count(DISCONNECTED) == 0


class TestSessions:
    """Tests for the session history endpoints."""

    def _completed_run(self, client: TestClient) -> str:
        run_id = client.post("/run").json()["run_id"]
        _poll(client, f"/sessions/{run_id}", lambda d: d["status"] == "completed")
        return run_id

    def test_session_recorded(self, client: TestClient) -> None:
        """A finished run is listed with its attempts."""
        run_id = self._completed_run(client)

        sessions = client.get("/sessions").json()
        assert [s["id"] for s in sessions] == [run_id]
        assert sessions[0]["total_attempts"] == 3
        assert client.get("/sessions", params={"status": "stopped"}).json() == []

        attempts = client.get(f"/sessions/{run_id}/attempts").json()
        assert len(attempts) == 6
        assert {a["result"] for a in attempts} == {"success"}

    def test_export_csv(self, client: TestClient) -> None:
        """A session's attempts download as CSV."""
        run_id = self._completed_run(client)

        response = client.get(f"/sessions/{run_id}/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"test_{run_id}.csv" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0] == "session_id,attempt_number,action,result,response_time,error_message"
        assert len(lines) == 7

    def test_unknown_session(self, client: TestClient) -> None:
        """Unknown sessions are 404s."""
        assert client.get("/sessions/T404").status_code == 404
        assert client.get("/sessions/T404/attempts").status_code == 404
        assert client.get("/sessions/T404/export").status_code == 404
        assert client.delete("/sessions/T404").status_code == 404

    def test_delete_session(self, client: TestClient) -> None:
        """A finished session can be deleted."""
        run_id = self._completed_run(client)

        assert client.delete(f"/sessions/{run_id}").json() == {"deleted": run_id}
        assert client.get(f"/sessions/{run_id}").status_code == 404

    def test_delete_active_session_conflicts(self, client: TestClient) -> None:
        """The session of the active run cannot be deleted."""
        run_id = client.post(
            "/run", json={"target_cycles": 1000, "inter_command_delay_ms": 0}
        ).json()["run_id"]
        client.post("/pause")

        assert client.delete(f"/sessions/{run_id}").status_code == 409

    def test_delete_draining_session_conflicts(self) -> None:
        """A stopped run whose cycle is still in flight cannot be deleted."""
        link = FakeDeviceLink(default=respond(300))
        with TestClient(create_app(link=link)) as test_client:
            run_id = test_client.post(
                "/run", json={"target_cycles": 10, "inter_command_delay_ms": 0}
            ).json()["run_id"]
            deadline = time.monotonic() + 5.0
            while not link.sent and time.monotonic() < deadline:
                time.sleep(0.01)
            assert test_client.post("/stop").json()["state"] == "stopped"

            assert test_client.delete(f"/sessions/{run_id}").status_code == 409

            _poll(test_client, f"/sessions/{run_id}", lambda d: d["status"] == "stopped")
            assert test_client.delete(f"/sessions/{run_id}").status_code == 200
            assert test_client.get(f"/sessions/{run_id}").status_code == 404
