"""HTTP-level tests for the task, tracking and focus routers."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from fakes import FakeClock, MemoryRemoteStore

from taskflow.app import create_app
from taskflow.config import Settings
from taskflow.context import AppContext
from taskflow.storage import LocalStorage


@pytest.fixture
def remote() -> MemoryRemoteStore:
    return MemoryRemoteStore()


@pytest.fixture
def client(tmp_path, remote):
    settings = Settings(
        _env_file=None,
        storage_dir=tmp_path / "local",
        sync_auto=False,
        parser_api_key=None,
    )
    context = AppContext.build(
        settings,
        clock=FakeClock(),
        remote=remote,
        storage=LocalStorage(tmp_path / "local"),
    )
    app = create_app(context=context, configure_logging=False)
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, **fields) -> dict:
    body = {"title": "Write report", **fields}
    response = client.post("/api/tasks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["online"] is True


def test_task_crud_flow(client):
    created = _create(
        client,
        category="work",
        priority="high",
        subtasks=[{"title": "Outline"}, {"title": "Draft"}],
    )
    task_id = created["id"]

    assert [task["id"] for task in client.get("/api/tasks").json()] == [task_id]
    assert client.get(f"/api/tasks/{task_id}").json()["priority"] == "high"

    patched = client.patch(f"/api/tasks/{task_id}", json={"title": "Final report"})
    assert patched.status_code == 200
    assert patched.json()["title"] == "Final report"

    toggled = client.post(f"/api/tasks/{task_id}/subtasks/1/toggle")
    assert toggled.json()["completed"] is True

    completed = client.post(f"/api/tasks/{task_id}/complete").json()
    assert completed["status"] == "completed"
    assert completed["progress"] == 100
    assert all(sub["completed"] for sub in completed["subtasks"])
    assert client.get("/api/tasks", params={"active": "true"}).json() == []


def test_unknown_task_is_404(client):
    assert client.get("/api/tasks/missing").status_code == 404
    assert client.patch("/api/tasks/missing", json={"title": "x"}).status_code == 404
    assert client.delete("/api/tasks/missing").status_code == 404
    assert client.post("/api/tasks/missing/restore").status_code == 404


def test_invalid_input_is_422(client):
    task = _create(client)

    assert client.post("/api/tasks", json={"title": ""}).status_code == 422
    assert client.post("/api/tasks", json={"title": "x", "priority": "urgent"}).status_code == 422
    response = client.put(f"/api/tasks/{task['id']}/progress", json={"progress": 120})
    assert response.status_code == 422
    response = client.post(
        f"/api/tasks/{task['id']}/dependencies", json={"dependency_id": task["id"]}
    )
    assert response.status_code == 422


def test_unauthenticated_writes_are_401(client, remote):
    remote.user_id = None

    assert client.post("/api/tasks", json={"title": "Nope"}).status_code == 401


def test_unreachable_remote_is_503(client, remote):
    remote.offline = True

    assert client.post("/api/tasks", json={"title": "Later"}).status_code == 503


def test_delete_and_restore(client):
    task = _create(client)

    deleted = client.delete(f"/api/tasks/{task['id']}")
    assert deleted.json() == {"success": True, "task_id": task["id"], "action": "deleted"}
    assert client.get("/api/tasks").json() == []
    assert [item["id"] for item in client.get("/api/tasks/trash").json()] == [task["id"]]

    restored = client.post(f"/api/tasks/{task['id']}/restore")
    assert restored.status_code == 200
    assert [item["id"] for item in client.get("/api/tasks").json()] == [task["id"]]


def test_subtask_endpoints(client):
    task = _create(client)

    added = client.post(
        f"/api/tasks/{task['id']}/subtasks",
        json={"title": "Proofread", "time_estimate": {"value": 1, "unit": "hours"}},
    )
    assert added.status_code == 201
    subtask = added.json()
    assert subtask["time_estimate"] == {"value": 1, "unit": "hours"}

    removed = client.delete(f"/api/tasks/{task['id']}/subtasks/{subtask['id']}")
    assert removed.json()["success"] is True
    assert client.get(f"/api/tasks/{task['id']}").json()["subtasks"] == []


def test_parse_without_model_creates_basic_task(client):
    response = client.post("/api/tasks/parse", json={"text": "renew passport"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["draft"]["error"] == "API key not configured"
    assert payload["task"]["title"] == "renew passport"


def test_tracking_flow(client):
    task = _create(client)

    assert client.post("/api/tracking/start", json={"task_id": "missing"}).status_code == 404

    started = client.post("/api/tracking/start", json={"task_id": task["id"]}).json()
    assert started["state"] == "tracking"
    assert started["active_task_id"] == task["id"]
    assert started["current_session"]["task_id"] == task["id"]

    paused = client.post("/api/tracking/pause").json()
    assert paused["state"] == "idle"
    assert paused["active_task_id"] == task["id"]
    assert paused["closed_session"]["end_time"] is not None

    stopped = client.post("/api/tracking/stop").json()
    assert stopped["active_task_id"] is None
    assert stopped["closed_session"] is None

    sessions = client.get("/api/tracking/sessions").json()
    assert len(sessions) == 1
    time = client.get(f"/api/tracking/tasks/{task['id']}/time").json()
    assert time == {"task_id": task["id"], "seconds": 0, "formatted": "00:00:00"}

    annotated = client.patch(
        f"/api/tracking/sessions/{sessions[0]['id']}", json={"note": "kickoff"}
    )
    assert annotated.json()["note"] == "kickoff"
    assert client.patch("/api/tracking/sessions/nope", json={"note": "x"}).status_code == 404

    stats = client.get("/api/tracking/statistics").json()
    assert stats["total_tracked_time"] == 0


def test_sync_controls(client):
    status = client.get("/api/tracking/sync").json()
    assert status["state"] == "synced"
    assert status["online"] is True

    assert client.post("/api/tracking/sync").json()["success"] is True

    offline = client.put("/api/tracking/connectivity", json={"online": False}).json()
    assert offline["online"] is False
    assert offline["state"] == "offline"
    assert client.post("/api/tracking/sync").status_code == 503

    assert client.post("/api/tracking/sync/pause").json()["paused"] is True
    assert client.post("/api/tracking/sync/resume").json()["paused"] is False


def test_focus_flow(client):
    task = _create(client)

    entered = client.post("/api/focus/enter", json={"task_id": task["id"]}).json()
    assert entered["current"]["task_id"] == task["id"]
    assert entered["tracking"] == "tracking"

    client.post("/api/focus/interruptions")
    exited = client.post("/api/focus/exit").json()
    assert exited["current"] is None
    assert exited["history"][0]["interruptions"] == 1
    assert exited["tracking"] == "tracking"

    settings = client.patch("/api/focus/settings", json={"theme": "dark"}).json()
    assert settings["theme"] == "dark"
    assert client.get("/api/focus/settings").json()["auto_start_timer"] is True
    assert client.patch("/api/focus/settings", json={"theme": "neon"}).status_code == 422
