"""Tests for web/app.py — FastAPI routes and the push channel via TestClient.

Tests the HTTP layer: status codes, response structure, persistence and
WebSocket fan-out. Each test gets its own app instance with the snapshot
redirected to tmp_path. The client is used as a context manager so the
lifespan (load, sweep, flush) runs and all requests share one event loop.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from second_screen.config import DashboardSettings
from web.app import create_app

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return DashboardSettings(
        data_file=tmp_path / "sessions.json",
        save_debounce_seconds=30,
        sweep_interval_seconds=3600,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def delete(client: TestClient, url: str, body: dict):
    return client.request("DELETE", url, json=body)


# ---------------------------------------------------------------------------
# GET /api/sessions
# ---------------------------------------------------------------------------


class TestListSessions:
    def test_empty(self, client):
        resp = client.get("/api/sessions")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_lists_registered(self, client):
        client.post("/api/sessions", json={"directory": "/work/a"})
        client.post("/api/sessions", json={"directory": "/work/b"})
        data = client.get("/api/sessions").json()
        assert [s["directory"] for s in data] == ["/work/a", "/work/b"]


# ---------------------------------------------------------------------------
# POST /api/sessions
# ---------------------------------------------------------------------------


class TestRegister:
    def test_new_session_201(self, client):
        resp = client.post("/api/sessions", json={"directory": "/work/app"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["directory"] == "/work/app"
        assert data["directoryName"] == "app"
        assert data["status"] == "idle"
        assert data["tasks"] == []
        assert data["githubIssues"] == []

    def test_existing_session_200(self, client):
        client.post("/api/sessions", json={"directory": "/work/app"})
        resp = client.post("/api/sessions", json={"directory": "/work/app"})
        assert resp.status_code == 200

    def test_reregister_resets_summary(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        client.put("/api/sessions", json={"directory": "/a", "summary": "Old work"})
        data = client.post("/api/sessions", json={"directory": "/a", "source": "clear"}).json()
        assert data["summary"] == ""

    def test_resume_preserves_summary(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        client.put("/api/sessions", json={"directory": "/a", "summary": "Old work",
                                          "status": "busy"})
        data = client.post("/api/sessions", json={"directory": "/a", "source": "resume"}).json()
        assert data["summary"] == "Old work"
        assert data["status"] == "idle"

    def test_missing_directory_400(self, client):
        resp = client.post("/api/sessions", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "directory is required", "code": "VALIDATION_ERROR"}

    def test_malformed_json_400(self, client):
        resp = client.post(
            "/api/sessions", content=b"{nope", headers={"content-type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_invalid_utf8_body_400(self, client):
        resp = client.post(
            "/api/sessions",
            content=b'{"directory": "/a\xff"}',
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_non_object_body_400(self, client):
        resp = client.post("/api/sessions", json=["/a"])
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# PUT /api/sessions
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_update_fields(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        resp = client.put("/api/sessions", json={
            "directory": "/a",
            "summary": "Adding OAuth",
            "status": "waiting",
            "githubIssues": [{"number": 42, "url": "https://github.com/o/r/issues/42"}],
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"] == "Adding OAuth"
        assert data["status"] == "waiting"
        assert data["githubIssues"] == [
            {"number": 42, "url": "https://github.com/o/r/issues/42"}
        ]

    def test_unknown_directory_404(self, client):
        resp = client.put("/api/sessions", json={"directory": "/nope", "status": "busy"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Session not found", "code": "NOT_FOUND"}

    def test_missing_directory_400(self, client):
        resp = client.put("/api/sessions", json={"status": "busy"})
        assert resp.status_code == 400

    def test_invalid_status_400(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        resp = client.put("/api/sessions", json={"directory": "/a", "status": "asleep"})
        assert resp.status_code == 400
        assert "Invalid status" in resp.json()["error"]

    def test_invalid_issues_400(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        resp = client.put("/api/sessions", json={"directory": "/a", "githubIssues": "#4"})
        assert resp.status_code == 400

    def test_subdirectory_scenario(self, client):
        resp = client.post("/api/sessions", json={"directory": "/a"})
        assert resp.status_code == 201
        assert resp.json()["status"] == "idle"

        resp = client.put("/api/sessions", json={"directory": "/a/sub", "status": "busy"})
        assert resp.status_code == 200
        assert resp.json()["directory"] == "/a"
        assert resp.json()["status"] == "busy"

        resp = client.put("/api/sessions", json={"directory": "/a/sub", "status": "idle"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "busy"

        sessions = client.get("/api/sessions").json()
        assert [s["directory"] for s in sessions] == ["/a"]

    def test_auto_create_policy(self, tmp_path):
        settings = DashboardSettings(data_file=tmp_path / "s.json", auto_create_on_update=True)
        with TestClient(create_app(settings)) as client:
            resp = client.put("/api/sessions", json={"directory": "/fresh", "status": "busy"})
            assert resp.status_code == 200
            assert resp.json()["status"] == "busy"

    def test_auto_create_without_fields_is_pushed(self, tmp_path):
        settings = DashboardSettings(data_file=tmp_path / "s.json", auto_create_on_update=True)
        app = create_app(settings)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == []
            published = app.state.notifier.published

            resp = client.put("/api/sessions", json={"directory": "/fresh"})
            assert resp.status_code == 200
            assert app.state.notifier.published == published + 1
            assert app.state.snapshot.pending
            assert [s["directory"] for s in ws.receive_json()] == ["/fresh"]


# ---------------------------------------------------------------------------
# DELETE /api/sessions
# ---------------------------------------------------------------------------


class TestRemove:
    def test_remove_204(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        resp = delete(client, "/api/sessions", {"directory": "/a"})
        assert resp.status_code == 204
        assert client.get("/api/sessions").json() == []

    def test_remove_absent_is_idempotent(self, client):
        resp = delete(client, "/api/sessions", {"directory": "/never"})
        assert resp.status_code == 204

    def test_remove_missing_directory_400(self, client):
        resp = delete(client, "/api/sessions", {})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTasks:
    @pytest.fixture(autouse=True)
    def _session(self, client):
        client.post("/api/sessions", json={"directory": "/a"})

    def _add(self, client, text="Write docs") -> dict:
        resp = client.post("/api/sessions/tasks", json={"directory": "/a", "text": text})
        assert resp.status_code == 201
        return resp.json()

    def test_add(self, client):
        task = self._add(client)
        assert task["text"] == "Write docs"
        assert task["completed"] is False
        assert "completedAt" not in task
        assert len(task["id"]) == 8

    def test_add_missing_text_400(self, client):
        resp = client.post("/api/sessions/tasks", json={"directory": "/a"})
        assert resp.status_code == 400

    def test_add_unknown_directory_404(self, client):
        resp = client.post("/api/sessions/tasks", json={"directory": "/b", "text": "x"})
        assert resp.status_code == 404

    def test_complete_and_reopen(self, client):
        task = self._add(client)
        resp = client.put("/api/sessions/tasks", json={
            "directory": "/a", "taskId": task["id"], "completed": True,
        })
        assert resp.status_code == 200
        assert resp.json()["completed"] is True
        assert "completedAt" in resp.json()

        resp = client.put("/api/sessions/tasks", json={
            "directory": "/a", "taskId": task["id"], "completed": False,
        })
        assert "completedAt" not in resp.json()

    def test_edit_text(self, client):
        task = self._add(client)
        resp = client.put("/api/sessions/tasks", json={
            "directory": "/a", "taskId": task["id"], "text": "Write better docs",
        })
        assert resp.json()["text"] == "Write better docs"

    def test_update_unknown_task_404(self, client):
        resp = client.put("/api/sessions/tasks", json={
            "directory": "/a", "taskId": "deadbeef", "completed": True,
        })
        assert resp.status_code == 404
        assert resp.json()["error"] == "Task not found"

    def test_update_missing_task_id_400(self, client):
        resp = client.put("/api/sessions/tasks", json={"directory": "/a", "completed": True})
        assert resp.status_code == 400

    def test_update_non_bool_completed_400(self, client):
        task = self._add(client)
        resp = client.put("/api/sessions/tasks", json={
            "directory": "/a", "taskId": task["id"], "completed": "yes",
        })
        assert resp.status_code == 400

    def test_delete(self, client):
        task = self._add(client)
        resp = delete(client, "/api/sessions/tasks", {"directory": "/a", "taskId": task["id"]})
        assert resp.status_code == 204
        assert client.get("/api/sessions").json()[0]["tasks"] == []

    def test_delete_unknown_directory_404(self, client):
        resp = delete(client, "/api/sessions/tasks", {"directory": "/b", "taskId": "x"})
        assert resp.status_code == 404

    def test_delete_unknown_task_204(self, client):
        resp = delete(client, "/api/sessions/tasks", {"directory": "/a", "taskId": "x"})
        assert resp.status_code == 204


# ---------------------------------------------------------------------------
# Change notification
# ---------------------------------------------------------------------------


class TestChangeNotification:
    def test_identical_put_is_silent(self, client, app):
        client.post("/api/sessions", json={"directory": "/a"})
        client.put("/api/sessions", json={"directory": "/a", "status": "busy"})
        notifier = app.state.notifier
        published = notifier.published

        resp = client.put("/api/sessions", json={"directory": "/a", "status": "busy"})
        assert resp.status_code == 200
        assert notifier.published == published

    def test_identical_put_schedules_no_snapshot(self, client, app, monkeypatch):
        client.post("/api/sessions", json={"directory": "/a"})
        client.put("/api/sessions", json={"directory": "/a", "status": "busy"})
        snapshot = app.state.snapshot
        schedule = MagicMock(wraps=snapshot.schedule)
        monkeypatch.setattr(snapshot, "schedule", schedule)

        client.put("/api/sessions", json={"directory": "/a", "status": "busy"})
        schedule.assert_not_called()

        client.put("/api/sessions", json={"directory": "/a", "status": "idle"})
        schedule.assert_called_once()

    def test_mutation_schedules_snapshot(self, client, app):
        client.post("/api/sessions", json={"directory": "/a"})
        assert app.state.snapshot.pending

    def test_identical_task_put_is_silent(self, client, app):
        client.post("/api/sessions", json={"directory": "/a"})
        task = client.post("/api/sessions/tasks", json={"directory": "/a", "text": "x"}).json()
        body = {"directory": "/a", "taskId": task["id"], "completed": True}
        client.put("/api/sessions/tasks", json=body)
        published = app.state.notifier.published

        resp = client.put("/api/sessions/tasks", json=body)
        assert resp.status_code == 200
        assert resp.json()["completed"] is True
        assert app.state.notifier.published == published

    def test_remove_absent_is_silent(self, client, app):
        published = app.state.notifier.published
        delete(client, "/api/sessions", {"directory": "/never"})
        assert app.state.notifier.published == published


# ---------------------------------------------------------------------------
# Push channel
# ---------------------------------------------------------------------------


class TestPushChannel:
    def test_handshake_sends_full_state(self, client):
        client.post("/api/sessions", json={"directory": "/a"})
        with client.websocket_connect("/ws") as ws:
            data = ws.receive_json()
            assert [s["directory"] for s in data] == ["/a"]

    def test_change_is_pushed(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == []
            client.post("/api/sessions", json={"directory": "/a"})
            data = ws.receive_json()
            assert [s["directory"] for s in data] == ["/a"]

            client.put("/api/sessions", json={"directory": "/a", "status": "waiting"})
            assert ws.receive_json()[0]["status"] == "waiting"

    def test_all_observers_receive(self, client):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            ws1.receive_json()
            ws2.receive_json()
            client.post("/api/sessions", json={"directory": "/a"})
            assert ws1.receive_json()[0]["directory"] == "/a"
            assert ws2.receive_json()[0]["directory"] == "/a"

    def test_disconnect_unregisters(self, client, app):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            assert client.get("/health").json()["observers"] == 1
        client.post("/api/sessions", json={"directory": "/a"})
        assert client.get("/health").json()["observers"] == 0


# ---------------------------------------------------------------------------
# Lifespan: load, sweep, flush
# ---------------------------------------------------------------------------


class TestLifespan:
    def test_state_survives_restart(self, settings):
        with TestClient(create_app(settings)) as client:
            client.post("/api/sessions", json={"directory": "/a"})
            client.put("/api/sessions", json={
                "directory": "/a", "summary": "Persist me", "status": "busy",
                "githubIssues": [{"number": 1}],
            })
            task = client.post("/api/sessions/tasks",
                               json={"directory": "/a", "text": "keep"}).json()
            before = client.get("/api/sessions").json()

        # Shutdown flushed the pending debounced save.
        assert settings.data_file.exists()

        with TestClient(create_app(settings)) as client:
            after = client.get("/api/sessions").json()
        assert after == before
        assert after[0]["tasks"][0]["id"] == task["id"]

    def test_corrupt_snapshot_starts_empty(self, settings):
        settings.data_file.write_text("{{{ not json")
        with TestClient(create_app(settings)) as client:
            assert client.get("/api/sessions").json() == []

    def test_expired_data_purged_on_startup(self, settings):
        now = datetime.now(UTC)
        old = (now - timedelta(days=2)).isoformat()
        settings.data_file.write_text(json.dumps([
            {
                "directory": "/archived", "directoryName": "archived", "summary": "",
                "status": "stopped", "githubIssues": [], "tasks": [],
                "createdAt": old, "lastUpdated": old,
            },
            {
                "directory": "/live", "directoryName": "live", "summary": "",
                "status": "idle", "githubIssues": [],
                "tasks": [
                    {"id": "old", "text": "done long ago", "completed": True,
                     "completedAt": (now - timedelta(minutes=10)).isoformat()},
                    {"id": "new", "text": "just done", "completed": True,
                     "completedAt": now.isoformat()},
                ],
                "createdAt": old, "lastUpdated": now.isoformat(),
            },
        ]))
        with TestClient(create_app(settings)) as client:
            data = client.get("/api/sessions").json()
        assert [s["directory"] for s in data] == ["/live"]
        assert [t["id"] for t in data[0]["tasks"]] == ["new"]


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class TestMisc:
    def test_health(self, client):
        data = client.get("/health").json()
        assert data == {"status": "healthy", "sessions": 0, "observers": 0}

    def test_unknown_route(self, client):
        resp = client.get("/nonexistent")
        assert resp.status_code == 404
