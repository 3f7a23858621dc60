"""Tests for api/websocket.py -- event replay and client commands."""

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import router
from api.routes import set_project_manager as set_routes_project_manager
from api.websocket import set_project_manager, websocket_router
from events.bus import get_event_bus, reset_event_bus
from project_manager import ProjectManager
from services.content import MockContentService
from tests.conftest import PROJECT_ID, ManualScheduler, make_repository, make_video


@pytest.fixture()
def manager() -> ProjectManager:
    reset_event_bus()
    manager = ProjectManager(
        make_repository(videos=[make_video("v1")]),
        MockContentService(),
        get_event_bus(),
        scheduler=ManualScheduler(),
        poll_interval=0,
    )
    set_project_manager(manager)
    set_routes_project_manager(manager)
    return manager


@pytest.fixture()
def client(manager: ProjectManager) -> Generator[TestClient, None, None]:
    app = FastAPI()
    app.include_router(router)
    app.include_router(websocket_router)
    with TestClient(app) as c:
        yield c


class TestWebSocket:
    def test_replays_history_then_answers_ping(self, client: TestClient) -> None:
        client.get(f"/api/projects/{PROJECT_ID}/canvas")

        with client.websocket_connect(f"/ws/{PROJECT_ID}") as ws:
            loaded = ws.receive_json()
            assert loaded["type"] == "canvas_loaded"
            assert loaded["data"]["nodes"] == 1

            ws.send_json({"type": "ping", "timestamp": 42})
            assert ws.receive_json() == {"type": "pong", "timestamp": 42}

    def test_viewport_command(self, client: TestClient, manager: ProjectManager) -> None:
        client.get(f"/api/projects/{PROJECT_ID}/canvas")

        with client.websocket_connect(f"/ws/{PROJECT_ID}") as ws:
            ws.receive_json()
            ws.send_json({"type": "viewport", "viewport": {"x": 5, "y": 6, "zoom": 2}})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

        session = manager.get_open_session(PROJECT_ID)
        assert session is not None
        assert session.sync.viewport.zoom == 2

    def test_cancel_delete_command(self, client: TestClient, manager: ProjectManager) -> None:
        client.post(f"/api/projects/{PROJECT_ID}/deletions", json={"node_ids": ["video_v1"]})

        with client.websocket_connect(f"/ws/{PROJECT_ID}") as ws:
            assert ws.receive_json()["type"] == "canvas_loaded"
            assert ws.receive_json()["type"] == "delete_confirmation_required"
            ws.send_json({"type": "cancel_delete"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

        session = manager.get_open_session(PROJECT_ID)
        assert session is not None
        assert session.deletion.pending_ids == []
