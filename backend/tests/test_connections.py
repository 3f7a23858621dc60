"""Tests for canvas/connections.py -- edge creation and connection lists."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from canvas.connections import ConnectionManager, Rejected
from canvas.errors import PersistenceError
from canvas.graph_store import GraphStore
from canvas.types import (
    AgentData,
    AgentType,
    Edge,
    MoodBoardData,
    Node,
    Position,
    TranscriptionData,
    VideoData,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _nodes() -> list[Node]:
    return [
        Node(id="video_v1", position=Position(x=0, y=0), data=VideoData(persisted_video_id="v1")),
        Node(id="video_v2", position=Position(x=0, y=300), data=VideoData(persisted_video_id="v2")),
        Node(
            id="agent_a1",
            position=Position(x=400, y=0),
            data=AgentData(persisted_agent_id="a1", agent_type=AgentType.TITLE),
        ),
        Node(
            id="agent_a2",
            position=Position(x=400, y=200),
            data=AgentData(persisted_agent_id="a2", agent_type=AgentType.DESCRIPTION),
        ),
        Node(
            id="transcription_t1",
            position=Position(x=0, y=600),
            data=TranscriptionData(persisted_transcription_id="t1"),
        ),
        Node(id="moodboard_tmp_1", position=Position(x=0, y=900), data=MoodBoardData()),
    ]


@pytest.fixture()
def store() -> GraphStore:
    store = GraphStore()
    for node in _nodes():
        store.add_node(node)
    return store


@pytest.fixture()
def notify() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def manager(store: GraphStore, repository: AsyncMock, notify: MagicMock) -> ConnectionManager:
    return ConnectionManager(store, repository, notify)


def _connections(store: GraphStore, node_id: str) -> list[str]:
    node = store.find_node(node_id)
    assert node is not None and isinstance(node.data, AgentData)
    return node.data.connections


# =========================================================================
# Valid connections
# =========================================================================


class TestConnect:
    async def test_video_into_agent(
        self, manager: ConnectionManager, store: GraphStore, repository: AsyncMock
    ) -> None:
        result = await manager.connect("video_v1", "agent_a1")

        assert isinstance(result, Edge)
        assert result.id == "evideo_v1-agent_a1"
        assert _connections(store, "agent_a1") == ["v1"]
        repository.update_connections.assert_awaited_once_with("a1", ["v1"])

    async def test_agent_and_transcription_into_agent(
        self, manager: ConnectionManager, store: GraphStore
    ) -> None:
        await manager.connect("agent_a2", "agent_a1")
        await manager.connect("transcription_t1", "agent_a1")
        assert _connections(store, "agent_a1") == ["a2", "t1"]

    async def test_two_transcriptions_into_one_agent(
        self, manager: ConnectionManager, store: GraphStore, repository: AsyncMock
    ) -> None:
        store.add_node(
            Node(
                id="transcription_t2",
                position=Position(x=0, y=750),
                data=TranscriptionData(persisted_transcription_id="t2"),
            )
        )

        await manager.connect("transcription_t1", "agent_a1")
        await manager.connect("transcription_t2", "agent_a1")

        assert _connections(store, "agent_a1") == ["t1", "t2"]
        assert len(store.edges_into("agent_a1")) == 2
        repository.update_connections.assert_awaited_with("a1", ["t1", "t2"])

    async def test_moodboard_adds_edge_without_connection_id(
        self, manager: ConnectionManager, store: GraphStore, repository: AsyncMock
    ) -> None:
        result = await manager.connect("moodboard_tmp_1", "agent_a1")
        assert isinstance(result, Edge)
        assert _connections(store, "agent_a1") == []
        repository.update_connections.assert_not_awaited()

    async def test_handles_are_kept(self, manager: ConnectionManager) -> None:
        result = await manager.connect("video_v1", "agent_a1", "out", "in")
        assert isinstance(result, Edge)
        assert (result.source_handle, result.target_handle) == ("out", "in")

    async def test_repeat_connect_appends_again(
        self, manager: ConnectionManager, store: GraphStore
    ) -> None:
        await manager.connect("video_v1", "agent_a1")
        await manager.connect("video_v1", "agent_a1")
        assert len(store.edges) == 1
        assert _connections(store, "agent_a1") == ["v1", "v1"]


# =========================================================================
# Rejected connections
# =========================================================================


class TestRejected:
    @pytest.mark.parametrize(
        ("source", "target"),
        [
            ("video_v1", "video_v2"),
            ("agent_a1", "video_v1"),
            ("video_v1", "transcription_t1"),
            ("agent_a1", "moodboard_tmp_1"),
            ("agent_a1", "agent_a1"),
            ("video_v1", "agent_missing"),
        ],
    )
    async def test_invalid_pairs_leave_graph_unchanged(
        self,
        manager: ConnectionManager,
        store: GraphStore,
        repository: AsyncMock,
        source: str,
        target: str,
    ) -> None:
        before = store.graph
        result = await manager.connect(source, target)

        assert isinstance(result, Rejected)
        assert result.reason
        assert store.graph is before
        repository.update_connections.assert_not_awaited()


# =========================================================================
# Persistence failures and reconciliation
# =========================================================================


class TestPersistence:
    async def test_failed_write_keeps_edge_and_notifies(
        self,
        manager: ConnectionManager,
        store: GraphStore,
        repository: AsyncMock,
        notify: MagicMock,
    ) -> None:
        repository.update_connections.side_effect = PersistenceError("update_connections", "db down")

        result = await manager.connect("video_v1", "agent_a1")

        assert isinstance(result, Edge)
        assert _connections(store, "agent_a1") == ["v1"]
        notify.assert_called_once_with("error", "Failed to save connection")

    async def test_reconcile_recomputes_from_edges(
        self, manager: ConnectionManager, store: GraphStore, repository: AsyncMock
    ) -> None:
        await manager.connect("video_v1", "agent_a1")
        await manager.connect("video_v1", "agent_a1")
        await manager.connect("agent_a2", "agent_a1")
        store.remove_nodes(["agent_a2"])
        repository.update_connections.reset_mock()

        assert await manager.reconcile("agent_a1") == ["v1"]
        repository.update_connections.assert_awaited_once_with("a1", ["v1"])

    async def test_reconcile_unchanged_skips_write(
        self, manager: ConnectionManager, repository: AsyncMock
    ) -> None:
        await manager.connect("video_v1", "agent_a1")
        repository.update_connections.reset_mock()
        assert await manager.reconcile("agent_a1") == ["v1"]
        repository.update_connections.assert_not_awaited()

    async def test_reconcile_non_agent(self, manager: ConnectionManager) -> None:
        assert await manager.reconcile("video_v1") is None
