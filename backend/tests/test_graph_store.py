"""Tests for canvas/graph_store.py -- reducer, IdMap and GraphStore."""

from typing import Any

import pytest

from canvas.errors import CanvasValidationError
from canvas.graph_store import (
    AddEdge,
    AddNode,
    ApplyExternalUpdate,
    Graph,
    GraphStore,
    IdMap,
    MoveNode,
    RemoveNodes,
    UpdateNode,
    edge_id_for,
    reduce,
    temporary_node_id,
)
from canvas.types import (
    AgentData,
    AgentType,
    Edge,
    MoodBoardData,
    Node,
    NodeKind,
    Position,
    TranscriptionData,
    TranscriptionState,
    VideoData,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _video(node_id: str = "video_v1", pid: str | None = "v1") -> Node:
    return Node(id=node_id, position=Position(x=0, y=0), data=VideoData(persisted_video_id=pid))


def _agent(node_id: str = "agent_a1", pid: str | None = "a1") -> Node:
    return Node(
        id=node_id,
        position=Position(x=300, y=0),
        data=AgentData(persisted_agent_id=pid, agent_type=AgentType.TITLE),
    )


def _edge(source: str, target: str) -> Edge:
    return Edge(id=edge_id_for(source, target), source_node_id=source, target_node_id=target)


def _store(*nodes: Node) -> GraphStore:
    store = GraphStore()
    for node in nodes:
        store.add_node(node)
    return store


# =========================================================================
# Reducer
# =========================================================================


class TestReduce:
    """The pure reduce function."""

    def test_add_node(self) -> None:
        graph = reduce(Graph(), AddNode(_video()))
        assert list(graph.nodes) == ["video_v1"]

    def test_add_duplicate_node_raises(self) -> None:
        graph = Graph.of([_video()])
        with pytest.raises(CanvasValidationError):
            reduce(graph, AddNode(_video()))

    def test_remove_nodes_drops_incident_edges(self) -> None:
        graph = Graph.of([_video(), _agent()], [_edge("video_v1", "agent_a1")])
        after = reduce(graph, RemoveNodes(("video_v1",)))
        assert list(after.nodes) == ["agent_a1"]
        assert len(after.edges) == 0

    def test_update_missing_node_is_noop(self) -> None:
        graph = Graph.of([_video()])
        assert reduce(graph, UpdateNode("gone", {"title": "x"})) is graph

    def test_update_merges_patch(self) -> None:
        graph = Graph.of([_video()])
        after = reduce(graph, UpdateNode("video_v1", {"title": "New"}))
        data = after.nodes["video_v1"].data
        assert isinstance(data, VideoData)
        assert data.title == "New"
        assert data.persisted_video_id == "v1"

    def test_move_to_same_position_is_noop(self) -> None:
        graph = Graph.of([_video()])
        assert reduce(graph, MoveNode("video_v1", Position(x=0, y=0))) is graph

    def test_duplicate_edge_is_noop(self) -> None:
        edge = _edge("video_v1", "agent_a1")
        graph = Graph.of([_video(), _agent()], [edge])
        assert reduce(graph, AddEdge(edge)) is graph

    def test_inputs_are_not_mutated(self) -> None:
        graph = Graph.of([_video()])
        reduce(graph, AddNode(_agent()))
        assert list(graph.nodes) == ["video_v1"]


class TestEdgeValidation:
    """Edges may only end at agents, except video -> transcription ownership."""

    def test_self_loop_rejected(self) -> None:
        graph = Graph.of([_agent()])
        with pytest.raises(CanvasValidationError):
            reduce(graph, AddEdge(_edge("agent_a1", "agent_a1")))

    def test_missing_endpoint_rejected(self) -> None:
        graph = Graph.of([_video()])
        with pytest.raises(CanvasValidationError):
            reduce(graph, AddEdge(_edge("video_v1", "agent_a1")))

    def test_video_to_video_rejected(self) -> None:
        graph = Graph.of([_video(), _video("video_v2", "v2")])
        with pytest.raises(CanvasValidationError):
            reduce(graph, AddEdge(_edge("video_v1", "video_v2")))

    def test_agent_to_video_rejected(self) -> None:
        graph = Graph.of([_video(), _agent()])
        with pytest.raises(CanvasValidationError):
            reduce(graph, AddEdge(_edge("agent_a1", "video_v1")))

    def test_video_owns_transcription(self) -> None:
        transcription = Node(
            id="transcription_t1",
            position=Position(x=400, y=0),
            data=TranscriptionData(persisted_transcription_id="t1"),
        )
        graph = Graph.of([_video(), transcription])
        after = reduce(graph, AddEdge(_edge("video_v1", "transcription_t1")))
        assert len(after.edges) == 1

    @pytest.mark.parametrize("source_kind", ["video", "agent", "moodboard"])
    def test_any_kind_into_agent_accepted(self, source_kind: str) -> None:
        sources: dict[str, Node] = {
            "video": _video(),
            "agent": _agent("agent_a2", "a2"),
            "moodboard": Node(id="mb", position=Position(x=0, y=0), data=MoodBoardData()),
        }
        source = sources[source_kind]
        graph = Graph.of([source, _agent()])
        after = reduce(graph, AddEdge(_edge(source.id, "agent_a1")))
        assert len(after.edges) == 1


class TestApplyExternalUpdate:
    """Poll and direct updates only apply differing fields."""

    def test_unchanged_fields_return_same_graph(self) -> None:
        graph = Graph.of([_video()])
        patch: dict[str, Any] = {"transcription_state": TranscriptionState.NONE}
        assert reduce(graph, ApplyExternalUpdate("video_v1", patch)) is graph

    def test_changed_field_applied(self) -> None:
        graph = Graph.of([_video()])
        after = reduce(
            graph,
            ApplyExternalUpdate(
                "video_v1",
                {"transcription_state": TranscriptionState.READY, "transcription_text": "hi"},
            ),
        )
        data = after.nodes["video_v1"].data
        assert isinstance(data, VideoData)
        assert data.transcription_state == TranscriptionState.READY
        assert data.transcription_text == "hi"


# =========================================================================
# IdMap
# =========================================================================


class TestIdMap:
    def test_lookup_order_prefers_video(self) -> None:
        ids = IdMap()
        ids.bind(NodeKind.AGENT, "x", "agent_x")
        ids.bind(NodeKind.VIDEO, "x", "video_x")
        assert ids.node_id("x") == "video_x"
        assert ids.node_id("x", NodeKind.AGENT) == "agent_x"

    def test_reverse_lookup(self) -> None:
        ids = IdMap()
        ids.bind(NodeKind.TRANSCRIPTION, "t1", "transcription_t1")
        assert ids.persisted_id("transcription_t1") == "t1"

    def test_unbind(self) -> None:
        ids = IdMap()
        ids.bind(NodeKind.VIDEO, "v1", "video_v1")
        ids.unbind("video_v1")
        assert ids.node_id("v1") is None
        assert len(ids) == 0


# =========================================================================
# GraphStore
# =========================================================================


class TestGraphStore:
    def test_listener_sees_before_and_after(self) -> None:
        store = GraphStore()
        seen: list[tuple[int, int]] = []
        store.subscribe(lambda action, before, after: seen.append((len(before.nodes), len(after.nodes))))
        store.add_node(_video())
        assert seen == [(0, 1)]

    def test_listener_not_called_for_noop(self) -> None:
        store = _store(_video())
        calls: list[object] = []
        store.subscribe(lambda *args: calls.append(args))
        store.update_node("missing", title="x")
        store.move_node("video_v1", Position(x=0, y=0))
        assert calls == []

    def test_unsubscribe(self) -> None:
        store = GraphStore()
        calls: list[object] = []
        unsubscribe = store.subscribe(lambda *args: calls.append(args))
        unsubscribe()
        store.add_node(_video())
        assert calls == []

    def test_failing_listener_does_not_undo_change(self) -> None:
        store = GraphStore()

        def boom(*args: object) -> None:
            raise RuntimeError("listener broke")

        store.subscribe(boom)
        store.add_node(_video())
        assert store.find_node("video_v1") is not None

    def test_ids_follow_mutations(self) -> None:
        store = _store(_video(), _agent())
        assert store.ids.node_id("a1") == "agent_a1"
        store.remove_nodes(["agent_a1"])
        assert store.ids.node_id("a1") is None

    def test_ids_rebuilt_on_replace(self) -> None:
        store = _store(_video())
        store.replace(Graph.of([_agent()]))
        assert store.ids.node_id("v1") is None
        assert store.ids.node_id("a1") == "agent_a1"

    def test_temporary_nodes_are_not_indexed(self) -> None:
        node_id = temporary_node_id(NodeKind.MOODBOARD)
        store = _store(Node(id=node_id, position=Position(x=0, y=0), data=MoodBoardData()))
        assert node_id.startswith("moodboard_tmp_")
        assert len(store.ids) == 0

    def test_sources_of(self) -> None:
        store = _store(_video(), _agent(), _agent("agent_a2", "a2"))
        store.add_edge(_edge("video_v1", "agent_a1"))
        store.add_edge(_edge("agent_a2", "agent_a1"))
        assert [n.id for n in store.sources_of("agent_a1")] == ["video_v1", "agent_a2"]
