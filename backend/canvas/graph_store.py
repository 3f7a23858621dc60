"""In-memory canvas graph with a reducer interface.

The graph is an immutable value. Every mutation is an action object passed
to ``GraphStore.dispatch``, which runs the pure ``reduce`` function and swaps
in the result. Listeners see each (action, before, after) triple in dispatch
order, which is how autosave and client events hear about changes.

Usage:
    >>> store = GraphStore()
    >>> store.add_node(Node(id="video_v1", position=Position(x=0, y=0), data=VideoData()))
    >>> store.add_edge(Edge(id="evideo_v1-agent_a1", source_node_id="video_v1",
    ...                     target_node_id="agent_a1"))
"""

import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from canvas.errors import CanvasValidationError
from canvas.types import Edge, Node, NodeKind, Position

logger = structlog.get_logger(__name__)


def node_id_for(kind: NodeKind, persisted_id: str) -> str:
    """Node id of a node backed by a stored record."""
    return f"{kind.value}_{persisted_id}"


def temporary_node_id(kind: NodeKind) -> str:
    """Node id for a node that has no stored record (yet)."""
    return f"{kind.value}_tmp_{uuid.uuid4().hex[:12]}"


def edge_id_for(source_node_id: str, target_node_id: str) -> str:
    return f"e{source_node_id}-{target_node_id}"


@dataclass(frozen=True)
class Graph:
    """Immutable snapshot of nodes and edges, both in insertion order."""

    nodes: Mapping[str, Node] = field(default_factory=lambda: MappingProxyType({}))
    edges: Mapping[str, Edge] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def of(cls, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()) -> "Graph":
        return cls(
            nodes=MappingProxyType({n.id: n for n in nodes}),
            edges=MappingProxyType({e.id: e for e in edges}),
        )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddNode:
    node: Node


@dataclass(frozen=True)
class RemoveNodes:
    """Remove nodes together with every edge touching them."""

    node_ids: tuple[str, ...]


@dataclass(frozen=True)
class UpdateNode:
    """Merge ``patch`` into a node's data. Missing nodes are ignored."""

    node_id: str
    patch: Mapping[str, Any]


@dataclass(frozen=True)
class MoveNode:
    node_id: str
    position: Position


@dataclass(frozen=True)
class AddEdge:
    edge: Edge


@dataclass(frozen=True)
class RemoveEdges:
    edge_ids: tuple[str, ...]


@dataclass(frozen=True)
class ApplyExternalUpdate:
    """Merge fields read back from storage into a node.

    Only fields whose value differs are applied; if nothing differs the
    graph is returned unchanged and no listener fires. Both the status poll
    and direct updates after an upload go through this action.
    """

    node_id: str
    patch: Mapping[str, Any]


@dataclass(frozen=True)
class ReplaceGraph:
    graph: Graph


Action = (
    AddNode | RemoveNodes | UpdateNode | MoveNode | AddEdge | RemoveEdges
    | ApplyExternalUpdate | ReplaceGraph
)

Listener = Callable[[Action, Graph, Graph], None]


def _with_nodes(graph: Graph, nodes: dict[str, Node]) -> Graph:
    return Graph(nodes=MappingProxyType(nodes), edges=graph.edges)


def _validate_edge(graph: Graph, edge: Edge) -> None:
    if edge.source_node_id == edge.target_node_id:
        raise CanvasValidationError(f"Self-loop on {edge.source_node_id} is not allowed")
    source = graph.nodes.get(edge.source_node_id)
    target = graph.nodes.get(edge.target_node_id)
    if source is None or target is None:
        missing = edge.source_node_id if source is None else edge.target_node_id
        raise CanvasValidationError(f"Edge endpoint {missing} does not exist")
    # A video also owns its transcriptions through a video -> transcription edge
    owns = source.kind == NodeKind.VIDEO and target.kind == NodeKind.TRANSCRIPTION
    if target.kind != NodeKind.AGENT and not owns:
        raise CanvasValidationError(
            f"Only agent nodes accept connections, not {target.kind.value}"
        )


def _merge(node: Node, patch: Mapping[str, Any], only_changed: bool) -> Node | None:
    if only_changed:
        patch = {k: v for k, v in patch.items() if getattr(node.data, k, None) != v}
        if not patch:
            return None
    return node.model_copy(update={"data": node.data.model_copy(update=dict(patch))})


def reduce(graph: Graph, action: Action) -> Graph:
    """Apply one action to a graph and return the resulting graph.

    Returns the same ``graph`` object when the action changes nothing.

    Raises:
        CanvasValidationError: If an AddNode or AddEdge action would break
            graph invariants.
    """
    if isinstance(action, AddNode):
        if action.node.id in graph.nodes:
            raise CanvasValidationError(f"Node {action.node.id} already exists")
        return _with_nodes(graph, {**graph.nodes, action.node.id: action.node})

    if isinstance(action, RemoveNodes):
        doomed = set(action.node_ids) & graph.nodes.keys()
        if not doomed:
            return graph
        nodes = {k: v for k, v in graph.nodes.items() if k not in doomed}
        edges = {
            k: e
            for k, e in graph.edges.items()
            if e.source_node_id not in doomed and e.target_node_id not in doomed
        }
        return Graph(nodes=MappingProxyType(nodes), edges=MappingProxyType(edges))

    if isinstance(action, (UpdateNode, ApplyExternalUpdate)):
        node = graph.nodes.get(action.node_id)
        if node is None:
            return graph
        updated = _merge(node, action.patch, isinstance(action, ApplyExternalUpdate))
        if updated is None:
            return graph
        return _with_nodes(graph, {**graph.nodes, node.id: updated})

    if isinstance(action, MoveNode):
        node = graph.nodes.get(action.node_id)
        if node is None or node.position == action.position:
            return graph
        moved = node.model_copy(update={"position": action.position})
        return _with_nodes(graph, {**graph.nodes, node.id: moved})

    if isinstance(action, AddEdge):
        if action.edge.id in graph.edges:
            return graph
        _validate_edge(graph, action.edge)
        return Graph(
            nodes=graph.nodes,
            edges=MappingProxyType({**graph.edges, action.edge.id: action.edge}),
        )

    if isinstance(action, RemoveEdges):
        doomed = set(action.edge_ids) & graph.edges.keys()
        if not doomed:
            return graph
        edges = {k: e for k, e in graph.edges.items() if k not in doomed}
        return Graph(nodes=graph.nodes, edges=MappingProxyType(edges))

    if isinstance(action, ReplaceGraph):
        return action.graph

    raise CanvasValidationError(f"Unknown action {type(action).__name__}")


class IdMap:
    """Bidirectional map between stored record ids and node ids.

    Keys are ``(kind, persisted_id)`` so that ids from different tables can
    never shadow each other.
    """

    # Resolution order for ids whose kind is not known
    LOOKUP_ORDER = (NodeKind.VIDEO, NodeKind.AGENT, NodeKind.TRANSCRIPTION)

    def __init__(self) -> None:
        self._by_persisted: dict[tuple[NodeKind, str], str] = {}
        self._by_node: dict[str, tuple[NodeKind, str]] = {}

    def bind(self, kind: NodeKind, persisted_id: str, node_id: str) -> None:
        self.unbind(node_id)
        self._by_persisted[(kind, persisted_id)] = node_id
        self._by_node[node_id] = (kind, persisted_id)

    def unbind(self, node_id: str) -> None:
        key = self._by_node.pop(node_id, None)
        if key is not None:
            self._by_persisted.pop(key, None)

    def clear(self) -> None:
        self._by_persisted.clear()
        self._by_node.clear()

    def node_id(self, persisted_id: str, kind: NodeKind | None = None) -> str | None:
        """Find the node for a stored id.

        Without ``kind``, videos are checked first, then agents, then
        transcriptions.
        """
        kinds = (kind,) if kind is not None else self.LOOKUP_ORDER
        for k in kinds:
            node_id = self._by_persisted.get((k, persisted_id))
            if node_id is not None:
                return node_id
        return None

    def persisted_id(self, node_id: str) -> str | None:
        key = self._by_node.get(node_id)
        return key[1] if key else None

    def __len__(self) -> int:
        return len(self._by_node)


class GraphStore:
    """Owner of the current canvas graph.

    All reads go through ``graph`` or the query helpers; all writes go
    through ``dispatch``. Listener exceptions are logged and never undo a
    mutation.
    """

    def __init__(self, graph: Graph | None = None) -> None:
        self._graph = graph or Graph()
        self._listeners: list[Listener] = []
        self.ids = IdMap()
        self._reindex(self._graph.nodes.values())

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def nodes(self) -> list[Node]:
        return list(self._graph.nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._graph.edges.values())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, action: Action) -> Graph:
        """Apply an action and notify listeners if the graph changed."""
        before = self._graph
        after = reduce(before, action)
        if after is before:
            return after

        self._graph = after
        self._sync_ids(action, before, after)

        for listener in list(self._listeners):
            try:
                listener(action, before, after)
            except Exception:
                logger.exception("graph_listener_failed", action=type(action).__name__)
        return after

    def _reindex(self, nodes: Iterable[Node]) -> None:
        for node in nodes:
            persisted_id = node.persisted_id
            if persisted_id:
                self.ids.bind(node.kind, persisted_id, node.id)
            else:
                self.ids.unbind(node.id)

    def _sync_ids(self, action: Action, before: Graph, after: Graph) -> None:
        if isinstance(action, ReplaceGraph):
            self.ids.clear()
            self._reindex(after.nodes.values())
        elif isinstance(action, RemoveNodes):
            for node_id in action.node_ids:
                if node_id in before.nodes:
                    self.ids.unbind(node_id)
        elif isinstance(action, (AddNode, UpdateNode, ApplyExternalUpdate)):
            node_id = action.node.id if isinstance(action, AddNode) else action.node_id
            self._reindex([after.nodes[node_id]])

    # -----------------------------------------------------------------
    # Convenience mutations
    # -----------------------------------------------------------------

    def add_node(self, node: Node) -> None:
        self.dispatch(AddNode(node))

    def remove_nodes(self, node_ids: Iterable[str]) -> None:
        self.dispatch(RemoveNodes(tuple(node_ids)))

    def update_node(self, node_id: str, **patch: Any) -> None:
        self.dispatch(UpdateNode(node_id, patch))

    def move_node(self, node_id: str, position: Position) -> None:
        self.dispatch(MoveNode(node_id, position))

    def add_edge(self, edge: Edge) -> None:
        self.dispatch(AddEdge(edge))

    def remove_edges(self, edge_ids: Iterable[str]) -> None:
        self.dispatch(RemoveEdges(tuple(edge_ids)))

    def replace(self, graph: Graph) -> None:
        self.dispatch(ReplaceGraph(graph))

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def find_node(self, node_id: str) -> Node | None:
        return self._graph.nodes.get(node_id)

    def edges_into(self, node_id: str) -> list[Edge]:
        return [e for e in self._graph.edges.values() if e.target_node_id == node_id]

    def edges_from(self, node_id: str) -> list[Edge]:
        return [e for e in self._graph.edges.values() if e.source_node_id == node_id]

    def nodes_of_kind(self, kind: NodeKind) -> list[Node]:
        return [n for n in self._graph.nodes.values() if n.kind == kind]

    def sources_of(self, node_id: str) -> list[Node]:
        """Nodes with an edge into ``node_id``, in edge order."""
        return [
            self._graph.nodes[e.source_node_id]
            for e in self.edges_into(node_id)
            if e.source_node_id in self._graph.nodes
        ]
