"""Edge creation between canvas nodes.

An edge into an agent is mirrored into that agent's ``connections`` list (the
stored ids of its upstream nodes), which is what generation reads.
"""

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from canvas.errors import CanvasValidationError, PersistenceError
from canvas.graph_store import GraphStore, edge_id_for
from canvas.repository import CanvasRepository
from canvas.types import AgentData, Edge, NodeKind
from events.types import NoticeLevel

logger = structlog.get_logger(__name__)

Notify = Callable[[NoticeLevel, str], None]


@dataclass(frozen=True)
class Rejected:
    """A connection attempt that was refused without changing the graph."""

    reason: str


class ConnectionManager:
    """Validates and creates edges, keeping agent connection lists in sync.

    Args:
        store: The canvas graph.
        repository: Record storage for ``update_connections``.
        notify: Callback for user-visible notices.
    """

    def __init__(
        self,
        store: GraphStore,
        repository: CanvasRepository,
        notify: Notify | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._notify = notify or (lambda level, message: None)

    async def connect(
        self,
        source_id: str,
        target_id: str,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Edge | Rejected:
        """Connect ``source_id`` into ``target_id``.

        The source's stored id is appended to the target agent's
        connections every time, even when the pair was already connected.

        Returns:
            The edge now in the graph, or Rejected when the pair is invalid.
        """
        target_node = self._store.find_node(target_id)
        if target_node is not None and target_node.kind != NodeKind.AGENT:
            reason = f"Only agent nodes accept connections, not {target_node.kind.value}"
            logger.info("connection_rejected", source_id=source_id, target_id=target_id, reason=reason)
            return Rejected(reason=reason)

        edge = Edge(
            id=edge_id_for(source_id, target_id),
            source_node_id=source_id,
            target_node_id=target_id,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        try:
            self._store.add_edge(edge)
        except CanvasValidationError as e:
            logger.info(
                "connection_rejected",
                source_id=source_id,
                target_id=target_id,
                reason=str(e),
            )
            return Rejected(reason=str(e))

        source = self._store.find_node(source_id)
        target = self._store.find_node(target_id)
        if source is None or target is None or not isinstance(target.data, AgentData):
            return edge

        source_persisted_id = source.persisted_id
        if source_persisted_id is None:
            return edge

        connections = [*target.data.connections, source_persisted_id]
        self._store.update_node(target_id, connections=connections)
        logger.info(
            "connection_added",
            source_id=source_id,
            target_id=target_id,
            connections=len(connections),
        )

        if target.data.persisted_agent_id:
            await self._persist(target.data.persisted_agent_id, connections)
        return edge

    async def reconcile(self, agent_node_id: str) -> list[str] | None:
        """Recompute an agent's connections from the edges pointing into it.

        Returns:
            The new connection list, or None if the node is not an agent.
        """
        node = self._store.find_node(agent_node_id)
        if node is None or not isinstance(node.data, AgentData):
            return None

        connections = [
            persisted_id
            for source in self._store.sources_of(agent_node_id)
            if (persisted_id := source.persisted_id) is not None
        ]
        if connections == node.data.connections:
            return connections

        self._store.update_node(agent_node_id, connections=connections)
        if node.data.persisted_agent_id:
            await self._persist(node.data.persisted_agent_id, connections)
        return connections

    async def _persist(self, agent_id: str, connections: list[str]) -> None:
        try:
            await self._repository.update_connections(agent_id, connections)
        except PersistenceError as e:
            logger.error("connection_persist_failed", agent_id=agent_id, error=str(e))
            self._notify("error", "Failed to save connection")
