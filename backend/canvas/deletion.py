"""Node deletion with confirmation and per-node rollback.

State machine:
    IDLE --request_delete(needs confirmation)--> PENDING_CONFIRMATION
    PENDING_CONFIRMATION --confirm()--> IDLE (nodes deleted)
    PENDING_CONFIRMATION --cancel()--> IDLE (nothing deleted)

Deletes are not atomic across a batch. A node whose stored delete fails is put
back into the graph along with its edges; the rest of the batch stays deleted.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from canvas.connections import ConnectionManager, Notify
from canvas.errors import PersistenceError
from canvas.graph_store import GraphStore
from canvas.repository import CanvasRepository
from canvas.types import AgentData, Edge, Node, TranscriptionData, VideoData

logger = structlog.get_logger(__name__)


class DeletionState(StrEnum):
    IDLE = "idle"
    PENDING_CONFIRMATION = "pending_confirmation"


@dataclass
class DeletionResult:
    """Outcome of a delete request.

    Attributes:
        pending: True if the request is waiting for confirmation.
        deleted: Node ids that are gone.
        failed: Node ids restored after their stored delete failed.
    """

    pending: bool = False
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def needs_confirmation(nodes: Iterable[Node]) -> bool:
    """Videos, transcriptions and agents with a draft are confirmed first."""
    for node in nodes:
        data = node.data
        if isinstance(data, (VideoData, TranscriptionData)):
            return True
        if isinstance(data, AgentData) and data.draft:
            return True
    return False


class DeletionCoordinator:
    def __init__(
        self,
        store: GraphStore,
        repository: CanvasRepository,
        connections: ConnectionManager,
        notify: Notify | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._connections = connections
        self._notify = notify or (lambda level, message: None)
        self.state = DeletionState.IDLE
        self.pending_ids: list[str] = []

    async def request_delete(self, node_ids: Iterable[str]) -> DeletionResult:
        """Delete nodes now, or hold them for confirmation."""
        ids = [i for i in dict.fromkeys(node_ids) if self._store.find_node(i) is not None]
        nodes = [self._store.find_node(i) for i in ids]

        if needs_confirmation(n for n in nodes if n is not None):
            if self.state == DeletionState.PENDING_CONFIRMATION:
                logger.info("deletion_pending_replaced", previous=self.pending_ids)
            self.state = DeletionState.PENDING_CONFIRMATION
            self.pending_ids = ids
            logger.info("deletion_confirmation_required", node_ids=ids)
            return DeletionResult(pending=True)

        return await self.execute_delete(ids)

    async def confirm(self) -> DeletionResult:
        if self.state != DeletionState.PENDING_CONFIRMATION:
            return DeletionResult()
        ids = self.pending_ids
        try:
            return await self.execute_delete(ids)
        finally:
            self.state = DeletionState.IDLE
            self.pending_ids = []

    def cancel(self) -> None:
        if self.state == DeletionState.PENDING_CONFIRMATION:
            logger.info("deletion_cancelled", node_ids=self.pending_ids)
        self.state = DeletionState.IDLE
        self.pending_ids = []

    async def execute_delete(self, node_ids: Iterable[str]) -> DeletionResult:
        """Remove nodes from the graph and delete their stored records.

        Deleting a video record also deletes its agents in storage; those
        agents are not deleted separately here.
        """
        result = DeletionResult()
        removed: list[tuple[Node, list[Edge]]] = []
        for node_id in node_ids:
            node = self._store.find_node(node_id)
            if node is None:
                continue
            incident = self._store.edges_into(node_id) + self._store.edges_from(node_id)
            removed.append((node, incident))
        if not removed:
            return result

        affected_agents = {
            edge.target_node_id for _, edges in removed for edge in edges
        }
        self._store.remove_nodes(node.id for node, _ in removed)

        for node, edges in removed:
            try:
                await self._delete_record(node)
            except PersistenceError as e:
                logger.error(
                    "node_delete_failed",
                    node_id=node.id,
                    kind=node.kind.value,
                    error=str(e),
                )
                self._restore(node, edges)
                result.failed.append(node.id)
            else:
                result.deleted.append(node.id)

        for agent_id in affected_agents:
            await self._connections.reconcile(agent_id)

        if result.failed:
            self._notify("error", f"Failed to delete {len(result.failed)} node(s)")
        logger.info(
            "nodes_deleted",
            deleted=len(result.deleted),
            failed=len(result.failed),
        )
        return result

    async def _delete_record(self, node: Node) -> None:
        data = node.data
        if isinstance(data, VideoData) and data.persisted_video_id:
            await self._repository.remove_video(data.persisted_video_id)
        elif isinstance(data, AgentData) and data.persisted_agent_id:
            await self._repository.remove_agent(data.persisted_agent_id)
        elif isinstance(data, TranscriptionData) and data.persisted_transcription_id:
            await self._repository.remove_transcription(data.persisted_transcription_id)
        # Mood boards and unsaved nodes only live in the snapshot

    def _restore(self, node: Node, edges: list[Edge]) -> None:
        self._store.add_node(node)
        for edge in edges:
            other = edge.target_node_id if edge.source_node_id == node.id else edge.source_node_id
            if self._store.find_node(other) is not None:
                self._store.add_edge(edge)
