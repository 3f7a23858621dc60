"""Loading a canvas from storage and saving it back.

Load runs once per session: records become nodes, agent connection lists and
transcription ownership become edges, stored chat entries become one flat
timeline. After load (and after the viewport has been read once) every graph
change re-arms a debounced snapshot save; viewport changes have their own,
shorter, debounced channel. Failed saves are logged and dropped.

A poll loop re-reads video transcription status and merges any change
through the same ``ApplyExternalUpdate`` action that direct updates use.

Usage:
    >>> sync = PersistenceSync("proj_1", store, repository)
    >>> await sync.load()
    >>> await sync.initialize_viewport()
    >>> store.move_node("video_v1", Position(x=10, y=10))  # arms autosave
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic_core import to_jsonable_python

from canvas.errors import PersistenceError
from canvas.graph_store import (
    Action,
    ApplyExternalUpdate,
    Graph,
    GraphStore,
    IdMap,
    edge_id_for,
    node_id_for,
)
from canvas.repository import CanvasRepository
from canvas.scheduler import Debouncer, Scheduler
from canvas.types import (
    AgentData,
    ChatMessage,
    Edge,
    Node,
    NodeKind,
    TranscriptionData,
    VideoData,
    Viewport,
)
from models.records import AgentRecord, CanvasSnapshot, TranscriptionRecord, VideoRecord

logger = structlog.get_logger(__name__)

VIDEO_OUTPUT_HANDLE = "video-output"
TRANSCRIPTION_INPUT_HANDLE = "transcription-input"


@dataclass
class Reconstruction:
    """Result of turning stored records into a graph."""

    graph: Graph
    messages: list[ChatMessage] = field(default_factory=list)
    dropped_connections: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Records -> nodes
# ---------------------------------------------------------------------------


def video_node(record: VideoRecord) -> Node:
    return Node(
        id=node_id_for(NodeKind.VIDEO, record.id),
        position=record.canvas_position,
        data=VideoData(
            persisted_video_id=record.id,
            title=record.title,
            media_url=record.media_url,
            duration=record.duration,
            transcription_state=record.transcription_state,
            transcription_text=record.transcription,
            transcription_error=record.transcription_error,
        ),
    )


def transcription_node(record: TranscriptionRecord) -> Node:
    return Node(
        id=node_id_for(NodeKind.TRANSCRIPTION, record.id),
        position=record.canvas_position,
        data=TranscriptionData(
            persisted_transcription_id=record.id,
            file_name=record.file_name,
            format=record.format,
            full_text=record.full_text,
            segments=record.segments,
            word_count=record.word_count,
            duration=record.duration,
        ),
    )


def agent_messages(record: AgentRecord, node_id: str) -> list[ChatMessage]:
    return [
        ChatMessage(
            id=uuid.uuid4().hex,
            role=entry.role,
            content=entry.message,
            timestamp=entry.timestamp,
            agent_node_id=node_id,
        )
        for entry in record.chat_history
    ]


def agent_node(record: AgentRecord) -> Node:
    node_id = node_id_for(NodeKind.AGENT, record.id)
    return Node(
        id=node_id,
        position=record.canvas_position,
        data=AgentData(
            persisted_agent_id=record.id,
            agent_type=record.type,
            draft=record.draft,
            thumbnail_url=record.thumbnail_url,
            thumbnail_storage_id=record.thumbnail_storage_id,
            status=record.status,
            connections=list(record.connections),
            chat_history=agent_messages(record, node_id),
        ),
    )


def video_status_patch(record: VideoRecord) -> dict[str, Any]:
    """Fields of a video node that mirror the stored transcription status."""
    return {
        "transcription_state": record.transcription_state,
        "transcription_text": record.transcription,
        "transcription_error": record.transcription_error,
    }


def reconstruct(
    videos: list[VideoRecord],
    agents: list[AgentRecord],
    transcriptions: list[TranscriptionRecord],
    snapshot: CanvasSnapshot | None = None,
) -> Reconstruction:
    """Build a graph from stored records.

    Each id in an agent's connections is looked up among videos, then
    agents, then transcriptions. Ids that match nothing produce no edge and
    are reported in ``dropped_connections``. Mood boards, which have no
    record, are taken from the snapshot together with their edges.
    """
    nodes: list[Node] = (
        [video_node(v) for v in videos]
        + [transcription_node(t) for t in transcriptions]
        + [agent_node(a) for a in agents]
    )

    ids = IdMap()
    for node in nodes:
        ids.bind(node.kind, node.persisted_id, node.id)

    edges: dict[str, Edge] = {}
    dropped: list[str] = []
    for record in agents:
        target = node_id_for(NodeKind.AGENT, record.id)
        for connection_id in record.connections:
            source = ids.node_id(connection_id)
            if source is None or source == target:
                dropped.append(connection_id)
                continue
            edge = Edge(
                id=edge_id_for(source, target),
                source_node_id=source,
                target_node_id=target,
            )
            edges[edge.id] = edge

    for record in transcriptions:
        if record.video_id is None:
            continue
        source = ids.node_id(record.video_id, NodeKind.VIDEO)
        if source is None:
            continue
        target = node_id_for(NodeKind.TRANSCRIPTION, record.id)
        edge = Edge(
            id=edge_id_for(source, target),
            source_node_id=source,
            target_node_id=target,
            source_handle=VIDEO_OUTPUT_HANDLE,
            target_handle=TRANSCRIPTION_INPUT_HANDLE,
        )
        edges[edge.id] = edge

    if snapshot is not None:
        _restore_moodboards(snapshot, nodes, edges)

    messages = sorted(
        (m for n in nodes if isinstance(n.data, AgentData) for m in n.data.chat_history),
        key=lambda m: m.timestamp,
    )
    return Reconstruction(
        graph=Graph.of(nodes, edges.values()),
        messages=messages,
        dropped_connections=dropped,
    )


def _restore_moodboards(
    snapshot: CanvasSnapshot, nodes: list[Node], edges: dict[str, Edge]
) -> None:
    moodboards: list[Node] = []
    for raw in snapshot.nodes:
        if raw.get("data", {}).get("kind") != NodeKind.MOODBOARD:
            continue
        try:
            moodboards.append(Node.model_validate(raw))
        except ValueError as e:
            logger.warning("snapshot_moodboard_invalid", node_id=raw.get("id"), error=str(e))
    nodes.extend(moodboards)

    moodboard_ids = {n.id for n in moodboards}
    known = {n.id: n for n in nodes}
    for raw in snapshot.edges:
        if raw.get("source_node_id") not in moodboard_ids:
            continue
        target = known.get(raw.get("target_node_id", ""))
        if target is None or target.kind != NodeKind.AGENT:
            continue
        try:
            edge = Edge.model_validate(raw)
        except ValueError as e:
            logger.warning("snapshot_edge_invalid", edge_id=raw.get("id"), error=str(e))
            continue
        edges[edge.id] = edge


# ---------------------------------------------------------------------------
# Nodes -> snapshot
# ---------------------------------------------------------------------------


def _is_storable(value: Any) -> bool:
    return value is not None and not callable(value)


def serialize_node(node: Node) -> dict[str, Any]:
    """Dump a node for the snapshot, dropping callables and unset values."""
    data = {k: v for k, v in node.data.model_dump().items() if _is_storable(v)}
    return to_jsonable_python(
        {
            "id": node.id,
            "position": node.position.model_dump(),
            "data": data,
        }
    )


def serialize_edge(edge: Edge) -> dict[str, Any]:
    return edge.model_dump(exclude_none=True)


class PersistenceSync:
    """Keeps a GraphStore and the stored snapshot in step.

    Args:
        project_id: Project whose records and snapshot are used.
        store: The canvas graph.
        repository: Record storage.
        scheduler: Timer source for the debounced saves.
        autosave_delay: Snapshot quiet period in seconds.
        viewport_delay: Viewport quiet period in seconds.
        on_saved: Called after each successful snapshot write.
    """

    def __init__(
        self,
        project_id: str,
        store: GraphStore,
        repository: CanvasRepository,
        scheduler: Scheduler | None = None,
        autosave_delay: float = 2.0,
        viewport_delay: float = 1.0,
        on_saved: Callable[[int, int], None] | None = None,
    ) -> None:
        self.project_id = project_id
        self._store = store
        self._repository = repository
        self._on_saved = on_saved
        self.viewport = Viewport()
        self.loaded = False
        self.viewport_initialized = False
        self._snapshot_saver = Debouncer(
            "snapshot", autosave_delay, self.save_snapshot, scheduler
        )
        self._viewport_saver = Debouncer(
            "viewport", viewport_delay, self.save_viewport, scheduler
        )
        self._poll_task: asyncio.Task[None] | None = None
        self._unsubscribe = store.subscribe(self._on_graph_change)

    @property
    def autosave_active(self) -> bool:
        return self.loaded and self.viewport_initialized

    # -----------------------------------------------------------------
    # Load
    # -----------------------------------------------------------------

    async def load(self) -> Reconstruction | None:
        """Rebuild the graph from storage, once.

        Returns:
            The reconstruction, or None if this session already loaded.
        """
        if self.loaded:
            logger.debug("canvas_load_skipped", project_id=self.project_id)
            return None

        videos, agents, transcriptions = await asyncio.gather(
            self._repository.list_videos(self.project_id),
            self._repository.list_agents(self.project_id),
            self._repository.list_transcriptions(self.project_id),
        )
        if self.loaded:
            return None

        try:
            snapshot = await self._repository.get_snapshot(self.project_id)
        except PersistenceError as e:
            logger.error("snapshot_read_failed", project_id=self.project_id, error=str(e))
            snapshot = None

        result = reconstruct(videos, agents, transcriptions, snapshot)
        self._store.replace(result.graph)
        self.loaded = True

        if result.dropped_connections:
            logger.warning(
                "connections_unresolved",
                project_id=self.project_id,
                dropped=result.dropped_connections,
            )
        logger.info(
            "canvas_loaded",
            project_id=self.project_id,
            nodes=len(result.graph.nodes),
            edges=len(result.graph.edges),
            messages=len(result.messages),
        )
        return result

    async def initialize_viewport(self) -> Viewport:
        """Adopt the stored viewport if it is valid, else the default."""
        try:
            snapshot = await self._repository.get_snapshot(self.project_id)
        except PersistenceError as e:
            logger.error("viewport_read_failed", project_id=self.project_id, error=str(e))
            snapshot = None

        if snapshot is not None and snapshot.viewport.is_valid():
            self.viewport = snapshot.viewport
        else:
            self.viewport = Viewport()
        self.viewport_initialized = True
        return self.viewport

    # -----------------------------------------------------------------
    # Save
    # -----------------------------------------------------------------

    def _on_graph_change(self, action: Action, before: Graph, after: Graph) -> None:
        if self.autosave_active:
            self._snapshot_saver.trigger()

    def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport
        if self.autosave_active:
            self._viewport_saver.trigger()

    async def save_snapshot(self) -> None:
        nodes = [serialize_node(n) for n in self._store.nodes]
        edges = [serialize_edge(e) for e in self._store.edges]
        try:
            await self._repository.save_snapshot(self.project_id, nodes, edges, self.viewport)
        except PersistenceError as e:
            logger.error("snapshot_save_failed", project_id=self.project_id, error=str(e))
            return
        logger.debug("snapshot_saved", project_id=self.project_id, nodes=len(nodes))
        if self._on_saved is not None:
            self._on_saved(len(nodes), len(edges))

    async def save_viewport(self) -> None:
        try:
            await self._repository.save_viewport(self.project_id, self.viewport)
        except PersistenceError as e:
            logger.error("viewport_save_failed", project_id=self.project_id, error=str(e))

    async def flush(self) -> None:
        """Write any pending debounced saves immediately."""
        await self._snapshot_saver.flush()
        await self._viewport_saver.flush()

    # -----------------------------------------------------------------
    # Transcription status
    # -----------------------------------------------------------------

    def apply_video_record(self, record: VideoRecord) -> bool:
        """Merge a stored video's transcription status into its node.

        Returns:
            True if the node changed.
        """
        node_id = self._store.ids.node_id(record.id, NodeKind.VIDEO)
        if node_id is None:
            return False
        before = self._store.graph
        after = self._store.dispatch(ApplyExternalUpdate(node_id, video_status_patch(record)))
        return after is not before

    async def poll_transcriptions(self) -> int:
        """Re-read every video's status once. Returns how many nodes changed."""
        changed = 0
        for node in self._store.nodes_of_kind(NodeKind.VIDEO):
            video_id = node.persisted_id
            if not video_id:
                continue
            try:
                record = await self._repository.get_video(video_id)
            except PersistenceError as e:
                logger.warning("transcription_poll_failed", video_id=video_id, error=str(e))
                continue
            if record is not None and self.apply_video_record(record):
                changed += 1
                logger.info(
                    "transcription_status_changed",
                    video_id=video_id,
                    state=record.transcription_state.value,
                )
        return changed

    def start_polling(self, interval: float) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(interval))

    async def _poll_loop(self, interval: float) -> None:
        logger.info("transcription_poll_started", project_id=self.project_id, interval=interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_transcriptions()
            except Exception as e:
                logger.error("transcription_poll_error", project_id=self.project_id, error=str(e))

    async def stop_polling(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None

    async def close(self) -> None:
        await self.stop_polling()
        await self.flush()
        self._unsubscribe()
