"""One open canvas: graph, components and event publishing for a project.

CanvasSession wires GraphStore, PlacementEngine, ConnectionManager,
DeletionCoordinator, PersistenceSync and GenerationOrchestrator together and
turns graph changes and notices into CanvasEvents on the EventBus.

Usage:
    >>> session = CanvasSession("proj_1", store, MockContentService(), get_event_bus())
    >>> await session.open()
    >>> node = await session.add_agent(AgentType.TITLE, Position(x=500, y=500))
    >>> await session.generate(node.id)
"""

import uuid
from typing import Any

import structlog

from canvas.chat import ChatLog
from canvas.connections import ConnectionManager, Rejected
from canvas.deletion import DeletionCoordinator, DeletionResult
from canvas.errors import CanvasValidationError, PersistenceError
from canvas.generation import GenerationOrchestrator
from canvas.graph_store import (
    Action,
    ApplyExternalUpdate,
    Graph,
    GraphStore,
    ReplaceGraph,
    edge_id_for,
    temporary_node_id,
)
from canvas.persistence_sync import (
    TRANSCRIPTION_INPUT_HANDLE,
    VIDEO_OUTPUT_HANDLE,
    PersistenceSync,
    agent_node,
    serialize_edge,
    serialize_node,
    transcription_node,
    video_node,
)
from canvas.placement import PlacementEngine
from canvas.repository import CanvasRepository
from canvas.scheduler import Scheduler
from canvas.types import (
    AgentData,
    AgentStatus,
    AgentType,
    Edge,
    MoodBoardData,
    MoodItem,
    MoodItemType,
    Node,
    NodeKind,
    ParsedTranscription,
    Position,
    TranscriptionState,
    VideoData,
    Viewport,
)
from events.bus import EventBus
from events.types import CanvasEvent, EventType, NoticeLevel
from services.content import ContentGenerationService
from services.transcription import (
    TranscriptionParseError,
    parse_transcription,
    validate_transcription,
)

logger = structlog.get_logger(__name__)

TRANSCRIPTION_OFFSET_X = 400.0


class CanvasSession:
    """The canvas of one project and every operation a client can invoke.

    Args:
        project_id: Project this canvas belongs to.
        repository: Record storage.
        content: Generation backend.
        event_bus: Where canvas events are published.
        scheduler: Timer source for autosave; defaults to the event loop.
        autosave_delay: Snapshot quiet period in seconds.
        viewport_delay: Viewport quiet period in seconds.
        poll_interval: Seconds between transcription status polls.
        chat_context_window: See GenerationOrchestrator.
    """

    def __init__(
        self,
        project_id: str,
        repository: CanvasRepository,
        content: ContentGenerationService,
        event_bus: EventBus,
        scheduler: Scheduler | None = None,
        autosave_delay: float = 2.0,
        viewport_delay: float = 1.0,
        poll_interval: float = 3.0,
        chat_context_window: float = 60.0,
    ) -> None:
        self.project_id = project_id
        self._repository = repository
        self._event_bus = event_bus
        self.poll_interval = poll_interval

        self.store = GraphStore()
        self.store.subscribe(self._publish_graph_change)
        self.placement = PlacementEngine(self.store)
        self.connections = ConnectionManager(self.store, repository, self.notify)
        self.deletion = DeletionCoordinator(
            self.store, repository, self.connections, self.notify
        )
        self.sync = PersistenceSync(
            project_id,
            self.store,
            repository,
            scheduler=scheduler,
            autosave_delay=autosave_delay,
            viewport_delay=viewport_delay,
            on_saved=self._on_snapshot_saved,
        )
        self.chat_log = ChatLog()
        self.generation = GenerationOrchestrator(
            self.store,
            repository,
            content,
            self.connections,
            self.chat_log,
            emit=self.emit,
            notify=self.notify,
            chat_context_window=chat_context_window,
        )

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    def emit(self, event_type: EventType, node_id: str | None, data: dict[str, Any]) -> None:
        self._event_bus.publish_sync(
            CanvasEvent(type=event_type, project_id=self.project_id, node_id=node_id, data=data)
        )

    def notify(self, level: NoticeLevel, message: str) -> None:
        logger.debug("canvas_notice", project_id=self.project_id, level=level, message=message)
        self.emit(EventType.NOTICE, None, {"level": level, "message": message})

    def _on_snapshot_saved(self, nodes: int, edges: int) -> None:
        self.emit(EventType.SNAPSHOT_SAVED, None, {"nodes": nodes, "edges": edges})

    def _publish_graph_change(self, action: Action, before: Graph, after: Graph) -> None:
        if isinstance(action, ReplaceGraph):
            return
        for node_id, node in after.nodes.items():
            previous = before.nodes.get(node_id)
            if previous is None:
                self.emit(EventType.NODE_ADDED, node_id, {"node": serialize_node(node)})
            elif previous is not node:
                self.emit(EventType.NODE_UPDATED, node_id, {"node": serialize_node(node)})
        for node_id in before.nodes.keys() - after.nodes.keys():
            self.emit(EventType.NODE_REMOVED, node_id, {"node_id": node_id})
        for edge_id, edge in after.edges.items():
            if edge_id not in before.edges:
                self.emit(EventType.EDGE_ADDED, None, {"edge": serialize_edge(edge)})
        for edge_id in before.edges.keys() - after.edges.keys():
            self.emit(EventType.EDGE_REMOVED, None, {"edge": serialize_edge(before.edges[edge_id])})

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def open(self) -> None:
        """Load the canvas once, read the viewport and start status polling."""
        result = await self.sync.load()
        if result is not None:
            self.chat_log = ChatLog(result.messages)
            self.generation.chat_log = self.chat_log
            self.emit(
                EventType.CANVAS_LOADED,
                None,
                {
                    "nodes": len(result.graph.nodes),
                    "edges": len(result.graph.edges),
                    "dropped_connections": len(result.dropped_connections),
                },
            )
        await self.sync.initialize_viewport()
        if self.poll_interval > 0:
            self.sync.start_polling(self.poll_interval)

    async def close(self) -> None:
        await self.sync.close()
        logger.info("canvas_session_closed", project_id=self.project_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "nodes": [serialize_node(n) for n in self.store.nodes],
            "edges": [serialize_edge(e) for e in self.store.edges],
            "viewport": self.sync.viewport.model_dump(),
            "chat": [m.model_dump() for m in self.chat_log.messages],
            "pending_deletion": list(self.deletion.pending_ids),
            "awaiting_upload": (
                self.generation.pending_upload.node_id
                if self.generation.pending_upload
                else None
            ),
        }

    # -----------------------------------------------------------------
    # Node creation
    # -----------------------------------------------------------------

    def _first_video(self) -> Node | None:
        for node in self.store.nodes_of_kind(NodeKind.VIDEO):
            if node.persisted_id:
                return node
        return None

    async def add_video(
        self,
        title: str,
        desired: Position,
        media_url: str | None = None,
        duration: float | None = None,
        format: str | None = None,
    ) -> Node:
        """Register a video record and place its node on the canvas."""
        position = self.placement.place(desired, NodeKind.VIDEO)
        record = await self._repository.create_video(
            self.project_id,
            title=title,
            media_url=media_url,
            duration=duration,
            format=format,
            canvas_position=position,
        )
        node = video_node(record)
        self.store.add_node(node)
        logger.info("video_added", project_id=self.project_id, node_id=node.id)
        return node

    async def add_agent(self, agent_type: AgentType, desired: Position) -> Node:
        """Drop a new agent on the canvas and connect the video into it.

        Raises:
            CanvasValidationError: If the canvas has no stored video.
            PersistenceError: If the agent record cannot be created.
        """
        video = self._first_video()
        if video is None:
            raise CanvasValidationError("Add a video before adding agents")

        position = self.placement.place(desired, NodeKind.AGENT)
        record = await self._repository.create_agent(
            self.project_id, agent_type, video_id=video.persisted_id, canvas_position=position
        )
        node = agent_node(record)
        self.store.add_node(node)
        await self.connections.connect(video.id, node.id)
        logger.info(
            "agent_added",
            project_id=self.project_id,
            node_id=node.id,
            agent_type=agent_type.value,
        )
        return node

    def add_moodboard(self, desired: Position) -> Node:
        position = self.placement.place(desired, NodeKind.MOODBOARD)
        node = Node(
            id=temporary_node_id(NodeKind.MOODBOARD),
            position=position,
            data=MoodBoardData(),
        )
        self.store.add_node(node)
        return node

    def _moodboard(self, node_id: str) -> MoodBoardData:
        node = self.store.find_node(node_id)
        if node is None:
            raise KeyError(node_id)
        if not isinstance(node.data, MoodBoardData):
            raise CanvasValidationError(f"Node {node_id} is not a mood board")
        return node.data

    def add_moodboard_item(
        self,
        node_id: str,
        url: str,
        item_type: MoodItemType = MoodItemType.OTHER,
        title: str | None = None,
    ) -> MoodItem:
        data = self._moodboard(node_id)
        item = MoodItem(id=uuid.uuid4().hex, url=url, type=item_type, title=title)
        self.store.update_node(node_id, items=[*data.items, item])
        return item

    def remove_moodboard_item(self, node_id: str, item_id: str) -> None:
        data = self._moodboard(node_id)
        self.store.update_node(node_id, items=[i for i in data.items if i.id != item_id])

    async def attach_transcription(
        self,
        video_node_id: str,
        parsed: ParsedTranscription,
        file_name: str,
    ) -> Node:
        """Add an uploaded transcript next to its video.

        Raises:
            KeyError: If the video node does not exist.
            CanvasValidationError: If the node is not a stored video.
        """
        video = self.store.find_node(video_node_id)
        if video is None:
            raise KeyError(video_node_id)
        if not isinstance(video.data, VideoData) or not video.data.persisted_video_id:
            raise CanvasValidationError("Transcriptions can only be attached to a saved video")
        video_id = video.data.persisted_video_id

        position = self.placement.place(
            video.position.offset(TRANSCRIPTION_OFFSET_X, 0), NodeKind.TRANSCRIPTION
        )
        record = await self._repository.create_transcription(
            self.project_id,
            file_name=file_name,
            full_text=parsed.full_text,
            format=parsed.format,
            segments=parsed.segments,
            word_count=parsed.word_count,
            duration=parsed.duration,
            video_id=video_id,
            canvas_position=position,
        )
        node = transcription_node(record)
        self.store.add_node(node)
        self.store.add_edge(
            Edge(
                id=edge_id_for(video_node_id, node.id),
                source_node_id=video_node_id,
                target_node_id=node.id,
                source_handle=VIDEO_OUTPUT_HANDLE,
                target_handle=TRANSCRIPTION_INPUT_HANDLE,
            )
        )

        if video.data.transcription_state != TranscriptionState.READY:
            try:
                await self._repository.update_transcription_status(
                    video_id, "completed", transcription=parsed.full_text
                )
            except PersistenceError as e:
                logger.error("transcription_status_persist_failed", video_id=video_id, error=str(e))
            self.store.dispatch(
                ApplyExternalUpdate(
                    video_node_id,
                    {
                        "transcription_state": TranscriptionState.READY,
                        "transcription_text": parsed.full_text,
                        "transcription_error": None,
                    },
                )
            )

        self.notify("success", f"Transcription {file_name} added ({parsed.word_count} words)")
        return node

    async def upload_transcription(self, video_node_id: str, file_name: str, content: str) -> Node:
        """Parse, validate and attach a raw transcript file.

        Validation warnings become notices. Errors reject the upload.

        Raises:
            KeyError: If the video node does not exist.
            TranscriptionParseError: If the file is unreadable or empty.
        """
        video = self.store.find_node(video_node_id)
        if video is None:
            raise KeyError(video_node_id)
        duration = video.data.duration if isinstance(video.data, VideoData) else None

        parsed = parse_transcription(file_name, content)
        report = validate_transcription(parsed, video_duration=duration)
        if not report.is_valid:
            raise TranscriptionParseError("; ".join(report.errors))
        for warning in report.warnings:
            self.notify("warning", warning)
        return await self.attach_transcription(video_node_id, parsed, file_name)

    # -----------------------------------------------------------------
    # Editing
    # -----------------------------------------------------------------

    async def move_node(self, node_id: str, position: Position) -> None:
        node = self.store.find_node(node_id)
        if node is None:
            raise KeyError(node_id)
        self.store.move_node(node_id, position)
        if node.persisted_id:
            try:
                await self._repository.update_position(node.kind, node.persisted_id, position)
            except PersistenceError as e:
                logger.error("position_persist_failed", node_id=node_id, error=str(e))

    def set_viewport(self, viewport: Viewport) -> None:
        self.sync.set_viewport(viewport)

    async def connect(
        self,
        source_id: str,
        target_id: str,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Edge | Rejected:
        return await self.connections.connect(source_id, target_id, source_handle, target_handle)

    async def update_content(self, node_id: str, text: str) -> None:
        """Replace an agent's draft with text the user typed."""
        node = self.store.find_node(node_id)
        if node is None:
            raise KeyError(node_id)
        if not isinstance(node.data, AgentData):
            raise CanvasValidationError(f"Node {node_id} is not an agent")
        status = node.data.status
        self.store.update_node(node_id, draft=text)
        if node.data.persisted_agent_id:
            try:
                await self._repository.update_agent_draft(
                    node.data.persisted_agent_id,
                    text,
                    status=status if status != AgentStatus.GENERATING else AgentStatus.READY,
                )
            except PersistenceError as e:
                logger.error("content_persist_failed", node_id=node_id, error=str(e))
                self.notify("error", "Failed to save your changes")

    # -----------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------

    async def request_delete(self, node_ids: list[str]) -> DeletionResult:
        result = await self.deletion.request_delete(node_ids)
        if result.pending:
            self.emit(
                EventType.DELETE_CONFIRMATION_REQUIRED,
                None,
                {"node_ids": list(self.deletion.pending_ids)},
            )
        return result

    async def confirm_delete(self) -> DeletionResult:
        return await self.deletion.confirm()

    def cancel_delete(self) -> None:
        self.deletion.cancel()

    # -----------------------------------------------------------------
    # Generation
    # -----------------------------------------------------------------

    async def generate(self, node_id: str) -> AgentStatus | None:
        return await self.generation.generate(node_id)

    async def regenerate(self, node_id: str) -> AgentStatus | None:
        return await self.generation.regenerate(node_id)

    async def generate_all(self) -> dict[str, int]:
        return await self.generation.generate_all()

    async def handle_chat_message(self, text: str) -> None:
        await self.generation.handle_chat_message(text)

    async def handle_thumbnail_upload(self, images: list[str]) -> AgentStatus | None:
        return await self.generation.handle_thumbnail_upload(images)
