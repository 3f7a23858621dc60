"""Generation, regeneration and chat refinement of agent nodes.

Per agent node:
    idle | ready | error --generate--> generating --success--> ready
                                       generating --failure--> error

Thumbnail agents need uploaded images. Asking one to generate without images
leaves its status alone and parks it as the pending upload; the upload then
runs ``generate`` with the images.

Every suspension point (storage and generation service calls) may interleave
with other edits. Updates for a node that was deleted meanwhile are no-ops.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from canvas import chat
from canvas.chat import ChatLog
from canvas.connections import ConnectionManager, Notify
from canvas.errors import CanvasValidationError, PersistenceError
from canvas.graph_store import GraphStore
from canvas.repository import CanvasRepository
from canvas.types import (
    AgentData,
    AgentStatus,
    AgentType,
    ChatMessage,
    GenerationProgress,
    MoodBoardData,
    Node,
    NodeKind,
    TranscriptionData,
    VideoData,
)
from events.types import EventType
from services.content import (
    ConnectedOutput,
    ContentGenerationService,
    ManualTranscription,
    MoodReference,
    ProfileData,
    VideoContext,
)

logger = structlog.get_logger(__name__)

Emit = Callable[[EventType, str | None, dict[str, Any]], None]

GENERATING_STAGES: dict[AgentType, str] = {
    AgentType.THUMBNAIL: "Creating thumbnail design...",
    AgentType.TITLE: "Crafting compelling title...",
    AgentType.DESCRIPTION: "Writing SEO-optimized description...",
    AgentType.TWEETS: "Creating viral social content...",
}


@dataclass
class PendingUpload:
    node_id: str
    additional_context: str | None = None


@dataclass
class UpstreamContext:
    """Material gathered from the nodes connected into an agent."""

    video: VideoContext
    video_id: str | None = None
    connected_outputs: list[ConnectedOutput] = field(default_factory=list)
    mood_references: list[MoodReference] = field(default_factory=list)

    @property
    def has_transcription(self) -> bool:
        return bool(self.video.transcription or self.video.manual_transcriptions)


class GenerationOrchestrator:
    """Runs the generation state machine for every agent node of a canvas.

    Args:
        store: The canvas graph.
        repository: Record storage.
        content: Generation backend.
        connections: Used by ``generate_all`` to wire agents to the video.
        chat_log: Canvas chat timeline.
        emit: Publishes a canvas event (type, node id, payload).
        notify: Publishes a user-visible notice.
        profile: Channel profile passed to the generation backend.
        chat_context_window: Seconds a thumbnail "regenerate" chat request
            stays usable as upload context.
    """

    def __init__(
        self,
        store: GraphStore,
        repository: CanvasRepository,
        content: ContentGenerationService,
        connections: ConnectionManager,
        chat_log: ChatLog,
        emit: Emit | None = None,
        notify: Notify | None = None,
        profile: ProfileData | None = None,
        chat_context_window: float = 60.0,
    ) -> None:
        self._store = store
        self._repository = repository
        self._content = content
        self._connections = connections
        self.chat_log = chat_log
        self._emit = emit or (lambda event_type, node_id, data: None)
        self._notify = notify or (lambda level, message: None)
        self.profile = profile or ProfileData()
        self.chat_context_window = chat_context_window
        self.pending_upload: PendingUpload | None = None

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _agent(self, node_id: str) -> tuple[Node, AgentData]:
        node = self._store.find_node(node_id)
        if node is None:
            raise KeyError(node_id)
        if not isinstance(node.data, AgentData):
            raise CanvasValidationError(f"Node {node_id} is not an agent")
        return node, node.data

    def _progress(self, node_id: str, stage: str, percent: int) -> None:
        progress = GenerationProgress(stage=stage, percent=percent)
        self._store.update_node(node_id, generation_progress=progress)
        self._emit(EventType.GENERATION_PROGRESS, node_id, progress.model_dump())

    def _set_in_use(self, node_ids: list[str], in_use: bool) -> None:
        for node_id in node_ids:
            self._store.update_node(node_id, is_being_used=in_use)

    async def _persist_status(self, agent_id: str | None, status: AgentStatus) -> None:
        if not agent_id:
            return
        try:
            await self._repository.update_agent_status(agent_id, status)
        except PersistenceError as e:
            logger.error("agent_status_persist_failed", agent_id=agent_id, error=str(e))
            self._notify("error", "Failed to save agent status")

    async def _persist_draft(
        self,
        agent_id: str | None,
        draft: str,
        thumbnail_url: str | None = None,
        storage_id: str | None = None,
    ) -> None:
        if not agent_id:
            return
        try:
            await self._repository.update_agent_draft(
                agent_id,
                draft,
                status=AgentStatus.READY,
                thumbnail_url=thumbnail_url,
                thumbnail_storage_id=storage_id,
            )
        except PersistenceError as e:
            logger.error("agent_draft_persist_failed", agent_id=agent_id, error=str(e))
            self._notify("error", "Generated content could not be saved")

    async def say(
        self,
        role: Literal["user", "ai"],
        content: str,
        node_id: str | None = None,
        persist: bool = True,
    ) -> ChatMessage:
        """Append a chat message, mirror it into the agent node and store it."""
        message = self.chat_log.add(role, content, node_id)
        self._emit(EventType.CHAT_MESSAGE, node_id, {"message": message.model_dump()})

        node = self._store.find_node(node_id) if node_id else None
        if node is not None and isinstance(node.data, AgentData):
            self._store.update_node(
                node.id, chat_history=[*node.data.chat_history, message]
            )
            if persist and node.data.persisted_agent_id:
                try:
                    await self._repository.add_chat_message(
                        node.data.persisted_agent_id, role, content
                    )
                except PersistenceError as e:
                    logger.warning("chat_message_persist_failed", node_id=node.id, error=str(e))
        return message

    async def gather_context(self, node_id: str) -> UpstreamContext:
        """Collect what the nodes connected into ``node_id`` provide."""
        video_node: Node | None = None
        manual: list[ManualTranscription] = []
        outputs: list[ConnectedOutput] = []
        references: list[MoodReference] = []

        for source in self._store.sources_of(node_id):
            data = source.data
            if isinstance(data, VideoData):
                video_node = video_node or source
            elif isinstance(data, TranscriptionData):
                manual.append(
                    ManualTranscription(
                        file_name=data.file_name, format=data.format, text=data.full_text
                    )
                )
            elif isinstance(data, MoodBoardData):
                references += [
                    MoodReference(url=item.url, type=item.type, title=item.title)
                    for item in data.items
                ]
            elif isinstance(data, AgentData):
                if data.draft:
                    outputs.append(ConnectedOutput(type=data.agent_type, content=data.draft))

        if video_node is None or not isinstance(video_node.data, VideoData):
            return UpstreamContext(
                video=VideoContext(manual_transcriptions=manual),
                connected_outputs=outputs,
                mood_references=references,
            )

        data = video_node.data
        video = VideoContext(
            title=data.title,
            transcription=data.transcription_text,
            duration=data.duration,
            manual_transcriptions=manual,
        )
        if data.persisted_video_id:
            try:
                record = await self._repository.get_video(data.persisted_video_id)
            except PersistenceError as e:
                logger.warning("video_context_read_failed", node_id=node_id, error=str(e))
                record = None
            if record is not None:
                video = VideoContext(
                    title=record.title,
                    transcription=record.transcription,
                    duration=record.duration,
                    format=record.format,
                    manual_transcriptions=manual,
                )
        return UpstreamContext(
            video=video,
            video_id=data.persisted_video_id,
            connected_outputs=outputs,
            mood_references=references,
        )

    # -----------------------------------------------------------------
    # Generate
    # -----------------------------------------------------------------

    async def generate(
        self,
        node_id: str,
        images: list[str] | None = None,
        extra_context: str | None = None,
    ) -> AgentStatus | None:
        """Generate an agent's artifact from its upstream context.

        Returns:
            The resulting status, or None when a thumbnail agent was parked
            waiting for images (its status is unchanged).

        Raises:
            KeyError: If the node does not exist.
            CanvasValidationError: If the node is not an agent.
        """
        _, data = self._agent(node_id)
        agent_type = data.agent_type
        agent_id = data.persisted_agent_id

        if agent_type == AgentType.THUMBNAIL and not images:
            self.request_image_upload(node_id, extra_context)
            return None

        log = logger.bind(node_id=node_id, agent_type=agent_type.value)
        log.info("generation_started")

        self._store.update_node(
            node_id,
            status=AgentStatus.GENERATING,
            generation_progress=GenerationProgress(stage="Preparing...", percent=0),
        )
        self._emit(EventType.GENERATION_STARTED, node_id, {"agent_type": agent_type.value})
        self._emit(EventType.GENERATION_PROGRESS, node_id, {"stage": "Preparing...", "percent": 0})

        touched: list[str] = [
            s.id
            for s in self._store.sources_of(node_id)
            if isinstance(s.data, (TranscriptionData, MoodBoardData))
        ]
        self._set_in_use(touched, True)

        try:
            await self._persist_status(agent_id, AgentStatus.GENERATING)

            self._progress(node_id, "Gathering context...", 20)
            context = await self.gather_context(node_id)

            manual_count = len(context.video.manual_transcriptions)
            if not context.has_transcription:
                self._notify(
                    "warning",
                    "Generating without transcription. Results may be less accurate.",
                )
            if context.mood_references:
                self._notify(
                    "info",
                    f"Using {len(context.mood_references)} mood board reference(s) for inspiration",
                )
            if manual_count:
                self._progress(
                    node_id, f"Analyzing {manual_count} manual transcription(s)...", 40
                )
            else:
                self._progress(node_id, "Analyzing content...", 40)

            self._progress(node_id, GENERATING_STAGES[agent_type], 60)

            thumbnail_url: str | None = None
            storage_id: str | None = None
            if agent_type == AgentType.THUMBNAIL:
                result = await self._content.generate_thumbnail(
                    images or [],
                    context.video,
                    context.connected_outputs,
                    self.profile,
                    context.mood_references,
                    extra_context,
                )
                draft, prompt = result.concept, result.prompt
                thumbnail_url, storage_id = result.image_url, result.storage_id
            else:
                text = await self._content.generate_text(
                    agent_type,
                    context.video,
                    context.connected_outputs,
                    self.profile,
                    context.mood_references,
                )
                draft, prompt = text.content, text.prompt

            self._progress(node_id, "Finalizing...", 90)
        except Exception as e:
            log.error("generation_failed", error=str(e))
            self._store.update_node(
                node_id, status=AgentStatus.ERROR, generation_progress=None
            )
            self._set_in_use(touched, False)
            await self._persist_status(agent_id, AgentStatus.ERROR)
            self._emit(EventType.GENERATION_ERROR, node_id, {"error": str(e)})
            self._notify("error", f"Failed to generate {agent_type.value}: {e}")
            return AgentStatus.ERROR

        self._set_in_use(touched, False)
        if self._store.find_node(node_id) is None:
            log.info("generation_result_discarded")
            return AgentStatus.READY

        patch: dict[str, Any] = {
            "draft": draft,
            "status": AgentStatus.READY,
            "generation_progress": None,
            "last_prompt": prompt,
        }
        if agent_type == AgentType.THUMBNAIL:
            patch["thumbnail_url"] = thumbnail_url or data.thumbnail_url
            patch["thumbnail_storage_id"] = storage_id or data.thumbnail_storage_id
        self._store.update_node(node_id, **patch)
        await self._persist_draft(agent_id, draft, thumbnail_url, storage_id)

        self._emit(
            EventType.GENERATION_COMPLETE,
            node_id,
            {"agent_type": agent_type.value, "has_image": thumbnail_url is not None},
        )
        if agent_type == AgentType.THUMBNAIL and thumbnail_url is None:
            self._notify(
                "warning",
                "Thumbnail concept created but image blocked by safety filters. "
                "Try different images or instructions.",
            )
        else:
            self._notify("success", f"{agent_type.value.capitalize()} generated")
        log.info("generation_complete", draft_length=len(draft))
        return AgentStatus.READY

    async def regenerate(self, node_id: str) -> AgentStatus | None:
        """Generate again. Thumbnails go back through the upload flow."""
        _, data = self._agent(node_id)
        label = data.agent_type.value

        if data.agent_type == AgentType.THUMBNAIL:
            message = "Upload new images for thumbnail regeneration."
            if data.draft:
                message += f" The previous concept was: {data.draft}"
            await self.say("ai", message, node_id, persist=False)
            self.request_image_upload(node_id)
            return None

        await self.say("ai", f"Regenerating {label} content...", node_id, persist=False)
        status = await self.generate(node_id)
        if status == AgentStatus.READY:
            await self.say("ai", f"Successfully regenerated {label} content.", node_id, persist=False)
        else:
            await self.say("ai", f"Failed to regenerate {label} content.", node_id, persist=False)
        return status

    async def generate_all(self) -> dict[str, int]:
        """Generate every non-thumbnail agent, one after another.

        Agents not yet connected to the video are connected first.

        Raises:
            CanvasValidationError: If the canvas has no stored video.
        """
        video = next(
            (n for n in self._store.nodes_of_kind(NodeKind.VIDEO) if n.persisted_id),
            None,
        )
        if video is None:
            raise CanvasValidationError("Add a video before generating content")

        agents = self._store.nodes_of_kind(NodeKind.AGENT)
        for agent in agents:
            if not any(e.source_node_id == video.id for e in self._store.edges_into(agent.id)):
                await self._connections.connect(video.id, agent.id)

        counts = {"generated": 0, "failed": 0, "skipped": 0}
        for agent in agents:
            if self._store.find_node(agent.id) is None:
                continue
            if isinstance(agent.data, AgentData) and agent.data.agent_type == AgentType.THUMBNAIL:
                counts["skipped"] += 1
                continue
            status = await self.generate(agent.id)
            counts["generated" if status == AgentStatus.READY else "failed"] += 1

        if counts["skipped"]:
            self._notify("info", "Thumbnail agents need images and were skipped")
        logger.info("generate_all_complete", **counts)
        return counts

    # -----------------------------------------------------------------
    # Thumbnail uploads
    # -----------------------------------------------------------------

    def request_image_upload(self, node_id: str, additional_context: str | None = None) -> None:
        self.pending_upload = PendingUpload(node_id=node_id, additional_context=additional_context)
        self._emit(
            EventType.AWAITING_IMAGE_UPLOAD,
            node_id,
            {"additional_context": additional_context},
        )
        self._notify("info", "Upload images to generate the thumbnail")

    def cancel_image_upload(self) -> None:
        self.pending_upload = None

    async def handle_thumbnail_upload(self, images: list[str]) -> AgentStatus | None:
        """Run the pending thumbnail generation with uploaded images.

        Raises:
            CanvasValidationError: If nothing is waiting for images or no
                images were given.
        """
        pending = self.pending_upload
        if pending is None:
            raise CanvasValidationError("No thumbnail is waiting for images")
        if not images:
            raise CanvasValidationError("At least one image is required")

        context = pending.additional_context or self.chat_log.recent_regenerate_context(
            pending.node_id, self.chat_context_window
        )
        self.pending_upload = None
        return await self.generate(pending.node_id, images, context)

    # -----------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------

    def _agent_of_type(self, agent_type: AgentType) -> Node | None:
        for node in self._store.nodes_of_kind(NodeKind.AGENT):
            if isinstance(node.data, AgentData) and node.data.agent_type == agent_type:
                return node
        return None

    async def handle_chat_message(self, text: str) -> None:
        """Route a chat message to the agent it @mentions."""
        agent_type = chat.parse_mention(text)
        if agent_type is None:
            await self.say("user", text)
            await self.say("ai", chat.NO_MENTION_REPLY)
            return

        node = self._agent_of_type(agent_type)
        if node is None or not isinstance(node.data, AgentData) or not node.data.persisted_agent_id:
            await self.say("user", text)
            await self.say(
                "ai",
                f"No {agent_type.value} agent found in the canvas. Please add one first.",
            )
            return

        user_message = await self.say("user", text, node.id)
        data = node.data
        lowered = text.lower()

        if not data.draft and chat.wants_generation(text):
            status = await self.generate(node.id)
            if status is None:
                await self.say("ai", "Upload images and I'll create the thumbnail.", node.id)
            elif status == AgentStatus.READY:
                await self.say(
                    "ai",
                    f"I've created your {agent_type.value}. Tip: keep chatting with "
                    f"@{agent_type.value} to refine it, for example "
                    f'"@{agent_type.value} make it shorter".',
                    node.id,
                )
            return

        if agent_type == AgentType.THUMBNAIL and "regenerate" in lowered:
            context = chat.strip_regenerate(text) or None
            self.request_image_upload(node.id, context)
            await self.say(
                "ai", "Upload new images and I'll regenerate the thumbnail with your notes.", node.id
            )
            return

        await self._refine(node.id, text, user_message)

    async def _refine(self, node_id: str, text: str, user_message: ChatMessage) -> None:
        _, data = self._agent(node_id)
        agent_type = data.agent_type
        agent_id = data.persisted_agent_id
        clean = chat.strip_mention(text)
        regenerating = chat.is_regeneration_request(clean, bool(data.draft))
        request = (
            chat.regeneration_message(agent_type, data.draft, clean)
            if regenerating and data.draft
            else clean
        )

        self._store.update_node(
            node_id,
            status=AgentStatus.GENERATING,
            generation_progress=GenerationProgress(stage="Refining...", percent=50),
        )
        self._emit(EventType.GENERATION_PROGRESS, node_id, {"stage": "Refining...", "percent": 50})

        try:
            await self._persist_status(agent_id, AgentStatus.GENERATING)
            if agent_type == AgentType.THUMBNAIL and data.thumbnail_url:
                context = await self.gather_context(node_id)
                refined = await self._content.refine_thumbnail(
                    agent_id or node_id,
                    data.thumbnail_url,
                    clean,
                    context.video_id,
                    self.profile,
                )
                draft = refined.concept
                thumbnail_url = refined.image_url
                storage_id = refined.storage_id
                reply = f"Updated the thumbnail: {refined.concept}"
            else:
                context = await self.gather_context(node_id)
                history = self.chat_log.history_for(node_id, exclude_id=user_message.id)
                refined_text = await self._content.refine_text(
                    agent_id or node_id,
                    request,
                    data.draft,
                    agent_type,
                    history,
                    context.video,
                    self.profile,
                )
                draft = refined_text.updated_content
                thumbnail_url = storage_id = None
                reply = refined_text.response
        except Exception as e:
            logger.error(
                "chat_refinement_failed", node_id=node_id, agent_type=agent_type.value, error=str(e)
            )
            self._store.update_node(node_id, status=AgentStatus.ERROR, generation_progress=None)
            await self._persist_status(agent_id, AgentStatus.ERROR)
            self._emit(EventType.GENERATION_ERROR, node_id, {"error": str(e)})
            await self.say("ai", f"Sorry, I couldn't update the {agent_type.value}: {e}", node_id)
            return

        await self.say("ai", reply, node_id)
        patch: dict[str, Any] = {
            "draft": draft,
            "status": AgentStatus.READY,
            "generation_progress": None,
        }
        if thumbnail_url:
            patch["thumbnail_url"] = thumbnail_url
            patch["thumbnail_storage_id"] = storage_id
        self._store.update_node(node_id, **patch)
        await self._persist_draft(agent_id, draft, thumbnail_url, storage_id)
        self._emit(
            EventType.GENERATION_COMPLETE,
            node_id,
            {"agent_type": agent_type.value, "has_image": thumbnail_url is not None},
        )
        if agent_type == AgentType.THUMBNAIL and data.thumbnail_url and thumbnail_url is None:
            self._notify("warning", "New thumbnail image was blocked by safety filters")
        logger.info("chat_refinement_complete", node_id=node_id, regenerating=regenerating)
