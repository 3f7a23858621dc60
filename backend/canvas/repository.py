"""Interface of the record storage the canvas components depend on.

``models.database.CanvasStore`` is the production implementation; tests use
``AsyncMock`` objects with the same methods.
"""

from typing import Any, Protocol

from canvas.types import AgentStatus, AgentType, NodeKind, Position, TranscriptSegment, Viewport
from models.records import (
    AgentRecord,
    CanvasSnapshot,
    ChatEntry,
    TranscriptionRecord,
    VideoRecord,
)


class CanvasRepository(Protocol):
    async def ping(self) -> bool: ...

    async def list_videos(self, project_id: str) -> list[VideoRecord]: ...

    async def list_agents(self, project_id: str) -> list[AgentRecord]: ...

    async def list_transcriptions(self, project_id: str) -> list[TranscriptionRecord]: ...

    async def get_video(self, video_id: str) -> VideoRecord | None: ...

    async def create_video(
        self,
        project_id: str,
        title: str = "Untitled Video",
        media_url: str | None = None,
        duration: float | None = None,
        format: str | None = None,
        canvas_position: Position | None = None,
    ) -> VideoRecord: ...

    async def create_agent(
        self,
        project_id: str,
        agent_type: AgentType,
        video_id: str | None = None,
        canvas_position: Position | None = None,
    ) -> AgentRecord: ...

    async def create_transcription(
        self,
        project_id: str,
        file_name: str,
        full_text: str,
        format: str = "txt",
        segments: list[TranscriptSegment] | None = None,
        word_count: int = 0,
        duration: float = 0.0,
        video_id: str | None = None,
        canvas_position: Position | None = None,
    ) -> TranscriptionRecord: ...

    async def update_agent_draft(
        self,
        agent_id: str,
        draft: str,
        status: AgentStatus = AgentStatus.READY,
        thumbnail_url: str | None = None,
        thumbnail_storage_id: str | None = None,
    ) -> None: ...

    async def update_agent_status(self, agent_id: str, status: AgentStatus) -> None: ...

    async def update_connections(self, agent_id: str, connections: list[str]) -> None: ...

    async def add_chat_message(self, agent_id: str, role: str, message: str) -> ChatEntry: ...

    async def update_position(
        self, kind: NodeKind, record_id: str, position: Position
    ) -> None: ...

    async def update_transcription_status(
        self,
        video_id: str,
        status: str,
        transcription: str | None = None,
        error: str | None = None,
    ) -> None: ...

    async def remove_video(self, video_id: str) -> None: ...

    async def remove_agent(self, agent_id: str) -> None: ...

    async def remove_transcription(self, transcription_id: str) -> None: ...

    async def save_snapshot(
        self,
        project_id: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        viewport: Viewport,
    ) -> None: ...

    async def save_viewport(self, project_id: str, viewport: Viewport) -> None: ...

    async def get_snapshot(self, project_id: str) -> CanvasSnapshot | None: ...
