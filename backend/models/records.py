"""Stored record types for projects.

These mirror the rows kept by ``CanvasStore``. Video transcription status
uses the storage vocabulary (idle/processing/completed/failed); the canvas
maps it onto ``TranscriptionState``.
"""

import time
from typing import Any, Literal

from pydantic import BaseModel, Field

from canvas.types import (
    AgentStatus,
    AgentType,
    Position,
    TranscriptionState,
    TranscriptSegment,
    Viewport,
)

StoredTranscriptionStatus = Literal["idle", "processing", "completed", "failed"]

TRANSCRIPTION_STATE_BY_STATUS: dict[str, TranscriptionState] = {
    "idle": TranscriptionState.NONE,
    "processing": TranscriptionState.PENDING,
    "completed": TranscriptionState.READY,
    "failed": TranscriptionState.FAILED,
}


class ChatEntry(BaseModel):
    """One chat line stored on an agent record."""

    role: Literal["user", "ai"]
    message: str
    timestamp: float = Field(default_factory=time.time)


class VideoRecord(BaseModel):
    id: str
    project_id: str
    title: str = "Untitled Video"
    media_url: str | None = None
    duration: float | None = None
    format: str | None = None
    canvas_position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    transcription_status: StoredTranscriptionStatus = "idle"
    transcription: str | None = None
    transcription_error: str | None = None
    created_at: float = Field(default_factory=time.time)

    @property
    def transcription_state(self) -> TranscriptionState:
        return TRANSCRIPTION_STATE_BY_STATUS[self.transcription_status]


class AgentRecord(BaseModel):
    id: str
    project_id: str
    video_id: str | None = None
    type: AgentType
    draft: str = ""
    thumbnail_url: str | None = None
    thumbnail_storage_id: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    connections: list[str] = Field(default_factory=list)
    chat_history: list[ChatEntry] = Field(default_factory=list)
    canvas_position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class TranscriptionRecord(BaseModel):
    id: str
    project_id: str
    video_id: str | None = None
    file_name: str
    format: str = "txt"
    full_text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    word_count: int = 0
    duration: float = 0.0
    canvas_position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    created_at: float = Field(default_factory=time.time)


class CanvasSnapshot(BaseModel):
    """The whole-graph save unit of a project."""

    project_id: str
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)
    updated_at: float = Field(default_factory=time.time)
