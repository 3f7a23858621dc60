"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API and WebSocket handlers.
All models use Pydantic v2 with strict type validation.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from canvas.types import (
    AgentStatus,
    AgentType,
    ChatMessage,
    Edge,
    MoodItemType,
    Position,
    Viewport,
)


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Unix timestamp of the health check",
    )
    database_available: bool = Field(
        default=False,
        description="Whether the canvas database is reachable",
    )
    open_projects: int = Field(
        default=0,
        ge=0,
        description="Number of canvases currently open",
    )


class CanvasResponse(BaseModel):
    """The full state of an open canvas."""

    project_id: str
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)
    chat: list[ChatMessage] = Field(default_factory=list)
    pending_deletion: list[str] = Field(
        default_factory=list,
        description="Node ids waiting for delete confirmation",
    )
    awaiting_upload: str | None = Field(
        default=None,
        description="Thumbnail node waiting for images, if any",
    )


class NodeResponse(BaseModel):
    node: dict[str, Any]


class AddVideoRequest(BaseModel):
    """Request body for registering a source video on the canvas."""

    title: str = Field(default="Untitled Video", max_length=500)
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    media_url: str | None = None
    duration: float | None = Field(default=None, ge=0)
    format: str | None = None


class AddAgentRequest(BaseModel):
    """Request body for dropping an agent onto the canvas."""

    agent_type: AgentType = Field(
        description="Artifact the agent produces",
        examples=["title", "thumbnail"],
    )
    position: Position = Field(description="Where the agent was dropped")


class AddMoodBoardRequest(BaseModel):
    position: Position


class AddMoodItemRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    type: MoodItemType = MoodItemType.OTHER
    title: str | None = Field(default=None, max_length=500)


class ConnectRequest(BaseModel):
    """Request body for connecting two nodes."""

    source_node_id: str
    target_node_id: str
    source_handle: str | None = None
    target_handle: str | None = None


class ConnectResponse(BaseModel):
    accepted: bool
    edge: Edge | None = None
    reason: str | None = Field(default=None, description="Why the connection was refused")


class DeleteRequest(BaseModel):
    node_ids: list[str] = Field(min_length=1)


class DeletionResponse(BaseModel):
    """Outcome of a delete request."""

    pending: bool = Field(
        default=False,
        description="True if the user must confirm before anything is deleted",
    )
    deleted: list[str] = Field(default_factory=list)
    failed: list[str] = Field(
        default_factory=list,
        description="Nodes restored because their stored delete failed",
    )


class UpdateContentRequest(BaseModel):
    text: str = Field(max_length=20000)


class GenerationResponse(BaseModel):
    node_id: str
    status: AgentStatus | None = Field(
        default=None,
        description="Resulting status; null while a thumbnail waits for images",
    )
    awaiting_upload: bool = False


class GenerateAllResponse(BaseModel):
    generated: int = 0
    failed: int = 0
    skipped: int = 0


class ChatRequest(BaseModel):
    message: str = Field(
        min_length=1,
        max_length=5000,
        examples=["@TITLE_AGENT make it shorter"],
    )


class ChatResponse(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)


class ThumbnailUploadRequest(BaseModel):
    """Images for the thumbnail waiting for an upload."""

    images: list[str] = Field(
        min_length=1,
        max_length=10,
        description="Base64 image data URLs",
    )

    @field_validator("images")
    @classmethod
    def validate_data_urls(cls, v: list[str]) -> list[str]:
        for image in v:
            if not image.startswith("data:image/") or ";base64," not in image:
                raise ValueError("images must be base64 data URLs (data:image/...;base64,...)")
        return v


class TranscriptionUploadRequest(BaseModel):
    """A transcript file to attach to a video."""

    video_node_id: str
    file_name: str = Field(
        min_length=1,
        max_length=255,
        examples=["episode.srt", "episode.vtt", "notes.txt"],
    )
    content: str = Field(min_length=1, description="Raw file text")
