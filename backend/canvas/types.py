"""Core data model for the canvas graph.

Nodes carry a payload that depends on their kind. The payload is a tagged
union discriminated on ``kind`` so that every consumer can branch on the
concrete class instead of reading untyped dictionaries.
"""

import math
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class NodeKind(StrEnum):
    """Kinds of node that can live on a canvas."""

    VIDEO = "video"
    TRANSCRIPTION = "transcription"
    MOODBOARD = "moodboard"
    AGENT = "agent"


class AgentType(StrEnum):
    """The artifact an agent node produces."""

    TITLE = "title"
    DESCRIPTION = "description"
    THUMBNAIL = "thumbnail"
    TWEETS = "tweets"


class AgentStatus(StrEnum):
    """Generation state of an agent node."""

    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class TranscriptionState(StrEnum):
    """Automatic transcription state of a video node."""

    NONE = "none"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class MoodItemType(StrEnum):
    YOUTUBE = "youtube"
    MUSIC = "music"
    IMAGE = "image"
    OTHER = "other"


class Position(BaseModel):
    """A point in canvas coordinates."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float

    def offset(self, dx: float, dy: float) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


class Viewport(BaseModel):
    """Pan and zoom of the canvas."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0

    def is_valid(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and (
            math.isfinite(self.zoom) and self.zoom > 0
        )


class GenerationProgress(BaseModel):
    stage: str
    percent: int = Field(ge=0, le=100)


class TranscriptSegment(BaseModel):
    start: float
    end: float
    text: str


class MoodItem(BaseModel):
    """A single external reference on a mood board."""

    id: str
    url: str
    type: MoodItemType = MoodItemType.OTHER
    title: str | None = None
    thumbnail: str | None = None
    loading: bool = False


class ChatMessage(BaseModel):
    """One entry of the canvas chat.

    ``agent_node_id`` is None for messages that were not directed at an
    agent with an @mention.
    """

    id: str
    role: Literal["user", "ai"]
    content: str
    timestamp: float
    agent_node_id: str | None = None


# ---------------------------------------------------------------------------
# Node payloads
# ---------------------------------------------------------------------------


class _NodeData(BaseModel):
    # Clients may attach presentation-only fields; they are kept in memory
    # and filtered out of snapshots when they are not serializable.
    model_config = ConfigDict(extra="allow")


class VideoData(_NodeData):
    kind: Literal[NodeKind.VIDEO] = NodeKind.VIDEO
    persisted_video_id: str | None = None
    title: str = "Untitled Video"
    media_url: str | None = None
    duration: float | None = None
    transcription_state: TranscriptionState = TranscriptionState.NONE
    transcription_text: str | None = None
    transcription_error: str | None = None


class TranscriptionData(_NodeData):
    kind: Literal[NodeKind.TRANSCRIPTION] = NodeKind.TRANSCRIPTION
    persisted_transcription_id: str | None = None
    file_name: str = "Untitled"
    format: str = "txt"
    full_text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    word_count: int = 0
    duration: float = 0.0
    is_being_used: bool = False


class MoodBoardData(_NodeData):
    kind: Literal[NodeKind.MOODBOARD] = NodeKind.MOODBOARD
    items: list[MoodItem] = Field(default_factory=list)
    is_being_used: bool = False


class AgentData(_NodeData):
    kind: Literal[NodeKind.AGENT] = NodeKind.AGENT
    persisted_agent_id: str | None = None
    agent_type: AgentType
    draft: str = ""
    thumbnail_url: str | None = None
    thumbnail_storage_id: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    connections: list[str] = Field(default_factory=list)
    generation_progress: GenerationProgress | None = None
    last_prompt: str | None = None
    chat_history: list[ChatMessage] = Field(default_factory=list)


NodeData = Annotated[
    VideoData | TranscriptionData | MoodBoardData | AgentData,
    Field(discriminator="kind"),
]


class Node(BaseModel):
    """A node on the canvas. Treated as immutable; GraphStore replaces it."""

    id: str
    position: Position
    data: NodeData

    @property
    def kind(self) -> NodeKind:
        return self.data.kind

    @property
    def persisted_id(self) -> str | None:
        """The id of the backing storage record, if the node has one."""
        data = self.data
        if isinstance(data, VideoData):
            return data.persisted_video_id
        if isinstance(data, TranscriptionData):
            return data.persisted_transcription_id
        if isinstance(data, AgentData):
            return data.persisted_agent_id
        # Mood boards only live in the canvas snapshot.
        return None


class Edge(BaseModel):
    """A directed edge between two canvas nodes."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_node_id: str
    target_node_id: str
    source_handle: str | None = None
    target_handle: str | None = None


# Bounding box (width, height) used for placement and overlap checks.
NODE_BOX: dict[NodeKind, tuple[float, float]] = {
    NodeKind.VIDEO: (200.0, 120.0),
    NodeKind.TRANSCRIPTION: (150.0, 50.0),
    NodeKind.MOODBOARD: (150.0, 50.0),
    NodeKind.AGENT: (150.0, 50.0),
}


class ParsedTranscription(BaseModel):
    """A transcript file after parsing."""

    segments: list[TranscriptSegment] = Field(default_factory=list)
    full_text: str
    format: str = "txt"

    @property
    def word_count(self) -> int:
        return len(self.full_text.split())

    @property
    def duration(self) -> float:
        return self.segments[-1].end if self.segments else 0.0
