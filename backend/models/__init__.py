"""Models module for stored records, the SQLite store and API schemas.

This module exposes the record types and the request/response models used by
the API. ``models.database.CanvasStore`` is imported from its module directly.
"""

from models.records import (
    AgentRecord,
    CanvasSnapshot,
    ChatEntry,
    TranscriptionRecord,
    VideoRecord,
)
from models.schemas import (
    AddAgentRequest,
    AddMoodBoardRequest,
    AddMoodItemRequest,
    AddVideoRequest,
    CanvasResponse,
    ChatRequest,
    ChatResponse,
    ConnectRequest,
    ConnectResponse,
    DeleteRequest,
    DeletionResponse,
    GenerateAllResponse,
    GenerationResponse,
    HealthResponse,
    NodeResponse,
    ThumbnailUploadRequest,
    TranscriptionUploadRequest,
    UpdateContentRequest,
)

__all__ = [
    "AddAgentRequest",
    "AddMoodBoardRequest",
    "AddMoodItemRequest",
    "AddVideoRequest",
    "AgentRecord",
    "CanvasResponse",
    "CanvasSnapshot",
    "ChatEntry",
    "ChatRequest",
    "ChatResponse",
    "ConnectRequest",
    "ConnectResponse",
    "DeleteRequest",
    "DeletionResponse",
    "GenerateAllResponse",
    "GenerationResponse",
    "HealthResponse",
    "NodeResponse",
    "ThumbnailUploadRequest",
    "TranscriptionRecord",
    "TranscriptionUploadRequest",
    "UpdateContentRequest",
    "VideoRecord",
]
