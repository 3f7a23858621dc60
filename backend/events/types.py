"""Event type definitions for the canvas event system.

Every user-visible consequence of a canvas operation (a node changing, a
generation advancing, a notice for the user) is published as a CanvasEvent so
that connected clients can mirror the canvas without polling.
"""

import time
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types emitted by a canvas session.

    Events are categorized by:
    - Graph structure: node and edge changes
    - Generation: per-agent generation lifecycle and progress
    - Interaction: prompts that need a user decision
    - Feedback: chat messages and non-blocking notices
    - Persistence: snapshot writes and session lifecycle
    """

    # Graph structure
    CANVAS_LOADED = "canvas_loaded"
    NODE_ADDED = "node_added"
    NODE_UPDATED = "node_updated"
    NODE_REMOVED = "node_removed"
    EDGE_ADDED = "edge_added"
    EDGE_REMOVED = "edge_removed"

    # Generation
    GENERATION_STARTED = "generation_started"
    GENERATION_PROGRESS = "generation_progress"
    GENERATION_COMPLETE = "generation_complete"
    GENERATION_ERROR = "generation_error"

    # Interaction
    AWAITING_IMAGE_UPLOAD = "awaiting_image_upload"
    DELETE_CONFIRMATION_REQUIRED = "delete_confirmation_required"

    # Feedback
    CHAT_MESSAGE = "chat_message"
    NOTICE = "notice"

    # Persistence / lifecycle
    SNAPSHOT_SAVED = "snapshot_saved"
    PROJECT_CLOSED = "project_closed"


NoticeLevel = Literal["info", "success", "warning", "error"]


class CanvasEvent(BaseModel):
    """An event emitted by a canvas session.

    Payload schemas by event type:

    CANVAS_LOADED:
        - nodes: int - Number of reconstructed nodes
        - edges: int - Number of reconstructed edges
        - dropped_connections: int - Connection ids that matched no node

    NODE_ADDED / NODE_UPDATED:
        - node: dict - Serialized node

    NODE_REMOVED:
        - node_id: str

    EDGE_ADDED / EDGE_REMOVED:
        - edge: dict - Serialized edge

    GENERATION_PROGRESS:
        - stage: str - Human-readable stage
        - percent: int - 0..100

    GENERATION_COMPLETE:
        - agent_type: str
        - has_image: bool - Thumbnail agents only

    GENERATION_ERROR:
        - error: str

    AWAITING_IMAGE_UPLOAD:
        - additional_context: str | None

    DELETE_CONFIRMATION_REQUIRED:
        - node_ids: list[str]

    CHAT_MESSAGE:
        - message: dict - Serialized ChatMessage

    NOTICE:
        - level: "info" | "success" | "warning" | "error"
        - message: str
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    project_id: str
    node_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "generation_progress",
                    "timestamp": 1699876543.123,
                    "project_id": "proj_abc123",
                    "node_id": "agent_4f1c",
                    "data": {"stage": "Gathering context...", "percent": 20},
                }
            ]
        }
    }
