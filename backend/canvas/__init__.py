"""Canvas graph model, its persistence synchronization and agent generation.

This package exports the graph types and the store every other component
mutates through. Components with service dependencies (``canvas.session``,
``canvas.generation``) are imported from their modules directly.
"""

from canvas.errors import (
    CanvasError,
    CanvasValidationError,
    GenerationError,
    PersistenceError,
)
from canvas.graph_store import (
    Graph,
    GraphStore,
    IdMap,
    reduce,
)
from canvas.types import (
    AgentData,
    AgentStatus,
    AgentType,
    Edge,
    MoodBoardData,
    Node,
    NodeKind,
    Position,
    TranscriptionData,
    VideoData,
    Viewport,
)

__all__ = [
    "AgentData",
    "AgentStatus",
    "AgentType",
    "CanvasError",
    "CanvasValidationError",
    "Edge",
    "GenerationError",
    "Graph",
    "GraphStore",
    "IdMap",
    "MoodBoardData",
    "Node",
    "NodeKind",
    "PersistenceError",
    "Position",
    "TranscriptionData",
    "VideoData",
    "Viewport",
    "reduce",
]
