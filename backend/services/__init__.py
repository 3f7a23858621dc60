"""Content generation services used by agent nodes."""

from services.content import (
    ConnectedOutput,
    ContentGenerationService,
    LiteLLMContentService,
    ManualTranscription,
    MockContentService,
    MoodReference,
    ProfileData,
    TextRefinement,
    TextResult,
    ThumbnailRefinement,
    ThumbnailResult,
    VideoContext,
    create_content_service,
)

__all__ = [
    "ConnectedOutput",
    "ContentGenerationService",
    "LiteLLMContentService",
    "ManualTranscription",
    "MockContentService",
    "MoodReference",
    "ProfileData",
    "TextRefinement",
    "TextResult",
    "ThumbnailRefinement",
    "ThumbnailResult",
    "VideoContext",
    "create_content_service",
]
