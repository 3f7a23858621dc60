"""Tests for models/schemas.py -- request validation and response defaults."""

import pytest
from pydantic import ValidationError

from canvas.types import AgentType, MoodItemType, Position, Viewport
from models.schemas import (
    AddAgentRequest,
    AddMoodItemRequest,
    AddVideoRequest,
    CanvasResponse,
    ChatRequest,
    DeleteRequest,
    DeletionResponse,
    GenerationResponse,
    HealthResponse,
    ThumbnailUploadRequest,
    TranscriptionUploadRequest,
)

# =========================================================================
# Requests
# =========================================================================


class TestAddRequests:
    def test_video_defaults(self) -> None:
        request = AddVideoRequest()
        assert request.title == "Untitled Video"
        assert request.position == Position(x=0, y=0)
        assert request.media_url is None

    def test_video_duration_not_negative(self) -> None:
        with pytest.raises(ValidationError):
            AddVideoRequest(duration=-1)

    def test_agent_type_parsed(self) -> None:
        request = AddAgentRequest.model_validate(
            {"agent_type": "thumbnail", "position": {"x": 1, "y": 2}}
        )
        assert request.agent_type == AgentType.THUMBNAIL

    def test_agent_type_unknown(self) -> None:
        with pytest.raises(ValidationError):
            AddAgentRequest.model_validate({"agent_type": "podcast", "position": {"x": 0, "y": 0}})

    def test_mood_item_defaults_to_other(self) -> None:
        assert AddMoodItemRequest(url="https://x").type == MoodItemType.OTHER

    def test_mood_item_url_required(self) -> None:
        with pytest.raises(ValidationError):
            AddMoodItemRequest(url="")


class TestDeleteRequest:
    def test_needs_at_least_one_id(self) -> None:
        with pytest.raises(ValidationError):
            DeleteRequest(node_ids=[])

    def test_ids_kept_in_order(self) -> None:
        assert DeleteRequest(node_ids=["b", "a"]).node_ids == ["b", "a"]


class TestChatRequest:
    @pytest.mark.parametrize("message", ["", "x" * 5001])
    def test_length_bounds(self, message: str) -> None:
        with pytest.raises(ValidationError):
            ChatRequest(message=message)

    def test_valid(self) -> None:
        assert ChatRequest(message="@title shorter").message == "@title shorter"


class TestThumbnailUploadRequest:
    def test_accepts_data_urls(self) -> None:
        request = ThumbnailUploadRequest(images=["data:image/jpeg;base64,/9j/4AAQ"])
        assert len(request.images) == 1

    @pytest.mark.parametrize(
        "image",
        ["https://x/frame.png", "data:text/plain;base64,aGk=", "data:image/png,raw"],
    )
    def test_rejects_other_urls(self, image: str) -> None:
        with pytest.raises(ValidationError, match="data URLs"):
            ThumbnailUploadRequest(images=[image])

    def test_image_count_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ThumbnailUploadRequest(images=[])
        with pytest.raises(ValidationError):
            ThumbnailUploadRequest(images=["data:image/png;base64,AA"] * 11)


class TestTranscriptionUploadRequest:
    def test_content_required(self) -> None:
        with pytest.raises(ValidationError):
            TranscriptionUploadRequest(video_node_id="video_v1", file_name="a.srt", content="")


# =========================================================================
# Responses
# =========================================================================


class TestResponses:
    def test_health_defaults(self) -> None:
        health = HealthResponse(status="healthy", timestamp=1.0)
        assert health.database_available is False
        assert health.open_projects == 0

    def test_health_status_literal(self) -> None:
        with pytest.raises(ValidationError):
            HealthResponse(status="degraded", timestamp=1.0)

    def test_canvas_defaults(self) -> None:
        canvas = CanvasResponse(project_id="p")
        assert canvas.viewport == Viewport()
        assert canvas.nodes == []
        assert canvas.awaiting_upload is None

    def test_deletion_defaults(self) -> None:
        assert DeletionResponse().model_dump() == {"pending": False, "deleted": [], "failed": []}

    def test_generation_status_optional(self) -> None:
        response = GenerationResponse(node_id="agent_a1", awaiting_upload=True)
        assert response.status is None
