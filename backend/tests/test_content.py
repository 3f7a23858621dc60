"""Tests for services/content.py -- LiteLLM-backed content generation.

Provider calls are patched at ``services.content.acompletion`` and
``services.content.aimage_generation`` so no network access happens.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from litellm.exceptions import ContentPolicyViolationError, RateLimitError

from canvas.errors import GenerationError
from canvas.types import AgentType
from services.content import (
    LiteLLMContentService,
    ProfileData,
    VideoContext,
    parse_json_object,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def _image(url: str | None = None, b64: str | None = None) -> MagicMock:
    item = MagicMock(spec=["url", "b64_json"])
    item.url = url
    item.b64_json = b64
    response = MagicMock()
    response.data = [item]
    return response


def _rate_limited() -> RateLimitError:
    return RateLimitError(message="slow down", llm_provider="openai", model="gpt-test")


def _service(**kwargs: Any) -> LiteLLMContentService:
    return LiteLLMContentService(
        text_model="text-test",
        vision_model="vision-test",
        image_model="image-test",
        retry_attempts=kwargs.pop("retry_attempts", 2),
        retry_delay=0.0,
    )


VIDEO = VideoContext(title="Cooking Pasta", transcription="Boil water, add salt.")


# =========================================================================
# JSON extraction
# =========================================================================


class TestParseJsonObject:
    @pytest.mark.parametrize(
        "text",
        [
            '{"concept": "x"}',
            'Sure!\n```json\n{"concept": "x"}\n```',
            'Here you go: {"concept": "x"} hope it helps',
        ],
    )
    def test_extracts_object(self, text: str) -> None:
        assert parse_json_object(text) == {"concept": "x"}

    def test_non_object_returns_none(self) -> None:
        assert parse_json_object("[1, 2]") is None
        assert parse_json_object("no json at all") is None


# =========================================================================
# Retry
# =========================================================================


class TestRetry:
    async def test_rate_limit_is_retried(self) -> None:
        mock = AsyncMock(side_effect=[_rate_limited(), _completion("Pasta Perfection")])
        with patch("services.content.acompletion", mock):
            result = await _service().generate_text(
                AgentType.TITLE, VIDEO, [], ProfileData(), []
            )

        assert result.content == "Pasta Perfection"
        assert mock.await_count == 2

    async def test_gives_up_after_retries(self) -> None:
        mock = AsyncMock(side_effect=_rate_limited())
        with patch("services.content.acompletion", mock):
            with pytest.raises(GenerationError):
                await _service(retry_attempts=1).generate_text(
                    AgentType.TITLE, VIDEO, [], ProfileData(), []
                )
        assert mock.await_count == 2

    async def test_other_errors_are_not_retried(self) -> None:
        mock = AsyncMock(side_effect=ValueError("bad request"))
        with patch("services.content.acompletion", mock):
            with pytest.raises(GenerationError, match="bad request"):
                await _service().generate_text(AgentType.TITLE, VIDEO, [], ProfileData(), [])
        assert mock.await_count == 1

    async def test_empty_reply_is_an_error(self) -> None:
        with patch("services.content.acompletion", AsyncMock(return_value=_completion("  "))):
            with pytest.raises(GenerationError, match="Empty title"):
                await _service().generate_text(AgentType.TITLE, VIDEO, [], ProfileData(), [])


# =========================================================================
# Thumbnails
# =========================================================================


class TestThumbnail:
    async def test_concept_and_image(self) -> None:
        concept = _completion('{"concept": "Steam over pot", "image_prompt": "a pot"}')
        with (
            patch("services.content.acompletion", AsyncMock(return_value=concept)) as completion,
            patch(
                "services.content.aimage_generation",
                AsyncMock(return_value=_image(url="https://img/1.png")),
            ) as image,
        ):
            result = await _service().generate_thumbnail(
                ["data:image/png;base64,AAA"], VIDEO, [], ProfileData(), [], "more red"
            )

        assert result.concept == "Steam over pot"
        assert result.prompt == "a pot"
        assert result.image_url == "https://img/1.png"
        assert image.await_args.kwargs["prompt"] == "a pot"
        user_content = completion.await_args.kwargs["messages"][1]["content"]
        assert user_content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}}
        assert "more red" in user_content[0]["text"]

    async def test_base64_image_becomes_data_url(self) -> None:
        with (
            patch("services.content.acompletion", AsyncMock(return_value=_completion("plain concept"))),
            patch("services.content.aimage_generation", AsyncMock(return_value=_image(b64="QUJD"))),
        ):
            result = await _service().generate_thumbnail([], VIDEO, [], ProfileData(), [])

        assert result.concept == "plain concept"
        assert result.image_url == "data:image/png;base64,QUJD"

    async def test_content_policy_leaves_concept_only(self) -> None:
        blocked = ContentPolicyViolationError(
            message="blocked", model="image-test", llm_provider="openai"
        )
        image = AsyncMock(side_effect=blocked)
        with (
            patch("services.content.acompletion", AsyncMock(return_value=_completion("concept"))),
            patch("services.content.aimage_generation", image),
        ):
            result = await _service().generate_thumbnail([], VIDEO, [], ProfileData(), [])

        assert result.concept == "concept"
        assert result.image_url is None
        assert image.await_count == 1


# =========================================================================
# Refinement
# =========================================================================


class TestRefine:
    async def test_json_reply(self) -> None:
        reply = _completion('{"response": "Shorter now.", "updated_content": "Pasta 101"}')
        with patch("services.content.acompletion", AsyncMock(return_value=reply)):
            result = await _service().refine_text(
                "a1", "shorter", "Pasta for beginners", AgentType.TITLE, [], VIDEO
            )
        assert result.response == "Shorter now."
        assert result.updated_content == "Pasta 101"

    async def test_plain_reply_becomes_content(self) -> None:
        with patch("services.content.acompletion", AsyncMock(return_value=_completion("Pasta 101"))):
            result = await _service().refine_text(
                "a1", "shorter", "Pasta for beginners", AgentType.TITLE, [], VIDEO
            )
        assert result.updated_content == "Pasta 101"
