"""Content generation backends for agent nodes.

This module provides:
- ContentGenerationService: The interface the canvas generation code calls
- LiteLLMContentService: Text through litellm.acompletion, thumbnails through
  a vision model (concept) and litellm.aimage_generation (image), with retry
  and exponential backoff on transient provider failures
- MockContentService: Deterministic in-process responses for development and
  tests

A thumbnail result without ``image_url`` is not a failure: it means the image
provider refused the prompt (safety filter) and only the concept exists.
"""

import asyncio
import json
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import structlog
from litellm import acompletion, aimage_generation
from litellm.exceptions import (
    ContentPolicyViolationError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from pydantic import BaseModel, Field

from canvas.errors import GenerationError
from canvas.types import AgentType, ChatMessage, MoodItemType
from config import settings
from services import prompts

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class ManualTranscription(BaseModel):
    file_name: str
    format: str
    text: str


class VideoContext(BaseModel):
    """Everything an agent can learn about its source video."""

    title: str = "Untitled Content"
    transcription: str | None = None
    duration: float | None = None
    format: str | None = None
    manual_transcriptions: list[ManualTranscription] = Field(default_factory=list)


class ConnectedOutput(BaseModel):
    """The current draft of an upstream agent."""

    type: AgentType
    content: str


class ProfileData(BaseModel):
    channel_name: str = "My Channel"
    content_type: str = "General Content"
    niche: str = "General"
    tone: str = "Professional and engaging"
    target_audience: str = "General audience"


class MoodReference(BaseModel):
    url: str
    type: MoodItemType = MoodItemType.OTHER
    title: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TextResult(BaseModel):
    content: str
    prompt: str


class ThumbnailResult(BaseModel):
    concept: str
    prompt: str
    image_url: str | None = None
    storage_id: str | None = None


class TextRefinement(BaseModel):
    response: str
    updated_content: str


class ThumbnailRefinement(BaseModel):
    concept: str
    image_url: str | None = None
    storage_id: str | None = None


class ContentGenerationService(Protocol):
    async def generate_text(
        self,
        agent_type: AgentType,
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
    ) -> TextResult: ...

    async def generate_thumbnail(
        self,
        frames: list[str],
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
        additional_context: str | None = None,
    ) -> ThumbnailResult: ...

    async def refine_text(
        self,
        agent_id: str,
        user_message: str,
        current_draft: str,
        agent_type: AgentType,
        chat_history: list[ChatMessage],
        video: VideoContext,
        profile: ProfileData | None = None,
    ) -> TextRefinement: ...

    async def refine_thumbnail(
        self,
        agent_id: str,
        current_thumbnail_url: str,
        user_message: str,
        video_id: str | None = None,
        profile: ProfileData | None = None,
    ) -> ThumbnailRefinement: ...


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from a model reply, tolerating code fences."""
    candidates = [text.strip()]
    candidates += [m.group(1) for m in re.finditer(r"```(?:json)?\s*([\s\S]*?)```", text)]
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class LiteLLMContentService:
    """ContentGenerationService backed by LiteLLM providers.

    Attributes:
        text_model: Model for text generation and refinement
        vision_model: Model that reads frames and writes image briefs
        image_model: Model that renders thumbnails
        retry_attempts: Retries on rate limits, outages and timeouts
        retry_delay: Base seconds between retries (doubled each attempt)
    """

    def __init__(
        self,
        text_model: str | None = None,
        vision_model: str | None = None,
        image_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.text_model = text_model or settings.text_model
        self.vision_model = vision_model or settings.vision_model
        self.image_model = image_model or settings.image_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay

    async def _with_retry(
        self,
        label: str,
        call: Callable[[], Awaitable[T]],
        passthrough: tuple[type[Exception], ...] = (),
    ) -> T:
        """Run a provider call, retrying transient failures with backoff.

        Exceptions listed in ``passthrough`` are re-raised unchanged.

        Raises:
            GenerationError: When the call fails for good.
        """
        for attempt in range(self.retry_attempts + 1):
            try:
                return await call()
            except (RateLimitError, ServiceUnavailableError, Timeout) as e:
                if attempt >= self.retry_attempts:
                    logger.error(
                        "generation_call_failed_all_retries",
                        call=label,
                        attempts=attempt + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    raise GenerationError(f"{label} failed: {e}") from e
                delay = min(self.retry_delay * (2 ** attempt), 4.0)
                logger.warning(
                    "generation_call_retry",
                    call=label,
                    attempt=attempt + 1,
                    max_retries=self.retry_attempts,
                    error_type=type(e).__name__,
                    retry_delay=delay,
                )
                await asyncio.sleep(delay)
            except Exception as e:
                if isinstance(e, passthrough):
                    raise
                logger.error(
                    "generation_call_failed_no_retry",
                    call=label,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise GenerationError(f"{label} failed: {e}") from e
        raise GenerationError(f"{label} failed")

    async def _complete(
        self,
        label: str,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float = 0.8,
    ) -> str:
        start_time = time.time()

        async def _call() -> Any:
            return await acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                timeout=settings.llm_request_timeout_seconds,
            )

        response = await self._with_retry(label, _call)
        content = response.choices[0].message.content or ""
        logger.info(
            "generation_call_complete",
            call=label,
            model=model,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return content.strip()

    async def _render_image(self, image_prompt: str) -> str | None:
        """Render a thumbnail, returning None if the provider refuses it."""

        async def _call() -> Any:
            return await aimage_generation(
                prompt=image_prompt,
                model=self.image_model,
                size="1536x1024",
                timeout=settings.llm_request_timeout_seconds,
            )

        try:
            response = await self._with_retry(
                "image_generation", _call, passthrough=(ContentPolicyViolationError,)
            )
        except ContentPolicyViolationError as e:
            logger.warning("thumbnail_image_blocked", error=str(e))
            return None

        data = getattr(response, "data", None) or []
        if not data:
            logger.warning("thumbnail_image_missing")
            return None
        image = data[0]
        url = getattr(image, "url", None)
        if url:
            return url
        b64 = getattr(image, "b64_json", None)
        return f"data:image/png;base64,{b64}" if b64 else None

    def _system_prompt(self, agent_type: AgentType, profile: ProfileData) -> str:
        profile_section = prompts.build_profile_section(
            {
                "Channel name": profile.channel_name,
                "Content type": profile.content_type,
                "Niche": profile.niche,
                "Tone": profile.tone,
                "Target audience": profile.target_audience,
            }
        )
        return prompts.compose_prompt_sections(prompts.SYSTEM_PROMPTS[agent_type], profile_section)

    async def generate_text(
        self,
        agent_type: AgentType,
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
    ) -> TextResult:
        prompt = prompts.build_context_section(
            video.model_dump(),
            [o.model_dump() for o in connected_outputs],
            [r.model_dump() for r in mood_references],
        )
        content = await self._complete(
            f"generate_{agent_type.value}",
            [
                {"role": "system", "content": self._system_prompt(agent_type, profile)},
                {"role": "user", "content": prompt},
            ],
            self.text_model,
        )
        if not content:
            raise GenerationError(f"Empty {agent_type.value} returned by {self.text_model}")
        return TextResult(content=content, prompt=prompt)

    async def generate_thumbnail(
        self,
        frames: list[str],
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
        additional_context: str | None = None,
    ) -> ThumbnailResult:
        context = prompts.build_context_section(
            video.model_dump(),
            [o.model_dump() for o in connected_outputs],
            [r.model_dump() for r in mood_references],
        )
        extra = f"\nThe creator also asked for: {additional_context}" if additional_context else ""
        instructions = prompts.compose_prompt_sections(
            context, prompts.THUMBNAIL_CONCEPT_PROMPT.format(additional_context=extra)
        )
        content: list[dict[str, Any]] = [{"type": "text", "text": instructions}]
        content += [{"type": "image_url", "image_url": {"url": frame}} for frame in frames]

        reply = await self._complete(
            "thumbnail_concept",
            [
                {"role": "system", "content": self._system_prompt(AgentType.THUMBNAIL, profile)},
                {"role": "user", "content": content},
            ],
            self.vision_model,
        )
        parsed = parse_json_object(reply) or {}
        concept = str(parsed.get("concept") or reply)
        image_prompt = str(parsed.get("image_prompt") or concept)

        image_url = await self._render_image(image_prompt)
        return ThumbnailResult(concept=concept, prompt=image_prompt, image_url=image_url)

    async def refine_text(
        self,
        agent_id: str,
        user_message: str,
        current_draft: str,
        agent_type: AgentType,
        chat_history: list[ChatMessage],
        video: VideoContext,
        profile: ProfileData | None = None,
    ) -> TextRefinement:
        profile = profile or ProfileData()
        context = prompts.build_context_section(video.model_dump(), [], [])
        messages: list[dict[str, Any]] = [
            {
                "role": "system",
                "content": prompts.compose_prompt_sections(
                    self._system_prompt(agent_type, profile), context
                ),
            }
        ]
        messages += [
            {"role": "user" if m.role == "user" else "assistant", "content": m.content}
            for m in chat_history
        ]
        messages.append(
            {
                "role": "user",
                "content": prompts.REFINE_TEXT_PROMPT.format(
                    agent_type=agent_type.value,
                    current_draft=current_draft,
                    user_message=user_message,
                ),
            }
        )

        reply = await self._complete(f"refine_{agent_type.value}", messages, self.text_model)
        parsed = parse_json_object(reply)
        if parsed and parsed.get("updated_content"):
            return TextRefinement(
                response=str(parsed.get("response") or "Updated."),
                updated_content=str(parsed["updated_content"]),
            )
        logger.warning("refinement_reply_not_json", agent_id=agent_id)
        return TextRefinement(response="Here's the updated version.", updated_content=reply)

    async def refine_thumbnail(
        self,
        agent_id: str,
        current_thumbnail_url: str,
        user_message: str,
        video_id: str | None = None,
        profile: ProfileData | None = None,
    ) -> ThumbnailRefinement:
        profile = profile or ProfileData()
        reply = await self._complete(
            "refine_thumbnail",
            [
                {"role": "system", "content": self._system_prompt(AgentType.THUMBNAIL, profile)},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": prompts.REFINE_THUMBNAIL_PROMPT.format(
                                user_message=user_message
                            ),
                        },
                        {"type": "image_url", "image_url": {"url": current_thumbnail_url}},
                    ],
                },
            ],
            self.vision_model,
        )
        parsed = parse_json_object(reply) or {}
        concept = str(parsed.get("concept") or reply)
        image_url = await self._render_image(str(parsed.get("image_prompt") or concept))
        logger.info("thumbnail_refined", agent_id=agent_id, has_image=image_url is not None)
        return ThumbnailRefinement(concept=concept, image_url=image_url)


class MockContentService:
    """Deterministic ContentGenerationService for development and tests.

    Every call is recorded in ``call_history``. Setting ``fail_with`` makes
    the next calls raise it; setting ``block_images`` simulates the image
    safety filter.

    Usage:
        >>> service = MockContentService()
        >>> result = await service.generate_text(AgentType.TITLE, VideoContext(), [], ProfileData(), [])
        >>> result.content
        'Title for Untitled Content'
    """

    def __init__(self, block_images: bool = False) -> None:
        self.block_images = block_images
        self.fail_with: Exception | None = None
        self.call_history: list[dict[str, Any]] = []

    def _record(self, method: str, **kwargs: Any) -> None:
        self.call_history.append({"method": method, **kwargs})
        if self.fail_with is not None:
            raise self.fail_with

    async def generate_text(
        self,
        agent_type: AgentType,
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
    ) -> TextResult:
        self._record("generate_text", agent_type=agent_type, video=video)
        content = f"{agent_type.value.capitalize()} for {video.title}"
        return TextResult(content=content, prompt=f"mock:{agent_type.value}")

    async def generate_thumbnail(
        self,
        frames: list[str],
        video: VideoContext,
        connected_outputs: list[ConnectedOutput],
        profile: ProfileData,
        mood_references: list[MoodReference],
        additional_context: str | None = None,
    ) -> ThumbnailResult:
        self._record(
            "generate_thumbnail",
            frames=len(frames),
            additional_context=additional_context,
        )
        image_url = None if self.block_images else f"https://example.invalid/{len(self.call_history)}.png"
        return ThumbnailResult(
            concept=f"Bold thumbnail for {video.title}",
            prompt="mock:thumbnail",
            image_url=image_url,
            storage_id=f"mock_{len(self.call_history)}" if image_url else None,
        )

    async def refine_text(
        self,
        agent_id: str,
        user_message: str,
        current_draft: str,
        agent_type: AgentType,
        chat_history: list[ChatMessage],
        video: VideoContext,
        profile: ProfileData | None = None,
    ) -> TextRefinement:
        self._record(
            "refine_text",
            agent_id=agent_id,
            user_message=user_message,
            history=len(chat_history),
        )
        return TextRefinement(
            response=f"Updated the {agent_type.value}.",
            updated_content=f"{current_draft} ({user_message})".strip(),
        )

    async def refine_thumbnail(
        self,
        agent_id: str,
        current_thumbnail_url: str,
        user_message: str,
        video_id: str | None = None,
        profile: ProfileData | None = None,
    ) -> ThumbnailRefinement:
        self._record("refine_thumbnail", agent_id=agent_id, user_message=user_message)
        image_url = None if self.block_images else f"{current_thumbnail_url}?v={len(self.call_history)}"
        return ThumbnailRefinement(concept=f"Revised: {user_message}", image_url=image_url)


def create_content_service() -> ContentGenerationService:
    """Build the service selected by ``settings.use_mock_generation``."""
    if settings.use_mock_generation:
        logger.info("content_service_selected", backend="mock")
        return MockContentService()
    logger.info(
        "content_service_selected",
        backend="litellm",
        text_model=settings.text_model,
        image_model=settings.image_model,
    )
    return LiteLLMContentService()
