"""Shared test fixtures for backend tests.

Provides an AsyncMock record store, the deterministic content service, a
manually driven scheduler for debounce tests, record factories and a fresh
EventBus, so tests never touch a real database or LLM provider.
"""

import asyncio
import sys
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from canvas.graph_store import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from canvas.types import (  # noqa: E402
    AgentStatus,
    AgentType,
    Position,
    TranscriptSegment,
)
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import CanvasEvent  # noqa: E402
from models.records import (  # noqa: E402
    AgentRecord,
    ChatEntry,
    TranscriptionRecord,
    VideoRecord,
)
from services.content import MockContentService  # noqa: E402

PROJECT_ID = "proj_test"

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


def drain_events(event_bus: EventBus, project_id: str = PROJECT_ID) -> list[CanvasEvent]:
    """Return everything recorded for a project so far, oldest first."""
    return event_bus.get_event_history(project_id)


# ---------------------------------------------------------------------------
# Manual Scheduler
# ---------------------------------------------------------------------------


class _ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move time forward, fire due timers and let spawned tasks run."""
        self.now += seconds
        due = [t for t in self._timers if not t.cancelled and t.due <= self.now]
        self._timers = [t for t in self._timers if t not in due and not t.cancelled]
        for timer in sorted(due, key=lambda t: t.due):
            timer.callback()
        for _ in range(5):
            await asyncio.sleep(0)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


def make_video(
    video_id: str = "v1",
    transcription_status: str = "completed",
    transcription: str | None = "Hello world",
    position: Position | None = None,
    **kwargs: Any,
) -> VideoRecord:
    """Create a VideoRecord with sensible defaults."""
    return VideoRecord(
        id=video_id,
        project_id=PROJECT_ID,
        title=kwargs.pop("title", "My Video"),
        transcription_status=transcription_status,
        transcription=transcription,
        canvas_position=position or Position(x=0, y=0),
        **kwargs,
    )


def make_agent(
    agent_id: str = "a1",
    agent_type: AgentType = AgentType.TITLE,
    connections: list[str] | None = None,
    draft: str = "",
    status: AgentStatus = AgentStatus.IDLE,
    position: Position | None = None,
    chat_history: list[ChatEntry] | None = None,
    **kwargs: Any,
) -> AgentRecord:
    """Create an AgentRecord with sensible defaults."""
    return AgentRecord(
        id=agent_id,
        project_id=PROJECT_ID,
        type=agent_type,
        connections=connections or [],
        draft=draft,
        status=status,
        canvas_position=position or Position(x=400, y=0),
        chat_history=chat_history or [],
        **kwargs,
    )


def make_transcription(
    transcription_id: str = "t1",
    video_id: str | None = "v1",
    full_text: str = "Uploaded words here",
    **kwargs: Any,
) -> TranscriptionRecord:
    """Create a TranscriptionRecord with sensible defaults."""
    return TranscriptionRecord(
        id=transcription_id,
        project_id=PROJECT_ID,
        video_id=video_id,
        file_name=kwargs.pop("file_name", "captions.srt"),
        format=kwargs.pop("format", "srt"),
        full_text=full_text,
        segments=kwargs.pop("segments", [TranscriptSegment(start=0, end=3, text=full_text)]),
        word_count=len(full_text.split()),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Mock Repository
# ---------------------------------------------------------------------------


def make_repository(
    videos: list[VideoRecord] | None = None,
    agents: list[AgentRecord] | None = None,
    transcriptions: list[TranscriptionRecord] | None = None,
) -> AsyncMock:
    """Create an AsyncMock record store.

    List methods return the given records; creates build records from their
    arguments; every write succeeds unless a test sets a side effect.
    """
    repo = AsyncMock()
    videos = videos or []
    repo.list_videos = AsyncMock(return_value=list(videos))
    repo.list_agents = AsyncMock(return_value=list(agents or []))
    repo.list_transcriptions = AsyncMock(return_value=list(transcriptions or []))
    repo.get_snapshot = AsyncMock(return_value=None)
    repo.ping = AsyncMock(return_value=True)

    by_id = {v.id: v for v in videos}
    repo.get_video = AsyncMock(side_effect=lambda video_id: by_id.get(video_id))

    counter = {"n": 0}

    def _next_id(prefix: str) -> str:
        counter["n"] += 1
        return f"{prefix}{counter['n']}"

    async def _create_video(project_id: str, title: str = "Untitled Video", **kwargs: Any) -> VideoRecord:
        record = VideoRecord(
            id=_next_id("vid_"),
            project_id=project_id,
            title=title,
            media_url=kwargs.get("media_url"),
            duration=kwargs.get("duration"),
            format=kwargs.get("format"),
            canvas_position=kwargs.get("canvas_position") or Position(x=0, y=0),
        )
        by_id[record.id] = record
        return record

    async def _create_agent(
        project_id: str,
        agent_type: AgentType,
        video_id: str | None = None,
        canvas_position: Position | None = None,
    ) -> AgentRecord:
        return AgentRecord(
            id=_next_id("agt_"),
            project_id=project_id,
            video_id=video_id,
            type=agent_type,
            canvas_position=canvas_position or Position(x=0, y=0),
        )

    async def _create_transcription(project_id: str, file_name: str, full_text: str, **kwargs: Any) -> TranscriptionRecord:
        return TranscriptionRecord(
            id=_next_id("trn_"),
            project_id=project_id,
            video_id=kwargs.get("video_id"),
            file_name=file_name,
            full_text=full_text,
            format=kwargs.get("format", "txt"),
            segments=kwargs.get("segments") or [],
            word_count=kwargs.get("word_count", 0),
            duration=kwargs.get("duration", 0.0),
            canvas_position=kwargs.get("canvas_position") or Position(x=0, y=0),
        )

    async def _add_chat_message(agent_id: str, role: str, message: str) -> ChatEntry:
        return ChatEntry(role=role, message=message)

    repo.create_video = AsyncMock(side_effect=_create_video)
    repo.create_agent = AsyncMock(side_effect=_create_agent)
    repo.create_transcription = AsyncMock(side_effect=_create_transcription)
    repo.add_chat_message = AsyncMock(side_effect=_add_chat_message)
    return repo


@pytest.fixture()
def repository() -> AsyncMock:
    return make_repository()


@pytest.fixture()
def content() -> MockContentService:
    return MockContentService()
