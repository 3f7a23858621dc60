"""Project manager for open canvas sessions.

This module provides the ProjectManager class, which opens one CanvasSession
per project on first use, keeps it in a registry, and closes sessions
(flushing pending autosaves) on request or at shutdown.

Usage:
    >>> from events import get_event_bus
    >>> from models.database import CanvasStore
    >>> from project_manager import ProjectManager
    >>> from services import create_content_service
    >>>
    >>> store = CanvasStore(settings.database_path)
    >>> await store.init()
    >>> manager = ProjectManager(store, create_content_service(), get_event_bus())
    >>>
    >>> session = await manager.get_session("proj_123")
    >>> await session.generate("agent_4f1c")
    >>>
    >>> # Cleanup when done
    >>> await manager.cleanup_all()
"""

import asyncio

import structlog

from canvas.repository import CanvasRepository
from canvas.scheduler import Scheduler
from canvas.session import CanvasSession
from config import settings
from events import EventBus
from services.content import ContentGenerationService

logger = structlog.get_logger(__name__)


class ProjectManager:
    """Registry of open canvas sessions.

    Thread Safety:
        Opening and closing sessions is serialized with an asyncio.Lock so
        that two requests for the same project never load it twice.

    Attributes:
        repository: Record storage shared by all sessions
        content: Generation backend shared by all sessions
        event_bus: Event bus for real-time event streaming
    """

    def __init__(
        self,
        repository: CanvasRepository,
        content: ContentGenerationService,
        event_bus: EventBus,
        scheduler: Scheduler | None = None,
        poll_interval: float | None = None,
    ) -> None:
        """Initialize the ProjectManager.

        Args:
            repository: Record storage
            content: Generation backend
            event_bus: Event bus for emitting events
            scheduler: Optional timer source for autosave (tests)
            poll_interval: Transcription poll period; 0 disables polling
        """
        self.repository = repository
        self.content = content
        self.event_bus = event_bus
        self._scheduler = scheduler
        self._poll_interval = (
            poll_interval if poll_interval is not None
            else settings.transcription_poll_interval_seconds
        )
        self._sessions: dict[str, CanvasSession] = {}
        self._lock = asyncio.Lock()

    async def get_session(self, project_id: str) -> CanvasSession:
        """Return the open session for a project, opening it if needed."""
        async with self._lock:
            session = self._sessions.get(project_id)
            if session is not None:
                return session

            session = CanvasSession(
                project_id,
                self.repository,
                self.content,
                self.event_bus,
                scheduler=self._scheduler,
                autosave_delay=settings.autosave_debounce_seconds,
                viewport_delay=settings.viewport_debounce_seconds,
                poll_interval=self._poll_interval,
                chat_context_window=settings.chat_context_window_seconds,
            )
            await session.open()
            self._sessions[project_id] = session
            logger.info("project_opened", project_id=project_id)
            return session

    def get_open_session(self, project_id: str) -> CanvasSession | None:
        return self._sessions.get(project_id)

    def get_open_projects(self) -> list[str]:
        return list(self._sessions.keys())

    async def close_project(self, project_id: str) -> bool:
        """Flush and close a project's session.

        Returns:
            True if a session was open.
        """
        async with self._lock:
            session = self._sessions.pop(project_id, None)
        if session is None:
            return False

        try:
            await session.close()
        except Exception as e:
            logger.error("project_close_failed", project_id=project_id, error=str(e))
        await self.event_bus.close_project(project_id)
        logger.info("project_closed", project_id=project_id)
        return True

    async def cleanup_all(self) -> None:
        """Close every open session. Called at application shutdown."""
        project_ids = self.get_open_projects()
        logger.info("cleanup_all_start", project_count=len(project_ids))
        for project_id in project_ids:
            await self.close_project(project_id)
        logger.info("cleanup_all_complete")
