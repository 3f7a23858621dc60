"""Async event bus for canvas pub/sub communication.

This module provides an EventBus class that fans canvas events out to every
client watching a project (via WebSocket).

The event bus supports:
- Multiple subscribers per project
- Async event delivery via asyncio.Queue
- Buffering of events published before the first subscriber connects
- Replay history for reconnecting clients
- Project lifecycle management (close_project terminates all subscribers)
"""

import asyncio
import contextlib
import threading
from collections import defaultdict

import structlog

from events.types import CanvasEvent, EventType

logger = structlog.get_logger(__name__)


class EventBus:
    """Async pub/sub event bus for canvas events.

    Subscriptions are kept per project id, so several browser tabs looking
    at the same canvas each get their own queue.

    Event Buffering:
        Events published before any subscriber connects are buffered and
        handed to the first subscriber. Loading a project emits events
        before any WebSocket has had a chance to connect.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock so that
        ``publish_sync`` can be called from executor threads.

    Attributes:
        _subscribers: Dict mapping project_id to list of subscriber queues
        _event_buffer: Dict mapping project_id to events awaiting a subscriber
        _event_history: Dict mapping project_id to replayable events
        _lock: Threading lock for subscriber management
    """

    MAX_HISTORY_PER_PROJECT = 2000

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[CanvasEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[CanvasEvent]] = defaultdict(list)
        self._event_history: dict[str, list[CanvasEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        logger.info("event_bus_initialized")

    def subscribe(self, project_id: str) -> asyncio.Queue[CanvasEvent]:
        """Subscribe to events for a project.

        Buffered events for the project (published while nobody was
        listening) are delivered to the new queue immediately.

        Args:
            project_id: The project to subscribe to

        Returns:
            An asyncio.Queue receiving CanvasEvent objects for this project
        """
        queue: asyncio.Queue[CanvasEvent] = asyncio.Queue()
        buffered_events: list[CanvasEvent] = []

        with self._lock:
            self._subscribers[project_id].append(queue)
            subscriber_count = len(self._subscribers[project_id])
            if project_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(project_id)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "subscriber_added",
            project_id=project_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, project_id: str, queue: asyncio.Queue[CanvasEvent]) -> None:
        """Remove a queue from a project's subscribers.

        Unknown projects or queues are ignored.
        """
        with self._lock:
            queues = self._subscribers.get(project_id)
            if not queues:
                return
            try:
                queues.remove(queue)
            except ValueError:
                logger.warning("unsubscribe_queue_not_found", project_id=project_id)
                return
            if not queues:
                del self._subscribers[project_id]
            logger.info(
                "subscriber_removed",
                project_id=project_id,
                subscriber_count=len(queues),
            )

    def _record(self, event: CanvasEvent) -> list[asyncio.Queue[CanvasEvent]] | None:
        """Store an event in history and return its subscribers.

        Returns None (after buffering the event) when the project has no
        subscribers yet. Must be called with the lock held.
        """
        if event.type != EventType.PROJECT_CLOSED:
            history = self._event_history[event.project_id]
            history.append(event)
            if len(history) > self.MAX_HISTORY_PER_PROJECT:
                del history[: len(history) - self.MAX_HISTORY_PER_PROJECT]

        subscribers = list(self._subscribers.get(event.project_id, []))
        if not subscribers:
            buffer = self._event_buffer[event.project_id]
            buffer.append(event)
            if len(buffer) > self.MAX_HISTORY_PER_PROJECT:
                del buffer[: len(buffer) - self.MAX_HISTORY_PER_PROJECT]
            return None
        return subscribers

    async def publish(self, event: CanvasEvent) -> None:
        """Publish an event to all subscribers of its project.

        Args:
            event: The CanvasEvent to publish
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        with self._lock:
            subscribers = self._record(event)

        if subscribers is None:
            logger.debug(
                "event_buffered",
                project_id=event.project_id,
                event_type=event.type.value,
            )
            return

        # A stalled consumer must not hold up the canvas
        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=5.0)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    project_id=event.project_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            project_id=event.project_id,
            event_type=event.type.value,
            node_id=event.node_id,
            subscriber_count=len(subscribers),
        )

    def publish_sync(self, event: CanvasEvent) -> None:
        """Publish an event from synchronous code.

        GraphStore listeners run synchronously inside ``dispatch``; they use
        this to emit events without awaiting. Delivery is scheduled on the
        event loop because asyncio.Queue is not thread-safe.

        Args:
            event: The CanvasEvent to publish
        """
        with self._lock:
            subscribers = self._record(event)
            loop = self._loop

        if subscribers is None:
            return

        if loop is None:
            with contextlib.suppress(RuntimeError):
                loop = asyncio.get_running_loop()
                self._loop = loop

        if loop is not None and not loop.is_closed():
            for queue in subscribers:
                with contextlib.suppress(RuntimeError):
                    loop.call_soon_threadsafe(queue.put_nowait, event)
        else:
            for queue in subscribers:
                queue.put_nowait(event)

    def get_event_history(self, project_id: str) -> list[CanvasEvent]:
        """Return stored events for a project, oldest first."""
        with self._lock:
            return list(self._event_history.get(project_id, []))

    async def close_project(self, project_id: str) -> None:
        """Close a project and notify all of its subscribers.

        Each subscriber queue receives a PROJECT_CLOSED sentinel so read
        loops can exit. Subscribers and buffered events are dropped; history
        is kept for reconnects.
        """
        with self._lock:
            queues = self._subscribers.pop(project_id, [])
            buffered = self._event_buffer.pop(project_id, [])

        for queue in queues:
            await queue.put(
                CanvasEvent(
                    type=EventType.PROJECT_CLOSED,
                    project_id=project_id,
                    data={"reason": "project_closed"},
                )
            )

        logger.info(
            "project_events_closed",
            project_id=project_id,
            subscribers_removed=len(queues),
            buffered_events_cleared=len(buffered),
        )

    def get_subscriber_count(self, project_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(project_id, []))

    def clear_event_history(self, project_id: str) -> None:
        with self._lock:
            self._event_history.pop(project_id, None)


_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first use."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
