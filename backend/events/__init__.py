"""Event system for canvas sessions.

This package carries everything a canvas session wants a client to see:
graph changes, generation progress, chat messages and notices. It is an
async pub/sub built on asyncio.Queue, keyed by project id.

Key Components:
    - EventType: Enum of all event types in the system
    - CanvasEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub implementation for event distribution

Usage:
    >>> from events import CanvasEvent, EventType, get_event_bus
    >>>
    >>> bus = get_event_bus()
    >>> queue = bus.subscribe("proj_123")
    >>> await bus.publish(CanvasEvent(
    ...     type=EventType.NOTICE,
    ...     project_id="proj_123",
    ...     data={"level": "info", "message": "Canvas loaded"},
    ... ))
    >>> event = await queue.get()
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    CanvasEvent,
    EventType,
    NoticeLevel,
)

__all__ = [
    "EventType",
    "CanvasEvent",
    "NoticeLevel",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
