"""Tests for events/bus.py -- async pub/sub event bus.

Covers publish/subscribe, buffering, the close_project sentinel,
thread-safe publish_sync, replay history and the global singleton accessor.
"""

import asyncio
import threading

from events.bus import EventBus, get_event_bus, reset_event_bus
from events.types import CanvasEvent, EventType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_event(
    project_id: str = "proj_test",
    event_type: EventType = EventType.NODE_ADDED,
) -> CanvasEvent:
    return CanvasEvent(
        type=event_type,
        project_id=project_id,
        node_id="agent_a1",
        data={"test": True},
    )


# =========================================================================
# Subscribe / Publish basics
# =========================================================================


class TestSubscribePublish:
    """Basic subscribe and async publish."""

    async def test_subscribe_returns_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        assert isinstance(queue, asyncio.Queue)

    async def test_publish_delivers_to_subscriber(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        await event_bus.publish(_make_event("proj_1"))
        received = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert received.type == EventType.NODE_ADDED
        assert received.project_id == "proj_1"
        assert received.node_id == "agent_a1"

    async def test_publish_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("proj_1")
        q2 = event_bus.subscribe("proj_1")
        await event_bus.publish(_make_event("proj_1"))
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        r2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert r1.type == r2.type == EventType.NODE_ADDED

    async def test_publish_does_not_cross_projects(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("proj_1")
        q2 = event_bus.subscribe("proj_2")
        await event_bus.publish(_make_event("proj_1"))
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        assert r1.project_id == "proj_1"
        assert q2.empty()


# =========================================================================
# Event Buffering
# =========================================================================


class TestEventBuffering:
    """Events published before a subscriber connects are buffered."""

    async def test_buffered_events_delivered_on_subscribe(
        self, event_bus: EventBus
    ) -> None:
        await event_bus.publish(_make_event("proj_1", EventType.CANVAS_LOADED))
        await event_bus.publish(_make_event("proj_1", EventType.NODE_ADDED))

        queue = event_bus.subscribe("proj_1")
        r1 = await asyncio.wait_for(queue.get(), timeout=1.0)
        r2 = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert r1.type == EventType.CANVAS_LOADED
        assert r2.type == EventType.NODE_ADDED

    async def test_buffer_cleared_after_subscribe(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("proj_1"))
        q1 = event_bus.subscribe("proj_1")
        assert not q1.empty()
        # A second subscriber should NOT get the already-delivered buffer
        q2 = event_bus.subscribe("proj_1")
        assert q2.empty()


# =========================================================================
# Unsubscribe
# =========================================================================


class TestUnsubscribe:
    """Unsubscribe removes a specific queue from the project."""

    async def test_unsubscribe_removes_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        event_bus.unsubscribe("proj_1", queue)
        assert event_bus.get_subscriber_count("proj_1") == 0

    async def test_unsubscribe_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        dummy: asyncio.Queue[CanvasEvent] = asyncio.Queue()
        event_bus.unsubscribe("no_such_project", dummy)

    async def test_unsubscribe_wrong_queue_is_noop(self, event_bus: EventBus) -> None:
        event_bus.subscribe("proj_1")
        wrong_queue: asyncio.Queue[CanvasEvent] = asyncio.Queue()
        event_bus.unsubscribe("proj_1", wrong_queue)
        assert event_bus.get_subscriber_count("proj_1") == 1

    async def test_after_unsubscribe_events_not_delivered(
        self, event_bus: EventBus
    ) -> None:
        queue = event_bus.subscribe("proj_1")
        event_bus.unsubscribe("proj_1", queue)
        await event_bus.publish(_make_event("proj_1"))
        assert queue.empty()


# =========================================================================
# close_project -- sentinel
# =========================================================================


class TestCloseProject:
    """close_project sends a PROJECT_CLOSED sentinel and cleans up."""

    async def test_close_sends_sentinel(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        await event_bus.close_project("proj_1")
        sentinel = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert sentinel.type == EventType.PROJECT_CLOSED
        assert sentinel.project_id == "proj_1"

    async def test_close_removes_subscribers(self, event_bus: EventBus) -> None:
        event_bus.subscribe("proj_1")
        await event_bus.close_project("proj_1")
        assert event_bus.get_subscriber_count("proj_1") == 0

    async def test_close_clears_buffer(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("proj_1"))
        await event_bus.close_project("proj_1")
        queue = event_bus.subscribe("proj_1")
        assert queue.empty()

    async def test_close_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        await event_bus.close_project("no_such_project")

    async def test_close_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("proj_1")
        q2 = event_bus.subscribe("proj_1")
        await event_bus.close_project("proj_1")
        s1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        s2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert s1.type == EventType.PROJECT_CLOSED
        assert s2.type == EventType.PROJECT_CLOSED


# =========================================================================
# publish_sync -- thread-safe synchronous publish
# =========================================================================


class TestPublishSync:
    """publish_sync uses call_soon_threadsafe for thread safety."""

    async def test_publish_sync_delivers_event(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        event_bus._loop = asyncio.get_running_loop()

        event_bus.publish_sync(_make_event("proj_1"))

        # call_soon_threadsafe schedules on the loop; we need to yield
        await asyncio.sleep(0.05)
        assert not queue.empty()
        assert queue.get_nowait().type == EventType.NODE_ADDED

    async def test_publish_sync_from_thread(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("proj_1")
        event_bus._loop = asyncio.get_running_loop()

        event = _make_event("proj_1")
        done = threading.Event()

        def bg_publish() -> None:
            event_bus.publish_sync(event)
            done.set()

        thread = threading.Thread(target=bg_publish)
        thread.start()
        done.wait(timeout=2.0)
        thread.join(timeout=2.0)

        await asyncio.sleep(0.05)
        assert not queue.empty()
        assert queue.get_nowait().project_id == "proj_1"

    async def test_publish_sync_buffers_when_no_subscribers(
        self, event_bus: EventBus
    ) -> None:
        event_bus._loop = asyncio.get_running_loop()
        event_bus.publish_sync(_make_event("proj_1"))

        queue = event_bus.subscribe("proj_1")
        assert not queue.empty()

    async def test_publish_sync_picks_up_running_loop(self, event_bus: EventBus) -> None:
        """With no cached loop, publish_sync adopts the running one."""
        queue = event_bus.subscribe("proj_1")
        event_bus._loop = None

        event_bus.publish_sync(_make_event("proj_1"))

        await asyncio.sleep(0.05)
        assert queue.get_nowait().type == EventType.NODE_ADDED
        assert event_bus._loop is asyncio.get_running_loop()


# =========================================================================
# History
# =========================================================================


class TestHistory:
    """Events are kept per project for replay to reconnecting clients."""

    async def test_history_records_in_order(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("proj_1", EventType.CANVAS_LOADED))
        event_bus.subscribe("proj_1")
        await event_bus.publish(_make_event("proj_1", EventType.NOTICE))

        history = event_bus.get_event_history("proj_1")
        assert [e.type for e in history] == [EventType.CANVAS_LOADED, EventType.NOTICE]

    async def test_close_sentinel_not_in_history(self, event_bus: EventBus) -> None:
        event_bus.subscribe("proj_1")
        await event_bus.publish(_make_event("proj_1"))
        await event_bus.close_project("proj_1")
        assert [e.type for e in event_bus.get_event_history("proj_1")] == [EventType.NODE_ADDED]

    async def test_history_is_capped(self, event_bus: EventBus) -> None:
        event_bus.MAX_HISTORY_PER_PROJECT = 3
        for _ in range(5):
            await event_bus.publish(_make_event("proj_1"))
        assert len(event_bus.get_event_history("proj_1")) == 3

    async def test_buffer_without_subscribers_is_capped(self, event_bus: EventBus) -> None:
        event_bus.MAX_HISTORY_PER_PROJECT = 3
        event_bus._loop = asyncio.get_running_loop()
        for i in range(5):
            event_bus.publish_sync(_make_event("proj_1", list(EventType)[i]))

        queue = event_bus.subscribe("proj_1")
        assert queue.qsize() == 3
        # The newest events are the ones kept
        assert queue.get_nowait().type == list(EventType)[2]

    async def test_clear_history(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("proj_1"))
        event_bus.clear_event_history("proj_1")
        assert event_bus.get_event_history("proj_1") == []


# =========================================================================
# Global singleton
# =========================================================================


class TestGlobalEventBus:
    """get_event_bus / reset_event_bus singleton pattern."""

    def test_get_event_bus_returns_same_instance(self) -> None:
        reset_event_bus()
        bus1 = get_event_bus()
        bus2 = get_event_bus()
        assert bus1 is bus2

    def test_reset_event_bus_creates_new_instance(self) -> None:
        reset_event_bus()
        bus1 = get_event_bus()
        reset_event_bus()
        bus2 = get_event_bus()
        assert bus1 is not bus2


class TestSubscriberInfo:
    async def test_subscriber_count(self, event_bus: EventBus) -> None:
        assert event_bus.get_subscriber_count("proj_1") == 0
        event_bus.subscribe("proj_1")
        assert event_bus.get_subscriber_count("proj_1") == 1
        event_bus.subscribe("proj_1")
        assert event_bus.get_subscriber_count("proj_1") == 2
