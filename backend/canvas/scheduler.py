"""Cancellable timers and single-slot debouncing.

Autosave needs "run this once things go quiet". Timers are created through a
``Scheduler`` so tests can drive time by hand instead of sleeping.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Something that can run a callback after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class Debouncer:
    """Runs an async action once after ``delay`` seconds without triggers.

    Each ``trigger`` cancels the pending timer and arms a new one, so at most
    one call is ever pending. Failures of the action are logged and dropped;
    the next trigger simply tries again.

    Args:
        name: Label used in log events.
        delay: Quiet period in seconds.
        action: Coroutine function to run when the timer fires.
        scheduler: Timer source; defaults to the asyncio loop.
    """

    def __init__(
        self,
        name: str,
        delay: float,
        action: Callable[[], Awaitable[None]],
        scheduler: Scheduler | None = None,
    ) -> None:
        self.name = name
        self.delay = delay
        self._action = action
        self._scheduler = scheduler or LoopScheduler()
        self._handle: TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._run())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self) -> None:
        try:
            await self._action()
        except Exception as e:
            logger.error("debounced_action_failed", debouncer=self.name, error=str(e))

    async def flush(self) -> None:
        """Run a pending action now and wait for in-flight runs to finish."""
        if self._handle is not None:
            self.cancel()
            await self._run()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
