"""
Timer scheduling used by the connection lifecycle.

Health checks and reconnects go through a scheduler object instead of
calling asyncio directly, so tests can drive them in virtual time.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Optional[Awaitable[Any]]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class _AsyncioTimer:
    def __init__(self, scheduler: "AsyncioScheduler") -> None:
        self._scheduler = scheduler
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        # A timer that already fired may be mid-await; it is left to finish.


class AsyncioScheduler:
    """Production scheduler on top of the running event loop."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: TimerCallback) -> _AsyncioTimer:
        loop = asyncio.get_running_loop()
        timer = _AsyncioTimer(self)
        timer._handle = loop.call_later(max(delay, 0.0), self._fire, timer, callback)
        return timer

    def _fire(self, timer: _AsyncioTimer, callback: TimerCallback) -> None:
        if timer.cancelled:
            return
        try:
            result = callback()
        except Exception as e:
            logger.error(f"❌ Timer callback failed: {e}", exc_info=True)
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            timer._task = task
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"❌ Timer task failed: {exc}", exc_info=exc)

    async def shutdown(self) -> None:
        """Wait for timer tasks that already fired."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
