"""
Scheduling - timers and periodic tasks for the signal monitors

Monitors never touch the event loop directly; they ask a Scheduler for
one-shot timers (call_later) and periodic tasks (call_every) and keep the
returned TimerHandle so stop() can cancel them. Callbacks may be plain
functions or coroutine functions.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class TimerHandle:
    """Cancellation token for a scheduled callback. cancel() is idempotent."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class Scheduler(ABC):
    """Timer source used by monitors and the escalation policy."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run callback once after delay seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run callback every interval seconds until cancelled. First run is after one interval."""


async def run_callback(callback: Callback, label: str = "") -> None:
    """Run a sync or async callback, logging and absorbing its failure."""
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"[SCHEDULER] Callback {label or callback!r} failed: {e}", exc_info=True)


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by the running asyncio event loop.

    Each periodic task is its own asyncio.Task; an exception in one tick is
    logged and the loop continues with the next tick.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        tasks = []

        def fire():
            if handle.cancelled:
                return
            tasks.append(self.loop.create_task(run_callback(callback, "timer")))

        timer = self.loop.call_later(max(0.0, delay), fire)

        def cancel():
            timer.cancel()
            for task in tasks:
                task.cancel()

        handle = TimerHandle(cancel)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        async def runner():
            while True:
                await asyncio.sleep(interval)
                await run_callback(callback, "periodic")

        task = self.loop.create_task(runner())
        return TimerHandle(task.cancel)
