"""
Clock and timer abstractions.

Periodic work (sync ticks, backups, checkpoints, cleanup) is registered on a
`Scheduler` so it can run on the asyncio loop in production and be stepped
deterministically in tests.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)

TaskCallback = Callable[[], Union[None, Awaitable[Any]]]


class Clock(Protocol):
    def now(self) -> float:
        """Current time in epoch seconds."""
        ...


class SystemClock:
    def now(self) -> float:
        return time.time()


@dataclass
class ManualClock:
    current: float = 1_700_000_000.0

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


async def _invoke(callback: TaskCallback, name: str) -> None:
    """Run one tick; a failing tick is logged and the timer keeps going."""
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Scheduled task %s failed", name)


class ScheduledTask(Protocol):
    name: str

    def cancel(self) -> None:
        ...

    @property
    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    def every(
        self, interval: float, callback: TaskCallback, *, name: str = ""
    ) -> ScheduledTask:
        ...


@dataclass
class AsyncioTask:
    name: str
    task: Optional[asyncio.Task] = None
    _cancelled: bool = False

    def cancel(self) -> None:
        self._cancelled = True
        if self.task is not None:
            self.task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Runs each periodic callback in its own task on the running loop."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep
        self.tasks: list[AsyncioTask] = []

    def every(
        self, interval: float, callback: TaskCallback, *, name: str = ""
    ) -> AsyncioTask:
        handle = AsyncioTask(name=name or getattr(callback, "__name__", "task"))

        async def _loop() -> None:
            while not handle.cancelled:
                await self._sleep(interval)
                if handle.cancelled:
                    break
                await _invoke(callback, handle.name)

        handle.task = asyncio.get_running_loop().create_task(_loop())
        self.tasks.append(handle)
        return handle

    def cancel_all(self) -> None:
        for handle in self.tasks:
            handle.cancel()
        self.tasks.clear()


@dataclass
class ManualTask:
    name: str
    interval: float
    callback: TaskCallback
    next_run: float
    _cancelled: bool = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ManualScheduler:
    """
    Deterministic scheduler driven by a `ManualClock`.

    `advance(seconds)` moves the clock forward and runs every callback that
    falls due on the way, in due-time order.
    """

    clock: ManualClock
    tasks: list[ManualTask] = field(default_factory=list)

    def every(
        self, interval: float, callback: TaskCallback, *, name: str = ""
    ) -> ManualTask:
        handle = ManualTask(
            name=name or getattr(callback, "__name__", "task"),
            interval=interval,
            callback=callback,
            next_run=self.clock.now() + interval,
        )
        self.tasks.append(handle)
        return handle

    def active(self) -> list[ManualTask]:
        return [t for t in self.tasks if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.clock.now() + seconds
        while True:
            due = [t for t in self.active() if t.next_run <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.next_run)
            if task.next_run > self.clock.now():
                self.clock.advance(task.next_run - self.clock.now())
            task.next_run += task.interval
            await _invoke(task.callback, task.name)
        if target > self.clock.now():
            self.clock.advance(target - self.clock.now())
