"""
Online/offline tracking.

`NetworkMonitor` holds the current connectivity state and tells subscribers
about transitions. Something outside the core reports the state, either
directly through `set_online` or by polling a probe with
`ConnectivityProbe`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from caresync.scheduling import Clock, ScheduledTask, Scheduler, SystemClock

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Any]


class NetworkMonitor:
    def __init__(self, initial_online: bool = True, *, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self.is_online = initial_online
        self.was_offline = False
        self.last_online: Optional[float] = None
        self.last_offline: Optional[float] = None
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener(is_online)`; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set_online(self, online: bool) -> None:
        if online == self.is_online:
            return
        self.is_online = online
        if online:
            self.last_online = self.clock.now()
        else:
            self.was_offline = True
            self.last_offline = self.clock.now()
        logger.info("Network is now %s", "online" if online else "offline")

        for listener in list(self._listeners):
            try:
                result = listener(online)
            except Exception:
                logger.exception("Network listener failed")
                continue
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Network listener task failed", exc_info=task.exception())

    async def wait_for_listeners(self) -> None:
        """Wait until async listeners started by past transitions finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ConnectivityProbe:
    """Polls `probe()` on the scheduler and reports the result to `monitor`."""

    def __init__(
        self,
        monitor: NetworkMonitor,
        probe: Callable[[], Awaitable[bool]],
        scheduler: Scheduler,
        *,
        interval: float = 30.0,
    ):
        self.monitor = monitor
        self.probe = probe
        self.scheduler = scheduler
        self.interval = interval
        self._task: Optional[ScheduledTask] = None

    async def check(self) -> bool:
        try:
            online = bool(await self.probe())
        except Exception as e:
            logger.debug("Connectivity probe failed: %s", e)
            online = False
        self.monitor.set_online(online)
        return online

    def start(self) -> None:
        if self._task is None:
            self._task = self.scheduler.every(self.interval, self.check, name="connectivity")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
