"""Periodic trigger for automatic sync cycles.

The scheduler only decides *when*; whether a tick actually runs a cycle
(connected, nothing already running) is up to the tick callback.  A tick
that raises is logged and the schedule carries on.  ``stop()`` prevents
further ticks but lets a tick that is already running finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Run *tick* every *interval* seconds on the current event loop.

    Args:
        interval: Seconds between ticks.
        tick: Coroutine function invoked on every tick.
        on_scheduled: Optional hook told how many seconds until the
            next tick, each time one is scheduled.
    """

    def __init__(
        self,
        interval: float,
        tick: Callable[[], Awaitable[Any]],
        on_scheduled: Callable[[float], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._tick = tick
        self._on_scheduled = on_scheduled
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking.  No-op if already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event), name="record-sync-scheduler"
        )
        logger.info("Auto sync started with interval: %s seconds", self.interval)

    def stop(self) -> None:
        """Stop after the current tick (if any).  No-op if not running."""
        if self._stop_event is None:
            return
        self._stop_event.set()
        self._stop_event = None
        logger.info("Auto sync stopped")

    async def wait_stopped(self) -> None:
        """Wait for the loop task to exit after ``stop()``."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            if self._on_scheduled is not None:
                self._on_scheduled(self.interval)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            self.ticks += 1
            try:
                await self._tick()
            except Exception:
                logger.exception("Automatic sync failed")
