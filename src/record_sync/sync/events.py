"""Outbound notifications from the sync engine.

Events are fire-and-forget: the engine never waits for a subscriber.
Plain handlers are called inline, coroutine handlers are scheduled as
tasks on the running loop, and a failing handler is logged without
affecting the sync cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
Handler = Callable[["SyncEvent", Payload], Any]

ALL_EVENTS = "*"


class SyncEvent(str, Enum):
    COMPLETED = "sync.completed"
    DATA_CHANGED = "sync.dataChanged"
    CONFLICT_RESOLUTION_REQUIRED = "sync.conflictResolutionRequired"


class EventBus:
    """In-process event bus keyed by ``SyncEvent`` ("*" for all)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event: SyncEvent | str, handler: Handler) -> None:
        """Register *handler* for *event*."""
        key = event.value if isinstance(event, SyncEvent) else event
        with self._lock:
            self._subscribers[key].append(handler)

    def unsubscribe(self, event: SyncEvent | str, handler: Handler) -> None:
        key = event.value if isinstance(event, SyncEvent) else event
        with self._lock:
            if handler in self._subscribers.get(key, []):
                self._subscribers[key].remove(handler)

    def emit(self, event: SyncEvent, payload: Payload | None = None) -> None:
        """Deliver *event* to its subscribers without waiting on them."""
        body = payload or {}
        with self._lock:
            handlers = [
                *self._subscribers.get(event.value, []),
                *self._subscribers.get(ALL_EVENTS, []),
            ]
        for handler in handlers:
            try:
                result = handler(event, body)
            except Exception as exc:
                logger.error(
                    "Handler for '%s' failed: %s", event.value, exc
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: SyncEvent, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Async handler for '%s' dropped: no running event loop",
                event.value,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed: %s", task.exception())
