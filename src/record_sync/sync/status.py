"""Single-writer holder of the engine's live ``SyncStatus``.

Every status change goes through one ``StatusTracker`` and its lock, so
the "is a cycle running? then start one" check is a single atomic step
even when the scheduler and a manual trigger race, including from
different threads.  Readers only ever receive copies.
"""

from __future__ import annotations

import threading
from typing import Any

from .models import SyncStatus


class StatusTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = SyncStatus()

    def snapshot(self) -> SyncStatus:
        """A copy of the current status."""
        with self._lock:
            return self._status.model_copy()

    def update(self, **fields: Any) -> None:
        """Set status fields (validated)."""
        with self._lock:
            for name, value in fields.items():
                setattr(self._status, name, value)

    def try_begin_cycle(self) -> bool:
        """Mark a cycle as running unless one already is.

        Returns:
            ``True`` if the caller now owns the cycle, ``False`` if
            another cycle is in progress.
        """
        with self._lock:
            if self._status.sync_in_progress:
                return False
            self._status.sync_in_progress = True
            self._status.is_loading = True
            return True

    def end_cycle(self, **fields: Any) -> None:
        """Release the cycle and apply final status fields."""
        with self._lock:
            for name, value in fields.items():
                setattr(self._status, name, value)
            self._status.sync_in_progress = False
            self._status.is_loading = False

    def add_counts(
        self,
        synced_items: int = 0,
        conflicts_resolved: int = 0,
        tombstones_processed: int = 0,
    ) -> None:
        """Accumulate the lifetime counters."""
        with self._lock:
            self._status.synced_items += synced_items
            self._status.conflicts_resolved += conflicts_resolved
            self._status.tombstones_processed += tombstones_processed

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._status.sync_in_progress

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._status.is_connected
