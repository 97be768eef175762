"""Conflict resolution strategies for the sync engine.

A conflict is an id present in both the local and the remote change set
since the last watermark.  Each resolver is a pure choice between the two
records: it returns one of its inputs unchanged and never mutates either.

- ``LatestWinsResolver``: newer ``last_modified`` wins; remote wins ties.
- ``LocalWinsResolver``: always the local record.
- ``RemoteWinsResolver``: always the remote record.
- ``ManualResolver``: reports the conflict through a callback, then
  resolves like ``latest-wins``.
- ``VersionWinsResolver``: compares the version stamps directly
  (timestamp, then writer id); remote wins exact ties.

``create_resolver()`` maps a ``ConflictStrategy`` to a resolver.  The map
is checked against the enum at import time so a new strategy cannot be
added without a handler.

The basic (unversioned) reconciliation path uses ``pick_basic_winner``,
which works on raw local items and remote documents.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from .formats import local_last_modified, remote_last_modified
from .models import ConflictStrategy, SyncRecord

logger = logging.getLogger(__name__)

ConflictCallback = Callable[[SyncRecord, SyncRecord], None]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    strategy: ConflictStrategy

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        """Return the winning record (one of the two inputs)."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class LatestWinsResolver:
    """Most recent write wins; the remote record wins exact ties."""

    strategy = ConflictStrategy.LATEST_WINS

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        if local.last_modified > remote.last_modified:
            return local
        return remote


class LocalWinsResolver:
    """Always resolve conflicts in favour of the local record."""

    strategy = ConflictStrategy.LOCAL_WINS

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        return local


class RemoteWinsResolver:
    """Always resolve conflicts in favour of the remote record."""

    strategy = ConflictStrategy.REMOTE_WINS

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        return remote


class VersionWinsResolver:
    """Higher version stamp wins.

    Orders by ``(version.timestamp, version.device_id)`` so every device
    picks the same winner for the same pair.  Identical stamps go to the
    remote record.
    """

    strategy = ConflictStrategy.VERSION_WINS

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        if local.version.ordering_key() > remote.version.ordering_key():
            return local
        return remote


class ManualResolver:
    """Flag the conflict for the user, then fall back to latest-wins.

    Args:
        on_conflict: Called with ``(local, remote)`` before resolving.
            Errors raised by the callback are logged and ignored.
    """

    strategy = ConflictStrategy.MANUAL

    def __init__(self, on_conflict: ConflictCallback | None = None) -> None:
        self._on_conflict = on_conflict
        self._fallback = LatestWinsResolver()

    def resolve(self, local: SyncRecord, remote: SyncRecord) -> SyncRecord:
        if self._on_conflict is not None:
            try:
                self._on_conflict(local, remote)
            except Exception:
                logger.exception(
                    "Conflict notification failed for %s", local.id
                )
        # TODO: wait for the user's decision once the UI can answer
        # conflict notifications; until then this resolves automatically.
        return self._fallback.resolve(local, remote)


# ---------------------------------------------------------------------------
# Basic path
# ---------------------------------------------------------------------------


def pick_basic_winner(
    local_item: dict[str, Any], remote_doc: dict[str, Any]
) -> str:
    """Compare last-modified times of a local item and a remote document.

    Returns:
        ``"local"`` if the local item is strictly newer, else ``"remote"``.
    """
    if local_last_modified(local_item) > remote_last_modified(remote_doc):
        return "local"
    return "remote"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[ConflictStrategy, Callable[..., ConflictResolver]] = {
    ConflictStrategy.LATEST_WINS: lambda _cb: LatestWinsResolver(),
    ConflictStrategy.LOCAL_WINS: lambda _cb: LocalWinsResolver(),
    ConflictStrategy.REMOTE_WINS: lambda _cb: RemoteWinsResolver(),
    ConflictStrategy.MANUAL: lambda cb: ManualResolver(cb),
    ConflictStrategy.VERSION_WINS: lambda _cb: VersionWinsResolver(),
}

_unhandled = set(ConflictStrategy) - set(_STRATEGY_MAP)
if _unhandled:
    raise RuntimeError(
        f"No resolver for strategies: {sorted(s.value for s in _unhandled)}"
    )


def create_resolver(
    strategy: ConflictStrategy | str,
    on_conflict: ConflictCallback | None = None,
) -> ConflictResolver:
    """Create a conflict resolver for *strategy*.

    Args:
        strategy: A ``ConflictStrategy`` or its string value.
        on_conflict: Notification hook used by the ``manual`` strategy.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    try:
        key = ConflictStrategy(strategy)
    except ValueError:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: "
            f"{sorted(s.value for s in ConflictStrategy)}"
        ) from None
    return _STRATEGY_MAP[key](on_conflict)
