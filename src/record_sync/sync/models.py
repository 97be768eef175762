"""Pydantic models for the sync engine.

Defines the data contracts shared across the sync modules:

- ``ConflictStrategy``: Enum of configurable conflict resolution strategies.
- ``DataVersion``: Writer-assigned version stamp of a record.
- ``SyncRecord``: One record of a collection plus its version.
- ``TombstoneRecord``: Marker that an id was deleted.
- ``SyncMetadata``: Per-record sync bookkeeping kept by versioned adapters.
- ``DeviceInfo``: One registered device.
- ``SyncStatus``: Live status of the engine (mutable, owned by the engine).
- ``CollectionResult`` / ``SyncOperationResult``: Outcome of a sync cycle.

Wire and on-disk representations use camelCase keys (``deviceId``,
``deletedAt``); Python code uses the snake_case attribute names.  Every
model except ``SyncStatus`` is frozen.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.clock import EPOCH, as_utc, utcnow  # noqa: F401


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
)


class ConflictStrategy(str, Enum):
    """How a record changed on both sides since the last sync is resolved."""

    LATEST_WINS = "latest-wins"
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    MANUAL = "manual"
    VERSION_WINS = "version-wins"


class DataVersion(BaseModel):
    """Version stamp assigned by the writer at the moment of mutation.

    Attributes:
        device_id: Device that made the change.
        timestamp: When the change was made.
        hash: Content hash of the record payload.
    """

    device_id: str
    timestamp: UtcDatetime
    hash: str = ""

    model_config = _WIRE_CONFIG

    def ordering_key(self) -> tuple[datetime, str]:
        """Total order over versions: timestamp, then writer id."""
        return (self.timestamp, self.device_id)


class SyncRecord(BaseModel):
    """A single record of a collection.

    Attributes:
        id: Key, unique within the collection.
        type: Collection tag (e.g. ``ssh-profile``).
        data: Opaque payload.  Always carries ``id`` as well.
        version: Writer-assigned version.
        last_modified: Last write time, used by ``latest-wins``.
    """

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    version: DataVersion
    last_modified: UtcDatetime

    model_config = _WIRE_CONFIG


class TombstoneRecord(BaseModel):
    """Marker recording that *id* was deleted.

    Attributes:
        id: Deleted record id.
        deleted_at: Deletion time.
        version: Version stamp of the delete.
        deleted_by: Device that performed the delete.
        collection: Collection the id was deleted from.
    """

    id: str
    deleted_at: UtcDatetime
    version: DataVersion
    deleted_by: str | None = None
    collection: str | None = None

    model_config = _WIRE_CONFIG

    def supersedes(self, version: DataVersion) -> bool:
        """True when this delete is at least as new as *version*."""
        return self.version.timestamp >= version.timestamp


class SyncMetadata(BaseModel):
    """Per-record bookkeeping stored beside the records by versioned adapters."""

    id: str
    version: DataVersion
    last_modified: UtcDatetime
    is_deleted: bool = False

    model_config = _WIRE_CONFIG


class DeviceInfo(BaseModel):
    """A device taking part in sync.  Natural key is ``device_id``."""

    device_id: str
    name: str
    platform: str
    last_activity: UtcDatetime
    sync_version: str

    model_config = _WIRE_CONFIG


class SyncStatus(BaseModel):
    """Live engine status.

    Mutated only by the engine's ``StatusTracker``; callers get copies.
    """

    is_connected: bool = False
    is_loading: bool = False
    sync_in_progress: bool = False
    last_sync: UtcDatetime | None = None
    last_error: str | None = None
    next_sync: UtcDatetime | None = None
    synced_items: int = 0
    conflicts_resolved: int = 0
    tombstones_processed: int = 0
    device_count: int = 0

    model_config = ConfigDict(validate_assignment=True)


class CollectionResult(BaseModel):
    """Outcome of reconciling one collection.

    Attributes:
        name: Registry name of the collection.
        tier: ``"basic"`` or ``"versioned"``.
        items_processed: Records written to either side.
        conflicts_resolved: Ids changed on both sides.
        tombstones_processed: Local tombstones pushed to the remote.
        bootstrapped: True when the collection was filled by a fresh-device pull.
        errors: Per-item error messages.
    """

    name: str
    tier: str
    items_processed: int = 0
    conflicts_resolved: int = 0
    tombstones_processed: int = 0
    bootstrapped: bool = False
    errors: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class SyncOperationResult(BaseModel):
    """Aggregate outcome of a sync cycle.

    ``success`` is False only for configuration, connection and
    concurrency rejections.  Per-collection and per-item failures are
    listed in ``errors`` while ``success`` stays True.
    """

    success: bool
    items_processed: int = 0
    conflicts_resolved: int = 0
    tombstones_processed: int = 0
    tombstones_pruned: int = 0
    errors: list[str] = Field(default_factory=list)
    last_sync: UtcDatetime | None = None
    started_at: UtcDatetime | None = None
    completed_at: UtcDatetime | None = None
    collections: list[CollectionResult] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def rejected(cls, message: str) -> SyncOperationResult:
        """A failed result that did no work."""
        return cls(success=False, errors=[message])

    @property
    def degraded(self) -> bool:
        """Completed, but with per-collection or per-item errors."""
        return self.success and bool(self.errors)
