"""Multi-device record sync engine.

Public API for reconciling local record collections (profiles, groups,
tunnels, saved commands) with a shared remote document store.

Architecture
------------
Every device keeps its own copy of each collection and edits it offline.
A sync cycle fetches what changed on each side since the device's
``last_sync`` watermark, pushes deletions first as **tombstones** so a
stale update can never resurrect a deleted id, merges the change sets
with a configurable conflict strategy, and writes the result to both
sides with version metadata.  Adapters without version tracking fall
back to a full bidirectional diff.

Modules:

- ``engine``    -- ``SyncEngine``: initialization, cycles, scheduling.
- ``models``    -- ``SyncRecord``, ``DataVersion``, ``TombstoneRecord``,
  ``DeviceInfo``, ``SyncStatus``, ``SyncOperationResult``.
- ``adapters``  -- Storage adapter protocols and tier detection.
- ``registry``  -- ``StorageRegistry``: name to adapter mapping.
- ``formats``   -- Local record / remote document conversion.
- ``resolver``  -- Conflict resolution strategies.
- ``status``    -- ``StatusTracker``: atomic status updates.
- ``scheduler`` -- ``SyncScheduler``: periodic cycles.
- ``events``    -- ``EventBus`` and ``SyncEvent`` notifications.
- ``identity``  -- Device identity providers.
- ``reporter``  -- Human-readable and JSON formatting.

Usage example
-------------
::

    from record_sync.config_schema import SyncConfig
    from record_sync.storage import JsonRecordStorage
    from record_sync.sync import StorageRegistry, SyncEngine, format_sync_result

    registry = StorageRegistry()
    registry.register("ssh-profiles", JsonRecordStorage(data_dir, "ssh-profiles"))

    engine = SyncEngine(save_config=config_store.save)
    await engine.initialize(
        SyncConfig(store_uri="file:///mnt/shared/sync", database_name="me",
                   enabled=True),
        registry,
    )
    result = await engine.perform_full_sync()
    print(format_sync_result(result))
"""

from .adapters import AdapterTier, BasicAdapter, RegisteredCollection, VersionedAdapter
from .engine import SyncEngine
from .events import EventBus, SyncEvent
from .identity import DeviceIdentityProvider, HostDeviceIdentity, StaticDeviceIdentity
from .models import (
    CollectionResult,
    ConflictStrategy,
    DataVersion,
    DeviceInfo,
    SyncMetadata,
    SyncOperationResult,
    SyncRecord,
    SyncStatus,
    TombstoneRecord,
)
from .registry import StorageRegistry
from .reporter import (
    format_status,
    format_sync_result,
    result_to_json,
    status_to_json,
)
from .resolver import create_resolver

__all__ = [
    "AdapterTier",
    "BasicAdapter",
    "CollectionResult",
    "ConflictStrategy",
    "DataVersion",
    "DeviceIdentityProvider",
    "DeviceInfo",
    "EventBus",
    "HostDeviceIdentity",
    "RegisteredCollection",
    "StaticDeviceIdentity",
    "StorageRegistry",
    "SyncEngine",
    "SyncEvent",
    "SyncMetadata",
    "SyncOperationResult",
    "SyncRecord",
    "SyncStatus",
    "TombstoneRecord",
    "VersionedAdapter",
    "create_resolver",
    "format_status",
    "format_sync_result",
    "result_to_json",
    "status_to_json",
]
