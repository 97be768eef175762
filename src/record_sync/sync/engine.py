"""Core sync engine that reconciles local collections with a remote store.

The ``SyncEngine`` ties together the registry, resolver, status tracker,
scheduler and document store into complete sync cycles.  A cycle:

1. Rejects immediately if sync is disabled, disconnected, or another
   cycle is running (no queueing).
2. Reconciles each registered collection in registration order, using the
   versioned path (incremental, tombstone-aware) or the basic path (full
   diff) according to the tier fixed at registration.
3. Prunes tombstones past the retention window, locally and remotely.
4. Advances the ``last_sync`` watermark and hands the updated config to
   the persistence callback.
5. Releases the cycle and emits ``sync.completed``.

Error handling is layered: a failing record is logged and the rest of its
collection continues; a failing collection is recorded and the other
collections continue; a connection failure aborts the cycle and marks the
engine disconnected.  ``perform_full_sync`` never raises.

Every completed cycle advances the watermark.  Records that failed to
apply are remembered per collection and fetched explicitly on the next
cycle; a collection that failed as a whole is reconciled in full.

Deletes win over the writes they supersede wherever they meet: a live
remote document older than a known tombstone is removed from the remote,
never adopted, never re-uploaded by a migration.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from .. import __version__
from ..core import maybe_await, with_timeout
from ..errors import SyncConnectionError, SyncError
from ..remote import DocumentStore, create_store
from .adapters import RegisteredCollection
from .events import EventBus, SyncEvent
from .formats import (
    DEVICES_COLLECTION,
    document_to_record,
    document_to_tombstone,
    record_to_document,
    to_local_format,
    to_remote_format,
    tombstone_collection,
    tombstone_to_document,
)
from .identity import DeviceIdentityProvider, HostDeviceIdentity
from .models import (
    CollectionResult,
    DeviceInfo,
    SyncMetadata,
    SyncOperationResult,
    SyncRecord,
    SyncStatus,
    TombstoneRecord,
    utcnow,
)
from .registry import StorageRegistry
from .resolver import ConflictResolver, create_resolver, pick_basic_winner
from .scheduler import SyncScheduler
from .status import StatusTracker

if TYPE_CHECKING:
    from ..config_schema import SyncConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

StoreFactory = Callable[["SyncConfig"], DocumentStore]
SaveConfig = Callable[["SyncConfig"], Any]

MSG_DISABLED = "Sync is not enabled"
MSG_DISCONNECTED = "Not connected to the document store"
MSG_IN_PROGRESS = "Sync already in progress"


class SyncEngine:
    """Reconcile registered local collections with a remote document store.

    Args:
        store_factory: Builds a ``DocumentStore`` from a config.
        identity: Source of this device's id, name and platform.
        events: Bus receiving the engine's notifications.
        save_config: Persistence callback for the updated config (plain
            or coroutine function).
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store_factory: StoreFactory = create_store,
        identity: DeviceIdentityProvider | None = None,
        events: EventBus | None = None,
        save_config: SaveConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store_factory = store_factory
        self.identity = identity or HostDeviceIdentity()
        self.events = events or EventBus()
        self._save_config = save_config
        self._clock = clock

        self._status = StatusTracker()
        self._config: SyncConfig | None = None
        self._registry: StorageRegistry | None = None
        self._store: DocumentStore | None = None
        self._scheduler: SyncScheduler | None = None
        # collection -> ids whose last write or delete did not go through
        self._retry: dict[str, set[str]] = {}
        # collections whose last reconciliation failed outright
        self._full_resync: set[str] = set()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        return self.identity.device_id()

    @property
    def store(self) -> DocumentStore | None:
        return self._store

    @property
    def scheduler(self) -> SyncScheduler | None:
        return self._scheduler

    def get_status(self) -> SyncStatus:
        """Copy of the live status."""
        return self._status.snapshot()

    def get_config(self) -> SyncConfig | None:
        return self._config

    @property
    def next_sync(self) -> datetime | None:
        return self._status.snapshot().next_sync

    @property
    def device_count(self) -> int:
        return self._status.snapshot().device_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self, config: SyncConfig, registry: StorageRegistry
    ) -> bool:
        """Store *config* and *registry*; connect when sync is enabled.

        A disabled config is a valid steady state: the engine stays
        disconnected and ``True`` is returned.

        Returns:
            ``False`` if the store could not be reached.
        """
        self._stop_scheduler()
        await self._disconnect()
        self._config = config
        self._registry = registry
        self._status.update(last_sync=config.last_sync)

        if not config.enabled:
            self._status.update(is_connected=False, next_sync=None)
            logger.info("Sync is disabled; not connecting")
            return True

        if not await self._connect(config):
            return False

        try:
            await self.register_device()
        except SyncError as exc:
            logger.warning("Device registration failed: %s", exc)

        if config.auto_sync:
            self._start_scheduler(config.sync_interval)
        return True

    async def disable(self) -> None:
        """Stop scheduling, disconnect and forget the config snapshot.

        A cycle that is already running is not cancelled.
        """
        self._stop_scheduler()
        await self._disconnect()
        self._config = None
        self._status.update(is_connected=False, next_sync=None)
        logger.info("Sync disabled")

    async def shutdown(self) -> None:
        """Like ``disable`` but waits for the scheduler loop to exit."""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.stop()
            await scheduler.wait_stopped()
        await self.disable()

    async def update_config(self, config: SyncConfig) -> bool:
        """Re-initialize with *config*, keeping the current registry."""
        registry = self._registry or StorageRegistry()
        if self._store is not None or self._scheduler is not None:
            await self.disable()
        return await self.initialize(config, registry)

    async def test_connection(self, config: SyncConfig) -> bool:
        """Check that the store named by *config* answers.  Never raises."""
        try:
            store = self._store_factory(config)
            await with_timeout(
                store.connect(), config.connect_timeout, "Connecting to document store"
            )
        except Exception as exc:
            logger.warning("Connection test failed: %s", exc)
            return False
        try:
            return bool(
                await with_timeout(
                    store.test_connection(),
                    config.operation_timeout,
                    "Connection test",
                )
            )
        except Exception as exc:
            logger.warning("Connection test failed: %s", exc)
            return False
        finally:
            try:
                await store.disconnect()
            except Exception as exc:
                logger.debug("Disconnect after connection test failed: %s", exc)

    async def _connect(self, config: SyncConfig) -> bool:
        try:
            store = self._store_factory(config)
            await with_timeout(
                store.connect(), config.connect_timeout, "Connecting to document store"
            )
        except (SyncError, OSError) as exc:
            logger.error("Failed to connect to document store: %s", exc)
            self._status.update(is_connected=False, last_error=str(exc))
            return False
        self._store = store
        self._status.update(is_connected=True, last_error=None)
        logger.info("Connected to document store (device %s)", self.device_id)
        return True

    async def _disconnect(self) -> None:
        store, self._store = self._store, None
        if store is None:
            return
        try:
            await store.disconnect()
        except Exception as exc:
            logger.warning("Error while disconnecting: %s", exc)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _start_scheduler(self, interval: float) -> None:
        self._scheduler = SyncScheduler(
            interval, self._scheduled_tick, on_scheduled=self._on_scheduled
        )
        self._scheduler.start()

    def _stop_scheduler(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    def _on_scheduled(self, seconds: float) -> None:
        self._status.update(next_sync=self._clock() + timedelta(seconds=seconds))

    async def _scheduled_tick(self) -> None:
        if self._status.in_progress:
            logger.debug("Sync in progress, skipping scheduled tick")
            return
        if not self._status.connected:
            logger.debug("Not connected, skipping scheduled tick")
            return
        result = await self.perform_full_sync()
        if not result.success:
            logger.warning("Automatic sync failed: %s", "; ".join(result.errors))

    # ------------------------------------------------------------------
    # Device registry
    # ------------------------------------------------------------------

    async def register_device(self) -> DeviceInfo:
        """Upsert this device into ``sync_devices`` and refresh the count."""
        store = self._require_store()
        config = self._config
        info = DeviceInfo(
            device_id=self.device_id,
            name=(config.device_name if config else None)
            or self.identity.device_name(),
            platform=self.identity.platform(),
            last_activity=self._clock(),
            sync_version=__version__,
        )
        doc = {"_id": info.device_id, **info.model_dump(mode="json", by_alias=True)}
        await self._remote(
            store.replace_one(DEVICES_COLLECTION, info.device_id, doc, upsert=True),
            "Registering device",
        )
        devices = await self.list_devices()
        self._status.update(device_count=len(devices))
        return info

    async def list_devices(self) -> list[DeviceInfo]:
        """Every device registered in the remote store."""
        store = self._require_store()
        docs = await self._remote(
            store.find_all(DEVICES_COLLECTION), "Listing devices"
        )
        devices: list[DeviceInfo] = []
        for doc in docs:
            try:
                devices.append(DeviceInfo.model_validate(doc))
            except ValueError as exc:
                logger.warning("Skipping malformed device %s: %s", doc.get("_id"), exc)
        return devices

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def perform_full_sync(
        self, registry: StorageRegistry | None = None
    ) -> SyncOperationResult:
        """Run one sync cycle over every registered collection."""
        return await self._guarded_cycle(registry, migrate=False)

    async def force_sync_now(
        self, registry: StorageRegistry | None = None
    ) -> SyncOperationResult:
        """Manual trigger; same rules as ``perform_full_sync``."""
        if self._config is None or not self._config.enabled:
            return SyncOperationResult.rejected(MSG_DISABLED)
        return await self.perform_full_sync(registry)

    async def migrate_local_data(
        self, registry: StorageRegistry | None = None
    ) -> SyncOperationResult:
        """First-time upload of existing local data.

        Collections whose remote side is empty get every local record
        pushed; the rest are reconciled normally.
        """
        return await self._guarded_cycle(registry, migrate=True)

    async def _guarded_cycle(
        self, registry: StorageRegistry | None, migrate: bool
    ) -> SyncOperationResult:
        config = self._config
        if config is None or not config.enabled:
            return SyncOperationResult.rejected(MSG_DISABLED)
        if self._store is None or not self._status.connected:
            return SyncOperationResult.rejected(MSG_DISCONNECTED)
        if not self._status.try_begin_cycle():
            logger.info("Sync request rejected: cycle already running")
            return SyncOperationResult.rejected(MSG_IN_PROGRESS)

        if registry is None:
            registry = self._registry or StorageRegistry()
        started = self._clock()
        logger.info(
            "%s started (%d collections)",
            "Migration" if migrate else "Sync cycle",
            len(registry),
        )
        last_error: str | None = None
        try:
            result = await self._run_cycle(config, registry, started, migrate)
            if result.errors:
                last_error = "; ".join(result.errors)
        except SyncConnectionError as exc:
            logger.error("Sync aborted, connection lost: %s", exc)
            last_error = str(exc)
            self._status.update(is_connected=False)
            result = self._failed(started, last_error)
        except Exception as exc:
            logger.exception("Sync cycle failed")
            last_error = f"Sync failed: {exc}"
            result = self._failed(started, last_error)
        finally:
            self._status.end_cycle(last_error=last_error)

        self.events.emit(SyncEvent.COMPLETED, result.model_dump(mode="json"))
        logger.info(
            "Sync finished: success=%s items=%d conflicts=%d tombstones=%d errors=%d",
            result.success,
            result.items_processed,
            result.conflicts_resolved,
            result.tombstones_processed,
            len(result.errors),
        )
        return result

    def _failed(self, started: datetime, message: str) -> SyncOperationResult:
        return SyncOperationResult(
            success=False,
            errors=[message],
            started_at=started,
            completed_at=self._clock(),
            last_sync=self._config.last_sync if self._config else None,
        )

    async def _run_cycle(
        self,
        config: SyncConfig,
        registry: StorageRegistry,
        started: datetime,
        migrate: bool,
    ) -> SyncOperationResult:
        watermark = config.last_sync
        resolver = create_resolver(
            config.conflict_resolution_strategy, on_conflict=self._notify_conflict
        )

        collections: list[CollectionResult] = []
        for entry in registry:
            since = None if entry.name in self._full_resync else watermark
            try:
                if migrate and await self._remote_is_empty(entry):
                    outcome = await self._migrate_collection(entry)
                else:
                    outcome = await self._sync_collection(entry, since, resolver)
                self._full_resync.discard(entry.name)
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error("Sync failed for collection %s: %s", entry.name, exc)
                self._full_resync.add(entry.name)
                outcome = CollectionResult(
                    name=entry.name,
                    tier=entry.tier.value,
                    errors=[f"{entry.name}: {exc}"],
                )
            collections.append(outcome)

        errors = [e for c in collections for e in c.errors]

        pruned = 0
        if config.retain_tombstone_days is not None and not migrate:
            try:
                pruned = await self.cleanup_old_tombstones(
                    config.retain_tombstone_days, registry
                )
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error("Tombstone cleanup failed: %s", exc)
                errors.append(f"Tombstone cleanup failed: {exc}")

        last_sync = started
        errors.extend(await self._advance_watermark(config, started))

        try:
            await self.register_device()
        except SyncConnectionError:
            raise
        except SyncError as exc:
            logger.warning("Device registration failed: %s", exc)

        result = SyncOperationResult(
            success=True,
            items_processed=sum(c.items_processed for c in collections),
            conflicts_resolved=sum(c.conflicts_resolved for c in collections),
            tombstones_processed=sum(c.tombstones_processed for c in collections),
            tombstones_pruned=pruned,
            errors=errors,
            last_sync=last_sync,
            started_at=started,
            completed_at=self._clock(),
            collections=collections,
        )
        self._status.add_counts(
            synced_items=result.items_processed,
            conflicts_resolved=result.conflicts_resolved,
            tombstones_processed=result.tombstones_processed,
        )
        self._status.update(last_sync=last_sync)
        return result

    async def _advance_watermark(
        self, config: SyncConfig, started: datetime
    ) -> list[str]:
        updated = config.model_copy(update={"last_sync": started})
        self._config = updated
        if self._save_config is None:
            return []
        try:
            await maybe_await(self._save_config(updated))
        except Exception as exc:
            logger.error("Failed to persist sync config: %s", exc)
            return [f"Failed to persist sync config: {exc}"]
        return []

    async def _sync_collection(
        self,
        entry: RegisteredCollection,
        watermark: datetime | None,
        resolver: ConflictResolver,
    ) -> CollectionResult:
        if entry.is_versioned:
            return await self._sync_versioned(entry, watermark, resolver)
        return await self._sync_basic(entry)

    # ------------------------------------------------------------------
    # Versioned path
    # ------------------------------------------------------------------

    async def _sync_versioned(
        self,
        entry: RegisteredCollection,
        watermark: datetime | None,
        resolver: ConflictResolver,
    ) -> CollectionResult:
        adapter = entry.adapter
        local_items = await adapter.read_data()
        metadata = {m.id: m for m in await adapter.get_sync_metadata()}
        local_changes: list[SyncRecord] = await adapter.get_modified_since(watermark)
        local_tombstones: list[TombstoneRecord] = await adapter.get_tombstones()

        if watermark is None and not (
            local_items or metadata or local_changes or local_tombstones
        ):
            return await self._bootstrap(entry)

        store = self._require_store()
        if watermark is None:
            remote_docs = await self._remote(
                store.find_all(entry.name), f"Fetching {entry.name}"
            )
        else:
            remote_docs = await self._remote(
                store.find(entry.name, {"_syncedAt": {"$gt": watermark.isoformat()}}),
                f"Fetching {entry.name} changes",
            )
        retry = self._retry.pop(entry.name, set())
        if retry and watermark is not None:
            local_changes, remote_docs = await self._add_retried(
                entry, retry, local_changes, remote_docs
            )
        remote_tombstones = await self._fetch_tombstones(entry.name)

        errors: list[str] = []
        failed: set[str] = set()
        remote_changes = self._parse_documents(entry, remote_docs, errors)

        pushed = await self._push_tombstones(
            entry.name,
            local_tombstones,
            remote_tombstones,
            watermark,
            errors,
            retry=retry,
            failed=failed,
        )
        removed = await self._apply_remote_tombstones(
            entry, local_items, metadata, remote_tombstones
        )

        deletions = _newest_tombstones(local_tombstones, remote_tombstones)
        local_changes = [r for r in local_changes if not _is_deleted(r, deletions)]
        remote_changes = await self._purge_deleted(
            entry.name, remote_changes, deletions, errors, failed
        )

        plan, conflicts = _merge(local_changes, remote_changes, metadata, resolver)
        processed, pulled = await self._apply_plan(entry, plan, errors, failed)
        if failed:
            self._retry[entry.name] = failed

        if removed or pulled:
            self.events.emit(
                SyncEvent.DATA_CHANGED,
                {"collection": entry.name, "updated": pulled, "removed": removed},
            )
        logger.debug(
            "%s: %d applied, %d conflicts, %d tombstones pushed, %d removed locally",
            entry.name,
            processed,
            conflicts,
            pushed,
            removed,
        )
        return CollectionResult(
            name=entry.name,
            tier=entry.tier.value,
            items_processed=processed,
            conflicts_resolved=conflicts,
            tombstones_processed=pushed,
            errors=errors,
        )

    async def _bootstrap(self, entry: RegisteredCollection) -> CollectionResult:
        """Fresh device: pull the whole remote collection, no merging.

        Documents a remote tombstone supersedes are purged, not pulled.
        """
        store = self._require_store()
        docs = await self._remote(store.find_all(entry.name), f"Fetching {entry.name}")
        errors: list[str] = []
        failed: set[str] = set()
        records = self._parse_documents(entry, docs, errors)
        deletions = _newest_tombstones(await self._fetch_tombstones(entry.name))
        records = await self._purge_deleted(
            entry.name, records, deletions, errors, failed
        )
        processed = 0
        if entry.versioned_writes:
            for record in records:
                try:
                    await entry.adapter.save_data_with_version(
                        record.id, record.data, record.version
                    )
                    processed += 1
                except Exception as exc:
                    logger.error(
                        "Failed to store %s/%s: %s", entry.name, record.id, exc
                    )
                    errors.append(f"{entry.name}/{record.id}: {exc}")
                    failed.add(record.id)
        else:
            await entry.adapter.write_data(
                [{**r.data, "id": r.id} for r in records]
            )
            processed = len(records)
        if failed:
            self._retry[entry.name] = failed
        logger.info("Bootstrapped %s with %d records", entry.name, processed)
        if processed:
            self.events.emit(
                SyncEvent.DATA_CHANGED,
                {"collection": entry.name, "updated": processed, "removed": 0},
            )
        return CollectionResult(
            name=entry.name,
            tier=entry.tier.value,
            items_processed=processed,
            bootstrapped=True,
            errors=errors,
        )

    def _parse_documents(
        self,
        entry: RegisteredCollection,
        docs: list[dict[str, Any]],
        errors: list[str],
    ) -> list[SyncRecord]:
        records: list[SyncRecord] = []
        for doc in docs:
            try:
                records.append(document_to_record(doc, entry.record_type))
            except (KeyError, ValueError) as exc:
                logger.error(
                    "Unreadable document %s/%s: %s", entry.name, doc.get("_id"), exc
                )
                errors.append(f"{entry.name}/{doc.get('_id')}: {exc}")
        return records

    async def _fetch_tombstones(self, collection: str) -> list[TombstoneRecord]:
        store = self._require_store()
        docs = await self._remote(
            store.find_all(tombstone_collection(collection)),
            f"Fetching {collection} tombstones",
        )
        tombstones: list[TombstoneRecord] = []
        for doc in docs:
            try:
                tombstones.append(document_to_tombstone(doc))
            except (KeyError, ValueError) as exc:
                logger.warning(
                    "Skipping malformed tombstone %s/%s: %s",
                    collection,
                    doc.get("_id"),
                    exc,
                )
        return tombstones

    async def _push_tombstones(
        self,
        collection: str,
        local_tombstones: list[TombstoneRecord],
        remote_tombstones: list[TombstoneRecord],
        watermark: datetime | None,
        errors: list[str],
        retry: set[str],
        failed: set[str],
    ) -> int:
        """Publish local deletes and remove the ids from the live collection."""
        store = self._require_store()
        remote_by_id = {t.id: t for t in remote_tombstones}
        pushed = 0
        for tombstone in local_tombstones:
            if (
                watermark is not None
                and tombstone.deleted_at <= watermark
                and tombstone.id not in retry
            ):
                continue
            try:
                existing = remote_by_id.get(tombstone.id)
                if existing is None or not existing.supersedes(tombstone.version):
                    doc = tombstone_to_document(
                        tombstone.model_copy(update={"collection": collection}),
                        self.device_id,
                        self._clock(),
                    )
                    await self._remote(
                        store.replace_one(
                            tombstone_collection(collection), tombstone.id, doc
                        ),
                        f"Writing tombstone {collection}/{tombstone.id}",
                    )
                await self._remote(
                    store.delete_many(collection, {"_id": tombstone.id}),
                    f"Deleting {collection}/{tombstone.id}",
                )
                pushed += 1
                logger.debug("Pushed tombstone %s/%s", collection, tombstone.id)
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to push tombstone %s/%s: %s", collection, tombstone.id, exc
                )
                errors.append(f"{collection}/{tombstone.id}: {exc}")
                failed.add(tombstone.id)
        return pushed

    async def _purge_deleted(
        self,
        collection: str,
        records: list[SyncRecord],
        deletions: dict[str, TombstoneRecord],
        errors: list[str],
        failed: set[str],
    ) -> list[SyncRecord]:
        """Delete the live remote documents a tombstone supersedes.

        Returns the records that are still live.
        """
        store = self._require_store()
        live: list[SyncRecord] = []
        for record in records:
            if not _is_deleted(record, deletions):
                live.append(record)
                continue
            try:
                await self._remote(
                    store.delete_many(collection, {"_id": record.id}),
                    f"Deleting {collection}/{record.id}",
                )
                logger.debug("Purged deleted %s/%s from remote", collection, record.id)
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to purge deleted %s/%s: %s", collection, record.id, exc
                )
                errors.append(f"{collection}/{record.id}: {exc}")
                failed.add(record.id)
        return live

    async def _add_retried(
        self,
        entry: RegisteredCollection,
        retry: set[str],
        local_changes: list[SyncRecord],
        remote_docs: list[dict[str, Any]],
    ) -> tuple[list[SyncRecord], list[dict[str, Any]]]:
        """Add the records that failed last cycle to this cycle's change sets."""
        store = self._require_store()
        seen_local = {r.id for r in local_changes}
        local_changes = local_changes + [
            r
            for r in await entry.adapter.get_modified_since(None)
            if r.id in retry and r.id not in seen_local
        ]
        seen_remote = {str(d.get("_id")) for d in remote_docs}
        remote_docs = list(remote_docs)
        for item_id in sorted(retry - seen_remote):
            doc = await self._remote(
                store.find_by_id(entry.name, item_id),
                f"Fetching {entry.name}/{item_id}",
            )
            if doc is not None:
                remote_docs.append(doc)
        logger.debug("Retrying %d records of %s", len(retry), entry.name)
        return local_changes, remote_docs

    async def _apply_remote_tombstones(
        self,
        entry: RegisteredCollection,
        local_items: list[dict[str, Any]],
        metadata: dict[str, SyncMetadata],
        remote_tombstones: list[TombstoneRecord],
    ) -> int:
        """Drop local records deleted elsewhere by a newer-or-equal delete."""
        doomed: set[str] = set()
        by_id = {t.id: t for t in remote_tombstones}
        for item in local_items:
            item_id = str(item.get("id"))
            tombstone = by_id.get(item_id)
            if tombstone is None:
                continue
            known = metadata.get(item_id)
            if known is None or tombstone.supersedes(known.version):
                doomed.add(item_id)
        if not doomed:
            return 0
        await entry.adapter.write_data(
            [i for i in local_items if str(i.get("id")) not in doomed]
        )
        logger.debug("Removed %d deleted records from %s", len(doomed), entry.name)
        return len(doomed)

    async def _apply_plan(
        self,
        entry: RegisteredCollection,
        plan: dict[str, tuple[SyncRecord, bool]],
        errors: list[str],
        failed: set[str],
    ) -> tuple[int, int]:
        """Write each planned record to the remote, and locally if it came
        from elsewhere.  Returns ``(processed, pulled)``."""
        store = self._require_store()
        processed = pulled = 0
        for record, to_local in plan.values():
            try:
                if to_local:
                    await entry.save_record(record)
                    pulled += 1
                doc = record_to_document(record, self.device_id, self._clock())
                await self._remote(
                    store.replace_one(entry.name, record.id, doc, upsert=True),
                    f"Writing {entry.name}/{record.id}",
                )
                processed += 1
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to apply %s/%s: %s", entry.name, record.id, exc
                )
                errors.append(f"{entry.name}/{record.id}: {exc}")
                failed.add(record.id)
        return processed, pulled

    # ------------------------------------------------------------------
    # Basic path
    # ------------------------------------------------------------------

    async def _sync_basic(self, entry: RegisteredCollection) -> CollectionResult:
        """Full bidirectional diff.  Deletions are not propagated."""
        store = self._require_store()
        local_items = await entry.adapter.read_data()
        remote_docs = await self._remote(
            store.find_all(entry.name), f"Fetching {entry.name}"
        )
        local_by_id = {str(i["id"]): i for i in local_items if "id" in i}
        remote_by_id = {str(d["_id"]): d for d in remote_docs}

        merged_local = dict(local_by_id)
        local_changed = False
        processed = conflicts = 0
        errors: list[str] = []

        for item_id in [*local_by_id, *(k for k in remote_by_id if k not in local_by_id)]:
            local = local_by_id.get(item_id)
            remote = remote_by_id.get(item_id)
            try:
                if remote is None:
                    doc = to_remote_format(
                        {**local, "id": item_id},
                        device_id=self.device_id,
                        synced_at=self._clock(),
                    )
                    await self._remote(
                        store.insert_one(entry.name, doc),
                        f"Inserting {entry.name}/{item_id}",
                    )
                    processed += 1
                elif local is None:
                    merged_local[item_id] = to_local_format(remote)
                    local_changed = True
                    processed += 1
                else:
                    remote_item = to_local_format(remote)
                    if remote_item == {**local, "id": item_id}:
                        continue
                    conflicts += 1
                    if pick_basic_winner(local, remote) == "local":
                        doc = to_remote_format(
                            {**local, "id": item_id},
                            device_id=self.device_id,
                            synced_at=self._clock(),
                        )
                        await self._remote(
                            store.replace_one(entry.name, item_id, doc, upsert=True),
                            f"Writing {entry.name}/{item_id}",
                        )
                    else:
                        merged_local[item_id] = remote_item
                        local_changed = True
                    processed += 1
            except SyncConnectionError:
                raise
            except Exception as exc:
                logger.error("Failed to sync %s/%s: %s", entry.name, item_id, exc)
                errors.append(f"{entry.name}/{item_id}: {exc}")

        if local_changed:
            await entry.adapter.write_data(list(merged_local.values()))
            self.events.emit(
                SyncEvent.DATA_CHANGED,
                {"collection": entry.name, "updated": processed, "removed": 0},
            )
        return CollectionResult(
            name=entry.name,
            tier=entry.tier.value,
            items_processed=processed,
            conflicts_resolved=conflicts,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    async def _remote_is_empty(self, entry: RegisteredCollection) -> bool:
        store = self._require_store()
        first = await self._remote(
            store.find_one(entry.name, {}), f"Checking {entry.name}"
        )
        return first is None

    async def _migrate_collection(
        self, entry: RegisteredCollection
    ) -> CollectionResult:
        """Push every local record of *entry* to an empty remote collection.

        Records deleted elsewhere after their last local write stay local
        only; the next regular cycle applies the delete.
        """
        store = self._require_store()
        errors: list[str] = []
        processed = 0
        if entry.is_versioned:
            deletions = _newest_tombstones(await self._fetch_tombstones(entry.name))
            records: list[SyncRecord] = []
            for record in await entry.adapter.get_modified_since(None):
                if _is_deleted(record, deletions):
                    logger.debug(
                        "Not migrating deleted record %s/%s", entry.name, record.id
                    )
                else:
                    records.append(record)
            for record in records:
                try:
                    doc = record_to_document(record, self.device_id, self._clock())
                    await self._remote(
                        store.replace_one(entry.name, record.id, doc, upsert=True),
                        f"Writing {entry.name}/{record.id}",
                    )
                    processed += 1
                except SyncConnectionError:
                    raise
                except Exception as exc:
                    logger.error("Failed to migrate %s/%s: %s", entry.name, record.id, exc)
                    errors.append(f"{entry.name}/{record.id}: {exc}")
        else:
            for item in await entry.adapter.read_data():
                try:
                    doc = to_remote_format(
                        item, device_id=self.device_id, synced_at=self._clock()
                    )
                    await self._remote(
                        store.insert_one(entry.name, doc),
                        f"Inserting {entry.name}/{item.get('id')}",
                    )
                    processed += 1
                except SyncConnectionError:
                    raise
                except Exception as exc:
                    logger.error(
                        "Failed to migrate %s/%s: %s", entry.name, item.get("id"), exc
                    )
                    errors.append(f"{entry.name}/{item.get('id')}: {exc}")
        logger.info("Migrated %d records of %s", processed, entry.name)
        return CollectionResult(
            name=entry.name,
            tier=entry.tier.value,
            items_processed=processed,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Tombstone retention
    # ------------------------------------------------------------------

    async def cleanup_old_tombstones(
        self, retain_days: int, registry: StorageRegistry | None = None
    ) -> int:
        """Prune tombstones deleted more than *retain_days* ago.

        A tombstone exactly *retain_days* old is kept.  Local tombstones
        are pruned through the adapter's optional ``cleanup``; remote ones
        are pruned when the engine is connected.

        Returns:
            Number of tombstones removed on both sides.
        """
        if registry is None:
            registry = self._registry or StorageRegistry()
        cutoff = self._clock() - timedelta(days=retain_days)
        removed = 0
        for entry in registry:
            if entry.supports_cleanup:
                removed += int(await maybe_await(entry.adapter.cleanup(retain_days)) or 0)
            if entry.is_versioned and self._store is not None:
                removed += await self._remote(
                    self._store.delete_many(
                        tombstone_collection(entry.name),
                        {"deletedAt": {"$lt": cutoff.isoformat()}},
                    ),
                    f"Pruning {entry.name} tombstones",
                )
        if removed:
            logger.info(
                "Pruned %d tombstones older than %d days", removed, retain_days
            )
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_store(self) -> DocumentStore:
        if self._store is None:
            raise SyncConnectionError(MSG_DISCONNECTED)
        return self._store

    async def _remote(self, awaitable: Awaitable[T], what: str) -> T:
        timeout = self._config.operation_timeout if self._config else None
        return await with_timeout(awaitable, timeout, what)

    def _notify_conflict(self, local: SyncRecord, remote: SyncRecord) -> None:
        self.events.emit(
            SyncEvent.CONFLICT_RESOLUTION_REQUIRED,
            {
                "id": local.id,
                "type": local.type,
                "local": local.model_dump(mode="json", by_alias=True),
                "remote": remote.model_dump(mode="json", by_alias=True),
            },
        )


# ----------------------------------------------------------------------
# Merge helpers
# ----------------------------------------------------------------------


def _newest_tombstones(
    *groups: list[TombstoneRecord],
) -> dict[str, TombstoneRecord]:
    newest: dict[str, TombstoneRecord] = {}
    for group in groups:
        for tombstone in group:
            current = newest.get(tombstone.id)
            if (
                current is None
                or tombstone.version.ordering_key() > current.version.ordering_key()
            ):
                newest[tombstone.id] = tombstone
    return newest


def _is_deleted(
    record: SyncRecord, tombstones: dict[str, TombstoneRecord]
) -> bool:
    tombstone = tombstones.get(record.id)
    return tombstone is not None and tombstone.supersedes(record.version)


def _merge(
    local_changes: list[SyncRecord],
    remote_changes: list[SyncRecord],
    metadata: dict[str, SyncMetadata],
    resolver: ConflictResolver,
) -> tuple[dict[str, tuple[SyncRecord, bool]], int]:
    """Plan the writes of a versioned cycle.

    Returns a mapping ``id -> (record, write_locally)`` and the number of
    conflicts resolved.  Remote changes this device already holds at the
    same version are dropped, as are ids changed identically on both sides.
    """
    local_by_id = {r.id: r for r in local_changes}
    plan: dict[str, tuple[SyncRecord, bool]] = {
        r.id: (r, False) for r in local_changes
    }
    conflicts = 0
    for remote in remote_changes:
        local = local_by_id.get(remote.id)
        if local is None:
            known = metadata.get(remote.id)
            if known is not None and known.version == remote.version:
                continue
            plan[remote.id] = (remote, True)
        elif local.version == remote.version:
            plan.pop(remote.id, None)
        else:
            winner = resolver.resolve(local, remote)
            conflicts += 1
            plan[remote.id] = (winner, winner is not local)
    return plan, conflicts
