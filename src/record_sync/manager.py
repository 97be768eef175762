"""Sync orchestrator: configuration lifecycle around the ``SyncEngine``.

``SyncManager`` owns the persisted ``SyncConfig`` and the storage
registry.  It wires the registry and the config store's ``save`` method
into the engine and exposes the setup / enable / disable / migrate
operations used by the CLI.  Engine results are passed through unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from .config import validate_config
from .config_schema import SyncConfig, UnifiedConfig
from .config_store import SyncConfigStore
from .core import utcnow
from .errors import SyncConfigError
from .remote import create_store
from .storage import JsonRecordStorage
from .sync import (
    DeviceIdentityProvider,
    DeviceInfo,
    EventBus,
    HostDeviceIdentity,
    StorageRegistry,
    SyncEngine,
    SyncOperationResult,
    SyncStatus,
)

logger = logging.getLogger(__name__)


def build_default_registry(
    data_dir: Path,
    collections: list[str],
    device_id: str,
    clock: Callable[[], datetime] = utcnow,
) -> StorageRegistry:
    """Registry with one ``JsonRecordStorage`` per collection name."""
    registry = StorageRegistry()
    for name in collections:
        registry.register(
            name,
            JsonRecordStorage(data_dir, name, device_id=device_id, clock=clock),
        )
    return registry


class SyncManager:
    """Facade used by the CLI and embedding applications.

    Args:
        unified: Application config (storage location, YAML sync defaults).
        data_dir: Overrides ``unified.storage.data_dir``.
        identity: Device identity; host-derived by default.
        store_factory: Document store factory handed to the engine.
        events: Event bus handed to the engine.
        clock: Current-time source for the engine and storages.
        registry: Pre-built registry; the default JSON collections otherwise.
    """

    def __init__(
        self,
        unified: UnifiedConfig | None = None,
        data_dir: Path | str | None = None,
        identity: DeviceIdentityProvider | None = None,
        store_factory=create_store,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        registry: StorageRegistry | None = None,
    ) -> None:
        self._unified = unified or UnifiedConfig()
        self.data_dir = (
            Path(data_dir).expanduser()
            if data_dir is not None
            else self._unified.storage.data_path
        )
        self.config_store = SyncConfigStore.in_dir(self.data_dir)
        self.identity = identity or HostDeviceIdentity()
        self.engine = SyncEngine(
            store_factory=store_factory,
            identity=self.identity,
            events=events,
            save_config=self.config_store.save,
            clock=clock,
        )
        if registry is None:
            registry = build_default_registry(
                self.data_dir,
                self._unified.storage.collections,
                self.identity.device_id(),
                clock,
            )
        self._registry = registry
        self._initialized = False

    @property
    def registry(self) -> StorageRegistry:
        return self._registry

    @property
    def events(self) -> EventBus:
        return self.engine.events

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Load the stored config and start the engine.  Idempotent.

        Returns:
            ``False`` if sync is enabled but the store is unreachable.
        """
        if self._initialized:
            return True
        config = self.get_sync_config()
        ok = await self.engine.initialize(config, self._registry)
        self._initialized = True
        logger.info(
            "Sync manager initialized (enabled=%s, connected=%s)",
            config.enabled,
            self.engine.get_status().is_connected,
        )
        return ok

    async def shutdown(self) -> None:
        await self.engine.shutdown()
        self._initialized = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_sync_config(self) -> SyncConfig:
        """Engine snapshot, else the stored config, else YAML defaults."""
        current = self.engine.get_config()
        if current is not None:
            return current
        stored = self.config_store.load()
        if stored is not None:
            return stored
        return self._unified.sync

    def is_sync_enabled(self) -> bool:
        return self.get_sync_config().enabled

    async def setup_sync(self, config: SyncConfig) -> bool:
        """First-time setup: test, connect, persist, upload local data."""
        config = config.model_copy(update={"enabled": True})
        try:
            validate_config(config)
        except SyncConfigError as exc:
            logger.error("Invalid sync configuration: %s", exc)
            return False
        if not await self.engine.test_connection(config):
            logger.error("Cannot reach document store %s", config.store_uri)
            return False
        if not await self.engine.initialize(config, self._registry):
            return False
        self.config_store.save(config)
        self._initialized = True

        if await self._has_local_data():
            result = await self.engine.migrate_local_data(self._registry)
            if not result.success:
                logger.error("Initial data migration failed: %s", result.errors)
            else:
                logger.info(
                    "Migrated %d existing records", result.items_processed
                )
        logger.info("Sync set up for %s", config.store_uri)
        return True

    async def enable_sync(self, config: SyncConfig) -> bool:
        """Enable sync with *config* (no migration) and persist it."""
        config = config.model_copy(update={"enabled": True})
        try:
            validate_config(config)
        except SyncConfigError as exc:
            logger.error("Invalid sync configuration: %s", exc)
            return False
        if not await self.engine.initialize(config, self._registry):
            return False
        self.config_store.save(config)
        self._initialized = True
        return True

    async def disable_sync(self) -> None:
        """Stop syncing; the connection details stay stored."""
        config = self.get_sync_config()
        await self.engine.disable()
        self.config_store.save(config.model_copy(update={"enabled": False}))
        logger.info("Sync disabled")

    async def update_sync_config(self, config: SyncConfig) -> bool:
        try:
            validate_config(config)
        except SyncConfigError as exc:
            logger.error("Invalid sync configuration: %s", exc)
            return False
        if not await self.engine.update_config(config):
            return False
        self.config_store.save(config)
        return True

    async def delete_sync_config(self) -> None:
        await self.engine.disable()
        self.config_store.delete()

    async def test_connection(self, store_uri: str, database_name: str) -> bool:
        try:
            config = SyncConfig(store_uri=store_uri, database_name=database_name)
            validate_config(config)
        except (SyncConfigError, ValueError) as exc:
            logger.error("Invalid connection settings: %s", exc)
            return False
        return await self.engine.test_connection(config)

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def perform_sync(self) -> SyncOperationResult:
        return await self.engine.perform_full_sync(self._registry)

    async def force_sync_now(self) -> SyncOperationResult:
        return await self.engine.force_sync_now(self._registry)

    async def migrate_existing_data(self) -> SyncOperationResult:
        return await self.engine.migrate_local_data(self._registry)

    def get_sync_status(self) -> SyncStatus:
        return self.engine.get_status()

    async def list_devices(self) -> list[DeviceInfo]:
        return await self.engine.list_devices()

    async def _has_local_data(self) -> bool:
        for entry in self._registry:
            if await entry.adapter.read_data():
                return True
        return False
