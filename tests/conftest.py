"""Shared pytest fixtures for record-sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from record_sync.config_schema import SyncConfig
from record_sync.remote import MemoryDocumentStore
from record_sync.storage import JsonRecordStorage
from record_sync.sync import (
    StaticDeviceIdentity,
    StorageRegistry,
    SyncEngine,
)

STORE_NAME = "test-remote"
DATABASE = "records"
START = datetime(2024, 3, 1, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock.  Each call returns the current time, then
    moves it forward by *step* so successive writes stay ordered."""

    def __init__(
        self, start: datetime = START, step: timedelta = timedelta(seconds=1)
    ) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _reset_memory_stores():
    MemoryDocumentStore.reset()
    yield
    MemoryDocumentStore.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sync_config() -> SyncConfig:
    """Enabled config pointing at the shared in-memory store."""
    return SyncConfig(
        store_uri=f"memory://{STORE_NAME}",
        database_name=DATABASE,
        enabled=True,
        connect_timeout=5,
        operation_timeout=5,
    )


@pytest.fixture
async def remote() -> MemoryDocumentStore:
    """A second client on the shared in-memory store, for inspection."""
    store = MemoryDocumentStore(STORE_NAME, DATABASE)
    await store.connect()
    return store


class Device:
    """One simulated device: identity, storage, registry and engine."""

    def __init__(
        self,
        device_id: str,
        data_dir: Path,
        clock,
        storage_clock=None,
        collection: str = "ssh-profiles",
    ) -> None:
        self.device_id = device_id
        self.saved: list[SyncConfig] = []
        self.storage = JsonRecordStorage(
            data_dir / device_id,
            collection,
            device_id=device_id,
            clock=storage_clock or clock,
        )
        self.registry = StorageRegistry()
        self.registry.register(collection, self.storage)
        self.engine = SyncEngine(
            identity=StaticDeviceIdentity(device_id, platform_name="linux"),
            save_config=self.saved.append,
            clock=clock,
        )

    async def start(self, config: SyncConfig) -> bool:
        return await self.engine.initialize(config, self.registry)

    async def records(self) -> dict[str, dict]:
        return {r["id"]: r for r in await self.storage.read_data()}


@pytest.fixture
def make_device(tmp_path, clock):
    """Factory: ``make_device("device-a", storage_clock=...)``."""

    def factory(device_id: str, **kwargs) -> Device:
        kwargs.setdefault("clock", clock)
        return Device(device_id, tmp_path, **kwargs)

    return factory
