"""Tests for the SyncEngine sync cycle.

Covers:
- initialize: disabled config, connection, device registration, auto sync
- perform_full_sync rejections (disabled, disconnected, already running)
- Bootstrap pull on a fresh device
- Incremental versioned reconciliation and two-writer convergence
- Tombstones: push, remote delete, no resurrection, local application,
  stale writes landing after a delete, bootstrap and migration
- Basic (unversioned) reconciliation
- Error layering: per-item, per-collection, connection loss, and retry
  of failed records after the watermark moved on
- Watermark persistence
- Tombstone retention boundary
- Migration, force sync, update_config, disable, test_connection
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from record_sync.config_schema import SyncConfig
from record_sync.storage import BasicJsonStorage, JsonRecordStorage
from record_sync.sync import (
    ConflictStrategy,
    DataVersion,
    StaticDeviceIdentity,
    StorageRegistry,
    SyncEngine,
    SyncEvent,
    SyncRecord,
    TombstoneRecord,
)
from record_sync.sync.formats import (
    DEVICES_COLLECTION,
    record_to_document,
    tombstone_to_document,
)

T1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def make_record(record_id: str, device: str, ts: datetime, **data) -> SyncRecord:
    return SyncRecord(
        id=record_id,
        type="ssh-profile",
        data={"id": record_id, **data},
        version=DataVersion(device_id=device, timestamp=ts, hash=f"h-{record_id}"),
        last_modified=ts,
    )


class GatedAdapter:
    """Basic adapter whose reads block until the gate opens."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.writes = 0

    async def read_data(self):
        await self.gate.wait()
        return []

    async def write_data(self, records):
        self.writes += 1


class BrokenAdapter:
    async def read_data(self):
        raise RuntimeError("disk on fire")

    async def write_data(self, records):
        raise RuntimeError("disk on fire")


class PickyStorage(JsonRecordStorage):
    """Refuses to store the ids listed in ``refuse`` (``bad`` by default)."""

    refuse = frozenset({"bad"})

    async def save_data_with_version(self, record_id, data, version):
        if record_id in self.refuse:
            raise OSError("cannot store bad")
        await super().save_data_with_version(record_id, data, version)


class FlakyStorage(JsonRecordStorage):
    """Fails the next tombstone read once ``fail_next`` is set."""

    fail_next = False

    async def get_tombstones(self):
        if self.fail_next:
            self.fail_next = False
            raise OSError("tombstones unreadable")
        return await super().get_tombstones()


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    async def test_disabled_config_is_success_without_connecting(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        ok = await device.start(sync_config.model_copy(update={"enabled": False}))

        assert ok is True
        assert device.engine.get_status().is_connected is False
        assert device.engine.store is None
        assert await remote.find_all(DEVICES_COLLECTION) == []

    async def test_connects_and_registers_device(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        assert await device.start(sync_config.model_copy(update={"device_name": "laptop"}))

        status = device.engine.get_status()
        assert status.is_connected is True
        assert status.device_count == 1
        doc = await remote.find_by_id(DEVICES_COLLECTION, "device-a")
        assert doc["name"] == "laptop"
        assert doc["platform"] == "linux"
        assert doc["deviceId"] == "device-a"

    async def test_device_registration_is_idempotent(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        await device.start(sync_config)
        await device.engine.register_device()
        await device.engine.register_device()

        assert len(await remote.find_all(DEVICES_COLLECTION)) == 1
        assert len(await device.engine.list_devices()) == 1

    async def test_unreachable_store_returns_false(
        self, make_device, sync_config, remote
    ):
        remote.set_available(False)
        device = make_device("device-a")

        assert await device.start(sync_config) is False
        status = device.engine.get_status()
        assert status.is_connected is False
        assert "not reachable" in status.last_error

    async def test_auto_sync_starts_scheduler(self, make_device, sync_config):
        device = make_device("device-a")
        await device.start(sync_config.model_copy(update={"auto_sync": True}))
        await asyncio.sleep(0)

        assert device.engine.scheduler is not None
        assert device.engine.scheduler.is_running
        assert device.engine.next_sync is not None
        await device.engine.shutdown()
        assert device.engine.scheduler is None


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    async def test_disabled_sync_is_rejected(self, make_device, sync_config):
        device = make_device("device-a")
        await device.start(sync_config.model_copy(update={"enabled": False}))

        result = await device.engine.perform_full_sync()
        assert result.success is False
        assert "not enabled" in result.errors[0]

    async def test_uninitialized_engine_is_rejected(self):
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"))
        result = await engine.perform_full_sync()
        assert result.success is False

    async def test_second_cycle_while_running_is_rejected(
        self, sync_config, remote, clock
    ):
        adapter = GatedAdapter()
        registry = StorageRegistry()
        registry.register("things", adapter)
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"), clock=clock)
        await engine.initialize(sync_config, registry)

        first = asyncio.create_task(engine.perform_full_sync())
        await asyncio.sleep(0)
        assert engine.get_status().sync_in_progress is True

        second = await engine.perform_full_sync()
        assert second.success is False
        assert "already in progress" in second.errors[0]
        assert await remote.find_all("things") == []
        assert adapter.writes == 0

        adapter.gate.set()
        result = await first
        assert result.success is True
        assert engine.get_status().sync_in_progress is False

    async def test_force_sync_now_requires_enabled(self, make_device, sync_config):
        device = make_device("device-a")
        await device.start(sync_config.model_copy(update={"enabled": False}))

        result = await device.engine.force_sync_now()
        assert result.success is False


# ---------------------------------------------------------------------------
# Bootstrap and incremental sync
# ---------------------------------------------------------------------------


class TestBootstrap:
    async def test_fresh_device_pulls_every_remote_record(
        self, make_device, sync_config, remote, clock
    ):
        for i in range(3):
            record = make_record(f"p{i}", "device-x", T1, host=f"h{i}.example")
            await remote.replace_one(
                "ssh-profiles", record.id, record_to_document(record, "device-x", T1)
            )

        device = make_device("device-a")
        await device.start(sync_config)
        result = await device.engine.perform_full_sync()

        assert result.success is True
        assert result.errors == []
        assert result.conflicts_resolved == 0
        assert result.items_processed == 3
        assert result.collections[0].bootstrapped is True
        records = await device.records()
        assert sorted(records) == ["p0", "p1", "p2"]
        assert records["p1"]["host"] == "h1.example"

    async def test_bootstrap_keeps_remote_versions(
        self, make_device, sync_config, remote
    ):
        record = make_record("p1", "device-x", T1, host="a")
        await remote.replace_one(
            "ssh-profiles", "p1", record_to_document(record, "device-x", T1)
        )
        device = make_device("device-a")
        await device.start(sync_config)
        await device.engine.perform_full_sync()

        meta = await device.storage.get_item_metadata("p1")
        assert meta.version == record.version

    async def test_bootstrap_per_item_error_keeps_other_records(
        self, tmp_path, sync_config, remote, clock
    ):
        for rid in ("good", "bad"):
            record = make_record(rid, "device-x", T1)
            await remote.replace_one(
                "ssh-profiles", rid, record_to_document(record, "device-x", T1)
            )
        storage = PickyStorage(tmp_path, "ssh-profiles", device_id="device-a", clock=clock)
        registry = StorageRegistry()
        registry.register("ssh-profiles", storage)
        saved = []
        engine = SyncEngine(
            identity=StaticDeviceIdentity("device-a"),
            save_config=saved.append,
            clock=clock,
        )
        await engine.initialize(sync_config, registry)

        result = await engine.perform_full_sync()
        assert result.success is True
        assert result.degraded is True
        assert any("bad" in e for e in result.errors)
        assert [r["id"] for r in await storage.read_data()] == ["good"]
        assert [c.last_sync for c in saved] == [result.last_sync]

        # The failed record is fetched again although the watermark moved on.
        storage.refuse = frozenset()
        retried = await engine.perform_full_sync()
        assert retried.errors == []
        assert sorted(r["id"] for r in await storage.read_data()) == ["bad", "good"]


class TestVersionedSync:
    async def test_first_sync_with_local_data_pushes_it(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1", "host": "a.example"}])
        await device.start(sync_config)

        result = await device.engine.perform_full_sync()
        assert result.success is True
        assert result.collections[0].bootstrapped is False
        doc = await remote.find_by_id("ssh-profiles", "p1")
        assert doc["host"] == "a.example"
        assert doc["_deviceId"] == "device-a"
        assert doc["_syncMeta"]["type"] == "ssh-profile"
        assert doc["_syncMeta"]["version"]["deviceId"] == "device-a"

    async def test_two_writers_converge_to_latest_write(
        self, make_device, sync_config, clock
    ):
        device_a = make_device("device-a", storage_clock=lambda: T1)
        device_b = make_device("device-b", storage_clock=lambda: T2)
        await device_a.storage.write_data([{"id": "p1", "host": "a.example"}])
        await device_b.storage.write_data([{"id": "p1", "host": "b.example"}])
        await device_a.start(sync_config)
        await device_b.start(sync_config)

        await device_a.engine.perform_full_sync()
        result_b = await device_b.engine.perform_full_sync()
        await device_a.engine.perform_full_sync()

        assert result_b.conflicts_resolved == 1
        assert (await device_a.records())["p1"]["host"] == "b.example"
        assert (await device_b.records())["p1"]["host"] == "b.example"

    async def test_remote_change_already_held_is_not_reapplied(
        self, make_device, sync_config
    ):
        device_a = make_device("device-a")
        device_b = make_device("device-b")
        await device_a.storage.write_data([{"id": "p1", "host": "a"}])
        await device_a.start(sync_config)
        await device_b.start(sync_config)

        await device_a.engine.perform_full_sync()
        await device_b.engine.perform_full_sync()
        again = await device_a.engine.perform_full_sync()

        assert again.items_processed == 0
        assert again.conflicts_resolved == 0

    async def test_watermark_advances_and_is_persisted(
        self, make_device, sync_config
    ):
        device = make_device("device-a")
        await device.start(sync_config)

        result = await device.engine.perform_full_sync()
        assert result.last_sync is not None
        assert device.saved[-1].last_sync == result.last_sync
        assert device.engine.get_config().last_sync == result.last_sync
        assert device.engine.get_status().last_sync == result.last_sync

    async def test_local_edit_after_sync_is_pushed_incrementally(
        self, make_device, sync_config, remote, clock
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1", "host": "a"}])
        await device.start(sync_config)
        await device.engine.perform_full_sync()

        clock.advance(minutes=5)
        await device.storage.write_data(
            [{"id": "p1", "host": "a"}, {"id": "p2", "host": "b"}]
        )
        result = await device.engine.perform_full_sync()

        assert result.items_processed == 1
        assert (await remote.find_by_id("ssh-profiles", "p2"))["host"] == "b"

    async def test_manual_strategy_notifies_and_resolves(
        self, make_device, sync_config
    ):
        config = sync_config.model_copy(
            update={"conflict_resolution_strategy": ConflictStrategy.MANUAL}
        )
        device_a = make_device("device-a", storage_clock=lambda: T1)
        device_b = make_device("device-b", storage_clock=lambda: T2)
        await device_a.storage.write_data([{"id": "p1", "host": "a"}])
        await device_b.storage.write_data([{"id": "p1", "host": "b"}])
        seen = []
        device_b.engine.events.subscribe(
            SyncEvent.CONFLICT_RESOLUTION_REQUIRED,
            lambda event, payload: seen.append(payload),
        )
        await device_a.start(config)
        await device_b.start(config)

        await device_a.engine.perform_full_sync()
        await device_b.engine.perform_full_sync()

        assert len(seen) == 1
        assert seen[0]["id"] == "p1"
        assert seen[0]["remote"]["data"]["host"] == "a"
        assert (await device_b.records())["p1"]["host"] == "b"

    async def test_completed_event_is_emitted(self, make_device, sync_config):
        device = make_device("device-a")
        events = []
        device.engine.events.subscribe(
            SyncEvent.COMPLETED, lambda event, payload: events.append(payload)
        )
        await device.start(sync_config)
        await device.engine.perform_full_sync()

        assert len(events) == 1
        assert events[0]["success"] is True


# ---------------------------------------------------------------------------
# Tombstones
# ---------------------------------------------------------------------------


class TestTombstones:
    async def test_delete_is_pushed_and_never_resurrected(
        self, make_device, sync_config, remote, clock
    ):
        device_a = make_device("device-a")
        device_b = make_device("device-b")
        await device_a.storage.write_data([{"id": "p1", "host": "a"}])
        await device_a.start(sync_config)
        await device_b.start(sync_config)
        await device_a.engine.perform_full_sync()
        await device_b.engine.perform_full_sync()
        assert "p1" in await device_b.records()

        tombstone = await device_a.storage.mark_as_deleted("p1")
        # Another writer lands an update stamped before the delete.
        stale = make_record(
            "p1", "device-b", tombstone.deleted_at - timedelta(hours=1), host="stale"
        )
        await remote.replace_one(
            "ssh-profiles", "p1", record_to_document(stale, "device-b", clock())
        )

        result = await device_a.engine.perform_full_sync()
        assert result.tombstones_processed == 1
        assert await remote.find_by_id("ssh-profiles", "p1") is None
        pushed = await remote.find_by_id("ssh-profiles_tombstones", "p1")
        assert pushed["deletedBy"] == "device-a"
        assert pushed["collection"] == "ssh-profiles"
        assert "p1" not in await device_a.records()

        await device_b.engine.perform_full_sync()
        assert "p1" not in await device_b.records()
        assert await remote.find_by_id("ssh-profiles", "p1") is None

    async def test_newer_remote_tombstone_is_not_overwritten(
        self, make_device, sync_config, remote, clock
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1"}])
        await device.start(sync_config)
        await device.engine.perform_full_sync()
        local = await device.storage.mark_as_deleted("p1")

        newer = TombstoneRecord(
            id="p1",
            deleted_at=local.deleted_at + timedelta(days=1),
            version=DataVersion(
                device_id="device-z", timestamp=local.deleted_at + timedelta(days=1)
            ),
            deleted_by="device-z",
        )
        await remote.replace_one(
            "ssh-profiles_tombstones",
            "p1",
            tombstone_to_document(newer, "device-z", clock()),
        )

        await device.engine.perform_full_sync()
        doc = await remote.find_by_id("ssh-profiles_tombstones", "p1")
        assert doc["deletedBy"] == "device-z"

    async def test_record_recreated_after_delete_survives(
        self, make_device, sync_config, remote, clock
    ):
        device = make_device("device-a")
        await device.start(sync_config)
        old = TombstoneRecord(
            id="p1",
            deleted_at=T1,
            version=DataVersion(device_id="device-z", timestamp=T1),
        )
        await remote.replace_one(
            "ssh-profiles_tombstones", "p1", tombstone_to_document(old, "device-z", T1)
        )
        await device.storage.write_data([{"id": "p1", "host": "new"}])

        await device.engine.perform_full_sync()
        assert (await remote.find_by_id("ssh-profiles", "p1"))["host"] == "new"
        assert "p1" in await device.records()

    async def _delete_then_stale_write(self, device_a, device_b, remote, clock):
        """A deletes p1 and syncs; afterwards an older write of p1 lands."""
        await device_a.storage.write_data([{"id": "p1", "host": "a"}])
        await device_a.engine.perform_full_sync()
        await device_b.engine.perform_full_sync()

        tombstone = await device_a.storage.mark_as_deleted("p1")
        await device_a.engine.perform_full_sync()
        assert await remote.find_by_id("ssh-profiles", "p1") is None

        stale = make_record(
            "p1", "device-x", tombstone.deleted_at - timedelta(hours=1), host="stale"
        )
        await remote.replace_one(
            "ssh-profiles", "p1", record_to_document(stale, "device-x", clock())
        )

    async def test_stale_write_after_delete_is_purged_by_deleter(
        self, make_device, sync_config, remote, clock
    ):
        device_a = make_device("device-a")
        device_b = make_device("device-b")
        await device_a.start(sync_config)
        await device_b.start(sync_config)
        await self._delete_then_stale_write(device_a, device_b, remote, clock)

        result = await device_a.engine.perform_full_sync()
        assert result.errors == []
        assert await remote.find_by_id("ssh-profiles", "p1") is None
        assert "p1" not in await device_a.records()

        device_c = make_device("device-c")
        await device_c.start(sync_config)
        await device_c.engine.perform_full_sync()
        assert "p1" not in await device_c.records()

    async def test_stale_write_after_delete_is_purged_by_other_device(
        self, make_device, sync_config, remote, clock
    ):
        device_a = make_device("device-a")
        device_b = make_device("device-b")
        await device_a.start(sync_config)
        await device_b.start(sync_config)
        await self._delete_then_stale_write(device_a, device_b, remote, clock)
        assert "p1" in await device_b.records()

        await device_b.engine.perform_full_sync()
        assert "p1" not in await device_b.records()
        assert await remote.find_by_id("ssh-profiles", "p1") is None

    async def test_bootstrap_skips_and_purges_deleted_records(
        self, make_device, sync_config, remote
    ):
        for rid in ("p1", "p2"):
            record = make_record(rid, "device-x", T1, host=rid)
            await remote.replace_one(
                "ssh-profiles", rid, record_to_document(record, "device-x", T1)
            )
        tombstone = TombstoneRecord(
            id="p1",
            deleted_at=T2,
            version=DataVersion(device_id="device-z", timestamp=T2),
        )
        await remote.replace_one(
            "ssh-profiles_tombstones", "p1", tombstone_to_document(tombstone, "device-z", T2)
        )

        device = make_device("device-c")
        await device.start(sync_config)
        result = await device.engine.perform_full_sync()

        assert result.collections[0].bootstrapped is True
        assert result.items_processed == 1
        assert sorted(await device.records()) == ["p2"]
        assert await remote.find_by_id("ssh-profiles", "p1") is None
        assert await remote.find_by_id("ssh-profiles", "p2") is not None

    async def test_migrate_does_not_reupload_deleted_records(
        self, make_device, sync_config, remote
    ):
        tombstone = TombstoneRecord(
            id="p1",
            deleted_at=T2,
            version=DataVersion(device_id="device-a", timestamp=T2),
        )
        await remote.replace_one(
            "ssh-profiles_tombstones", "p1", tombstone_to_document(tombstone, "device-a", T2)
        )
        device = make_device("device-c")
        await device.storage.save_data_with_version(
            "p1", {"id": "p1", "host": "old"}, DataVersion(device_id="device-c", timestamp=T1)
        )
        await device.storage.save_data_with_version(
            "p2",
            {"id": "p2", "host": "new"},
            DataVersion(device_id="device-c", timestamp=T2 + timedelta(days=1)),
        )
        await device.start(sync_config)

        result = await device.engine.migrate_local_data()
        assert result.success is True
        assert result.items_processed == 1
        assert await remote.find_by_id("ssh-profiles", "p1") is None
        assert await remote.find_by_id("ssh-profiles", "p2") is not None

        await device.engine.perform_full_sync()
        assert sorted(await device.records()) == ["p2"]
        assert await remote.find_by_id("ssh-profiles", "p1") is None


# ---------------------------------------------------------------------------
# Basic path
# ---------------------------------------------------------------------------


class TestBasicSync:
    async def test_full_diff_pushes_pulls_and_resolves(
        self, tmp_path, sync_config, remote, clock
    ):
        storage = BasicJsonStorage(tmp_path, "saved-commands")
        await storage.write_data(
            [
                {"id": "local-only", "cmd": "ls"},
                {"id": "both", "cmd": "new", "updated": "2024-02-01T00:00:00Z"},
            ]
        )
        await remote.insert_one(
            "saved-commands", {"_id": "remote-only", "cmd": "pwd"}
        )
        await remote.insert_one(
            "saved-commands",
            {"_id": "both", "cmd": "old", "updated": "2024-01-01T00:00:00Z"},
        )
        registry = StorageRegistry()
        entry = registry.register("saved-commands", storage)
        assert entry.is_versioned is False
        changed = []
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"), clock=clock)
        engine.events.subscribe(
            SyncEvent.DATA_CHANGED, lambda event, payload: changed.append(payload)
        )
        await engine.initialize(sync_config, registry)

        result = await engine.perform_full_sync()
        assert result.success is True
        assert result.items_processed == 3
        assert result.conflicts_resolved == 1

        local = {r["id"]: r for r in await storage.read_data()}
        assert local["remote-only"] == {"id": "remote-only", "cmd": "pwd"}
        assert (await remote.find_by_id("saved-commands", "local-only"))["cmd"] == "ls"
        assert (await remote.find_by_id("saved-commands", "both"))["cmd"] == "new"
        assert changed and changed[0]["collection"] == "saved-commands"

    async def test_remote_wins_tie(self, tmp_path, sync_config, remote, clock):
        storage = BasicJsonStorage(tmp_path, "saved-commands")
        await storage.write_data([{"id": "x", "cmd": "local"}])
        await remote.insert_one("saved-commands", {"_id": "x", "cmd": "remote"})
        registry = StorageRegistry()
        registry.register("saved-commands", storage)
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"), clock=clock)
        await engine.initialize(sync_config, registry)

        await engine.perform_full_sync()
        assert (await storage.read_data())[0]["cmd"] == "remote"


# ---------------------------------------------------------------------------
# Error layering
# ---------------------------------------------------------------------------


class TestErrors:
    async def test_collection_failure_does_not_stop_others(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        device.registry.register("broken", BrokenAdapter())
        await device.storage.write_data([{"id": "p1"}])
        await device.start(sync_config)

        result = await device.engine.perform_full_sync()
        assert result.success is True
        assert any(e.startswith("broken:") for e in result.errors)
        assert await remote.find_by_id("ssh-profiles", "p1") is not None
        assert result.last_sync == result.started_at
        assert [c.last_sync for c in device.saved] == [result.last_sync]
        assert "disk on fire" in device.engine.get_status().last_error

    async def test_unreadable_document_does_not_freeze_watermark(
        self, make_device, sync_config, remote, clock
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1"}])
        await device.start(sync_config)
        await remote.replace_one(
            "ssh-profiles",
            "bad",
            {
                "_id": "bad",
                "_syncMeta": {"version": {"deviceId": "x"}},
                "_syncedAt": clock().isoformat(),
            },
        )

        first = await device.engine.perform_full_sync()
        assert first.success is True
        assert any("ssh-profiles/bad" in e for e in first.errors)
        assert device.saved[-1].last_sync == first.started_at
        assert device.engine.get_status().last_sync == first.started_at

        second = await device.engine.perform_full_sync()
        assert second.errors == []
        assert device.saved[-1].last_sync == second.started_at
        assert len(device.saved) == 2

    async def test_failed_collection_is_reconciled_in_full(
        self, tmp_path, sync_config, remote, clock
    ):
        storage = FlakyStorage(tmp_path, "ssh-profiles", device_id="device-a", clock=clock)
        await storage.write_data([{"id": "p1"}])
        registry = StorageRegistry()
        registry.register("ssh-profiles", storage)
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"), clock=clock)
        await engine.initialize(sync_config, registry)
        await engine.perform_full_sync()

        await storage.write_data([{"id": "p1"}, {"id": "p2"}])
        storage.fail_next = True
        failed = await engine.perform_full_sync()
        assert any(e.startswith("ssh-profiles:") for e in failed.errors)
        assert await remote.find_by_id("ssh-profiles", "p2") is None

        # p2 was written before the advanced watermark; a full pass finds it.
        recovered = await engine.perform_full_sync()
        assert recovered.errors == []
        assert await remote.find_by_id("ssh-profiles", "p2") is not None

    async def test_connection_loss_aborts_cycle(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1"}])
        await device.start(sync_config)
        remote.set_available(False)

        result = await device.engine.perform_full_sync()
        status = device.engine.get_status()
        assert result.success is False
        assert status.is_connected is False
        assert status.sync_in_progress is False
        assert status.last_error
        assert device.saved == []

    async def test_status_counts_accumulate(self, make_device, sync_config):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1"}, {"id": "p2"}])
        await device.start(sync_config)
        await device.engine.perform_full_sync()

        assert device.engine.get_status().synced_items == 2


# ---------------------------------------------------------------------------
# Tombstone retention
# ---------------------------------------------------------------------------


class TestTombstoneRetention:
    async def test_cutoff_boundary(self, make_device, sync_config, remote, clock):
        clock.step = timedelta(0)
        now = clock.now
        device = make_device("device-a")
        await device.start(sync_config)

        for days in (31, 30, 29):
            deleted_at = now - timedelta(days=days)
            clock.now = deleted_at
            await device.storage.write_data([{"id": f"d{days}"}])
            await device.storage.mark_as_deleted(f"d{days}")
            tombstone = TombstoneRecord(
                id=f"d{days}",
                deleted_at=deleted_at,
                version=DataVersion(device_id="device-z", timestamp=deleted_at),
            )
            await remote.replace_one(
                "ssh-profiles_tombstones",
                f"d{days}",
                tombstone_to_document(tombstone, "device-z", deleted_at),
            )
        clock.now = now

        removed = await device.engine.cleanup_old_tombstones(30)

        assert removed == 2
        local_ids = {t.id for t in await device.storage.get_tombstones()}
        remote_ids = {d["_id"] for d in await remote.find_all("ssh-profiles_tombstones")}
        assert local_ids == {"d30", "d29"}
        assert remote_ids == {"d30", "d29"}

    async def test_cycle_prunes_when_retention_configured(
        self, make_device, sync_config, clock
    ):
        clock.step = timedelta(0)
        device = make_device("device-a")
        clock.now = clock.now - timedelta(days=40)
        await device.storage.write_data([{"id": "gone"}])
        await device.storage.mark_as_deleted("gone")
        clock.now = clock.now + timedelta(days=40)
        await device.start(sync_config.model_copy(update={"retain_tombstone_days": 30}))

        result = await device.engine.perform_full_sync()
        assert result.tombstones_pruned >= 1
        assert await device.storage.get_tombstones() == []


# ---------------------------------------------------------------------------
# Other operations
# ---------------------------------------------------------------------------


class TestOperations:
    async def test_migrate_pushes_into_empty_remote(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        await device.storage.write_data([{"id": "p1"}, {"id": "p2"}])
        await device.start(sync_config)

        result = await device.engine.migrate_local_data()
        assert result.success is True
        assert result.items_processed == 2
        assert len(await remote.find_all("ssh-profiles")) == 2

    async def test_migrate_basic_collection(self, tmp_path, sync_config, remote, clock):
        storage = BasicJsonStorage(tmp_path, "ssh-groups")
        await storage.write_data([{"id": "g1", "name": "prod"}])
        registry = StorageRegistry()
        registry.register("ssh-groups", storage)
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"), clock=clock)
        await engine.initialize(sync_config, registry)

        await engine.migrate_local_data()
        doc = await remote.find_by_id("ssh-groups", "g1")
        assert doc["name"] == "prod"
        assert doc["_deviceId"] == "device-a"

    async def test_test_connection(self, sync_config, remote):
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"))
        assert await engine.test_connection(sync_config) is True
        remote.set_available(False)
        assert await engine.test_connection(sync_config) is False

    async def test_test_connection_bad_scheme_is_false(self):
        engine = SyncEngine(identity=StaticDeviceIdentity("device-a"))
        config = SyncConfig(store_uri="mongodb://x", database_name="db")
        assert await engine.test_connection(config) is False

    async def test_disable_disconnects(self, make_device, sync_config):
        device = make_device("device-a")
        await device.start(sync_config)
        await device.engine.disable()

        assert device.engine.get_status().is_connected is False
        assert device.engine.get_config() is None
        result = await device.engine.perform_full_sync()
        assert result.success is False

    async def test_update_config_reconnects(self, make_device, sync_config):
        device = make_device("device-a")
        await device.start(sync_config)
        new = sync_config.model_copy(
            update={"conflict_resolution_strategy": ConflictStrategy.REMOTE_WINS}
        )

        assert await device.engine.update_config(new) is True
        assert device.engine.get_config() == new
        assert device.engine.get_status().is_connected is True

    async def test_scheduled_tick_skips_while_cycle_runs(
        self, make_device, sync_config
    ):
        device = make_device("device-a")
        await device.start(sync_config)
        device.engine._status.try_begin_cycle()

        await device.engine._scheduled_tick()
        assert device.saved == []

    async def test_scheduled_tick_skips_when_disconnected(
        self, make_device, sync_config, remote
    ):
        device = make_device("device-a")
        await device.start(sync_config)
        remote.set_available(False)
        await device.engine.perform_full_sync()
        assert device.engine.get_status().is_connected is False

        remote.set_available(True)
        await device.engine._scheduled_tick()
        assert device.engine.get_status().is_connected is False
        assert device.saved == []

        # An explicit re-initialize is what brings the engine back.
        assert await device.start(sync_config)
        await device.engine._scheduled_tick()
        assert len(device.saved) == 1
