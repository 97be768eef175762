"""Tests for local <-> remote record conversion.

Covers:
- to_local_format / to_remote_format and their round trip
- Sync metadata attached by record_to_document
- document_to_record with and without _syncMeta
- Tombstone documents
- Last-modified field precedence
"""

from __future__ import annotations

from datetime import datetime, timezone

from record_sync.core.clock import EPOCH
from record_sync.sync.formats import (
    DEVICES_COLLECTION,
    SYNC_META_FIELDS,
    content_hash,
    document_to_record,
    document_to_tombstone,
    local_last_modified,
    record_to_document,
    remote_last_modified,
    to_local_format,
    to_remote_format,
    tombstone_collection,
    tombstone_to_document,
)
from record_sync.sync.models import DataVersion, SyncRecord, TombstoneRecord

T1 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
SYNCED = datetime(2024, 1, 2, tzinfo=timezone.utc)


def _record() -> SyncRecord:
    return SyncRecord(
        id="p1",
        type="ssh-profile",
        data={"id": "p1", "host": "a.example", "port": 22},
        version=DataVersion(device_id="device-a", timestamp=T1, hash="abc"),
        last_modified=T1,
    )


class TestLocalRemoteFormat:
    def test_to_local_strips_metadata(self):
        doc = {
            "_id": "p1",
            "host": "a",
            "_syncedAt": "2024-01-01T00:00:00Z",
            "_deviceId": "device-a",
            "_syncMeta": {"type": "ssh-profile"},
        }
        assert to_local_format(doc) == {"id": "p1", "host": "a"}

    def test_to_remote_without_metadata(self):
        assert to_remote_format({"id": "p1", "host": "a"}) == {"_id": "p1", "host": "a"}

    def test_to_remote_with_metadata(self):
        doc = to_remote_format(
            {"id": "p1"}, device_id="device-a", synced_at=SYNCED, sync_meta={"x": 1}
        )
        assert doc["_id"] == "p1"
        assert doc["_deviceId"] == "device-a"
        assert doc["_syncedAt"] == SYNCED.isoformat()
        assert doc["_syncMeta"] == {"x": 1}
        assert "id" not in doc

    def test_round_trip_drops_only_metadata(self):
        doc = {
            "_id": "p1",
            "host": "a",
            "tags": ["prod"],
            "_syncedAt": "2024-01-01T00:00:00Z",
            "_deviceId": "device-a",
        }
        expected = {k: v for k, v in doc.items() if k not in SYNC_META_FIELDS}
        assert to_remote_format(to_local_format(doc)) == expected


class TestRecordDocuments:
    def test_record_to_document_metadata(self):
        doc = record_to_document(_record(), "device-b", SYNCED)

        assert doc["_id"] == "p1"
        assert doc["host"] == "a.example"
        assert doc["_deviceId"] == "device-b"
        meta = doc["_syncMeta"]
        assert meta["type"] == "ssh-profile"
        assert meta["deviceId"] == "device-b"
        assert meta["version"] == {
            "deviceId": "device-a",
            "timestamp": "2024-01-01T12:00:00Z",
            "hash": "abc",
        }

    def test_document_round_trip_keeps_version(self):
        record = _record()
        parsed = document_to_record(
            record_to_document(record, "device-a", SYNCED), "fallback"
        )
        assert parsed == record

    def test_document_without_sync_meta(self):
        doc = {
            "_id": "x",
            "cmd": "ls",
            "updated": "2024-01-05T00:00:00Z",
            "_deviceId": "device-c",
        }
        record = document_to_record(doc, "saved-command")

        assert record.type == "saved-command"
        assert record.data == {"id": "x", "cmd": "ls", "updated": "2024-01-05T00:00:00Z"}
        assert record.version.device_id == "device-c"
        assert record.last_modified == datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert record.version.hash == content_hash(record.data)

    def test_document_without_any_metadata(self):
        record = document_to_record({"_id": "x"}, "thing")
        assert record.version.device_id == "unknown"
        assert record.last_modified == EPOCH


class TestTombstoneDocuments:
    def test_round_trip(self):
        tombstone = TombstoneRecord(
            id="p1",
            deleted_at=T1,
            version=DataVersion(device_id="device-a", timestamp=T1),
            deleted_by="device-a",
            collection="ssh-profiles",
        )
        doc = tombstone_to_document(tombstone, "device-a", SYNCED)

        assert doc["_id"] == "p1"
        assert doc["deletedAt"] == "2024-01-01T12:00:00Z"
        assert doc["_syncedAt"] == SYNCED.isoformat()
        assert document_to_tombstone(doc) == tombstone

    def test_id_taken_from_document_key(self):
        doc = {
            "_id": "p9",
            "deletedAt": "2024-01-01T00:00:00Z",
            "version": {"deviceId": "d", "timestamp": "2024-01-01T00:00:00Z"},
        }
        assert document_to_tombstone(doc).id == "p9"

    def test_collection_names(self):
        assert tombstone_collection("ssh-profiles") == "ssh-profiles_tombstones"
        assert DEVICES_COLLECTION == "sync_devices"


class TestLastModified:
    def test_local_prefers_updated(self):
        item = {"created": "2024-01-01T00:00:00Z", "updated": "2024-02-01T00:00:00Z"}
        assert local_last_modified(item).month == 2

    def test_local_falls_back_to_created_then_epoch(self):
        assert local_last_modified({"created": "2024-01-01T00:00:00Z"}).year == 2024
        assert local_last_modified({"updated": "garbage"}) == EPOCH

    def test_remote_falls_back_to_synced_at(self):
        doc = {"_syncedAt": "2024-03-01T00:00:00+00:00"}
        assert remote_last_modified(doc) == datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestContentHash:
    def test_key_order_does_not_matter(self):
        assert content_hash({"a": 1, "b": 2}) == content_hash({"b": 2, "a": 1})

    def test_content_changes_hash(self):
        assert content_hash({"a": 1}) != content_hash({"a": 2})
