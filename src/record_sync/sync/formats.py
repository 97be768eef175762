"""Conversion between local records and remote documents.

Local records are plain dicts keyed by ``id``.  Remote documents are keyed
by ``_id`` and may carry three sync-metadata fields written by the engine:

- ``_syncedAt``: when the document was last written by a sync cycle.
- ``_deviceId``: device that wrote it.
- ``_syncMeta``: ``{"version": ..., "type": ..., "deviceId": ...,
  "lastModified": ...}``.

``to_local_format`` strips all three; ``to_remote_format`` adds them only
when asked to.  For any remote document ``doc`` without an ``id`` field,
``to_remote_format(to_local_format(doc))`` equals ``doc`` minus the
metadata fields.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any

from ..core.clock import EPOCH, parse_timestamp
from .models import DataVersion, SyncRecord, TombstoneRecord

SYNC_META_FIELDS = ("_syncedAt", "_deviceId", "_syncMeta")
TOMBSTONE_SUFFIX = "_tombstones"
DEVICES_COLLECTION = "sync_devices"

# Local fields that count as a record's last-modified time, best first.
_LOCAL_TIME_FIELDS = ("updated", "created")


def tombstone_collection(collection: str) -> str:
    """Name of the sibling collection holding *collection*'s tombstones."""
    return f"{collection}{TOMBSTONE_SUFFIX}"


def content_hash(data: dict[str, Any]) -> str:
    """SHA-256 of *data* serialised as key-sorted JSON."""
    payload = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def to_local_format(remote_doc: dict[str, Any]) -> dict[str, Any]:
    """Strip sync metadata and move ``_id`` to ``id``."""
    local = {
        key: value
        for key, value in remote_doc.items()
        if key not in ("_id", "id") and key not in SYNC_META_FIELDS
    }
    return {"id": remote_doc["_id"], **local}


def to_remote_format(
    local_item: dict[str, Any],
    *,
    device_id: str | None = None,
    synced_at: datetime | None = None,
    sync_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Key *local_item* by ``_id`` and optionally attach sync metadata."""
    doc: dict[str, Any] = {"_id": local_item["id"]}
    doc.update({k: v for k, v in local_item.items() if k != "id"})
    if synced_at is not None:
        doc["_syncedAt"] = synced_at.isoformat()
    if device_id is not None:
        doc["_deviceId"] = device_id
    if sync_meta is not None:
        doc["_syncMeta"] = sync_meta
    return doc


def build_sync_meta(
    record: SyncRecord, device_id: str
) -> dict[str, Any]:
    """The ``_syncMeta`` block for *record* written by *device_id*."""
    return {
        "version": record.version.model_dump(mode="json", by_alias=True),
        "type": record.type,
        "deviceId": device_id,
        "lastModified": record.last_modified.isoformat(),
    }


def record_to_document(
    record: SyncRecord, device_id: str, synced_at: datetime
) -> dict[str, Any]:
    """Remote document for *record*, with full sync metadata."""
    return to_remote_format(
        {**record.data, "id": record.id},
        device_id=device_id,
        synced_at=synced_at,
        sync_meta=build_sync_meta(record, device_id),
    )


def local_last_modified(item: dict[str, Any]) -> datetime:
    """Best-known write time of a local item (``updated``, then ``created``)."""
    for field in _LOCAL_TIME_FIELDS:
        parsed = parse_timestamp(item.get(field))
        if parsed is not None:
            return parsed
    return EPOCH


def remote_last_modified(doc: dict[str, Any]) -> datetime:
    """Best-known write time of a remote document.

    Prefers the payload's own ``updated``/``created`` fields and falls back
    to ``_syncedAt``.
    """
    for field in (*_LOCAL_TIME_FIELDS, "_syncedAt"):
        parsed = parse_timestamp(doc.get(field))
        if parsed is not None:
            return parsed
    return EPOCH


def document_to_record(
    doc: dict[str, Any], record_type: str
) -> SyncRecord:
    """Build a ``SyncRecord`` from a remote document.

    Documents written without ``_syncMeta`` (by the basic path or an older
    client) get a version synthesised from ``_deviceId`` and their
    last-modified time.
    """
    data = to_local_format(doc)
    meta = doc.get("_syncMeta")
    if isinstance(meta, dict) and isinstance(meta.get("version"), dict):
        version = DataVersion.model_validate(meta["version"])
        last_modified = parse_timestamp(meta.get("lastModified")) or version.timestamp
        rtype = meta.get("type") or record_type
    else:
        last_modified = remote_last_modified(doc)
        version = DataVersion(
            device_id=doc.get("_deviceId") or "unknown",
            timestamp=last_modified,
            hash=content_hash(data),
        )
        rtype = record_type
    return SyncRecord(
        id=str(doc["_id"]),
        type=rtype,
        data=data,
        version=version,
        last_modified=last_modified,
    )


def tombstone_to_document(
    tombstone: TombstoneRecord, device_id: str, synced_at: datetime
) -> dict[str, Any]:
    """Remote document for a tombstone in ``<collection>_tombstones``."""
    body = tombstone.model_dump(mode="json", by_alias=True)
    return {
        "_id": tombstone.id,
        **body,
        "_syncedAt": synced_at.isoformat(),
        "_deviceId": device_id,
    }


def document_to_tombstone(doc: dict[str, Any]) -> TombstoneRecord:
    body = {
        k: v
        for k, v in doc.items()
        if k != "_id" and k not in SYNC_META_FIELDS
    }
    body.setdefault("id", doc["_id"])
    return TombstoneRecord.model_validate(body)
