"""File-backed local record storage.

``JsonRecordStorage`` keeps one collection in three JSON files inside
``data_dir``:

- ``<name>.json`` -- the records, a list of dicts with an ``id`` key.
- ``<name>.metadata.json`` -- per-id sync metadata (version, last write).
- ``<name>.tombstones.json`` -- per-id deletion markers.

It implements the versioned adapter tier: ``write_data`` stamps a new
version on every record whose content changed, and
``save_data_with_version`` stores a version received from another device
untouched.  ``BasicJsonStorage`` keeps only the records file and exposes
the basic tier.

File I/O runs in a worker thread; every file is replaced atomically.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from ..core import read_json, run_sync, utcnow, write_json_atomic
from ..sync.adapters import default_record_type
from ..sync.formats import content_hash, local_last_modified
from ..sync.models import DataVersion, SyncMetadata, SyncRecord, TombstoneRecord

logger = logging.getLogger(__name__)


class BasicJsonStorage:
    """Records file only: ``read_data`` / ``write_data``.

    Args:
        data_dir: Directory holding the collection files.
        name: Collection name, used as the file stem.
    """

    def __init__(self, data_dir: Path | str, name: str) -> None:
        self.data_dir = Path(data_dir).expanduser()
        self.name = name
        self._lock = threading.Lock()

    @property
    def records_path(self) -> Path:
        return self.data_dir / f"{self.name}.json"

    def _load_records(self) -> list[dict[str, Any]]:
        return list(read_json(self.records_path, []))

    def _save_records(self, records: list[dict[str, Any]]) -> None:
        write_json_atomic(self.records_path, records)

    def _read(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._load_records()

    def _write(self, records: list[dict[str, Any]]) -> None:
        with self._lock:
            self._save_records(records)

    async def read_data(self) -> list[dict[str, Any]]:
        return await run_sync(self._read)

    async def write_data(self, records: list[dict[str, Any]]) -> None:
        await run_sync(self._write, [dict(r) for r in records])


class JsonRecordStorage(BasicJsonStorage):
    """Versioned JSON storage for one collection.

    Args:
        data_dir: Directory holding the collection files.
        name: Collection name, used as the file stem.
        record_type: Tag for ``SyncRecord.type`` (defaults from *name*).
        device_id: Writer id stamped on local changes.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        data_dir: Path | str,
        name: str,
        record_type: str | None = None,
        device_id: str = "local",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(data_dir, name)
        self.record_type = record_type or default_record_type(name)
        self.device_id = device_id
        self._clock = clock

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / f"{self.name}.metadata.json"

    @property
    def tombstones_path(self) -> Path:
        return self.data_dir / f"{self.name}.tombstones.json"

    # ------------------------------------------------------------------
    # File helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _load_metadata(self) -> dict[str, SyncMetadata]:
        raw = read_json(self.metadata_path, {})
        return {k: SyncMetadata.model_validate(v) for k, v in raw.items()}

    def _save_metadata(self, metadata: dict[str, SyncMetadata]) -> None:
        write_json_atomic(
            self.metadata_path,
            {k: m.model_dump(mode="json", by_alias=True) for k, m in metadata.items()},
        )

    def _load_tombstones(self) -> dict[str, TombstoneRecord]:
        raw = read_json(self.tombstones_path, {})
        return {k: TombstoneRecord.model_validate(v) for k, v in raw.items()}

    def _save_tombstones(self, tombstones: dict[str, TombstoneRecord]) -> None:
        write_json_atomic(
            self.tombstones_path,
            {k: t.model_dump(mode="json", by_alias=True) for k, t in tombstones.items()},
        )

    def _version_of(
        self, item: dict[str, Any], metadata: dict[str, SyncMetadata]
    ) -> tuple[DataVersion, datetime]:
        meta = metadata.get(str(item.get("id")))
        if meta is not None:
            return meta.version, meta.last_modified
        # Records written outside the storage have no metadata yet.
        stamp = local_last_modified(item)
        return (
            DataVersion(
                device_id=self.device_id,
                timestamp=stamp,
                hash=self.generate_hash(item),
            ),
            stamp,
        )

    # ------------------------------------------------------------------
    # Thread-side operations
    # ------------------------------------------------------------------

    def _write(self, records: list[dict[str, Any]]) -> None:
        with self._lock:
            metadata = self._load_metadata()
            now = self._clock()
            updated: dict[str, SyncMetadata] = {}
            changed = 0
            for record in records:
                record_id = str(record["id"])
                digest = self.generate_hash(record)
                previous = metadata.get(record_id)
                if previous is not None and previous.version.hash == digest:
                    updated[record_id] = previous
                    continue
                updated[record_id] = SyncMetadata(
                    id=record_id,
                    version=DataVersion(
                        device_id=self.device_id, timestamp=now, hash=digest
                    ),
                    last_modified=now,
                )
                changed += 1
            self._save_records(records)
            self._save_metadata(updated)
        logger.debug("%s: wrote %d records (%d changed)", self.name, len(records), changed)

    def _modified_since(self, since: datetime | None) -> list[SyncRecord]:
        with self._lock:
            records = self._load_records()
            metadata = self._load_metadata()
        changes: list[SyncRecord] = []
        for item in records:
            version, last_modified = self._version_of(item, metadata)
            if since is not None and version.timestamp <= since:
                continue
            changes.append(
                SyncRecord(
                    id=str(item["id"]),
                    type=self.record_type,
                    data=item,
                    version=version,
                    last_modified=last_modified,
                )
            )
        return changes

    def _save_with_version(
        self, record_id: str, data: dict[str, Any], version: DataVersion
    ) -> None:
        with self._lock:
            records = [r for r in self._load_records() if str(r.get("id")) != record_id]
            records.append({**data, "id": record_id})
            metadata = self._load_metadata()
            metadata[record_id] = SyncMetadata(
                id=record_id, version=version, last_modified=version.timestamp
            )
            tombstones = self._load_tombstones()
            stale = tombstones.get(record_id)
            if stale is not None and not stale.supersedes(version):
                del tombstones[record_id]
                self._save_tombstones(tombstones)
            self._save_records(records)
            self._save_metadata(metadata)

    def _mark_deleted(
        self, record_id: str, deleted_by: str | None
    ) -> TombstoneRecord:
        with self._lock:
            records = self._load_records()
            removed = [r for r in records if str(r.get("id")) == record_id]
            metadata = self._load_metadata()
            metadata.pop(record_id, None)
            now = self._clock()
            writer = deleted_by or self.device_id
            tombstone = TombstoneRecord(
                id=record_id,
                deleted_at=now,
                version=DataVersion(
                    device_id=writer,
                    timestamp=now,
                    hash=self.generate_hash(removed[0]) if removed else "",
                ),
                deleted_by=writer,
                collection=self.name,
            )
            tombstones = self._load_tombstones()
            tombstones[record_id] = tombstone
            self._save_records([r for r in records if str(r.get("id")) != record_id])
            self._save_metadata(metadata)
            self._save_tombstones(tombstones)
        return tombstone

    def _remove_tombstone(self, record_id: str) -> bool:
        with self._lock:
            tombstones = self._load_tombstones()
            if tombstones.pop(record_id, None) is None:
                return False
            self._save_tombstones(tombstones)
        return True

    def _cleanup(self, retain_days: int) -> int:
        cutoff = self._clock() - timedelta(days=retain_days)
        with self._lock:
            tombstones = self._load_tombstones()
            kept = {k: t for k, t in tombstones.items() if not t.deleted_at < cutoff}
            removed = len(tombstones) - len(kept)
            if removed:
                self._save_tombstones(kept)
        return removed

    # ------------------------------------------------------------------
    # Versioned adapter operations
    # ------------------------------------------------------------------

    def generate_hash(self, data: dict[str, Any]) -> str:
        return content_hash(data)

    async def get_sync_metadata(self) -> list[SyncMetadata]:
        def load() -> list[SyncMetadata]:
            with self._lock:
                return list(self._load_metadata().values())

        return await run_sync(load)

    async def get_item_metadata(self, record_id: str) -> SyncMetadata | None:
        def load() -> SyncMetadata | None:
            with self._lock:
                return self._load_metadata().get(record_id)

        return await run_sync(load)

    async def get_modified_since(
        self, since: datetime | None
    ) -> list[SyncRecord]:
        """Records whose version is newer than *since* (all when ``None``)."""
        return await run_sync(self._modified_since, since)

    async def get_tombstones(self) -> list[TombstoneRecord]:
        def load() -> list[TombstoneRecord]:
            with self._lock:
                return list(self._load_tombstones().values())

        return await run_sync(load)

    async def save_data_with_version(
        self, record_id: str, data: dict[str, Any], version: DataVersion
    ) -> None:
        """Upsert one record keeping *version* exactly as given.

        A local tombstone older than *version* is dropped, since the id was
        recreated elsewhere after the delete.
        """
        await run_sync(self._save_with_version, record_id, dict(data), version)

    async def mark_as_deleted(
        self, record_id: str, deleted_by: str | None = None
    ) -> TombstoneRecord:
        """Delete *record_id* and record a tombstone for it."""
        tombstone = await run_sync(self._mark_deleted, record_id, deleted_by)
        logger.debug("%s: deleted %s", self.name, record_id)
        return tombstone

    async def remove_tombstone(self, record_id: str) -> bool:
        return await run_sync(self._remove_tombstone, record_id)

    async def cleanup(self, retain_days: int) -> int:
        """Remove tombstones deleted before now minus *retain_days*.

        Returns:
            Number of tombstones removed.
        """
        return await run_sync(self._cleanup, retain_days)
