"""Local storage adapter contract.

Two capability tiers:

- ``BasicAdapter``: full-collection ``read_data`` / ``write_data`` only.
  Reconciled by a full bidirectional diff with no delete propagation.
- ``VersionedAdapter``: adds ``get_modified_since``, ``get_tombstones``,
  ``generate_hash`` and ``get_sync_metadata``.  Reconciled incrementally
  with tombstone handling.

Two further operations are optional on versioned adapters:
``save_data_with_version`` (store a record with the version it arrived
with) and ``cleanup`` (prune old tombstones).

The tier is decided once, when a collection is registered, by checking
which operations the adapter exposes -- never by the adapter's class.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from .models import SyncMetadata, SyncRecord, TombstoneRecord

VERSIONED_OPERATIONS = (
    "get_modified_since",
    "get_tombstones",
    "generate_hash",
    "get_sync_metadata",
)


@runtime_checkable
class BasicAdapter(Protocol):
    """Required operations of every syncable storage."""

    async def read_data(self) -> list[dict[str, Any]]:
        """Return every record as a dict carrying an ``id`` key."""
        ...  # pragma: no cover

    async def write_data(self, records: list[dict[str, Any]]) -> None:
        """Replace the stored collection with *records*."""
        ...  # pragma: no cover


@runtime_checkable
class VersionedAdapter(BasicAdapter, Protocol):
    """Storage that tracks per-record versions and deletions."""

    async def get_modified_since(
        self, since: datetime | None
    ) -> list[SyncRecord]:
        """Records whose version is newer than *since* (all when ``None``)."""
        ...  # pragma: no cover

    async def get_tombstones(self) -> list[TombstoneRecord]:
        ...  # pragma: no cover

    def generate_hash(self, data: dict[str, Any]) -> str:
        ...  # pragma: no cover

    async def get_sync_metadata(self) -> list[SyncMetadata]:
        ...  # pragma: no cover


class AdapterTier(str, Enum):
    """Capability tier of a registered collection."""

    BASIC = "basic"
    VERSIONED = "versioned"


def _has_operation(adapter: object, name: str) -> bool:
    return callable(getattr(adapter, name, None))


def detect_tier(adapter: object) -> AdapterTier:
    """Classify *adapter* by the operations it exposes.

    Raises:
        TypeError: If the adapter lacks the basic ``read_data`` /
            ``write_data`` pair.
    """
    if not (
        _has_operation(adapter, "read_data")
        and _has_operation(adapter, "write_data")
    ):
        raise TypeError(
            f"{type(adapter).__name__} is not a storage adapter: "
            "read_data and write_data are required"
        )
    if all(_has_operation(adapter, op) for op in VERSIONED_OPERATIONS):
        return AdapterTier.VERSIONED
    return AdapterTier.BASIC


@dataclass(frozen=True)
class RegisteredCollection:
    """A collection as the engine sees it.

    Attributes:
        name: Registry name, also the remote collection name.
        adapter: The storage adapter.
        tier: Capability tier, fixed at registration.
        record_type: Tag stored in ``SyncRecord.type``.
        versioned_writes: Adapter has ``save_data_with_version``.
        supports_cleanup: Adapter has ``cleanup``.
    """

    name: str
    adapter: Any
    tier: AdapterTier
    record_type: str
    versioned_writes: bool = False
    supports_cleanup: bool = False

    @classmethod
    def build(
        cls, name: str, adapter: Any, record_type: str | None = None
    ) -> RegisteredCollection:
        tier = detect_tier(adapter)
        versioned = tier is AdapterTier.VERSIONED
        return cls(
            name=name,
            adapter=adapter,
            tier=tier,
            record_type=record_type or default_record_type(name),
            versioned_writes=versioned
            and _has_operation(adapter, "save_data_with_version"),
            supports_cleanup=versioned and _has_operation(adapter, "cleanup"),
        )

    @property
    def is_versioned(self) -> bool:
        return self.tier is AdapterTier.VERSIONED

    async def save_record(self, record: SyncRecord) -> None:
        """Persist one record, keeping its version where the adapter can."""
        if self.versioned_writes:
            await self.adapter.save_data_with_version(
                record.id, record.data, record.version
            )
            return
        records = await self.adapter.read_data()
        replaced = [r for r in records if r.get("id") != record.id]
        replaced.append({**record.data, "id": record.id})
        await self.adapter.write_data(replaced)


def default_record_type(name: str) -> str:
    """``ssh-profiles`` -> ``ssh-profile``."""
    return name[:-1] if name.endswith("s") else name
