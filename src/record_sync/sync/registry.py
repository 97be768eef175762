"""Name -> adapter registry for the syncable collections."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from .adapters import RegisteredCollection

logger = logging.getLogger(__name__)


class StorageRegistry:
    """Ordered mapping of collection names to registered adapters.

    The adapter's capability tier is fixed when it is registered.
    Iteration follows registration order.
    """

    def __init__(self) -> None:
        self._collections: dict[str, RegisteredCollection] = {}

    def register(
        self, name: str, adapter: Any, record_type: str | None = None
    ) -> RegisteredCollection:
        """Register *adapter* under *name*, replacing any previous entry.

        Raises:
            TypeError: If *adapter* lacks ``read_data`` / ``write_data``.
        """
        entry = RegisteredCollection.build(name, adapter, record_type)
        self._collections[name] = entry
        logger.debug(
            "Registered collection %s (%s tier)", name, entry.tier.value
        )
        return entry

    def unregister(self, name: str) -> bool:
        """Remove *name*.  Returns ``True`` if it was registered."""
        return self._collections.pop(name, None) is not None

    def get(self, name: str) -> RegisteredCollection | None:
        return self._collections.get(name)

    def has(self, name: str) -> bool:
        return name in self._collections

    def get_all(self) -> list[RegisteredCollection]:
        return list(self._collections.values())

    def names(self) -> list[str]:
        return list(self._collections)

    def clear(self) -> None:
        self._collections.clear()

    def __iter__(self) -> Iterator[RegisteredCollection]:
        return iter(self.get_all())

    def __len__(self) -> int:
        return len(self._collections)

    def __contains__(self, name: object) -> bool:
        return name in self._collections
