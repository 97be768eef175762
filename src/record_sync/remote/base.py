"""Remote document store contract.

Documents are JSON-compatible dicts keyed by ``_id``.  Implementations
raise ``SyncConnectionError`` when the store is unreachable or the client
is not connected.  Returned documents are copies; mutating them never
changes the store.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

Document = dict[str, Any]
Filter = dict[str, Any]


@runtime_checkable
class DocumentStore(Protocol):
    async def connect(self) -> None:
        ...  # pragma: no cover

    async def disconnect(self) -> None:
        ...  # pragma: no cover

    async def test_connection(self) -> bool:
        """True if the store answers.  Never raises."""
        ...  # pragma: no cover

    async def find_all(self, collection: str) -> list[Document]:
        ...  # pragma: no cover

    async def find(self, collection: str, filter: Filter) -> list[Document]:
        ...  # pragma: no cover

    async def find_one(
        self, collection: str, filter: Filter
    ) -> Document | None:
        ...  # pragma: no cover

    async def find_by_id(self, collection: str, id: str) -> Document | None:
        ...  # pragma: no cover

    async def insert_one(self, collection: str, doc: Document) -> str:
        """Insert *doc* and return its ``_id``.

        Raises:
            ValueError: If a document with the same ``_id`` exists.
        """
        ...  # pragma: no cover

    async def replace_one(
        self, collection: str, id: str, doc: Document, upsert: bool = True
    ) -> bool:
        """Replace the document with ``_id == id``.

        Returns ``True`` if a document was replaced or inserted.
        """
        ...  # pragma: no cover

    async def delete_many(self, collection: str, filter: Filter) -> int:
        """Delete every matching document and return how many went."""
        ...  # pragma: no cover
