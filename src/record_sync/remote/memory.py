"""In-process document store (``memory://<name>``).

Every client that opens the same *name* shares one set of databases, so
several engines in one process behave like devices talking to the same
remote.  Used by the test suite and for local experiments.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from ..errors import SyncConnectionError
from .base import Document, Filter
from .filters import matches

logger = logging.getLogger(__name__)


class _MemoryServer:
    """Shared state behind one ``memory://`` name."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.databases: dict[str, dict[str, dict[str, Document]]] = {}
        self.available = True

    def collection(self, database: str, name: str) -> dict[str, Document]:
        return self.databases.setdefault(database, {}).setdefault(name, {})


_SERVERS: dict[str, _MemoryServer] = {}
_SERVERS_LOCK = threading.Lock()


def _server(name: str) -> _MemoryServer:
    with _SERVERS_LOCK:
        if name not in _SERVERS:
            _SERVERS[name] = _MemoryServer()
        return _SERVERS[name]


class MemoryDocumentStore:
    """``DocumentStore`` backed by a process-wide named server.

    Args:
        name: Server name; clients with the same name share data.
        database: Database inside the server.
    """

    def __init__(self, name: str, database: str) -> None:
        self.name = name
        self.database = database
        self._server = _server(name)
        self._connected = False

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    @classmethod
    def reset(cls, name: str | None = None) -> None:
        """Drop the shared state of *name* (all servers when ``None``)."""
        with _SERVERS_LOCK:
            if name is None:
                _SERVERS.clear()
            else:
                _SERVERS.pop(name, None)

    def set_available(self, available: bool) -> None:
        """Simulate the server going away (or coming back)."""
        self._server.available = available

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._check_available()
        self._connected = True
        logger.debug("Connected to memory://%s/%s", self.name, self.database)

    async def disconnect(self) -> None:
        self._connected = False

    async def test_connection(self) -> bool:
        return self._server.available

    def _check_available(self) -> None:
        if not self._server.available:
            raise SyncConnectionError(
                f"memory://{self.name} is not reachable"
            )

    def _collection(self, collection: str) -> dict[str, Document]:
        if not self._connected:
            raise SyncConnectionError("Not connected to the document store")
        self._check_available()
        return self._server.collection(self.database, collection)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_all(self, collection: str) -> list[Document]:
        return await self.find(collection, {})

    async def find(self, collection: str, filter: Filter) -> list[Document]:
        with self._server.lock:
            docs = self._collection(collection).values()
            return [copy.deepcopy(d) for d in docs if matches(d, filter)]

    async def find_one(
        self, collection: str, filter: Filter
    ) -> Document | None:
        found = await self.find(collection, filter)
        return found[0] if found else None

    async def find_by_id(self, collection: str, id: str) -> Document | None:
        with self._server.lock:
            doc = self._collection(collection).get(id)
            return copy.deepcopy(doc) if doc is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_one(self, collection: str, doc: Document) -> str:
        doc_id = str(doc["_id"])
        with self._server.lock:
            docs = self._collection(collection)
            if doc_id in docs:
                raise ValueError(
                    f"Duplicate _id '{doc_id}' in collection {collection}"
                )
            docs[doc_id] = copy.deepcopy(doc)
        return doc_id

    async def replace_one(
        self, collection: str, id: str, doc: Document, upsert: bool = True
    ) -> bool:
        with self._server.lock:
            docs = self._collection(collection)
            if id not in docs and not upsert:
                return False
            docs[id] = {**copy.deepcopy(doc), "_id": id}
        return True

    async def delete_many(self, collection: str, filter: Filter) -> int:
        with self._server.lock:
            docs = self._collection(collection)
            doomed = [k for k, d in docs.items() if matches(d, filter)]
            for key in doomed:
                del docs[key]
        return len(doomed)

    def __repr__(self) -> str:
        return f"MemoryDocumentStore(name={self.name!r}, database={self.database!r})"

    def dump(self) -> dict[str, Any]:
        """Deep copy of this client's database, for debugging and tests."""
        with self._server.lock:
            return copy.deepcopy(self._server.databases.get(self.database, {}))
