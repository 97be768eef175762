"""Folder-backed document store (``file:///path``).

Layout: ``<root>/<database>/<collection>/<quoted _id>.json``, one file per
document.  Because every document is its own file written atomically, a
folder shared between machines (network mount or file-sync service) works
as a remote for several devices.  Blocking file I/O runs in a thread.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import quote, unquote

from ..core import read_json, run_sync, write_json_atomic
from ..errors import SyncConnectionError
from .base import Document, Filter
from .filters import matches

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class DirectoryDocumentStore:
    """``DocumentStore`` keeping each document in its own JSON file.

    Args:
        root: Base directory of the store.
        database: Sub-directory used as the database.
    """

    def __init__(self, root: Path | str, database: str) -> None:
        self.root = Path(root).expanduser()
        self.database = database
        self._connected = False

    @property
    def base_path(self) -> Path:
        return self.root / self.database

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        try:
            await run_sync(self.base_path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise SyncConnectionError(
                f"Cannot open document store at {self.base_path}: {exc}"
            ) from exc
        self._connected = True
        logger.debug("Connected to %s", self.base_path)

    async def disconnect(self) -> None:
        self._connected = False

    async def test_connection(self) -> bool:
        return await run_sync(self.root.is_dir)

    # ------------------------------------------------------------------
    # File helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _dir(self, collection: str) -> Path:
        if not self._connected:
            raise SyncConnectionError("Not connected to the document store")
        return self.base_path / quote(collection, safe="")

    def _file(self, collection: str, doc_id: str) -> Path:
        return self._dir(collection) / f"{quote(str(doc_id), safe='')}{_SUFFIX}"

    def _load_all(self, collection: str) -> list[Document]:
        folder = self._dir(collection)
        if not folder.is_dir():
            return []
        docs: list[Document] = []
        for path in sorted(folder.glob(f"*{_SUFFIX}")):
            try:
                doc = read_json(path, None)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping unreadable document %s: %s", path, exc)
                continue
            if doc is None:
                continue
            doc.setdefault("_id", unquote(path.name[: -len(_SUFFIX)]))
            docs.append(doc)
        return docs

    def _delete_matching(self, collection: str, filter: Filter) -> int:
        removed = 0
        for doc in self._load_all(collection):
            if matches(doc, filter):
                self._file(collection, doc["_id"]).unlink(missing_ok=True)
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def find_all(self, collection: str) -> list[Document]:
        return await run_sync(self._load_all, collection)

    async def find(self, collection: str, filter: Filter) -> list[Document]:
        docs = await run_sync(self._load_all, collection)
        return [d for d in docs if matches(d, filter)]

    async def find_one(
        self, collection: str, filter: Filter
    ) -> Document | None:
        found = await self.find(collection, filter)
        return found[0] if found else None

    async def find_by_id(self, collection: str, id: str) -> Document | None:
        path = self._file(collection, id)
        return await run_sync(read_json, path, None)

    async def insert_one(self, collection: str, doc: Document) -> str:
        doc_id = str(doc["_id"])
        path = self._file(collection, doc_id)
        if await run_sync(path.exists):
            raise ValueError(
                f"Duplicate _id '{doc_id}' in collection {collection}"
            )
        await run_sync(write_json_atomic, path, doc)
        return doc_id

    async def replace_one(
        self, collection: str, id: str, doc: Document, upsert: bool = True
    ) -> bool:
        path = self._file(collection, id)
        if not upsert and not await run_sync(path.exists):
            return False
        await run_sync(write_json_atomic, path, {**doc, "_id": id})
        return True

    async def delete_many(self, collection: str, filter: Filter) -> int:
        return await run_sync(self._delete_matching, collection, filter)

    def __repr__(self) -> str:
        return f"DirectoryDocumentStore(root={str(self.root)!r}, database={self.database!r})"
