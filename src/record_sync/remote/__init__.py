"""Remote document stores and the factory that picks one from a URI.

Supported schemes:

- ``memory://<name>``: ``MemoryDocumentStore``, shared per process.
- ``file:///path``: ``DirectoryDocumentStore``, one JSON file per document.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

from ..errors import SyncConfigError
from .base import Document, DocumentStore, Filter
from .directory import DirectoryDocumentStore
from .memory import MemoryDocumentStore

if TYPE_CHECKING:
    from ..config_schema import SyncConfig

SUPPORTED_SCHEMES = ("memory", "file")


def create_store(config: SyncConfig) -> DocumentStore:
    """Build the document store named by ``config.store_uri``.

    Raises:
        SyncConfigError: Missing URI or database, or unsupported scheme.
    """
    if not config.store_uri or not config.database_name:
        raise SyncConfigError("Store URI and database name are required")
    parsed = urlparse(config.store_uri)
    if parsed.scheme == "memory":
        name = parsed.netloc or parsed.path.strip("/")
        if not name:
            raise SyncConfigError(
                f"memory store URI needs a name: {config.store_uri}"
            )
        return MemoryDocumentStore(name, config.database_name)
    if parsed.scheme == "file":
        path = unquote(parsed.path)
        if parsed.netloc and parsed.netloc != "localhost":
            path = f"{parsed.netloc}{path}"
        if not path:
            raise SyncConfigError(
                f"file store URI needs a path: {config.store_uri}"
            )
        return DirectoryDocumentStore(path, config.database_name)
    raise SyncConfigError(
        f"Unsupported store URI scheme '{parsed.scheme}'. "
        f"Supported: {', '.join(SUPPORTED_SCHEMES)}"
    )


__all__ = [
    "DirectoryDocumentStore",
    "Document",
    "DocumentStore",
    "Filter",
    "MemoryDocumentStore",
    "SUPPORTED_SCHEMES",
    "create_store",
]
