"""Persistence for the orchestrator-owned ``SyncConfig``.

The config lives in a single JSON file (``sync-config.json`` in the data
directory).  The bound ``SyncConfigStore.save`` method is what the engine
receives as its persistence callback, so every completed cycle lands the
advanced ``last_sync`` watermark on disk.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Absent means unconfigured** -- ``load()`` returns ``None`` rather than
  a default config when the file does not exist.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .config_schema import SyncConfig
from .core.files import write_json_atomic

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "sync-config.json"


class SyncConfigStore:
    """Load, save and delete the persisted sync configuration.

    Args:
        path: Path of the JSON file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def in_dir(cls, data_dir: Path) -> SyncConfigStore:
        return cls(data_dir / CONFIG_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SyncConfig | None:
        """Return the stored config, or ``None`` if nothing is stored."""
        if not self._path.exists():
            return None
        with open(self._path, encoding="utf-8") as fh:
            raw = json.load(fh)
        if not raw:
            return None
        return SyncConfig.model_validate(raw)

    def save(self, config: SyncConfig) -> None:
        """Persist *config* atomically."""
        write_json_atomic(self._path, config.model_dump(mode="json"))
        logger.debug("Saved sync config to %s", self._path)

    def delete(self) -> None:
        """Remove the stored config.  No-op if absent."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        logger.info("Deleted sync config %s", self._path)

    def is_configured(self) -> bool:
        """True when a stored config exists and is enabled."""
        config = self.load()
        return config is not None and config.enabled
