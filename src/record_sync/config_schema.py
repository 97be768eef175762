"""Unified configuration schema for record-sync.

Pydantic models for every config section: the sync settings themselves,
local storage location, and logging.

Usage:
    from record_sync.config_loader import load_hierarchical_config
    from record_sync.config_schema import build_config

    unified = build_config(load_hierarchical_config())
    unified.sync.sync_interval
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from .sync.models import ConflictStrategy, UtcDatetime

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = [
    "ssh-profiles",
    "ssh-groups",
    "saved-commands",
    "ssh-tunnels",
]


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncConfig(BaseModel):
    """Sync settings.

    Owned by the orchestrator.  The engine reads one snapshot per cycle
    and hands back an updated copy (new ``last_sync``) through the
    persistence callback.  All fields have defaults so a bare
    ``SyncConfig()`` is a valid, disabled configuration.
    """

    store_uri: str | None = Field(
        default=None,
        description="Remote document store address (memory://name or file:///path)",
    )
    database_name: str | None = Field(
        default=None, description="Database / namespace inside the store"
    )
    enabled: bool = Field(default=False, description="Sync on/off")
    auto_sync: bool = Field(
        default=False, description="Run sync periodically"
    )
    sync_interval: int = Field(
        default=300,
        ge=1,
        description="Seconds between automatic sync cycles",
    )
    conflict_resolution_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.LATEST_WINS,
        description="How records changed on both sides are resolved",
    )
    retain_tombstone_days: int | None = Field(
        default=30,
        ge=0,
        description="Prune tombstones older than this many days (None disables)",
    )
    last_sync: UtcDatetime | None = Field(
        default=None,
        description="Watermark of the last completed cycle",
    )
    device_name: str | None = Field(
        default=None, description="Display name for this device"
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds allowed for connecting to the store",
    )
    operation_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for any single remote call",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local record storage settings."""

    data_dir: str = Field(
        default="~/.local/share/record-sync",
        description="Directory holding the local JSON record files",
    )
    collections: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COLLECTIONS),
        description="Collections to register for sync",
    )

    model_config = {"frozen": True}

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration.  ``UnifiedConfig()`` is always valid."""

    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section holds invalid values.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
