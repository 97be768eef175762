"""Sync configuration resolution.

Builds the effective ``SyncConfig`` from CLI arguments, environment
variables, .env files, and YAML config values.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    RECORD_SYNC_STORE_URI: Remote store address (memory://name, file:///path)
    RECORD_SYNC_DATABASE: Database / namespace name
    RECORD_SYNC_ENABLED: Enable sync (true/false)
    RECORD_SYNC_AUTO_SYNC: Enable periodic sync (true/false)
    RECORD_SYNC_INTERVAL: Seconds between automatic cycles
    RECORD_SYNC_STRATEGY: Conflict resolution strategy
    RECORD_SYNC_RETAIN_TOMBSTONE_DAYS: Tombstone retention in days
"""

import logging
import os
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from .config_schema import SyncConfig
from .errors import SyncConfigError
from .remote import SUPPORTED_SCHEMES
from .sync.models import ConflictStrategy

logger = logging.getLogger(__name__)


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, minimum: int) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise SyncConfigError(
            f"Invalid {key} '{raw}': must be an integer >= {minimum}"
        ) from None
    if value < minimum:
        raise SyncConfigError(
            f"Invalid {key} '{raw}': must be an integer >= {minimum}"
        )
    return value


def validate_config(config: SyncConfig) -> None:
    """Check a config for values the engine cannot work with.

    A disabled config only needs a well-formed URI if one is given.

    Raises:
        SyncConfigError: If the store URI or database name is missing for
            an enabled config, or the URI scheme is unsupported.
    """
    if config.enabled:
        if not config.store_uri:
            raise SyncConfigError(
                "Store URI not set. Set RECORD_SYNC_STORE_URI, pass "
                "--store-uri, or add 'sync.store_uri' to config.yml."
            )
        if not config.database_name:
            raise SyncConfigError(
                "Database name not set. Set RECORD_SYNC_DATABASE, pass "
                "--database, or add 'sync.database_name' to config.yml."
            )

    if config.store_uri:
        scheme = urlparse(config.store_uri).scheme
        if scheme not in SUPPORTED_SCHEMES:
            raise SyncConfigError(
                f"Invalid store URI '{config.store_uri}': scheme must be one "
                f"of {', '.join(SUPPORTED_SCHEMES)}"
            )

    if config.auto_sync and not config.enabled:
        logger.warning("auto_sync is set but sync is disabled; ignoring")


def load_config(
    store_uri: str | None = None,
    database_name: str | None = None,
    enabled: bool | None = None,
    strategy: str | None = None,
    yaml_fallbacks: SyncConfig | None = None,
) -> SyncConfig:
    """Resolve the effective sync configuration.

    The caller is responsible for calling ``load_dotenv()`` first so that
    .env values are visible through ``os.getenv()``.

    Args:
        store_uri: CLI override for the store URI.
        database_name: CLI override for the database name.
        enabled: CLI override for the enabled flag.
        strategy: CLI override for the conflict strategy.
        yaml_fallbacks: ``sync`` section of the YAML config.

    Returns:
        Validated SyncConfig.

    Raises:
        SyncConfigError: If any source holds an invalid value.
    """
    base = yaml_fallbacks or SyncConfig()
    updates: dict[str, Any] = {}

    uri = store_uri or os.getenv("RECORD_SYNC_STORE_URI")
    if uri:
        updates["store_uri"] = uri.strip()

    db = database_name or os.getenv("RECORD_SYNC_DATABASE")
    if db:
        updates["database_name"] = db.strip()

    if enabled is not None:
        updates["enabled"] = enabled
    else:
        env_enabled = _get_bool_env("RECORD_SYNC_ENABLED")
        if env_enabled is not None:
            updates["enabled"] = env_enabled

    env_auto = _get_bool_env("RECORD_SYNC_AUTO_SYNC")
    if env_auto is not None:
        updates["auto_sync"] = env_auto

    interval = _get_int_env("RECORD_SYNC_INTERVAL", 1)
    if interval is not None:
        updates["sync_interval"] = interval

    retain = _get_int_env("RECORD_SYNC_RETAIN_TOMBSTONE_DAYS", 0)
    if retain is not None:
        updates["retain_tombstone_days"] = retain

    strategy_name = strategy or os.getenv("RECORD_SYNC_STRATEGY")
    if strategy_name:
        try:
            updates["conflict_resolution_strategy"] = ConflictStrategy(
                strategy_name.strip()
            )
        except ValueError:
            valid = ", ".join(s.value for s in ConflictStrategy)
            raise SyncConfigError(
                f"Unknown conflict strategy '{strategy_name}'. Valid strategies: {valid}"
            ) from None

    try:
        config = SyncConfig.model_validate(
            {**base.model_dump(), **updates}
        )
    except ValidationError as e:
        raise SyncConfigError(f"Invalid sync configuration: {e}") from e

    validate_config(config)
    return config
