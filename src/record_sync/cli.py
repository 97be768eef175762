"""``record-sync`` command line entry point."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from . import __version__
from .config import load_config
from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import SyncConfigError
from .logger import setup_logging
from .manager import SyncManager
from .sync.reporter import (
    format_devices,
    format_status,
    format_sync_result,
    result_to_json,
    status_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="record-sync",
        description="Record Sync - keep record collections in sync across devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First-time setup against a shared folder
  record-sync setup --store-uri file:///mnt/shared/record-sync --database me

  # Run one sync cycle now
  record-sync sync

  # Show status as JSON
  record-sync --json status

  # Keep syncing every sync_interval seconds until interrupted
  record-sync run --log-file /var/log/record-sync.log

Configuration is read from .env, RECORD_SYNC_* environment variables and
.record_sync/config.yml.  The active sync settings are stored in
<data_dir>/sync-config.json once setup has run.
        """,
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        help="Extra YAML config file, applied after discovered config files",
    )
    parser.add_argument(
        "--data-dir",
        help="Directory holding local records and sync-config.json "
        "(overrides storage.data_dir)",
    )
    parser.add_argument("--log-file", help="Log file path")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--json", action="store_true", help="Print machine-readable JSON"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"record-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show sync status")
    sub.add_parser("sync", help="Run one sync cycle now")

    for name, help_text in (
        ("setup", "Configure sync, upload existing data"),
        ("enable", "Enable sync with the stored or given settings"),
        ("test", "Check that the document store is reachable"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--store-uri", help="memory://name or file:///path")
        cmd.add_argument("--database", help="Database / namespace name")
        if name != "test":
            cmd.add_argument(
                "--strategy",
                help="Conflict strategy: latest-wins, local-wins, "
                "remote-wins, manual, version-wins",
            )

    sub.add_parser("disable", help="Disable sync, keep settings")
    sub.add_parser("migrate", help="Upload local data to empty remote collections")
    sub.add_parser("devices", help="List devices registered for sync")
    sub.add_parser("run", help="Sync periodically until interrupted")
    return parser


def _load_unified(config_file: Path | None) -> UnifiedConfig:
    try:
        return build_config(load_hierarchical_config(config_file))
    except ValidationError as e:
        raise SyncConfigError(f"Invalid config file: {e}") from e


def _emit(args: argparse.Namespace, text: str, payload: object) -> None:
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_status(manager: SyncManager, args: argparse.Namespace) -> int:
    await manager.initialize()
    status = manager.get_sync_status()
    payload = {"enabled": manager.is_sync_enabled(), **status_to_json(status)}
    _emit(args, format_status(status, enabled=manager.is_sync_enabled()), payload)
    return EXIT_OK


async def _cmd_sync(manager: SyncManager, args: argparse.Namespace) -> int:
    await manager.initialize()
    result = await manager.force_sync_now()
    _emit(args, format_sync_result(result), result_to_json(result))
    return EXIT_OK if result.success and not result.errors else EXIT_FAILED


async def _cmd_migrate(manager: SyncManager, args: argparse.Namespace) -> int:
    await manager.initialize()
    result = await manager.migrate_existing_data()
    _emit(args, format_sync_result(result), result_to_json(result))
    return EXIT_OK if result.success and not result.errors else EXIT_FAILED


async def _cmd_setup(manager: SyncManager, args: argparse.Namespace) -> int:
    config = load_config(
        store_uri=args.store_uri,
        database_name=args.database,
        enabled=True,
        strategy=args.strategy,
        yaml_fallbacks=manager.get_sync_config(),
    )
    if args.command == "setup":
        ok = await manager.setup_sync(config)
    else:
        ok = await manager.enable_sync(config)
    _emit(
        args,
        f"Sync {'enabled' if ok else 'setup failed'} ({config.store_uri})",
        {"success": ok, "store_uri": config.store_uri},
    )
    return EXIT_OK if ok else EXIT_FAILED


async def _cmd_disable(manager: SyncManager, args: argparse.Namespace) -> int:
    await manager.disable_sync()
    _emit(args, "Sync disabled", {"success": True})
    return EXIT_OK


async def _cmd_test(manager: SyncManager, args: argparse.Namespace) -> int:
    config = load_config(
        store_uri=args.store_uri,
        database_name=args.database,
        yaml_fallbacks=manager.get_sync_config(),
    )
    if not config.store_uri or not config.database_name:
        raise SyncConfigError("Both a store URI and a database name are required")
    ok = await manager.test_connection(config.store_uri, config.database_name)
    _emit(
        args,
        f"Connection to {config.store_uri}: {'OK' if ok else 'FAILED'}",
        {"success": ok, "store_uri": config.store_uri},
    )
    return EXIT_OK if ok else EXIT_FAILED


async def _cmd_devices(manager: SyncManager, args: argparse.Namespace) -> int:
    await manager.initialize()
    if not manager.get_sync_status().is_connected:
        _stderr_print("Not connected: enable sync first")
        return EXIT_FAILED
    devices = await manager.list_devices()
    _emit(
        args,
        format_devices(devices, current_id=manager.identity.device_id()),
        [d.model_dump(mode="json", by_alias=True) for d in devices],
    )
    return EXIT_OK


async def _cmd_run(manager: SyncManager, args: argparse.Namespace) -> int:
    config = manager.get_sync_config()
    if not config.enabled:
        _stderr_print("Sync is not enabled; run 'record-sync setup' first")
        return EXIT_FAILED
    if not await manager.engine.initialize(
        config.model_copy(update={"auto_sync": True}), manager.registry
    ):
        _stderr_print("Cannot connect to the document store")
        return EXIT_FAILED

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Platforms without signal support fall back to KeyboardInterrupt.
            pass
    logger.info("Auto sync running every %s seconds", config.sync_interval)
    await stop.wait()
    return EXIT_OK


COMMANDS = {
    "status": _cmd_status,
    "sync": _cmd_sync,
    "setup": _cmd_setup,
    "enable": _cmd_setup,
    "disable": _cmd_disable,
    "migrate": _cmd_migrate,
    "test": _cmd_test,
    "devices": _cmd_devices,
    "run": _cmd_run,
}


async def main(args: argparse.Namespace) -> int:
    """Build the manager from config and run the selected command."""
    unified = _load_unified(args.config_file)
    manager = SyncManager(unified=unified, data_dir=args.data_dir)
    try:
        return await COMMANDS[args.command](manager, args)
    finally:
        await manager.shutdown()


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # .env first so YAML ${VAR} interpolation and env overrides can see it
    load_dotenv()
    setup_logging(
        mode="daemon" if args.command == "run" else "cli",
        debug=args.debug,
        log_file=args.log_file,
    )

    try:
        code = asyncio.run(main(args))
    except KeyboardInterrupt:
        _stderr_print("Interrupted")
        code = EXIT_OK
    except SyncConfigError as e:
        _stderr_print(f"Configuration error: {e}")
        code = EXIT_FAILED
    sys.exit(code)


if __name__ == "__main__":
    run()
