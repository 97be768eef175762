"""Sync result and status formatting functions.

Provides human-readable and machine-readable output for the CLI:

- ``format_sync_result`` -- post-cycle summary with per-collection lines.
- ``format_status`` -- live engine status.
- ``format_devices`` -- registered devices table.
- ``result_to_json`` / ``status_to_json`` -- structured dicts for ``--json``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DeviceInfo, SyncOperationResult, SyncStatus


def _ts(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "never"


# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_sync_result(result: SyncOperationResult) -> str:
    """Format a sync cycle result as human-readable text.

    Collections that did nothing are omitted from the per-collection
    section.  Errors are listed last.

    Args:
        result: The completed (or rejected) cycle.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    if not result.success:
        lines.append("Sync failed")
    elif result.errors:
        lines.append("Sync completed with errors")
    else:
        lines.append("Sync completed")
    if result.started_at is not None:
        lines.append(f"Started: {_ts(result.started_at)}")
    if result.completed_at is not None:
        lines.append(f"Completed: {_ts(result.completed_at)}")
    lines.append("")

    lines.append(
        f"{result.items_processed} items synced, "
        f"{result.conflicts_resolved} conflicts resolved, "
        f"{result.tombstones_processed} deletions pushed, "
        f"{result.tombstones_pruned} tombstones pruned"
    )
    lines.append("")

    active = [
        c
        for c in result.collections
        if c.items_processed or c.conflicts_resolved or c.tombstones_processed
        or c.bootstrapped or c.errors
    ]
    if active:
        lines.append("Collections:")
        for c in active:
            note = " (bootstrap)" if c.bootstrapped else ""
            lines.append(
                f"  {c.name} [{c.tier}]{note}: {c.items_processed} items, "
                f"{c.conflicts_resolved} conflicts, "
                f"{c.tombstones_processed} deletions"
            )
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        for err in result.errors:
            lines.append(f"  {err}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_status(status: SyncStatus, enabled: bool | None = None) -> str:
    """Format the live engine status as ``key: value`` lines."""
    lines: list[str] = []
    if enabled is not None:
        lines.append(f"Enabled: {'yes' if enabled else 'no'}")
    lines.append(f"Connected: {'yes' if status.is_connected else 'no'}")
    lines.append(
        f"Sync in progress: {'yes' if status.sync_in_progress else 'no'}"
    )
    lines.append(f"Last sync: {_ts(status.last_sync)}")
    if status.next_sync is not None:
        lines.append(f"Next sync: {_ts(status.next_sync)}")
    lines.append(f"Devices: {status.device_count}")
    lines.append(
        f"Totals: {status.synced_items} items, "
        f"{status.conflicts_resolved} conflicts, "
        f"{status.tombstones_processed} deletions"
    )
    if status.last_error:
        lines.append(f"Last error: {status.last_error}")
    return "\n".join(lines)


def format_devices(devices: list[DeviceInfo], current_id: str | None = None) -> str:
    if not devices:
        return "No devices registered"
    lines = [f"{len(devices)} device(s):"]
    for d in sorted(devices, key=lambda d: d.last_activity, reverse=True):
        marker = " *" if d.device_id == current_id else ""
        lines.append(
            f"  {d.name} ({d.platform}) {d.device_id[:12]} "
            f"last seen {_ts(d.last_activity)}{marker}"
        )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncOperationResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Args:
        result: The sync result.

    Returns:
        Dict with success flag, timestamps, counts, and per-collection details.
    """
    collections = []
    for c in result.collections:
        entry: dict = {
            "name": c.name,
            "tier": c.tier,
            "items_processed": c.items_processed,
            "conflicts_resolved": c.conflicts_resolved,
            "tombstones_processed": c.tombstones_processed,
            "bootstrapped": c.bootstrapped,
        }
        if c.errors:
            entry["errors"] = list(c.errors)
        collections.append(entry)

    return {
        "success": result.success,
        "started_at": result.started_at.isoformat() if result.started_at else None,
        "completed_at": result.completed_at.isoformat()
        if result.completed_at
        else None,
        "last_sync": result.last_sync.isoformat() if result.last_sync else None,
        "counts": {
            "items_processed": result.items_processed,
            "conflicts_resolved": result.conflicts_resolved,
            "tombstones_processed": result.tombstones_processed,
            "tombstones_pruned": result.tombstones_pruned,
            "errors": len(result.errors),
        },
        "errors": list(result.errors),
        "collections": collections,
    }


def status_to_json(status: SyncStatus) -> dict:
    """Convert a status snapshot to a JSON-ready dict (camelCase keys)."""
    return {
        "isConnected": status.is_connected,
        "isLoading": status.is_loading,
        "syncInProgress": status.sync_in_progress,
        "lastSync": status.last_sync.isoformat() if status.last_sync else None,
        "nextSync": status.next_sync.isoformat() if status.next_sync else None,
        "lastError": status.last_error,
        "syncedItems": status.synced_items,
        "conflictsResolved": status.conflicts_resolved,
        "tombstonesProcessed": status.tombstones_processed,
        "deviceCount": status.device_count,
    }
