"""Mongo-style filter matching for the reference document stores.

Supported: equality on top-level or dotted fields, and the ``$gt``,
``$gte``, ``$lt``, ``$lte``, ``$in`` and ``$ne`` operators.  ISO-8601
strings and ``datetime`` values compare as instants, so a filter like
``{"_syncedAt": {"$gt": last_sync}}`` works whichever form was stored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..core.clock import as_utc

_MISSING = object()


def get_path(doc: dict[str, Any], path: str) -> Any:
    """Value at dotted *path* in *doc*, or a sentinel when absent."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _coerce(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and len(value) >= 19 and value[4] == "-":
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return value
    return value


def _compare(actual: Any, expected: Any, op: str) -> bool:
    if actual is _MISSING or actual is None:
        return False
    left, right = _coerce(actual), _coerce(expected)
    try:
        if op == "$gt":
            return left > right
        if op == "$gte":
            return left >= right
        if op == "$lt":
            return left < right
        if op == "$lte":
            return left <= right
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def _match_condition(actual: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(
        key.startswith("$") for key in condition
    ):
        for op, expected in condition.items():
            if op == "$in":
                values = [_coerce(v) for v in expected]
                if actual is _MISSING or _coerce(actual) not in values:
                    return False
            elif op == "$ne":
                if actual is not _MISSING and _coerce(actual) == _coerce(expected):
                    return False
            elif not _compare(actual, expected, op):
                return False
        return True
    if actual is _MISSING:
        return False
    return _coerce(actual) == _coerce(condition)


def matches(doc: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """True when *doc* satisfies every clause of *filter*.

    Raises:
        ValueError: On an unsupported ``$`` operator.
    """
    if not filter:
        return True
    return all(
        _match_condition(get_path(doc, path), condition)
        for path, condition in filter.items()
    )
