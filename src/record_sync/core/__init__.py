"""Shared async, clock and file helpers used across the package."""

from .async_utils import maybe_await, run_sync, with_timeout
from .clock import EPOCH, as_utc, parse_timestamp, utcnow
from .files import read_json, write_json_atomic

__all__ = [
    "EPOCH",
    "as_utc",
    "maybe_await",
    "parse_timestamp",
    "read_json",
    "run_sync",
    "utcnow",
    "with_timeout",
    "write_json_atomic",
]
