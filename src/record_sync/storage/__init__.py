"""Local record storages usable as sync adapters."""

from .json_store import BasicJsonStorage, JsonRecordStorage

__all__ = ["BasicJsonStorage", "JsonRecordStorage"]
