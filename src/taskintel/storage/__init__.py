"""Persistence boundary: record stores for tasks, plans and audit entries."""

from taskintel.storage.store import InMemoryStore, JsonFileStore, RecordStore

__all__ = [
    "RecordStore",
    "InMemoryStore",
    "JsonFileStore",
]
