"""
Memory storage for Task Orchestra.

SQLite-based storage for request/response pairs of orchestrations.
"""

from task_orchestra.storage.memory import (
    MemoryRecord,
    MemoryStore,
    SQLiteMemoryStore,
    get_store,
    reset_store,
)

__all__ = [
    "MemoryRecord",
    "MemoryStore",
    "SQLiteMemoryStore",
    "get_store",
    "reset_store",
]
