"""
Memory store for Task Orchestra.

Persists the request/response pairs of orchestrations that ask for it,
keyed by ``(namespace, session_id)``, in a local SQLite database. Later runs
of the same session can retrieve them in insertion order.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import ClassVar, Protocol

from task_orchestra.protocol.types import TaskRequest, TaskResponse


@dataclass
class MemoryRecord:
    """One stored request/response pair."""

    namespace: str
    session_id: str
    request: TaskRequest
    response: TaskResponse
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class MemoryStore(Protocol):
    """Storage backend used by the orchestrator."""

    async def store(
        self,
        namespace: str,
        session_id: str,
        request: TaskRequest,
        response: TaskResponse,
    ) -> None: ...

    async def retrieve(self, namespace: str, session_id: str) -> list[MemoryRecord]: ...


class SQLiteMemoryStore:
    """
    Local memory store backed by SQLite.

    Blocking sqlite3 calls run in a worker thread so the event loop is never
    held up by disk I/O.
    """

    DEFAULT_DB_PATH: ClassVar[Path] = Path.home() / ".local" / "share" / "task-orchestra" / "memory.db"

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the memory store.

        Args:
            db_path: Path to the SQLite database. Defaults to
                ~/.local/share/task-orchestra/memory.db
        """
        self.db_path = Path(db_path) if db_path is not None else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize SQLite schema."""
        with closing(self._get_conn()) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    namespace TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    request_id TEXT NOT NULL,
                    request_json TEXT NOT NULL,
                    response_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memories_key ON memories(namespace, session_id)"
            )
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    async def store(
        self,
        namespace: str,
        session_id: str,
        request: TaskRequest,
        response: TaskResponse,
    ) -> None:
        """Persist one request/response pair under ``(namespace, session_id)``."""
        await asyncio.to_thread(self._store_sync, namespace, session_id, request, response)

    def _store_sync(
        self,
        namespace: str,
        session_id: str,
        request: TaskRequest,
        response: TaskResponse,
    ) -> None:
        with closing(self._get_conn()) as conn:
            conn.execute(
                """
                INSERT INTO memories
                    (namespace, session_id, request_id, request_json, response_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    namespace,
                    session_id,
                    request.id,
                    request.model_dump_json(),
                    response.model_dump_json(),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()

    async def retrieve(self, namespace: str, session_id: str) -> list[MemoryRecord]:
        """Return the records stored under ``(namespace, session_id)``, oldest first."""
        return await asyncio.to_thread(self._retrieve_sync, namespace, session_id)

    def _retrieve_sync(self, namespace: str, session_id: str) -> list[MemoryRecord]:
        with closing(self._get_conn()) as conn:
            rows = conn.execute(
                """
                SELECT request_json, response_json, created_at
                FROM memories
                WHERE namespace = ? AND session_id = ?
                ORDER BY id
                """,
                (namespace, session_id),
            ).fetchall()

        return [
            MemoryRecord(
                namespace=namespace,
                session_id=session_id,
                request=TaskRequest.model_validate_json(request_json),
                response=TaskResponse.model_validate_json(response_json),
                created_at=created_at,
            )
            for request_json, response_json, created_at in rows
        ]

    async def clear(self, namespace: str) -> int:
        """Delete every record in *namespace*. Returns the number removed."""
        return await asyncio.to_thread(self._clear_sync, namespace)

    def _clear_sync(self, namespace: str) -> int:
        with closing(self._get_conn()) as conn:
            cursor = conn.execute("DELETE FROM memories WHERE namespace = ?", (namespace,))
            conn.commit()
            return cursor.rowcount


# Module-level default store singleton
_default_store: SQLiteMemoryStore | None = None


def get_store(db_path: Path | str | None = None) -> SQLiteMemoryStore:
    """Get or create the default memory store."""
    global _default_store
    if _default_store is None:
        _default_store = SQLiteMemoryStore(db_path)
    return _default_store


def reset_store() -> None:
    """Reset the default store singleton (for testing)."""
    global _default_store
    _default_store = None


__all__ = [
    "MemoryRecord",
    "MemoryStore",
    "SQLiteMemoryStore",
    "get_store",
    "reset_store",
]
