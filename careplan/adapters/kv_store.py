"""
Embedded key-value store adapters.

Keys are plain strings namespaced as ``<prefix>:<patient_id>:<date>``; values
are opaque strings (JSON written by the repositories). Anything that speaks the
``KeyValueStore`` protocol can back the care plan core.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Protocol

import structlog

from careplan.exceptions import StorageError

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """
    Protocol for the embedded key-value store.

    Why Protocol over ABC: structural typing, easy test doubles.
    Implementations raise ``StorageError`` when the backend fails.
    """

    async def get(self, key: str) -> str | None:
        """Return the raw value stored under ``key``, or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix``, sorted."""
        ...


class InMemoryKeyValueStore:
    """Dictionary-backed store for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqliteKeyValueStore:
    """
    SQLite-backed store.

    sqlite3 is blocking, so every call runs in a worker thread. A fresh
    connection per call keeps the adapter safe to use from any thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        self.logger = logger.bind(component="sqlite_kv_store", path=self.path)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=10.0)

    def _init_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT)")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialise key-value table: {e}") from e

    def _get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def _set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def _delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def _keys(self, prefix: str) -> list[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            ).fetchall()
        # LIKE ignores ASCII case
        return [r[0] for r in rows if r[0].startswith(prefix)]

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get, key)
        except sqlite3.Error as e:
            self.logger.error("kv_read_failed", key=key, error=str(e))
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set, key, value)
        except sqlite3.Error as e:
            self.logger.error("kv_write_failed", key=key, error=str(e))
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete, key)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    async def keys(self, prefix: str = "") -> list[str]:
        try:
            return await asyncio.to_thread(self._keys, prefix)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys with prefix {prefix!r}: {e}") from e


def create_store(backend: str, sqlite_path: str) -> KeyValueStore:
    """Build the store named by ``StorageConfig.backend``."""
    if backend == "sqlite":
        return SqliteKeyValueStore(sqlite_path)
    if backend == "memory":
        return InMemoryKeyValueStore()
    raise ValueError(f"Unknown storage backend: {backend}")
