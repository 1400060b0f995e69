"""Byte-oriented persistent stores backing the cache snapshot tier."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict, Protocol


class PersistentStore(Protocol):
    """Key/value blob store that survives process restarts."""

    def get(self, key: str) -> bytes | None:
        """Return the stored blob or ``None``."""

    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous blob."""

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""


class MemoryStore:
    """Process-local store, handy for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)


class SQLiteStore:
    """SQLite-backed blob store with basic schema guarantees."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = Lock()
        self._conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._ensure_schema(conn)
            self._conn = conn
        return self._conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_blobs (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at TEXT
            )
            """
        )
        conn.commit()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            cur = self._connect().execute("SELECT value FROM cache_blobs WHERE key = ?", (key,))
            row = cur.fetchone()
        return bytes(row["value"]) if row is not None else None

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            conn = self._connect()
            conn.execute(
                "INSERT OR REPLACE INTO cache_blobs(key, value, updated_at) VALUES (?, ?, datetime('now'))",
                (key, sqlite3.Binary(value)),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        with self._lock:
            conn = self._connect()
            conn.execute("DELETE FROM cache_blobs WHERE key = ?", (key,))
            conn.commit()

    def reset(self) -> None:
        self.close()
        if self.path.exists():
            self.path.unlink()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


__all__ = ["MemoryStore", "PersistentStore", "SQLiteStore"]
