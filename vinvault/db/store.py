"""
VINVAULT: Key-Value Stores

The report cache, consumed receipts, share tokens and purchase intents all
sit on this interface. SqliteStore is the deployed implementation;
MemoryStore backs tests and throwaway instances.

try_insert is the one atomic primitive: it succeeds for exactly one caller
per key, however many race for it.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional

from vinvault.db.database import connect, get_db, init_db, now_iso

log = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Namespaced bytes-in, bytes-out store."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    def put(self, key: str, value: bytes) -> None:
        """Insert or overwrite."""
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was removed."""
        ...

    @abstractmethod
    def try_insert(self, key: str, value: bytes) -> bool:
        """Insert only if absent. Returns False when the key already exists."""
        ...

    @abstractmethod
    def items(self) -> Iterator[tuple[str, bytes]]:
        ...


class MemoryStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def try_insert(self, key: str, value: bytes) -> bool:
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = value
            return True

    def items(self) -> Iterator[tuple[str, bytes]]:
        with self._lock:
            snapshot = list(self._data.items())
        return iter(snapshot)


class SqliteStore(KeyValueStore):
    """One namespace of the kv_entries table."""

    def __init__(self, db_path: str | Path, namespace: str):
        self.db_path = db_path
        self.namespace = namespace
        init_db(db_path)

    def get(self, key: str) -> Optional[bytes]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM kv_entries WHERE namespace = ? AND key = ?",
                [self.namespace, key],
            ).fetchone()
            return bytes(row["value"]) if row else None
        finally:
            conn.close()

    def put(self, key: str, value: bytes) -> None:
        with get_db(self.db_path) as conn:
            conn.execute(
                "INSERT INTO kv_entries (namespace, key, value, updated_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(namespace, key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                [self.namespace, key, value, now_iso()],
            )

    def delete(self, key: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM kv_entries WHERE namespace = ? AND key = ?",
                [self.namespace, key],
            )
            return cursor.rowcount > 0

    def try_insert(self, key: str, value: bytes) -> bool:
        with get_db(self.db_path, immediate=True) as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO kv_entries (namespace, key, value, updated_at) "
                "VALUES (?, ?, ?, ?)",
                [self.namespace, key, value, now_iso()],
            )
            return cursor.rowcount == 1

    def items(self) -> Iterator[tuple[str, bytes]]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT key, value FROM kv_entries WHERE namespace = ? ORDER BY key",
                [self.namespace],
            ).fetchall()
        finally:
            conn.close()
        return iter([(r["key"], bytes(r["value"])) for r in rows])
