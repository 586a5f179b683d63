"""
VINVAULT: Database Layer

SQLite connection management and schema. Every module that persists state
goes through get_db() so commit/rollback handling lives in one place.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_entries (
    namespace   TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       BLOB NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

CREATE TABLE IF NOT EXISTS credit_balances (
    user_id     TEXT PRIMARY KEY,
    balance     INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS credit_ledger (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    delta       INTEGER NOT NULL,
    reason      TEXT NOT NULL CHECK (reason IN ('purchase', 'spend', 'refund')),
    ref         TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_credit_ledger_user ON credit_ledger (user_id);

CREATE TABLE IF NOT EXISTS reconciled_sessions (
    session_id     TEXT PRIMARY KEY,
    user_id        TEXT,
    credits        INTEGER NOT NULL DEFAULT 0,
    reconciled_at  TEXT NOT NULL
);
"""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection with the pragmas every caller relies on.

    isolation_level=None leaves transaction control to the caller, so
    BEGIN IMMEDIATE can be issued explicitly for read-modify-write paths.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=10000")
    return conn


@contextmanager
def get_db(db_path: str | Path, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a connection inside a transaction; commit on success, roll back on error."""
    conn = connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def init_db(db_path: str | Path) -> None:
    """Create tables if they do not exist."""
    conn = connect(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()
    log.info("Database initialized at %s", db_path)
