"""
VINVAULT: Credit Ledger

Per-user integer balance plus an append-only ledger of deltas. Every
mutation runs in one BEGIN IMMEDIATE transaction that updates the balance
row and appends the ledger entry together, so the sum of a user's deltas
always equals their balance and concurrent spend/refund/purchase calls
serialize instead of losing updates.

Balance writes are money: errors here propagate to the caller.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from vinvault.core.errors import InsufficientCredits
from vinvault.db.database import connect, get_db, init_db, now_iso

log = logging.getLogger(__name__)

REASONS = ("purchase", "spend", "refund")


def _read_balance(conn: sqlite3.Connection, user_id: str) -> int:
    row = conn.execute(
        "SELECT balance FROM credit_balances WHERE user_id = ?", [user_id]
    ).fetchone()
    return int(row["balance"]) if row else 0


def _apply(conn: sqlite3.Connection, user_id: str, delta: int, reason: str, ref: str) -> int:
    """Read-modify-write inside the caller's transaction. Never goes negative."""
    if reason not in REASONS:
        raise ValueError(f"Unknown ledger reason: {reason}")
    balance = _read_balance(conn, user_id)
    new_balance = balance + delta
    if new_balance < 0:
        raise InsufficientCredits(user_id, balance, -delta)

    now = now_iso()
    conn.execute(
        "INSERT INTO credit_balances (user_id, balance, updated_at) VALUES (?, ?, ?) "
        "ON CONFLICT(user_id) DO UPDATE SET balance = excluded.balance, "
        "updated_at = excluded.updated_at",
        [user_id, new_balance, now],
    )
    conn.execute(
        "INSERT INTO credit_ledger (user_id, delta, reason, ref, created_at) "
        "VALUES (?, ?, ?, ?, ?)",
        [user_id, delta, reason, ref or "", now],
    )
    return new_balance


class CreditLedger:
    def __init__(self, db_path: str | Path):
        self.db_path = db_path
        init_db(db_path)

    def get_balance(self, user_id: str) -> int:
        conn = connect(self.db_path)
        try:
            return _read_balance(conn, user_id)
        finally:
            conn.close()

    def adjust(self, user_id: str, delta: int, reason: str, ref: str = "") -> int:
        """Atomically apply delta and append a ledger entry. Returns the new balance.

        Raises InsufficientCredits (and writes nothing) if the balance would
        drop below zero.
        """
        with get_db(self.db_path, immediate=True) as conn:
            new_balance = _apply(conn, user_id, delta, reason, ref)
        log.info("Credits %s: user=%s delta=%+d ref=%s balance=%d",
                 reason, user_id, delta, ref, new_balance)
        return new_balance

    def spend(self, user_id: str, ref: str, cost: int = 1) -> int:
        return self.adjust(user_id, -cost, "spend", ref)

    def refund(self, user_id: str, ref: str, amount: int = 1) -> int:
        return self.adjust(user_id, amount, "refund", ref)

    def grant(self, user_id: str, credits: int, ref: str) -> int:
        return self.adjust(user_id, credits, "purchase", ref)

    # ── Session reconciliation ───────────────────────────────────────

    def reconcile_session(
        self,
        session_id: str,
        user_id: Optional[str],
        credits: int,
    ) -> Optional[int]:
        """Claim session_id and grant its credits in a single transaction.

        Returns the user's new balance, 0 when the claim carried no credits,
        or None when the session was already reconciled (nothing applied).
        """
        with get_db(self.db_path, immediate=True) as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO reconciled_sessions "
                "(session_id, user_id, credits, reconciled_at) VALUES (?, ?, ?, ?)",
                [session_id, user_id, credits if user_id else 0, now_iso()],
            )
            if cursor.rowcount == 0:
                log.info("Session already reconciled: %s", session_id)
                return None
            if not user_id or credits <= 0:
                return 0
            new_balance = _apply(conn, user_id, credits, "purchase", session_id)
        log.info("Session reconciled: session=%s user=%s credits=%d balance=%d",
                 session_id, user_id, credits, new_balance)
        return new_balance

    def credited_user(self, session_id: str) -> Optional[str]:
        """User whose balance session_id was credited to, or None."""
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT user_id FROM reconciled_sessions "
                "WHERE session_id = ? AND credits > 0 AND user_id IS NOT NULL",
                [session_id],
            ).fetchone()
            return row["user_id"] if row else None
        finally:
            conn.close()

    def is_reconciled(self, session_id: str) -> bool:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM reconciled_sessions WHERE session_id = ?", [session_id]
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    # ── Reads ────────────────────────────────────────────────────────

    def entries(self, user_id: str, limit: int = 100) -> list[dict]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT id, user_id, delta, reason, ref, created_at FROM credit_ledger "
                "WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                [user_id, limit],
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def ledger_sum(self, user_id: str) -> int:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT COALESCE(SUM(delta), 0) FROM credit_ledger WHERE user_id = ?",
                [user_id],
            ).fetchone()
            return int(row[0])
        finally:
            conn.close()
