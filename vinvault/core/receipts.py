"""
VINVAULT: Consumed-Receipt Ledger

A paid one-time receipt authorizes exactly one live fetch. try_consume is
a single check-and-set on the backing store; release undoes it when the
fetch it paid for failed, so the buyer can retry with the same receipt.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from vinvault.db.store import KeyValueStore

log = logging.getLogger(__name__)


class ReceiptLedger:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def is_consumed(self, receipt_id: str) -> bool:
        return self.store.get(receipt_id) is not None

    def try_consume(self, receipt_id: str) -> bool:
        consumed_at = datetime.now(timezone.utc).isoformat()
        ok = self.store.try_insert(receipt_id, consumed_at.encode("utf-8"))
        if ok:
            log.info("Receipt consumed: %s", receipt_id)
        else:
            log.info("Receipt reuse rejected: %s", receipt_id)
        return ok

    def release(self, receipt_id: str) -> None:
        self.store.delete(receipt_id)
        log.info("Receipt released: %s", receipt_id)
