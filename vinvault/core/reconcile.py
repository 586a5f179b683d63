"""
VINVAULT: Payment Reconciliation

Turns a confirmed checkout into credits (or a report) exactly once.

Confirmations arrive at least once from the processor webhook and may also
arrive through the synchronous finalize call after redirect. Both paths
call reconcile(); the ledger claims the session id and applies its credits
in one transaction, so the second arrival is a no-op.

Credits are computed from price ids. An unknown price still grants the
baseline single credit: a paid transaction is never silently dropped.
A session that was already spent as a one-time receipt is claimed without
credits.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from vinvault.core.fulfillment import DEFAULT_REPORT_TYPE, EntitlementGate
from vinvault.core.intents import IntentStore, PurchaseIntent
from vinvault.db.credits import CreditLedger

log = logging.getLogger(__name__)

BASELINE_CREDITS = 1

Scheduler = Callable[..., None]


# ── Confirmations ────────────────────────────────────────────────────

@dataclass
class LineItem:
    price_id: str
    quantity: int = 1


@dataclass
class PaymentConfirmation:
    """Processor-neutral view of a paid checkout."""
    session_id: str
    line_items: list[LineItem] = field(default_factory=list)
    user_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ReconcileResult:
    session_id: str
    status: str                     # credited | duplicate | guest_or_zero | redeemed | report_scheduled
    credits_added: int = 0
    balance: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _spawn(fn: Callable, *args) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


class WebhookReconciler:
    def __init__(
        self,
        credits: CreditLedger,
        intents: IntentStore,
        gate: EntitlementGate,
        price_credits: dict[str, int],
        schedule: Scheduler = _spawn,
    ):
        self.credits = credits
        self.intents = intents
        self.gate = gate
        self.price_credits = price_credits
        self.schedule = schedule

    def credits_for(self, line_items: list[LineItem]) -> int:
        total = 0
        for li in line_items:
            per_unit = self.price_credits.get(li.price_id)
            if per_unit is None:
                log.warning("Unknown price id %s, granting baseline credit", li.price_id)
                per_unit = BASELINE_CREDITS
            total += max(1, li.quantity or 1) * per_unit
        return total or BASELINE_CREDITS

    def reconcile(self, confirmation: PaymentConfirmation, schedule: Optional[Scheduler] = None) -> ReconcileResult:
        session_id = confirmation.session_id
        intent = self.intents.get(session_id) or PurchaseIntent.from_metadata(
            session_id, confirmation.metadata, confirmation.user_id
        )

        if intent.buys_report:
            if self.credits.reconcile_session(session_id, None, 0) is None:
                return ReconcileResult(session_id, "duplicate")
            report_type = intent.report_type or DEFAULT_REPORT_TYPE
            (schedule or self.schedule)(self._prefetch, intent.vin, report_type, session_id)
            log.info("Report purchase confirmed: session=%s vin=%s, fetch scheduled", session_id, intent.vin)
            return ReconcileResult(session_id, "report_scheduled")

        user_id = intent.user_id or confirmation.user_id
        credits = self.credits_for(confirmation.line_items)
        if user_id and self.gate.receipts.is_consumed(session_id):
            if self.credits.reconcile_session(session_id, None, 0) is None:
                return ReconcileResult(session_id, "duplicate")
            log.warning("Session already spent as a receipt, no credits applied: session=%s user=%s",
                        session_id, user_id)
            return ReconcileResult(session_id, "redeemed")
        balance = self.credits.reconcile_session(session_id, user_id, credits)
        if balance is None:
            return ReconcileResult(session_id, "duplicate")
        if not user_id:
            log.info("Guest checkout confirmed, no credits applied: session=%s", session_id)
            return ReconcileResult(session_id, "guest_or_zero")
        return ReconcileResult(session_id, "credited", credits_added=credits, balance=balance)

    def _prefetch(self, vin: str, report_type: str, session_id: str) -> None:
        try:
            result = self.gate.fulfill_prepaid(vin, report_type, session_id)
        except Exception as e:
            log.error("Background fetch failed: session=%s vin=%s: %s", session_id, vin, e)
            return
        if result is not None:
            log.info("Background fetch cached: vin=%s type=%s", vin, report_type)
