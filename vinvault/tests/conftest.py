"""Shared fakes and fixtures. Nothing here talks to Stripe, PayPal or the provider."""

from __future__ import annotations

import gzip
import json
import threading
from typing import Optional

import pytest
import stripe

from vinvault.core.cache import ReportCache
from vinvault.core.errors import ProviderError, ReceiptCheckError
from vinvault.core.fulfillment import EntitlementGate
from vinvault.core.payments import ProcessorBackend
from vinvault.core.receipts import ReceiptLedger
from vinvault.core.intents import IntentStore
from vinvault.core.reconcile import LineItem, WebhookReconciler
from vinvault.core.share import ShareLinkIssuer
from vinvault.db.credits import CreditLedger
from vinvault.db.store import SqliteStore
from vinvault.server.billing import CheckoutService
from vinvault.server.services import Services

VIN = "1HGCM82633A004352"
VIN_2 = "1M8GDM9AXKP042788"
VIN_3 = "JH4KA7561PC008269"

HTML = "<!DOCTYPE html><html><body><h1>Vehicle history</h1></body></html>"
GZ_HTML = gzip.compress(HTML.encode("utf-8"))
PDF = b"%PDF-1.4\n% fake report\n%%EOF"

PRICE_SINGLE = "price_single"
PRICE_BUNDLE = "price_bundle"
PRICE_REPORT = "price_report"
PRICE_MAP = {PRICE_SINGLE: 1, PRICE_BUNDLE: 10, PRICE_REPORT: 1}
PACKS = {"single": PRICE_SINGLE, "10pack": PRICE_BUNDLE, "report": PRICE_REPORT}

JWT_SECRET = "test-secret"


def run_now(fn, *args) -> None:
    fn(*args)


class FakeProvider:
    """Stands in for ReportProvider. Counts every upstream call."""

    def __init__(self, payload: bytes = GZ_HTML):
        self.payload = payload
        self.error: Optional[Exception] = None
        self.plates: dict[tuple[str, str], str] = {}
        self.plate_error: Optional[Exception] = None
        self.fetch_calls: list[tuple[str, str]] = []
        self.pdf_calls = 0
        self._lock = threading.Lock()

    def fetch_report(self, vin: str, report_type: str) -> bytes:
        with self._lock:
            self.fetch_calls.append((vin, report_type))
        if self.error is not None:
            raise self.error
        return self.payload

    def resolve_plate(self, state: str, plate: str) -> Optional[str]:
        if self.plate_error is not None:
            raise self.plate_error
        return self.plates.get((state, plate))

    def render_pdf(self, html: str, vin: str, report_type: str) -> bytes:
        self.pdf_calls += 1
        if self.error is not None:
            raise ProviderError("pdf down")
        return PDF


class FakeVerifier(ProcessorBackend):
    """Receipts are paid when their status is "paid"; unknown ids cannot be checked."""

    backend = "fake"

    def __init__(self, statuses: Optional[dict[str, str]] = None):
        self.statuses = dict(statuses or {})
        self.calls = 0

    def accepts(self, receipt_id: str) -> bool:
        return receipt_id in self.statuses

    def capture_status(self, receipt_id: str) -> str:
        self.calls += 1
        if receipt_id not in self.statuses:
            raise ReceiptCheckError(f"no such receipt {receipt_id}")
        return self.statuses[receipt_id]

    def is_paid_status(self, status: str) -> bool:
        return status == "paid"


class FakeStripeGateway:
    """Records checkout sessions in memory; signature "good" is the only valid one."""

    def __init__(self, webhook_secret: str = "whsec_test", configured: bool = True):
        self.webhook_secret = webhook_secret
        self._configured = configured
        self.sessions: dict[str, dict] = {}
        self.line_items: dict[str, list[LineItem]] = {}
        self.created: list[dict] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def create_checkout_session(self, price_id: str, metadata: dict, user_id: Optional[str] = None) -> dict:
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({"id": session_id, "price": price_id, "metadata": metadata, "user_id": user_id})
        self.sessions[session_id] = {
            "id": session_id,
            "payment_status": "unpaid",
            "client_reference_id": user_id,
            "metadata": dict(metadata),
        }
        self.line_items[session_id] = [LineItem(price_id=price_id, quantity=1)]
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def mark_paid(self, session_id: str) -> dict:
        self.sessions[session_id]["payment_status"] = "paid"
        return self.sessions[session_id]

    def retrieve_session(self, session_id: str) -> dict:
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError("No such checkout.session", "id")
        return dict(self.sessions[session_id])

    def list_line_items(self, session_id: str) -> list[LineItem]:
        return list(self.line_items.get(session_id, []))

    def construct_event(self, payload: bytes, signature: str) -> dict:
        if signature != "good":
            raise stripe.SignatureVerificationError("bad signature", signature)
        return json.loads(payload)


def completed_event(session: dict, event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps({
        "id": f"evt_{session['id']}",
        "type": event_type,
        "data": {"object": session},
    }).encode("utf-8")


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "vinvault-test.db"


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def verifier():
    return FakeVerifier({"cs_paid": "paid", "cs_paid_2": "paid", "cs_unpaid": "unpaid"})


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def services(db_path, provider, verifier, gateway):
    cache = ReportCache(SqliteStore(db_path, "report_cache"))
    credits = CreditLedger(db_path)
    receipts = ReceiptLedger(SqliteStore(db_path, "consumed_receipts"))
    intents = IntentStore(SqliteStore(db_path, "purchase_intents"))
    gate = EntitlementGate(cache, credits, receipts, verifier, provider, intents=intents)
    shares = ShareLinkIssuer(SqliteStore(db_path, "share_tokens"), cache)
    reconciler = WebhookReconciler(credits, intents, gate, dict(PRICE_MAP), schedule=run_now)
    checkout = CheckoutService(gateway, cache, intents, reconciler, packs=dict(PACKS))
    return Services(
        cache=cache,
        credits=credits,
        receipts=receipts,
        provider=provider,
        gate=gate,
        shares=shares,
        reconciler=reconciler,
        checkout=checkout,
        jwt_secret=JWT_SECRET,
        site_url="https://vinvault.test",
    )
