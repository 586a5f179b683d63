"""
VINVAULT: Payment Verification

Answers one question for the fulfillment gate: was this receipt paid?

Two processor backends sit behind the same interface:
  - StripeSessionVerifier: Stripe Checkout session ids (cs_...),
    paid when payment_status == "paid"
  - PayPalCaptureVerifier: PayPal capture ids (17 uppercase alphanumerics),
    paid when the capture status is COMPLETED

ReceiptVerifier picks the backend from the shape of the id. Every check is
a single read-only remote call. Transport problems raise ReceiptCheckError
so the gate can tell "couldn't check" apart from "checked, not paid".
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import requests
import stripe

from vinvault.core.errors import ReceiptCheckError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptStatus:
    receipt_id: str
    paid: bool
    status: str
    backend: str


class PaymentVerifier(ABC):
    """Anything the gate can ask "was this receipt paid?"."""

    @abstractmethod
    def accepts(self, receipt_id: str) -> bool:
        """True if receipt_id has a shape this verifier can check."""
        ...

    @abstractmethod
    def verify_receipt(self, receipt_id: str) -> ReceiptStatus:
        """Single read-only check. Raises ReceiptCheckError when it cannot be made."""
        ...


class ProcessorBackend(PaymentVerifier):
    """One payment processor: a raw status lookup plus what "paid" means there."""

    backend: str = ""

    @abstractmethod
    def capture_status(self, receipt_id: str) -> str:
        """Raw processor status for the receipt. Raises ReceiptCheckError."""
        ...

    @abstractmethod
    def is_paid_status(self, status: str) -> bool:
        ...

    def verify_receipt(self, receipt_id: str) -> ReceiptStatus:
        status = self.capture_status(receipt_id)
        return ReceiptStatus(
            receipt_id=receipt_id,
            paid=self.is_paid_status(status),
            status=status,
            backend=self.backend,
        )


# ── Stripe Checkout sessions ─────────────────────────────────────────

class StripeSessionVerifier(ProcessorBackend):
    backend = "stripe"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def accepts(self, receipt_id: str) -> bool:
        return receipt_id.startswith("cs_")

    def capture_status(self, receipt_id: str) -> str:
        if not self.api_key:
            raise ReceiptCheckError("Stripe not configured")
        try:
            session = stripe.checkout.Session.retrieve(receipt_id, api_key=self.api_key)
        except stripe.StripeError as e:
            log.error("Stripe verify session error: %s", e)
            raise ReceiptCheckError(str(e)) from e
        return getattr(session, "payment_status", None) or "unknown"

    def is_paid_status(self, status: str) -> bool:
        return status == "paid"


# ── PayPal captures ──────────────────────────────────────────────────

PAYPAL_CAPTURE_RE = re.compile(r"^[A-Z0-9]{17}$")


class PayPalCaptureVerifier(ProcessorBackend):
    backend = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def accepts(self, receipt_id: str) -> bool:
        return bool(PAYPAL_CAPTURE_RE.match(receipt_id))

    def _access_token(self) -> str:
        resp = self.session.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def capture_status(self, receipt_id: str) -> str:
        if not self.client_id:
            raise ReceiptCheckError("PayPal not configured")
        try:
            token = self._access_token()
            resp = self.session.get(
                f"{self.base_url}/v2/payments/captures/{receipt_id}",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json().get("status") or "UNKNOWN"
        except (requests.RequestException, KeyError, ValueError) as e:
            log.error("PayPal verify capture error: %s", e)
            raise ReceiptCheckError(str(e)) from e

    def is_paid_status(self, status: str) -> bool:
        return status == "COMPLETED"


# ── Backend selection ────────────────────────────────────────────────

class ReceiptVerifier(PaymentVerifier):
    """Routes each receipt to the first backend that accepts its id."""

    def __init__(self, backends: Sequence[ProcessorBackend]):
        self.backends = list(backends)

    def select(self, receipt_id: str) -> ProcessorBackend:
        for b in self.backends:
            if b.accepts(receipt_id):
                return b
        raise ReceiptCheckError(f"unrecognized receipt id shape: {receipt_id[:8]}...")

    def accepts(self, receipt_id: str) -> bool:
        return any(b.accepts(receipt_id) for b in self.backends)

    def verify_receipt(self, receipt_id: str) -> ReceiptStatus:
        return self.select(receipt_id).verify_receipt(receipt_id)
