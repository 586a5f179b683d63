"""
VINVAULT: Stripe Billing Integration

  - Checkout session creation (credit packs and single-report purchases)
  - Synchronous finalize after the success redirect
  - Webhook handling (checkout.session.completed)

StripeGateway is the only checkout code that talks to the stripe library; it hands
plain dicts back so the rest of the service (and the tests) never touch
StripeObjects. Crediting itself is done by the WebhookReconciler, which is
idempotent per session id, so finalize and webhook may both run.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import stripe

from vinvault.core.cache import ReportCache
from vinvault.core.errors import FulfillmentError
from vinvault.core.intents import IntentStore, PurchaseIntent
from vinvault.core.reconcile import (
    LineItem,
    PaymentConfirmation,
    ReconcileResult,
    Scheduler,
    WebhookReconciler,
)
from vinvault.core.vin import is_valid_vin, normalize_vin
from vinvault.server.pricing import intent_for, resolve_price

log = logging.getLogger(__name__)

COMPLETED_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})


def _as_dict(obj) -> dict:
    return dict(obj) if obj else {}


class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: str, site_url: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.site_url = site_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def create_checkout_session(
        self,
        price_id: str,
        metadata: dict,
        user_id: Optional[str] = None,
    ) -> dict:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{self.site_url}?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.site_url}?checkout=cancel",
            "metadata": metadata,
        }
        if user_id:
            params["client_reference_id"] = user_id
        session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        return {"id": session.id, "url": session.url}

    def retrieve_session(self, session_id: str) -> dict:
        session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        return {
            "id": session.id,
            "payment_status": getattr(session, "payment_status", None),
            "client_reference_id": getattr(session, "client_reference_id", None),
            "metadata": _as_dict(getattr(session, "metadata", None)),
        }

    def list_line_items(self, session_id: str) -> list[LineItem]:
        items = stripe.checkout.Session.list_line_items(session_id, limit=10, api_key=self.api_key)
        return [LineItem(price_id=li.price.id, quantity=li.quantity or 1) for li in items.data]

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify the signature, then return the event as plain JSON."""
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)


class CheckoutService:
    def __init__(
        self,
        gateway: StripeGateway,
        cache: ReportCache,
        intents: IntentStore,
        reconciler: WebhookReconciler,
        packs: dict[str, str],
    ):
        self.gateway = gateway
        self.cache = cache
        self.intents = intents
        self.reconciler = reconciler
        self.packs = packs

    # ── Checkout ─────────────────────────────────────────────────────

    def create_checkout(
        self,
        price_id: Optional[str],
        user_id: Optional[str] = None,
        vin: Optional[str] = None,
        report_type: Optional[str] = None,
    ) -> dict:
        """Start a checkout. Refuses to sell a report that is already cached."""
        vin = normalize_vin(vin) or None
        report_type = (report_type or "carfax").strip().lower()
        if vin:
            if not is_valid_vin(vin):
                raise FulfillmentError.invalid_vin()
            if self.cache.contains(vin, report_type):
                raise FulfillmentError.already_cached()

        if not self.gateway.configured:
            raise FulfillmentError("billing_unavailable", 503, "Billing not configured. Contact support.")

        if vin:
            price, pack = self.packs.get("report", ""), "report"
        else:
            price, pack = resolve_price(price_id, self.packs)
        if not price:
            raise FulfillmentError("billing_unavailable", 503, "No price configured for this purchase.")

        intent_kind = intent_for(pack, vin)
        draft = PurchaseIntent(
            session_id="",
            intent_kind=intent_kind,
            user_id=user_id,
            vin=vin,
            report_type=report_type if vin else None,
            price_id=price,
        )
        try:
            session = self.gateway.create_checkout_session(price, draft.to_metadata(), user_id)
        except stripe.StripeError as e:
            log.error("Stripe create session error: %s", e)
            raise FulfillmentError("billing_unavailable", 503, "Billing service unavailable.") from e

        draft.session_id = session["id"]
        self.intents.save(draft)
        log.info("Checkout created: session=%s intent=%s user=%s vin=%s",
                 session["id"], intent_kind, user_id, vin)
        return {"checkout_url": session["url"], "session_id": session["id"]}

    # ── Finalize (synchronous) ───────────────────────────────────────

    def finalize(self, session_id: str, schedule: Optional[Scheduler] = None) -> ReconcileResult:
        try:
            session = self.gateway.retrieve_session(session_id)
        except stripe.StripeError as e:
            log.error("Stripe finalize retrieve error: %s", e)
            raise FulfillmentError.receipt_invalid() from e
        if session.get("payment_status") != "paid":
            raise FulfillmentError.payment_incomplete()
        return self.reconciler.reconcile(self._confirmation(session), schedule=schedule)

    # ── Webhook ──────────────────────────────────────────────────────

    def handle_webhook(self, payload: bytes, signature: str, schedule: Optional[Scheduler] = None) -> dict:
        if not self.gateway.webhook_secret:
            raise FulfillmentError("webhook_unconfigured", 503, "Webhook secret not configured.")
        try:
            event = self.gateway.construct_event(payload, signature)
        except (ValueError, stripe.SignatureVerificationError) as e:
            log.warning("Webhook signature rejected: %s", e)
            raise FulfillmentError("invalid_signature", 400, "Invalid signature.") from e

        event_type = event.get("type", "")
        session = event.get("data", {}).get("object", {})
        if event_type not in COMPLETED_EVENTS:
            log.debug("Unhandled Stripe event: %s", event_type)
            return {"received": True}
        if session.get("payment_status") != "paid":
            log.info("Checkout completed but unpaid: %s", session.get("id"))
            return {"received": True, "paid": False}

        result = self.reconciler.reconcile(self._confirmation(session), schedule=schedule)
        return {"ok": True, **result.to_dict()}

    def _confirmation(self, session: dict) -> PaymentConfirmation:
        session_id = session["id"]
        metadata = session.get("metadata") or {}
        try:
            line_items = self.gateway.list_line_items(session_id)
        except stripe.StripeError as e:
            # Nothing is claimed yet; a non-2xx makes Stripe redeliver.
            log.error("Stripe list line items failed for %s: %s", session_id, e)
            raise FulfillmentError("billing_unavailable", 503, "Billing service unavailable.") from e
        return PaymentConfirmation(
            session_id=session_id,
            line_items=line_items,
            user_id=metadata.get("user_id") or session.get("client_reference_id"),
            metadata=metadata,
        )
