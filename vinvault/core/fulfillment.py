"""
VINVAULT: Entitlement Gate

Decides whether a report request may trigger a paid upstream fetch and
runs it:

  ResolvingVin → CacheCheck → CacheHit (serve, no billing)
                            → CacheMiss → Authorizing → AuthDenied
                                                      → Authorized → Fetching → FetchOk (cache + serve)
                                                                              → FetchFailed (compensate, error)

Rules that keep money straight:
  - VIN validation is pure and runs before any side effect.
  - A cache hit is never billed, whoever asks.
  - Credit path: one atomic spend (balance + ledger entry) or a 402.
  - Receipt path: verified paid, then claimed with a single check-and-set,
    so a receipt authorizes at most one fetch however many requests race.
    A session that bought a named report only opens that report; one that
    bought account credits is not a receipt at all.
  - If the fetch fails after entitlement was taken, the credit is refunded
    or the receipt released before the error leaves this module.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from vinvault.core.cache import ReportCache
from vinvault.core.decoder import DecodedReport, decode
from vinvault.core.errors import (
    FulfillmentError,
    InsufficientCredits,
    ProviderError,
    ProviderRejected,
    ReceiptCheckError,
)
from vinvault.core.intents import IntentStore
from vinvault.core.payments import PaymentVerifier
from vinvault.core.provider import ReportProvider
from vinvault.core.receipts import ReceiptLedger
from vinvault.core.vin import is_valid_vin, normalize_vin
from vinvault.db.credits import CreditLedger

log = logging.getLogger(__name__)

DEFAULT_REPORT_TYPE = "carfax"


class GateState(str, enum.Enum):
    RESOLVING_VIN = "ResolvingVin"
    CACHE_CHECK = "CacheCheck"
    CACHE_HIT = "CacheHit"
    CACHE_MISS = "CacheMiss"
    AUTHORIZING = "Authorizing"
    AUTH_DENIED = "AuthDenied"
    AUTHORIZED = "Authorized"
    FETCHING = "Fetching"
    FETCH_OK = "FetchOk"
    FETCH_FAILED = "FetchFailed"


@dataclass
class FulfillmentRequest:
    vin: Optional[str] = None
    state: Optional[str] = None
    plate: Optional[str] = None
    report_type: str = DEFAULT_REPORT_TYPE
    allow_live: bool = True
    receipt_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class Entitlement:
    """What was taken to pay for a live fetch, so it can be given back."""
    kind: str                       # "credit" | "receipt"
    user_id: Optional[str] = None
    receipt_id: Optional[str] = None
    balance_after: Optional[int] = None


@dataclass
class Fulfillment:
    vin: str
    report_type: str
    content: DecodedReport
    source: str                     # "cache" | "live"
    entitlement: Optional[Entitlement] = None
    cached: bool = True

    @property
    def billed(self) -> bool:
        return self.entitlement is not None


class EntitlementGate:
    def __init__(
        self,
        cache: ReportCache,
        credits: CreditLedger,
        receipts: ReceiptLedger,
        verifier: PaymentVerifier,
        provider: ReportProvider,
        intents: Optional[IntentStore] = None,
        vin_validator: Callable[[str], bool] = is_valid_vin,
    ):
        self.cache = cache
        self.credits = credits
        self.receipts = receipts
        self.verifier = verifier
        self.provider = provider
        self.intents = intents
        self.vin_validator = vin_validator

    # ── Public entry points ──────────────────────────────────────────

    def fulfill(self, req: FulfillmentRequest) -> Fulfillment:
        vin = self._resolve_vin(req)
        report_type = (req.report_type or DEFAULT_REPORT_TYPE).strip().lower()

        self._transition(vin, GateState.CACHE_CHECK)
        entry = self.cache.get(vin, report_type)
        if entry is not None:
            self._transition(vin, GateState.CACHE_HIT)
            return Fulfillment(vin, report_type, decode(entry.payload), source="cache")
        self._transition(vin, GateState.CACHE_MISS)

        if not req.allow_live:
            raise FulfillmentError.not_found("No cached or archive report found.")

        self._transition(vin, GateState.AUTHORIZING)
        try:
            entitlement = self._authorize(req, vin, report_type)
        except FulfillmentError as e:
            self._transition(vin, GateState.AUTH_DENIED, e.code)
            if e.code == "receipt_used":
                # The receipt may have just been spent caching this very report.
                entry = self.cache.get(vin, report_type)
                if entry is not None:
                    self._transition(vin, GateState.CACHE_HIT, "after receipt claim")
                    return Fulfillment(vin, report_type, decode(entry.payload), source="cache")
            raise
        self._transition(vin, GateState.AUTHORIZED, entitlement.kind)

        return self._fetch(vin, report_type, entitlement)

    def fulfill_prepaid(self, vin: str, report_type: str, receipt_id: str) -> Optional[Fulfillment]:
        """Fetch and cache a report already known to be paid for by receipt_id.

        Used for background fulfilment of confirmed report purchases. The
        buyer may open the report with the same receipt while this runs, so
        nothing is claimed up front: the receipt is marked used only once the
        report is cached, after which the buyer is served from the cache.
        A failed fetch leaves the receipt untouched. Returns None when the
        report was already cached.
        """
        vin = normalize_vin(vin)
        report_type = (report_type or DEFAULT_REPORT_TYPE).strip().lower()
        if not self.vin_validator(vin):
            log.warning("Prepaid fulfilment skipped, invalid VIN: %s", vin)
            return None
        if self.cache.contains(vin, report_type):
            self.receipts.try_consume(receipt_id)
            return None

        self._transition(vin, GateState.FETCHING, "prepaid")
        payload = self.provider.fetch_report(vin, report_type)
        self._transition(vin, GateState.FETCH_OK, "prepaid")
        cached = self.cache.put(vin, report_type, payload)
        if cached:
            self.receipts.try_consume(receipt_id)
        return Fulfillment(
            vin, report_type, decode(payload),
            source="live", entitlement=Entitlement(kind="receipt", receipt_id=receipt_id), cached=cached,
        )

    # ── States ───────────────────────────────────────────────────────

    def _transition(self, vin: str, state: GateState, note: str = "") -> None:
        log.debug("gate vin=%s → %s %s", vin, state.value, note)

    def _resolve_vin(self, req: FulfillmentRequest) -> str:
        vin = normalize_vin(req.vin)
        if not vin and req.state and req.plate:
            self._transition("-", GateState.RESOLVING_VIN, f"{req.state}/{req.plate}")
            try:
                resolved = self.provider.resolve_plate(req.state.strip().upper(), req.plate.strip().upper())
            except ProviderError as e:
                log.warning("Plate lookup failed for %s/%s: %s", req.state, req.plate, e)
                raise FulfillmentError.provider_error(
                    "Plate lookup is unavailable right now. Try again or enter the VIN."
                ) from e
            vin = normalize_vin(resolved)
            if not vin:
                raise FulfillmentError.invalid_request("No VIN found for that plate and state.")
        if not vin:
            raise FulfillmentError.invalid_request()
        if not self.vin_validator(vin):
            raise FulfillmentError.invalid_vin()
        return vin

    def _authorize(self, req: FulfillmentRequest, vin: str, report_type: str) -> Entitlement:
        if req.receipt_id:
            return self._authorize_receipt(req.receipt_id, vin, report_type)
        if req.user_id:
            return self._authorize_credit(req.user_id, vin)
        raise FulfillmentError.purchase_required()

    def _authorize_credit(self, user_id: str, vin: str) -> Entitlement:
        try:
            balance = self.credits.spend(user_id, ref=vin)
        except InsufficientCredits:
            raise FulfillmentError.insufficient_credits()
        return Entitlement(kind="credit", user_id=user_id, balance_after=balance)

    def _authorize_receipt(self, receipt_id: str, vin: str, report_type: str) -> Entitlement:
        if self.receipts.is_consumed(receipt_id):
            raise FulfillmentError.receipt_used()
        self._check_receipt_purpose(receipt_id, vin, report_type)
        try:
            status = self.verifier.verify_receipt(receipt_id)
        except ReceiptCheckError:
            raise FulfillmentError.receipt_invalid()
        if not status.paid:
            log.info("Receipt not paid: %s status=%s", receipt_id, status.status)
            raise FulfillmentError.payment_incomplete()
        # Authoritative claim; concurrent duplicates lose here.
        if not self.receipts.try_consume(receipt_id):
            raise FulfillmentError.receipt_used()
        return Entitlement(kind="receipt", receipt_id=receipt_id)

    def _check_receipt_purpose(self, receipt_id: str, vin: str, report_type: str) -> None:
        """A checkout bought either one named report or credits, not a free choice of report."""
        intent = self.intents.get(receipt_id) if self.intents is not None else None
        if intent is not None and intent.buys_report:
            bought = (normalize_vin(intent.vin), (intent.report_type or DEFAULT_REPORT_TYPE).strip().lower())
            if bought != (vin, report_type):
                log.info("Receipt %s bought %s, refused for %s/%s", receipt_id, bought, vin, report_type)
                raise FulfillmentError.receipt_mismatch()
            return
        if (intent is not None and intent.buys_user_credits) or self.credits.credited_user(receipt_id):
            log.info("Receipt %s paid for account credits, refused as one-time receipt", receipt_id)
            raise FulfillmentError.receipt_credited()

    def _fetch(self, vin: str, report_type: str, entitlement: Entitlement) -> Fulfillment:
        self._transition(vin, GateState.FETCHING)
        try:
            payload = self.provider.fetch_report(vin, report_type)
        except Exception as e:
            self._transition(vin, GateState.FETCH_FAILED, type(e).__name__)
            log.warning("Live fetch failed vin=%s type=%s: %s", vin, report_type, e)
            self._compensate(entitlement, vin)
            if isinstance(e, ProviderRejected):
                raise FulfillmentError.provider_rejected() from e
            if isinstance(e, ProviderError):
                raise FulfillmentError.provider_error() from e
            raise

        self._transition(vin, GateState.FETCH_OK)
        cached = self.cache.put(vin, report_type, payload)
        return Fulfillment(
            vin, report_type, decode(payload),
            source="live", entitlement=entitlement, cached=cached,
        )

    def _compensate(self, entitlement: Entitlement, vin: str) -> None:
        """Give back what _authorize took. Failure here is escalated, not swallowed."""
        try:
            if entitlement.kind == "credit":
                entitlement.balance_after = self.credits.refund(entitlement.user_id, ref=vin)
            elif entitlement.kind == "receipt":
                self.receipts.release(entitlement.receipt_id)
        except Exception:
            log.critical(
                "COMPENSATION FAILED kind=%s user=%s receipt=%s vin=%s",
                entitlement.kind, entitlement.user_id, entitlement.receipt_id, vin,
                exc_info=True,
            )
            raise
