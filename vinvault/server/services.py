"""
VINVAULT: Service Wiring

Builds the object graph the API runs on. Tests construct Services directly
with fakes; production calls build_services() once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vinvault import config
from vinvault.core.cache import ReportCache
from vinvault.core.fulfillment import EntitlementGate
from vinvault.core.payments import PayPalCaptureVerifier, ReceiptVerifier, StripeSessionVerifier
from vinvault.core.provider import ReportProvider
from vinvault.core.receipts import ReceiptLedger
from vinvault.core.intents import IntentStore
from vinvault.core.reconcile import WebhookReconciler
from vinvault.core.share import ShareLinkIssuer
from vinvault.db.credits import CreditLedger
from vinvault.db.store import SqliteStore
from vinvault.server.billing import CheckoutService, StripeGateway
from vinvault.server.pricing import build_price_map


@dataclass
class Services:
    cache: ReportCache
    credits: CreditLedger
    receipts: ReceiptLedger
    provider: ReportProvider
    gate: EntitlementGate
    shares: ShareLinkIssuer
    reconciler: WebhookReconciler
    checkout: CheckoutService
    jwt_secret: str = config.JWT_SECRET
    site_url: str = config.SITE_URL


def build_services(db_path: Optional[str | Path] = None) -> Services:
    db_path = db_path or config.DB_PATH

    cache = ReportCache(SqliteStore(db_path, "report_cache"))
    credits = CreditLedger(db_path)
    receipts = ReceiptLedger(SqliteStore(db_path, "consumed_receipts"))
    intents = IntentStore(SqliteStore(db_path, "purchase_intents"))

    provider = ReportProvider(
        config.PROVIDER_BASE_URL,
        api_key=config.PROVIDER_API_KEY,
        api_secret=config.PROVIDER_API_SECRET,
        timeout=config.PROVIDER_TIMEOUT_SEC,
        pdf_timeout=config.PROVIDER_PDF_TIMEOUT_SEC,
    )
    verifier = ReceiptVerifier([
        StripeSessionVerifier(config.STRIPE_SECRET_KEY),
        PayPalCaptureVerifier(
            config.PAYPAL_CLIENT_ID,
            config.PAYPAL_CLIENT_SECRET,
            base_url=config.PAYPAL_API_BASE,
        ),
    ])
    gate = EntitlementGate(cache, credits, receipts, verifier, provider, intents=intents)

    shares = ShareLinkIssuer(
        SqliteStore(db_path, "share_tokens"),
        cache,
        ttl_sec=config.SHARE_TTL_HOURS * 3600,
    )
    reconciler = WebhookReconciler(credits, intents, gate, build_price_map())
    checkout = CheckoutService(
        StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET, config.SITE_URL),
        cache,
        intents,
        reconciler,
        packs={
            "single": config.STRIPE_PRICE_SINGLE,
            "10pack": config.STRIPE_PRICE_10PACK,
            "report": config.STRIPE_PRICE_REPORT,
        },
    )
    return Services(
        cache=cache,
        credits=credits,
        receipts=receipts,
        provider=provider,
        gate=gate,
        shares=shares,
        reconciler=reconciler,
        checkout=checkout,
    )
