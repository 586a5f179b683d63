"""
VINVAULT: Configuration

Everything is read from the environment once at import time.

Set before deploying:
  VINVAULT_DB_PATH=/var/lib/vinvault/vinvault.db
  VINVAULT_JWT_SECRET=...
  STRIPE_MODE=test|live, STRIPE_SECRET_KEY=sk_..., STRIPE_WEBHOOK_SECRET=whsec_...
  STRIPE_PRICE_SINGLE=price_..., STRIPE_PRICE_10PACK=price_...
  PROVIDER_API_KEY=..., PROVIDER_API_SECRET=...
"""

from __future__ import annotations

import os
from pathlib import Path

# ── Storage ──────────────────────────────────────────────────────────

DB_PATH = os.getenv(
    "VINVAULT_DB_PATH",
    str(Path.cwd() / "data" / "vinvault.db"),
)

# ── Site / auth ──────────────────────────────────────────────────────

SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")
JWT_SECRET = os.getenv("VINVAULT_JWT_SECRET", "vinvault-dev-secret-change-in-production")
JWT_ALGORITHM = "HS256"
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Stripe (mode-aware key selection) ────────────────────────────────

STRIPE_MODE = (os.getenv("STRIPE_MODE") or "test").lower()
if STRIPE_MODE == "live":
    STRIPE_SECRET_KEY = os.getenv("STRIPE_LIVE_SECRET_KEY") or os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_LIVE_WEBHOOK_SECRET") or os.getenv("STRIPE_WEBHOOK_SECRET", "")
else:
    STRIPE_SECRET_KEY = os.getenv("STRIPE_TEST_SECRET_KEY") or os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_TEST_WEBHOOK_SECRET") or os.getenv("STRIPE_WEBHOOK_SECRET", "")

STRIPE_PRICE_SINGLE = os.getenv("STRIPE_PRICE_SINGLE", "")     # 1 credit
STRIPE_PRICE_10PACK = os.getenv("STRIPE_PRICE_10PACK", "")     # 10 credits
STRIPE_PRICE_REPORT = os.getenv("STRIPE_PRICE_REPORT", "") or STRIPE_PRICE_SINGLE

# ── PayPal (capture receipts) ────────────────────────────────────────

PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID", "")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET", "")
PAYPAL_API_BASE = os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com")

# ── Report provider ──────────────────────────────────────────────────

PROVIDER_BASE_URL = os.getenv("PROVIDER_BASE_URL", "https://connect.carsimulcast.com")
PROVIDER_API_KEY = os.getenv("PROVIDER_API_KEY") or os.getenv("API_KEY", "")
PROVIDER_API_SECRET = os.getenv("PROVIDER_API_SECRET") or os.getenv("API_SECRET", "")
PROVIDER_TIMEOUT_SEC = float(os.getenv("PROVIDER_TIMEOUT_SEC", "30"))
PROVIDER_PDF_TIMEOUT_SEC = float(os.getenv("PROVIDER_PDF_TIMEOUT_SEC", "60"))

# ── Share links ──────────────────────────────────────────────────────

SHARE_TTL_HOURS = int(os.getenv("SHARE_TTL_HOURS", "24"))
SHARE_PURGE_INTERVAL_SEC = int(os.getenv("SHARE_PURGE_INTERVAL_SEC", "3600"))
