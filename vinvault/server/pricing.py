"""
VINVAULT: Pricing

Single source of truth for what each price buys. Import from here; never
hardcode credit counts elsewhere.
"""

from __future__ import annotations

from typing import Optional

from vinvault import config

CREDIT_PACKS: dict[str, dict] = {
    "single": {"credits": 1, "intent": "buy_credit_single", "label": "1 report"},
    "10pack": {"credits": 10, "intent": "buy_credits_bundle", "label": "10 reports"},
}

# Names the frontend may send instead of a raw price id.
PRICE_ALIASES: dict[str, str] = {
    "single": "single",
    "STRIPE_PRICE_SINGLE": "single",
    "bundle": "10pack",
    "10pack": "10pack",
    "STRIPE_PRICE_10PACK": "10pack",
}


def build_price_map(
    single_price: Optional[str] = None,
    bundle_price: Optional[str] = None,
    report_price: Optional[str] = None,
) -> dict[str, int]:
    """Stripe price_id → credits granted per unit.

    Empty when no price ids are configured (dev mode); the reconciler then
    falls back to its baseline grant.
    """
    single_price = config.STRIPE_PRICE_SINGLE if single_price is None else single_price
    bundle_price = config.STRIPE_PRICE_10PACK if bundle_price is None else bundle_price
    report_price = config.STRIPE_PRICE_REPORT if report_price is None else report_price

    price_map: dict[str, int] = {}
    if report_price:
        price_map[report_price] = 1
    if single_price:
        price_map[single_price] = CREDIT_PACKS["single"]["credits"]
    if bundle_price:
        price_map[bundle_price] = CREDIT_PACKS["10pack"]["credits"]
    return price_map


def resolve_price(price_id: Optional[str], packs: dict[str, str]) -> tuple[str, str]:
    """Map a requested price (alias or raw id) to (stripe_price_id, pack name).

    packs maps pack name → configured Stripe price id. Anything unknown
    falls back to the single pack.
    """
    requested = (price_id or "").strip()
    pack = PRICE_ALIASES.get(requested)
    if pack is None:
        pack = next((name for name, pid in packs.items() if pid and pid == requested), "single")
    return packs.get(pack, ""), pack


def intent_for(pack: str, vin: Optional[str]) -> str:
    if vin:
        return "buy_report"
    return CREDIT_PACKS.get(pack, CREDIT_PACKS["single"])["intent"]
