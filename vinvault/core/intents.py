"""
VINVAULT: Purchase Intents

What a checkout session was bought for. Saved when the session is created,
read back by the reconciler (to credit or prefetch) and by the entitlement
gate (a session that bought credits or a specific report is not a
general-purpose receipt).
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Optional

from vinvault.db.store import KeyValueStore

log = logging.getLogger(__name__)

INTENT_KINDS = frozenset({
    "buy_report",
    "buy_credit_single",
    "buy_credits_bundle",
})


@dataclass
class PurchaseIntent:
    session_id: str
    intent_kind: str = "buy_credit_single"
    user_id: Optional[str] = None
    vin: Optional[str] = None
    report_type: Optional[str] = None
    price_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.intent_kind not in INTENT_KINDS:
            raise ValueError(f"Unknown intent kind: {self.intent_kind}")

    @property
    def buys_report(self) -> bool:
        return self.intent_kind == "buy_report" and bool(self.vin)

    @property
    def buys_user_credits(self) -> bool:
        return self.intent_kind != "buy_report" and bool(self.user_id)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_metadata(self) -> dict:
        """Flat string map for processor-side session metadata."""
        meta = {"intent": self.intent_kind}
        if self.user_id:
            meta["user_id"] = self.user_id
        if self.vin:
            meta["vin"] = self.vin
        if self.report_type:
            meta["report_type"] = self.report_type
        return meta

    @classmethod
    def from_dict(cls, data: dict) -> PurchaseIntent:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_metadata(cls, session_id: str, metadata: dict, user_id: Optional[str] = None) -> PurchaseIntent:
        kind = metadata.get("intent") or ("buy_report" if metadata.get("vin") else "buy_credit_single")
        if kind not in INTENT_KINDS:
            kind = "buy_credit_single"
        return cls(
            session_id=session_id,
            intent_kind=kind,
            user_id=metadata.get("user_id") or user_id,
            vin=metadata.get("vin"),
            report_type=metadata.get("report_type"),
        )


class IntentStore:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, intent: PurchaseIntent) -> None:
        self.store.put(intent.session_id, json.dumps(intent.to_dict()).encode("utf-8"))

    def get(self, session_id: str) -> Optional[PurchaseIntent]:
        raw = self.store.get(session_id)
        if raw is None:
            return None
        try:
            return PurchaseIntent.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            log.warning("Unreadable purchase intent %s: %s", session_id, e)
            return None
