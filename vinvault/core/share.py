"""
VINVAULT: Share Links

Time-limited tokens that open an already-cached report. Issuing or
resolving a link never reaches the provider and never bills anyone.
Expired and unknown tokens look the same to the caller.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from vinvault.core.cache import ReportCache, ReportCacheEntry
from vinvault.core.errors import FulfillmentError
from vinvault.core.vin import normalize_vin
from vinvault.db.store import KeyValueStore

log = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 24 * 60 * 60


@dataclass
class ShareToken:
    token: str
    vin: str
    report_type: str
    expires_at: float               # epoch seconds

    @property
    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> ShareToken:
        return cls(**json.loads(raw))


class ShareLinkIssuer:
    def __init__(
        self,
        store: KeyValueStore,
        cache: ReportCache,
        ttl_sec: int = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache = cache
        self.ttl_sec = ttl_sec
        self.clock = clock

    def issue(self, vin: str, report_type: str) -> ShareToken:
        vin = normalize_vin(vin)
        report_type = (report_type or "").strip().lower()
        if not self.cache.contains(vin, report_type):
            raise FulfillmentError.not_found("Report not cached yet. Open it once first.")
        token = ShareToken(
            token=secrets.token_urlsafe(24),
            vin=vin,
            report_type=report_type,
            expires_at=self.clock() + self.ttl_sec,
        )
        self.store.put(token.token, token.to_json())
        log.info("Share link issued: vin=%s type=%s expires=%s", vin, report_type, token.expires_at_iso)
        return token

    def lookup(self, token: str) -> Optional[ShareToken]:
        raw = self.store.get(token)
        if raw is None:
            return None
        try:
            meta = ShareToken.from_json(raw)
            expired = meta.expires_at <= self.clock()
        except (ValueError, TypeError, KeyError) as e:
            log.warning("Unreadable share token %s...: %s", token[:8], e)
            return None
        return None if expired else meta

    def resolve(self, token: str) -> ReportCacheEntry:
        meta = self.lookup(token)
        if meta is None:
            raise FulfillmentError.not_found("Link expired or invalid.")
        entry = self.cache.get(meta.vin, meta.report_type)
        if entry is None:
            raise FulfillmentError.not_found("Report not found in cache.")
        return entry

    def purge_expired(self) -> int:
        now = self.clock()
        removed = 0
        for key, raw in self.store.items():
            try:
                expired = ShareToken.from_json(raw).expires_at <= now
            except (ValueError, TypeError, KeyError):
                expired = True
            if expired and self.store.delete(key):
                removed += 1
        if removed:
            log.info("Purged %d expired share tokens", removed)
        return removed
