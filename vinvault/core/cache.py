"""
VINVAULT: Report Cache

One entry per (VIN, report type). A VIN that has been fetched once is never
billed again, so reads must never fail loudly (an unreadable entry is a
miss) and writes must never break a response that already succeeded
(failures are logged, not raised). Overwrites are last-write-wins.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from vinvault.core.vin import normalize_vin
from vinvault.db.store import KeyValueStore

log = logging.getLogger(__name__)


def cache_key(vin: str, report_type: str) -> str:
    return f"{normalize_vin(vin)}-{(report_type or '').strip().lower()}"


@dataclass
class ReportCacheEntry:
    vin: str
    report_type: str
    payload: bytes
    stored_at: str

    def to_json(self) -> bytes:
        return json.dumps({
            "vin": self.vin,
            "report_type": self.report_type,
            "payload_b64": base64.b64encode(self.payload).decode("ascii"),
            "stored_at": self.stored_at,
        }).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> ReportCacheEntry:
        data = json.loads(raw)
        return cls(
            vin=data["vin"],
            report_type=data["report_type"],
            payload=base64.b64decode(data["payload_b64"]),
            stored_at=data["stored_at"],
        )


class ReportCache:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, vin: str, report_type: str) -> Optional[ReportCacheEntry]:
        key = cache_key(vin, report_type)
        try:
            raw = self.store.get(key)
            return ReportCacheEntry.from_json(raw) if raw is not None else None
        except Exception as e:
            log.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None

    def contains(self, vin: str, report_type: str) -> bool:
        return self.get(vin, report_type) is not None

    def put(self, vin: str, report_type: str, payload: bytes) -> bool:
        """Write-through after a live fetch. Returns False if the write failed."""
        entry = ReportCacheEntry(
            vin=normalize_vin(vin),
            report_type=(report_type or "").strip().lower(),
            payload=payload,
            stored_at=datetime.now(timezone.utc).isoformat(),
        )
        key = cache_key(vin, report_type)
        try:
            self.store.put(key, entry.to_json())
        except Exception as e:
            log.warning("Cache write failed for %s: %s", key, e)
            return False
        log.info("Cached report %s (%d bytes)", key, len(payload))
        return True
