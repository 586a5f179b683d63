"""
VINVAULT: Report Provider Client

Thin requests wrapper around the upstream vehicle-history API:
  - GET  /getrecord/{type}/{vin}     → base64 report payload
  - GET  /checkplate/{state}/{plate} → text containing the VIN
  - POST /pdf                        → PDF rendering of an HTML report

One attempt per call with a bounded timeout. Callers own retries (there
are none inside the fulfillment core); a timeout is a ProviderError like
any other transient failure.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional
from urllib.parse import quote

import requests

from vinvault.core.errors import ProviderError, ProviderRejected
from vinvault.core.vin import extract_vin

log = logging.getLogger(__name__)

# Statuses where the provider looked at the VIN and said no.
REJECT_STATUSES = frozenset({400, 404, 422})


class ReportProvider:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        api_secret: str = "",
        timeout: float = 30.0,
        pdf_timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.pdf_timeout = pdf_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"API-KEY": api_key, "API-SECRET": api_secret})

    def _get(self, path: str, timeout: float) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, timeout=timeout)
        except requests.Timeout as e:
            raise ProviderError(f"timeout after {timeout}s: {path}") from e
        except requests.RequestException as e:
            raise ProviderError(f"transport error: {e}") from e
        if resp.status_code in REJECT_STATUSES:
            raise ProviderRejected(f"HTTP {resp.status_code}: {path}")
        if resp.status_code != 200:
            raise ProviderError(f"HTTP {resp.status_code}: {path}")
        return resp

    def fetch_report(self, vin: str, report_type: str) -> bytes:
        """Fetch a live report. Returns the raw (base64-decoded) payload."""
        resp = self._get(f"/getrecord/{quote(report_type)}/{quote(vin)}", self.timeout)
        text = resp.text.strip()
        if not text:
            raise ProviderRejected(f"empty report for {vin}")
        try:
            payload = base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(f"undecodable report payload for {vin}") from e
        log.info("Fetched live report: vin=%s type=%s bytes=%d", vin, report_type, len(payload))
        return payload

    def resolve_plate(self, state: str, plate: str) -> Optional[str]:
        """Look up the VIN registered to a plate. None when nothing matches."""
        try:
            resp = self._get(f"/checkplate/{quote(state)}/{quote(plate)}", self.timeout)
        except ProviderRejected:
            return None
        return extract_vin(resp.text)

    def render_pdf(self, html: str, vin: str, report_type: str) -> bytes:
        """Convert an HTML report to PDF through the provider."""
        form = {
            "base64_content": base64.b64encode(html.encode("utf-8")).decode("ascii"),
            "vin": vin,
            "report_type": report_type,
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/pdf",
                files={k: (None, v) for k, v in form.items()},
                timeout=self.pdf_timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"pdf conversion transport error: {e}") from e
        if resp.status_code != 200:
            raise ProviderError(f"pdf conversion HTTP {resp.status_code}")
        return resp.content
