"""
VINVAULT: Content Decoder

The provider hands back one opaque blob per report: gzip-compressed HTML,
plain HTML or a PDF. decode() classifies it once into a closed set of
variants; everything downstream dispatches on the variant type instead of
sniffing bytes again.

Pure and deterministic: the same cached bytes always decode the same way.
"""

from __future__ import annotations

import gzip
import re
import zlib
from dataclasses import dataclass
from typing import Optional, Union

GZIP_MAGIC = b"\x1f\x8b"
PDF_MAGIC = b"%PDF-"
SNIFF_CHARS = 2048

_HTML_RE = re.compile(r"<!DOCTYPE html|<html[\s>]", re.IGNORECASE)


@dataclass(frozen=True)
class HtmlContent:
    text: str

    def to_bytes(self) -> bytes:
        return self.text.encode("utf-8")


@dataclass(frozen=True)
class PdfContent:
    data: bytes


@dataclass(frozen=True)
class UnknownContent:
    data: bytes
    error: Optional[str] = None


DecodedReport = Union[HtmlContent, PdfContent, UnknownContent]


def decode(payload: bytes) -> DecodedReport:
    """Classify a raw provider payload. Never raises."""
    if payload[:2] == GZIP_MAGIC:
        try:
            return HtmlContent(gzip.decompress(payload).decode("utf-8", errors="replace"))
        except (OSError, EOFError, zlib.error):
            return UnknownContent(payload, error="gunzip-failed")

    if payload[:5] == PDF_MAGIC:
        return PdfContent(payload)

    text = payload.decode("utf-8", errors="replace")
    if _HTML_RE.search(text[:SNIFF_CHARS]):
        return HtmlContent(text)

    return UnknownContent(payload)
