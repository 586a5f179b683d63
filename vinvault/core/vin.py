"""
VINVAULT: VIN Utilities

Structural checks run before anything is billed: 17 characters from the
VIN alphabet (no I, O or Q) and a matching ISO 3779 check digit.
"""

from __future__ import annotations

import re
from typing import Optional

VIN_LENGTH = 17
VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_VIN_SEARCH_RE = re.compile(r"[A-HJ-NPR-Z0-9]{17}")

_TRANSLITERATION = {
    **{str(d): d for d in range(10)},
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}
_WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)


def normalize_vin(vin: Optional[str]) -> str:
    return (vin or "").strip().upper()


def check_digit(vin: str) -> str:
    """Expected 9th character for a 17-char VIN ('X' stands for 10)."""
    total = sum(_TRANSLITERATION[c] * w for c, w in zip(vin, _WEIGHTS))
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def is_valid_vin(vin: str) -> bool:
    if not VIN_RE.match(vin):
        return False
    return vin[8] == check_digit(vin)


def extract_vin(text: str) -> Optional[str]:
    """First VIN-shaped token in a plate lookup response."""
    m = _VIN_SEARCH_RE.search(text or "")
    return m.group(0) if m else None
