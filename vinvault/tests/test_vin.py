"""VIN structure and check digits."""

import pytest

from vinvault.core.vin import check_digit, extract_vin, is_valid_vin, normalize_vin
from vinvault.tests.conftest import VIN, VIN_2, VIN_3


@pytest.mark.parametrize("vin", [VIN, VIN_2, VIN_3])
def test_valid_vins(vin):
    assert is_valid_vin(vin)


def test_check_digit_x():
    assert check_digit(VIN_2) == "X"


@pytest.mark.parametrize("vin", [
    "",
    "1HGCM82633A00435",          # 16 chars
    "1HGCM82633A0043521",        # 18 chars
    "1HGCM82643A004352",         # wrong check digit
    "IHGCM82633A004352",         # I is not a VIN character
    "1hgcm82633a004352",         # not normalized
])
def test_invalid_vins(vin):
    assert not is_valid_vin(vin)


def test_normalize_vin():
    assert normalize_vin("  1hgcm82633a004352 ") == VIN
    assert normalize_vin(None) == ""


def test_extract_vin_from_lookup_text():
    assert extract_vin(f'{{"vin": "{VIN}", "state": "CA"}}') == VIN
    assert extract_vin("no match here") is None
