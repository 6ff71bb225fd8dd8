"""
tests/unit/test_utils.py - Amount conversion, formatting and timestamps.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from errors import InvalidRequest
from utils import (
    amount_to_string,
    format_currency,
    normalize_timestamp,
    round_to_currency,
    to_decimal,
    validate_non_empty_string,
)


@pytest.mark.parametrize("value, expected", [
    ("12.50", Decimal("12.50")),
    (0.1, Decimal("0.1")),
    (7, Decimal("7")),
    (" 3 ", Decimal("3")),
])
def test_to_decimal(value, expected):
    assert to_decimal(value) == expected


@pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity", [1]])
def test_to_decimal_rejects_non_numbers(value):
    assert to_decimal(value) is None


def test_rounding_and_strings():
    assert round_to_currency(Decimal("10.005"), "USD") == Decimal("10.01")
    assert round_to_currency(Decimal("99.5"), "JPY") == Decimal("100")
    assert amount_to_string(Decimal("-0.001"), "USD") == "0.00"
    assert amount_to_string(Decimal("5"), "BHD") == "5.000"


def test_format_currency():
    assert format_currency(Decimal("1234.5"), "usd") == "1,234.50 USD"
    assert format_currency(Decimal("-1000"), "JPY") == "-1,000 JPY"


def test_validate_non_empty_string():
    assert validate_non_empty_string("  Dinner ", "description") == "Dinner"
    with pytest.raises(InvalidRequest):
        validate_non_empty_string("   ", "description")
    with pytest.raises(InvalidRequest):
        validate_non_empty_string("abc", "description", max_length=2)


@pytest.mark.parametrize("value, expected", [
    ("2024-03-01", "2024-03-01T00:00:00+00:00"),
    ("2024-03-01T10:30:00Z", "2024-03-01T10:30:00+00:00"),
    ("2024-03-01T12:00:00+02:00", "2024-03-01T10:00:00+00:00"),
    ("2024-03-01T10:30:00", "2024-03-01T10:30:00+00:00"),
])
def test_normalize_timestamp(value, expected):
    assert normalize_timestamp(value, "date") == expected


@pytest.mark.parametrize("value", ["yesterday", "", None, 20240301])
def test_normalize_timestamp_rejects(value):
    with pytest.raises(InvalidRequest):
        normalize_timestamp(value, "date")
