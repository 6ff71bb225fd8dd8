"""
tests/unit/test_settlement_validation.py - Settlement payload validation.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from errors import InvalidAmount, InvalidCurrency, InvalidRequest, PrecisionError, SelfSettlement
from validation import ValidatedSettlement, validate_settlement


def test_valid_settlement():
    result = validate_settlement("25.50", "eur", "u1", "u2")
    assert result == ValidatedSettlement(amount=Decimal("25.50"), currency="EUR", payer_id="u1", payee_id="u2")


def test_self_settlement_rejected():
    with pytest.raises(SelfSettlement) as exc_info:
        validate_settlement("10", "USD", "u1", "u1")
    assert exc_info.value.code == "SELF_SETTLEMENT"


def test_self_settlement_ignores_surrounding_whitespace():
    with pytest.raises(SelfSettlement):
        validate_settlement("10", "USD", "u1", " u1 ")


@pytest.mark.parametrize("amount", [0, "-1", None, "ten"])
def test_amount_must_be_positive(amount):
    with pytest.raises(InvalidAmount):
        validate_settlement(amount, "USD", "u1", "u2")


def test_precision_follows_currency():
    with pytest.raises(PrecisionError):
        validate_settlement("100.5", "JPY", "u1", "u2")
    assert validate_settlement("100.123", "BHD", "u1", "u2").amount == Decimal("100.123")


def test_unknown_currency():
    with pytest.raises(InvalidCurrency):
        validate_settlement("10", "NOPE", "u1", "u2")


@pytest.mark.parametrize("payer, payee", [("", "u2"), ("u1", None), ("  ", "u2")])
def test_parties_required(payer, payee):
    with pytest.raises(InvalidRequest):
        validate_settlement("10", "USD", payer, payee)
