"""
tests/unit/test_debts.py - Greedy debt simplification.
"""

from __future__ import annotations

from decimal import Decimal

from debts import simplify_debts


def test_two_people():
    payments = simplify_debts({"USD": {"u1": Decimal("50.00"), "u2": Decimal("-50.00")}})
    assert payments == [{"currency": "USD", "from": "u2", "to": "u1", "amount": Decimal("50.00")}]


def test_largest_debtor_pays_largest_creditor_first():
    payments = simplify_debts({"USD": {
        "a": Decimal("70.00"),
        "b": Decimal("30.00"),
        "c": Decimal("-60.00"),
        "d": Decimal("-40.00"),
    }})
    assert payments[0] == {"currency": "USD", "from": "c", "to": "a", "amount": Decimal("60.00")}
    assert len(payments) == 3


def test_payments_balance_every_user():
    balances = {
        "a": Decimal("25.10"),
        "b": Decimal("-10.05"),
        "c": Decimal("-15.05"),
        "d": Decimal("0.00"),
    }
    payments = simplify_debts({"EUR": balances})

    net = {user: Decimal(0) for user in balances}
    for payment in payments:
        net[payment["from"]] += payment["amount"]
        net[payment["to"]] -= payment["amount"]
    assert all(net[user] + balances[user] == 0 for user in balances)


def test_currencies_simplified_independently():
    payments = simplify_debts({
        "USD": {"u1": Decimal("10.00"), "u2": Decimal("-10.00")},
        "JPY": {"u1": Decimal("-500"), "u2": Decimal("500")},
    })
    assert [(p["currency"], p["from"], p["to"]) for p in payments] == [("JPY", "u1", "u2"), ("USD", "u2", "u1")]


def test_amounts_below_minimum_unit_ignored():
    assert simplify_debts({"USD": {"u1": Decimal("0.004"), "u2": Decimal("-0.004")}}) == []
    assert simplify_debts({}) == []
