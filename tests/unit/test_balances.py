"""
tests/unit/test_balances.py - Balance recomputation from the ledger.

What this file proves:
  - Payer is credited, split users are debited; settlements move money back
  - Currencies are never mixed
  - Soft-deleted expenses and settlements do not count
  - Balances within a currency always sum to zero
"""

from __future__ import annotations

from decimal import Decimal

from balances import (
    balances_to_dict,
    compute_balances,
    get_group_balances,
    has_outstanding_balance,
    user_balance,
)


def _expense(paid_by, amount, currency, splits, deleted_at=None):
    return {
        "paidBy": paid_by,
        "amount": amount,
        "currency": currency,
        "splits": [{"userId": u, "amount": a} for u, a in splits],
        "deletedAt": deleted_at,
    }


def _settlement(payer, payee, amount, currency, deleted_at=None):
    return {"payerId": payer, "payeeId": payee, "amount": amount, "currency": currency, "deletedAt": deleted_at}


def test_single_expense_equal_split():
    balances = compute_balances([_expense("u1", "100.00", "USD", [("u1", "50.00"), ("u2", "50.00")])], [])
    assert balances == {"USD": {"u1": Decimal("50.00"), "u2": Decimal("-50.00")}}


def test_settlement_clears_debt():
    expenses = [_expense("u1", "100.00", "USD", [("u1", "50.00"), ("u2", "50.00")])]
    settlements = [_settlement("u2", "u1", "50.00", "USD")]
    balances = compute_balances(expenses, settlements)
    assert balances["USD"] == {"u1": Decimal("0.00"), "u2": Decimal("0.00")}
    assert not has_outstanding_balance(balances, "u2")


def test_currencies_kept_separate():
    expenses = [
        _expense("u1", "100.00", "USD", [("u2", "100.00")]),
        _expense("u2", "3000", "JPY", [("u1", "3000")]),
    ]
    balances = compute_balances(expenses, [])
    assert balances["USD"] == {"u1": Decimal("100.00"), "u2": Decimal("-100.00")}
    assert balances["JPY"] == {"u1": Decimal("-3000"), "u2": Decimal("3000")}


def test_deleted_documents_ignored():
    expenses = [
        _expense("u1", "100.00", "USD", [("u2", "100.00")]),
        _expense("u2", "40.00", "USD", [("u1", "40.00")], deleted_at="2024-02-01T00:00:00+00:00"),
    ]
    settlements = [_settlement("u2", "u1", "100.00", "USD", deleted_at="2024-02-02T00:00:00+00:00")]
    balances = compute_balances(expenses, settlements)
    assert balances["USD"]["u1"] == Decimal("100.00")


def test_balances_sum_to_zero_per_currency():
    expenses = [
        _expense("u1", "100.00", "USD", [("u1", "33.34"), ("u2", "33.33"), ("u3", "33.33")]),
        _expense("u3", "12.50", "USD", [("u1", "6.25"), ("u2", "6.25")]),
    ]
    balances = compute_balances(expenses, [_settlement("u2", "u1", "10.00", "USD")])
    assert sum(balances["USD"].values()) == 0


def test_members_reported_with_zero():
    balances = compute_balances([_expense("u1", "10", "USD", [("u2", "10")])], [], member_ids=["u1", "u2", "u3"])
    assert balances["USD"]["u3"] == Decimal("0.00")


def test_results_rounded_to_currency_digits():
    balances = compute_balances([_expense("u1", "1.000", "KWD", [("u2", "1.000")])], [])
    assert balances["KWD"]["u1"].as_tuple().exponent == -3


def test_user_balance_only_non_zero():
    balances = {"USD": {"u1": Decimal("0.00")}, "EUR": {"u1": Decimal("-5.00")}}
    assert user_balance(balances, "u1") == {"EUR": Decimal("-5.00")}
    assert has_outstanding_balance(balances, "u1")
    assert user_balance(balances, "unknown") == {}


def test_balances_to_dict_uses_strings():
    balances = {"USD": {"u1": Decimal("-0.00"), "u2": Decimal("12.5")}}
    assert balances_to_dict(balances) == {"USD": {"u1": "0.00", "u2": "12.50"}}


def test_get_group_balances_reads_only_that_group(store):
    store.create_document("expenses", {**_expense("u1", "20.00", "USD", [("u2", "20.00")]), "groupId": "g1"})
    store.create_document("expenses", {**_expense("u2", "99.00", "USD", [("u1", "99.00")]), "groupId": "g2"})
    store.create_document("settlements", {**_settlement("u2", "u1", "5.00", "USD"), "groupId": "g1"})

    balances = get_group_balances(store, "g1")
    assert balances == {"USD": {"u1": Decimal("15.00"), "u2": Decimal("-15.00")}}
