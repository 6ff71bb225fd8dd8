"""
Balances Module

This module recomputes group balances from the persisted ledger of expenses
and settlements.

Features:
    - Per-currency net balances (currencies are never mixed)
    - Soft-deleted expenses and settlements are ignored
    - Decimal arithmetic, rounded to each currency's precision
    - Outstanding balance checks for members leaving a group

Data Model:
    Input - expenses (list of dicts):
        - paidBy: string
        - amount: numeric string
        - currency: string
        - splits: list of {userId, amount}
        - deletedAt: string or None

    Input - settlements (list of dicts):
        - payerId: string
        - payeeId: string
        - amount: numeric string
        - currency: string
        - deletedAt: string or None

    Output - balances (dict keyed by currency, then user_id):
        - Decimal net balance
            - Positive = user is owed money
            - Negative = user owes money

Functions:
    compute_balances: Calculate per-currency balances from a ledger.
    get_group_balances: Fetch a group's ledger and calculate its balances.
    user_balance: Non-zero balances of one user.
    has_outstanding_balance: Whether a user has any non-zero balance.
    balances_to_dict: Convert balances to strings for API responses.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

from firebase_store import EXPENSES, SETTLEMENTS
from utils import amount_to_string, round_to_currency, to_decimal


def _is_deleted(doc: dict) -> bool:
    return doc.get("deletedAt") is not None


def _amount(value) -> Decimal:
    amount = to_decimal(value)
    return amount if amount is not None else Decimal(0)


def compute_balances(
    expenses: Iterable[dict],
    settlements: Iterable[dict],
    member_ids: Optional[Iterable[str]] = None
) -> dict:
    """
    Calculate per-currency net balances from expenses and settlements.

    For each expense:
        1. The payer is credited the expense amount
        2. Each split user is debited their split amount

    For each settlement:
        1. The payer is credited the settlement amount
        2. The payee is debited the settlement amount

    Args:
        expenses: Expense documents.
        settlements: Settlement documents.
        member_ids: Optional member IDs to report with a zero balance in
            every currency that appears in the ledger.

    Returns:
        dict: {currency: {user_id: Decimal}}

    Notes:
        - Soft-deleted documents do not contribute
        - Does NOT write to Firestore
    """
    totals = defaultdict(lambda: defaultdict(Decimal))

    for expense in expenses:
        if _is_deleted(expense):
            continue
        currency = expense["currency"]
        totals[currency][expense["paidBy"]] += _amount(expense.get("amount"))
        for split in expense.get("splits") or []:
            totals[currency][split["userId"]] -= _amount(split.get("amount"))

    for settlement in settlements:
        if _is_deleted(settlement):
            continue
        currency = settlement["currency"]
        amount = _amount(settlement.get("amount"))
        totals[currency][settlement["payerId"]] += amount
        totals[currency][settlement["payeeId"]] -= amount

    members = list(member_ids or [])
    balances = {}
    for currency, per_user in totals.items():
        for member_id in members:
            per_user.setdefault(member_id, Decimal(0))
        balances[currency] = {
            user_id: round_to_currency(value, currency)
            for user_id, value in per_user.items()
        }
    return balances


def get_group_balances(store, group_id: str, member_ids: Optional[Iterable[str]] = None) -> dict:
    """
    Recompute a group's balances from its non-deleted ledger.

    Args:
        store: Document store.
        group_id: The ID of the group.
        member_ids: Optional member IDs to include with zero balances.

    Returns:
        dict: {currency: {user_id: Decimal}}
    """
    expenses = store.query_group_documents(EXPENSES, group_id)
    settlements = store.query_group_documents(SETTLEMENTS, group_id)
    return compute_balances(expenses, settlements, member_ids)


def user_balance(balances: dict, user_id: str) -> dict:
    """Get a user's non-zero balances keyed by currency."""
    result = {}
    for currency, per_user in balances.items():
        value = per_user.get(user_id, Decimal(0))
        if value != 0:
            result[currency] = value
    return result


def has_outstanding_balance(balances: dict, user_id: str) -> bool:
    return bool(user_balance(balances, user_id))


def balances_to_dict(balances: dict) -> dict:
    """Convert Decimal balances to strings for JSON responses."""
    return {
        currency: {user_id: amount_to_string(value, currency) for user_id, value in per_user.items()}
        for currency, per_user in balances.items()
    }
