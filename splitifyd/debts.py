"""
Debts Module

This module turns per-currency net balances into suggested payments.

Features:
    - Greedy matching of the largest debtor with the largest creditor
    - One independent pass per currency
    - Amounts below one minimum currency unit are ignored

Data Model:
    Input - balances (dict keyed by currency, then user_id):
        - Decimal net balance (positive = owed money, negative = owes money)

    Output - list of suggested payments:
        - currency: string
        - from: string (debtor who pays)
        - to: string (creditor who receives)
        - amount: Decimal

Functions:
    simplify_debts: Convert balances into a short list of payments.
"""

from decimal import Decimal

from currencies import get_currency_rule
from utils import to_decimal


def _simplify_currency(currency: str, balances: dict) -> list[dict]:
    epsilon = get_currency_rule(currency).minimum_unit

    # Amounts stored as positive for both sides
    debtors = []
    creditors = []
    for user_id, balance in balances.items():
        net = to_decimal(balance) or Decimal(0)
        if net <= -epsilon:
            debtors.append([user_id, -net])
        elif net >= epsilon:
            creditors.append([user_id, net])

    # Largest first; user ID keeps equal amounts in a stable order
    debtors.sort(key=lambda item: (-item[1], item[0]))
    creditors.sort(key=lambda item: (-item[1], item[0]))

    payments = []
    debtor_idx = 0
    creditor_idx = 0
    while debtor_idx < len(debtors) and creditor_idx < len(creditors):
        debtor_id, debt = debtors[debtor_idx]
        creditor_id, credit = creditors[creditor_idx]

        amount = min(debt, credit)
        if amount >= epsilon:
            payments.append({"currency": currency, "from": debtor_id, "to": creditor_id, "amount": amount})

        debtors[debtor_idx][1] = debt - amount
        creditors[creditor_idx][1] = credit - amount

        if debtors[debtor_idx][1] < epsilon:
            debtor_idx += 1
        if creditors[creditor_idx][1] < epsilon:
            creditor_idx += 1

    return payments


def simplify_debts(balances_by_currency: dict) -> list[dict]:
    """
    Convert per-currency balances into suggested payments.

    Uses a greedy algorithm per currency:
        1. Split users into debtors (balance < 0) and creditors (balance > 0)
        2. Sort both by size, largest first
        3. Settle the smaller of the largest debt and largest credit
        4. Repeat until one side is exhausted

    Args:
        balances_by_currency: {currency: {user_id: Decimal}}

    Returns:
        list[dict]: {currency, from, to, amount} payments, grouped by
        currency in sorted currency order.

    Notes:
        - Does NOT modify input balances
        - Does NOT write to Firestore
    """
    payments = []
    for currency in sorted(balances_by_currency):
        payments.extend(_simplify_currency(currency, balances_by_currency[currency]))
    return payments
