"""
Validation Module

This module validates expense and settlement payloads before they are
persisted.

Features:
    - Currency-aware precision checks (0, 1, 2 or 3 decimal places)
    - Split validation for equal, exact and percentage split types
    - Tolerance-based total checks (one minimum currency unit)
    - Settlement amount and payer/payee checks
    - Equal and percentage split calculation with exact remainders

Data Model:
    Input - splits (list of dicts):
        - userId: string
        - amount: number or numeric string
        - percentage: number or numeric string (percentage splits only)

    Output - ValidatedExpense / ValidatedSettlement with Decimal amounts.

Functions:
    validate_expense: Validate an expense's amount, currency and splits.
    validate_settlement: Validate a settlement's amount, currency and parties.
    calculate_equal_splits: Split an amount equally in minimum units.
    calculate_percentage_splits: Derive split amounts from percentages.

Notes:
    - All checks fail fast with the first violated rule
    - Amounts are kept as given; nothing is silently rounded or redistributed
    - Arithmetic is done in Decimal, never float
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from currencies import CurrencyRule, get_currency_rule
from errors import (
    DuplicateParticipant,
    DuplicateSplitUser,
    InvalidAmount,
    InvalidPercentage,
    InvalidPercentageTotal,
    InvalidRequest,
    InvalidSplitAmount,
    InvalidSplitTotal,
    InvalidSplitType,
    InvalidSplitUser,
    InvalidSplits,
    PayerNotParticipant,
    PrecisionError,
    SelfSettlement,
)
from utils import amount_to_string, to_decimal

logger = logging.getLogger(__name__)

SPLIT_EQUAL = "equal"
SPLIT_EXACT = "exact"
SPLIT_PERCENTAGE = "percentage"
SPLIT_TYPES = (SPLIT_EQUAL, SPLIT_EXACT, SPLIT_PERCENTAGE)

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class ValidatedSplit:
    """A participant's validated share of an expense."""

    user_id: str
    amount: Decimal
    percentage: Optional[Decimal] = None

    def to_dict(self) -> dict:
        """Convert split to dictionary for Firestore storage."""
        data = {"userId": self.user_id, "amount": amount_to_string(self.amount)}
        if self.percentage is not None:
            data["percentage"] = amount_to_string(self.percentage)
        return data


@dataclass(frozen=True)
class ValidatedExpense:
    amount: Decimal
    currency: str
    split_type: str
    participants: tuple
    splits: tuple = field(default_factory=tuple)
    paid_by: Optional[str] = None

    def splits_to_dicts(self) -> list[dict]:
        return [split.to_dict() for split in self.splits]


@dataclass(frozen=True)
class ValidatedSettlement:
    amount: Decimal
    currency: str
    payer_id: str
    payee_id: str


# =============================================================================
# Field checks
# =============================================================================

def _positive_amount(value, error_cls, message: str) -> Decimal:
    """Parse a value as Decimal and require it to be strictly positive."""
    amount = to_decimal(value)
    if amount is None or amount <= 0:
        raise error_cls(message)
    return amount


def _check_precision(value: Decimal, rule: CurrencyRule, label: str = "Amount") -> None:
    """
    Reject amounts finer than the currency's minimum unit.

    The check is exact: value * 10^decimal_digits must be an integer.

    Raises:
        PrecisionError: If the amount has too many decimal places.
    """
    scaled = value.scaleb(rule.decimal_digits)
    if scaled == scaled.to_integral_value():
        return

    if rule.decimal_digits == 0:
        raise PrecisionError(f"{label} must be a whole number for {rule.code}")
    raise PrecisionError(
        f"{label} must have at most {rule.decimal_digits} decimal place(s) for {rule.code}"
    )


def _split_user_id(split) -> Optional[str]:
    if not isinstance(split, dict):
        return None
    user_id = split.get("userId", split.get("user_id"))
    if not isinstance(user_id, str) or not user_id.strip():
        return None
    return user_id.strip()


def _validate_participants(participants) -> list[str]:
    if not isinstance(participants, (list, tuple)) or len(participants) == 0:
        raise InvalidSplits("At least one participant is required")

    cleaned = []
    for participant in participants:
        if not isinstance(participant, str) or not participant.strip():
            raise InvalidSplits("Participant IDs must be non-empty strings")
        cleaned.append(participant.strip())

    if len(set(cleaned)) != len(cleaned):
        raise DuplicateParticipant()
    return cleaned


def _validate_split_users(splits, participants: list[str]) -> list[str]:
    """
    Check that splits and participants are in one-to-one correspondence.

    Returns:
        list[str]: Split user IDs in split order.
    """
    if not isinstance(splits, (list, tuple)) or len(splits) != len(participants):
        raise InvalidSplits()

    user_ids = []
    for split in splits:
        user_id = _split_user_id(split)
        if user_id is None:
            raise InvalidSplits("Each split must reference a user")
        user_ids.append(user_id)

    if len(set(user_ids)) != len(user_ids):
        raise DuplicateSplitUser()

    participant_set = set(participants)
    for user_id in user_ids:
        if user_id not in participant_set:
            raise InvalidSplitUser(f"Split user {user_id} must be a participant")

    # Same length, no duplicates, all known: the sets are now equal
    return user_ids


def _check_total(split_amounts: list[Decimal], total: Decimal, rule: CurrencyRule) -> None:
    split_total = sum(split_amounts, Decimal(0))
    if abs(split_total - total) > rule.rounding_tolerance:
        raise InvalidSplitTotal(
            f"Split amounts must equal total amount ({amount_to_string(split_total)} != "
            f"{amount_to_string(total)} {rule.code})"
        )


def _validate_percentages(splits, rule: CurrencyRule) -> list[Decimal]:
    percentages = []
    for split in splits:
        percentage = to_decimal(split.get("percentage"))
        if percentage is None:
            raise InvalidPercentage("Split percentage is required for percentage splits")
        if percentage <= 0 or percentage > HUNDRED:
            raise InvalidPercentage()
        percentages.append(percentage)

    percentage_total = sum(percentages, Decimal(0))
    if abs(percentage_total - HUNDRED) > rule.percentage_tolerance:
        raise InvalidPercentageTotal(
            f"Percentages must add up to 100 (got {amount_to_string(percentage_total)})"
        )
    return percentages


# =============================================================================
# Public API
# =============================================================================

def validate_expense(
    amount,
    currency_code: str,
    split_type: str,
    participants: list[str],
    splits: list[dict],
    paid_by: Optional[str] = None
) -> ValidatedExpense:
    """
    Validate an expense's amount, currency, participants and splits.

    Rules are checked in order and the first violation is raised:
        1. Currency must be known
        2. Amount must be > 0
        3. Amount precision must fit the currency
        4. Participants must be non-empty and unique
        5. One split per participant
        6. No duplicate split users
        7. Every split user must be a participant
        8. Every split amount must be > 0 and fit the currency precision
        9. Split-type specific checks (equal share, exact total, percentages)
        10. Payer, when given, must be a participant

    Args:
        amount: Expense total (number or numeric string).
        currency_code: ISO 4217 currency code.
        split_type: One of equal, exact, percentage.
        participants: Ordered list of participant user IDs.
        splits: List of {userId, amount, percentage?} dicts.
        paid_by: Optional payer user ID.

    Returns:
        ValidatedExpense: Normalized expense with Decimal amounts.

    Raises:
        ApiError: A ValidationError subclass describing the first violation.
    """
    rule = get_currency_rule(currency_code)

    total = _positive_amount(amount, InvalidAmount, "Amount must be a positive number")
    _check_precision(total, rule)

    if split_type not in SPLIT_TYPES:
        raise InvalidSplitType()

    participant_ids = _validate_participants(participants)
    user_ids = _validate_split_users(splits, participant_ids)

    split_amounts = []
    for user_id, split in zip(user_ids, splits):
        split_amount = _positive_amount(
            split.get("amount"), InvalidSplitAmount, f"Split amount for {user_id} must be positive"
        )
        _check_precision(split_amount, rule, label="Split amount")
        split_amounts.append(split_amount)

    percentages = [None] * len(split_amounts)
    if split_type == SPLIT_EQUAL:
        share = total / len(participant_ids)
        for user_id, split_amount in zip(user_ids, split_amounts):
            if abs(split_amount - share) > rule.rounding_tolerance:
                raise InvalidSplitAmount(f"Split for {user_id} is not an equal share")
    elif split_type == SPLIT_PERCENTAGE:
        percentages = _validate_percentages(splits, rule)

    _check_total(split_amounts, total, rule)

    if paid_by is not None and paid_by not in participant_ids:
        raise PayerNotParticipant()

    validated_splits = tuple(
        ValidatedSplit(user_id=user_id, amount=split_amount, percentage=percentage)
        for user_id, split_amount, percentage in zip(user_ids, split_amounts, percentages)
    )
    return ValidatedExpense(
        amount=total,
        currency=rule.code,
        split_type=split_type,
        participants=tuple(participant_ids),
        splits=validated_splits,
        paid_by=paid_by
    )


def validate_settlement(amount, currency_code: str, payer_id: str, payee_id: str) -> ValidatedSettlement:
    """
    Validate a settlement's amount, currency, payer and payee.

    Raises:
        InvalidCurrency: Unknown currency code.
        InvalidAmount: Amount missing or not > 0.
        PrecisionError: Amount finer than the currency's minimum unit.
        InvalidRequest: Missing payer or payee.
        SelfSettlement: Payer and payee are the same user.
    """
    rule = get_currency_rule(currency_code)

    total = _positive_amount(amount, InvalidAmount, "Amount must be greater than 0")
    _check_precision(total, rule)

    for value, field_name in ((payer_id, "payerId"), (payee_id, "payeeId")):
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequest(f"{field_name} must be a non-empty string")

    if payer_id.strip() == payee_id.strip():
        raise SelfSettlement()

    return ValidatedSettlement(
        amount=total,
        currency=rule.code,
        payer_id=payer_id.strip(),
        payee_id=payee_id.strip()
    )


def calculate_equal_splits(amount, currency_code: str, participants: list[str]) -> list[dict]:
    """
    Split an amount equally among participants in minimum currency units.

    The remainder of the unit division goes one unit at a time to the first
    participants, so the splits always sum to the amount exactly
    (e.g. 100.00 USD / 3 -> 33.34, 33.33, 33.33).

    Returns:
        list[dict]: {userId, amount} dicts; empty if there is nothing to split.
    """
    rule = get_currency_rule(currency_code)
    total = to_decimal(amount)
    if total is None or not participants:
        return []

    total_units = int(total.scaleb(rule.decimal_digits).to_integral_value(rounding=ROUND_DOWN))
    base_units, remainder = divmod(total_units, len(participants))

    splits = []
    for index, user_id in enumerate(participants):
        units = base_units + (1 if index < remainder else 0)
        splits.append({"userId": user_id, "amount": Decimal(units).scaleb(-rule.decimal_digits)})
    return splits


def calculate_percentage_splits(amount, currency_code: str, splits: list[dict]) -> list[dict]:
    """
    Derive split amounts from percentages.

    Each share is rounded down to a minimum unit and the leftover units go to
    the first splits. Splits with a missing or non-positive percentage are
    returned unchanged so validation can report them.
    """
    rule = get_currency_rule(currency_code)
    total = to_decimal(amount)
    percentages = [to_decimal(split.get("percentage")) for split in splits]
    if total is None or any(p is None or p <= 0 for p in percentages):
        return list(splits)

    total_units = int(total.scaleb(rule.decimal_digits).to_integral_value(rounding=ROUND_DOWN))
    units = [
        int((total_units * p / HUNDRED).to_integral_value(rounding=ROUND_DOWN))
        for p in percentages
    ]
    leftover = total_units - sum(units)
    if leftover > 0 and units:
        per_split, extra = divmod(leftover, len(units))
        units = [unit + per_split + (1 if index < extra else 0) for index, unit in enumerate(units)]

    return [
        {**split, "amount": Decimal(unit).scaleb(-rule.decimal_digits)}
        for split, unit in zip(splits, units)
    ]
