"""
Utilities Module

This module provides small helpers shared by the expense splitting service.

Features:
    - Decimal conversion of user-supplied amounts
    - Currency-aware rounding and string formatting
    - UTC timestamps in ISO format

Functions:
    to_decimal: Convert a number or numeric string to Decimal.
    round_to_currency: Round a Decimal to a currency's precision.
    amount_to_string: Format a Decimal for storage and API responses.
    format_currency: Format amount with currency code for display.
    utc_now_iso: Current UTC timestamp in ISO format.
    validate_non_empty_string: Validate and strip a required string.
    normalize_timestamp: Normalize an ISO 8601 date to UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from currencies import get_currency_rule
from errors import InvalidRequest


def to_decimal(value) -> Optional[Decimal]:
    """
    Convert a number or numeric string to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.

    Args:
        value: int, float, str or Decimal.

    Returns:
        Decimal | None: The converted value, or None when the input is not a
        finite number (booleans, None, NaN, Infinity, non-numeric strings).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not result.is_finite():
        return None
    return result


def round_to_currency(value: Decimal, currency: str) -> Decimal:
    """
    Round a Decimal to the currency's decimal digits.

    Uses ROUND_HALF_UP, matching how amounts are presented to users.
    """
    rule = get_currency_rule(currency)
    return value.quantize(rule.minimum_unit, rounding=ROUND_HALF_UP)


def amount_to_string(value: Decimal, currency: Optional[str] = None) -> str:
    """
    Format a Decimal for storage and API responses.

    Amounts are stored as strings so Firestore never turns them into floats.
    When a currency is given the value is rounded to its precision first.
    """
    if currency is not None:
        value = round_to_currency(value, currency)
    # Avoid "-0.00" for balances that net to zero
    if value == 0:
        value = abs(value)
    return format(value, "f")


def format_currency(amount: Decimal, currency: str) -> str:
    """
    Format a monetary amount with its currency code.

    Returns:
        str: Formatted string like "1,234.56 USD" or "1,000 JPY".
    """
    rule = get_currency_rule(currency)
    rounded = round_to_currency(amount, currency)
    return f"{rounded:,.{rule.decimal_digits}f} {rule.code}"


def utc_now_iso() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def validate_non_empty_string(value, field_name: str, max_length: Optional[int] = None) -> str:
    """
    Validate that a value is a non-empty string and return it stripped.

    Raises:
        InvalidRequest: If the value is not a string, is blank, or is longer
            than max_length after stripping.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{field_name} must be a non-empty string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise InvalidRequest(f"{field_name} must be at most {max_length} characters")
    return value


def normalize_timestamp(value, field_name: str) -> str:
    """
    Parse an ISO 8601 date or timestamp and return it as a UTC ISO string.

    Dates without a time ("2024-05-01") are taken as midnight UTC, and naive
    timestamps as UTC. Normalized values sort chronologically as strings.

    Raises:
        InvalidRequest: If the value is not a valid ISO 8601 string.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{field_name} must be an ISO 8601 date")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidRequest(f"{field_name} must be an ISO 8601 date, got: {value}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()
