"""
Errors Module

This module defines the typed error taxonomy of the expense splitting
service.

Every rejected input surfaces as an ApiError subclass carrying a
machine-readable code and the HTTP status the API layer responds with.

Families:
    - Validation errors (400): amounts, currencies, splits, settlements
    - Authorization errors (401 / 403): caller identity and group permissions
    - Lookup errors (404): groups, members, expenses, settlements
    - Conflict errors (409): concurrent writes to the same document
    - Availability errors (503): document store not reachable
"""

from typing import Optional


class ApiError(Exception):
    """
    Base class for all errors that are reported to API callers.

    Attributes:
        code (str): Machine-readable error code (e.g. INVALID_SPLIT_TOTAL).
        status_code (int): HTTP status the API layer maps this error to.
        message (str): Human-readable description.
        details (dict | None): Optional extra context for the client.
    """

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to the JSON body returned by the API."""
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code='{self.code}', message='{self.message}')"


# =============================================================================
# Validation errors (400)
# =============================================================================

class ValidationError(ApiError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Invalid input"


class InvalidCurrency(ValidationError):
    code = "INVALID_CURRENCY"
    default_message = "Invalid currency code"


class UnknownCurrency(InvalidCurrency):
    default_message = "Unknown currency code"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a positive number"


class PrecisionError(ValidationError):
    code = "INVALID_AMOUNT_PRECISION"
    default_message = "Amount has too many decimal places for the currency"


class DuplicateParticipant(ValidationError):
    code = "DUPLICATE_PARTICIPANTS"
    default_message = "Each participant can only appear once"


class InvalidSplits(ValidationError):
    code = "INVALID_SPLITS"
    default_message = "Splits required for all participants"


class InvalidSplitType(ValidationError):
    code = "INVALID_SPLIT_TYPE"
    default_message = "Split type must be equal, exact, or percentage"


class DuplicateSplitUser(ValidationError):
    code = "DUPLICATE_SPLIT_USERS"
    default_message = "Each participant can only appear once in splits"


class InvalidSplitUser(ValidationError):
    code = "INVALID_SPLIT_USER"
    default_message = "Split user must be a participant"


class InvalidSplitAmount(ValidationError):
    code = "INVALID_SPLIT_AMOUNT"
    default_message = "Split amounts must be positive"


class InvalidSplitTotal(ValidationError):
    code = "INVALID_SPLIT_TOTAL"
    default_message = "Split amounts must equal total amount"


class InvalidPercentage(ValidationError):
    code = "INVALID_PERCENTAGE"
    default_message = "Split percentages must be greater than 0 and at most 100"


class InvalidPercentageTotal(ValidationError):
    code = "INVALID_PERCENTAGE_TOTAL"
    default_message = "Percentages must add up to 100"


class SelfSettlement(ValidationError):
    code = "SELF_SETTLEMENT"
    default_message = "Payer and payee cannot be the same person"


class PayerNotParticipant(ValidationError):
    code = "PAYER_NOT_PARTICIPANT"
    default_message = "Payer must be a participant"


class InvalidParticipant(ValidationError):
    code = "INVALID_PARTICIPANT"
    default_message = "Participant is not a member of the group"


class InvalidRequest(ValidationError):
    code = "INVALID_REQUEST"
    default_message = "Invalid request"


class LastAdminError(InvalidRequest):
    default_message = "Cannot remove last admin. Promote another member first."


class InvalidCursorFormat(ValidationError):
    code = "INVALID_CURSOR_FORMAT"
    default_message = "Invalid cursor format"


class InvalidQueryParams(ValidationError):
    code = "INVALID_QUERY_PARAMS"
    default_message = "Invalid query parameters"


class OutstandingBalance(ValidationError):
    code = "OUTSTANDING_BALANCE"
    default_message = "Cannot leave group with outstanding balance"


class ExpenseLocked(ValidationError):
    code = "EXPENSE_LOCKED"
    default_message = "Cannot edit expense: participants have left the group"


class SettlementLocked(ValidationError):
    code = "SETTLEMENT_LOCKED"
    default_message = "Cannot edit settlement: payer or payee has left the group"


# =============================================================================
# Authorization errors (401 / 403)
# =============================================================================

class Unauthenticated(ApiError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Authentication required"


class NotAuthorized(ApiError):
    code = "NOT_AUTHORIZED"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotMember(ApiError):
    code = "NOT_GROUP_MEMBER"
    status_code = 403
    default_message = "You are not a member of this group"


# =============================================================================
# Lookup errors (404)
# =============================================================================

class NotFound(ApiError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class GroupNotFound(NotFound):
    code = "GROUP_NOT_FOUND"
    default_message = "Group not found"


class MemberNotFound(NotFound):
    code = "MEMBER_NOT_FOUND"
    default_message = "User is not a member of this group"


class ExpenseNotFound(NotFound):
    code = "EXPENSE_NOT_FOUND"
    default_message = "Expense not found"


class SettlementNotFound(NotFound):
    code = "SETTLEMENT_NOT_FOUND"
    default_message = "Settlement not found"


# =============================================================================
# Conflict and availability errors (409 / 503)
# =============================================================================

class ConcurrentUpdate(ApiError):
    code = "CONCURRENT_UPDATE"
    status_code = 409
    default_message = "Document was modified by another user. Please refresh and try again."


class ServiceUnavailable(ApiError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_message = "Firestore is not available"
