"""
Expenses Module

This module handles all expense-related operations for the expense splitting
service.

Features:
    - Add/edit/soft-delete expenses
    - Equal, exact and percentage splits with currency-aware validation
    - Split amounts derived automatically for equal and percentage splits
    - Expenses locked once their payer or a participant has left the group
    - Optimistic concurrency on edits
    - Paginated listing by expense date

Data Model:
    Expense stored at: expenses/{expense_id}
    Fields:
        - groupId: string
        - createdBy: string (user who recorded the expense)
        - paidBy: string (member who paid)
        - amount: string (Decimal, > 0)
        - currency: string (ISO 4217)
        - description: string (1-200 characters)
        - category: string
        - date: string (ISO timestamp, UTC)
        - splitType: equal | exact | percentage
        - participants: list of user IDs
        - splits: list of {userId, amount, percentage?}
        - createdAt, updatedAt: string (ISO timestamps)
        - deletedAt, deletedBy: string or None

Functions:
    create_expense: Add a new expense to a group.
    get_expense: Get a single expense.
    update_expense: Edit an expense.
    delete_expense: Soft-delete an expense.
    list_expenses: Get a page of a group's expenses.
    is_expense_locked: Whether an expense references departed members.
"""

import logging
from typing import Optional

from errors import ConcurrentUpdate, ExpenseLocked, ExpenseNotFound, InvalidParticipant
from firebase_store import EXPENSES
from pagination import DIRECTION_DESCENDING, paginate, parse_page_params
from permissions import EXPENSE_DELETION, EXPENSE_EDITING
from utils import amount_to_string, normalize_timestamp, utc_now_iso, validate_non_empty_string
from validation import (
    SPLIT_EQUAL,
    SPLIT_PERCENTAGE,
    calculate_equal_splits,
    calculate_percentage_splits,
    validate_expense,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"
MAX_DESCRIPTION_LENGTH = 200
MAX_CATEGORY_LENGTH = 50
SORT_FIELD = "date"

# Fields a client may change on an existing expense
EDITABLE_FIELDS = (
    "paidBy", "amount", "currency", "description", "category",
    "date", "splitType", "participants", "splits",
)


def is_expense_locked(expense: dict, group: dict) -> bool:
    """
    Check whether an expense references users who left the group.

    Locked expenses can no longer be edited.
    """
    members = group.get("members") or {}
    involved = [expense.get("paidBy"), *(expense.get("participants") or [])]
    return any(user_id not in members for user_id in involved)


def _with_lock_flag(expense: dict, group: dict) -> dict:
    return {**expense, "isLocked": is_expense_locked(expense, group)}


def _require_members(group: dict, paid_by: str, participants) -> None:
    members = group.get("members") or {}
    if paid_by not in members:
        raise InvalidParticipant(f"Payer {paid_by} is not a member of this group")
    for user_id in participants:
        if user_id not in members:
            raise InvalidParticipant(f"Participant {user_id} is not a member of this group")


def _resolve_splits(split_type: str, amount, currency: str, participants, splits):
    """
    Fill in split amounts the client left out.

    Equal splits are derived from the participants when no splits are given;
    percentage splits without amounts are derived from their percentages.
    Everything else is passed through for validation.
    """
    if split_type == SPLIT_EQUAL and not splits and participants:
        return calculate_equal_splits(amount, currency, list(participants))
    if split_type == SPLIT_PERCENTAGE and splits and all(isinstance(s, dict) for s in splits):
        if any(s.get("amount") is None for s in splits):
            return calculate_percentage_splits(amount, currency, list(splits))
    return splits


def _build_expense_fields(group: dict, data: dict) -> dict:
    """Validate expense fields against a group and return the stored form."""
    paid_by = validate_non_empty_string(data.get("paidBy"), "paidBy")
    description = validate_non_empty_string(data.get("description"), "description", MAX_DESCRIPTION_LENGTH)
    category = data.get("category") or DEFAULT_CATEGORY
    category = validate_non_empty_string(category, "category", MAX_CATEGORY_LENGTH)
    date = normalize_timestamp(data.get("date") or utc_now_iso(), "date")

    splits = _resolve_splits(
        data.get("splitType"), data.get("amount"), data.get("currency"),
        data.get("participants"), data.get("splits")
    )
    validated = validate_expense(
        data.get("amount"),
        data.get("currency"),
        data.get("splitType"),
        data.get("participants"),
        splits,
        paid_by=paid_by
    )
    _require_members(group, paid_by, validated.participants)

    return {
        "paidBy": paid_by,
        "amount": amount_to_string(validated.amount),
        "currency": validated.currency,
        "description": description,
        "category": category,
        "date": date,
        "splitType": validated.split_type,
        "participants": list(validated.participants),
        "splits": validated.splits_to_dicts(),
    }


def _get_active_expense(engine, expense_id: str) -> dict:
    expense = engine.store.get_document(EXPENSES, expense_id)
    if expense is None or expense.get("deletedAt") is not None:
        raise ExpenseNotFound()
    return expense


def create_expense(engine, user_id: str, group_id: str, data: dict) -> dict:
    """
    Add a new expense to a group.

    Args:
        engine: PermissionEngine bound to the document store.
        user_id: The member recording the expense.
        group_id: The ID of the group.
        data: Expense fields (camelCase, see Data Model).

    Returns:
        dict: The created expense, with isLocked.

    Raises:
        GroupNotFound: If the group does not exist.
        NotMember: If the user is not a member.
        ValidationError: If amounts, currency or splits are invalid.
        InvalidParticipant: If the payer or a participant is not a member.
    """
    group = engine.require_member(group_id, user_id)
    fields = _build_expense_fields(group, data)

    now = utc_now_iso()
    expense = engine.store.create_document(EXPENSES, {
        **fields,
        "groupId": group_id,
        "createdBy": user_id,
        "createdAt": now,
        "updatedAt": now,
        "deletedAt": None,
        "deletedBy": None,
    })

    logger.info("Expense %s created in group %s by %s", expense["id"], group_id, user_id)
    return _with_lock_flag(expense, group)


def get_expense(engine, user_id: str, expense_id: str) -> dict:
    """
    Get a single expense.

    Raises:
        ExpenseNotFound: If the expense does not exist or was deleted.
        NotMember: If the user is not a member of the expense's group.
    """
    expense = _get_active_expense(engine, expense_id)
    group = engine.require_member(expense["groupId"], user_id)
    return _with_lock_flag(expense, group)


def update_expense(engine, user_id: str, expense_id: str, changes: dict) -> dict:
    """
    Edit an expense.

    Changed fields are merged over the stored expense and the result is
    validated as a whole. When the amount or participants change without new
    splits, equal and percentage splits are recalculated.

    Args:
        engine: PermissionEngine bound to the document store.
        user_id: The editing member.
        expense_id: The ID of the expense.
        changes: Fields to change; "updatedAt" may carry the version the
            client last read.

    Returns:
        dict: The updated expense, with isLocked.

    Raises:
        ExpenseNotFound: If the expense does not exist or was deleted.
        NotMember / NotAuthorized: If expenseEditing does not allow the user.
        ExpenseLocked: If the payer or a participant has left the group.
        ValidationError: If the edited expense is invalid.
        ConcurrentUpdate: If the expense changed since it was read.
    """
    expense = _get_active_expense(engine, expense_id)
    group = engine.require_permission(expense["groupId"], user_id, EXPENSE_EDITING, expense=expense)
    if is_expense_locked(expense, group):
        raise ExpenseLocked()

    expected_version = changes.get("updatedAt") or expense.get("updatedAt")
    edits = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS and value is not None}

    merged = {**expense, **edits}
    recalculate = "splits" not in edits and ("amount" in edits or "participants" in edits)
    if recalculate and merged.get("splitType") == SPLIT_EQUAL:
        merged["splits"] = None
    elif recalculate and merged.get("splitType") == SPLIT_PERCENTAGE:
        merged["splits"] = [
            {"userId": s["userId"], "percentage": s.get("percentage")} for s in expense.get("splits") or []
        ]
    if "splitType" in edits and "splits" not in edits and edits["splitType"] == SPLIT_EQUAL:
        merged["splits"] = None

    fields = _build_expense_fields(group, merged)

    def _update(current):
        if current.get("deletedAt") is not None:
            raise ExpenseNotFound()
        if current.get("updatedAt") != expected_version:
            raise ConcurrentUpdate("Expense was modified by someone else")
        return {**fields, "updatedAt": utc_now_iso()}

    updated = engine.store.update_document(EXPENSES, expense_id, _update, not_found=ExpenseNotFound)
    logger.info("Expense %s updated by %s", expense_id, user_id)
    return _with_lock_flag(updated, group)


def delete_expense(engine, user_id: str, expense_id: str) -> dict:
    """
    Soft-delete an expense.

    The document is kept with deletedAt / deletedBy set and no longer counts
    toward balances.

    Raises:
        ExpenseNotFound: If the expense does not exist or was already deleted.
        NotMember / NotAuthorized: If expenseDeletion does not allow the user.
    """
    expense = _get_active_expense(engine, expense_id)
    engine.require_permission(expense["groupId"], user_id, EXPENSE_DELETION, expense=expense)

    def _update(current):
        if current.get("deletedAt") is not None:
            raise ExpenseNotFound()
        now = utc_now_iso()
        return {"deletedAt": now, "deletedBy": user_id, "updatedAt": now}

    deleted = engine.store.update_document(EXPENSES, expense_id, _update, not_found=ExpenseNotFound)
    logger.info("Expense %s deleted by %s", expense_id, user_id)
    return deleted


def list_expenses(
    engine,
    user_id: str,
    group_id: str,
    cursor: Optional[str] = None,
    limit=None,
    include_deleted: bool = False
) -> dict:
    """
    Get a page of a group's expenses, newest first.

    Returns:
        dict: {items, hasMore, nextCursor}

    Raises:
        InvalidQueryParams / InvalidCursorFormat: If cursor or limit is invalid.
        NotMember: If the user is not a member.
    """
    decoded, page_size = parse_page_params(cursor, limit)
    group = engine.require_member(group_id, user_id)

    docs = engine.store.list_page(
        EXPENSES, group_id, decoded, page_size + 1, SORT_FIELD,
        direction=DIRECTION_DESCENDING, include_deleted=include_deleted
    )
    page = paginate(docs, page_size, SORT_FIELD)
    page["items"] = [_with_lock_flag(expense, group) for expense in page["items"]]
    return page
