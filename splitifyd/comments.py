"""
Comments Module

This module handles comments on groups and on individual expenses.

Data Model:
    Comment stored at: comments/{comment_id}
    Fields:
        - groupId: string
        - expenseId: string or None (None for group comments)
        - authorId: string
        - text: string (1-500 characters after trimming)
        - createdAt: string (ISO timestamp)

Functions:
    add_comment: Post a comment to a group or one of its expenses.
    list_comments: Get a page of comments, newest first.
"""

import logging
from typing import Optional

from config.settings import settings
from errors import ExpenseNotFound
from firebase_store import COMMENTS, EXPENSES
from pagination import DIRECTION_DESCENDING, paginate, parse_page_params
from utils import utc_now_iso, validate_non_empty_string

logger = logging.getLogger(__name__)

SORT_FIELD = "createdAt"


def _require_expense_in_group(engine, group_id: str, expense_id: str) -> None:
    expense = engine.store.get_document(EXPENSES, expense_id)
    if expense is None or expense.get("groupId") != group_id or expense.get("deletedAt") is not None:
        raise ExpenseNotFound()


def add_comment(engine, user_id: str, group_id: str, text: str, expense_id: Optional[str] = None) -> dict:
    """
    Post a comment.

    Args:
        engine: PermissionEngine bound to the document store.
        user_id: The commenting member.
        group_id: The ID of the group.
        text: Comment text.
        expense_id: Optional expense the comment is about.

    Returns:
        dict: The created comment.

    Raises:
        NotMember: If the user is not a member.
        InvalidRequest: If the text is empty or too long.
        ExpenseNotFound: If the expense is not an active expense of the group.
    """
    engine.require_member(group_id, user_id)
    text = validate_non_empty_string(text, "text", settings.COMMENT_MAX_LENGTH)
    if expense_id is not None:
        _require_expense_in_group(engine, group_id, expense_id)

    comment = engine.store.create_document(COMMENTS, {
        "groupId": group_id,
        "expenseId": expense_id,
        "authorId": user_id,
        "text": text,
        "createdAt": utc_now_iso(),
    })
    logger.debug("Comment %s added to group %s", comment["id"], group_id)
    return comment


def list_comments(
    engine,
    user_id: str,
    group_id: str,
    cursor: Optional[str] = None,
    limit=None,
    expense_id: Optional[str] = None
) -> dict:
    """
    Get a page of comments, newest first.

    Without an expense_id only group-level comments are returned.

    Returns:
        dict: {items, hasMore, nextCursor}
    """
    decoded, page_size = parse_page_params(cursor, limit)
    engine.require_member(group_id, user_id)

    # Comments are never soft-deleted, so the deletedAt filter is skipped
    docs = engine.store.list_page(
        COMMENTS, group_id, decoded, page_size + 1, SORT_FIELD,
        direction=DIRECTION_DESCENDING, include_deleted=True,
        filters={"expenseId": expense_id}
    )
    return paginate(docs, page_size, SORT_FIELD)
