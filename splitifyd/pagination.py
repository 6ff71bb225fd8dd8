"""
Pagination Module

This module encodes and decodes the opaque cursors used by every paginated
list endpoint, and builds the matching Firestore continuation queries.

Features:
    - URL-safe base64 JSON cursors: {sortValue, id}
    - Strict cursor decoding with typed errors
    - Query construction: orderBy + limit always, startAfter only with a cursor
    - Query parameter validation for cursor and limit
    - Page assembly from a limit + 1 fetch

Functions:
    encode_cursor: Encode a sort value and document ID into a cursor.
    decode_cursor: Decode a cursor back into a Cursor.
    build_paginated_query: Apply ordering, limit and continuation to a query.
    parse_page_params: Validate cursor and limit query parameters.
    paginate: Build a page response from fetched documents.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional

from config.settings import settings
from errors import InvalidCursorFormat, InvalidQueryParams

DIRECTION_ASCENDING = "ASCENDING"
DIRECTION_DESCENDING = "DESCENDING"
DOCUMENT_ID_FIELD = "__name__"


@dataclass(frozen=True)
class Cursor:
    """Position in a sorted result set."""

    sort_value: str
    id: str


def encode_cursor(sort_value: str, doc_id: str) -> str:
    """
    Encode a sort value and document ID into an opaque cursor string.

    Args:
        sort_value: Value of the sort field for the last returned document.
        doc_id: ID of the last returned document (tie breaker).

    Returns:
        str: URL-safe base64 encoded JSON.
    """
    payload = json.dumps({"sortValue": sort_value, "id": doc_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Cursor:
    """
    Decode an opaque cursor string.

    Raises:
        InvalidCursorFormat: If the cursor is not valid base64, not valid JSON,
            not a JSON object, or lacks a string sortValue or id.
    """
    if not isinstance(cursor, str) or not cursor:
        raise InvalidCursorFormat()

    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidCursorFormat() from exc

    if not isinstance(data, dict):
        raise InvalidCursorFormat("Cursor must encode an object")

    sort_value = data.get("sortValue")
    doc_id = data.get("id")
    if not isinstance(sort_value, str):
        raise InvalidCursorFormat("Cursor is missing a string sortValue")
    if not isinstance(doc_id, str):
        raise InvalidCursorFormat("Cursor is missing a document id")

    return Cursor(sort_value=sort_value, id=doc_id)


def build_paginated_query(query, cursor: Optional[Cursor], direction: str, limit: int, sort_field: str):
    """
    Apply ordering, limit and continuation to a Firestore query.

    order_by(sort_field) and order_by(document id) are always applied so the
    two-value start_after matches the ordering; limit is always applied;
    start_after only when a cursor is given.

    Args:
        query: A Firestore Query (or compatible object).
        cursor: Decoded cursor, or None for the first page.
        direction: DIRECTION_ASCENDING or DIRECTION_DESCENDING.
        limit: Maximum number of documents to fetch.
        sort_field: Field the results are sorted by.

    Returns:
        The continued query.
    """
    query = query.order_by(sort_field, direction=direction)
    query = query.order_by(DOCUMENT_ID_FIELD, direction=direction)
    query = query.limit(limit)
    if cursor is not None:
        query = query.start_after([cursor.sort_value, cursor.id])
    return query


def parse_page_params(cursor: Optional[str], limit) -> tuple[Optional[Cursor], int]:
    """
    Validate list endpoint query parameters.

    Args:
        cursor: Raw cursor query parameter, or None.
        limit: Raw limit query parameter (string or int), or None.

    Returns:
        tuple: (decoded Cursor or None, limit as int)

    Raises:
        InvalidQueryParams: Limit not numeric, <= 0 or above the maximum;
            cursor given but empty.
        InvalidCursorFormat: Cursor cannot be decoded.
    """
    if limit is None or (isinstance(limit, str) and not limit.strip()):
        page_size = settings.PAGINATION_DEFAULT_LIMIT
    else:
        try:
            page_size = int(str(limit).strip())
        except ValueError as exc:
            raise InvalidQueryParams("limit must be a number") from exc
        if page_size <= 0:
            raise InvalidQueryParams("limit must be greater than 0")
        if page_size > settings.PAGINATION_MAX_LIMIT:
            raise InvalidQueryParams(f"limit must be at most {settings.PAGINATION_MAX_LIMIT}")

    decoded = None
    if cursor is not None:
        if not cursor.strip():
            raise InvalidQueryParams("cursor cannot be empty")
        decoded = decode_cursor(cursor.strip())

    return decoded, page_size


def paginate(docs: list[dict], limit: int, sort_field: str) -> dict:
    """
    Build a page response from up to limit + 1 fetched documents.

    Returns:
        dict: {items, hasMore, nextCursor}
    """
    has_more = len(docs) > limit
    items = docs[:limit]
    next_cursor = None
    if has_more and items:
        last = items[-1]
        next_cursor = encode_cursor(str(last.get(sort_field, "")), last["id"])

    return {"items": items, "hasMore": has_more, "nextCursor": next_cursor}
