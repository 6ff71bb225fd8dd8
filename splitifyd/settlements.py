"""
Settlements Module

This module handles recorded payments between group members.

Features:
    - Record, edit and soft-delete settlements
    - Only the member who recorded a settlement may change it
    - Settlements locked once the payer or payee has left the group
    - Paginated listing by settlement date

Data Model:
    Settlement stored at: settlements/{settlement_id}
    Fields:
        - groupId: string
        - createdBy: string
        - payerId: string (member who paid)
        - payeeId: string (member who received)
        - amount: string (Decimal, > 0)
        - currency: string (ISO 4217)
        - note: string or None
        - date: string (ISO timestamp, UTC)
        - createdAt, updatedAt: string (ISO timestamps)
        - deletedAt, deletedBy: string or None

Functions:
    create_settlement: Record a payment between two members.
    update_settlement: Edit a settlement.
    delete_settlement: Soft-delete a settlement.
    list_settlements: Get a page of a group's settlements.
"""

import logging
from typing import Optional

from errors import (
    ConcurrentUpdate,
    InvalidParticipant,
    InvalidRequest,
    NotAuthorized,
    SettlementLocked,
    SettlementNotFound,
)
from firebase_store import SETTLEMENTS
from pagination import DIRECTION_DESCENDING, paginate, parse_page_params
from utils import amount_to_string, normalize_timestamp, utc_now_iso
from validation import validate_settlement

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 500
SORT_FIELD = "date"
EDITABLE_FIELDS = ("payerId", "payeeId", "amount", "currency", "note", "date")


def _is_locked(settlement: dict, group: dict) -> bool:
    members = group.get("members") or {}
    return settlement.get("payerId") not in members or settlement.get("payeeId") not in members


def _with_lock_flag(settlement: dict, group: dict) -> dict:
    return {**settlement, "isLocked": _is_locked(settlement, group)}


def _validate_note(note) -> Optional[str]:
    if note is None:
        return None
    if not isinstance(note, str):
        raise InvalidRequest("note must be a string")
    note = note.strip()
    if len(note) > MAX_NOTE_LENGTH:
        raise InvalidRequest(f"note must be at most {MAX_NOTE_LENGTH} characters")
    return note or None


def _build_settlement_fields(group: dict, data: dict) -> dict:
    validated = validate_settlement(data.get("amount"), data.get("currency"), data.get("payerId"), data.get("payeeId"))

    members = group.get("members") or {}
    for user_id in (validated.payer_id, validated.payee_id):
        if user_id not in members:
            raise InvalidParticipant(f"User {user_id} is not a member of this group")

    return {
        "payerId": validated.payer_id,
        "payeeId": validated.payee_id,
        "amount": amount_to_string(validated.amount),
        "currency": validated.currency,
        "note": _validate_note(data.get("note")),
        "date": normalize_timestamp(data.get("date") or utc_now_iso(), "date"),
    }


def _get_active_settlement(engine, settlement_id: str) -> dict:
    settlement = engine.store.get_document(SETTLEMENTS, settlement_id)
    if settlement is None or settlement.get("deletedAt") is not None:
        raise SettlementNotFound()
    return settlement


def _require_creator(settlement: dict, user_id: str) -> None:
    if settlement.get("createdBy") != user_id:
        raise NotAuthorized("Only the member who recorded this settlement can change it")


def create_settlement(engine, user_id: str, group_id: str, data: dict) -> dict:
    """
    Record a payment from payerId to payeeId.

    Args:
        engine: PermissionEngine bound to the document store.
        user_id: The member recording the settlement.
        group_id: The ID of the group.
        data: {payerId, payeeId, amount, currency, note?, date?}

    Returns:
        dict: The created settlement, with isLocked.

    Raises:
        NotMember: If the user is not a member.
        ValidationError: If amount, currency or parties are invalid.
        InvalidParticipant: If the payer or payee is not a member.
    """
    group = engine.require_member(group_id, user_id)
    fields = _build_settlement_fields(group, data)

    now = utc_now_iso()
    settlement = engine.store.create_document(SETTLEMENTS, {
        **fields,
        "groupId": group_id,
        "createdBy": user_id,
        "createdAt": now,
        "updatedAt": now,
        "deletedAt": None,
        "deletedBy": None,
    })

    logger.info("Settlement %s created in group %s by %s", settlement["id"], group_id, user_id)
    return _with_lock_flag(settlement, group)


def get_settlement(engine, user_id: str, settlement_id: str) -> dict:
    settlement = _get_active_settlement(engine, settlement_id)
    group = engine.require_member(settlement["groupId"], user_id)
    return _with_lock_flag(settlement, group)


def update_settlement(engine, user_id: str, settlement_id: str, changes: dict) -> dict:
    """
    Edit a settlement.

    Raises:
        SettlementNotFound: If the settlement does not exist or was deleted.
        NotMember: If the user is not a member.
        NotAuthorized: If the user did not record the settlement.
        SettlementLocked: If the payer or payee has left the group.
        ValidationError: If the edited settlement is invalid.
        ConcurrentUpdate: If the settlement changed since it was read.
    """
    settlement = _get_active_settlement(engine, settlement_id)
    group = engine.require_member(settlement["groupId"], user_id)
    _require_creator(settlement, user_id)
    if _is_locked(settlement, group):
        raise SettlementLocked()

    expected_version = changes.get("updatedAt") or settlement.get("updatedAt")
    edits = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS and value is not None}
    fields = _build_settlement_fields(group, {**settlement, **edits})

    def _update(current):
        if current.get("deletedAt") is not None:
            raise SettlementNotFound()
        if current.get("updatedAt") != expected_version:
            raise ConcurrentUpdate("Settlement was modified by someone else")
        return {**fields, "updatedAt": utc_now_iso()}

    updated = engine.store.update_document(SETTLEMENTS, settlement_id, _update, not_found=SettlementNotFound)
    logger.info("Settlement %s updated by %s", settlement_id, user_id)
    return _with_lock_flag(updated, group)


def delete_settlement(engine, user_id: str, settlement_id: str) -> dict:
    """
    Soft-delete a settlement.

    Raises:
        SettlementNotFound: If the settlement does not exist or was deleted.
        NotMember: If the user is not a member.
        NotAuthorized: If the user did not record the settlement.
        SettlementLocked: If the payer or payee has left the group.
    """
    settlement = _get_active_settlement(engine, settlement_id)
    group = engine.require_member(settlement["groupId"], user_id)
    _require_creator(settlement, user_id)
    if _is_locked(settlement, group):
        raise SettlementLocked()

    def _update(current):
        if current.get("deletedAt") is not None:
            raise SettlementNotFound()
        now = utc_now_iso()
        return {"deletedAt": now, "deletedBy": user_id, "updatedAt": now}

    deleted = engine.store.update_document(SETTLEMENTS, settlement_id, _update, not_found=SettlementNotFound)
    logger.info("Settlement %s deleted by %s", settlement_id, user_id)
    return deleted


def list_settlements(
    engine,
    user_id: str,
    group_id: str,
    cursor: Optional[str] = None,
    limit=None,
    include_deleted: bool = False
) -> dict:
    """
    Get a page of a group's settlements, newest first.

    Returns:
        dict: {items, hasMore, nextCursor}
    """
    decoded, page_size = parse_page_params(cursor, limit)
    group = engine.require_member(group_id, user_id)

    docs = engine.store.list_page(
        SETTLEMENTS, group_id, decoded, page_size + 1, SORT_FIELD,
        direction=DIRECTION_DESCENDING, include_deleted=include_deleted
    )
    page = paginate(docs, page_size, SORT_FIELD)
    page["items"] = [_with_lock_flag(settlement, group) for settlement in page["items"]]
    return page
