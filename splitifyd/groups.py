"""
Groups Module

This module handles group creation and the read views of a group.

Features:
    - Create a group with its creator as the first admin
    - Group detail with live balances and suggested payments
    - Permission history for auditing

Data Model:
    Group stored at: groups/{group_id}
    Fields:
        - name: string (1-100 characters)
        - description: string or None
        - createdBy: string (user ID)
        - securityPreset: open | managed | custom
        - presetAppliedAt: string (ISO timestamp)
        - permissions: {action: level}
        - members: {user_id: {role, joinedAt, lastPermissionChange}}
        - permissionHistory: list of change entries
        - createdAt, updatedAt: string (ISO timestamps)

Functions:
    create_group: Create a new group.
    get_group_detail: Get a group with balances and the caller's permissions.
    get_group_balances_view: Get a group's balances and suggested payments.
    list_permission_history: Get a group's permission change log.
    serialize_group: Convert a group document for API responses.
"""

import logging
from typing import Optional

from balances import balances_to_dict, get_group_balances
from debts import simplify_debts
from firebase_store import GROUPS, HISTORY_FIELD
from permissions import MemberRoles, SecurityPresets, get_default_permissions
from errors import InvalidRequest
from utils import amount_to_string, utc_now_iso

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


def _validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidRequest("Group name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidRequest(f"Group name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _validate_description(description) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise InvalidRequest("Group description must be a string")
    description = description.strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidRequest(f"Group description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return description or None


def serialize_group(group: dict) -> dict:
    """Convert a group document for API responses (history is served separately)."""
    return {key: value for key, value in group.items() if key != HISTORY_FIELD}


def create_group(engine, user_id: str, name: str, description: Optional[str] = None) -> dict:
    """
    Create a new group with the creator as its only admin.

    New groups start on the open security preset.

    Args:
        engine: PermissionEngine bound to the document store.
        user_id: The creating user.
        name: Group name.
        description: Optional description.

    Returns:
        dict: The created group document.

    Raises:
        InvalidRequest: If the name or description is invalid.
    """
    name = _validate_name(name)
    description = _validate_description(description)

    now = utc_now_iso()
    group = engine.store.create_document(GROUPS, {
        "name": name,
        "description": description,
        "createdBy": user_id,
        "createdAt": now,
        "updatedAt": now,
        "securityPreset": SecurityPresets.OPEN,
        "presetAppliedAt": now,
        "permissions": get_default_permissions(SecurityPresets.OPEN),
        "members": {
            user_id: {"role": MemberRoles.ADMIN, "joinedAt": now, "lastPermissionChange": now},
        },
        HISTORY_FIELD: [],
    })
    engine.cache.set_group(group["id"], group)

    logger.info("Group %s created by %s", group["id"], user_id)
    return group


def _balances_view(engine, group: dict) -> dict:
    balances = get_group_balances(engine.store, group["id"], member_ids=(group.get("members") or {}).keys())
    debts = [
        {**payment, "amount": amount_to_string(payment["amount"], payment["currency"])}
        for payment in simplify_debts(balances)
    ]
    return {"balances": balances_to_dict(balances), "simplifiedDebts": debts}


def get_group_detail(engine, user_id: str, group_id: str) -> dict:
    """
    Get a group with its live balances and the caller's permissions.

    Returns:
        dict: {group, balances, simplifiedDebts, permissions}

    Raises:
        GroupNotFound: If the group does not exist.
        NotMember: If the caller is not a member.
    """
    group = engine.require_member(group_id, user_id)
    return {
        "group": serialize_group(group),
        **_balances_view(engine, group),
        "permissions": engine.get_user_permissions(user_id, group_id),
    }


def get_group_balances_view(engine, user_id: str, group_id: str) -> dict:
    """
    Get a group's balances and suggested payments.

    Returns:
        dict: {balances, simplifiedDebts}
    """
    group = engine.require_member(group_id, user_id)
    return _balances_view(engine, group)


def list_permission_history(engine, user_id: str, group_id: str) -> list[dict]:
    """Get a group's permission change log, oldest first."""
    group = engine.require_member(group_id, user_id)
    return list(group.get(HISTORY_FIELD) or [])
