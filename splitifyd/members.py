"""
Members Module

This module handles joining and leaving groups.

Features:
    - Add members, gated by the group's memberInvitation permission
    - Member approval (automatic or by an admin)
    - Leave a group or remove another member (admins only)
    - Last-admin and outstanding-balance protection on removal

Data Model:
    Members are embedded in the group document:
        groups/{group_id}.members.{user_id}
            - role: admin | member
            - joinedAt: string (ISO timestamp)
            - lastPermissionChange: string (ISO timestamp)

Functions:
    add_member: Add a user to a group.
    remove_member: Remove a user from a group.
    list_members: Get a group's members.
"""

import logging

from balances import get_group_balances, user_balance
from errors import InvalidRequest, MemberNotFound, NotAuthorized, NotMember, OutstandingBalance
from permissions import (
    MEMBER_APPROVAL,
    MEMBER_INVITATION,
    MemberRoles,
    PermissionLevels,
    check_permission,
    ensure_admin_remains,
    get_member_role,
)
from utils import format_currency, utc_now_iso

logger = logging.getLogger(__name__)


def _validate_user_id(user_id) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidRequest("userId must be a non-empty string")
    return user_id.strip()


def _is_approved(group: dict, actor_id: str) -> bool:
    # automatic approval is granted by the system, not by the inviter
    permissions = group.get("permissions") or {}
    automatic = permissions.get(MEMBER_APPROVAL, PermissionLevels.AUTOMATIC) == PermissionLevels.AUTOMATIC
    return check_permission(group, actor_id, MEMBER_APPROVAL, system=automatic)


def add_member(engine, actor_id: str, group_id: str, user_id: str) -> dict:
    """
    Add a user to a group as a regular member.

    Args:
        engine: PermissionEngine bound to the document store.
        actor_id: The inviting member.
        group_id: The ID of the group.
        user_id: The user to add.

    Returns:
        dict: The updated group.

    Raises:
        GroupNotFound: If the group does not exist.
        NotMember: If the actor is not a member.
        NotAuthorized: If the actor may not invite, or approval requires an admin.
        InvalidRequest: If the user is already a member.
    """
    user_id = _validate_user_id(user_id)

    def _update(group):
        if get_member_role(group, actor_id) is None:
            raise NotMember()
        if not check_permission(group, actor_id, MEMBER_INVITATION):
            raise NotAuthorized("You cannot invite members to this group")
        if not _is_approved(group, actor_id):
            raise NotAuthorized("New members must be approved by a group admin")

        members = group.get("members") or {}
        if user_id in members:
            raise InvalidRequest("User is already a member of this group")

        now = utc_now_iso()
        updated_members = {
            **members,
            user_id: {"role": MemberRoles.MEMBER, "joinedAt": now, "lastPermissionChange": now},
        }
        return {"members": updated_members, "updatedAt": now}, None

    group = engine.mutate_group(group_id, _update)
    logger.info("User %s added to group %s by %s", user_id, group_id, actor_id)
    return group


def remove_member(engine, actor_id: str, group_id: str, target_id: str) -> dict:
    """
    Remove a member from a group.

    Members may remove themselves; only admins may remove others.

    Returns:
        dict: The updated group.

    Raises:
        GroupNotFound: If the group does not exist.
        NotMember: If the actor is not a member.
        NotAuthorized: If a non-admin tries to remove someone else.
        MemberNotFound: If the target is not a member.
        OutstandingBalance: If the target still owes or is owed money.
        LastAdminError: If the removal leaves members but no admin.
    """
    def _remaining_members(group):
        actor_role = get_member_role(group, actor_id)
        if actor_role is None:
            raise NotMember()
        if actor_id != target_id and actor_role != MemberRoles.ADMIN:
            raise NotAuthorized("Only group admins can remove other members")

        members = group.get("members") or {}
        if target_id not in members:
            raise MemberNotFound()

        remaining = {uid: member for uid, member in members.items() if uid != target_id}
        ensure_admin_remains(members, remaining)
        return remaining

    _remaining_members(engine.get_group(group_id))

    outstanding = user_balance(get_group_balances(engine.store, group_id), target_id)
    if outstanding:
        summary = ", ".join(
            format_currency(value, currency) for currency, value in sorted(outstanding.items())
        )
        raise OutstandingBalance(f"Member has an outstanding balance: {summary}")

    def _update(group):
        return {"members": _remaining_members(group), "updatedAt": utc_now_iso()}, None

    updated = engine.mutate_group(group_id, _update)
    logger.info("User %s removed from group %s by %s", target_id, group_id, actor_id)
    return updated


def list_members(engine, user_id: str, group_id: str) -> list[dict]:
    """Get a group's members, sorted by join time."""
    group = engine.require_member(group_id, user_id)
    members = [{"userId": uid, **member} for uid, member in (group.get("members") or {}).items()]
    return sorted(members, key=lambda m: (m.get("joinedAt") or "", m["userId"]))
