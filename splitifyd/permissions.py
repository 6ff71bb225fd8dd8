"""
Permissions Module

This module decides who may do what inside a group and applies changes to a
group's permission configuration.

Features:
    - Security presets (open, managed) with default permission sets
    - Custom per-action permission overrides
    - Member role changes with a last-admin guard
    - Append-only permission history on every change
    - Per group / per user permission cache with explicit invalidation

Data Model:
    Group document (Firestore: groups/{group_id}):
        - securityPreset: open | managed | custom
        - permissions: {action: level}
        - members: {user_id: {role, joinedAt, lastPermissionChange}}
        - permissionHistory: [{timestamp, changedBy, changeType, changes}]

    Actions: expenseEditing, expenseDeletion, memberInvitation,
             memberApproval, settingsManagement
    Levels:  anyone, owner-and-admin, admin-only, automatic, admin-required

Classes:
    PermissionCache: Lock-guarded cache of group state and user permissions.
    PermissionEngine: Permission checks and mutations backed by the store.

Functions:
    get_default_permissions: Permission set of a security preset.
    check_permission: Pure permission check against a group document.
    get_member_role: Role of a user in a group, or None.
    ensure_admin_remains: Guard against removing the last admin.
"""

import logging
import threading
from typing import Callable, Optional

from errors import (
    GroupNotFound,
    InvalidRequest,
    LastAdminError,
    MemberNotFound,
    NotAuthorized,
    NotMember,
)
from firebase_store import GROUPS
from utils import utc_now_iso

logger = logging.getLogger(__name__)


class SecurityPresets:
    OPEN = "open"
    MANAGED = "managed"
    CUSTOM = "custom"


class MemberRoles:
    ADMIN = "admin"
    MEMBER = "member"


class PermissionLevels:
    ANYONE = "anyone"
    OWNER_AND_ADMIN = "owner-and-admin"
    ADMIN_ONLY = "admin-only"
    AUTOMATIC = "automatic"
    ADMIN_REQUIRED = "admin-required"


class ChangeTypes:
    PRESET = "preset"
    CUSTOM = "custom"
    ROLE = "role"


EXPENSE_EDITING = "expenseEditing"
EXPENSE_DELETION = "expenseDeletion"
MEMBER_INVITATION = "memberInvitation"
MEMBER_APPROVAL = "memberApproval"
SETTINGS_MANAGEMENT = "settingsManagement"

# Levels each action accepts
PERMISSION_ACTIONS = {
    EXPENSE_EDITING: (PermissionLevels.ANYONE, PermissionLevels.OWNER_AND_ADMIN, PermissionLevels.ADMIN_ONLY),
    EXPENSE_DELETION: (PermissionLevels.ANYONE, PermissionLevels.OWNER_AND_ADMIN, PermissionLevels.ADMIN_ONLY),
    MEMBER_INVITATION: (PermissionLevels.ANYONE, PermissionLevels.ADMIN_ONLY),
    MEMBER_APPROVAL: (PermissionLevels.AUTOMATIC, PermissionLevels.ADMIN_REQUIRED),
    SETTINGS_MANAGEMENT: (PermissionLevels.ANYONE, PermissionLevels.ADMIN_ONLY),
}

PRESET_PERMISSIONS = {
    SecurityPresets.OPEN: {
        EXPENSE_EDITING: PermissionLevels.ANYONE,
        EXPENSE_DELETION: PermissionLevels.ANYONE,
        MEMBER_INVITATION: PermissionLevels.ANYONE,
        MEMBER_APPROVAL: PermissionLevels.AUTOMATIC,
        SETTINGS_MANAGEMENT: PermissionLevels.ANYONE,
    },
    SecurityPresets.MANAGED: {
        EXPENSE_EDITING: PermissionLevels.OWNER_AND_ADMIN,
        EXPENSE_DELETION: PermissionLevels.OWNER_AND_ADMIN,
        MEMBER_INVITATION: PermissionLevels.ADMIN_ONLY,
        MEMBER_APPROVAL: PermissionLevels.ADMIN_REQUIRED,
        SETTINGS_MANAGEMENT: PermissionLevels.ADMIN_ONLY,
    },
}

MEMBER_ROLES = (MemberRoles.ADMIN, MemberRoles.MEMBER)


def get_default_permissions(preset: str) -> dict:
    """
    Get the permission set of a security preset.

    Raises:
        InvalidRequest: If the preset is custom or unknown.
    """
    if preset not in PRESET_PERMISSIONS:
        raise InvalidRequest(f"Invalid security preset: {preset}")
    return dict(PRESET_PERMISSIONS[preset])


def get_member_role(group: dict, user_id: str) -> Optional[str]:
    member = (group.get("members") or {}).get(user_id)
    if not member:
        return None
    return member.get("role")


def _count_admins(members: dict) -> int:
    return sum(1 for member in members.values() if member.get("role") == MemberRoles.ADMIN)


def ensure_admin_remains(members_before: dict, members_after: dict) -> None:
    """
    Reject a membership change that leaves a group without an admin.

    A group left with no members at all is allowed.

    Raises:
        LastAdminError: If admins existed before and members but no admins
            remain after.
    """
    if not members_after:
        # The sole remaining member may leave, admin or not
        return
    if _count_admins(members_before) > 0 and _count_admins(members_after) == 0:
        raise LastAdminError()


def check_permission(
    group: dict,
    user_id: Optional[str],
    action: str,
    expense: Optional[dict] = None,
    system: bool = False
) -> bool:
    """
    Check whether a user may perform an action in a group.

    Args:
        group: Group document.
        user_id: Acting user, or None for system operations.
        action: One of PERMISSION_ACTIONS.
        expense: The expense being acted on, for owner-and-admin checks.
        system: True for operations performed by the system itself.

    Returns:
        bool: True if the action is allowed.

    Raises:
        InvalidRequest: If the action is unknown.
    """
    if action not in PERMISSION_ACTIONS:
        raise InvalidRequest(f"Unknown permission action: {action}")

    if system:
        return True

    role = get_member_role(group, user_id) if user_id else None
    if role is None:
        return False

    # Groups created before permissions existed behave as open
    permissions = group.get("permissions") or PRESET_PERMISSIONS[SecurityPresets.OPEN]
    level = permissions.get(action, PRESET_PERMISSIONS[SecurityPresets.OPEN][action])

    if level == PermissionLevels.ANYONE:
        return True
    if level in (PermissionLevels.ADMIN_ONLY, PermissionLevels.ADMIN_REQUIRED):
        return role == MemberRoles.ADMIN
    if level == PermissionLevels.OWNER_AND_ADMIN:
        if role == MemberRoles.ADMIN:
            return True
        if expense is None:
            return False
        return user_id in (expense.get("createdBy"), expense.get("paidBy"))
    # automatic is only ever satisfied by the system
    return False


def build_user_permissions(group: dict, user_id: str) -> dict:
    """
    Summarize what a member may do in a group.

    Raises:
        NotMember: If the user is not a member.
    """
    role = get_member_role(group, user_id)
    if role is None:
        raise NotMember()

    def allowed(action: str) -> bool:
        # "Any expense": the user is neither creator nor payer
        return check_permission(group, user_id, action, expense={})

    return {
        "role": role,
        "canEditAnyExpense": allowed(EXPENSE_EDITING),
        "canDeleteAnyExpense": allowed(EXPENSE_DELETION),
        "canInviteMembers": allowed(MEMBER_INVITATION),
        "canApproveMembers": allowed(MEMBER_APPROVAL),
        "canManageSettings": allowed(SETTINGS_MANAGEMENT),
    }


def history_entry(actor_id: str, change_type: str, changes: dict, timestamp: Optional[str] = None) -> dict:
    return {
        "timestamp": timestamp or utc_now_iso(),
        "changedBy": actor_id,
        "changeType": change_type,
        "changes": changes,
    }


class PermissionCache:
    """
    In-process cache of group documents and per-user permission summaries.

    Entries never expire; invalidate() is the only eviction path. Every
    invalidation bumps the group's generation, and fills that carry an older
    generation are dropped, so a read that started before a change can never
    put the pre-change document back.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._groups = {}
        self._users = {}
        self._generations = {}

    def generation(self, group_id: str) -> int:
        """Current generation of a group; read it before loading from the store."""
        with self._lock:
            return self._generations.get(group_id, 0)

    def _is_current(self, group_id: str, generation: Optional[int]) -> bool:
        return generation is None or self._generations.get(group_id, 0) == generation

    def get_group(self, group_id: str) -> Optional[dict]:
        with self._lock:
            return self._groups.get(group_id)

    def set_group(self, group_id: str, group: dict, generation: Optional[int] = None) -> bool:
        """Store a group unless the group was invalidated since generation was read."""
        with self._lock:
            if not self._is_current(group_id, generation):
                return False
            self._groups[group_id] = group
            return True

    def get_user(self, group_id: str, user_id: str) -> Optional[dict]:
        with self._lock:
            return self._users.get((group_id, user_id))

    def set_user(self, group_id: str, user_id: str, permissions: dict, generation: Optional[int] = None) -> bool:
        with self._lock:
            if not self._is_current(group_id, generation):
                return False
            self._users[(group_id, user_id)] = permissions
            return True

    def invalidate(self, group_id: str, user_id: Optional[str] = None) -> None:
        """
        Drop cached entries.

        With a user_id only that user's summary goes; without one the group
        entry and every user summary of the group go.
        """
        with self._lock:
            self._generations[group_id] = self._generations.get(group_id, 0) + 1
            if user_id is not None:
                self._users.pop((group_id, user_id), None)
                return
            self._groups.pop(group_id, None)
            for key in [key for key in self._users if key[0] == group_id]:
                del self._users[key]

    def clear(self) -> None:
        with self._lock:
            self._groups.clear()
            self._users.clear()
            for group_id in self._generations:
                self._generations[group_id] += 1


class PermissionEngine:
    """
    Permission checks and permission mutations for groups.

    Mutations run inside the store's group transaction: the current group is
    read, the change is validated against it, and the new state is written
    together with a history entry. After commit the cache is invalidated and
    the next read reloads the group.

    Args:
        store: Document store (FirestoreStore or compatible).
        cache: PermissionCache shared by the request handlers.
    """

    def __init__(self, store, cache: PermissionCache):
        self.store = store
        self.cache = cache

    # =========================================================================
    # Reads
    # =========================================================================

    def get_group(self, group_id: str) -> dict:
        """
        Get a group document, from the cache when present.

        Raises:
            GroupNotFound: If the group does not exist.
        """
        group = self.cache.get_group(group_id)
        if group is not None:
            return group

        generation = self.cache.generation(group_id)
        group = self.store.get_document(GROUPS, group_id)
        if group is None:
            raise GroupNotFound()
        self.cache.set_group(group_id, group, generation=generation)
        return group

    def require_member(self, group_id: str, user_id: str) -> dict:
        """
        Get a group, requiring the user to be one of its members.

        Raises:
            GroupNotFound: If the group does not exist.
            NotMember: If the user is not a member.
        """
        group = self.get_group(group_id)
        if get_member_role(group, user_id) is None:
            raise NotMember()
        return group

    def require_permission(self, group_id: str, user_id: str, action: str, expense: Optional[dict] = None) -> dict:
        """
        Get a group, requiring the user to be allowed to perform an action.

        Raises:
            GroupNotFound: If the group does not exist.
            NotMember: If the user is not a member.
            NotAuthorized: If the user's role does not allow the action.
        """
        group = self.require_member(group_id, user_id)
        if not check_permission(group, user_id, action, expense=expense):
            logger.info("Denied %s for user %s in group %s", action, user_id, group_id)
            raise NotAuthorized()
        return group

    def get_user_permissions(self, user_id: str, group_id: str) -> dict:
        """
        Get the permission summary of a member.

        Returns:
            dict: {role, canEditAnyExpense, canDeleteAnyExpense,
                   canInviteMembers, canApproveMembers, canManageSettings}

        Raises:
            GroupNotFound: If the group does not exist.
            NotMember: If the user is not a member.
        """
        cached = self.cache.get_user(group_id, user_id)
        if cached is not None:
            return dict(cached)

        generation = self.cache.generation(group_id)
        permissions = build_user_permissions(self.get_group(group_id), user_id)
        self.cache.set_user(group_id, user_id, permissions, generation=generation)
        return dict(permissions)

    # =========================================================================
    # Mutations
    # =========================================================================

    def invalidate(self, group_id: str, user_id: Optional[str] = None) -> None:
        self.cache.invalidate(group_id, user_id)

    def mutate_group(self, group_id: str, update_fn: Callable[[dict], tuple]) -> dict:
        """
        Run a transactional group update and invalidate the cache.

        update_fn receives the current group and returns
        (updates, history_entry_or_None).

        Returns:
            dict: The committed group.
        """
        group = self.store.update_group(group_id, update_fn)
        # Not refilled here: concurrent mutations may commit and invalidate in either order
        self.cache.invalidate(group_id)
        return group

    def _require_admin(self, group: dict, actor_id: str) -> None:
        role = get_member_role(group, actor_id)
        if role is None:
            raise NotMember()
        if role != MemberRoles.ADMIN:
            raise NotAuthorized("Only group admins can perform this action")

    def apply_security_preset(self, actor_id: str, group_id: str, preset: str) -> dict:
        """
        Replace a group's permissions with a preset's defaults.

        Raises:
            NotMember: If the actor is not a member.
            NotAuthorized: If the actor is not an admin.
            InvalidRequest: If the preset is custom or unknown.
        """
        def _update(group):
            self._require_admin(group, actor_id)
            permissions = get_default_permissions(preset)
            now = utc_now_iso()
            updates = {
                "securityPreset": preset,
                "presetAppliedAt": now,
                "permissions": permissions,
                "updatedAt": now,
            }
            entry = history_entry(
                actor_id,
                ChangeTypes.PRESET,
                {"securityPreset": {"from": group.get("securityPreset"), "to": preset}, "permissions": permissions},
                timestamp=now
            )
            return updates, entry

        group = self.mutate_group(group_id, _update)
        logger.info("Group %s switched to %s preset by %s", group_id, preset, actor_id)
        return group

    def update_group_permissions(self, actor_id: str, group_id: str, partial: dict) -> dict:
        """
        Override individual permissions; the group becomes custom.

        Raises:
            NotMember: If the actor is not a member.
            NotAuthorized: If settingsManagement does not allow the actor.
            InvalidRequest: If the update is empty or has unknown keys/values.
        """
        if not isinstance(partial, dict) or not partial:
            raise InvalidRequest("At least one permission must be provided")
        for action, level in partial.items():
            if action not in PERMISSION_ACTIONS:
                raise InvalidRequest(f"Unknown permission: {action}")
            if level not in PERMISSION_ACTIONS[action]:
                raise InvalidRequest(f"Invalid value for {action}: {level}")

        def _update(group):
            if get_member_role(group, actor_id) is None:
                raise NotMember()
            # Checked against the permissions in force before this change
            if not check_permission(group, actor_id, SETTINGS_MANAGEMENT):
                raise NotAuthorized("You cannot change this group's settings")

            current = group.get("permissions") or get_default_permissions(SecurityPresets.OPEN)
            merged = {**current, **partial}
            now = utc_now_iso()
            updates = {
                "securityPreset": SecurityPresets.CUSTOM,
                "permissions": merged,
                "updatedAt": now,
            }
            entry = history_entry(actor_id, ChangeTypes.CUSTOM, {"permissions": dict(partial)}, timestamp=now)
            return updates, entry

        group = self.mutate_group(group_id, _update)
        logger.info("Group %s permissions updated by %s: %s", group_id, actor_id, sorted(partial))
        return group

    def set_member_role(self, actor_id: str, group_id: str, target_id: str, role: str) -> dict:
        """
        Change a member's role.

        Raises:
            NotMember: If the actor is not a member.
            NotAuthorized: If the actor is not an admin.
            InvalidRequest: If the role is unknown.
            MemberNotFound: If the target is not a member.
            LastAdminError: If the change would leave the group without an admin.
        """
        def _update(group):
            self._require_admin(group, actor_id)
            if role not in MEMBER_ROLES:
                raise InvalidRequest(f"Invalid role: {role}")

            members = group.get("members") or {}
            if target_id not in members:
                raise MemberNotFound()

            previous_role = members[target_id].get("role")
            now = utc_now_iso()
            updated_members = {
                **members,
                target_id: {**members[target_id], "role": role, "lastPermissionChange": now},
            }
            try:
                ensure_admin_remains(members, updated_members)
            except LastAdminError:
                logger.warning("Rejected demotion of last admin %s in group %s", target_id, group_id)
                raise

            updates = {"members": updated_members, "updatedAt": now}
            entry = history_entry(
                actor_id,
                ChangeTypes.ROLE,
                {"userId": target_id, "from": previous_role, "to": role},
                timestamp=now
            )
            return updates, entry

        group = self.mutate_group(group_id, _update)
        logger.info("Role of %s in group %s set to %s by %s", target_id, group_id, role, actor_id)
        return group
