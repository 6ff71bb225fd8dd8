"""
tests/unit/test_permissions.py - Permission checks, presets, roles and cache.

What this file proves:
  - check_permission maps (level, role) to allow/deny; non-members never pass
  - automatic is only satisfied by the system
  - Presets, custom overrides and role changes append permission history
  - The last admin can never be demoted (400, not 403)
  - Cached permissions are refreshed after every mutation
"""

from __future__ import annotations

import threading

import pytest

from errors import GroupNotFound, InvalidRequest, LastAdminError, MemberNotFound, NotAuthorized, NotMember
from firebase_store import GROUPS
from permissions import (
    EXPENSE_DELETION,
    EXPENSE_EDITING,
    MEMBER_APPROVAL,
    MEMBER_INVITATION,
    PRESET_PERMISSIONS,
    SETTINGS_MANAGEMENT,
    PermissionCache,
    SecurityPresets,
    check_permission,
    ensure_admin_remains,
    get_default_permissions,
)

MANAGED = PRESET_PERMISSIONS[SecurityPresets.MANAGED]


# ═══════════════════════════════════════════════════════════════════════════
# check_permission (pure)
# ═══════════════════════════════════════════════════════════════════════════

class TestCheckPermission:

    def test_open_group_allows_any_member(self, group_doc):
        group = group_doc("alice", ["bob"])
        for action in (EXPENSE_EDITING, EXPENSE_DELETION, MEMBER_INVITATION, SETTINGS_MANAGEMENT):
            assert check_permission(group, "bob", action)

    def test_non_member_never_passes(self, group_doc):
        group = group_doc("alice", ["bob"])
        assert not check_permission(group, "mallory", EXPENSE_EDITING)
        assert not check_permission(group, None, EXPENSE_EDITING)

    def test_admin_only_levels(self, group_doc):
        group = group_doc("alice", ["bob"], preset_permissions=MANAGED)
        assert check_permission(group, "alice", SETTINGS_MANAGEMENT)
        assert not check_permission(group, "bob", SETTINGS_MANAGEMENT)
        assert check_permission(group, "alice", MEMBER_APPROVAL)
        assert not check_permission(group, "bob", MEMBER_APPROVAL)

    def test_owner_and_admin(self, group_doc):
        group = group_doc("alice", ["bob", "carol"], preset_permissions=MANAGED)
        expense = {"createdBy": "bob", "paidBy": "carol"}
        assert check_permission(group, "alice", EXPENSE_EDITING, expense=expense)
        assert check_permission(group, "bob", EXPENSE_EDITING, expense=expense)
        assert check_permission(group, "carol", EXPENSE_DELETION, expense=expense)
        assert not check_permission(group, "carol", EXPENSE_DELETION, expense={"createdBy": "bob", "paidBy": "bob"})
        assert not check_permission(group, "bob", EXPENSE_EDITING)

    def test_automatic_requires_system(self, group_doc):
        group = group_doc("alice", ["bob"])
        assert not check_permission(group, "alice", MEMBER_APPROVAL)
        assert not check_permission(group, "bob", MEMBER_APPROVAL)
        assert check_permission(group, None, MEMBER_APPROVAL, system=True)

    def test_system_satisfies_every_level(self, group_doc):
        group = group_doc("alice", preset_permissions=MANAGED)
        assert check_permission(group, None, SETTINGS_MANAGEMENT, system=True)

    def test_unknown_action(self, group_doc):
        with pytest.raises(InvalidRequest):
            check_permission(group_doc(), "alice", "deleteGroup")

    def test_group_without_permissions_behaves_as_open(self, group_doc):
        group = group_doc("alice", ["bob"])
        del group["permissions"]
        assert check_permission(group, "bob", SETTINGS_MANAGEMENT)


def test_default_permissions_reject_custom():
    assert get_default_permissions("managed")[EXPENSE_EDITING] == "owner-and-admin"
    with pytest.raises(InvalidRequest):
        get_default_permissions(SecurityPresets.CUSTOM)


class TestEnsureAdminRemains:

    def test_removing_last_admin_rejected(self):
        before = {"a": {"role": "admin"}, "b": {"role": "member"}}
        with pytest.raises(LastAdminError) as exc_info:
            ensure_admin_remains(before, {"b": {"role": "member"}})
        assert exc_info.value.code == "INVALID_REQUEST"
        assert exc_info.value.status_code == 400

    def test_empty_group_allowed(self):
        ensure_admin_remains({"a": {"role": "admin"}}, {})

    def test_other_admin_remains(self):
        before = {"a": {"role": "admin"}, "b": {"role": "admin"}}
        ensure_admin_remains(before, {"b": {"role": "admin"}})


# ═══════════════════════════════════════════════════════════════════════════
# PermissionEngine mutations
# ═══════════════════════════════════════════════════════════════════════════

class TestApplySecurityPreset:

    def test_admin_applies_managed(self, engine, seed_group):
        seed_group("alice", ["bob"])
        group = engine.apply_security_preset("alice", "g1", "managed")

        assert group["securityPreset"] == "managed"
        assert group["permissions"] == MANAGED
        assert group["presetAppliedAt"]
        entry = group["permissionHistory"][-1]
        assert entry["changeType"] == "preset"
        assert entry["changedBy"] == "alice"

    def test_member_cannot_apply(self, engine, seed_group):
        seed_group("alice", ["bob"])
        with pytest.raises(NotAuthorized):
            engine.apply_security_preset("bob", "g1", "managed")

    def test_non_member_cannot_apply(self, engine, seed_group):
        seed_group("alice")
        with pytest.raises(NotMember):
            engine.apply_security_preset("mallory", "g1", "managed")

    @pytest.mark.parametrize("preset", ["custom", "locked"])
    def test_invalid_preset(self, engine, seed_group, preset):
        seed_group("alice")
        with pytest.raises(InvalidRequest):
            engine.apply_security_preset("alice", "g1", preset)

    def test_missing_group(self, engine):
        with pytest.raises(GroupNotFound):
            engine.apply_security_preset("alice", "nope", "open")


class TestUpdateGroupPermissions:

    def test_override_makes_group_custom(self, engine, seed_group):
        seed_group("alice", ["bob"])
        group = engine.update_group_permissions("bob", "g1", {"expenseDeletion": "admin-only"})

        assert group["securityPreset"] == "custom"
        assert group["permissions"]["expenseDeletion"] == "admin-only"
        assert group["permissions"]["expenseEditing"] == "anyone"
        assert group["permissionHistory"][-1]["changeType"] == "custom"

    def test_checked_against_current_settings(self, engine, seed_group):
        seed_group("alice", ["bob"], preset_permissions=MANAGED)
        with pytest.raises(NotAuthorized):
            engine.update_group_permissions("bob", "g1", {"settingsManagement": "anyone"})

    @pytest.mark.parametrize("partial", [
        {},
        {"deleteGroup": "anyone"},
        {"memberApproval": "anyone"},
        {"expenseEditing": "automatic"},
    ])
    def test_invalid_updates(self, engine, seed_group, partial):
        seed_group("alice")
        with pytest.raises(InvalidRequest):
            engine.update_group_permissions("alice", "g1", partial)


class TestSetMemberRole:

    def test_promote_member(self, engine, seed_group):
        seed_group("alice", ["bob"])
        group = engine.set_member_role("alice", "g1", "bob", "admin")

        assert group["members"]["bob"]["role"] == "admin"
        assert group["members"]["bob"]["lastPermissionChange"] != "2024-01-01T00:00:00+00:00"
        assert group["permissionHistory"][-1]["changes"] == {"userId": "bob", "from": "member", "to": "admin"}

    def test_last_admin_cannot_demote_self(self, engine, seed_group, store):
        seed_group("alice", ["bob"])
        with pytest.raises(LastAdminError):
            engine.set_member_role("alice", "g1", "alice", "member")
        assert store.get_document("groups", "g1")["members"]["alice"]["role"] == "admin"

    def test_admin_can_step_down_when_another_admin_exists(self, engine, seed_group):
        seed_group("alice", ["bob"])
        engine.set_member_role("alice", "g1", "bob", "admin")
        group = engine.set_member_role("alice", "g1", "alice", "member")
        assert group["members"]["alice"]["role"] == "member"

    def test_member_cannot_change_roles(self, engine, seed_group):
        seed_group("alice", ["bob", "carol"])
        with pytest.raises(NotAuthorized):
            engine.set_member_role("bob", "g1", "carol", "admin")

    def test_non_member_actor(self, engine, seed_group):
        seed_group("alice", ["bob"])
        with pytest.raises(NotMember):
            engine.set_member_role("mallory", "g1", "bob", "admin")

    def test_unknown_role(self, engine, seed_group):
        seed_group("alice", ["bob"])
        with pytest.raises(InvalidRequest):
            engine.set_member_role("alice", "g1", "bob", "viewer")

    def test_unknown_target(self, engine, seed_group):
        seed_group("alice")
        with pytest.raises(MemberNotFound):
            engine.set_member_role("alice", "g1", "ghost", "admin")


# ═══════════════════════════════════════════════════════════════════════════
# Reads and cache
# ═══════════════════════════════════════════════════════════════════════════

class TestUserPermissions:

    def test_summary_for_member_in_managed_group(self, engine, seed_group):
        seed_group("alice", ["bob"], preset_permissions=MANAGED)
        assert engine.get_user_permissions("bob", "g1") == {
            "role": "member",
            "canEditAnyExpense": False,
            "canDeleteAnyExpense": False,
            "canInviteMembers": False,
            "canApproveMembers": False,
            "canManageSettings": False,
        }
        admin = engine.get_user_permissions("alice", "g1")
        assert admin["canEditAnyExpense"] and admin["canManageSettings"]

    def test_non_member(self, engine, seed_group):
        seed_group("alice")
        with pytest.raises(NotMember):
            engine.get_user_permissions("mallory", "g1")

    def test_cache_refreshed_after_role_change(self, engine, seed_group, cache):
        seed_group("alice", ["bob"])
        assert engine.get_user_permissions("bob", "g1")["role"] == "member"
        assert cache.get_user("g1", "bob") is not None

        engine.set_member_role("alice", "g1", "bob", "admin")

        assert cache.get_user("g1", "bob") is None
        assert cache.get_group("g1") is None
        assert engine.get_user_permissions("bob", "g1")["role"] == "admin"

    def test_require_permission(self, engine, seed_group):
        seed_group("alice", ["bob"], preset_permissions=MANAGED)
        assert engine.require_permission("g1", "alice", SETTINGS_MANAGEMENT)["id"] == "g1"
        with pytest.raises(NotAuthorized):
            engine.require_permission("g1", "bob", SETTINGS_MANAGEMENT)
        with pytest.raises(NotMember):
            engine.require_member("g1", "mallory")


class TestPermissionCache:

    def test_invalidate_single_user(self):
        cache = PermissionCache()
        cache.set_group("g1", {"id": "g1"})
        cache.set_user("g1", "u1", {"role": "admin"})
        cache.set_user("g1", "u2", {"role": "member"})

        cache.invalidate("g1", "u1")

        assert cache.get_user("g1", "u1") is None
        assert cache.get_user("g1", "u2") == {"role": "member"}
        assert cache.get_group("g1") == {"id": "g1"}

    def test_invalidate_group_drops_all_its_users(self):
        cache = PermissionCache()
        cache.set_group("g1", {"id": "g1"})
        cache.set_user("g1", "u1", {"role": "admin"})
        cache.set_user("g2", "u1", {"role": "member"})

        cache.invalidate("g1")

        assert cache.get_group("g1") is None
        assert cache.get_user("g1", "u1") is None
        assert cache.get_user("g2", "u1") == {"role": "member"}

    def test_fill_with_older_generation_dropped(self):
        cache = PermissionCache()
        generation = cache.generation("g1")
        cache.invalidate("g1")

        assert cache.set_group("g1", {"id": "g1", "stale": True}, generation=generation) is False
        assert cache.set_user("g1", "u1", {"role": "member"}, generation=generation) is False
        assert cache.get_group("g1") is None
        assert cache.get_user("g1", "u1") is None

        assert cache.set_group("g1", {"id": "g1"}, generation=cache.generation("g1")) is True


# ═══════════════════════════════════════════════════════════════════════════
# Cache fills racing a role change
# ═══════════════════════════════════════════════════════════════════════════

class TestConcurrentInvalidation:
    """A read that loaded the group before a role change must not cache it."""

    @pytest.fixture
    def paused_read(self, store, monkeypatch):
        """Make the next group read block after loading until resume is set."""
        state = {"armed": False, "loaded": threading.Event(), "resume": threading.Event()}
        load = store.get_document

        def _get_document(collection, doc_id):
            doc = load(collection, doc_id)
            if state["armed"] and collection == GROUPS:
                state["armed"] = False
                state["loaded"].set()
                state["resume"].wait(timeout=5)
            return doc

        monkeypatch.setattr(store, "get_document", _get_document)
        return state

    def _race(self, engine, paused_read, read):
        paused_read["armed"] = True
        results = {}
        reader = threading.Thread(target=lambda: results.update(value=read()))
        reader.start()
        assert paused_read["loaded"].wait(timeout=5)

        engine.set_member_role("alice", "g1", "bob", "admin")

        paused_read["resume"].set()
        reader.join(timeout=5)
        assert not reader.is_alive()
        return results["value"]

    def test_group_read_does_not_restore_old_role(self, engine, seed_group, cache, paused_read):
        seed_group("alice", ["bob"])

        group = self._race(engine, paused_read, lambda: engine.get_group("g1"))

        assert group["members"]["bob"]["role"] == "member"
        assert cache.get_group("g1") is None
        assert engine.get_group("g1")["members"]["bob"]["role"] == "admin"

    def test_permission_summary_does_not_restore_old_role(self, engine, seed_group, cache, paused_read):
        seed_group("alice", ["bob"])

        summary = self._race(engine, paused_read, lambda: engine.get_user_permissions("bob", "g1"))

        assert summary["role"] == "member"
        assert cache.get_user("g1", "bob") is None
        assert engine.get_user_permissions("bob", "g1")["role"] == "admin"
