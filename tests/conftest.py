"""
Shared fixtures: an in-memory document store and a permission engine.

InMemoryStore implements the same interface as firebase_store.FirestoreStore
so services and the API can be exercised without Firestore. Documents are
deep-copied on the way in and out, like Firestore snapshots.
"""

from __future__ import annotations

import copy
import itertools
from collections import defaultdict

import pytest

from errors import GroupNotFound, NotFound
from firebase_store import GROUPS, HISTORY_FIELD
from pagination import DIRECTION_DESCENDING
from permissions import PRESET_PERMISSIONS, PermissionCache, PermissionEngine, SecurityPresets


class InMemoryStore:

    def __init__(self):
        self.collections = defaultdict(dict)
        self._ids = itertools.count(1)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_document(self, collection, doc_id):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    def query_group_documents(self, collection, group_id, include_deleted=False):
        return [
            self.get_document(collection, doc_id)
            for doc_id, doc in self.collections[collection].items()
            if doc.get("groupId") == group_id and (include_deleted or doc.get("deletedAt") is None)
        ]

    def list_page(self, collection, group_id, cursor, limit, sort_field,
                  direction=DIRECTION_DESCENDING, include_deleted=False, filters=None):
        docs = [
            doc for doc in self.query_group_documents(collection, group_id, include_deleted)
            if all(doc.get(field) == value for field, value in (filters or {}).items())
        ]
        descending = direction == DIRECTION_DESCENDING

        def key(doc):
            return (str(doc.get(sort_field, "")), doc["id"])

        docs.sort(key=key, reverse=descending)
        if cursor is not None:
            start = (cursor.sort_value, cursor.id)
            docs = [doc for doc in docs if (key(doc) < start if descending else key(doc) > start)]
        return docs[:limit]

    # ── Writes ───────────────────────────────────────────────────────────

    def create_document(self, collection, data, doc_id=None):
        doc_id = doc_id or f"{collection}-{next(self._ids):04d}"
        payload = {key: value for key, value in data.items() if key != "id"}
        self.collections[collection][doc_id] = copy.deepcopy(payload)
        return {**copy.deepcopy(payload), "id": doc_id}

    def update_document(self, collection, doc_id, update_fn, not_found=NotFound):
        current = self.get_document(collection, doc_id)
        if current is None:
            raise not_found()
        updates = {key: value for key, value in update_fn(current).items() if key != "id"}
        self.collections[collection][doc_id].update(copy.deepcopy(updates))
        return self.get_document(collection, doc_id)

    def append_history_entry(self, group_id, entry):
        self.collections[GROUPS][group_id].setdefault(HISTORY_FIELD, []).append(copy.deepcopy(entry))

    def update_group(self, group_id, update_fn):
        group = self.get_document(GROUPS, group_id)
        if group is None:
            raise GroupNotFound()
        updates, entry = update_fn(group)
        self.collections[GROUPS][group_id].update(
            copy.deepcopy({key: value for key, value in updates.items() if key != "id"})
        )
        if entry is not None:
            self.append_history_entry(group_id, entry)
        return self.get_document(GROUPS, group_id)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache():
    return PermissionCache()


@pytest.fixture
def engine(store, cache):
    return PermissionEngine(store, cache)


def make_group_doc(admin="alice", members=(), preset_permissions=None, group_id="g1"):
    """Build a group document with one admin and any number of regular members."""
    now = "2024-01-01T00:00:00+00:00"
    member_map = {admin: {"role": "admin", "joinedAt": now, "lastPermissionChange": now}}
    for user_id in members:
        member_map[user_id] = {"role": "member", "joinedAt": now, "lastPermissionChange": now}
    return {
        "id": group_id,
        "name": "Trip",
        "createdBy": admin,
        "securityPreset": SecurityPresets.OPEN,
        "permissions": dict(preset_permissions or PRESET_PERMISSIONS[SecurityPresets.OPEN]),
        "members": member_map,
        HISTORY_FIELD: [],
    }


@pytest.fixture
def seed_group(store):
    """Store a group document and return it."""
    def _seed(admin="alice", members=(), preset_permissions=None, group_id="g1"):
        group = make_group_doc(admin, members, preset_permissions, group_id)
        return store.create_document(GROUPS, group, doc_id=group_id)
    return _seed


@pytest.fixture
def group_doc():
    """Factory for unstored group documents, for pure permission checks."""
    return make_group_doc
