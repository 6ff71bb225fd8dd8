"""
Firebase Store Module

This module wraps Firestore as the transactional document store behind the
expense splitting service.

Features:
    - Read, create and list documents scoped by group
    - Cursor-based pagination over group-scoped collections
    - Transactional read-modify-write with optimistic concurrency
    - Append-only permission history on group documents

Firestore Structure:
    groups/{group_id}
        - name, description, createdBy, createdAt, updatedAt
        - securityPreset, presetAppliedAt, permissions
        - members: {user_id: {role, joinedAt, lastPermissionChange}}
        - permissionHistory: [{timestamp, changedBy, changeType, changes}]

    expenses/{expense_id}        (groupId, deletedAt, ...)
    settlements/{settlement_id}  (groupId, deletedAt, ...)
    comments/{comment_id}        (groupId, expenseId, ...)

Classes:
    FirestoreStore: Document store backed by a Firestore client.

Notes:
    - Every document returned carries its document ID under "id"
    - Transaction conflicts surface as ConcurrentUpdate (retryable)
"""

import logging
from typing import Callable, Optional

from firebase_admin import firestore
from google.api_core.exceptions import Aborted, Conflict

from config.firebase_config import get_db
from errors import ConcurrentUpdate, GroupNotFound, NotFound, ServiceUnavailable
from pagination import DIRECTION_DESCENDING, Cursor, build_paginated_query

logger = logging.getLogger(__name__)

GROUPS = "groups"
EXPENSES = "expenses"
SETTLEMENTS = "settlements"
COMMENTS = "comments"

GROUP_ID_FIELD = "groupId"
DELETED_AT_FIELD = "deletedAt"
HISTORY_FIELD = "permissionHistory"


def _snapshot_to_dict(snapshot) -> dict:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


def _without_id(data: dict) -> dict:
    return {key: value for key, value in data.items() if key != "id"}


class FirestoreStore:
    """
    Document store backed by a Firestore client.

    Args:
        db: Firestore client. Defaults to config.firebase_config.get_db().

    Raises:
        ServiceUnavailable: If no Firestore client is available.
    """

    def __init__(self, db=None):
        self._db = db if db is not None else get_db()
        if self._db is None:
            raise ServiceUnavailable()

    def _collection(self, name: str):
        return self._db.collection(name)

    def _run_transaction(self, fn: Callable):
        """
        Run a transactional function, mapping conflicts to ConcurrentUpdate.

        firestore.transactional retries aborted commits itself and raises
        ValueError (caused by the last Aborted) once attempts are exhausted.
        """
        transaction = self._db.transaction()
        try:
            return firestore.transactional(fn)(transaction)
        except (Aborted, Conflict) as exc:
            raise ConcurrentUpdate() from exc
        except ValueError as exc:
            if isinstance(exc.__cause__, (Aborted, Conflict)):
                raise ConcurrentUpdate() from exc
            raise

    # =========================================================================
    # Reads
    # =========================================================================

    def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        """Get a single document by ID, or None if it does not exist."""
        snapshot = self._collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return _snapshot_to_dict(snapshot)

    def query_group_documents(self, collection: str, group_id: str, include_deleted: bool = False) -> list[dict]:
        """
        Get all documents of a collection that belong to a group.

        Soft-deleted documents (deletedAt set) are excluded unless
        include_deleted is True.
        """
        query = self._collection(collection).where(
            filter=firestore.FieldFilter(GROUP_ID_FIELD, "==", group_id)
        )
        if not include_deleted:
            query = query.where(filter=firestore.FieldFilter(DELETED_AT_FIELD, "==", None))
        return [_snapshot_to_dict(doc) for doc in query.stream()]

    def list_page(
        self,
        collection: str,
        group_id: str,
        cursor: Optional[Cursor],
        limit: int,
        sort_field: str,
        direction: str = DIRECTION_DESCENDING,
        include_deleted: bool = False,
        filters: Optional[dict] = None
    ) -> list[dict]:
        """
        Fetch one page of group-scoped documents.

        Callers ask for limit + 1 documents to learn whether more exist.

        Args:
            collection: Collection name.
            group_id: Group the documents belong to.
            cursor: Decoded cursor of the previous page, or None.
            limit: Number of documents to fetch.
            sort_field: Field to order by (document ID breaks ties).
            direction: DIRECTION_ASCENDING or DIRECTION_DESCENDING.
            include_deleted: Include soft-deleted documents.
            filters: Extra equality filters {field: value}.
        """
        query = self._collection(collection).where(
            filter=firestore.FieldFilter(GROUP_ID_FIELD, "==", group_id)
        )
        if not include_deleted:
            query = query.where(filter=firestore.FieldFilter(DELETED_AT_FIELD, "==", None))
        for field_name, value in (filters or {}).items():
            query = query.where(filter=firestore.FieldFilter(field_name, "==", value))

        query = build_paginated_query(query, cursor, direction, limit, sort_field)
        return [_snapshot_to_dict(doc) for doc in query.stream()]

    # =========================================================================
    # Writes
    # =========================================================================

    def create_document(self, collection: str, data: dict, doc_id: Optional[str] = None) -> dict:
        """
        Create a document, generating an ID when none is given.

        Returns:
            dict: The stored data including its "id".
        """
        ref = self._collection(collection).document(doc_id) if doc_id else self._collection(collection).document()
        payload = _without_id(data)
        ref.create(payload)
        return {**payload, "id": ref.id}

    def update_document(
        self,
        collection: str,
        doc_id: str,
        update_fn: Callable[[dict], dict],
        not_found: type = NotFound
    ) -> dict:
        """
        Transactionally read a document, compute updates and write them.

        update_fn receives the current document and returns the fields to
        update; it may raise an ApiError to abort without writing.

        Returns:
            dict: The document after the update.

        Raises:
            not_found: If the document does not exist.
            ConcurrentUpdate: If the transaction kept conflicting.
        """
        ref = self._collection(collection).document(doc_id)

        def _apply(transaction):
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise not_found()
            current = _snapshot_to_dict(snapshot)
            updates = _without_id(update_fn(current))
            transaction.update(ref, updates)
            return {**current, **updates}

        return self._run_transaction(_apply)

    # =========================================================================
    # Groups and permission history
    # =========================================================================

    @staticmethod
    def _history_update(entry: dict) -> dict:
        """Field update that appends one entry to the permission history."""
        return {HISTORY_FIELD: firestore.ArrayUnion([entry])}

    def append_history_entry(self, group_id: str, entry: dict) -> None:
        """Append an entry to a group's permission history outside a transaction."""
        self._collection(GROUPS).document(group_id).update(self._history_update(entry))

    def update_group(self, group_id: str, update_fn: Callable[[dict], tuple]) -> dict:
        """
        Transactionally update a group document.

        update_fn receives the current group and returns a tuple
        (updates, history_entry). The history entry, when not None, is
        appended to permissionHistory in the same write.

        Returns:
            dict: The group after the update.

        Raises:
            GroupNotFound: If the group does not exist.
            ConcurrentUpdate: If the transaction kept conflicting.
        """
        ref = self._collection(GROUPS).document(group_id)

        def _apply(transaction):
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise GroupNotFound()
            group = _snapshot_to_dict(snapshot)
            updates, entry = update_fn(group)
            updates = _without_id(updates)

            write = dict(updates)
            if entry is not None:
                write.update(self._history_update(entry))
            transaction.update(ref, write)

            result = {**group, **updates}
            if entry is not None:
                result[HISTORY_FIELD] = [*group.get(HISTORY_FIELD, []), entry]
            return result

        updated = self._run_transaction(_apply)
        logger.debug("Group %s updated", group_id)
        return updated
