"""
API fixtures: a TestClient wired to the in-memory store.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from main import app, get_engine, get_store


@pytest.fixture
def client(store, engine):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    """Headers identifying the caller."""
    def _headers(user_id):
        return {"X-User-Id": user_id}
    return _headers


@pytest.fixture
def make_group(client, as_user):
    """Create a group through the API with an admin and extra members."""
    def _make(admin="alice", members=()):
        response = client.post("/groups", json={"name": "Lisbon trip"}, headers=as_user(admin))
        assert response.status_code == 201
        group_id = response.json()["id"]
        for user_id in members:
            added = client.post(f"/groups/{group_id}/members", json={"userId": user_id}, headers=as_user(admin))
            assert added.status_code == 201
        return group_id
    return _make
