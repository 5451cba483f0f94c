import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from draftsync.api.http.drafts import get_repository
from draftsync.core.db import build_session_factory, create_all
from draftsync.core.security import create_owner_token
from draftsync.db.repositories.draft_repository import DraftRepository
from draftsync.main import app


def _auth(owner_id):
    return {"Authorization": f"Bearer {create_owner_token(owner_id)}"}


@pytest.fixture
def client(tmp_path):
    factory = build_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(create_all(factory))
    app.dependency_overrides[get_repository] = lambda: DraftRepository(factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return _auth(uuid.uuid4())


def _create(client, headers, **payload):
    body = {"name": "Backend CV", "content": {"skills": ["Python"]}}
    body.update(payload)
    response = client.post("/drafts/", json=body, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    assert client.get("/drafts/").status_code == 401
    assert client.get("/drafts/", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_create_get_and_list(client, headers):
    created = _create(client, headers)

    assert created["version"] == 1
    assert created["is_active"] is True
    assert created["root_draft_id"] == created["id"]

    fetched = client.get(f"/drafts/{created['id']}", headers=headers).json()
    assert fetched["content"]["skills"] == ["Python"]
    assert fetched["last_accessed_at"] is not None

    listing = client.get("/drafts/", headers=headers).json()
    assert listing["total"] == 1


def test_other_owner_cannot_see_draft(client, headers):
    created = _create(client, headers)
    stranger = _auth(uuid.uuid4())

    assert client.get(f"/drafts/{created['id']}", headers=stranger).status_code == 404
    assert client.get("/drafts/", headers=stranger).json()["total"] == 0


def test_invalid_payload(client, headers):
    response = client.post("/drafts/", json={"name": "   "}, headers=headers)

    assert response.status_code == 422


def test_versions_with_optimistic_locking(client, headers):
    created = _create(client, headers)
    url = f"/drafts/{created['id']}/versions"
    body = {"expected_version": 1, "content": {"skills": ["Python", "Go"]}}

    first = client.post(url, json=body, headers=headers)
    assert first.status_code == 201
    assert first.json()["version"] == 2
    assert first.json()["parent_draft_id"] == created["id"]

    stale = client.post(url, json=body, headers=headers)
    assert stale.status_code == 409

    tip = first.json()
    unchanged = client.post(
        f"/drafts/{tip['id']}/versions",
        json={"expected_version": 2, "content": {"skills": ["Python", "Go"]}},
        headers=headers,
    )
    assert unchanged.status_code == 200
    assert unchanged.json()["id"] == tip["id"]


def test_patch_updates_in_place(client, headers):
    created = _create(client, headers)

    renamed = client.patch(
        f"/drafts/{created['id']}", json={"expected_version": 1, "name": "Platform CV"}, headers=headers
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Platform CV"
    assert renamed.json()["version"] == 1

    client.post(
        f"/drafts/{created['id']}/versions",
        json={"expected_version": 1, "content": {"skills": ["Go"]}},
        headers=headers,
    )
    stale = client.patch(
        f"/drafts/{created['id']}", json={"expected_version": 1, "name": "Late"}, headers=headers
    )
    assert stale.status_code == 409


def test_family_compare_and_restore(client, headers):
    created = _create(client, headers)
    v2 = client.post(
        f"/drafts/{created['id']}/versions",
        json={"expected_version": 1, "content": {"skills": ["Python", "Go"], "summary": "Engineer"}},
        headers=headers,
    ).json()

    family = client.get(f"/drafts/{created['id']}/family", headers=headers).json()
    assert [draft["version"] for draft in family] == [2, 1]

    diff = client.get(f"/drafts/{created['id']}/compare/{v2['id']}", headers=headers).json()
    assert diff["skills"]["added"] == ["Go"]
    assert diff["summary"]["new"] == "Engineer"

    restored = client.post(
        f"/drafts/{v2['id']}/restore-version", json={"version_id": created["id"]}, headers=headers
    )
    assert restored.status_code == 201
    assert restored.json()["version"] == 3
    assert restored.json()["content"]["skills"] == ["Python"]
    assert restored.json()["origin"] == "restore"

    missing = client.post(
        f"/drafts/{v2['id']}/restore-version", json={"version_id": str(uuid.uuid4())}, headers=headers
    )
    assert missing.status_code == 404


def test_archive_unarchive_and_delete(client, headers):
    created = _create(client, headers)
    draft_url = f"/drafts/{created['id']}"

    assert client.post(f"{draft_url}/archive", headers=headers).json() == {"archived": 1}
    assert client.get("/drafts/", headers=headers).json()["total"] == 0
    assert client.get("/drafts/archived", headers=headers).json()["total"] == 1

    unarchived = client.post(f"{draft_url}/unarchive", headers=headers)
    assert unarchived.status_code == 200
    assert unarchived.json()["archived"] is False

    assert client.delete(draft_url, headers=headers).json() == {"deleted": 1}
    assert client.get(draft_url, headers=headers).status_code == 404
