"""Tests for notes: service rules and the /api/v1/notes surface."""

import uuid

import pytest
from fastapi.testclient import TestClient

from notevault import app as app_module
from notevault.service.auth import AuthContext
from notevault.service.errors import ForbiddenError, NotFoundError, ValidationError
from notevault.service.notes import Pagination, parse_tag_filter
from notevault.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _account(client, email, password="pw-notes-1"):
    client.post("/api/v1/auth/register", json={"email": email, "password": password})
    token = client.post(
        "/api/v1/auth/login", json={"email": email, "password": password}
    ).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def _create(client, headers, **fields):
    payload = {"title": "Title", "body": "Body"}
    payload.update(fields)
    return client.post("/api/v1/notes", json=payload, headers=headers)


class TestPagination:
    @pytest.mark.parametrize("total,limit,pages", [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2)])
    def test_pages(self, total, limit, pages):
        assert Pagination(page=1, limit=limit, total=total).pages == pages

    def test_window_is_clamped(self):
        runtime = get_runtime()
        user = runtime.store.create_user("w@x.com", "hash")
        ctx = AuthContext(user_id=user.id, roles=["USER"])

        _, pagination = runtime.notes.list_notes(ctx, page=0, limit=10_000)
        assert pagination.page == 1
        assert pagination.limit == runtime.settings.max_page_size

        _, pagination = runtime.notes.list_my_notes(ctx)
        assert pagination.limit == runtime.settings.default_page_size

    def test_tag_filter(self):
        assert parse_tag_filter(" work, ,home ") == ["work", "home"]
        assert parse_tag_filter(None) == []


class TestNoteService:
    @pytest.fixture
    def owner(self):
        user = get_runtime().store.create_user("owner@x.com", "hash")
        return AuthContext(user_id=user.id, roles=["USER"])

    @pytest.fixture
    def stranger(self):
        user = get_runtime().store.create_user("stranger@x.com", "hash")
        return AuthContext(user_id=user.id, roles=["USER"])

    def test_create_trims_and_cleans(self, owner):
        note = get_runtime().notes.create_note(
            owner, title="  Plan ", body=" steps ", tags=[" a ", "", "b"]
        )
        assert note.title == "Plan"
        assert note.body == "steps"
        assert note.tags == ["a", "b"]
        assert note.is_public is False

    @pytest.mark.parametrize(
        "title,body,message",
        [
            (None, "b", "Title and body are required"),
            ("t", "", "Title and body are required"),
            ("   ", "b", "Title cannot be empty"),
            ("t", "   ", "Body cannot be empty"),
            ("x" * 201, "b", "Title cannot exceed 200 characters"),
            ("t", "x" * 5001, "Body cannot exceed 5000 characters"),
        ],
    )
    def test_create_validation(self, owner, title, body, message):
        with pytest.raises(ValidationError) as exc:
            get_runtime().notes.create_note(owner, title=title, body=body)
        assert exc.value.message == message

    def test_private_note_hidden_from_others(self, owner, stranger):
        notes = get_runtime().notes
        note = notes.create_note(owner, title="t", body="b")
        with pytest.raises(ForbiddenError):
            notes.get_note(stranger, note.id)
        notes.update_note(owner, note.id, is_public=True)
        assert notes.get_note(stranger, note.id).id == note.id

    def test_partial_update(self, owner):
        notes = get_runtime().notes
        note = notes.create_note(owner, title="t", body="b", tags=["x"])
        updated = notes.update_note(owner, note.id, body="new body")
        assert updated.title == "t"
        assert updated.body == "new body"
        assert updated.tags == ["x"]
        assert updated.updated_at >= note.updated_at

    def test_update_rejects_blank_title(self, owner):
        notes = get_runtime().notes
        note = notes.create_note(owner, title="t", body="b")
        with pytest.raises(ValidationError):
            notes.update_note(owner, note.id, title=" ")

    def test_missing_and_malformed_ids(self, owner):
        notes = get_runtime().notes
        with pytest.raises(NotFoundError):
            notes.get_note(owner, str(uuid.uuid4()))
        with pytest.raises(ValidationError) as exc:
            notes.get_note(owner, "not-a-uuid")
        assert exc.value.error == "Invalid ID"


class TestNotesApi:
    def test_requires_bearer(self, client):
        response = client.get("/api/v1/notes")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_create_and_get(self, client):
        headers = _account(client, "writer@x.com")
        created = _create(client, headers, title="Hello", body="World", isPublic=True, tags=["t1"])

        assert created.status_code == 201
        data = created.json()
        assert data["message"] == "Note created successfully"
        note = data["note"]
        assert note["isPublic"] is True
        assert note["tags"] == ["t1"]
        assert note["author"]["email"] == "writer@x.com"
        assert {"createdAt", "updatedAt"} <= set(note)

        fetched = client.get(f"/api/v1/notes/{note['id']}", headers=headers)
        assert fetched.status_code == 200
        assert "message" not in fetched.json()
        assert fetched.json()["note"]["title"] == "Hello"

    def test_create_validation_envelope(self, client):
        headers = _account(client, "writer@x.com")
        response = _create(client, headers, title="")
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Validation Error",
            "message": "Title and body are required",
        }

    def test_get_errors(self, client):
        owner = _account(client, "owner@x.com")
        other = _account(client, "other@x.com")
        note_id = _create(client, owner).json()["note"]["id"]

        assert client.get(f"/api/v1/notes/{note_id}", headers=other).status_code == 403
        missing = client.get(f"/api/v1/notes/{uuid.uuid4()}", headers=owner)
        assert missing.status_code == 404
        assert missing.json()["message"] == "Note not found"
        bad = client.get("/api/v1/notes/12345", headers=owner)
        assert bad.status_code == 400
        assert bad.json()["error"] == "Invalid ID"

    def test_list_search_tags_and_pagination(self, client):
        owner = _account(client, "owner@x.com")
        other = _account(client, "other@x.com")
        for i in range(3):
            _create(client, owner, title=f"mine {i}", tags=["work"])
        _create(client, other, title="shared recipe", isPublic=True, tags=["food"])
        _create(client, other, title="private recipe")

        everything = client.get("/api/v1/notes", headers=owner).json()
        assert everything["pagination"] == {"page": 1, "limit": 10, "total": 4, "pages": 1}

        page = client.get("/api/v1/notes", params={"page": 2, "limit": 3}, headers=owner).json()
        assert len(page["notes"]) == 1
        assert page["pagination"]["pages"] == 2

        found = client.get("/api/v1/notes", params={"search": "RECIPE"}, headers=owner).json()
        assert [n["title"] for n in found["notes"]] == ["shared recipe"]

        tagged = client.get("/api/v1/notes", params={"tags": "food,misc"}, headers=owner).json()
        assert [n["title"] for n in tagged["notes"]] == ["shared recipe"]

    def test_my_notes_only_own(self, client):
        owner = _account(client, "owner@x.com")
        other = _account(client, "other@x.com")
        _create(client, owner, title="mine")
        _create(client, other, title="theirs", isPublic=True)

        response = client.get("/api/v1/notes/my", headers=owner)
        assert response.status_code == 200
        assert [n["title"] for n in response.json()["notes"]] == ["mine"]

    def test_update_owner_only(self, client):
        owner = _account(client, "owner@x.com")
        other = _account(client, "other@x.com")
        note_id = _create(client, owner, isPublic=True).json()["note"]["id"]

        denied = client.put(f"/api/v1/notes/{note_id}", json={"title": "x"}, headers=other)
        assert denied.status_code == 403
        assert denied.json()["message"] == "You can only edit your own notes"

        updated = client.put(
            f"/api/v1/notes/{note_id}", json={"title": "New", "isPublic": False}, headers=owner
        )
        assert updated.status_code == 200
        assert updated.json()["message"] == "Note updated successfully"
        assert updated.json()["note"]["title"] == "New"
        assert updated.json()["note"]["isPublic"] is False

    def test_delete_owner_or_admin(self, client):
        owner = _account(client, "owner@x.com")
        other = _account(client, "other@x.com")
        first = _create(client, owner).json()["note"]["id"]
        second = _create(client, owner).json()["note"]["id"]

        denied = client.delete(f"/api/v1/notes/{first}", headers=other)
        assert denied.status_code == 403
        assert denied.json()["message"] == "You can only delete your own notes"

        deleted = client.delete(f"/api/v1/notes/{first}", headers=owner)
        assert deleted.json() == {"success": True, "message": "Note deleted successfully"}
        assert client.get(f"/api/v1/notes/{first}", headers=owner).status_code == 404

        store = get_runtime().store
        admin = store.get_user_by_email("other@x.com")
        store.update_user_roles(admin.id, ["USER", "ADMIN"])
        # roles travel in the access token, so the promotion needs a fresh login
        admin_headers = _account(client, "other@x.com")
        assert client.delete(f"/api/v1/notes/{second}", headers=admin_headers).status_code == 200
