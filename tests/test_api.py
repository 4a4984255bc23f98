from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from novelstore import InMemoryBlobStore, TransportError, VersionConflictError
from novelstore.api import NovelStoreSettings, create_app


@pytest.fixture()
def client(memory_store: InMemoryBlobStore) -> TestClient:
    return TestClient(create_app(settings=NovelStoreSettings(), store=memory_store))


def _create_novel(client: TestClient, **overrides) -> dict:
    payload = {"title": "The Lost City", "author": "Ana", "description": "An expedition."}
    payload.update(overrides)
    response = client.post("/api/novels", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_fetch_novel(client: TestClient) -> None:
    created = _create_novel(client, tags="magic, adventure", age_rating="adults")

    assert created["id"] == "the-lost-city"
    assert created["tags"] == ["magic", "adventure", "+18"]
    assert created["cover_image_url"].startswith("https://placehold.co/")
    assert created["chapters"] == []

    fetched = client.get("/api/novels/the-lost-city")
    assert fetched.status_code == 200
    assert fetched.json()["version"] == created["version"]

    listing = client.get("/api/novels")
    assert [novel["id"] for novel in listing.json()["data"]] == ["the-lost-city"]


def test_duplicate_novel_returns_conflict(client: TestClient) -> None:
    _create_novel(client)

    response = client.post(
        "/api/novels",
        json={"title": "The Lost City", "author": "B", "description": "Again."},
    )
    assert response.status_code == 409
    assert "already exists" in response.json()["detail"]


def test_invalid_novel_payloads(client: TestClient) -> None:
    missing = client.post("/api/novels", json={"title": "X", "author": "A"})
    assert missing.status_code == 422

    bad_slug = client.post(
        "/api/novels", json={"title": "???", "author": "A", "description": "D"}
    )
    assert bad_slug.status_code == 400


def test_unknown_novel_returns_404(client: TestClient) -> None:
    assert client.get("/api/novels/nowhere").status_code == 404


def test_chapter_create_then_overwrite(client: TestClient) -> None:
    _create_novel(client)

    created = client.put(
        "/api/novels/the-lost-city/chapters/1",
        json={"content": "<p>One</p>", "title": "Arrival"},
    )
    assert created.status_code == 201
    assert created.json()["created"] is True

    replaced = client.put(
        "/api/novels/the-lost-city/chapters/1", json={"content": "<p>Uno</p>"}
    )
    assert replaced.status_code == 200
    assert replaced.json()["created"] is False

    chapter = client.get("/api/novels/the-lost-city/chapters/1")
    assert chapter.status_code == 200
    assert chapter.json()["content"] == "<p>Uno</p>"
    assert chapter.json()["id"] == "chapter-1"

    assert client.get("/api/novels/the-lost-city/chapters/2").status_code == 404
    novel = client.get("/api/novels/the-lost-city").json()
    assert [c["id"] for c in novel["chapters"]] == ["chapter-1"]


def test_bulk_chapter_upload_reports_per_file(client: TestClient) -> None:
    _create_novel(client)

    response = client.post(
        "/api/novels/the-lost-city/chapters",
        json={
            "files": [
                {"filename": "chapter-1.html", "content": "<p>One</p>"},
                {"filename": "readme.md", "content": "nope"},
            ]
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is False
    assert [item["filename"] for item in payload["uploaded"]] == ["chapter-1.html"]
    assert payload["failed"][0]["status"] == "error"
    assert payload["failed"][0]["reason"]


def test_delete_novel_requires_version(client: TestClient) -> None:
    created = _create_novel(client)

    stale = client.delete("/api/novels/the-lost-city", params={"version": "0" * 40})
    assert stale.status_code == 409

    deleted = client.delete(
        "/api/novels/the-lost-city", params={"version": created["version"]}
    )
    assert deleted.status_code == 204
    assert client.get("/api/novels/the-lost-city").status_code == 404


def test_comment_thread_flow(client: TestClient) -> None:
    base = "/api/novels/the-lost-city/chapters/chapter-1/comments"

    empty = client.get(base)
    assert empty.status_code == 200
    assert empty.json() == {"data": [], "total": 0}

    comment = client.post(base, json={"name": "Ana", "content": "Great chapter!"})
    assert comment.status_code == 201
    parent_id = comment.json()["id"]

    reply = client.post(
        base, json={"name": "Bo", "content": "Agreed", "parent_id": parent_id}
    )
    assert reply.status_code == 201

    liked = client.post(f"{base}/{parent_id}/likes")
    assert liked.status_code == 200
    assert liked.json()["likes"] == 1

    thread = client.get(base).json()
    assert thread["total"] == 2
    (root,) = thread["data"]
    assert root["likes"] == 1
    assert root["replies"][0]["name"] == "Bo"
    assert root["replies"][0]["likes"] == 0


def test_comment_errors(client: TestClient, memory_store: InMemoryBlobStore) -> None:
    base = "/api/novels/the-lost-city/chapters/chapter-1/comments"

    no_thread = client.post(base, json={"name": "Bo", "content": "Hi", "parent_id": "x"})
    assert no_thread.status_code == 404

    client.post(base, json={"name": "Ana", "content": "Root"})
    no_parent = client.post(base, json={"name": "Bo", "content": "Hi", "parent_id": "x"})
    assert no_parent.status_code == 404
    assert client.post(f"{base}/x/likes").status_code == 404

    blank = client.post(base, json={"name": " ", "content": "Hi"})
    assert blank.status_code == 422

    memory_store.put("the-lost-city/comments-chapter-2.json", "{broken")
    corrupt = client.get("/api/novels/the-lost-city/chapters/chapter-2/comments")
    assert corrupt.status_code == 500
    assert "corrupted" in corrupt.json()["detail"]


def test_register_authenticate_and_fetch_user(client: TestClient) -> None:
    registered = client.post(
        "/api/users", json={"username": "alice", "email": "a@x.com", "password": "secret1"}
    )
    assert registered.status_code == 201
    assert registered.json()["username"] == "alice"
    assert "password" not in registered.text

    taken = client.post(
        "/api/users", json={"username": "bob", "email": "a@x.com", "password": "secret2"}
    )
    assert taken.status_code == 409

    session = client.post("/api/sessions", json={"identifier": "a@x.com", "password": "secret1"})
    assert session.status_code == 200
    assert session.json()["id"] == "alice"

    wrong = client.post("/api/sessions", json={"identifier": "alice", "password": "nope"})
    assert wrong.status_code == 401

    assert client.get("/api/users/alice").json()["email"] == "a@x.com"
    assert client.get("/api/users/bob").status_code == 404


def test_short_password_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/users", json={"username": "alice", "email": "a@x.com", "password": "123"}
    )
    assert response.status_code == 400


def test_transport_failures_map_to_service_unavailable(
    monkeypatch: pytest.MonkeyPatch, memory_store: InMemoryBlobStore
) -> None:
    def unreachable(path: str):
        raise TransportError(path, "read", "request timed out")

    monkeypatch.setattr(memory_store, "get", unreachable)
    client = TestClient(create_app(settings=NovelStoreSettings(), store=memory_store))

    assert client.get("/api/novels/the-lost-city").status_code == 503


def test_exhausted_conflict_retries_map_to_conflict(
    monkeypatch: pytest.MonkeyPatch, memory_store: InMemoryBlobStore
) -> None:
    client = TestClient(
        create_app(settings=NovelStoreSettings(conflict_retries=1), store=memory_store)
    )

    def always_conflict(path: str, content: str, **kwargs):
        raise VersionConflictError(path, kwargs.get("expected_version"))

    monkeypatch.setattr(memory_store, "put", always_conflict)
    response = client.post(
        "/api/novels/the-lost-city/chapters/chapter-1/comments",
        json={"name": "Ana", "content": "Hi"},
    )
    assert response.status_code == 409


def test_file_backend_app_persists_to_disk(tmp_path: Path) -> None:
    client = TestClient(
        create_app(settings=NovelStoreSettings(backend="file", data_root=tmp_path))
    )

    _create_novel(client)

    assert (tmp_path / "the-lost-city" / "info.json").is_file()


@pytest.mark.parametrize(
    ("path", "payload"),
    [
        (
            "/api/novels",
            {"title": "T", "author": "A", "description": "D", "category": 5},
        ),
        ("/api/novels", {"title": "T", "author": "A", "description": "D", "translator": []}),
        (
            "/api/novels/the-lost-city/chapters/chapter-1/comments",
            {"name": "Ana", "content": "Hi", "parent_id": 7},
        ),
    ],
)
def test_non_string_optional_fields_are_validation_errors(
    client: TestClient, path: str, payload: dict
) -> None:
    response = client.post(path, json=payload)

    assert response.status_code == 422
    assert "Value must be a string or null." in response.text


def test_non_string_chapter_title_is_a_validation_error(client: TestClient) -> None:
    _create_novel(client)

    response = client.put(
        "/api/novels/the-lost-city/chapters/1", json={"content": "<p>One</p>", "title": 1}
    )

    assert response.status_code == 422
