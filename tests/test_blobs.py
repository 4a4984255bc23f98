from pathlib import Path

import pytest

from novelstore import (
    BlobAlreadyExistsError,
    BlobNotFoundError,
    BlobStore,
    FileBlobStore,
    InMemoryBlobStore,
    InvalidInputError,
    VersionConflictError,
    blob_version,
)


@pytest.fixture(params=["memory", "file"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> BlobStore:
    if request.param == "memory":
        return InMemoryBlobStore()
    return FileBlobStore(tmp_path / "blobs")


def test_blob_version_matches_git_blob_hash() -> None:
    # `printf 'hello\n' | git hash-object --stdin`
    assert blob_version("hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"
    assert blob_version("") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"


def test_get_missing_blob_returns_none(store: BlobStore) -> None:
    assert store.get("novel/info.json") is None


def test_put_without_version_creates_blob(store: BlobStore) -> None:
    version = store.put("novel/info.json", '{"titulo": "A"}')

    stored = store.get("novel/info.json")
    assert stored is not None
    assert stored.content == '{"titulo": "A"}'
    assert stored.version == version
    assert stored.path == "novel/info.json"


def test_put_without_version_rejects_existing_blob(store: BlobStore) -> None:
    store.put("novel/info.json", "first")

    with pytest.raises(BlobAlreadyExistsError):
        store.put("novel/info.json", "second")

    stored = store.get("novel/info.json")
    assert stored is not None and stored.content == "first"


def test_put_with_current_version_replaces_content(store: BlobStore) -> None:
    first = store.put("notes.txt", "one")
    second = store.put("notes.txt", "two", expected_version=first)

    assert second != first
    stored = store.get("notes.txt")
    assert stored is not None
    assert stored.content == "two"
    assert stored.version == second


def test_put_with_stale_version_is_rejected(store: BlobStore) -> None:
    first = store.put("notes.txt", "one")
    store.put("notes.txt", "two", expected_version=first)

    with pytest.raises(VersionConflictError) as excinfo:
        store.put("notes.txt", "three", expected_version=first)

    assert excinfo.value.retryable is True
    assert excinfo.value.expected_version == first
    stored = store.get("notes.txt")
    assert stored is not None and stored.content == "two"


def test_put_with_version_on_missing_blob_conflicts(store: BlobStore) -> None:
    with pytest.raises(VersionConflictError):
        store.put("notes.txt", "one", expected_version=blob_version("zero"))


def test_only_one_writer_wins_from_the_same_version(store: BlobStore) -> None:
    base = store.put("counter.json", "0")

    store.put("counter.json", "1", expected_version=base)
    with pytest.raises(VersionConflictError):
        store.put("counter.json", "1", expected_version=base)


def test_delete_requires_matching_version(store: BlobStore) -> None:
    version = store.put("novel/info.json", "data")

    with pytest.raises(VersionConflictError):
        store.delete("novel/info.json", blob_version("other"))
    assert store.get("novel/info.json") is not None

    store.delete("novel/info.json", version)
    assert store.get("novel/info.json") is None


def test_delete_missing_blob_raises_not_found(store: BlobStore) -> None:
    with pytest.raises(BlobNotFoundError):
        store.delete("novel/info.json", blob_version("data"))


def test_list_returns_direct_children_sorted(store: BlobStore) -> None:
    store.put("beta/info.json", "b")
    store.put("alpha/info.json", "a")
    store.put("alpha/chapter-1.html", "<p>1</p>")
    store.put("users/reader.json", "{}")

    root = store.list("")
    assert [(entry.name, entry.kind) for entry in root] == [
        ("alpha", "dir"),
        ("beta", "dir"),
        ("users", "dir"),
    ]

    children = store.list("alpha")
    assert [entry.name for entry in children] == ["chapter-1.html", "info.json"]
    assert all(entry.kind == "file" for entry in children)
    assert children[1].path == "alpha/info.json"
    assert children[1].version == blob_version("a")


def test_list_missing_prefix_is_empty(store: BlobStore) -> None:
    assert store.list("nothing-here") == []


def test_paths_are_normalised_and_validated(store: BlobStore) -> None:
    store.put("/novel/info.json/", "data")
    assert store.get("novel/info.json") is not None

    with pytest.raises(InvalidInputError):
        store.get("novel/../users/admin.json")
    with pytest.raises(InvalidInputError):
        store.put("", "data")
    with pytest.raises(InvalidInputError):
        store.get("novel\\info.json")


def test_in_memory_store_records_audit_messages() -> None:
    store = InMemoryBlobStore()
    version = store.put("novel/info.json", "data", message="Add new novel - Novel")
    store.delete("novel/info.json", version)

    assert [entry.operation for entry in store.history] == ["put", "delete"]
    assert store.history[0].message == "Add new novel - Novel"
    assert store.history[0].version == version
    assert store.history[1].message == "delete novel/info.json"


def test_file_store_persists_across_instances(tmp_path: Path) -> None:
    first = FileBlobStore(tmp_path)
    version = first.put("novel/chapter-1.html", "<p>Línea\r\nsegunda</p>")

    second = FileBlobStore(tmp_path)
    stored = second.get("novel/chapter-1.html")
    assert stored is not None
    assert stored.content == "<p>Línea\r\nsegunda</p>"
    assert stored.version == version
    assert (tmp_path / "novel" / "chapter-1.html").is_file()


def test_file_store_leaves_no_temporary_files(tmp_path: Path) -> None:
    store = FileBlobStore(tmp_path)
    version = store.put("novel/info.json", "one")
    store.put("novel/info.json", "two", expected_version=version)

    assert sorted(path.name for path in (tmp_path / "novel").iterdir()) == ["info.json"]
    assert [entry.name for entry in store.list("novel")] == ["info.json"]


def test_public_url_defaults_to_none(store: BlobStore) -> None:
    assert store.public_url("novel/cover.png") is None
