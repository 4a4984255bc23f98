import json

import pytest

from novelstore import (
    AuthenticationError,
    BlobNotFoundError,
    DirectoryService,
    EmailTakenError,
    InMemoryBlobStore,
    InvalidInputError,
    UsernameTakenError,
)
from novelstore.directory import pwd_context, user_path


@pytest.fixture()
def directory(memory_store: InMemoryBlobStore, fake_clock) -> DirectoryService:
    return DirectoryService(memory_store, clock=fake_clock)


def test_register_stores_a_hashed_password(
    directory: DirectoryService, memory_store: InMemoryBlobStore
) -> None:
    record = directory.register("Alice", "a@x.com", "secret1")

    assert record.username == "alice"
    stored = json.loads(memory_store.get(user_path("alice")).content)
    assert stored["username"] == "alice"
    assert stored["email"] == "a@x.com"
    assert "password" not in stored
    assert stored["password_hash"] != "secret1"
    assert stored["password_hash"].startswith("$pbkdf2-sha256$")
    assert memory_store.history[-1].message == "Register new user - alice"


def test_second_registration_with_same_email_fails(directory: DirectoryService) -> None:
    directory.register("alice", "a@x.com", "secret1")

    with pytest.raises(EmailTakenError):
        directory.register("bob", "A@X.com", "secret2")


def test_second_registration_with_same_username_fails(directory: DirectoryService) -> None:
    directory.register("alice", "a@x.com", "secret1")

    with pytest.raises(UsernameTakenError):
        directory.register("ALICE", "other@x.com", "secret2")


def test_losing_the_username_race_reports_username_taken(
    interleaving_store, fake_clock
) -> None:
    directory = DirectoryService(interleaving_store, clock=fake_clock)
    rival = DirectoryService(interleaving_store.inner, clock=fake_clock)
    interleaving_store.before_put.append(
        lambda: rival.register("alice", "rival@x.com", "secret9")
    )

    with pytest.raises(UsernameTakenError):
        directory.register("alice", "a@x.com", "secret1")


def test_concurrent_registrations_may_share_an_email(interleaving_store, fake_clock) -> None:
    directory = DirectoryService(interleaving_store, clock=fake_clock)
    rival = DirectoryService(interleaving_store.inner, clock=fake_clock)
    interleaving_store.before_put.append(
        lambda: rival.register("bob", "a@x.com", "secret2")
    )

    directory.register("alice", "a@x.com", "secret1")

    assert sorted(directory.list_usernames()) == ["alice", "bob"]


@pytest.mark.parametrize(
    ("username", "email", "password"),
    [
        ("al", "a@x.com", "secret1"),
        ("al ice", "a@x.com", "secret1"),
        ("alice", "not-an-email", "secret1"),
        ("alice", "a@x.com", "short"),
    ],
)
def test_register_validates_input_before_any_store_call(
    directory: DirectoryService,
    memory_store: InMemoryBlobStore,
    username: str,
    email: str,
    password: str,
) -> None:
    with pytest.raises(InvalidInputError):
        directory.register(username, email, password)
    assert memory_store.history == []


def test_authenticate_by_username_or_email(directory: DirectoryService) -> None:
    directory.register("alice", "a@x.com", "secret1")

    assert directory.authenticate("alice", "secret1").username == "alice"
    assert directory.authenticate("  Alice ", "secret1").username == "alice"
    assert directory.authenticate("A@x.com", "secret1").username == "alice"


def test_authenticate_rejects_wrong_credentials(directory: DirectoryService) -> None:
    directory.register("alice", "a@x.com", "secret1")

    with pytest.raises(AuthenticationError):
        directory.authenticate("alice", "wrong-password")
    with pytest.raises(AuthenticationError):
        directory.authenticate("nobody", "secret1")
    with pytest.raises(AuthenticationError):
        directory.authenticate("nobody@x.com", "secret1")
    with pytest.raises(InvalidInputError):
        directory.authenticate("alice", "")


def test_authenticate_accepts_legacy_plaintext_record(
    directory: DirectoryService, memory_store: InMemoryBlobStore
) -> None:
    memory_store.put(
        user_path("legacy"),
        json.dumps(
            {"id": "legacy", "username": "legacy", "email": "old@x.com", "password": "hunter22"}
        ),
    )

    assert directory.authenticate("legacy", "hunter22").username == "legacy"
    assert directory.authenticate("old@x.com", "hunter22").username == "legacy"
    with pytest.raises(AuthenticationError):
        directory.authenticate("legacy", "hunter2")


def test_corrupt_user_records_are_skipped_during_scans(
    directory: DirectoryService,
    memory_store: InMemoryBlobStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    memory_store.put(user_path("broken"), "{not json")
    directory.register("alice", "a@x.com", "secret1")

    with caplog.at_level("WARNING", logger="novelstore.directory"):
        directory.register("bob", "b@x.com", "secret2")

    assert "users/broken.json" in caplog.text
    assert directory.authenticate("b@x.com", "secret2").username == "bob"


def test_get_user(directory: DirectoryService) -> None:
    directory.register("alice", "a@x.com", "secret1")

    assert directory.get_user("Alice").email == "a@x.com"
    with pytest.raises(BlobNotFoundError):
        directory.get_user("nobody")


def test_unknown_account_still_costs_a_hash(
    directory: DirectoryService, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls = []
    monkeypatch.setattr(pwd_context, "dummy_verify", lambda: calls.append(True))
    directory.register("alice", "a@x.com", "secret1")

    with pytest.raises(AuthenticationError):
        directory.authenticate("nobody", "secret1")
    with pytest.raises(AuthenticationError):
        directory.authenticate("nobody@x.com", "secret1")
    assert len(calls) == 2

    directory.authenticate("alice", "secret1")
    assert len(calls) == 2


def test_mixed_case_legacy_documents_are_found(
    directory: DirectoryService, memory_store: InMemoryBlobStore
) -> None:
    memory_store.put(
        "users/Alice.json",
        json.dumps(
            {"id": "Alice", "username": "Alice", "email": "old@x.com", "password": "hunter22"}
        ),
    )

    assert directory.authenticate("alice", "hunter22").username == "alice"
    assert directory.authenticate("ALICE", "hunter22").username == "alice"
    assert directory.get_user("Alice").email == "old@x.com"
    with pytest.raises(UsernameTakenError):
        directory.register("alice", "new@x.com", "secret1")
    assert memory_store.get(user_path("alice")) is None
