"""User accounts stored one document per user under ``users/``."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Callable, Iterator, List

from passlib.context import CryptContext

from .blobs import BlobStore
from .codec import UserCodec
from .documents import VersionedDocument
from .errors import (
    AuthenticationError,
    BlobAlreadyExistsError,
    BlobNotFoundError,
    CorruptDocumentError,
    EmailTakenError,
    InvalidInputError,
    UsernameTakenError,
)
from .models import UserRecord, normalise_email, normalise_username

logger = logging.getLogger(__name__)

USERS_PREFIX = "users"
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def user_path(username: str) -> str:
    return f"{USERS_PREFIX}/{username}.json"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, record: UserRecord) -> bool:
    if record.password_hash is not None:
        return pwd_context.verify(password, record.password_hash)
    if record.legacy_password is not None:
        # accounts created before hashing was introduced
        return hmac.compare_digest(
            password.encode("utf-8"), record.legacy_password.encode("utf-8")
        )
    return False


class DirectoryService:
    """Registration and sign-in against the per-user documents.

    Email uniqueness is checked by scanning every user document before the
    new one is written. Nothing ties the scan to the write, so two concurrent
    registrations sharing an email under different usernames can both succeed.
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._users: VersionedDocument[UserRecord] = VersionedDocument(store, UserCodec())
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def register(self, username: str, email: str, password: str) -> UserRecord:
        """Create an account, rejecting taken usernames and emails."""

        name = normalise_username(username)
        address = normalise_email(email)
        _validate_password(password)

        path = user_path(name)
        if self._resolve_path(name) is not None:
            raise UsernameTakenError(name)

        if self._find_by_email(address, skip=name) is not None:
            raise EmailTakenError(address)

        record = UserRecord(
            username=name,
            email=address,
            password_hash=hash_password(password),
            created_at=self._clock(),
        )
        try:
            self._users.create(path, record, message=f"Register new user - {name}")
        except BlobAlreadyExistsError as exc:
            raise UsernameTakenError(name) from exc

        logger.info("Registered user %s", name)
        return record

    def authenticate(self, identifier: str, password: str) -> UserRecord:
        """Return the account matching ``identifier`` (username or email)."""

        if not isinstance(identifier, str) or not identifier.strip():
            raise InvalidInputError("Username or email is required.")
        if not isinstance(password, str) or not password:
            raise InvalidInputError("Password is required.")

        record = self._lookup(identifier.strip())
        if record is None:
            # unknown accounts cost one hash like known ones
            pwd_context.dummy_verify()
        if record is None or not verify_password(password, record):
            logger.info("Failed sign-in for %s", identifier.strip())
            raise AuthenticationError()
        return record

    def get_user(self, username: str) -> UserRecord:
        name = normalise_username(username)
        path = self._resolve_path(name)
        if path is None:
            raise BlobNotFoundError(user_path(name))
        return self._users.read(path).value

    def _lookup(self, identifier: str) -> UserRecord | None:
        try:
            name = normalise_username(identifier)
        except InvalidInputError:
            name = None

        path = self._resolve_path(name) if name is not None else None
        if path is not None:
            try:
                return self._users.read(path).value
            except BlobNotFoundError:
                pass

        if "@" in identifier:
            return self._find_by_email(identifier, skip=None)
        return None

    def _resolve_path(self, name: str) -> str | None:
        """Return the document holding ``name``, if any.

        Accounts written before usernames were case-folded live under their
        original spelling, such as ``users/Alice.json``.
        """

        path = user_path(name)
        if self._store.get(path) is not None:
            return path
        for entry in self._store.list(USERS_PREFIX):
            if entry.kind == "file" and entry.name.casefold() == f"{name}.json":
                return entry.path
        return None

    def _find_by_email(self, email: str, *, skip: str | None) -> UserRecord | None:
        wanted = email.strip().casefold()
        for record in self._scan(skip=skip):
            if record.email.casefold() == wanted:
                return record
        return None

    def _scan(self, *, skip: str | None) -> Iterator[UserRecord]:
        """Yield every readable user document, skipping ``skip``'s own."""

        for entry in self._store.list(USERS_PREFIX):
            if entry.kind != "file" or not entry.name.endswith(".json"):
                continue
            if skip is not None and entry.name == f"{skip}.json":
                continue

            try:
                yield self._users.read(entry.path).value
            except CorruptDocumentError as exc:
                logger.warning("Skipping unreadable user record %s: %s", entry.path, exc)
            except BlobNotFoundError:
                logger.debug("User record %s vanished during scan", entry.path)

    def list_usernames(self) -> List[str]:
        return [record.username for record in self._scan(skip=None)]


def _validate_password(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )


__all__ = [
    "DirectoryService",
    "MIN_PASSWORD_LENGTH",
    "hash_password",
    "user_path",
    "verify_password",
]
