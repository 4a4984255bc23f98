"""Typed errors raised by the novel persistence layer."""

from __future__ import annotations


class NovelStoreError(RuntimeError):
    """Base exception for every failure surfaced by the persistence layer."""

    retryable: bool = False


class InvalidInputError(ValueError, NovelStoreError):
    """Raised when caller input is rejected before any store round-trip."""


class BlobNotFoundError(NovelStoreError):
    """Raised when an operation requires a blob that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"'{path}' does not exist.")
        self.path = path


class BlobAlreadyExistsError(NovelStoreError):
    """Raised when creating a blob at a path that is already occupied."""

    def __init__(self, path: str) -> None:
        super().__init__(f"'{path}' already exists.")
        self.path = path


class VersionConflictError(NovelStoreError):
    """Raised when a conditioned write no longer matches the stored version."""

    retryable = True

    def __init__(self, path: str, expected_version: str | None) -> None:
        super().__init__(
            f"'{path}' was modified by someone else; reload and try again."
        )
        self.path = path
        self.expected_version = expected_version


class TransportError(NovelStoreError):
    """Raised when the remote store could not be reached or answered oddly.

    The write may or may not have been applied, so callers must re-read
    before deciding what to do next.
    """

    retryable = True
    outcome_unknown = True

    def __init__(
        self, path: str, operation: str, detail: str, *, status_code: int | None = None
    ) -> None:
        super().__init__(f"Could not {operation} '{path}': {detail}")
        self.path = path
        self.operation = operation
        self.status_code = status_code


class CorruptDocumentError(NovelStoreError):
    """Raised when a stored payload cannot be decoded into its record type."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"The data stored at '{path}' is corrupted: {reason}")
        self.path = path
        self.reason = reason


class ThreadNotFoundError(NovelStoreError):
    """Raised when replying to or liking on a comment thread that was never created."""

    def __init__(self, novel_id: str, chapter_id: str) -> None:
        super().__init__(
            f"No comment thread exists for {novel_id}/{chapter_id}."
        )
        self.novel_id = novel_id
        self.chapter_id = chapter_id


class CommentNotFoundError(NovelStoreError):
    """Raised when a comment identifier is absent from its thread."""

    def __init__(self, comment_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Comment '{comment_id}' does not exist.")
        self.comment_id = comment_id


class ParentNotFoundError(CommentNotFoundError):
    """Raised when the comment being replied to is absent from its thread."""

    def __init__(self, comment_id: str) -> None:
        super().__init__(
            comment_id, f"The comment being replied to ('{comment_id}') does not exist."
        )


class NovelAlreadyExistsError(NovelStoreError):
    """Raised when a novel's derived identifier is already taken."""

    def __init__(self, novel_id: str) -> None:
        super().__init__(f"A novel with this title already exists ('{novel_id}').")
        self.novel_id = novel_id


class NovelNotFoundError(NovelStoreError):
    """Raised when a novel's info document is missing."""

    def __init__(self, novel_id: str) -> None:
        super().__init__(f"Novel '{novel_id}' does not exist.")
        self.novel_id = novel_id


class UsernameTakenError(NovelStoreError):
    """Raised when registering a username that already has an account."""

    def __init__(self, username: str) -> None:
        super().__init__(f"The username '{username}' is already taken.")
        self.username = username


class EmailTakenError(NovelStoreError):
    """Raised when registering an email address used by another account."""

    def __init__(self, email: str) -> None:
        super().__init__(f"The email address '{email}' is already registered.")
        self.email = email


class AuthenticationError(NovelStoreError):
    """Raised when an identifier/password pair does not match an account."""

    def __init__(self) -> None:
        super().__init__("Incorrect username, email or password.")


__all__ = [
    "AuthenticationError",
    "BlobAlreadyExistsError",
    "BlobNotFoundError",
    "CommentNotFoundError",
    "CorruptDocumentError",
    "EmailTakenError",
    "InvalidInputError",
    "NovelAlreadyExistsError",
    "NovelNotFoundError",
    "NovelStoreError",
    "ParentNotFoundError",
    "ThreadNotFoundError",
    "TransportError",
    "UsernameTakenError",
    "VersionConflictError",
]
