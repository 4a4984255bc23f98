"""Read-modify-write cycles over single documents in a blob store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from .blobs import BlobStore, normalise_path
from .codec import DocumentCodec
from .errors import BlobAlreadyExistsError, BlobNotFoundError, VersionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Versioned(Generic[T]):
    """A decoded document and the version it was read at.

    ``version`` is ``None`` when the document does not exist yet.
    """

    value: T
    version: str | None

    @property
    def exists(self) -> bool:
        return self.version is not None


class VersionedDocument(Generic[T]):
    """Apply pure mutations to one document type with compare-and-swap writes.

    Conflicts are never retried here: a :class:`VersionConflictError` raised by
    the store reaches the caller untouched, who may re-run the whole cycle
    with fresh state.
    """

    def __init__(
        self,
        store: BlobStore,
        codec: DocumentCodec[T],
        *,
        default: Callable[[], T] | None = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self._default = default

    def read(self, path: str) -> Versioned[T]:
        """Return the decoded document at ``path``.

        Raises:
            BlobNotFoundError: If nothing is stored and no default was given.
            CorruptDocumentError: If the stored payload cannot be decoded.
        """

        key = normalise_path(path)
        blob = self._store.get(key)
        if blob is None:
            if self._default is None:
                raise BlobNotFoundError(key)
            return Versioned(value=self._default(), version=None)

        logger.debug("Read %s at %s", key, blob.version)
        return Versioned(value=self._codec.decode(blob.content, path=key), version=blob.version)

    def update(
        self,
        path: str,
        mutate: Callable[[T], T],
        *,
        message: str | None = None,
    ) -> Versioned[T]:
        """Run one get, mutate, put cycle and return the persisted result."""

        current = self.read(path)
        updated = mutate(current.value)
        return self.write(
            path, updated, expected_version=current.version, message=message
        )

    def create(self, path: str, value: T, *, message: str | None = None) -> Versioned[T]:
        """Persist ``value`` at a path that must not exist yet."""

        version = self._store.put(path, self._codec.encode(value), message=message)
        return Versioned(value=value, version=version)

    def write(
        self,
        path: str,
        value: T,
        *,
        expected_version: str | None,
        message: str | None = None,
    ) -> Versioned[T]:
        """Persist ``value`` conditioned on ``expected_version``.

        With ``expected_version=None`` the document is expected to be absent;
        losing that race to another creator is reported as a version conflict
        so that it can be retried like any other.
        """

        try:
            version = self._store.put(
                path,
                self._codec.encode(value),
                expected_version=expected_version,
                message=message,
            )
        except BlobAlreadyExistsError as exc:
            raise VersionConflictError(exc.path, None) from exc
        return Versioned(value=value, version=version)


__all__ = ["Versioned", "VersionedDocument"]
