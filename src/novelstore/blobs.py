"""Version-stamped blob storage backends for the novel store."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Literal

from .errors import (
    BlobAlreadyExistsError,
    BlobNotFoundError,
    InvalidInputError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

EntryKind = Literal["file", "dir"]


@dataclass(frozen=True)
class StoredBlob:
    """Content of a blob together with the version it was read at."""

    path: str
    content: str
    version: str


@dataclass(frozen=True)
class BlobEntry:
    """One child of a listed directory prefix."""

    name: str
    path: str
    kind: EntryKind
    version: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    """Change description recorded for a successful write or delete."""

    path: str
    operation: Literal["put", "delete"]
    message: str
    version: str | None
    recorded_at: datetime


def blob_version(content: str) -> str:
    """Return the git blob hash of ``content``.

    This is the same token the GitHub contents API reports as ``sha``, so the
    local backends hand out versions indistinguishable from the remote one.
    """

    data = content.encode("utf-8")
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


def normalise_path(path: str) -> str:
    """Validate a ``/`` separated blob path and return its canonical form."""

    if not isinstance(path, str):
        raise InvalidInputError("Blob paths must be strings.")

    trimmed = path.strip().strip("/")
    if not trimmed:
        raise InvalidInputError("Blob paths must be non-empty.")
    if "\\" in trimmed:
        raise InvalidInputError(f"Blob path '{path}' must use '/' separators.")

    segments = trimmed.split("/")
    for segment in segments:
        if not segment or segment in {".", ".."}:
            raise InvalidInputError(f"Blob path '{path}' has an invalid segment.")
    return "/".join(segments)


def normalise_prefix(prefix: str) -> str:
    """Return a directory prefix in canonical form; the empty string is the root."""

    if not isinstance(prefix, str):
        raise InvalidInputError("Blob prefixes must be strings.")
    if not prefix.strip().strip("/"):
        return ""
    return normalise_path(prefix)


def default_message(operation: str, path: str) -> str:
    return f"{operation} {path}"


class BlobStore(ABC):
    """Interface describing a path-addressed store with compare-and-swap writes."""

    @abstractmethod
    def get(self, path: str) -> StoredBlob | None:
        """Return the blob at ``path`` or ``None`` when nothing is stored there."""

    @abstractmethod
    def put(
        self,
        path: str,
        content: str,
        *,
        expected_version: str | None = None,
        message: str | None = None,
    ) -> str:
        """Write ``content`` and return the new version.

        Raises:
            BlobAlreadyExistsError: If ``expected_version`` is omitted but the
                path already holds a blob.
            VersionConflictError: If ``expected_version`` does not match the
                stored version (including when the blob has disappeared).
        """

    @abstractmethod
    def delete(
        self, path: str, expected_version: str, *, message: str | None = None
    ) -> None:
        """Remove the blob at ``path`` if it still has ``expected_version``.

        Raises:
            BlobNotFoundError: If the path holds no blob.
            VersionConflictError: If the stored version differs.
        """

    @abstractmethod
    def list(self, prefix: str = "") -> List[BlobEntry]:
        """Return the direct children of ``prefix`` ordered by name."""

    def public_url(self, path: str) -> str | None:
        """Return a URL serving the raw blob, when the backend has one."""

        return None


def _children_from_paths(paths: List[str], prefix: str, versions: Dict[str, str]) -> List[BlobEntry]:
    base = f"{prefix}/" if prefix else ""
    entries: Dict[str, BlobEntry] = {}
    for path in paths:
        if not path.startswith(base):
            continue
        remainder = path[len(base):]
        name, _, rest = remainder.partition("/")
        if rest:
            entries.setdefault(name, BlobEntry(name=name, path=base + name, kind="dir"))
        else:
            entries[name] = BlobEntry(
                name=name, path=path, kind="file", version=versions.get(path)
            )
    return [entries[name] for name in sorted(entries)]


class InMemoryBlobStore(BlobStore):
    """Keep blobs in local process memory.

    Every write is recorded in :attr:`history`, which stands in for the commit
    log of the remote repository.
    """

    def __init__(self) -> None:
        self._blobs: Dict[str, StoredBlob] = {}
        self._lock = threading.Lock()
        self.history: List[AuditEntry] = []

    def get(self, path: str) -> StoredBlob | None:
        key = normalise_path(path)
        with self._lock:
            return self._blobs.get(key)

    def put(
        self,
        path: str,
        content: str,
        *,
        expected_version: str | None = None,
        message: str | None = None,
    ) -> str:
        key = normalise_path(path)
        version = blob_version(content)
        with self._lock:
            current = self._blobs.get(key)
            _check_put(key, current.version if current else None, expected_version)
            self._blobs[key] = StoredBlob(path=key, content=content, version=version)
            self._record(key, "put", message, version)
        return version

    def delete(
        self, path: str, expected_version: str, *, message: str | None = None
    ) -> None:
        key = normalise_path(path)
        with self._lock:
            current = self._blobs.get(key)
            if current is None:
                raise BlobNotFoundError(key)
            if current.version != expected_version:
                raise VersionConflictError(key, expected_version)
            del self._blobs[key]
            self._record(key, "delete", message, None)

    def list(self, prefix: str = "") -> List[BlobEntry]:
        base = normalise_prefix(prefix)
        with self._lock:
            versions = {key: blob.version for key, blob in self._blobs.items()}
        return _children_from_paths(sorted(versions), base, versions)

    def _record(
        self, path: str, operation: Literal["put", "delete"], message: str | None, version: str | None
    ) -> None:
        self.history.append(
            AuditEntry(
                path=path,
                operation=operation,
                message=message or default_message(operation, path),
                version=version,
                recorded_at=datetime.now(timezone.utc),
            )
        )


class FileBlobStore(BlobStore):
    """Persist blobs as files below ``root``.

    Compare-and-swap is enforced with a lock held by this process only; point
    several processes at the same directory and the version check becomes
    advisory.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def get(self, path: str) -> StoredBlob | None:
        key = normalise_path(path)
        target = self._path_for(key)
        if not target.is_file():
            return None
        content = _read_text(target)
        return StoredBlob(path=key, content=content, version=blob_version(content))

    def put(
        self,
        path: str,
        content: str,
        *,
        expected_version: str | None = None,
        message: str | None = None,
    ) -> str:
        key = normalise_path(path)
        target = self._path_for(key)
        version = blob_version(content)
        with self._lock:
            _check_put(key, self._current_version(target), expected_version)
            target.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(target, content)
        logger.info("%s (%s)", message or default_message("put", key), version)
        return version

    def delete(
        self, path: str, expected_version: str, *, message: str | None = None
    ) -> None:
        key = normalise_path(path)
        target = self._path_for(key)
        with self._lock:
            current = self._current_version(target)
            if current is None:
                raise BlobNotFoundError(key)
            if current != expected_version:
                raise VersionConflictError(key, expected_version)
            target.unlink()
        logger.info("%s", message or default_message("delete", key))

    def list(self, prefix: str = "") -> List[BlobEntry]:
        base = normalise_prefix(prefix)
        directory = self._path_for(base) if base else self.root
        if not directory.is_dir():
            return []

        entries: List[BlobEntry] = []
        for child in sorted(directory.iterdir(), key=lambda item: item.name):
            if child.name.startswith("."):
                continue
            child_path = f"{base}/{child.name}" if base else child.name
            if child.is_dir():
                entries.append(BlobEntry(name=child.name, path=child_path, kind="dir"))
            elif child.is_file():
                entries.append(
                    BlobEntry(
                        name=child.name,
                        path=child_path,
                        kind="file",
                        version=blob_version(_read_text(child)),
                    )
                )
        return entries

    def _path_for(self, key: str) -> Path:
        return self.root.joinpath(*key.split("/"))

    def _current_version(self, target: Path) -> str | None:
        if not target.is_file():
            return None
        return blob_version(_read_text(target))


def _check_put(path: str, current: str | None, expected: str | None) -> None:
    if expected is None:
        if current is not None:
            raise BlobAlreadyExistsError(path)
        return
    if current != expected:
        raise VersionConflictError(path, expected)


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as handle:
        return handle.read()


def _atomic_write(target: Path, content: str) -> None:
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", newline="", dir=target.parent, prefix=".tmp-", delete=False
    )
    try:
        with handle:
            handle.write(content)
        os.replace(handle.name, target)
    except OSError:
        Path(handle.name).unlink(missing_ok=True)
        raise


__all__ = [
    "AuditEntry",
    "BlobEntry",
    "BlobStore",
    "FileBlobStore",
    "InMemoryBlobStore",
    "StoredBlob",
    "blob_version",
    "normalise_path",
    "normalise_prefix",
]
