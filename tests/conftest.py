"""Test configuration for the novel store project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from novelstore.blobs import BlobEntry, BlobStore, InMemoryBlobStore, StoredBlob


class InterleavingStore(BlobStore):
    """Wrap a store and run ``before_put`` hooks ahead of selected writes.

    Each hook runs once, right before the next ``put`` reaches the wrapped
    store, which simulates another writer landing between a read and a write.
    """

    def __init__(self, inner: BlobStore) -> None:
        self.inner = inner
        self.before_put: List[Callable[[], None]] = []
        self.put_calls = 0

    def get(self, path: str) -> StoredBlob | None:
        return self.inner.get(path)

    def put(
        self,
        path: str,
        content: str,
        *,
        expected_version: str | None = None,
        message: str | None = None,
    ) -> str:
        self.put_calls += 1
        if self.before_put:
            hook = self.before_put.pop(0)
            hook()
        return self.inner.put(
            path, content, expected_version=expected_version, message=message
        )

    def delete(
        self, path: str, expected_version: str, *, message: str | None = None
    ) -> None:
        self.inner.delete(path, expected_version, message=message)

    def list(self, prefix: str = "") -> List[BlobEntry]:
        return self.inner.list(prefix)


class FakeClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


@pytest.fixture()
def memory_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def interleaving_store(memory_store: InMemoryBlobStore) -> InterleavingStore:
    return InterleavingStore(memory_store)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def no_sleep() -> Callable[[float], None]:
    sleeps: List[float] = []

    def _sleep(duration: float) -> None:
        sleeps.append(duration)

    _sleep.calls = sleeps  # type: ignore[attr-defined]
    return _sleep


__all__ = ["FakeClock", "InterleavingStore"]
