"""Configuration helpers for deploying the novel store API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping

from ..blobs import BlobStore, FileBlobStore, InMemoryBlobStore
from ..github import DEFAULT_API_URL, GitHubContentsStore

Backend = Literal["memory", "file", "github"]

_BACKENDS: tuple[Backend, ...] = ("memory", "file", "github")


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _optional_string(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _positive_number(value: str | None, *, name: str, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive number.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


def _positive_integer(value: str | None, *, name: str, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class NovelStoreSettings:
    """Deployment settings for the FastAPI application.

    Values are read from ``NOVELSTORE_*`` environment variables so the backend
    can be switched without code changes. Empty strings are treated as if the
    variable was unset and paths are expanded to support ``~`` prefixes.
    """

    backend: Backend = "memory"
    data_root: Path | None = None
    github_owner: str | None = None
    github_repo: str | None = None
    github_token: str | None = None
    github_branch: str = "main"
    github_api_url: str = DEFAULT_API_URL
    timeout_seconds: float = 10.0
    conflict_retries: int = 3

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "NovelStoreSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        backend = _normalise_string(source.get("NOVELSTORE_BACKEND"), default="memory").lower()
        if backend not in _BACKENDS:
            raise ValueError(
                "NOVELSTORE_BACKEND must be one of: " + ", ".join(_BACKENDS) + "."
            )

        return cls(
            backend=backend,  # type: ignore[arg-type]
            data_root=_normalise_path(source.get("NOVELSTORE_DATA_ROOT")),
            github_owner=_optional_string(source.get("NOVELSTORE_GITHUB_OWNER")),
            github_repo=_optional_string(source.get("NOVELSTORE_GITHUB_REPO")),
            github_token=_optional_string(source.get("NOVELSTORE_GITHUB_TOKEN")),
            github_branch=_normalise_string(
                source.get("NOVELSTORE_GITHUB_BRANCH"), default="main"
            ),
            github_api_url=_normalise_string(
                source.get("NOVELSTORE_GITHUB_API_URL"), default=DEFAULT_API_URL
            ),
            timeout_seconds=_positive_number(
                source.get("NOVELSTORE_TIMEOUT_SECONDS"),
                name="NOVELSTORE_TIMEOUT_SECONDS",
                default=10.0,
            ),
            conflict_retries=_positive_integer(
                source.get("NOVELSTORE_CONFLICT_RETRIES"),
                name="NOVELSTORE_CONFLICT_RETRIES",
                default=3,
            ),
        )


def build_store(settings: NovelStoreSettings) -> BlobStore:
    """Construct the blob store selected by ``settings.backend``."""

    if settings.backend == "memory":
        return InMemoryBlobStore()

    if settings.backend == "file":
        if settings.data_root is None:
            raise ValueError("NOVELSTORE_DATA_ROOT is required for the file backend.")
        return FileBlobStore(settings.data_root)

    missing = [
        name
        for name, value in (
            ("NOVELSTORE_GITHUB_OWNER", settings.github_owner),
            ("NOVELSTORE_GITHUB_REPO", settings.github_repo),
            ("NOVELSTORE_GITHUB_TOKEN", settings.github_token),
        )
        if not value
    ]
    if missing:
        raise ValueError(
            "The github backend requires " + ", ".join(missing) + "."
        )
    return GitHubContentsStore(
        settings.github_owner or "",
        settings.github_repo or "",
        settings.github_token or "",
        branch=settings.github_branch,
        api_url=settings.github_api_url,
        timeout=settings.timeout_seconds,
    )


__all__ = ["NovelStoreSettings", "build_store"]
