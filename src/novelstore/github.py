"""Blob store backed by a repository reached through the GitHub contents API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping
from urllib.parse import quote

import httpx

from .blobs import (
    BlobEntry,
    BlobStore,
    StoredBlob,
    default_message,
    normalise_path,
    normalise_prefix,
)
from .codec import decode_base64, encode_base64
from .errors import (
    BlobAlreadyExistsError,
    BlobNotFoundError,
    TransportError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
RAW_CONTENT_URL = "https://raw.githubusercontent.com"
JSON_ACCEPT = "application/vnd.github+json"
RAW_ACCEPT = "application/vnd.github.raw+json"


class GitHubContentsStore(BlobStore):
    """Read and write files of one branch of a GitHub repository.

    The blob ``sha`` reported by GitHub is used as the version token, so every
    ``put`` and ``delete`` is conditioned on the file not having changed since
    it was read. Each request is bounded by ``timeout`` seconds; when a request
    times out or the connection fails a :class:`TransportError` is raised and
    the write may or may not have been applied.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        *,
        branch: str = "main",
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not owner or not repo:
            raise ValueError("GitHub owner and repository are required.")
        if not token:
            raise ValueError("A GitHub token is required.")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": JSON_ACCEPT,
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubContentsStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get(self, path: str) -> StoredBlob | None:
        key = normalise_path(path)
        response = self._request("GET", key, "read", params={"ref": self.branch})
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise _unexpected(key, "read", response)

        payload = _json(key, "read", response)
        if not isinstance(payload, Mapping) or payload.get("type") != "file":
            # directories and submodules are not blobs
            return None

        version = payload.get("sha")
        if not isinstance(version, str):
            raise TransportError(key, "read", "response carried no sha")

        if payload.get("encoding") == "base64":
            content = decode_base64(payload.get("content") or "", path=key)
        else:
            # files over 1 MB come back without inline content
            content = self._read_raw(key)

        logger.debug("GET %s -> %s", key, version)
        return StoredBlob(path=key, content=content, version=version)

    def put(
        self,
        path: str,
        content: str,
        *,
        expected_version: str | None = None,
        message: str | None = None,
    ) -> str:
        key = normalise_path(path)
        body: Dict[str, Any] = {
            "message": message or default_message("put", key),
            "content": encode_base64(content),
            "branch": self.branch,
        }
        if expected_version is not None:
            body["sha"] = expected_version

        response = self._request("PUT", key, "write", json=body)
        status = response.status_code
        if status == 409:
            raise VersionConflictError(key, expected_version)
        if status == 422:
            if expected_version is None:
                raise BlobAlreadyExistsError(key)
            raise VersionConflictError(key, expected_version)
        if status == 404 and expected_version is not None:
            raise VersionConflictError(key, expected_version)
        if status not in (200, 201):
            raise _unexpected(key, "write", response)

        payload = _json(key, "write", response)
        content_info = payload.get("content") if isinstance(payload, Mapping) else None
        version = content_info.get("sha") if isinstance(content_info, Mapping) else None
        if not isinstance(version, str):
            raise TransportError(key, "write", "response carried no sha")

        logger.info("%s (%s)", body["message"], version)
        return version

    def delete(
        self, path: str, expected_version: str, *, message: str | None = None
    ) -> None:
        key = normalise_path(path)
        body = {
            "message": message or default_message("delete", key),
            "sha": expected_version,
            "branch": self.branch,
        }

        response = self._request("DELETE", key, "delete", json=body)
        status = response.status_code
        if status == 404:
            raise BlobNotFoundError(key)
        if status in (409, 422):
            raise VersionConflictError(key, expected_version)
        if status != 200:
            raise _unexpected(key, "delete", response)

        logger.info("%s", body["message"])

    def list(self, prefix: str = "") -> List[BlobEntry]:
        base = normalise_prefix(prefix)
        response = self._request("GET", base, "list", params={"ref": self.branch})
        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise _unexpected(base or "/", "list", response)

        payload = _json(base or "/", "list", response)
        if not isinstance(payload, list):
            return []

        entries: List[BlobEntry] = []
        for item in payload:
            if not isinstance(item, Mapping) or item.get("type") not in ("file", "dir"):
                continue
            name = item.get("name")
            if not isinstance(name, str):
                continue
            entries.append(
                BlobEntry(
                    name=name,
                    path=f"{base}/{name}" if base else name,
                    kind=item["type"],
                    version=item.get("sha") if item["type"] == "file" else None,
                )
            )
        entries.sort(key=lambda entry: entry.name)
        return entries

    def public_url(self, path: str) -> str | None:
        key = normalise_path(path)
        return f"{RAW_CONTENT_URL}/{self.owner}/{self.repo}/{self.branch}/{quote(key)}"

    def _read_raw(self, key: str) -> str:
        response = self._request(
            "GET", key, "read", params={"ref": self.branch}, headers={"Accept": RAW_ACCEPT}
        )
        if response.status_code != 200:
            raise _unexpected(key, "read", response)
        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TransportError(key, "read", "content is not UTF-8 text") from exc

    def _request(
        self, method: str, key: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        url = f"/repos/{self.owner}/{self.repo}/contents/{quote(key)}"
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, key or "/")
            raise TransportError(key or "/", operation, "request timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, key or "/", exc)
            raise TransportError(key or "/", operation, str(exc) or type(exc).__name__) from exc


def _json(key: str, operation: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(key, operation, "response was not JSON") from exc


def _unexpected(key: str, operation: str, response: httpx.Response) -> TransportError:
    detail = f"unexpected status {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, Mapping) and isinstance(payload.get("message"), str):
        detail = f"{detail} ({payload['message']})"
    return TransportError(key, operation, detail, status_code=response.status_code)


__all__ = ["DEFAULT_API_URL", "GitHubContentsStore"]
