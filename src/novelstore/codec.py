"""Conversion between domain records and the text persisted in the blob store."""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, TypeVar

from .errors import CorruptDocumentError, InvalidInputError
from .models import AgeRating, Comment, NovelRecord, NovelStatus, UserRecord

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DocumentCodec(Protocol[T]):
    """Protocol implemented by every document serializer."""

    def encode(self, value: T) -> str:
        """Return the text representation of ``value``."""

    def decode(self, text: str, *, path: str) -> T:
        """Parse ``text`` read from ``path``.

        Raises:
            CorruptDocumentError: If the payload cannot be interpreted.
        """


def encode_base64(text: str) -> str:
    """Wrap ``text`` for transports that carry content as base64."""

    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_base64(payload: str, *, path: str) -> str:
    """Unwrap base64 ``payload``; embedded newlines are tolerated."""

    compact = "".join(payload.split())
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise CorruptDocumentError(path, "content is not valid base64 text") from exc


def _dump_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _load_json(text: str, *, path: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise CorruptDocumentError(path, f"invalid JSON ({exc})") from exc
    except RecursionError as exc:
        raise CorruptDocumentError(path, "nesting exceeds the JSON parser limit") from exc


def _optional_str(payload: Mapping[str, Any], key: str, *, path: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise CorruptDocumentError(path, f"'{key}' must be a string")
    return value or None


def _required_str(payload: Mapping[str, Any], key: str, *, path: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise CorruptDocumentError(path, f"'{key}' is missing")
    return value


def _ensure_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NovelInfoCodec:
    """Serializer for ``{novelId}/info.json``."""

    def encode(self, value: NovelRecord) -> str:
        payload: dict[str, Any] = {
            "titulo": value.title,
            "autor": value.author,
            "descripcion": value.description,
            "ageRating": value.age_rating.value,
        }
        optional = {
            "coverImageUrl": value.cover_url,
            "categoria": value.category,
            "etiquetas": list(value.tags) if value.tags else None,
            "traductor": value.translator,
            "fecha_lanzamiento": value.release_date,
            "creatorId": value.creator_id,
            "status": value.status.value if value.status is not None else None,
            "rating_platform": value.rating,
        }
        payload.update({key: item for key, item in optional.items() if item is not None})
        return _dump_json(payload)

    def decode(self, text: str, *, path: str) -> NovelRecord:
        payload = _load_json(text, path=path)
        if not isinstance(payload, Mapping):
            raise CorruptDocumentError(path, "novel info must be an object")

        tags_raw = payload.get("etiquetas") or []
        if not isinstance(tags_raw, list) or not all(
            isinstance(tag, str) for tag in tags_raw
        ):
            raise CorruptDocumentError(path, "'etiquetas' must be a list of strings")

        try:
            age_rating = AgeRating(payload.get("ageRating") or AgeRating.ALL.value)
        except ValueError as exc:
            raise CorruptDocumentError(path, "unknown 'ageRating'") from exc

        status_raw = payload.get("status")
        try:
            status = NovelStatus(status_raw) if status_raw is not None else None
        except ValueError as exc:
            raise CorruptDocumentError(path, "unknown 'status'") from exc

        rating = payload.get("rating_platform")
        if rating is not None and (
            isinstance(rating, bool) or not isinstance(rating, (int, float))
        ):
            raise CorruptDocumentError(path, "'rating_platform' must be a number")

        return NovelRecord(
            title=_required_str(payload, "titulo", path=path),
            author=_required_str(payload, "autor", path=path),
            description=_optional_str(payload, "descripcion", path=path) or "",
            age_rating=age_rating,
            cover_url=_optional_str(payload, "coverImageUrl", path=path),
            category=_optional_str(payload, "categoria", path=path),
            tags=tuple(tags_raw),
            translator=_optional_str(payload, "traductor", path=path),
            release_date=_optional_str(payload, "fecha_lanzamiento", path=path),
            creator_id=_optional_str(payload, "creatorId", path=path),
            status=status,
            rating=float(rating) if rating is not None else None,
        )


class ChapterCodec:
    """Chapters are stored as raw HTML."""

    def encode(self, value: str) -> str:
        return value

    def decode(self, text: str, *, path: str) -> str:
        return text


class UserCodec:
    """Serializer for ``users/{username}.json``."""

    def encode(self, value: UserRecord) -> str:
        payload: dict[str, Any] = {
            "id": value.username,
            "username": value.username,
            "email": value.email,
            "created_at": value.created_at.isoformat(),
        }
        if value.password_hash is not None:
            payload["password_hash"] = value.password_hash
        if value.legacy_password is not None:
            payload["password"] = value.legacy_password
        return _dump_json(payload)

    def decode(self, text: str, *, path: str) -> UserRecord:
        payload = _load_json(text, path=path)
        if not isinstance(payload, Mapping):
            raise CorruptDocumentError(path, "user record must be an object")

        username = _required_str(payload, "username", path=path)
        email = _required_str(payload, "email", path=path)
        password_hash = _optional_str(payload, "password_hash", path=path)
        legacy_password = _optional_str(payload, "password", path=path)
        if password_hash is None and legacy_password is None:
            raise CorruptDocumentError(path, "user record has no credentials")

        created_raw = payload.get("created_at")
        created_at = datetime(1970, 1, 1, tzinfo=timezone.utc)
        if created_raw is not None:
            if not isinstance(created_raw, str):
                raise CorruptDocumentError(path, "'created_at' must be a string")
            try:
                created_at = _ensure_timezone(datetime.fromisoformat(created_raw))
            except ValueError as exc:
                raise CorruptDocumentError(path, "'created_at' is not ISO-8601") from exc

        return UserRecord(
            username=username.strip().casefold(),
            email=email.strip(),
            password_hash=password_hash,
            created_at=created_at,
            legacy_password=legacy_password,
        )


def timestamp_to_millis(value: datetime) -> int:
    delta = _ensure_timezone(value) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def millis_to_timestamp(value: int) -> datetime:
    """Return the UTC instant ``value`` milliseconds after the epoch.

    Raises:
        OverflowError: If the instant is outside the range of ``datetime``.
    """

    return _EPOCH + timedelta(milliseconds=value)


class CommentListCodec:
    """Serializer for ``{novelId}/comments-{chapterId}.json``.

    Both directions walk the reply tree with explicit stacks, so the depth of a
    thread is bounded only by what the JSON layer accepts.
    """

    def encode(self, value: Sequence[Comment]) -> str:
        try:
            return _dump_json(_comments_to_payload(value))
        except RecursionError as exc:
            raise InvalidInputError(
                "Comment thread is nested too deeply to be stored."
            ) from exc

    def decode(self, text: str, *, path: str) -> List[Comment]:
        payload = _load_json(text, path=path)
        if not isinstance(payload, list):
            raise CorruptDocumentError(path, "comment list must be an array")
        return _comments_from_payload(payload, path=path)


def _comments_to_payload(comments: Iterable[Comment]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    stack = [(comment, payload) for comment in reversed(list(comments))]
    while stack:
        comment, siblings = stack.pop()
        entry: dict[str, Any] = {
            "id": comment.identifier,
            "name": comment.author,
            "content": comment.body,
            "timestamp": timestamp_to_millis(comment.timestamp),
            "likes": comment.likes,
            "replies": [],
        }
        if comment.avatar_url is not None:
            entry["avatarUrl"] = comment.avatar_url
        siblings.append(entry)
        stack.extend((reply, entry["replies"]) for reply in reversed(comment.replies))
    return payload


def _comment_fields(
    entry: Any, *, path: str, location: str
) -> tuple[dict[str, Any], list[Any]]:
    if not isinstance(entry, Mapping):
        raise CorruptDocumentError(path, f"comment {location} must be an object")

    identifier = entry.get("id")
    name = entry.get("name")
    content = entry.get("content")
    if not isinstance(identifier, str) or not identifier:
        raise CorruptDocumentError(path, f"comment {location} has no 'id'")
    if not isinstance(name, str) or not isinstance(content, str):
        raise CorruptDocumentError(
            path, f"comment {location} needs string 'name' and 'content'"
        )

    timestamp_raw = entry.get("timestamp")
    if isinstance(timestamp_raw, bool) or not isinstance(timestamp_raw, (int, float)):
        raise CorruptDocumentError(path, f"comment {location} has no 'timestamp'")
    try:
        timestamp = millis_to_timestamp(int(timestamp_raw))
    except (ValueError, OverflowError) as exc:
        # NaN, infinities and instants datetime cannot represent
        raise CorruptDocumentError(
            path, f"comment {location} has invalid 'timestamp'"
        ) from exc

    likes = entry.get("likes", 0)
    if isinstance(likes, bool) or not isinstance(likes, int) or likes < 0:
        raise CorruptDocumentError(path, f"comment {location} has invalid 'likes'")

    replies_raw = entry.get("replies") or []
    if not isinstance(replies_raw, list):
        raise CorruptDocumentError(path, f"comment {location} has invalid 'replies'")

    avatar = entry.get("avatarUrl")
    if avatar is not None and not isinstance(avatar, str):
        raise CorruptDocumentError(path, f"comment {location} has invalid 'avatarUrl'")

    fields = {
        "identifier": identifier,
        "author": name,
        "body": content,
        "timestamp": timestamp,
        "likes": likes,
        "avatar_url": avatar or None,
    }
    return fields, replies_raw


def _comments_from_payload(payload: Sequence[Any], *, path: str) -> List[Comment]:
    # entries are validated in pre-order; every reply is indexed after its parent
    parsed: List[tuple[dict[str, Any], List[int]]] = []
    roots: List[int] = []
    stack = [
        (entry, f"[{index}]", roots) for index, entry in reversed(list(enumerate(payload)))
    ]
    while stack:
        entry, location, siblings = stack.pop()
        fields, replies_raw = _comment_fields(entry, path=path, location=location)
        children: List[int] = []
        siblings.append(len(parsed))
        parsed.append((fields, children))
        stack.extend(
            (reply, f"{location}.replies[{index}]", children)
            for index, reply in reversed(list(enumerate(replies_raw)))
        )

    built: Dict[int, Comment] = {}
    for index in range(len(parsed) - 1, -1, -1):
        fields, children = parsed[index]
        built[index] = Comment(
            replies=tuple(built.pop(child) for child in children), **fields
        )
    return [built[index] for index in roots]


__all__ = [
    "ChapterCodec",
    "CommentListCodec",
    "DocumentCodec",
    "NovelInfoCodec",
    "UserCodec",
    "decode_base64",
    "encode_base64",
    "millis_to_timestamp",
    "timestamp_to_millis",
]
