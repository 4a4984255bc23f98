"""Domain records persisted by the novel store."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from .errors import InvalidInputError

RESERVED_ADULT_TAG = "+18"

_USERNAME_PATTERN = re.compile(r"^[a-z0-9_.-]{3,}$")
_CHAPTER_ID_PATTERN = re.compile(r"^chapter-(\d+)$")


class AgeRating(str, Enum):
    """Audience classification attached to every novel."""

    ALL = "all"
    PG = "pg"
    TEEN = "teen"
    MATURE = "mature"
    ADULTS = "adults"


class NovelStatus(str, Enum):
    """Publication state of a novel."""

    ONGOING = "ongoing"
    COMPLETED = "completed"
    HIATUS = "hiatus"
    DROPPED = "dropped"


def normalise_tags(tags: Iterable[str], *, age_rating: AgeRating) -> tuple[str, ...]:
    """Return ``tags`` stripped and deduplicated case-insensitively.

    The reserved adult tag is never taken from input; it is appended when the
    age rating calls for it.
    """

    seen: set[str] = set()
    cleaned: list[str] = []
    reserved_key = RESERVED_ADULT_TAG.casefold()
    for raw in tags:
        if not isinstance(raw, str):
            raise InvalidInputError("Tags must be provided as strings.")
        tag = raw.strip()
        key = tag.casefold()
        if not tag or key == reserved_key or key in seen:
            continue
        seen.add(key)
        cleaned.append(tag)

    if age_rating is AgeRating.ADULTS:
        cleaned.append(RESERVED_ADULT_TAG)
    return tuple(cleaned)


def split_tag_string(value: str | None) -> list[str]:
    """Split a comma separated tag string as submitted by the upload form."""

    if not value:
        return []
    return [part for part in (piece.strip() for piece in value.split(",")) if part]


@dataclass(frozen=True)
class NovelRecord:
    """Metadata stored in a novel's ``info.json`` document."""

    title: str
    author: str
    description: str
    age_rating: AgeRating = AgeRating.ALL
    cover_url: str | None = None
    category: str | None = None
    tags: tuple[str, ...] = ()
    translator: str | None = None
    release_date: str | None = None
    creator_id: str | None = None
    status: NovelStatus | None = None
    rating: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "tags", normalise_tags(self.tags, age_rating=self.age_rating)
        )


@dataclass(frozen=True)
class ChapterRecord:
    """A single chapter body addressed by its position in the novel."""

    novel_id: str
    number: int
    body: str
    title: str | None = None

    @property
    def chapter_id(self) -> str:
        return chapter_id_for(self.number)


@dataclass(frozen=True)
class ChapterSummary:
    """Chapter listing entry derived from a stored chapter file name."""

    chapter_id: str
    number: int
    title: str


@dataclass(frozen=True)
class UserRecord:
    """An account stored under ``users/{username}.json``."""

    username: str
    email: str
    password_hash: str | None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    legacy_password: str | None = field(default=None, repr=False)

    @property
    def identifier(self) -> str:
        return self.username


@dataclass(frozen=True)
class Comment:
    """A node of a chapter's comment tree."""

    identifier: str
    author: str
    body: str
    timestamp: datetime
    likes: int = 0
    replies: tuple["Comment", ...] = ()
    avatar_url: str | None = None


def chapter_id_for(number: int) -> str:
    return f"chapter-{number}"


def parse_chapter_id(chapter_id: str) -> int | None:
    """Return the chapter number encoded in ``chapter_id`` or ``None``."""

    match = _CHAPTER_ID_PATTERN.fullmatch(chapter_id.strip())
    if match is None:
        return None
    return int(match.group(1))


def normalise_username(username: str) -> str:
    if not isinstance(username, str):
        raise InvalidInputError("Username must be provided as a string.")

    slug = username.strip().casefold()
    if not _USERNAME_PATTERN.fullmatch(slug):
        raise InvalidInputError(
            "Username must be at least 3 characters and only contain letters, "
            "numbers, '_', '-' and '.'."
        )
    return slug


def normalise_email(email: str) -> str:
    if not isinstance(email, str):
        raise InvalidInputError("Email address must be provided as a string.")

    trimmed = email.strip()
    local, at, domain = trimmed.partition("@")
    if not at or not local or not domain or "@" in domain:
        raise InvalidInputError("Email address must look like 'name@example.com'.")
    return trimmed


def require_text(value: str | None, *, field_name: str) -> str:
    """Return ``value`` stripped, rejecting missing or blank input."""

    if not isinstance(value, str):
        raise InvalidInputError(f"{field_name} is required.")
    trimmed = value.strip()
    if not trimmed:
        raise InvalidInputError(f"{field_name} is required.")
    return trimmed


def path_segment(value: str, *, field_name: str) -> str:
    """Return ``value`` as a single blob path segment."""

    segment = require_text(value, field_name=field_name)
    if "/" in segment or "\\" in segment or segment in {".", ".."}:
        raise InvalidInputError(f"{field_name} must not contain path separators.")
    return segment


def optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError("Optional text fields must be strings.")
    trimmed = value.strip()
    return trimmed or None


__all__ = [
    "AgeRating",
    "ChapterRecord",
    "ChapterSummary",
    "Comment",
    "NovelRecord",
    "NovelStatus",
    "RESERVED_ADULT_TAG",
    "UserRecord",
    "chapter_id_for",
    "normalise_email",
    "normalise_tags",
    "normalise_username",
    "optional_text",
    "parse_chapter_id",
    "path_segment",
    "require_text",
    "split_tag_string",
]
