"""Novel metadata and chapter documents."""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Literal, Sequence

from .blobs import BlobEntry, BlobStore
from .codec import ChapterCodec, NovelInfoCodec
from .documents import VersionedDocument
from .errors import (
    BlobAlreadyExistsError,
    BlobNotFoundError,
    CorruptDocumentError,
    InvalidInputError,
    NovelAlreadyExistsError,
    NovelNotFoundError,
    NovelStoreError,
)
from .models import (
    ChapterRecord,
    ChapterSummary,
    NovelRecord,
    chapter_id_for,
    optional_text,
    path_segment,
    require_text,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_COVER_URL = "https://placehold.co/300x450.png?text=No+Cover"
INFO_FILENAME = "info.json"
COVER_FILENAME = "cover.png"
RESERVED_ROOT_DIRECTORIES = frozenset({"users"})

_CHAPTER_FILE_PATTERN = re.compile(r"^chapter-(\d+)\.html$")
_LEADING_HEADING_PATTERN = re.compile(r"^\s*<h[1-6][\s>]", re.IGNORECASE)
_TITLE_HEADING_PATTERN = re.compile(r"^\s*<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)


def slugify(text: str) -> str:
    """Derive a URL-safe novel identifier from ``text``."""

    slug = text.strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w-]+", "", slug, flags=re.ASCII)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def info_path(novel_id: str) -> str:
    return f"{novel_id}/{INFO_FILENAME}"


def chapter_path(novel_id: str, number: int) -> str:
    return f"{novel_id}/{chapter_id_for(number)}.html"


def with_title_heading(body: str, title: str | None) -> str:
    """Prefix ``body`` with an ``<h1>`` built from ``title`` unless it has a heading."""

    if title is None or _LEADING_HEADING_PATTERN.match(body):
        return body
    return f"<h1>{html.escape(title)}</h1>\n{body}"


def extract_title_heading(body: str) -> str | None:
    match = _TITLE_HEADING_PATTERN.match(body)
    if match is None:
        return None
    text = re.sub(r"<[^>]+>", "", match.group(1))
    return html.unescape(text).strip() or None


@dataclass(frozen=True)
class NovelDetail:
    """A novel's metadata together with its chapter listing."""

    novel_id: str
    record: NovelRecord
    version: str
    cover_url: str
    chapters: tuple[ChapterSummary, ...]


@dataclass(frozen=True)
class CreatedNovel:
    novel_id: str
    record: NovelRecord
    version: str


@dataclass(frozen=True)
class SavedChapter:
    novel_id: str
    number: int
    path: str
    version: str
    created: bool


@dataclass(frozen=True)
class UploadOutcome:
    filename: str
    status: Literal["success", "error"]
    reason: str | None = None


@dataclass(frozen=True)
class ChapterUploadReport:
    """Per-file result of a bulk chapter upload."""

    uploaded: tuple[UploadOutcome, ...]
    failed: tuple[UploadOutcome, ...]

    @property
    def success(self) -> bool:
        return bool(self.uploaded) and not self.failed

    @property
    def message(self) -> str:
        if not self.failed:
            return f"Uploaded {len(self.uploaded)} chapter(s)."
        return (
            f"Uploaded {len(self.uploaded)} chapter(s); "
            f"{len(self.failed)} file(s) failed."
        )


class CatalogService:
    """Business logic for creating and publishing novels."""

    def __init__(self, store: BlobStore) -> None:
        self._store = store
        self._info: VersionedDocument[NovelRecord] = VersionedDocument(
            store, NovelInfoCodec()
        )
        self._chapters: VersionedDocument[str] = VersionedDocument(
            store, ChapterCodec()
        )

    def create_novel(self, record: NovelRecord) -> CreatedNovel:
        """Persist ``record`` under the identifier derived from its title."""

        validated = _validate_novel(record)
        novel_id = slugify(validated.title)
        if not novel_id:
            raise InvalidInputError("Could not derive an identifier from the title.")
        if novel_id in RESERVED_ROOT_DIRECTORIES:
            raise InvalidInputError(f"'{novel_id}' cannot be used as a novel title.")

        try:
            created = self._info.create(
                info_path(novel_id),
                validated,
                message=f"Add new novel - {validated.title}",
            )
        except BlobAlreadyExistsError as exc:
            raise NovelAlreadyExistsError(novel_id) from exc

        logger.info("Created novel %s", novel_id)
        return CreatedNovel(
            novel_id=novel_id, record=validated, version=created.version or ""
        )

    def get_novel(self, novel_id: str) -> NovelDetail:
        """Return the metadata and chapter listing of ``novel_id``."""

        key = path_segment(novel_id, field_name="Novel id")
        try:
            info = self._info.read(info_path(key))
        except BlobNotFoundError as exc:
            raise NovelNotFoundError(key) from exc

        return self._detail(key, info.value, info.version or "", self._store.list(key))

    def list_novels(self) -> List[NovelDetail]:
        """Return every novel whose ``info.json`` can be read.

        Directories without metadata and novels whose metadata is corrupted
        are skipped with a warning.
        """

        novels: List[NovelDetail] = []
        for directory in self._store.list(""):
            if directory.kind != "dir" or directory.name in RESERVED_ROOT_DIRECTORIES:
                continue

            entries = self._store.list(directory.path)
            if not any(entry.name == INFO_FILENAME and entry.kind == "file" for entry in entries):
                logger.warning("Skipping %s: %s not found", directory.name, INFO_FILENAME)
                continue

            try:
                info = self._info.read(info_path(directory.name))
            except CorruptDocumentError as exc:
                logger.warning("Skipping %s: %s", directory.name, exc)
                continue
            except BlobNotFoundError:
                logger.warning("Skipping %s: removed while listing", directory.name)
                continue

            novels.append(
                self._detail(directory.name, info.value, info.version or "", entries)
            )
        return novels

    def save_chapter(
        self,
        novel_id: str,
        number: int,
        body: str,
        title: str | None = None,
    ) -> SavedChapter:
        """Create or overwrite chapter ``number`` of ``novel_id``."""

        key = path_segment(novel_id, field_name="Novel id")
        chapter_number = _validate_chapter_number(number)
        require_text(body, field_name="Chapter content")
        heading = optional_text(title)
        self._require_novel(key)

        path = chapter_path(key, chapter_number)
        current = self._store.get(path)
        saved = self._chapters.write(
            path,
            with_title_heading(body, heading),
            expected_version=current.version if current else None,
            message=f"{'Update' if current else 'Add'} {chapter_id_for(chapter_number)} of {key}",
        )
        logger.info("Saved %s (%s)", path, saved.version)
        return SavedChapter(
            novel_id=key,
            number=chapter_number,
            path=path,
            version=saved.version or "",
            created=current is None,
        )

    def get_chapter(self, novel_id: str, number: int) -> ChapterRecord:
        key = path_segment(novel_id, field_name="Novel id")
        chapter_number = _validate_chapter_number(number)
        stored = self._chapters.read(chapter_path(key, chapter_number))

        return ChapterRecord(
            novel_id=key,
            number=chapter_number,
            body=stored.value,
            title=extract_title_heading(stored.value),
        )

    def upload_chapters(
        self, novel_id: str, files: Iterable[tuple[str, str]]
    ) -> ChapterUploadReport:
        """Save every ``(filename, content)`` pair named like ``chapter-{n}.html``.

        A failing file is reported and the remaining files are still saved.
        """

        key = path_segment(novel_id, field_name="Novel id")
        self._require_novel(key)

        uploaded: List[UploadOutcome] = []
        failed: List[UploadOutcome] = []
        for filename, content in files:
            name = filename.strip().rsplit("/", 1)[-1]
            match = _CHAPTER_FILE_PATTERN.fullmatch(name)
            if match is None:
                failed.append(
                    UploadOutcome(
                        filename=filename,
                        status="error",
                        reason="File name must look like 'chapter-1.html'.",
                    )
                )
                continue

            try:
                self.save_chapter(key, int(match.group(1)), content)
            except NovelStoreError as exc:
                logger.warning("Upload of %s to %s failed: %s", name, key, exc)
                failed.append(UploadOutcome(filename=filename, status="error", reason=str(exc)))
                continue

            uploaded.append(UploadOutcome(filename=filename, status="success"))

        return ChapterUploadReport(uploaded=tuple(uploaded), failed=tuple(failed))

    def delete_novel(self, novel_id: str, expected_version: str) -> None:
        """Delete the novel's ``info.json``; chapter files are left in place."""

        key = path_segment(novel_id, field_name="Novel id")
        version = require_text(expected_version, field_name="Version")
        try:
            self._store.delete(
                info_path(key), version, message=f"Delete novel - {key}"
            )
        except BlobNotFoundError as exc:
            raise NovelNotFoundError(key) from exc
        logger.info("Deleted novel %s", key)

    def _require_novel(self, novel_id: str) -> None:
        if self._store.get(info_path(novel_id)) is None:
            raise NovelNotFoundError(novel_id)

    def _detail(
        self,
        novel_id: str,
        record: NovelRecord,
        version: str,
        entries: Sequence[BlobEntry],
    ) -> NovelDetail:
        cover_url = record.cover_url
        if cover_url is None:
            cover = next(
                (entry for entry in entries if entry.name == COVER_FILENAME and entry.kind == "file"),
                None,
            )
            if cover is not None:
                cover_url = self._store.public_url(cover.path)

        return NovelDetail(
            novel_id=novel_id,
            record=record,
            version=version,
            cover_url=cover_url or PLACEHOLDER_COVER_URL,
            chapters=chapter_summaries(entries),
        )


def chapter_summaries(entries: Iterable[BlobEntry]) -> tuple[ChapterSummary, ...]:
    """Return chapter files found in ``entries`` ordered by chapter number."""

    summaries: List[ChapterSummary] = []
    for entry in entries:
        if entry.kind != "file":
            continue
        match = _CHAPTER_FILE_PATTERN.fullmatch(entry.name)
        if match is None:
            continue
        number = int(match.group(1))
        summaries.append(
            ChapterSummary(
                chapter_id=chapter_id_for(number),
                number=number,
                title=f"Chapter {number}",
            )
        )
    summaries.sort(key=lambda summary: summary.number)
    return tuple(summaries)


def _validate_chapter_number(number: int) -> int:
    if isinstance(number, bool) or not isinstance(number, int):
        raise InvalidInputError("Chapter number must be an integer.")
    if number < 1:
        raise InvalidInputError("Chapter number must be a positive integer.")
    return number


def _validate_novel(record: NovelRecord) -> NovelRecord:
    title = require_text(record.title, field_name="Title")
    author = require_text(record.author, field_name="Author")
    description = require_text(record.description, field_name="Description")

    cover_url = optional_text(record.cover_url)
    if cover_url is not None and not cover_url.startswith(("http://", "https://")):
        raise InvalidInputError("Cover image URL must be an http(s) URL.")

    if record.rating is not None and not 0 <= record.rating <= 5:
        raise InvalidInputError("Rating must be between 0 and 5.")

    return NovelRecord(
        title=title,
        author=author,
        description=description,
        age_rating=record.age_rating,
        cover_url=cover_url,
        category=optional_text(record.category),
        tags=record.tags,
        translator=optional_text(record.translator),
        release_date=optional_text(record.release_date),
        creator_id=optional_text(record.creator_id),
        status=record.status,
        rating=record.rating,
    )


__all__ = [
    "COVER_FILENAME",
    "CatalogService",
    "ChapterUploadReport",
    "CreatedNovel",
    "NovelDetail",
    "PLACEHOLDER_COVER_URL",
    "SavedChapter",
    "UploadOutcome",
    "chapter_path",
    "chapter_summaries",
    "extract_title_heading",
    "info_path",
    "slugify",
    "with_title_heading",
]
