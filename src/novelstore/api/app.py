"""FastAPI application exposing the novel catalog, comments and accounts."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Response
from pydantic import BaseModel, Field, field_serializer, field_validator

from ..blobs import BlobStore
from ..catalog import CatalogService, ChapterUploadReport, NovelDetail, UploadOutcome
from ..comments import CommentThreadService, count_comments
from ..directory import DirectoryService
from ..errors import (
    AuthenticationError,
    BlobAlreadyExistsError,
    BlobNotFoundError,
    CommentNotFoundError,
    EmailTakenError,
    InvalidInputError,
    NovelAlreadyExistsError,
    NovelNotFoundError,
    NovelStoreError,
    ThreadNotFoundError,
    TransportError,
    UsernameTakenError,
    VersionConflictError,
)
from ..models import (
    AgeRating,
    ChapterSummary,
    Comment,
    NovelRecord,
    NovelStatus,
    UserRecord,
    split_tag_string,
)
from ..retry import ConflictRetryPolicy
from .settings import NovelStoreSettings, build_store


def _strip_optional(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    # pydantic only reports ValueError and AssertionError as validation errors
    raise ValueError("Value must be a string or null.")


class NovelCreateRequest(BaseModel):
    """Request payload for publishing a new novel."""

    title: str = Field(..., description="Title of the novel; its slug becomes the identifier.")
    author: str = Field(..., description="Name of the author.")
    description: str = Field(..., description="Synopsis shown on the novel page.")
    age_rating: AgeRating = Field(
        AgeRating.ALL, description="Audience classification of the novel."
    )
    cover_image_url: str | None = Field(
        None, description="Optional http(s) URL of the cover image."
    )
    category: str | None = Field(None, description="Optional genre or category.")
    tags: list[str] = Field(
        default_factory=list,
        description="Tags as a list or a comma separated string.",
    )
    translator: str | None = Field(None, description="Optional translator credit.")
    release_date: str | None = Field(None, description="Optional original release date.")
    creator_id: str | None = Field(
        None, description="Optional identifier of the account publishing the novel."
    )
    status: NovelStatus | None = Field(None, description="Optional publication status.")
    rating: float | None = Field(
        None, ge=0, le=5, description="Optional platform rating between 0 and 5."
    )

    @field_validator("title", "author", "description")
    @classmethod
    def _validate_required(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Value must be a non-empty string.")
        return trimmed

    @field_validator(
        "cover_image_url", "category", "translator", "release_date", "creator_id",
        mode="before",
    )
    @classmethod
    def _normalise_optional(cls, value: Any) -> Any:
        return _strip_optional(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return split_tag_string(value)
        return value

    def to_record(self) -> NovelRecord:
        return NovelRecord(
            title=self.title,
            author=self.author,
            description=self.description,
            age_rating=self.age_rating,
            cover_url=self.cover_image_url,
            category=self.category,
            tags=tuple(self.tags),
            translator=self.translator,
            release_date=self.release_date,
            creator_id=self.creator_id,
            status=self.status,
            rating=self.rating,
        )


class ChapterSummaryResource(BaseModel):
    id: str = Field(..., description="Chapter identifier such as 'chapter-3'.")
    number: int = Field(..., ge=1, description="Position of the chapter in the novel.")
    title: str = Field(..., description="Display title of the chapter.")


class NovelResource(BaseModel):
    """Representation of a novel exposed through the API."""

    id: str = Field(..., description="Identifier derived from the novel title.")
    version: str = Field(
        ..., description="Version of the metadata document, required to delete it."
    )
    title: str
    author: str
    description: str
    age_rating: AgeRating
    cover_image_url: str = Field(
        ..., description="Cover image URL, or a placeholder when none was stored."
    )
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    translator: str | None = None
    release_date: str | None = None
    creator_id: str | None = None
    status: NovelStatus | None = None
    rating: float | None = None
    chapters: list[ChapterSummaryResource] = Field(
        default_factory=list, description="Chapters ordered by number."
    )


class NovelListResponse(BaseModel):
    """Response envelope listing every readable novel."""

    data: list[NovelResource] = Field(default_factory=list)


class ChapterSaveRequest(BaseModel):
    """Request payload for creating or replacing a chapter."""

    content: str = Field(..., description="HTML body of the chapter.")
    title: str | None = Field(
        None, description="Optional heading prepended when the body has none."
    )

    @field_validator("title", mode="before")
    @classmethod
    def _normalise_title(cls, value: Any) -> Any:
        return _strip_optional(value)


class ChapterResource(BaseModel):
    novel_id: str
    id: str
    number: int
    title: str | None = None
    content: str


class SavedChapterResource(BaseModel):
    novel_id: str
    number: int
    path: str
    version: str
    created: bool = Field(..., description="Whether the chapter did not exist before.")


class ChapterFilePayload(BaseModel):
    filename: str = Field(..., description="File name such as 'chapter-1.html'.")
    content: str = Field(..., description="HTML body of the chapter.")


class ChapterUploadRequest(BaseModel):
    """Request payload for uploading several chapter files at once."""

    files: list[ChapterFilePayload] = Field(..., min_length=1)


class UploadOutcomeResource(BaseModel):
    filename: str
    status: Literal["success", "error"]
    reason: str | None = None


class ChapterUploadResponse(BaseModel):
    success: bool
    message: str
    uploaded: list[UploadOutcomeResource] = Field(default_factory=list)
    failed: list[UploadOutcomeResource] = Field(default_factory=list)


class CommentResource(BaseModel):
    """A comment together with its nested replies."""

    id: str
    name: str
    content: str
    timestamp: datetime
    likes: int = Field(0, ge=0)
    avatar_url: str | None = None
    replies: list["CommentResource"] = Field(default_factory=list)

    @field_serializer("timestamp")
    def _serialise_timestamp(self, value: datetime) -> str:
        return value.isoformat()


CommentResource.model_rebuild()


class CommentListResponse(BaseModel):
    data: list[CommentResource] = Field(
        default_factory=list, description="Root comments, most recent first."
    )
    total: int = Field(0, ge=0, description="Number of comments including replies.")


class CommentCreateRequest(BaseModel):
    """Request payload for posting a comment or a reply."""

    name: str = Field(..., description="Display name of the commenter.")
    content: str = Field(..., description="Text of the comment.")
    parent_id: str | None = Field(
        None, description="Identifier of the comment being replied to."
    )
    avatar_url: str | None = Field(None, description="Optional avatar image URL.")

    @field_validator("name", "content")
    @classmethod
    def _validate_text(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Value must be a non-empty string.")
        return trimmed

    @field_validator("parent_id", "avatar_url", mode="before")
    @classmethod
    def _normalise_optional(cls, value: Any) -> Any:
        return _strip_optional(value)


class UserResource(BaseModel):
    """Representation of an account; credentials are never included."""

    id: str
    username: str
    email: str
    created_at: datetime

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()


class UserRegisterRequest(BaseModel):
    username: str = Field(..., description="Unique account name.")
    email: str = Field(..., description="Contact email address, unique across accounts.")
    password: str = Field(..., description="Password of at least six characters.")


class SessionCreateRequest(BaseModel):
    identifier: str = Field(..., description="Username or email address.")
    password: str


def _http_error(exc: NovelStoreError) -> HTTPException:
    """Translate a persistence error into the matching HTTP response."""

    if isinstance(exc, InvalidInputError):
        status = 400
    elif isinstance(exc, AuthenticationError):
        status = 401
    elif isinstance(
        exc,
        (BlobNotFoundError, NovelNotFoundError, ThreadNotFoundError, CommentNotFoundError),
    ):
        status = 404
    elif isinstance(
        exc,
        (
            BlobAlreadyExistsError,
            NovelAlreadyExistsError,
            UsernameTakenError,
            EmailTakenError,
            VersionConflictError,
        ),
    ):
        status = 409
    elif isinstance(exc, TransportError):
        status = 503
    else:
        # corrupt documents and anything unforeseen
        status = 500
    return HTTPException(status_code=status, detail=str(exc))


def _build_chapter_summary(summary: ChapterSummary) -> ChapterSummaryResource:
    return ChapterSummaryResource(
        id=summary.chapter_id, number=summary.number, title=summary.title
    )


def _build_novel_resource(detail: NovelDetail) -> NovelResource:
    record = detail.record
    return NovelResource(
        id=detail.novel_id,
        version=detail.version,
        title=record.title,
        author=record.author,
        description=record.description,
        age_rating=record.age_rating,
        cover_image_url=detail.cover_url,
        category=record.category,
        tags=list(record.tags),
        translator=record.translator,
        release_date=record.release_date,
        creator_id=record.creator_id,
        status=record.status,
        rating=record.rating,
        chapters=[_build_chapter_summary(summary) for summary in detail.chapters],
    )


def _build_comment_resource(comment: Comment) -> CommentResource:
    resource = _comment_resource_shell(comment)
    stack = [(comment, resource)]
    while stack:
        current, parent = stack.pop()
        for reply in current.replies:
            child = _comment_resource_shell(reply)
            parent.replies.append(child)
            stack.append((reply, child))
    return resource


def _comment_resource_shell(comment: Comment) -> CommentResource:
    return CommentResource(
        id=comment.identifier,
        name=comment.author,
        content=comment.body,
        timestamp=comment.timestamp,
        likes=comment.likes,
        avatar_url=comment.avatar_url,
    )


def _build_upload_outcome(outcome: UploadOutcome) -> UploadOutcomeResource:
    return UploadOutcomeResource(
        filename=outcome.filename, status=outcome.status, reason=outcome.reason
    )


def _build_upload_response(report: ChapterUploadReport) -> ChapterUploadResponse:
    return ChapterUploadResponse(
        success=report.success,
        message=report.message,
        uploaded=[_build_upload_outcome(outcome) for outcome in report.uploaded],
        failed=[_build_upload_outcome(outcome) for outcome in report.failed],
    )


def _build_user_resource(record: UserRecord) -> UserResource:
    return UserResource(
        id=record.identifier,
        username=record.username,
        email=record.email,
        created_at=record.created_at,
    )


def create_app(
    settings: NovelStoreSettings | None = None,
    *,
    store: BlobStore | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the novel store endpoints."""

    resolved_settings = settings or NovelStoreSettings.from_env()
    blob_store = store if store is not None else build_store(resolved_settings)

    catalog = CatalogService(blob_store)
    comments = CommentThreadService(
        blob_store,
        retry_policy=ConflictRetryPolicy(max_attempts=resolved_settings.conflict_retries),
    )
    directory = DirectoryService(blob_store)

    tags_metadata = [
        {
            "name": "Novels",
            "description": "Publish novels and browse their metadata and chapters.",
        },
        {
            "name": "Comments",
            "description": "Threaded discussion attached to each chapter.",
        },
        {
            "name": "Users",
            "description": "Register accounts and sign in by username or email.",
        },
    ]

    app = FastAPI(
        title="Novel Store API",
        version="0.1.0",
        description=(
            "HTTP API for a novel reading site whose catalog, chapters, comment "
            "threads and accounts live as files in a versioned blob repository."
        ),
        openapi_tags=tags_metadata,
    )
    app.state.store = blob_store

    @app.get("/api/novels", response_model=NovelListResponse, tags=["Novels"])
    def list_novels() -> NovelListResponse:
        try:
            novels = catalog.list_novels()
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return NovelListResponse(data=[_build_novel_resource(novel) for novel in novels])

    @app.post(
        "/api/novels",
        response_model=NovelResource,
        status_code=201,
        tags=["Novels"],
    )
    def create_novel(payload: NovelCreateRequest) -> NovelResource:
        try:
            created = catalog.create_novel(payload.to_record())
            detail = catalog.get_novel(created.novel_id)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_novel_resource(detail)

    @app.get("/api/novels/{novel_id}", response_model=NovelResource, tags=["Novels"])
    def get_novel(novel_id: str) -> NovelResource:
        try:
            detail = catalog.get_novel(novel_id)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_novel_resource(detail)

    @app.delete("/api/novels/{novel_id}", status_code=204, tags=["Novels"])
    def delete_novel(
        novel_id: str,
        version: str = Query(
            ..., description="Version of the metadata document the caller last saw."
        ),
    ) -> Response:
        try:
            catalog.delete_novel(novel_id, version)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return Response(status_code=204)

    @app.get(
        "/api/novels/{novel_id}/chapters/{number}",
        response_model=ChapterResource,
        tags=["Novels"],
    )
    def get_chapter(novel_id: str, number: int) -> ChapterResource:
        try:
            chapter = catalog.get_chapter(novel_id, number)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return ChapterResource(
            novel_id=chapter.novel_id,
            id=chapter.chapter_id,
            number=chapter.number,
            title=chapter.title,
            content=chapter.body,
        )

    @app.put(
        "/api/novels/{novel_id}/chapters/{number}",
        response_model=SavedChapterResource,
        tags=["Novels"],
    )
    def save_chapter(
        novel_id: str, number: int, payload: ChapterSaveRequest, response: Response
    ) -> SavedChapterResource:
        try:
            saved = catalog.save_chapter(novel_id, number, payload.content, payload.title)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        if saved.created:
            response.status_code = 201
        return SavedChapterResource(
            novel_id=saved.novel_id,
            number=saved.number,
            path=saved.path,
            version=saved.version,
            created=saved.created,
        )

    @app.post(
        "/api/novels/{novel_id}/chapters",
        response_model=ChapterUploadResponse,
        tags=["Novels"],
    )
    def upload_chapters(
        novel_id: str, payload: ChapterUploadRequest
    ) -> ChapterUploadResponse:
        try:
            report = catalog.upload_chapters(
                novel_id, [(item.filename, item.content) for item in payload.files]
            )
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_upload_response(report)

    @app.get(
        "/api/novels/{novel_id}/chapters/{chapter_id}/comments",
        response_model=CommentListResponse,
        tags=["Comments"],
    )
    def list_comments(novel_id: str, chapter_id: str) -> CommentListResponse:
        try:
            thread = comments.list(novel_id, chapter_id)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return CommentListResponse(
            data=[_build_comment_resource(comment) for comment in thread],
            total=count_comments(thread),
        )

    @app.post(
        "/api/novels/{novel_id}/chapters/{chapter_id}/comments",
        response_model=CommentResource,
        status_code=201,
        tags=["Comments"],
    )
    def create_comment(
        novel_id: str, chapter_id: str, payload: CommentCreateRequest
    ) -> CommentResource:
        try:
            if payload.parent_id is None:
                comment = comments.add_top_level(
                    novel_id, chapter_id, payload.name, payload.content, payload.avatar_url
                )
            else:
                comment = comments.add_reply(
                    novel_id,
                    chapter_id,
                    payload.parent_id,
                    payload.name,
                    payload.content,
                    payload.avatar_url,
                )
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_comment_resource(comment)

    @app.post(
        "/api/novels/{novel_id}/chapters/{chapter_id}/comments/{comment_id}/likes",
        response_model=CommentResource,
        tags=["Comments"],
    )
    def like_comment(novel_id: str, chapter_id: str, comment_id: str) -> CommentResource:
        try:
            comment = comments.like(novel_id, chapter_id, comment_id)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_comment_resource(comment)

    @app.post(
        "/api/users",
        response_model=UserResource,
        status_code=201,
        tags=["Users"],
    )
    def register_user(payload: UserRegisterRequest) -> UserResource:
        try:
            record = directory.register(payload.username, payload.email, payload.password)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_user_resource(record)

    @app.get("/api/users/{username}", response_model=UserResource, tags=["Users"])
    def get_user(username: str) -> UserResource:
        try:
            record = directory.get_user(username)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_user_resource(record)

    @app.post("/api/sessions", response_model=UserResource, tags=["Users"])
    def create_session(payload: SessionCreateRequest) -> UserResource:
        try:
            record = directory.authenticate(payload.identifier, payload.password)
        except NovelStoreError as exc:
            raise _http_error(exc) from exc

        return _build_user_resource(record)

    return app


__all__ = ["create_app"]
