"""Persistence layer for a novel reading site backed by a versioned blob repository."""

from .blobs import (
    AuditEntry,
    BlobEntry,
    BlobStore,
    FileBlobStore,
    InMemoryBlobStore,
    StoredBlob,
    blob_version,
)
from .catalog import (
    CatalogService,
    ChapterUploadReport,
    CreatedNovel,
    NovelDetail,
    SavedChapter,
    slugify,
)
from .codec import (
    ChapterCodec,
    CommentListCodec,
    DocumentCodec,
    NovelInfoCodec,
    UserCodec,
)
from .comments import CommentThreadService, CommentTree
from .directory import DirectoryService
from .documents import Versioned, VersionedDocument
from .errors import (
    AuthenticationError,
    BlobAlreadyExistsError,
    BlobNotFoundError,
    CommentNotFoundError,
    CorruptDocumentError,
    EmailTakenError,
    InvalidInputError,
    NovelAlreadyExistsError,
    NovelNotFoundError,
    NovelStoreError,
    ParentNotFoundError,
    ThreadNotFoundError,
    TransportError,
    UsernameTakenError,
    VersionConflictError,
)
from .github import GitHubContentsStore
from .models import (
    AgeRating,
    ChapterRecord,
    ChapterSummary,
    Comment,
    NovelRecord,
    NovelStatus,
    UserRecord,
)
from .retry import NO_RETRY, ConflictRetryPolicy, call_with_retries

__all__ = [
    "AgeRating",
    "AuditEntry",
    "AuthenticationError",
    "BlobAlreadyExistsError",
    "BlobEntry",
    "BlobNotFoundError",
    "BlobStore",
    "CatalogService",
    "ChapterCodec",
    "ChapterRecord",
    "ChapterSummary",
    "ChapterUploadReport",
    "Comment",
    "CommentListCodec",
    "CommentNotFoundError",
    "CommentThreadService",
    "CommentTree",
    "ConflictRetryPolicy",
    "CorruptDocumentError",
    "CreatedNovel",
    "DirectoryService",
    "DocumentCodec",
    "EmailTakenError",
    "FileBlobStore",
    "GitHubContentsStore",
    "InMemoryBlobStore",
    "InvalidInputError",
    "NO_RETRY",
    "NovelAlreadyExistsError",
    "NovelDetail",
    "NovelInfoCodec",
    "NovelNotFoundError",
    "NovelRecord",
    "NovelStatus",
    "NovelStoreError",
    "ParentNotFoundError",
    "SavedChapter",
    "StoredBlob",
    "ThreadNotFoundError",
    "TransportError",
    "UserCodec",
    "UserRecord",
    "UsernameTakenError",
    "Versioned",
    "VersionConflictError",
    "VersionedDocument",
    "blob_version",
    "call_with_retries",
    "slugify",
]
