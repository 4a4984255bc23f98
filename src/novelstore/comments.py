"""Nested comment threads stored as one document per chapter."""

from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Sequence

from .blobs import BlobStore
from .codec import CommentListCodec, millis_to_timestamp, timestamp_to_millis
from .documents import VersionedDocument
from .errors import (
    CommentNotFoundError,
    InvalidInputError,
    ParentNotFoundError,
    ThreadNotFoundError,
)
from .models import Comment, optional_text, path_segment, require_text
from .retry import ConflictRetryPolicy, SleepFunction, call_with_retries

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase

# deepest nesting a reply may be posted at; root comments are at depth 1
MAX_REPLY_DEPTH = 100


def comments_path(novel_id: str, chapter_id: str) -> str:
    return f"{novel_id}/comments-{chapter_id}.json"


@dataclass
class _Node:
    identifier: str
    author: str
    body: str
    timestamp: datetime
    likes: int
    avatar_url: str | None


class CommentTree:
    """Mutable arena holding one thread while it is being edited.

    Nodes live in a flat list addressed by integer handles, and each handle
    owns the ordered list of its children's handles. Duplicate identifiers are
    tolerated; lookups return the first node met in pre-order.
    """

    def __init__(self) -> None:
        self._nodes: List[_Node] = []
        self._children: Dict[int, List[int]] = {}
        self._roots: List[int] = []
        self._depths: List[int] = []

    @classmethod
    def from_comments(cls, comments: Iterable[Comment]) -> "CommentTree":
        tree = cls()
        tree._roots = [tree._load(comment) for comment in comments]
        return tree

    def _load(self, comment: Comment, depth: int = 1) -> int:
        root = self._new_node(comment, depth)
        stack = [(root, comment)]
        while stack:
            handle, current = stack.pop()
            for reply in current.replies:
                child = self._new_node(reply, self._depths[handle] + 1)
                self._children[handle].append(child)
                stack.append((child, reply))
        return root

    def _new_node(self, comment: Comment, depth: int) -> int:
        handle = len(self._nodes)
        self._depths.append(depth)
        self._nodes.append(
            _Node(
                identifier=comment.identifier,
                author=comment.author,
                body=comment.body,
                timestamp=comment.timestamp,
                likes=comment.likes,
                avatar_url=comment.avatar_url,
            )
        )
        self._children[handle] = []
        return handle

    def _walk(self) -> Iterator[int]:
        stack = list(reversed(self._roots))
        while stack:
            handle = stack.pop()
            yield handle
            stack.extend(reversed(self._children[handle]))

    def find(self, comment_id: str) -> int | None:
        """Return the handle of the first pre-order node with ``comment_id``."""

        for handle in self._walk():
            if self._nodes[handle].identifier == comment_id:
                return handle
        return None

    def __contains__(self, comment_id: object) -> bool:
        return isinstance(comment_id, str) and self.find(comment_id) is not None

    def __len__(self) -> int:
        return len(self._nodes)

    def ids(self) -> List[str]:
        """Return every identifier in pre-order."""

        return [self._nodes[handle].identifier for handle in self._walk()]

    def prepend_root(self, comment: Comment) -> int:
        handle = self._load(comment)
        self._roots.insert(0, handle)
        return handle

    def depth(self, handle: int) -> int:
        return self._depths[handle]

    def insert_reply(self, parent: int, comment: Comment) -> int:
        """Insert ``comment`` at the front of ``parent``'s replies."""

        handle = self._load(comment, self._depths[parent] + 1)
        self._children[parent].insert(0, handle)
        return handle

    def like(self, handle: int) -> None:
        self._nodes[handle].likes += 1

    def comment(self, handle: int) -> Comment:
        """Rebuild the immutable subtree rooted at ``handle``."""

        built: Dict[int, Comment] = {}
        stack = [(handle, False)]
        while stack:
            current, expanded = stack.pop()
            if not expanded:
                stack.append((current, True))
                stack.extend((child, False) for child in self._children[current])
                continue
            node = self._nodes[current]
            built[current] = Comment(
                identifier=node.identifier,
                author=node.author,
                body=node.body,
                timestamp=node.timestamp,
                likes=node.likes,
                replies=tuple(built.pop(child) for child in self._children[current]),
                avatar_url=node.avatar_url,
            )
        return built[handle]

    def to_comments(self) -> List[Comment]:
        return [self.comment(handle) for handle in self._roots]


def generate_comment_id(now: datetime, *, rng: random.Random | None = None) -> str:
    """Return ``{epoch_ms}-{7 base36 chars}`` like the identifiers already stored."""

    chooser = rng or random
    suffix = "".join(chooser.choices(_ID_ALPHABET, k=7))
    return f"{timestamp_to_millis(now)}-{suffix}"


def sort_most_recent_first(comments: Sequence[Comment]) -> List[Comment]:
    # sorted() is stable with reverse=True, so equal timestamps keep stored order
    return sorted(comments, key=lambda comment: comment.timestamp, reverse=True)


class CommentThreadService:
    """Business logic for the comment thread attached to each chapter."""

    def __init__(
        self,
        store: BlobStore,
        *,
        retry_policy: ConflictRetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[datetime], str] | None = None,
        sleep: SleepFunction | None = None,
    ) -> None:
        self._documents: VersionedDocument[List[Comment]] = VersionedDocument(
            store, CommentListCodec(), default=list
        )
        self._retry_policy = retry_policy or ConflictRetryPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or generate_comment_id
        self._sleep = sleep

    def list(self, novel_id: str, chapter_id: str) -> List[Comment]:
        """Return the thread's root comments, most recent first."""

        path = self._path(novel_id, chapter_id)
        return sort_most_recent_first(self._documents.read(path).value)

    def add_top_level(
        self,
        novel_id: str,
        chapter_id: str,
        author: str,
        body: str,
        avatar_url: str | None = None,
    ) -> Comment:
        """Prepend a new root comment, creating the thread on first use."""

        path = self._path(novel_id, chapter_id)
        author_name = require_text(author, field_name="Name")
        text = require_text(body, field_name="Comment")
        avatar = optional_text(avatar_url)

        def attempt() -> Comment:
            current = self._documents.read(path)
            tree = CommentTree.from_comments(current.value)
            comment = self._new_comment(tree, author_name, text, avatar)
            tree.prepend_root(comment)
            self._documents.write(
                path,
                tree.to_comments(),
                expected_version=current.version,
                message=f"Add comment to {chapter_id} in {novel_id}",
            )
            return comment

        comment = self._run(attempt)
        logger.info("Added comment %s to %s", comment.identifier, path)
        return comment

    def add_reply(
        self,
        novel_id: str,
        chapter_id: str,
        parent_id: str,
        author: str,
        body: str,
        avatar_url: str | None = None,
    ) -> Comment:
        """Prepend a reply to the replies of ``parent_id``."""

        path = self._path(novel_id, chapter_id)
        parent_key = require_text(parent_id, field_name="Parent comment")
        author_name = require_text(author, field_name="Name")
        text = require_text(body, field_name="Reply")
        avatar = optional_text(avatar_url)

        def attempt() -> Comment:
            current = self._documents.read(path)
            if not current.exists:
                raise ThreadNotFoundError(novel_id, chapter_id)

            tree = CommentTree.from_comments(current.value)
            parent = tree.find(parent_key)
            if parent is None:
                raise ParentNotFoundError(parent_key)
            if tree.depth(parent) >= MAX_REPLY_DEPTH:
                raise InvalidInputError(
                    f"Replies cannot be nested deeper than {MAX_REPLY_DEPTH} levels."
                )

            reply = self._new_comment(tree, author_name, text, avatar)
            tree.insert_reply(parent, reply)
            self._documents.write(
                path,
                tree.to_comments(),
                expected_version=current.version,
                message=f"Reply to comment {parent_key} on {chapter_id} in {novel_id}",
            )
            return reply

        reply = self._run(attempt)
        logger.info("Added reply %s under %s in %s", reply.identifier, parent_key, path)
        return reply

    def like(self, novel_id: str, chapter_id: str, comment_id: str) -> Comment:
        """Increment the persisted like counter of ``comment_id``."""

        path = self._path(novel_id, chapter_id)
        target = require_text(comment_id, field_name="Comment")

        def attempt() -> Comment:
            current = self._documents.read(path)
            if not current.exists:
                raise ThreadNotFoundError(novel_id, chapter_id)

            tree = CommentTree.from_comments(current.value)
            handle = tree.find(target)
            if handle is None:
                raise CommentNotFoundError(target)

            tree.like(handle)
            self._documents.write(
                path,
                tree.to_comments(),
                expected_version=current.version,
                message=f"Like comment {target} on {chapter_id} in {novel_id}",
            )
            return tree.comment(handle)

        return self._run(attempt)

    def _run(self, operation: Callable[[], Comment]) -> Comment:
        return call_with_retries(
            operation, retry_policy=self._retry_policy, sleep=self._sleep
        )

    def _new_comment(
        self, tree: CommentTree, author: str, body: str, avatar_url: str | None
    ) -> Comment:
        # stored timestamps carry millisecond precision
        now = millis_to_timestamp(timestamp_to_millis(self._clock()))
        identifier = self._id_factory(now)
        while identifier in tree:
            identifier = self._id_factory(now)
        return Comment(
            identifier=identifier,
            author=author,
            body=body,
            timestamp=now,
            avatar_url=avatar_url,
        )

    def _path(self, novel_id: str, chapter_id: str) -> str:
        return comments_path(
            path_segment(novel_id, field_name="Novel id"),
            path_segment(chapter_id, field_name="Chapter id"),
        )


def count_comments(comments: Iterable[Comment]) -> int:
    """Return the number of comments in a thread including nested replies."""

    total = 0
    stack = list(comments)
    while stack:
        total += 1
        stack.extend(stack.pop().replies)
    return total


__all__ = [
    "MAX_REPLY_DEPTH",
    "CommentThreadService",
    "CommentTree",
    "comments_path",
    "count_comments",
    "generate_comment_id",
    "sort_most_recent_first",
]
