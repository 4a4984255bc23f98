"""Bounded re-run of read-modify-write cycles that lost a version race."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import VersionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunction = Callable[[float], None]


@dataclass(frozen=True)
class ConflictRetryPolicy:
    """How many read-modify-write cycles run before a conflict is surfaced.

    The pause after the ``n``-th lost race is ``base_delay * 2 ** (n - 1)``
    seconds, capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_after(self, conflicts: int) -> float:
        """Return the pause that follows ``conflicts`` lost races in a row."""

        if conflicts < 1:
            raise ValueError("conflicts must be >= 1")
        return min(self.base_delay * 2 ** (conflicts - 1), self.max_delay)


NO_RETRY = ConflictRetryPolicy(max_attempts=1)


def call_with_retries(
    operation: Callable[[], T],
    *,
    retry_policy: ConflictRetryPolicy | None = None,
    sleep: SleepFunction | None = None,
) -> T:
    """Execute ``operation``, re-running it only after a version conflict.

    ``operation`` must perform its own fresh read on every call. Any other
    error, and the conflict from the final attempt, propagates.
    """

    policy = retry_policy or ConflictRetryPolicy()
    sleep_fn = sleep or time.sleep

    attempt = 1
    while True:
        try:
            return operation()
        except VersionConflictError as error:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.delay_after(attempt)
            logger.info(
                "Version conflict on %s (attempt %d/%d), retrying in %.3fs",
                error.path,
                attempt,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                sleep_fn(delay)
            attempt += 1


__all__ = ["ConflictRetryPolicy", "NO_RETRY", "SleepFunction", "call_with_retries"]
