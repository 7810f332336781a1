"""Bounded retry for SQLite lock contention.

The local store is single-writer. A concurrent writer (the review command,
a second sync) surfaces as ``OperationalError: database is locked``; those
are retried a few times with linear backoff before giving up.
"""
import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOCK_MARKERS = ("database is locked", "database table is locked", "database is busy")


def is_lock_error(exc: BaseException) -> bool:
    """Return True if exc is SQLite reporting a busy/locked database."""
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def with_lock_retry(
    fn: Callable[[], T],
    *,
    attempts: int = 5,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn, retrying only on lock contention.

    Args:
        fn: Zero-argument callable doing one unit of DB work (own session).
        attempts: Total tries, including the first. Must be >= 1.
        backoff_seconds: Delay before retry n is ``backoff_seconds * n``.
        sleep: Injected for tests.

    Raises:
        The last OperationalError once attempts are exhausted, or any
        non-lock error immediately.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except OperationalError as exc:
            if not is_lock_error(exc) or attempt == attempts:
                raise
            logger.warning(
                "Store locked (attempt %d/%d), retrying: %s", attempt, attempts, exc
            )
            sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")
