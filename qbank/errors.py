"""
Error Taxonomy
==============
Every failure the pipeline or the interaction store can surface.

Ingestion failures are per-record: they are collected into the run summary
and never abort the batch. Toggle failures are raised to the caller with no
partial writes.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ATTEMPTS = 3


class QBankError(Exception):
    """Base exception for all question bank errors."""

    #: Fatal errors make the ingest CLI exit non-zero.
    fatal = False


class ParseSkip(QBankError):
    """A malformed or empty block. Logged, excluded from output."""

    def __init__(self, reason: str, document_id: str = "", line: int = 0):
        self.reason = reason
        self.document_id = document_id
        self.line = line
        location = f"{document_id}:{line}" if document_id else ""
        super().__init__(f"{location} {reason}".strip())


class AllocationError(QBankError):
    """Category range or question number could not be allocated."""

    fatal = True


class RangeConflict(AllocationError):
    """A category range would overlap an existing one."""


class CapacityExceeded(AllocationError):
    """Every number in a category's range is already taken."""


class NotFound(QBankError):
    """Question is unknown or unpublished."""


class ConflictRetry(QBankError):
    """A unique-constraint race was lost. Safe to retry."""


class TransientError(QBankError):
    """A conflict persisted past the retry budget."""

    fatal = True


def is_conflict(exc: BaseException) -> bool:
    """True for errors that mean "someone else wrote first, try again"."""
    if isinstance(exc, ConflictRetry):
        return True
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    if isinstance(exc, sqlite3.OperationalError):
        return "locked" in str(exc).lower() or "busy" in str(exc).lower()
    return False


def retry_on_conflict(
    func: Callable[[], T],
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    backoff: float = 0.01,
    label: Optional[str] = None,
) -> T:
    """
    Call ``func`` and transparently retry it when it loses a write race.

    Raises:
        TransientError: If every attempt hit a conflict.
    """
    label = label or getattr(func, "__name__", "operation")
    last_exc: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (ConflictRetry, sqlite3.IntegrityError, sqlite3.OperationalError) as e:
            if not is_conflict(e):
                raise
            last_exc = e
            logger.debug(f"{label}: conflict on attempt {attempt}/{attempts}: {e}")
            time.sleep(backoff * attempt)

    logger.warning(f"{label}: giving up after {attempts} conflicting attempts")
    raise TransientError(
        f"{label} kept conflicting after {attempts} attempts: {last_exc}"
    ) from last_exc
