"""
Category Resolver
=================
Maps a free-text category hint to an existing category, or creates one with
the next free numeric range.

Matching is exact and case-insensitive after trimming; near-duplicates such
as "C#" vs "C# ." become separate categories.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Optional

from . import database as db
from .errors import RangeConflict, retry_on_conflict
from .models import Category

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 99
DEFAULT_ICON = "fa-question-circle"
DEFAULT_COLOR = "#6c757d"
FALLBACK_CATEGORY = "Uncategorized"

# "Q21", "Q125" tokens in file names like "Q21_Q25_C#.md"
_NUMBER_TOKEN = re.compile(r"\bQ?\d+\b", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Trim and collapse internal whitespace."""
    return " ".join(name.split())


def category_from_document_id(document_id: str) -> str:
    """
    Derive a category name from a document identifier when nothing better
    is available: parent directory if any, else the file stem without
    question-number tokens.
    """
    parts = document_id.replace("\\", "/").split("/")
    if len(parts) > 1:
        return normalize_name(parts[-2]) or FALLBACK_CATEGORY

    stem = parts[-1].rsplit(".", 1)[0]
    stem = stem.replace("_", " ").replace("-", " ")
    stem = _NUMBER_TOKEN.sub(" ", stem)
    return normalize_name(stem) or FALLBACK_CATEGORY


class CategoryResolver:
    """
    Resolves category hints against the catalog.

    Args:
        conn: Open connection; the caller owns the transaction.
        block_size: New categories get ``[start, start + block_size]``.
    """

    def __init__(self, conn: sqlite3.Connection, block_size: int = DEFAULT_BLOCK_SIZE):
        if block_size < 0:
            raise ValueError(f"block_size must be >= 0, got {block_size}")
        self.conn = conn
        self.block_size = block_size

    def resolve(self, hint: str) -> Category:
        """Return the category named ``hint``, creating it if needed."""
        name = normalize_name(hint or "") or FALLBACK_CATEGORY
        return retry_on_conflict(
            lambda: self._resolve_once(name),
            label=f"resolve category {name!r}",
        )

    def _resolve_once(self, name: str) -> Category:
        existing = db.find_category_by_name(self.conn, name)
        if existing:
            return existing
        return self.create(name)

    def create(
        self,
        name: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        icon: str = DEFAULT_ICON,
        color: str = DEFAULT_COLOR,
        description: Optional[str] = None,
    ) -> Category:
        """
        Create a category. Without an explicit ``start`` the range begins
        right after the highest existing range end.

        Raises:
            RangeConflict: The range is inverted or overlaps another category.
            sqlite3.IntegrityError: The name already exists.
        """
        name = normalize_name(name)
        max_order, max_end = db.category_bounds(self.conn)

        if start is None:
            start = max_end + 1
        if end is None:
            end = start + self.block_size
        if end < start:
            raise RangeConflict(f"Category {name!r}: range {start}-{end} is inverted")

        for other in db.list_categories(self.conn):
            if other.overlaps(start, end):
                raise RangeConflict(
                    f"Category {name!r}: range {start}-{end} overlaps "
                    f"{other.name!r} ({other.number_range_start}-{other.number_range_end})"
                )

        try:
            category = db.insert_category(
                self.conn,
                name=name,
                number_range_start=start,
                number_range_end=end,
                display_order=max_order + 1,
                icon=icon or DEFAULT_ICON,
                color=color or DEFAULT_COLOR,
                description=description or f"Questions related to {name}",
            )
        except sqlite3.IntegrityError as e:
            if "range overlap" in str(e):
                raise RangeConflict(f"Category {name!r}: {e}") from e
            raise

        logger.info(
            f"Created category {category.name!r} with range "
            f"{category.number_range_start}-{category.number_range_end}"
        )
        return category
