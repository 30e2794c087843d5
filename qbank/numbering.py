"""
Number Allocator
================
Chooses the category-scoped number each question is stored under.

Order of preference:
    1. The hinted number, if it is inside the range and free (or already
       holds a question with the same title).
    2. The first number held by a question with the same title that this
       run has not written yet.
    3. The lowest unused number in the range.

An in-range hint repeated within one run is a duplicate and is skipped,
never overwritten. Questions sharing a title are otherwise kept apart.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from . import database as db
from .errors import CapacityExceeded, ParseSkip
from .models import Category

logger = logging.getLogger(__name__)


class NumberAllocator:
    """
    Allocates numbers within category ranges for one ingestion run.

    Numbers handed out in this run are tracked in ``claimed`` so that later
    candidates see them even before the database does.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        # (category_id, number) -> True when claimed through an explicit hint
        self.claimed: dict[tuple[int, int], bool] = {}

    def allocate(
        self,
        category: Category,
        title: str,
        hint: Optional[int] = None,
    ) -> int:
        """
        Return the number to persist for ``title`` in ``category``.

        Raises:
            ParseSkip: The hint was already claimed by another block this run.
            CapacityExceeded: Every number in the range is taken.
        """
        if hint is not None:
            if category.contains(hint):
                number = self._try_hint(category, title, hint)
                if number is not None:
                    return number
            else:
                logger.warning(
                    f"Hint {hint} for {title!r} is outside {category.name!r} "
                    f"({category.number_range_start}-{category.number_range_end})"
                )

        for same_title in db.find_questions_by_title(self.conn, category.id, title):
            if (category.id, same_title.number) not in self.claimed:
                return same_title.number

        return self.next_free(category)

    def _try_hint(self, category: Category, title: str, hint: int) -> Optional[int]:
        key = (category.id, hint)
        if self.claimed.get(key):
            raise ParseSkip(
                f"duplicate number {hint} in {category.name!r}; "
                f"keeping the first occurrence"
            )
        if key in self.claimed:
            logger.info(f"Number {hint} was allocated earlier this run, choosing another")
            return None

        existing = db.get_question_by_number(self.conn, category.id, hint)
        if existing is None or existing.title == title:
            return hint

        logger.info(
            f"Number {hint} in {category.name!r} belongs to {existing.title!r}, "
            f"choosing another for {title!r}"
        )
        return None

    def next_free(self, category: Category) -> int:
        """Lowest unused number, scanning up from the range start."""
        used = db.used_numbers(self.conn, category.id)
        used.update(n for (cid, n) in self.claimed if cid == category.id)

        for number in range(category.number_range_start, category.number_range_end + 1):
            if number not in used:
                return number

        raise CapacityExceeded(
            f"Category {category.name!r} has no free numbers in "
            f"{category.number_range_start}-{category.number_range_end}"
        )

    def claim(self, category_id: int, number: int, via_hint: bool):
        """Record a number as written in this run."""
        key = (category_id, number)
        self.claimed[key] = self.claimed.get(key, False) or via_hint
