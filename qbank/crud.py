"""
CRUD Service Layer
==================
Read and administrative operations on the catalog.
This is the layer the HTTP endpoints and CLI call; ingestion writes go
through the engine.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import database as db
from .categories import DEFAULT_BLOCK_SIZE, DEFAULT_COLOR, DEFAULT_ICON, CategoryResolver
from .errors import NotFound
from .models import Category

logger = logging.getLogger(__name__)


# ─── Read Operations ─────────────────────────────────────────────────────────


def get_question(
    question_id: int,
    user_id: Optional[str] = None,
    db_path: str = None,
) -> dict:
    """
    Read path for a single published question.

    Increments ``view_count`` and, when ``user_id`` is given, reports whether
    the user has favorited or completed it.

    Raises:
        NotFound: Unknown or unpublished question.
    """
    with db.transaction(db_path) as conn:
        updated = conn.execute(
            """UPDATE questions SET view_count = view_count + 1
               WHERE id = ? AND published = 1""",
            (question_id,),
        ).rowcount
        if not updated:
            raise NotFound(f"Question {question_id} not found")

        row = conn.execute(
            """SELECT q.*, c.name AS category_name
               FROM questions q JOIN categories c ON c.id = q.category_id
               WHERE q.id = ?""",
            (question_id,),
        ).fetchone()

        is_favorite = is_completed = False
        if user_id:
            is_favorite = conn.execute(
                "SELECT 1 FROM favorites WHERE user_id = ? AND question_id = ?",
                (user_id, question_id),
            ).fetchone() is not None
            is_completed = conn.execute(
                """SELECT 1 FROM progress
                   WHERE user_id = ? AND question_id = ?
                     AND completed_at IS NOT NULL""",
                (user_id, question_id),
            ).fetchone() is not None

    result = _format_question(row)
    result["is_favorite"] = is_favorite
    result["is_completed"] = is_completed
    return result


def list_categories(db_path: str = None) -> list[dict]:
    """All categories in display order, with their question counts."""
    with db.get_connection(db_path) as conn:
        categories = db.list_categories(conn)
        counts = db.count_questions_by_category(conn)

    result = []
    for category in categories:
        entry = category.model_dump()
        entry["question_count"] = counts.get(category.id, 0)
        result.append(entry)
    return result


# ─── Write Operations ────────────────────────────────────────────────────────


def add_category(
    name: str,
    start: Optional[int] = None,
    end: Optional[int] = None,
    icon: str = DEFAULT_ICON,
    color: str = DEFAULT_COLOR,
    description: Optional[str] = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
    db_path: str = None,
) -> Category:
    """
    Create a category explicitly.

    Raises:
        ValueError: A category with that name already exists.
        RangeConflict: The range is inverted or overlaps another category.
    """
    with db.transaction(db_path) as conn:
        if db.find_category_by_name(conn, name):
            raise ValueError(f"Category already exists: {name!r}")
        resolver = CategoryResolver(conn, block_size=block_size)
        return resolver.create(
            name, start=start, end=end, icon=icon, color=color,
            description=description,
        )


def set_published(question_id: int, published: bool, db_path: str = None) -> bool:
    """
    Publish or unpublish a question.

    Raises:
        NotFound: No question with that id.
    """
    with db.transaction(db_path) as conn:
        updated = conn.execute(
            "UPDATE questions SET published = ?, modified_at = ? WHERE id = ?",
            (1 if published else 0, db.now_iso(), question_id),
        ).rowcount
    if not updated:
        raise NotFound(f"Question {question_id} not found")
    logger.info(
        f"Question {question_id} {'published' if published else 'unpublished'}"
    )
    return published


def delete_question(question_id: int, db_path: str = None) -> bool:
    """
    Hard-delete a question. Favorites and progress rows go with it
    (ON DELETE CASCADE).
    """
    with db.transaction(db_path) as conn:
        deleted = conn.execute(
            "DELETE FROM questions WHERE id = ?", (question_id,)
        ).rowcount
    if deleted:
        logger.info(f"Deleted question {question_id}")
    else:
        logger.warning(f"Delete requested for unknown question {question_id}")
    return deleted > 0


# ─── Helpers ─────────────────────────────────────────────────────────────────


def _format_question(row) -> dict:
    """Format a DB row for API responses."""
    question = db.question_from_row(row)
    data = question.model_dump(mode="json")
    data["category"] = row["category_name"]
    return data
