"""
Interaction State Store
=======================
Per-user favorite and completion state, and progress summaries.

Every toggle is one short BEGIN IMMEDIATE transaction containing a single
conditional write, so concurrent toggles from the same user serialize in the
database and each one observes the previous one's result. A lost insert race
(unique constraint on ``(user_id, question_id)``) is retried transparently.
"""

from __future__ import annotations

import logging

from . import database as db
from .errors import ConflictRetry, NotFound, retry_on_conflict
from .models import Favorite, Progress, ProgressSummary

logger = logging.getLogger(__name__)


def _require_published(conn, question_id: int):
    if not db.is_published(conn, question_id):
        raise NotFound(f"Question {question_id} not found")


# ─── Favorites ───────────────────────────────────────────────────────────────


def toggle_favorite(user_id: str, question_id: int, db_path: str = None) -> bool:
    """
    Flip the favorite flag for (user, question).

    Returns:
        True if the question is now a favorite, False if it was removed.

    Raises:
        NotFound: Unknown or unpublished question; nothing is written.
        TransientError: The write kept conflicting past the retry budget.
    """

    def attempt() -> bool:
        with db.transaction(db_path) as conn:
            _require_published(conn, question_id)

            removed = conn.execute(
                "DELETE FROM favorites WHERE user_id = ? AND question_id = ?",
                (user_id, question_id),
            ).rowcount
            if removed:
                return False

            inserted = conn.execute(
                """INSERT INTO favorites (user_id, question_id, created_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(user_id, question_id) DO NOTHING""",
                (user_id, question_id, db.now_iso()),
            ).rowcount
            if not inserted:
                raise ConflictRetry(
                    f"favorite ({user_id}, {question_id}) changed concurrently"
                )
            return True

    favorited = retry_on_conflict(
        attempt, label=f"toggle favorite {user_id}/{question_id}"
    )
    logger.info(
        f"User {user_id} {'favorited' if favorited else 'unfavorited'} "
        f"question {question_id}"
    )
    return favorited


def list_favorites(user_id: str, db_path: str = None) -> list[dict]:
    """Favorited published questions, newest first."""
    with db.get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT f.user_id, f.question_id, f.created_at,
                      q.number, q.title, q.difficulty, c.name AS category
               FROM favorites f
               JOIN questions q ON q.id = f.question_id
               JOIN categories c ON c.id = q.category_id
               WHERE f.user_id = ? AND q.published = 1
               ORDER BY f.created_at DESC, f.id DESC""",
            (user_id,),
        ).fetchall()

    result = []
    for r in rows:
        entry = Favorite(
            user_id=r["user_id"],
            question_id=r["question_id"],
            created_at=r["created_at"],
        ).model_dump(mode="json")
        entry.update(
            number=r["number"],
            title=r["title"],
            difficulty=r["difficulty"],
            category=r["category"],
        )
        result.append(entry)
    return result


# ─── Progress ────────────────────────────────────────────────────────────────


def toggle_completed(user_id: str, question_id: int, db_path: str = None) -> bool:
    """
    Flip completion for (user, question). ``attempts`` is never reset.

    Returns:
        True if the question is now completed.

    Raises:
        NotFound: Unknown or unpublished question; nothing is written.
        TransientError: The write kept conflicting past the retry budget.
    """

    def attempt() -> bool:
        with db.transaction(db_path) as conn:
            _require_published(conn, question_id)
            now = db.now_iso()

            updated = conn.execute(
                """UPDATE progress
                   SET completed_at = CASE WHEN completed_at IS NULL
                                           THEN ? ELSE NULL END
                   WHERE user_id = ? AND question_id = ?""",
                (now, user_id, question_id),
            ).rowcount
            if updated:
                row = conn.execute(
                    """SELECT completed_at FROM progress
                       WHERE user_id = ? AND question_id = ?""",
                    (user_id, question_id),
                ).fetchone()
                return row["completed_at"] is not None

            inserted = conn.execute(
                """INSERT INTO progress (user_id, question_id, completed_at, attempts)
                   VALUES (?, ?, ?, 0)
                   ON CONFLICT(user_id, question_id) DO NOTHING""",
                (user_id, question_id, now),
            ).rowcount
            if not inserted:
                raise ConflictRetry(
                    f"progress ({user_id}, {question_id}) changed concurrently"
                )
            return True

    completed = retry_on_conflict(
        attempt, label=f"toggle completed {user_id}/{question_id}"
    )
    logger.info(
        f"User {user_id} marked question {question_id} "
        f"{'completed' if completed else 'not completed'}"
    )
    return completed


def record_attempt(user_id: str, question_id: int, db_path: str = None) -> int:
    """Increment the attempt counter. Returns the new count."""

    def attempt() -> int:
        with db.transaction(db_path) as conn:
            _require_published(conn, question_id)
            conn.execute(
                """INSERT INTO progress (user_id, question_id, completed_at, attempts)
                   VALUES (?, ?, NULL, 1)
                   ON CONFLICT(user_id, question_id)
                   DO UPDATE SET attempts = attempts + 1""",
                (user_id, question_id),
            )
            row = conn.execute(
                "SELECT attempts FROM progress WHERE user_id = ? AND question_id = ?",
                (user_id, question_id),
            ).fetchone()
            return row["attempts"]

    return retry_on_conflict(attempt, label=f"record attempt {user_id}/{question_id}")


def get_progress(user_id: str, question_id: int, db_path: str = None) -> Progress:
    """Progress for one question; a fresh record if the user never touched it."""
    with db.get_connection(db_path) as conn:
        row = conn.execute(
            """SELECT user_id, question_id, completed_at, attempts FROM progress
               WHERE user_id = ? AND question_id = ?""",
            (user_id, question_id),
        ).fetchone()
    if row is None:
        return Progress(user_id=user_id, question_id=question_id)
    return Progress(**dict(row))


def list_completed(user_id: str, db_path: str = None) -> list[dict]:
    """Completed published questions, most recent completion first."""
    with db.get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT p.question_id, p.completed_at, p.attempts,
                      q.number, q.title, c.name AS category
               FROM progress p
               JOIN questions q ON q.id = p.question_id
               JOIN categories c ON c.id = q.category_id
               WHERE p.user_id = ? AND p.completed_at IS NOT NULL
                 AND q.published = 1
               ORDER BY p.completed_at DESC, p.id DESC""",
            (user_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def get_progress_summary(user_id: str, db_path: str = None) -> ProgressSummary:
    """Completed vs. total published questions for the user."""
    with db.get_connection(db_path) as conn:
        total = db.count_published_questions(conn)
        row = conn.execute(
            """SELECT COUNT(*) AS cnt
               FROM progress p
               JOIN questions q ON q.id = p.question_id
               WHERE p.user_id = ? AND p.completed_at IS NOT NULL
                 AND q.published = 1""",
            (user_id,),
        ).fetchone()
    return ProgressSummary(completed_count=row["cnt"], total_count=total)
