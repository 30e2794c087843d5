"""
Catalog Writer
==============
Idempotent upsert of question records keyed on (category_id, number).

Existing rows are only rewritten when the extracted content differs
byte-for-byte, so re-ingesting unchanged input performs no writes.
``created_at``, ``published`` and ``view_count`` of existing rows are never
touched.
"""

from __future__ import annotations

import logging
import sqlite3

from . import database as db
from .models import Category, Question, QuestionCandidate, WriteOutcome

logger = logging.getLogger(__name__)

COMPARED_FIELDS = ("title", "content_plain", "content_html", "difficulty", "tags")


def content_changes(existing: Question, candidate: QuestionCandidate) -> dict:
    """Ingestion-owned fields whose stored value differs from the candidate."""
    changes = {}
    for field in COMPARED_FIELDS:
        old = getattr(existing, field)
        new = getattr(candidate, field)
        if field == "tags":
            old, new = sorted(old), sorted(new)
        if old != new:
            changes[field] = new
    return changes


class CatalogWriter:
    """
    Writes candidates through an open connection; the caller owns the
    transaction and decides whether it is committed.

    Args:
        conn: Open connection.
        run_time: ISO timestamp stamped on inserts and updates of this run.
        publish_on_import: ``published`` value for newly inserted rows.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        run_time: str,
        publish_on_import: bool = True,
    ):
        self.conn = conn
        self.run_time = run_time
        self.publish_on_import = publish_on_import

    def upsert(
        self,
        category: Category,
        number: int,
        candidate: QuestionCandidate,
    ) -> tuple[WriteOutcome, int]:
        """Insert or update one question. Returns (outcome, question_id)."""
        existing = db.get_question_by_number(self.conn, category.id, number)

        if existing is None:
            question_id = db.insert_question(
                self.conn,
                category_id=category.id,
                number=number,
                title=candidate.title,
                content_plain=candidate.content_plain,
                content_html=candidate.content_html,
                difficulty=candidate.difficulty,
                tags=candidate.tags,
                published=self.publish_on_import,
                created_at=self.run_time,
                source_document=candidate.document_id,
            )
            logger.info(
                f"Inserted {category.name!r} #{number}: {candidate.title!r} "
                f"(id={question_id})"
            )
            return WriteOutcome.NEW, question_id

        changes = content_changes(existing, candidate)
        if not changes:
            logger.debug(f"Unchanged {category.name!r} #{number}")
            return WriteOutcome.UNCHANGED, existing.id

        db.update_question_content(
            self.conn, existing.id, modified_at=self.run_time, **changes
        )
        logger.info(
            f"Updated {category.name!r} #{number} "
            f"fields={sorted(changes)} (id={existing.id})"
        )
        return WriteOutcome.UPDATED, existing.id
