"""
SQLite Database Layer
=====================
Persistent storage for the question catalog and per-user interaction state.

Uniqueness and range invariants live in the schema, not only in Python:
    - categories.name is unique, case-insensitively
    - category ranges never overlap (trigger)
    - questions are unique on (category_id, number) and stay inside their
      category's range (trigger)
    - favorites/progress are unique on (user_id, question_id) and cascade
      away with their question
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .models import Category, Difficulty, Question

logger = logging.getLogger(__name__)

# Default database path: project_root/database.sqlite
_DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "database.sqlite")

BUSY_TIMEOUT_SECONDS = 5.0


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("QBANK_DB_PATH", _DEFAULT_DB_PATH)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def connect(db_path: str = None, autocommit: bool = False) -> sqlite3.Connection:
    """
    Open a configured connection.

    With ``autocommit=True`` the caller issues BEGIN/COMMIT/SAVEPOINT itself.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(
        db_path,
        timeout=BUSY_TIMEOUT_SECONDS,
        isolation_level=None if autocommit else "",
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_connection(db_path: str = None) -> Iterator[sqlite3.Connection]:
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.
    """
    conn = connect(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def transaction(db_path: str = None) -> Iterator[sqlite3.Connection]:
    """
    Short write transaction that takes the write lock up front.
    Nothing is committed unless the block finishes without raising.
    """
    conn = connect(db_path, autocommit=True)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times; uses IF NOT EXISTS.
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        create_schema(conn)

    logger.info("Database schema initialized successfully")


def create_schema(conn: sqlite3.Connection):
    """Create tables, indexes and triggers on an open connection."""
    conn.executescript("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE UNIQUE,
                description TEXT DEFAULT '',
                icon TEXT DEFAULT '',
                color TEXT DEFAULT '',
                display_order INTEGER NOT NULL DEFAULT 0,
                number_range_start INTEGER NOT NULL,
                number_range_end INTEGER NOT NULL,
                CHECK (number_range_end >= number_range_start)
            );

            CREATE TABLE IF NOT EXISTS questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category_id INTEGER NOT NULL,
                number INTEGER NOT NULL,
                title TEXT NOT NULL CHECK (length(title) > 0),
                content_plain TEXT NOT NULL DEFAULT '',
                content_html TEXT NOT NULL DEFAULT '',
                difficulty TEXT NOT NULL DEFAULT 'intermediate'
                    CHECK (difficulty IN ('beginner', 'intermediate', 'advanced')),
                tags TEXT NOT NULL DEFAULT '[]',
                published INTEGER NOT NULL DEFAULT 1,
                source_document TEXT DEFAULT '',
                created_at TEXT NOT NULL,
                modified_at TEXT DEFAULT NULL,
                view_count INTEGER NOT NULL DEFAULT 0,
                UNIQUE (category_id, number),
                FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE RESTRICT
            );

            CREATE TABLE IF NOT EXISTS favorites (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                question_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (user_id, question_id),
                FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS progress (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                question_id INTEGER NOT NULL,
                completed_at TEXT DEFAULT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                UNIQUE (user_id, question_id),
                FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_questions_category
                ON questions(category_id, number);
            CREATE INDEX IF NOT EXISTS idx_questions_title
                ON questions(category_id, title);
            CREATE INDEX IF NOT EXISTS idx_favorites_user
                ON favorites(user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_progress_user
                ON progress(user_id, completed_at);

            CREATE TRIGGER IF NOT EXISTS trg_categories_range_insert
            BEFORE INSERT ON categories
            WHEN EXISTS (
                SELECT 1 FROM categories
                WHERE NEW.number_range_start <= number_range_end
                  AND number_range_start <= NEW.number_range_end
            )
            BEGIN
                SELECT RAISE(ABORT, 'category range overlap');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_categories_range_update
            BEFORE UPDATE OF number_range_start, number_range_end ON categories
            WHEN EXISTS (
                SELECT 1 FROM categories
                WHERE id != NEW.id
                  AND NEW.number_range_start <= number_range_end
                  AND number_range_start <= NEW.number_range_end
            )
            BEGIN
                SELECT RAISE(ABORT, 'category range overlap');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_questions_number_insert
            BEFORE INSERT ON questions
            WHEN NOT EXISTS (
                SELECT 1 FROM categories
                WHERE id = NEW.category_id
                  AND NEW.number BETWEEN number_range_start AND number_range_end
            )
            BEGIN
                SELECT RAISE(ABORT, 'question number outside category range');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_questions_number_update
            BEFORE UPDATE OF number, category_id ON questions
            WHEN NOT EXISTS (
                SELECT 1 FROM categories
                WHERE id = NEW.category_id
                  AND NEW.number BETWEEN number_range_start AND number_range_end
            )
            BEGIN
                SELECT RAISE(ABORT, 'question number outside category range');
            END;
        """)


# ─── Row Conversion ──────────────────────────────────────────────────────────


def category_from_row(row: sqlite3.Row) -> Category:
    return Category(**dict(row))


def question_from_row(row: sqlite3.Row) -> Question:
    data = dict(row)
    data["tags"] = json.loads(data.get("tags") or "[]")
    data["published"] = bool(data["published"])
    data.pop("source_document", None)
    return Question(**data)


def encode_tags(tags: list[str]) -> str:
    """Canonical, order-independent text form of a tag set."""
    return json.dumps(sorted(set(tags)), ensure_ascii=False)


# ─── Category CRUD ───────────────────────────────────────────────────────────


def list_categories(conn: sqlite3.Connection) -> list[Category]:
    rows = conn.execute(
        "SELECT * FROM categories ORDER BY display_order, id"
    ).fetchall()
    return [category_from_row(r) for r in rows]


def get_category(conn: sqlite3.Connection, category_id: int) -> Optional[Category]:
    row = conn.execute(
        "SELECT * FROM categories WHERE id = ?", (category_id,)
    ).fetchone()
    return category_from_row(row) if row else None


def find_category_by_name(conn: sqlite3.Connection, name: str) -> Optional[Category]:
    """Exact, case-insensitive name lookup."""
    row = conn.execute(
        "SELECT * FROM categories WHERE name = ? COLLATE NOCASE",
        (name.strip(),),
    ).fetchone()
    return category_from_row(row) if row else None


def category_bounds(conn: sqlite3.Connection) -> tuple[int, int]:
    """Return (max display_order, max number_range_end), 0 when empty."""
    row = conn.execute(
        """SELECT COALESCE(MAX(display_order), 0) AS max_order,
                  COALESCE(MAX(number_range_end), 0) AS max_end
           FROM categories"""
    ).fetchone()
    return row["max_order"], row["max_end"]


def insert_category(
    conn: sqlite3.Connection,
    name: str,
    number_range_start: int,
    number_range_end: int,
    display_order: int,
    icon: str = "",
    color: str = "",
    description: str = "",
) -> Category:
    """Insert a category. Raises sqlite3.IntegrityError on name or range clash."""
    cursor = conn.execute(
        """INSERT INTO categories
           (name, description, icon, color, display_order,
            number_range_start, number_range_end)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (name.strip(), description, icon, color, display_order,
         number_range_start, number_range_end),
    )
    category_id = cursor.lastrowid
    logger.info(
        f"Inserted category id={category_id} name={name!r} "
        f"range={number_range_start}-{number_range_end}"
    )
    return get_category(conn, category_id)


def count_questions_by_category(conn: sqlite3.Connection) -> dict[int, int]:
    rows = conn.execute(
        "SELECT category_id, COUNT(*) AS cnt FROM questions GROUP BY category_id"
    ).fetchall()
    return {r["category_id"]: r["cnt"] for r in rows}


# ─── Question CRUD ───────────────────────────────────────────────────────────


def get_question_by_number(
    conn: sqlite3.Connection, category_id: int, number: int
) -> Optional[Question]:
    row = conn.execute(
        "SELECT * FROM questions WHERE category_id = ? AND number = ?",
        (category_id, number),
    ).fetchone()
    return question_from_row(row) if row else None


def find_questions_by_title(
    conn: sqlite3.Connection, category_id: int, title: str
) -> list[Question]:
    """Questions in the category with exactly this title, by number."""
    rows = conn.execute(
        """SELECT * FROM questions
           WHERE category_id = ? AND title = ?
           ORDER BY number""",
        (category_id, title),
    ).fetchall()
    return [question_from_row(row) for row in rows]


def used_numbers(conn: sqlite3.Connection, category_id: int) -> set[int]:
    rows = conn.execute(
        "SELECT number FROM questions WHERE category_id = ?", (category_id,)
    ).fetchall()
    return {r["number"] for r in rows}


def insert_question(
    conn: sqlite3.Connection,
    category_id: int,
    number: int,
    title: str,
    content_plain: str,
    content_html: str,
    difficulty: Difficulty,
    tags: list[str],
    published: bool,
    created_at: str,
    source_document: str = "",
) -> int:
    """Insert a question. Returns question_id."""
    cursor = conn.execute(
        """INSERT INTO questions
           (category_id, number, title, content_plain, content_html,
            difficulty, tags, published, source_document, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (category_id, number, title, content_plain, content_html,
         Difficulty(difficulty).value, encode_tags(tags),
         1 if published else 0, source_document, created_at),
    )
    return cursor.lastrowid


def update_question_content(
    conn: sqlite3.Connection,
    question_id: int,
    modified_at: str,
    **fields,
) -> bool:
    """
    Update ingestion-owned fields only. ``published``, ``view_count`` and
    ``created_at`` are never touched here.
    """
    allowed = {"title", "content_plain", "content_html", "difficulty", "tags"}
    fields = {k: v for k, v in fields.items() if k in allowed}
    if not fields:
        return False
    if "tags" in fields:
        fields["tags"] = encode_tags(fields["tags"])
    if "difficulty" in fields:
        fields["difficulty"] = Difficulty(fields["difficulty"]).value

    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values()) + [modified_at, question_id]
    cursor = conn.execute(
        f"UPDATE questions SET {set_clause}, modified_at = ? WHERE id = ?",
        values,
    )
    return cursor.rowcount > 0


def get_question(question_id: int, db_path: str = None) -> Optional[Question]:
    """Fetch a single question by ID, published or not."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return question_from_row(row) if row else None


def count_published_questions(conn: sqlite3.Connection) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS cnt FROM questions WHERE published = 1"
    ).fetchone()
    return row["cnt"]


def is_published(conn: sqlite3.Connection, question_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM questions WHERE id = ? AND published = 1",
        (question_id,),
    ).fetchone()
    return row is not None
