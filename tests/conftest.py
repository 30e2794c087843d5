"""Shared fixtures for the question bank test suite."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from qbank import database as db
from qbank.categories import CategoryResolver
from qbank.models import Difficulty
from qbank.numbering import NumberAllocator


THREE_QUESTIONS = """# C# Interview Questions

Category: C# Fundamentals

## Q1: What is a delegate?

A delegate is a **type-safe** function pointer.

## Q2: What is LINQ? [advanced]

Tags: linq, query

```csharp
var evens = from n in numbers where n % 2 == 0 select n;
```

## Q3: Value vs reference types

| Kind | Stored on |
|------|-----------|
| struct | stack |
| class | heap |
"""


@pytest.fixture(autouse=True)
def reset_qbank_logging():
    """Drop handlers the engine attached so they never outlive a test's streams."""
    yield
    pkg_logger = logging.getLogger("qbank")
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def tmp_db(tmp_path) -> str:
    """A freshly initialised SQLite database file."""
    path = str(tmp_path / "qbank.sqlite")
    db.init_db(path)
    return path


@pytest.fixture
def source_dir(tmp_path) -> Path:
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def write_doc(source_dir):
    """Write a document under the source root and return its path."""

    def _write(name: str, text: str) -> Path:
        path = source_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_question(tmp_db):
    """Insert a question directly and return its id."""

    def _make(
        title: str = "What is a delegate?",
        category: str = "C#",
        number: int = None,
        published: bool = True,
    ) -> int:
        with db.get_connection(tmp_db) as conn:
            cat = db.find_category_by_name(conn, category)
            if cat is None:
                cat = CategoryResolver(conn).create(category)
            if number is None:
                number = NumberAllocator(conn).next_free(cat)
            return db.insert_question(
                conn,
                category_id=cat.id,
                number=number,
                title=title,
                content_plain="body",
                content_html="<p>body</p>",
                difficulty=Difficulty.INTERMEDIATE,
                tags=[],
                published=published,
                created_at=db.now_iso(),
            )

    return _make


def count_rows(db_path: str, table: str) -> int:
    with db.get_connection(db_path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
