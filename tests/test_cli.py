"""
Test Suite for the CLI
======================
Command behavior and exit codes through click's CliRunner.
"""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from conftest import THREE_QUESTIONS, count_rows
from qbank.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


def _ingest(runner, source_dir, tmp_db, *args):
    return runner.invoke(
        cli,
        ["ingest", str(source_dir), "--db", tmp_db, "--log-level", "ERROR", *args],
    )


class TestIngestCommand:

    def test_ingest_and_reimport(self, runner, tmp_db, source_dir, write_doc):
        write_doc("csharp.md", THREE_QUESTIONS)

        first = _ingest(runner, source_dir, tmp_db)
        assert first.exit_code == 0, first.output
        assert "3 questions parsed, 3 new, 0 updated, 0 errors" in first.output

        second = _ingest(runner, source_dir, tmp_db)
        assert second.exit_code == 0
        assert "3 questions parsed, 0 new, 0 updated, 0 errors" in second.output

    def test_dry_run(self, runner, tmp_db, source_dir, write_doc):
        write_doc("csharp.md", THREE_QUESTIONS)

        result = _ingest(runner, source_dir, tmp_db, "--dry-run")

        assert result.exit_code == 0
        assert "3 questions parsed, 3 new" in result.output
        assert count_rows(tmp_db, "questions") == 0

    def test_soft_skips_exit_zero(self, runner, tmp_db, source_dir, write_doc):
        write_doc("a.md", "## Q1: Fine\n\nBody\n\n## Q2: Empty\n")

        result = _ingest(runner, source_dir, tmp_db)

        assert result.exit_code == 0
        assert "2 questions parsed, 1 new, 0 updated, 0 errors" in result.output

    def test_capacity_error_exits_nonzero(self, runner, tmp_db, source_dir, write_doc):
        write_doc("a.md", "".join(f"## Q{n}: Question {n}\n\nBody\n\n" for n in (1, 2, 3)))

        result = _ingest(runner, source_dir, tmp_db, "--block-size", "1")

        assert result.exit_code == 1
        assert "3 questions parsed, 2 new, 0 updated, 1 errors" in result.output

    def test_missing_source_root(self, runner, tmp_db, tmp_path):
        result = runner.invoke(cli, ["ingest", str(tmp_path / "nope"), "--db", tmp_db])
        assert result.exit_code != 0


class TestAdminCommands:

    def test_verify_lists_categories(self, runner, tmp_db, source_dir, write_doc):
        write_doc("csharp.md", THREE_QUESTIONS)
        _ingest(runner, source_dir, tmp_db)

        result = runner.invoke(cli, ["verify", "--db", tmp_db])

        assert result.exit_code == 0
        assert "C# Fundamentals" in result.output
        assert "Total: 3 questions in 1 categories" in result.output

    def test_add_category(self, runner, tmp_db):
        result = runner.invoke(
            cli, ["add-category", "SQL", "--start", "200", "--end", "299", "--db", tmp_db]
        )
        assert result.exit_code == 0
        assert "200-299" in result.output

    def test_add_category_overlap(self, runner, tmp_db):
        runner.invoke(cli, ["add-category", "SQL", "--start", "1", "--end", "10", "--db", tmp_db])
        result = runner.invoke(
            cli, ["add-category", "Web", "--start", "5", "--end", "20", "--db", tmp_db]
        )
        assert result.exit_code == 1

    def test_publish_toggle(self, runner, tmp_db, make_question):
        qid = make_question()

        result = runner.invoke(cli, ["publish", str(qid), "--unpublish", "--db", tmp_db])

        assert result.exit_code == 0
        assert f"Question {qid} unpublished" in result.output

    def test_publish_unknown(self, runner, tmp_db):
        result = runner.invoke(cli, ["publish", "999", "--db", tmp_db])
        assert result.exit_code == 1
