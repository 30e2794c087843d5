"""
Test Suite for the Parsing Side
===============================
Unit tests for models, the document scanner, the block parser state machine,
the question extractor and the validation pass.
"""

from __future__ import annotations

import time

import pytest

from conftest import THREE_QUESTIONS
from qbank import scanner as scanner_module
from qbank.block_parser import (
    BlockParser,
    iter_segments,
    match_category_cue,
    match_question_marker,
)
from qbank.categories import category_from_document_id
from qbank.extractor import (
    MAX_TITLE_LENGTH,
    QuestionExtractor,
    infer_difficulty,
    parse_tags,
    render_html,
    render_plain,
)
from qbank.models import (
    Anomaly,
    AnomalyType,
    CodeFence,
    Difficulty,
    Heading,
    Paragraph,
    ProgressSummary,
    QuestionBlock,
    QuestionCandidate,
    Table,
    ValidationReport,
)
from qbank.scanner import DocumentScanner, load_manifest
from qbank.validator import ValidationEngine


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestTableSegment:
    """Test Table row splitting."""

    def test_rows_drop_separator(self):
        table = Table(raw="| a | b |\n|---|:--:|\n| 1 | 2 |")
        assert table.rows == [["a", "b"], ["1", "2"]]

    def test_empty_cells_are_not_separators(self):
        table = Table(raw="| a | |\n| 1 | 2 |")
        assert table.rows == [["a", ""], ["1", "2"]]


class TestQuestionCandidate:
    """Test QuestionCandidate computed fields."""

    def test_clean_candidate(self):
        c = QuestionCandidate(document_id="a.md", title="T", content_plain="x")
        assert c.anomaly_score == 0
        assert c.needs_review is False

    def test_anomaly_score_caps_at_100(self):
        c = QuestionCandidate(
            document_id="a.md",
            title="T",
            anomalies=[
                Anomaly(type=AnomalyType.EMPTY_BODY, severity=80, message="a"),
                Anomaly(type=AnomalyType.MISSING_TITLE, severity=60, message="b"),
            ],
        )
        assert c.anomaly_score == 100
        assert c.needs_review is True


class TestSummaryModels:

    def test_progress_percent_rounds_to_one_decimal(self):
        assert ProgressSummary(completed_count=1, total_count=3).percent == 33.3

    def test_progress_percent_empty_catalog(self):
        assert ProgressSummary().percent == 0.0

    def test_validation_success_rate(self):
        report = ValidationReport(total_blocks_detected=4, extracted_successfully=3)
        assert report.success_rate == 75.0


# ═══════════════════════════════════════════════════════════════════════════════
# SCANNER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocumentScanner:

    def test_glob_is_sorted_and_recursive(self, source_dir, write_doc):
        write_doc("b.md", "b")
        write_doc("a.txt", "a")
        write_doc("sub/c.md", "c")
        write_doc("notes.json", "{}")

        scanner = DocumentScanner(str(source_dir))
        assert scanner.document_ids() == ["a.txt", "b.md", "sub/c.md"]

    def test_restartable(self, source_dir, write_doc):
        write_doc("a.md", "first")
        write_doc("b.md", "second")
        scanner = DocumentScanner(str(source_dir))

        first = [d.raw_text for d in scanner]
        second = [d.raw_text for d in scanner]
        assert first == second == ["first", "second"]

    def test_bom_is_stripped(self, source_dir):
        (source_dir / "bom.md").write_bytes("\ufeff## Q1: Title".encode("utf-8"))
        docs = list(DocumentScanner(str(source_dir)))
        assert docs[0].raw_text == "## Q1: Title"

    def test_missing_document_is_skipped(self, source_dir, write_doc):
        write_doc("a.md", "ok")
        scanner = DocumentScanner(str(source_dir), documents=["missing.md", "a.md"])

        docs = list(scanner)
        assert [d.document_id for d in docs] == ["a.md"]
        assert "missing.md" in scanner.skipped

    def test_undecodable_document_is_skipped(self, source_dir):
        (source_dir / "bad.md").write_bytes(b"\xff\xfe\xfa broken")
        scanner = DocumentScanner(str(source_dir))
        assert list(scanner) == []
        assert "bad.md" in scanner.skipped

    def test_read_timeout(self, source_dir, write_doc, monkeypatch):
        write_doc("slow.md", "never read")

        def slow_read(path):
            time.sleep(0.5)
            return "late"

        monkeypatch.setattr(scanner_module, "_read_text", slow_read)
        scanner = DocumentScanner(str(source_dir), read_timeout=0.05)

        assert list(scanner) == []
        assert "timed out" in scanner.skipped["slow.md"]

    def test_load_manifest(self, tmp_path):
        path = tmp_path / "manifest.json"
        path.write_text('{"Q21_Q25_C#.md": "C# Fundamentals"}', encoding="utf-8")
        assert load_manifest(str(path)) == {"Q21_Q25_C#.md": "C# Fundamentals"}

    def test_manifest_must_be_object(self, tmp_path):
        path = tmp_path / "manifest.json"
        path.write_text('["a.md"]', encoding="utf-8")
        with pytest.raises(ValueError):
            load_manifest(str(path))


# ═══════════════════════════════════════════════════════════════════════════════
# BLOCK PARSER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMarkerPatterns:
    """Test question-marker and category-cue detection."""

    @pytest.mark.parametrize("text, number, end, title", [
        ("Q21: What is X?", "21", None, "What is X?"),
        ("**Q21:** What is X?", "21", None, "What is X?"),
        ("q7) Lower case", "7", None, "Lower case"),
        ("Question 21: Long form", "21", None, "Long form"),
        ("21. Bare number", "21", None, "Bare number"),
        ("Q5 - Dash separated", "5", None, "Dash separated"),
        ("Q77-Q80: Combined (Combined)", "77", "80", "Combined (Combined)"),
    ])
    def test_question_markers(self, text, number, end, title):
        m = match_question_marker(text)
        assert m is not None
        assert m.group(1) == number
        assert m.group(2) == end
        assert m.group(3).strip() == title

    @pytest.mark.parametrize("text", [
        "Introduction",
        "C# Interview Questions",
        "Q&A session",
        "2024 Roadmap",
    ])
    def test_non_markers(self, text):
        assert match_question_marker(text) is None

    def test_category_cues(self):
        assert match_category_cue("Category: Azure Cloud") == "Azure Cloud"
        assert match_category_cue("**Category:** Azure Cloud") == "Azure Cloud"
        assert match_category_cue("Category of errors is broad") is None


class TestSegmentScanner:
    """Test the line-oriented segment state machine."""

    def test_segment_kinds(self):
        text = (
            "## Q1: Title\n"
            "\n"
            "Body text\n"
            "continues here\n"
            "\n"
            "```python\n"
            "x = 1\n"
            "```\n"
            "| a | b |\n"
            "|---|---|\n"
            "| 1 | 2 |\n"
        )
        segments = list(iter_segments(text))

        assert [type(s) for s in segments] == [Heading, Paragraph, CodeFence, Table]
        assert segments[0].level == 2
        assert segments[1].text == "Body text\ncontinues here"
        assert segments[1].line == 3
        assert segments[2].language == "python"
        assert segments[2].text == "x = 1"
        assert segments[3].rows == [["a", "b"], ["1", "2"]]

    def test_fence_content_is_opaque(self):
        text = (
            "```markdown\n"
            "## Q2: Not a question\n"
            "| not | a table |\n"
            "\n"
            "```\n"
        )
        segments = list(iter_segments(text))
        assert len(segments) == 1
        assert isinstance(segments[0], CodeFence)
        assert segments[0].text == "## Q2: Not a question\n| not | a table |\n"

    def test_shorter_fence_does_not_close(self):
        text = "````\n```\ninner\n```\n````\n"
        segments = list(iter_segments(text))
        assert len(segments) == 1
        assert segments[0].text == "```\ninner\n```"

    def test_unterminated_fence_runs_to_end(self):
        segments = list(iter_segments("```\ncode\n## Q1: Heading inside"))
        assert len(segments) == 1
        assert segments[0].text == "code\n## Q1: Heading inside"

    def test_heading_keeps_csharp_hash(self):
        segments = list(iter_segments("## Q1: Generics in C#"))
        assert segments[0].text == "Q1: Generics in C#"


class TestBlockParser:
    """Test grouping of segments into question blocks."""

    def test_three_blocks(self):
        blocks = BlockParser().parse("csharp.md", THREE_QUESTIONS)

        assert [b.number_hint for b in blocks] == [1, 2, 3]
        assert [b.heading_text for b in blocks] == [
            "What is a delegate?",
            "What is LINQ? [advanced]",
            "Value vs reference types",
        ]
        assert all(b.category_hint == "C# Fundamentals" for b in blocks)

    def test_preamble_is_ignored(self):
        blocks = BlockParser().parse("a.md", "# Title\n\nIntro prose.\n\n## Q1: First\n\nBody")
        assert len(blocks) == 1
        assert [s.text for s in blocks[0].segments] == ["Body"]

    def test_block_cue_overrides_document_cue(self):
        text = (
            "Category: Web\n\n"
            "## Q1: First\n\nCategory: Databases\nBody one\n\n"
            "## Q2: Second\n\nBody two\n"
        )
        blocks = BlockParser().parse("a.md", text)
        assert blocks[0].category_hint == "Databases"
        assert blocks[0].segments[0].text == "Body one"
        assert blocks[1].category_hint == "Web"

    def test_default_category_beats_preamble_cue(self):
        blocks = BlockParser(category_hint="Manifest").parse(
            "a.md", "Category: Preamble\n\n## Q1: First\n\nBody"
        )
        assert blocks[0].category_hint == "Manifest"

    def test_marker_inside_fence_does_not_split(self):
        text = "## Q1: First\n\n```\n## Q2: Fake\n```\n"
        blocks = BlockParser().parse("a.md", text)
        assert len(blocks) == 1
        assert isinstance(blocks[0].segments[0], CodeFence)

    def test_empty_block_is_kept(self):
        blocks = BlockParser().parse("a.md", "## Q1: First\n## Q2: Second\n\nBody")
        assert len(blocks) == 2
        assert blocks[0].segments == []

    def test_range_marker(self):
        blocks = BlockParser().parse("a.md", "## Q77-Q80: Patterns\n\nBody")
        assert blocks[0].number_hint == 77
        assert blocks[0].number_end == 80
        assert blocks[0].is_range

    def test_descending_range_uses_first_number(self):
        blocks = BlockParser().parse("a.md", "## Q80-Q77: Patterns\n\nBody")
        assert blocks[0].number_hint == 80
        assert not blocks[0].is_range

    def test_parser_resets_between_documents(self):
        parser = BlockParser()
        parser.parse("a.md", "Category: Web\n\n## Q1: A\n\nBody")
        blocks = parser.parse("b.md", "## Q1: B\n\nBody")
        assert blocks[0].category_hint is None
        assert blocks[0].document_id == "b.md"


# ═══════════════════════════════════════════════════════════════════════════════
# EXTRACTOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def _block(heading="Q1: Title", text="Body") -> QuestionBlock:
    return BlockParser().parse("a.md", f"## {heading}\n\n{text}")[0]


class TestQuestionExtractor:

    def test_full_document(self):
        extractor = QuestionExtractor()
        blocks = BlockParser().parse("csharp.md", THREE_QUESTIONS)
        candidates = [c for b in blocks for c in extractor.extract(b)]

        delegate, linq, types = candidates
        assert delegate.title == "What is a delegate?"
        assert "<strong>type-safe</strong>" in delegate.content_html
        assert delegate.content_plain == "A delegate is a **type-safe** function pointer."
        assert delegate.difficulty == Difficulty.INTERMEDIATE

        assert linq.title == "What is LINQ?"
        assert linq.difficulty == Difficulty.ADVANCED
        assert linq.tags == ["linq", "query"]
        assert linq.content_plain.startswith("```csharp\n")
        assert '<pre><code class="language-csharp">' in linq.content_html
        assert "n % 2 == 0" in linq.content_plain
        assert "Tags" not in linq.content_plain

        assert "<th>Kind</th>" in types.content_html
        assert "<td>struct</td>" in types.content_html
        assert "struct | stack" in types.content_plain

    def test_code_is_escaped_in_html(self):
        block = _block(text="```html\n<b>&</b>\n```")
        candidate = QuestionExtractor().extract(block)[0]
        assert "&lt;b&gt;&amp;&lt;/b&gt;" in candidate.content_html
        assert "<b>&</b>" in candidate.content_plain

    def test_difficulty_line(self):
        block = _block(text="**Difficulty:** beginner\nWhat is a class?")
        candidate = QuestionExtractor().extract(block)[0]
        assert candidate.difficulty == Difficulty.BEGINNER
        assert candidate.content_plain == "What is a class?"

    def test_default_difficulty(self):
        candidate = QuestionExtractor(
            default_difficulty=Difficulty.BEGINNER
        ).extract(_block(text="Performance tuning"))[0]
        assert candidate.difficulty == Difficulty.BEGINNER

    def test_inferred_difficulty(self):
        candidate = QuestionExtractor(infer_difficulty=True).extract(
            _block(text="Discuss performance tuning")
        )[0]
        assert candidate.difficulty == Difficulty.ADVANCED

    def test_explicit_marker_beats_inference(self):
        candidate = QuestionExtractor(infer_difficulty=True).extract(
            _block(heading="Q1: Basic question [advanced]", text="What is a class?")
        )[0]
        assert candidate.difficulty == Difficulty.ADVANCED

    def test_empty_body_flagged(self):
        block = BlockParser().parse("a.md", "## Q1: Empty\n## Q2: Next\n\nBody")[0]
        candidate = QuestionExtractor().extract(block)[0]
        assert candidate.needs_review
        assert candidate.anomalies[0].type == AnomalyType.EMPTY_BODY

    def test_missing_title_falls_back_to_number(self):
        candidate = QuestionExtractor().extract(_block(heading="Q9:"))[0]
        assert candidate.title == "Question 9"
        assert any(a.type == AnomalyType.MISSING_TITLE for a in candidate.anomalies)

    def test_long_title_truncated(self):
        candidate = QuestionExtractor().extract(_block(heading="Q1: " + "x" * 600))[0]
        assert len(candidate.title) == MAX_TITLE_LENGTH
        assert candidate.title.endswith("...")

    def test_range_expansion(self):
        block = _block(heading="Q77-Q79: Async patterns (Combined)")
        candidates = QuestionExtractor().extract(block)

        assert [c.number_hint for c in candidates] == [77, 78, 79]
        assert [c.title for c in candidates] == [
            "Async patterns (Part 1)",
            "Async patterns (Part 2)",
            "Async patterns (Part 3)",
        ]
        assert len({c.content_html for c in candidates}) == 1

    def test_extraction_is_deterministic(self):
        text = THREE_QUESTIONS + "\n## Q4-Q5: Async patterns (Combined)\n\nAwait it.\n"

        def extract_all(parser):
            extractor = QuestionExtractor()
            return [
                c.model_dump_json()
                for b in parser.parse("csharp.md", text)
                for c in extractor.extract(b)
            ]

        first = extract_all(BlockParser())
        assert len(first) == 5
        assert extract_all(BlockParser()) == first

        reused = BlockParser()
        reused.parse("other.md", "Category: Web\n\n## Q1: Other\n\nBody")
        assert extract_all(reused) == first
        assert extract_all(reused) == first

    def test_range_wider_than_block_is_flagged(self):
        block = _block(heading="Q1-Q5: Too many")
        candidates = QuestionExtractor(max_range=2).extract(block)

        assert len(candidates) == 1
        assert candidates[0].number_hint == 1
        assert any(a.type == AnomalyType.RANGE_TOO_WIDE for a in candidates[0].anomalies)


class TestExtractorHelpers:

    def test_parse_tags(self):
        assert parse_tags("#Async; Threading, , **LINQ**") == {"async", "threading", "linq"}

    @pytest.mark.parametrize("text, expected", [
        ("Explain CQRS with event sourcing", Difficulty.ADVANCED),
        ("What is a class?", Difficulty.BEGINNER),
        ("Explain closures", Difficulty.INTERMEDIATE),
    ])
    def test_infer_difficulty(self, text, expected):
        assert infer_difficulty(text) == expected

    def test_render_projections_share_segments(self):
        segments = [
            Heading(level=3, text="Example"),
            Paragraph(text="Use `await`."),
        ]
        assert render_html(segments) == "<h3>Example</h3>\n<p>Use <code>await</code>.</p>"
        assert render_plain(segments) == "Example\n\nUse `await`."

    @pytest.mark.parametrize("document_id, expected", [
        ("csharp/Q21_Q25.md", "csharp"),
        ("Q21_Q25_C#.md", "C#"),
        ("Q1-Q5.md", "Uncategorized"),
        ("design_patterns.md", "design patterns"),
    ])
    def test_category_from_document_id(self, document_id, expected):
        assert category_from_document_id(document_id) == expected


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestValidationEngine:

    def _candidate(self, number, document_id="a.md", body="x"):
        anomalies = []
        if not body:
            anomalies.append(
                Anomaly(type=AnomalyType.EMPTY_BODY, severity=80, message="empty")
            )
        return QuestionCandidate(
            document_id=document_id,
            line=number,
            number_hint=number,
            title=f"Q{number}",
            content_plain=body,
            anomalies=anomalies,
        )

    def test_empty_run(self):
        report = ValidationEngine().validate([])
        assert report.total_blocks_detected == 0
        assert report.success_rate == 0.0

    def test_gaps_and_duplicates(self):
        candidates = [self._candidate(n) for n in (1, 2, 4, 4)]
        candidates.append(self._candidate(10, document_id="b.md"))
        report = ValidationEngine().validate(candidates)

        assert report.total_blocks_detected == 5
        assert report.missing_numbers == {"a.md": [3]}
        assert report.duplicate_numbers == {"a.md": [4]}

    def test_empty_blocks_reported(self):
        report = ValidationEngine().validate([
            self._candidate(1),
            self._candidate(2, body=""),
        ])
        assert report.extracted_successfully == 1
        assert report.empty_blocks == ["a.md:2"]
        assert report.anomaly_breakdown == {"empty_body": 1}
