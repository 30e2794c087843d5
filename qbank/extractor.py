"""
Question Extractor
==================
Turns a ``QuestionBlock`` into ``QuestionCandidate`` records.

Each segment kind has exactly one HTML renderer and one plain-text
renderer, looked up by ``segment.kind``. Both projections are produced
from the same segment list, so the plain text never diverges from the HTML.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Callable, Optional

import markdown

from .models import (
    Anomaly,
    AnomalyType,
    CodeFence,
    Difficulty,
    Heading,
    Paragraph,
    QuestionBlock,
    QuestionCandidate,
    Segment,
    SegmentKind,
    Table,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500

# ─── Metadata Patterns ───────────────────────────────────────────────────────

# "Tags: async, threading", "**Tags:** a, b"
TAGS_PATTERN = re.compile(
    r"^\s*\*{0,2}Tags\s*(?::\s*\*{0,2}|\*{0,2}\s*:)\s*(.*?)\s*$", re.IGNORECASE
)

# "Difficulty: Advanced", "**Difficulty:** beginner"
DIFFICULTY_PATTERN = re.compile(
    r"^\s*\*{0,2}(?:Difficulty|Level)\s*(?::\s*\*{0,2}|\*{0,2}\s*:)\s*\*{0,2}"
    r"(beginner|intermediate|advanced)\b",
    re.IGNORECASE,
)

# "[advanced]" at the end of a heading title
TITLE_DIFFICULTY_PATTERN = re.compile(
    r"\s*\[(beginner|intermediate|advanced)\]\s*$", re.IGNORECASE
)

ADVANCED_KEYWORDS = (
    "advanced", "optimization", "performance", "architecture", "complex",
    "distributed", "microservices", "saga pattern", "event sourcing", "cqrs",
)

BEGINNER_KEYWORDS = (
    "basic", "fundamental", "introduction", "simple", "what is", "define",
)


# ─── Renderers ───────────────────────────────────────────────────────────────


def _heading_html(segment: Heading) -> str:
    return f"<h{segment.level}>{html.escape(segment.text)}</h{segment.level}>"


def _code_fence_html(segment: CodeFence) -> str:
    css = f' class="language-{html.escape(segment.language)}"' if segment.language else ""
    return f"<pre><code{css}>{html.escape(segment.text)}</code></pre>"


def _table_html(segment: Table) -> str:
    rows = segment.rows
    if not rows:
        return ""
    parts = ["<table>", "<thead>", _table_row(rows[0], "th"), "</thead>"]
    if len(rows) > 1:
        parts.append("<tbody>")
        parts.extend(_table_row(row, "td") for row in rows[1:])
        parts.append("</tbody>")
    parts.append("</table>")
    return "\n".join(parts)


def _table_row(cells: list[str], tag: str) -> str:
    inner = "".join(f"<{tag}>{html.escape(c)}</{tag}>" for c in cells)
    return f"<tr>{inner}</tr>"


def _paragraph_html(segment: Paragraph) -> str:
    return markdown.markdown(segment.text)


def _heading_plain(segment: Heading) -> str:
    return segment.text


def _code_fence_plain(segment: CodeFence) -> str:
    return f"```{segment.language}\n{segment.text}\n```"


def _table_plain(segment: Table) -> str:
    return "\n".join(" | ".join(row) for row in segment.rows)


def _paragraph_plain(segment: Paragraph) -> str:
    return segment.text


HTML_RENDERERS: dict[SegmentKind, Callable[..., str]] = {
    SegmentKind.HEADING: _heading_html,
    SegmentKind.CODE_FENCE: _code_fence_html,
    SegmentKind.TABLE: _table_html,
    SegmentKind.PARAGRAPH: _paragraph_html,
}

PLAIN_RENDERERS: dict[SegmentKind, Callable[..., str]] = {
    SegmentKind.HEADING: _heading_plain,
    SegmentKind.CODE_FENCE: _code_fence_plain,
    SegmentKind.TABLE: _table_plain,
    SegmentKind.PARAGRAPH: _paragraph_plain,
}


def render_html(segments: list[Segment]) -> str:
    """Serialize segments to HTML, preserving code and table formatting."""
    parts = (HTML_RENDERERS[s.kind](s) for s in segments)
    return "\n".join(p for p in parts if p)


def render_plain(segments: list[Segment]) -> str:
    """Flatten segments to text: fences stay fenced, tables become pipes."""
    parts = (PLAIN_RENDERERS[s.kind](s) for s in segments)
    return "\n\n".join(p for p in parts if p)


# ─── Extractor ───────────────────────────────────────────────────────────────


class QuestionExtractor:
    """
    Builds candidate records from question blocks.

    Args:
        default_difficulty: Used when a block carries no explicit marker.
        infer_difficulty: Fall back to keyword inference before the default.
        max_range: Widest range marker that is expanded; wider ones are
            flagged ``range_too_wide`` and not expanded.
    """

    def __init__(
        self,
        default_difficulty: Difficulty = Difficulty.INTERMEDIATE,
        infer_difficulty: bool = False,
        max_range: Optional[int] = None,
    ):
        self.default_difficulty = Difficulty(default_difficulty)
        self.infer_difficulty = infer_difficulty
        self.max_range = max_range

    def extract(self, block: QuestionBlock) -> list[QuestionCandidate]:
        """
        Extract one candidate per question number in the block.

        A ranged marker ("Q77-Q80") yields one candidate per number with the
        same content; "(Combined)" in the title becomes "(Part n)".
        """
        title, explicit_difficulty = self._split_title(block.heading_text)
        segments, tags, body_difficulty = self._consume_metadata(block.segments)
        difficulty = explicit_difficulty or body_difficulty

        content_html = render_html(segments)
        content_plain = render_plain(segments)

        if difficulty is None and self.infer_difficulty:
            difficulty = infer_difficulty(f"{title}\n{content_plain}")

        anomalies = []
        if not content_plain.strip():
            anomalies.append(Anomaly(
                type=AnomalyType.EMPTY_BODY,
                severity=80,
                message="Question has no body content; flagged for manual review",
                context={"document": block.document_id, "line": block.line},
            ))
        if not title:
            anomalies.append(Anomaly(
                type=AnomalyType.MISSING_TITLE,
                severity=20,
                message="Marker heading has no title text",
            ))

        numbers: list[Optional[int]] = [block.number_hint]
        width = block.number_end - block.number_hint + 1 if block.is_range else 1
        if self.max_range is not None and width > self.max_range:
            logger.warning(
                f"Range Q{block.number_hint}-Q{block.number_end} at "
                f"{block.document_id}:{block.line} spans {width} numbers, "
                f"more than a category holds ({self.max_range})"
            )
            anomalies.append(Anomaly(
                type=AnomalyType.RANGE_TOO_WIDE,
                severity=60,
                message=f"Range marker spans {width} numbers",
                context={"document": block.document_id, "line": block.line},
            ))
        elif block.is_range:
            numbers = list(range(block.number_hint, block.number_end + 1))
            logger.info(
                f"Expanded range Q{block.number_hint}-Q{block.number_end} into "
                f"{len(numbers)} individual questions"
            )

        candidates = []
        for index, number in enumerate(numbers, start=1):
            candidate_title = title or f"Question {number}"
            if block.is_range:
                candidate_title = candidate_title.replace(
                    "(Combined)", f"(Part {index})"
                ).strip()
            candidates.append(QuestionCandidate(
                document_id=block.document_id,
                line=block.line,
                number_hint=number,
                category_hint=block.category_hint,
                title=_truncate_title(candidate_title),
                content_plain=content_plain,
                content_html=content_html,
                tags=tags,
                difficulty=difficulty or self.default_difficulty,
                anomalies=list(anomalies),
            ))
        return candidates

    def _split_title(self, heading_text: str) -> tuple[str, Optional[Difficulty]]:
        title = heading_text.strip().strip("*").strip()
        m = TITLE_DIFFICULTY_PATTERN.search(title)
        if not m:
            return title, None
        return title[:m.start()].strip(), Difficulty(m.group(1).lower())

    def _consume_metadata(
        self, segments: list[Segment]
    ) -> tuple[list[Segment], list[str], Optional[Difficulty]]:
        """Pull Tags:/Difficulty: lines out of paragraphs."""
        kept: list[Segment] = []
        tags: set[str] = set()
        difficulty: Optional[Difficulty] = None

        for segment in segments:
            if not isinstance(segment, Paragraph):
                kept.append(segment)
                continue

            lines = []
            for line in segment.text.split("\n"):
                tag_match = TAGS_PATTERN.match(line)
                if tag_match:
                    tags.update(parse_tags(tag_match.group(1)))
                    continue
                diff_match = DIFFICULTY_PATTERN.match(line)
                if diff_match:
                    difficulty = Difficulty(diff_match.group(1).lower())
                    continue
                lines.append(line)

            text = "\n".join(lines).strip()
            if text:
                kept.append(Paragraph(text=text, line=segment.line))

        return kept, sorted(tags), difficulty


def parse_tags(raw: str) -> set[str]:
    """Split a tag list on commas/semicolons, lower-cased, no empties."""
    cleaned = raw.replace("*", "").replace("`", "")
    return {
        t.strip().lstrip("#").lower()
        for t in re.split(r"[,;]", cleaned)
        if t.strip().lstrip("#")
    }


def infer_difficulty(text: str) -> Difficulty:
    """Keyword heuristic: advanced terms win, then beginner terms."""
    lower = text.lower()
    if any(k in lower for k in ADVANCED_KEYWORDS):
        return Difficulty.ADVANCED
    if any(k in lower for k in BEGINNER_KEYWORDS):
        return Difficulty.BEGINNER
    return Difficulty.INTERMEDIATE


def _truncate_title(title: str) -> str:
    if len(title) > MAX_TITLE_LENGTH:
        return title[:MAX_TITLE_LENGTH - 3] + "..."
    return title
