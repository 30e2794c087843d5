"""
Block Parser
============
Deterministic line-oriented state machine that splits a document into tagged
segments (Heading, CodeFence, Table, Paragraph) and groups them into question
blocks delimited by question-marker headings.

Anything inside a code fence is opaque: headings, tables and markers there
are never treated as structure.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterator, Optional

from .models import (
    CodeFence,
    Heading,
    Paragraph,
    QuestionBlock,
    Segment,
    Table,
)

logger = logging.getLogger(__name__)

# ─── Patterns ─────────────────────────────────────────────────────────────────

# "## Title", closing hashes only when separated by whitespace ("C#" survives)
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")

# ``` or ~~~ with an optional info string
FENCE_PATTERN = re.compile(r"^(`{3,}|~{3,})\s*([\w+#.-]*)")

# Heading text that starts a question:
#   "Q21: Title", "**Q21:** Title", "Question 21: Title", "21. Title",
#   "Q77-Q80: Title", "Q5 - Title"
QUESTION_MARKER = re.compile(
    r"^\*{0,2}\s*(?:Q(?:uestion)?\s*#?\s*)?(\d+)"
    r"(?:\s*[-–]\s*(?:Q(?:uestion)?\s*)?(\d+))?"
    r"\s*\*{0,2}\s*(?:[:.)]|\s[-–—](?=\s))\s*\*{0,2}\s*(.*)$",
    re.IGNORECASE,
)

# "Category: Azure Cloud", "**Category:** Azure Cloud"
CATEGORY_CUE = re.compile(
    r"^\s*\*{0,2}Category\s*(?::\s*\*{0,2}|\*{0,2}\s*:)\s*(.+?)\s*$",
    re.IGNORECASE,
)


class LineState(Enum):
    """Segment-level scanner states."""
    TEXT = "TEXT"
    PARAGRAPH = "PARAGRAPH"
    TABLE = "TABLE"
    CODE_FENCE = "CODE_FENCE"


class ParserState(Enum):
    """Block-level grouping states."""
    SEEKING_QUESTION = "SEEKING_QUESTION"
    QUESTION_BODY = "QUESTION_BODY"


def match_question_marker(text: str) -> Optional[re.Match]:
    """Return the marker match for a heading's text, or None."""
    return QUESTION_MARKER.match(text.strip())


def match_category_cue(line: str) -> Optional[str]:
    m = CATEGORY_CUE.match(line)
    if not m:
        return None
    name = m.group(1).strip().strip("*").strip()
    return name or None


# ─── Segment Scanner ─────────────────────────────────────────────────────────


def iter_segments(raw_text: str) -> Iterator[Segment]:
    """
    Lazily split raw text into tagged segments.

    The ``in_code_fence`` gate keeps fence bodies verbatim; an unterminated
    fence runs to the end of the document.
    """
    state = LineState.TEXT
    buffer: list[str] = []
    start_line = 0
    fence_marker = ""
    fence_language = ""

    def flush() -> Optional[Segment]:
        if state == LineState.PARAGRAPH:
            return Paragraph(text="\n".join(buffer).strip(), line=start_line)
        if state == LineState.TABLE:
            return Table(raw="\n".join(buffer), line=start_line)
        return None

    for line_no, line in enumerate(raw_text.splitlines(), start=1):
        stripped = line.strip()
        in_code_fence = state == LineState.CODE_FENCE

        # ─── 1. Inside a fence: only the closing fence is significant ───
        if in_code_fence:
            if (
                stripped.startswith(fence_marker[0])
                and set(stripped) == {fence_marker[0]}
                and len(stripped) >= len(fence_marker)
            ):
                yield CodeFence(
                    language=fence_language,
                    text="\n".join(buffer),
                    line=start_line,
                )
                state, buffer = LineState.TEXT, []
            else:
                buffer.append(line)
            continue

        # ─── 2. Structural lines ───
        fence_match = FENCE_PATTERN.match(stripped)
        if fence_match:
            segment = flush()
            if segment:
                yield segment
            state, buffer, start_line = LineState.CODE_FENCE, [], line_no
            fence_marker = fence_match.group(1)
            fence_language = fence_match.group(2).lower()
            continue

        heading_match = HEADING_PATTERN.match(stripped)
        if heading_match:
            segment = flush()
            if segment:
                yield segment
            state, buffer = LineState.TEXT, []
            yield Heading(
                level=len(heading_match.group(1)),
                text=heading_match.group(2).strip(),
                line=line_no,
            )
            continue

        if not stripped:
            segment = flush()
            if segment:
                yield segment
            state, buffer = LineState.TEXT, []
            continue

        # ─── 3. Content lines ───
        if stripped.startswith("|"):
            if state != LineState.TABLE:
                segment = flush()
                if segment:
                    yield segment
                state, buffer, start_line = LineState.TABLE, [], line_no
            buffer.append(stripped)
            continue

        if state != LineState.PARAGRAPH:
            segment = flush()
            if segment:
                yield segment
            state, buffer, start_line = LineState.PARAGRAPH, [], line_no
        buffer.append(line.rstrip())

    # End of document
    if state == LineState.CODE_FENCE:
        logger.debug(f"Unterminated code fence opened at line {start_line}")
        yield CodeFence(
            language=fence_language, text="\n".join(buffer), line=start_line
        )
    else:
        segment = flush()
        if segment:
            yield segment


# ─── Block Grouping ──────────────────────────────────────────────────────────


class BlockParser:
    """
    Finite state machine that turns a document's segment stream into
    ``QuestionBlock`` entities.

    A block starts at a heading matching ``QUESTION_MARKER`` and ends at the
    next such heading or at end of document. Content before the first marker
    is preamble; only its category cue is kept.
    """

    def __init__(self, category_hint: Optional[str] = None):
        self.default_category = category_hint
        self.reset()

    def reset(self):
        """Reset the state machine for a fresh document."""
        self.state = ParserState.SEEKING_QUESTION
        self.current_block: Optional[QuestionBlock] = None
        self.document_category: Optional[str] = self.default_category

    def parse(self, document_id: str, raw_text: str) -> list[QuestionBlock]:
        """Parse a whole document into question blocks."""
        return list(self.iter_blocks(document_id, raw_text))

    def iter_blocks(self, document_id: str, raw_text: str) -> Iterator[QuestionBlock]:
        self.reset()

        for segment in iter_segments(raw_text):
            finished = self._process_segment(document_id, segment)
            if finished:
                yield finished

        # Finalize the last block
        if self.current_block:
            yield self._finalize_block()

    def _process_segment(
        self, document_id: str, segment: Segment
    ) -> Optional[QuestionBlock]:
        """Feed one segment; return a block if this segment closed one."""
        if isinstance(segment, Heading):
            marker = match_question_marker(segment.text)
            if marker:
                finished = self._finalize_block() if self.current_block else None
                self._start_new_block(document_id, segment, marker)
                return finished

        if isinstance(segment, Paragraph):
            segment = self._consume_category_cues(segment)
            if segment is None:
                return None

        if self.state == ParserState.SEEKING_QUESTION:
            # Preamble: headings, prose and code before the first marker
            return None

        self.current_block.segments.append(segment)
        return None

    def _consume_category_cues(self, paragraph: Paragraph) -> Optional[Paragraph]:
        """Strip "Category:" lines, applying them to the document or block."""
        kept = []
        for line in paragraph.text.split("\n"):
            cue = match_category_cue(line)
            if cue is None:
                kept.append(line)
                continue
            if self.current_block is not None:
                self.current_block.category_hint = cue
            elif self.default_category is None:
                self.document_category = cue
            logger.debug(f"Category cue {cue!r} at line {paragraph.line}")

        text = "\n".join(kept).strip()
        if not text:
            return None
        return Paragraph(text=text, line=paragraph.line)

    def _start_new_block(self, document_id: str, heading: Heading, marker: re.Match):
        number = int(marker.group(1))
        number_end = int(marker.group(2)) if marker.group(2) else None
        if number_end is not None and number_end < number:
            logger.warning(
                f"{document_id}:{heading.line} descending range "
                f"{number}-{number_end}, using {number} only"
            )
            number_end = None

        logger.debug(f"Detected question {number} at {document_id}:{heading.line}")

        self.current_block = QuestionBlock(
            document_id=document_id,
            line=heading.line,
            heading_text=marker.group(3).strip(),
            number_hint=number,
            number_end=number_end,
            category_hint=self.document_category,
        )
        self.state = ParserState.QUESTION_BODY

    def _finalize_block(self) -> QuestionBlock:
        block = self.current_block
        if not block.segments:
            logger.warning(
                f"{block.document_id}:{block.line} question {block.number_hint} "
                f"has no content before the next marker"
            )
        self.current_block = None
        self.state = ParserState.SEEKING_QUESTION
        return block
