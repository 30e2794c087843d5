"""
Data Models
===========
Pydantic models for parsed segments, extracted question candidates,
catalog records, interaction state, and ingestion run reports.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enums ────────────────────────────────────────────────────────────────────


class SegmentKind(str, Enum):
    """Type of a tagged segment produced by the block parser."""
    HEADING = "heading"
    CODE_FENCE = "code_fence"
    TABLE = "table"
    PARAGRAPH = "paragraph"


class Difficulty(str, Enum):
    """Question difficulty levels."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class AnomalyType(str, Enum):
    """Structural problems detected while parsing and extracting."""
    EMPTY_BODY = "empty_body"
    DUPLICATE_NUMBER = "duplicate_number"
    MISSING_TITLE = "missing_title"
    NUMBER_OUT_OF_RANGE = "number_out_of_range"
    RANGE_TOO_WIDE = "range_too_wide"
    UNREADABLE_DOCUMENT = "unreadable_document"


class WriteOutcome(str, Enum):
    """What the catalog writer did with a candidate."""
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# ─── Segment Models ───────────────────────────────────────────────────────────


class Heading(BaseModel):
    kind: Literal[SegmentKind.HEADING] = SegmentKind.HEADING
    level: int = Field(ge=1, le=6)
    text: str
    line: int = 0


class CodeFence(BaseModel):
    kind: Literal[SegmentKind.CODE_FENCE] = SegmentKind.CODE_FENCE
    language: str = ""
    text: str = ""
    line: int = 0


class Table(BaseModel):
    kind: Literal[SegmentKind.TABLE] = SegmentKind.TABLE
    raw: str
    line: int = 0

    @property
    def rows(self) -> list[list[str]]:
        """Cell text per row, with alignment/separator rows dropped."""
        rows = []
        for line in self.raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            cells = [c.strip() for c in stripped.strip("|").split("|")]
            if all("-" in c and set(c) <= set("-: ") for c in cells):
                continue
            rows.append(cells)
        return rows


class Paragraph(BaseModel):
    kind: Literal[SegmentKind.PARAGRAPH] = SegmentKind.PARAGRAPH
    text: str
    line: int = 0


Segment = Annotated[
    Union[Heading, CodeFence, Table, Paragraph],
    Field(discriminator="kind"),
]


# ─── Anomaly Model ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """A structural anomaly detected in a question block."""
    type: AnomalyType
    severity: int = Field(
        ge=0, le=100,
        description="Severity score 0-100"
    )
    message: str
    context: Optional[dict] = None


# ─── Parse / Extract Models ──────────────────────────────────────────────────


class QuestionBlock(BaseModel):
    """
    Ordered segments between one question-marker heading and the next.
    The marker heading itself is not part of ``segments``.
    """
    document_id: str
    line: int = 0
    heading_text: str = ""
    number_hint: Optional[int] = None
    number_end: Optional[int] = None
    category_hint: Optional[str] = None
    segments: list[Segment] = Field(default_factory=list)

    @property
    def is_range(self) -> bool:
        return self.number_end is not None and self.number_hint is not None


class QuestionCandidate(BaseModel):
    """A question extracted from a block, ready for category/number allocation."""
    document_id: str
    line: int = 0
    number_hint: Optional[int] = None
    category_hint: Optional[str] = None
    title: str
    content_plain: str = ""
    content_html: str = ""
    tags: list[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    anomalies: list[Anomaly] = Field(default_factory=list)

    @computed_field
    @property
    def anomaly_score(self) -> int:
        """Aggregate anomaly score (0-100)."""
        if not self.anomalies:
            return 0
        return min(100, sum(a.severity for a in self.anomalies))

    @computed_field
    @property
    def needs_review(self) -> bool:
        return any(a.type == AnomalyType.EMPTY_BODY for a in self.anomalies)


# ─── Catalog Records ─────────────────────────────────────────────────────────


class Category(BaseModel):
    id: int
    name: str
    description: str = ""
    icon: str = ""
    color: str = ""
    display_order: int = 0
    number_range_start: int
    number_range_end: int

    def contains(self, number: int) -> bool:
        return self.number_range_start <= number <= self.number_range_end

    def overlaps(self, start: int, end: int) -> bool:
        return start <= self.number_range_end and self.number_range_start <= end

    @property
    def capacity(self) -> int:
        return self.number_range_end - self.number_range_start + 1


class Question(BaseModel):
    id: int
    number: int
    title: str = Field(min_length=1)
    content_plain: str = ""
    content_html: str = ""
    category_id: int
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    tags: list[str] = Field(default_factory=list)
    published: bool = True
    created_at: datetime
    modified_at: Optional[datetime] = None
    view_count: int = 0


class Favorite(BaseModel):
    user_id: str
    question_id: int
    created_at: datetime


class Progress(BaseModel):
    user_id: str
    question_id: int
    completed_at: Optional[datetime] = None
    attempts: int = 0

    @property
    def completed(self) -> bool:
        return self.completed_at is not None


class ProgressSummary(BaseModel):
    completed_count: int = 0
    total_count: int = 0

    @computed_field
    @property
    def percent(self) -> float:
        if self.total_count == 0:
            return 0.0
        return round(self.completed_count / self.total_count * 100, 1)


# ─── Run Report Models ───────────────────────────────────────────────────────


class ValidationReport(BaseModel):
    """Post-extraction validation report."""
    total_blocks_detected: int = 0
    extracted_successfully: int = 0
    missing_numbers: dict[str, list[int]] = Field(default_factory=dict)
    duplicate_numbers: dict[str, list[int]] = Field(default_factory=dict)
    empty_blocks: list[str] = Field(default_factory=list)
    anomaly_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_blocks_detected == 0:
            return 0.0
        return round(
            self.extracted_successfully / self.total_blocks_detected * 100,
            2
        )


class RunIssue(BaseModel):
    """A single skipped or failed record, for the operator."""
    document_id: str
    line: int = 0
    title: str = ""
    kind: str
    message: str
    fatal: bool = False


class IngestSummary(BaseModel):
    """Outcome of one ingestion run."""
    dry_run: bool = False
    documents: int = 0
    parsed: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    issues: list[RunIssue] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)
    started_at: datetime = Field(default_factory=utcnow)

    @property
    def writes(self) -> int:
        return self.new + self.updated

    @property
    def has_fatal_errors(self) -> bool:
        return any(issue.fatal for issue in self.issues)

    def summary_line(self) -> str:
        return (
            f"{self.parsed} questions parsed, {self.new} new, "
            f"{self.updated} updated, {self.errors} errors"
        )
