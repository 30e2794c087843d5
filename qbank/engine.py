"""
Ingestion Engine
================
Main orchestrator that combines scanning, block parsing, extraction,
category/number allocation and catalog writes into one batch run.

Usage:
    engine = IngestEngine(IngestConfig(source_root="docs/"))
    summary = engine.run()
    print(summary.summary_line())

Architecture:
    Documents → DocumentScanner → BlockParser → QuestionExtractor
    (parallel, per document) → single writer: CategoryResolver →
    NumberAllocator → CatalogWriter → IngestSummary

Per-record failures are collected into the summary and never abort the run.
A dry run executes every step inside a transaction that is rolled back.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from . import database as db
from .block_parser import BlockParser
from .categories import DEFAULT_BLOCK_SIZE, CategoryResolver, category_from_document_id
from .errors import (
    AllocationError,
    ParseSkip,
    TransientError,
    retry_on_conflict,
)
from .extractor import QuestionExtractor
from .models import (
    AnomalyType,
    Difficulty,
    IngestSummary,
    QuestionCandidate,
    RunIssue,
    WriteOutcome,
)
from .numbering import NumberAllocator
from .scanner import DEFAULT_PATTERNS, DocumentScanner, SourceDocument, load_manifest
from .validator import ValidationEngine
from .writer import CatalogWriter

logger = logging.getLogger(__name__)


@dataclass
class IngestConfig:
    """Configuration for an ingestion run."""

    # Sources
    source_root: str = "."
    documents: Optional[list[str]] = None
    patterns: tuple[str, ...] = DEFAULT_PATTERNS
    manifest_path: Optional[str] = None
    category_override: Optional[str] = None

    # Allocation
    block_size: int = DEFAULT_BLOCK_SIZE

    # Extraction
    default_difficulty: Difficulty = Difficulty.INTERMEDIATE
    infer_difficulty: bool = False
    publish_on_import: bool = True

    # Processing
    workers: int = 4
    read_timeout: float = 10.0
    dry_run: bool = False

    # Storage
    db_path: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class ParsedDocument:
    document_id: str
    candidates: list[QuestionCandidate] = field(default_factory=list)


class IngestEngine:
    """
    Batch ingestion engine.

    Parsing runs in a thread pool (documents share no state); allocation and
    writes happen on the calling thread only, in document order, so numbering
    is deterministic.
    """

    def __init__(self, config: Optional[IngestConfig] = None):
        self.config = config or IngestConfig()
        self._setup_logging()
        self.manifest: dict[str, str] = {}
        if self.config.manifest_path:
            self.manifest = load_manifest(self.config.manifest_path)

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the qbank package
        pkg_logger = logging.getLogger("qbank")
        pkg_logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Console handler
        if not any(
            type(h) is logging.StreamHandler for h in pkg_logger.handlers
        ):
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            pkg_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = os.path.abspath(self.config.log_file)
            if any(
                isinstance(h, logging.FileHandler) and h.baseFilename == log_path
                for h in pkg_logger.handlers
            ):
                return
            log_dir = Path(log_path).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            pkg_logger.addHandler(file_handler)

    # ─── Extraction ──────────────────────────────────────────────────────

    def scanner(self) -> DocumentScanner:
        documents = self.config.documents
        if documents is None and self.manifest:
            documents = list(self.manifest)
        return DocumentScanner(
            self.config.source_root,
            documents=documents,
            patterns=self.config.patterns,
            read_timeout=self.config.read_timeout,
        )

    def parse_document(self, document: SourceDocument) -> ParsedDocument:
        """Parse and extract one document. Pure: safe to run in parallel."""
        parser = BlockParser(category_hint=self.manifest.get(document.document_id))
        extractor = QuestionExtractor(
            default_difficulty=self.config.default_difficulty,
            infer_difficulty=self.config.infer_difficulty,
            max_range=self.config.block_size + 1,
        )

        parsed = ParsedDocument(document_id=document.document_id)
        for block in parser.iter_blocks(document.document_id, document.raw_text):
            for candidate in extractor.extract(block):
                if self.config.category_override:
                    candidate.category_hint = self.config.category_override
                elif not candidate.category_hint:
                    candidate.category_hint = category_from_document_id(
                        document.document_id
                    )
                parsed.candidates.append(candidate)

        logger.info(
            f"Parsed {len(parsed.candidates)} questions from {document.document_id}"
        )
        return parsed

    def extract(self) -> list[ParsedDocument]:
        """Scan and parse every document, preserving document order."""
        scanner = self.scanner()
        with ThreadPoolExecutor(
            max_workers=max(1, self.config.workers),
            thread_name_prefix="qbank-parse",
        ) as pool:
            parsed = list(pool.map(self.parse_document, scanner))
        self._unreadable = dict(scanner.skipped)
        return parsed

    # ─── Run ─────────────────────────────────────────────────────────────

    def run(self) -> IngestSummary:
        """
        Execute the full pipeline.

        Returns:
            IngestSummary with counts and every skipped/failed record.
        """
        start_time = time.time()
        summary = IngestSummary(dry_run=self.config.dry_run)
        logger.info(
            f"Starting {'dry run' if self.config.dry_run else 'ingestion'} "
            f"of: {self.config.source_root}"
        )

        # ── Step 1: Extract (parallel) ────────────────────────────────
        logger.info("Phase 1: Parsing documents")
        self._unreadable: dict[str, str] = {}
        documents = self.extract()
        summary.documents = len(documents)

        for document_id, reason in self._unreadable.items():
            summary.issues.append(RunIssue(
                document_id=document_id,
                kind=AnomalyType.UNREADABLE_DOCUMENT.value,
                message=reason,
            ))

        # ── Step 2: Validate ──────────────────────────────────────────
        logger.info("Phase 2: Validation")
        all_candidates = [c for d in documents for c in d.candidates]
        summary.validation = ValidationEngine().validate(all_candidates)

        # ── Step 3: Allocate + write (single writer) ──────────────────
        logger.info("Phase 3: Writing catalog")
        conn = self._open_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            resolver = CategoryResolver(conn, block_size=self.config.block_size)
            allocator = NumberAllocator(conn)
            writer = CatalogWriter(
                conn,
                run_time=db.now_iso(),
                publish_on_import=self.config.publish_on_import,
            )

            for document in documents:
                for candidate in document.candidates:
                    self._ingest_candidate(
                        conn, candidate, resolver, allocator, writer, summary
                    )
                if not self.config.dry_run:
                    conn.execute("COMMIT")
                    conn.execute("BEGIN IMMEDIATE")

            if self.config.dry_run:
                conn.execute("ROLLBACK")
                logger.info("Dry run: all changes rolled back")
            else:
                conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

        elapsed = time.time() - start_time
        logger.info(f"Ingestion complete in {elapsed:.2f}s: {summary.summary_line()}")
        return summary

    def _open_connection(self) -> sqlite3.Connection:
        db_path = self.config.db_path or db.get_db_path()
        if self.config.dry_run and not os.path.exists(db_path):
            # Nothing to read from; plan against an empty in-memory catalog
            conn = db.connect(":memory:", autocommit=True)
            db.create_schema(conn)
            return conn
        if not self.config.dry_run:
            db.init_db(db_path)
        return db.connect(db_path, autocommit=True)

    def _ingest_candidate(
        self,
        conn: sqlite3.Connection,
        candidate: QuestionCandidate,
        resolver: CategoryResolver,
        allocator: NumberAllocator,
        writer: CatalogWriter,
        summary: IngestSummary,
    ):
        summary.parsed += 1

        if candidate.needs_review:
            self._record_skip(summary, candidate, ParseSkip(
                "empty question body, flagged for manual review",
                candidate.document_id, candidate.line,
            ), kind=AnomalyType.EMPTY_BODY.value)
            return
        if any(a.type == AnomalyType.RANGE_TOO_WIDE for a in candidate.anomalies):
            self._record_skip(summary, candidate, ParseSkip(
                "range marker is wider than a category block",
                candidate.document_id, candidate.line,
            ), kind=AnomalyType.RANGE_TOO_WIDE.value)
            return

        def attempt() -> WriteOutcome:
            conn.execute("SAVEPOINT candidate")
            try:
                category = resolver.resolve(candidate.category_hint)
                number = allocator.allocate(
                    category, candidate.title, candidate.number_hint
                )
                outcome, _ = writer.upsert(category, number, candidate)
            except BaseException:
                conn.execute("ROLLBACK TO candidate")
                conn.execute("RELEASE candidate")
                raise
            conn.execute("RELEASE candidate")
            allocator.claim(
                category.id, number, via_hint=number == candidate.number_hint
            )
            if candidate.number_hint is not None and not category.contains(
                candidate.number_hint
            ):
                summary.issues.append(RunIssue(
                    document_id=candidate.document_id,
                    line=candidate.line,
                    title=candidate.title,
                    kind=AnomalyType.NUMBER_OUT_OF_RANGE.value,
                    message=(
                        f"hint {candidate.number_hint} outside {category.name!r}, "
                        f"stored as {number}"
                    ),
                ))
            return outcome

        try:
            outcome = retry_on_conflict(
                attempt, label=f"write {candidate.document_id}:{candidate.line}"
            )
        except ParseSkip as e:
            self._record_skip(summary, candidate, e, kind=AnomalyType.DUPLICATE_NUMBER.value)
            return
        except (AllocationError, TransientError) as e:
            self._record_error(summary, candidate, e)
            return
        except sqlite3.IntegrityError as e:
            self._record_error(summary, candidate, e)
            return

        if outcome == WriteOutcome.NEW:
            summary.new += 1
        elif outcome == WriteOutcome.UPDATED:
            summary.updated += 1
        else:
            summary.unchanged += 1

    def _record_skip(
        self,
        summary: IngestSummary,
        candidate: QuestionCandidate,
        error: ParseSkip,
        kind: str,
    ):
        logger.warning(
            f"Skipped {candidate.document_id}:{candidate.line} "
            f"{candidate.title!r}: {error.reason}"
        )
        summary.skipped += 1
        summary.issues.append(RunIssue(
            document_id=candidate.document_id,
            line=candidate.line,
            title=candidate.title,
            kind=kind,
            message=error.reason,
        ))

    def _record_error(
        self,
        summary: IngestSummary,
        candidate: QuestionCandidate,
        error: Exception,
    ):
        logger.error(
            f"Failed {candidate.document_id}:{candidate.line} "
            f"{candidate.title!r}: {error}"
        )
        summary.errors += 1
        summary.issues.append(RunIssue(
            document_id=candidate.document_id,
            line=candidate.line,
            title=candidate.title,
            kind=type(error).__name__,
            message=str(error),
            fatal=getattr(error, "fatal", True),
        ))
