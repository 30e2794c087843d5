"""
Validation Engine
=================
Post-extraction validation and reporting.

After extracting each run, generates a report:
    - Total Blocks Detected
    - Extracted Successfully
    - Missing Numbers (gaps in each document's hinted sequence)
    - Duplicate Numbers (per document)
    - Empty Blocks (flagged for manual review)
    - Anomaly breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from .models import QuestionCandidate, ValidationReport

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates extracted candidates and produces a report.
    """

    def validate(
        self,
        candidates: list[QuestionCandidate],
    ) -> ValidationReport:
        """
        Run full validation on extracted candidates.

        Args:
            candidates: Candidates from every document of the run.

        Returns:
            ValidationReport with all detected issues.
        """
        report = ValidationReport()

        if not candidates:
            logger.warning("No questions to validate")
            return report

        report.total_blocks_detected = len(candidates)

        # Hinted numbers grouped by document
        numbers_by_doc: dict[str, list[int]] = defaultdict(list)
        for c in candidates:
            if c.number_hint is not None:
                numbers_by_doc[c.document_id].append(c.number_hint)

        for document_id, numbers in sorted(numbers_by_doc.items()):
            counts = Counter(numbers)
            duplicates = sorted(n for n, count in counts.items() if count > 1)
            if duplicates:
                report.duplicate_numbers[document_id] = duplicates

            expected = set(range(min(numbers), max(numbers) + 1))
            missing = sorted(expected - set(numbers))
            if missing:
                report.missing_numbers[document_id] = missing

        anomaly_counts: dict[str, int] = {}
        extracted = 0

        for c in candidates:
            if c.needs_review:
                report.empty_blocks.append(f"{c.document_id}:{c.line}")
            else:
                extracted += 1

            for anomaly in c.anomalies:
                key = anomaly.type.value
                anomaly_counts[key] = anomaly_counts.get(key, 0) + 1

        report.extracted_successfully = extracted
        report.anomaly_breakdown = anomaly_counts

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Blocks Detected: {report.total_blocks_detected}")
        logger.info(
            f"Extracted Successfully: {report.extracted_successfully} "
            f"({report.success_rate}%)"
        )
        logger.info(
            f"Documents With Number Gaps: {len(report.missing_numbers)}"
        )
        logger.info(
            f"Documents With Duplicate Numbers: {len(report.duplicate_numbers)}"
        )
        logger.info(f"Empty Blocks: {len(report.empty_blocks)}")

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in sorted(report.anomaly_breakdown.items()):
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)

        return report
