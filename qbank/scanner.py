"""
Document Scanner
================
Enumerates source documents under a root directory and yields their text.

The scanner is re-iterable: every ``iter()`` walks the documents again from
the start. Unreadable documents are skipped with a warning and remembered in
``skipped`` so the run report can list them.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ("*.md", "*.txt")


@dataclass(frozen=True)
class SourceDocument:
    """A document's identifier (path relative to the root) and its text."""
    document_id: str
    raw_text: str


def load_manifest(manifest_path: str) -> dict[str, str]:
    """
    Load a manifest mapping document identifiers to category names.

    Format::

        {"Q21_Q25_C#.md": "C# Fundamentals", "Q51_Q60_mvc.md": "ASP.NET MVC"}
    """
    with open(manifest_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a JSON object: {manifest_path}")
    return {str(k): str(v) for k, v in data.items()}


class DocumentScanner:
    """
    Lazy, finite, restartable sequence of ``SourceDocument`` objects.

    Args:
        root: Directory holding the documents.
        documents: Explicit document identifiers (relative paths). When
            omitted, ``patterns`` are globbed recursively under ``root``.
        patterns: Glob patterns used when ``documents`` is not given.
        read_timeout: Seconds allowed for reading one document.
    """

    def __init__(
        self,
        root: str,
        documents: Optional[list[str]] = None,
        patterns: tuple[str, ...] = DEFAULT_PATTERNS,
        read_timeout: float = 10.0,
    ):
        self.root = Path(root)
        self.documents = list(documents) if documents is not None else None
        self.patterns = patterns
        self.read_timeout = read_timeout
        self.skipped: dict[str, str] = {}

    def document_ids(self) -> list[str]:
        """Identifiers in the order they will be read."""
        if self.documents is not None:
            return list(self.documents)

        found: set[str] = set()
        for pattern in self.patterns:
            for path in self.root.rglob(pattern):
                if path.is_file():
                    found.add(path.relative_to(self.root).as_posix())
        return sorted(found)

    def __iter__(self) -> Iterator[SourceDocument]:
        self.skipped = {}
        ids = self.document_ids()
        logger.info(f"Scanning {len(ids)} documents under {self.root}")

        for document_id in ids:
            try:
                text = _read_with_timeout(self.root / document_id, self.read_timeout)
            except FutureTimeout:
                self._skip(document_id, f"read timed out after {self.read_timeout}s")
                continue
            except (OSError, UnicodeDecodeError) as e:
                self._skip(document_id, str(e))
                continue

            yield SourceDocument(document_id=document_id, raw_text=text)

    def _skip(self, document_id: str, reason: str):
        logger.warning(f"Skipping unreadable document {document_id}: {reason}")
        self.skipped[document_id] = reason


def _read_with_timeout(path: Path, timeout: float) -> str:
    # A stuck read is abandoned, not joined
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="doc-reader")
    try:
        return pool.submit(_read_text, path).result(timeout=timeout)
    finally:
        pool.shutdown(wait=False)


def _read_text(path: Path) -> str:
    # utf-8-sig drops a leading BOM if present
    return path.read_text(encoding="utf-8-sig")
