"""PDF text extraction.

Uses PyMuPDF (fitz), which is typically 2-10x faster than pypdf.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from docsage.errors import ExtractionError
from docsage.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def iter_text_parts(path: Path) -> Iterator[str]:
    """Yield normalized text page by page, one trailing newline per page."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        raise ExtractionError(f"Failed to open PDF {path}: {exc}") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover - damaged page
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized + "\n"
    finally:
        doc.close()


def extract_pdf_text(path: Path) -> str:
    return "\n".join(iter_text_parts(path))
