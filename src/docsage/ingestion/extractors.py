"""Format-specific text extractors and the registry that picks one per file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Tuple

from docx import Document as open_docx

from docsage.errors import ExtractionError
from docsage.ingestion.pdf_loader import extract_pdf_text

LOGGER = logging.getLogger(__name__)


class TextExtractor:
    """Turns a file into raw text or raises ExtractionError."""

    suffixes: Tuple[str, ...] = ()

    def can_extract(self, path: Path) -> bool:
        return Path(path).suffix.lower() in self.suffixes

    def extract(self, path: Path) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class PlainTextExtractor(TextExtractor):
    suffixes = (".txt", ".text", ".md", ".markdown")

    def extract(self, path: Path) -> str:
        try:
            return Path(path).read_bytes().decode("utf-8", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Failed to read text file {path}: {exc}") from exc


class PdfExtractor(TextExtractor):
    suffixes = (".pdf",)

    def extract(self, path: Path) -> str:
        return extract_pdf_text(Path(path))


class WordExtractor(TextExtractor):
    """Paragraph text followed by table rows joined with ``|``."""

    suffixes = (".docx",)

    def extract(self, path: Path) -> str:
        try:
            document = open_docx(str(path))
        except Exception as exc:
            raise ExtractionError(f"Failed to open Word document {path}: {exc}") from exc

        lines = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                lines.append(" | ".join(cell.text.strip() for cell in row.cells))
        return "\n".join(lines)


class ExtractorRegistry:
    """Maps file extensions to extractors."""

    def __init__(self, extractors: Iterable[TextExtractor] | None = None) -> None:
        self._by_suffix: Dict[str, TextExtractor] = {}
        for extractor in extractors if extractors is not None else default_extractors():
            self.register(extractor)

    def register(self, extractor: TextExtractor) -> None:
        for suffix in extractor.suffixes:
            self._by_suffix[suffix.lower()] = extractor

    @property
    def suffixes(self) -> Tuple[str, ...]:
        return tuple(sorted(self._by_suffix))

    def supports(self, path: Path) -> bool:
        return Path(path).suffix.lower() in self._by_suffix

    def get(self, path: Path) -> TextExtractor:
        suffix = Path(path).suffix.lower()
        try:
            return self._by_suffix[suffix]
        except KeyError:
            raise ExtractionError(f"No extractor available for file type: {suffix or '<none>'}") from None

    def extract(self, path: Path) -> str:
        extractor = self.get(path)
        LOGGER.debug("Extracting %s with %s", path, type(extractor).__name__)
        return extractor.extract(Path(path))


def default_extractors() -> Tuple[TextExtractor, ...]:
    return (PdfExtractor(), WordExtractor(), PlainTextExtractor())
