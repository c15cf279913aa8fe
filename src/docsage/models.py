"""Core DocSage data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List

import numpy as np


class ReportFormat(str, Enum):
    MARKDOWN = "markdown"
    HTML = "html"
    PLAINTEXT = "plaintext"


@dataclass(slots=True)
class DocumentRecord:
    """Metadata of an indexed source file."""

    path: Path
    file_name: str
    file_type: str
    size: int
    sha256: str
    modified_at: datetime
    indexed_at: datetime
    id: int | None = None


@dataclass(slots=True)
class FragmentRecord:
    """Contiguous slice of a document's text paired with its embedding."""

    sequence_index: int
    text: str
    token_count: int
    embedding: np.ndarray
    id: int | None = None
    document_id: int | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class SearchResult:
    fragment: FragmentRecord
    document: DocumentRecord
    score: float


@dataclass(slots=True)
class GenerationRequest:
    query: str
    contexts: List[str]
    max_tokens: int


@dataclass(slots=True)
class GenerationResult:
    text: str
    tokens_used: int


@dataclass(slots=True)
class SourceReference:
    """A retrieved fragment cited by an answer."""

    file_name: str
    path: str
    excerpt: str
    score: float
    sequence_index: int


@dataclass(slots=True)
class AnswerReport:
    """Answer to a query together with the sources it was built from."""

    query: str
    created_at: datetime
    answer: str
    sources: List[SourceReference]
    total_sources_found: int
    average_score: float
    found_relevant_documents: bool
    tokens_used: int = 0
    report_format: ReportFormat | None = None
    formatted_report: str | None = None


@dataclass(slots=True)
class IndexingProgress:
    total: int
    processed: int
    current_file: str | None
    status: str


@dataclass(slots=True)
class FileTypeStatistic:
    file_type: str
    count: int
    total_size_bytes: int


@dataclass(slots=True)
class DatabaseStatistics:
    document_count: int
    fragment_count: int
    avg_fragments_per_document: float
    recent_search_count: int
    last_indexed_at: datetime | None
    file_types: List[FileTypeStatistic] = field(default_factory=list)
    recent_searches: List[str] = field(default_factory=list)
