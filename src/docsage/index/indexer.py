"""Document indexing pipeline."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Sequence

from docsage.embedding.encoder import EmbeddingModel
from docsage.errors import EmptyContentError, ExtractionError
from docsage.index.storage import SQLiteVectorStore
from docsage.ingestion.extractors import ExtractorRegistry
from docsage.models import DocumentRecord, FragmentRecord, IndexingProgress
from docsage.utils.files import compute_sha256, iter_document_paths
from docsage.utils.text import chunk_text, estimate_token_count

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)

    @property
    def succeeded(self) -> int:
        """Documents that are indexed and current after the run."""
        return self.inserted + self.updated + self.skipped


class Indexer:
    """Coordinates extraction, chunking, embedding and persistence."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        root_path: Path | None = None,
        extensions: Sequence[str] | None = None,
        chunk_chars: int = 1000,
        overlap: int = 200,
        registry: ExtractorRegistry | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.registry = registry or ExtractorRegistry()
        self.root_path = Path(root_path) if root_path is not None else Path.cwd()
        self.extensions = tuple(extensions) if extensions is not None else self.registry.suffixes
        self.chunk_chars = chunk_chars
        self.overlap = overlap

    def discover(self) -> List[Path]:
        """Find all files with an allowed extension under the root path."""
        if not self.root_path.is_dir():
            LOGGER.warning("Folder does not exist: %s", self.root_path)
            return []
        files = list(iter_document_paths([self.root_path], self.extensions))
        LOGGER.info("Discovered %d supported documents in %s", len(files), self.root_path)
        return files

    def index_all(
        self,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> int:
        """Index every supported file under the root path.

        Returns the number of documents that are indexed and current, counting
        files skipped because their content did not change.
        """
        stats = self.index_paths(self.discover(), progress_callback, cancel_event)
        return stats.succeeded

    def index_paths(
        self,
        paths: Sequence[Path],
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IndexStats:
        """Index the given files one after another.

        A failing file is logged and counted; it never stops the batch.
        Cancellation is checked between files only.
        """
        stats = IndexStats()
        total = len(paths)
        self._report(progress_callback, total, 0, None, "Starting indexing...")

        for position, path in enumerate(paths):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.warning("Indexing cancelled after %d of %d files", position, total)
                break

            path = Path(path).resolve()
            try:
                if not self.needs_reindexing(path):
                    LOGGER.info("Skipping unchanged document: %s", path)
                    stats.increment("skipped", path)
                else:
                    existed = self.store.get_document_hash(path) is not None
                    if self.index_document(path):
                        stats.increment("updated" if existed else "inserted", path)
                    else:
                        stats.increment("failed", path)
            except Exception as e:
                LOGGER.error("Failed to index %s: %s", path, e)
                stats.increment("failed", path)

            self._report(progress_callback, total, position + 1, path.name, f"Processed {path.name}")

        self._report(
            progress_callback,
            total,
            len(stats.processed_files),
            None,
            f"Indexing complete. Successfully processed {stats.succeeded} documents.",
        )
        LOGGER.info(
            "Indexing complete: %d inserted, %d updated, %d unchanged, %d failed",
            stats.inserted,
            stats.updated,
            stats.skipped,
            stats.failed,
        )
        return stats

    def index_document(self, path: Path, cancel_event: threading.Event | None = None) -> bool:
        """Extract, chunk, embed and atomically store one file.

        Returns False when the file yields nothing to index. Storage failures
        roll back and propagate.
        """
        path = Path(path).resolve()
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.info("Indexing of %s cancelled before start", path)
            return False
        if not path.is_file():
            LOGGER.warning("File not found: %s", path)
            return False

        try:
            fragments = self._build_fragments(path)
        except (ExtractionError, EmptyContentError) as exc:
            LOGGER.warning("Skipping %s: %s", path, exc)
            return False

        stat = path.stat()
        document = DocumentRecord(
            path=path,
            file_name=path.name,
            file_type=path.suffix.lower().lstrip("."),
            size=stat.st_size,
            sha256=compute_sha256(path),
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            indexed_at=datetime.now(timezone.utc),
        )

        self.store.replace_document(document, fragments)
        LOGGER.info("Stored %s with %d fragments", path.name, len(fragments))
        return True

    def needs_reindexing(self, path: Path) -> bool:
        """True when the path is unknown or its content hash changed."""
        path = Path(path).resolve()
        stored = self.store.get_document_hash(path)
        if stored is None:
            return True
        return stored != compute_sha256(path)

    def _build_fragments(self, path: Path) -> List[FragmentRecord]:
        text = self.registry.extract(path)
        if not text or not text.strip():
            raise EmptyContentError("no text extracted")

        chunks = list(chunk_text(text, max_chars=self.chunk_chars, overlap=self.overlap))
        if not chunks:
            raise EmptyContentError("no chunks created")

        LOGGER.info("Generating embeddings for %d chunks from %s", len(chunks), path.name)
        vectors = self.embedder.embed_batch(chunks)

        fragments: List[FragmentRecord] = []
        for chunk, vector in zip(chunks, vectors):
            if vector is None:
                continue
            fragments.append(
                FragmentRecord(
                    sequence_index=len(fragments),
                    text=chunk,
                    token_count=estimate_token_count(chunk),
                    embedding=vector,
                )
            )

        dropped = len(chunks) - len(fragments)
        if dropped:
            LOGGER.warning("Excluded %d of %d chunks of %s without embeddings", dropped, len(chunks), path.name)
        if not fragments:
            raise EmptyContentError("no chunk could be embedded")
        return fragments

    @staticmethod
    def _report(
        callback: ProgressCallback | None,
        total: int,
        processed: int,
        current_file: str | None,
        status: str,
    ) -> None:
        if callback is not None:
            callback(
                IndexingProgress(
                    total=total, processed=processed, current_file=current_file, status=status
                )
            )
