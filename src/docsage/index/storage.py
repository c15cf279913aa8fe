"""SQLite vector store."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Tuple

import numpy as np

from docsage.errors import PersistenceError
from docsage.models import (
    DatabaseStatistics,
    DocumentRecord,
    FileTypeStatistic,
    FragmentRecord,
    SearchResult,
)
from docsage.utils.vectors import EMBEDDING_DTYPE, deserialize_embedding, serialize_embedding

LOGGER = logging.getLogger(__name__)

RECENT_SEARCH_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteVectorStore:
    """Persistence layer for documents, fragment embeddings and search history."""

    def __init__(self, db_path: Path, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    path TEXT NOT NULL UNIQUE,
                    file_name TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    sha256 TEXT NOT NULL,
                    modified_at TEXT NOT NULL,
                    indexed_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS fragments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id INTEGER NOT NULL,
                    sequence_index INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    token_count INTEGER NOT NULL,
                    embedding BLOB,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE,
                    UNIQUE(document_id, sequence_index)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_fragments_document_id
                    ON fragments(document_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS search_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query TEXT NOT NULL,
                    searched_at TEXT NOT NULL,
                    result_count INTEGER NOT NULL
                )
                """
            )

    # -- documents -----------------------------------------------------------

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            path=Path(row["path"]),
            file_name=row["file_name"],
            file_type=row["file_type"],
            size=row["size"],
            sha256=row["sha256"],
            modified_at=_parse_timestamp(row["modified_at"]),
            indexed_at=_parse_timestamp(row["indexed_at"]),
        )

    def get_document(self, path: Path | str) -> DocumentRecord | None:
        row = self._conn.execute(
            "SELECT * FROM documents WHERE path = ?", (str(path),)
        ).fetchone()
        return self._row_to_document(row) if row else None

    def get_document_hash(self, path: Path | str) -> str | None:
        row = self._conn.execute(
            "SELECT sha256 FROM documents WHERE path = ?", (str(path),)
        ).fetchone()
        return row["sha256"] if row else None

    def replace_document(
        self, document: DocumentRecord, fragments: Sequence[FragmentRecord]
    ) -> Tuple[int, str]:
        """Atomically swap any stored version of ``document.path`` for this one.

        Deleting the old row cascades to its fragments; the new document and all
        of its fragments commit together or not at all.

        Returns:
            (doc_id, status) where status is 'inserted' or 'updated'.
        """
        for fragment in fragments:
            if fragment.embedding.shape[0] != self.dimension:
                raise PersistenceError(
                    f"Fragment {fragment.sequence_index} has {fragment.embedding.shape[0]} "
                    f"components, store expects {self.dimension}"
                )

        try:
            with self.transaction() as conn:
                existing = conn.execute(
                    "SELECT id FROM documents WHERE path = ?",
                    (str(document.path),),
                ).fetchone()
                if existing:
                    conn.execute("DELETE FROM documents WHERE id = ?", (existing["id"],))

                doc_id = conn.execute(
                    """
                    INSERT INTO documents(path, file_name, file_type, size, sha256, modified_at, indexed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(document.path),
                        document.file_name,
                        document.file_type,
                        document.size,
                        document.sha256,
                        document.modified_at.isoformat(),
                        document.indexed_at.isoformat(),
                    ),
                ).lastrowid

                created_at = _utcnow().isoformat()
                conn.executemany(
                    """
                    INSERT INTO fragments(document_id, sequence_index, text, token_count, embedding, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            doc_id,
                            fragment.sequence_index,
                            fragment.text,
                            fragment.token_count,
                            sqlite3.Binary(serialize_embedding(fragment.embedding)),
                            created_at,
                        )
                        for fragment in fragments
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to store {document.path}: {exc}") from exc

        document.id = doc_id
        return doc_id, "updated" if existing else "inserted"

    def list_documents(self) -> List[DocumentRecord]:
        rows = self._conn.execute("SELECT * FROM documents ORDER BY path").fetchall()
        return [self._row_to_document(row) for row in rows]

    def delete_document(self, doc_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        return cursor.rowcount > 0

    def delete_document_by_path(self, path: Path | str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE path = ?", (str(path),))
        return cursor.rowcount > 0

    def remove_missing_files(self) -> int:
        """Remove documents whose files no longer exist."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT id, path FROM documents").fetchall()
            missing = [row for row in rows if not Path(row["path"]).exists()]
            for row in missing:
                conn.execute("DELETE FROM documents WHERE id = ?", (row["id"],))
        return len(missing)

    # -- fragments -----------------------------------------------------------

    def fragment_ids(self, path: Path | str) -> List[int]:
        rows = self._conn.execute(
            """
            SELECT f.id FROM fragments f
            JOIN documents d ON d.id = f.document_id
            WHERE d.path = ?
            ORDER BY f.sequence_index
            """,
            (str(path),),
        ).fetchall()
        return [row["id"] for row in rows]

    def load_vectors(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return every stored fragment id and its vector as an (n, dimension) matrix."""
        rows = self._conn.execute(
            "SELECT id, embedding FROM fragments WHERE embedding IS NOT NULL ORDER BY id"
        ).fetchall()

        expected_bytes = self.dimension * EMBEDDING_DTYPE.itemsize
        ids: List[int] = []
        vectors: List[np.ndarray] = []
        for row in rows:
            blob = row["embedding"]
            if len(blob) != expected_bytes:
                LOGGER.warning(
                    "Skipping fragment %s: %d bytes stored, %d expected",
                    row["id"],
                    len(blob),
                    expected_bytes,
                )
                continue
            ids.append(row["id"])
            vectors.append(deserialize_embedding(blob, self.dimension))

        if not vectors:
            return np.empty(0, dtype=np.int64), np.empty((0, self.dimension), dtype=np.float32)
        return np.asarray(ids, dtype=np.int64), np.vstack(vectors)

    def fetch_results(self, scored: Sequence[Tuple[int, float]]) -> List[SearchResult]:
        """Hydrate ``(fragment_id, score)`` pairs, keeping their order."""
        if not scored:
            return []
        placeholders = ",".join("?" for _ in scored)
        rows = self._conn.execute(
            f"""
            SELECT
                f.id AS fragment_id,
                f.sequence_index,
                f.text,
                f.token_count,
                f.embedding,
                f.created_at,
                d.*
            FROM fragments f
            JOIN documents d ON d.id = f.document_id
            WHERE f.id IN ({placeholders})
            """,
            [fragment_id for fragment_id, _ in scored],
        ).fetchall()

        by_id: Dict[int, sqlite3.Row] = {row["fragment_id"]: row for row in rows}
        results: List[SearchResult] = []
        for fragment_id, score in scored:
            row = by_id.get(fragment_id)
            if row is None:
                continue
            fragment = FragmentRecord(
                id=fragment_id,
                document_id=row["id"],
                sequence_index=row["sequence_index"],
                text=row["text"],
                token_count=row["token_count"],
                embedding=deserialize_embedding(row["embedding"], self.dimension),
                created_at=_parse_timestamp(row["created_at"]),
            )
            results.append(
                SearchResult(fragment=fragment, document=self._row_to_document(row), score=score)
            )
        return results

    # -- bookkeeping ---------------------------------------------------------

    def record_search(self, query: str, result_count: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO search_history(query, searched_at, result_count) VALUES (?, ?, ?)",
                (query, _utcnow().isoformat(), result_count),
            )

    def get_statistics(self) -> DatabaseStatistics:
        conn = self._conn
        document_count = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        fragment_count = conn.execute("SELECT COUNT(*) FROM fragments").fetchone()[0]
        last_indexed = conn.execute("SELECT MAX(indexed_at) FROM documents").fetchone()[0]
        recent = conn.execute(
            "SELECT query FROM search_history ORDER BY searched_at DESC, id DESC LIMIT ?",
            (RECENT_SEARCH_LIMIT,),
        ).fetchall()
        file_types = conn.execute(
            """
            SELECT file_type, COUNT(*) AS count, COALESCE(SUM(size), 0) AS total_size
            FROM documents
            GROUP BY file_type
            ORDER BY file_type
            """
        ).fetchall()

        return DatabaseStatistics(
            document_count=document_count,
            fragment_count=fragment_count,
            avg_fragments_per_document=(
                fragment_count / document_count if document_count else 0.0
            ),
            recent_search_count=len(recent),
            last_indexed_at=_parse_timestamp(last_indexed),
            file_types=[
                FileTypeStatistic(
                    file_type=row["file_type"],
                    count=row["count"],
                    total_size_bytes=row["total_size"],
                )
                for row in file_types
            ],
            recent_searches=[row["query"] for row in recent],
        )
