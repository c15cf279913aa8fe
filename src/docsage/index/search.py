"""Brute-force similarity search over stored fragment vectors."""

from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np

from docsage.embedding.encoder import EmbeddingModel
from docsage.errors import ValidationError
from docsage.index.storage import SQLiteVectorStore
from docsage.models import SearchResult

LOGGER = logging.getLogger(__name__)


def rank_by_similarity(
    query: np.ndarray,
    matrix: np.ndarray,
    ids: np.ndarray,
    *,
    top_k: int,
    threshold: float,
) -> List[Tuple[int, float]]:
    """Score every row against ``query`` in one linear pass.

    Rows and query are unit vectors, so the dot product is the cosine
    similarity. Scores below ``threshold`` are dropped; the rest are ordered by
    descending score with the fragment id as tie-breaker, then cut to ``top_k``.
    """
    if top_k <= 0 or matrix.shape[0] == 0:
        return []

    scores = np.clip(
        matrix.astype(np.float64) @ np.asarray(query, dtype=np.float64), -1.0, 1.0
    )
    keep = np.flatnonzero(scores >= threshold)
    # lexsort sorts by the last key first.
    order = keep[np.lexsort((ids[keep], -scores[keep]))][:top_k]
    return [(int(ids[i]), float(scores[i])) for i in order]


class Retriever:
    """Top-K thresholded similarity search over a `SQLiteVectorStore`."""

    def __init__(self, store: SQLiteVectorStore, embedder: EmbeddingModel | None = None) -> None:
        self.store = store
        self.embedder = embedder

    def search(
        self, query_vector: np.ndarray, *, top_k: int = 5, threshold: float = 0.7
    ) -> List[SearchResult]:
        query = np.asarray(query_vector, dtype=np.float32).ravel()
        if query.shape[0] != self.store.dimension:
            raise ValidationError(
                f"Query vector has {query.shape[0]} components, index uses {self.store.dimension}"
            )

        ids, matrix = self.store.load_vectors()
        ranked = rank_by_similarity(query, matrix, ids, top_k=top_k, threshold=threshold)
        LOGGER.debug(
            "Scored %d fragments, %d above threshold %.2f", ids.shape[0], len(ranked), threshold
        )
        return self.store.fetch_results(ranked)

    def search_text(self, query: str, *, top_k: int = 5, threshold: float = 0.7) -> List[SearchResult]:
        if self.embedder is None:
            raise RuntimeError("Retriever was created without an embedder")
        return self.search(self.embedder.embed_query(query), top_k=top_k, threshold=threshold)
