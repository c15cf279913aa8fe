"""Embedding model management."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, List, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from docsage.errors import EmbeddingError, ValidationError
from docsage.utils.vectors import normalize

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` producing unit-length float32 vectors.

    The loaded weights are shared by every caller of one instance; encode calls are
    serialized with a lock because the underlying model is not documented as
    reentrant.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._lock = threading.Lock()

        self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded embedding model %s (dimension: %d)", self.config.model_name, self.dimension
        )

    def _encode(self, sentences: List[str]) -> np.ndarray:
        with self._lock:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        return np.atleast_2d(np.asarray(embeddings, dtype="float32"))

    def _finish(self, vector: np.ndarray) -> np.ndarray:
        if vector.shape[0] != self.dimension:
            raise EmbeddingError(
                f"Model returned {vector.shape[0]} components, expected {self.dimension}"
            )
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Model returned a non-finite embedding")
        return normalize(vector)

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return normalized float32 embeddings for input texts; raises on any failure."""
        sentences = list(texts)
        if not sentences:
            return np.empty((0, self.dimension), dtype="float32")
        try:
            raw = self._encode(sentences)
        except Exception as exc:
            raise EmbeddingError(f"Failed to embed {len(sentences)} texts: {exc}") from exc
        return np.vstack([self._finish(row) for row in raw])

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray | None]:
        """Embed many texts without failing the whole batch.

        If the batch as a whole fails, items are retried one at a time and those
        that still fail come back as ``None`` so callers can drop them.
        """
        sentences = list(texts)
        try:
            return list(self.embed(sentences))
        except EmbeddingError as exc:
            logger.warning("Batch embedding failed (%s); retrying item by item", exc)

        vectors: List[np.ndarray | None] = []
        for position, text in enumerate(sentences):
            try:
                vectors.append(self.embed([text])[0])
            except EmbeddingError as exc:
                logger.warning("Excluding text %d from batch: %s", position, exc)
                vectors.append(None)
        return vectors

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        if not text or not text.strip():
            raise ValidationError("Query cannot be empty")
        return self.embed([text])[0]

    def close(self) -> None:
        self._model = None
