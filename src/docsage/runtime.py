"""Process-wide handle on the loaded models."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import numpy as np

from docsage.config import AppConfig
from docsage.embedding.encoder import EmbeddingConfig, EmbeddingModel
from docsage.generation.engine import GenerationEngine
from docsage.generation.model import CausalLanguageModel
from docsage.index.indexer import Indexer
from docsage.index.storage import SQLiteVectorStore
from docsage.service import AnswerService

LOGGER = logging.getLogger(__name__)


class Runtime:
    """Owns the model weights for the life of the process.

    Models load on first use and are shared by every store, indexer and service
    built from this handle. Call `close` once at shutdown.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._embedder: EmbeddingModel | None = None
        self._language_model: CausalLanguageModel | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self.config.resolve_db_path(Path.cwd())

    @property
    def embedder(self) -> EmbeddingModel:
        with self._lock:
            if self._embedder is None:
                self._embedder = EmbeddingModel(EmbeddingConfig(model_name=self.config.model_name))
            return self._embedder

    @property
    def language_model(self) -> CausalLanguageModel:
        with self._lock:
            if self._language_model is None:
                self._language_model = CausalLanguageModel(
                    self.config.llm_model_name, context_limit=self.config.context_limit
                )
            return self._language_model

    def open_store(self) -> SQLiteVectorStore:
        db_path = self.db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return SQLiteVectorStore(db_path, dimension=self.embedder.dimension)

    def indexer(self, store: SQLiteVectorStore, root_path: Path | None = None) -> Indexer:
        return Indexer(
            self.embedder,
            store,
            root_path=root_path if root_path is not None else self.config.root_path,
            extensions=self.config.extensions,
            chunk_chars=self.config.chunk_chars,
            overlap=self.config.overlap,
        )

    def answer_service(self, store: SQLiteVectorStore) -> AnswerService:
        engine = GenerationEngine(
            self.language_model,
            temperature=self.config.temperature,
            compact_prompt=self.config.compact_prompt,
            rng=np.random.default_rng(self.config.seed),
        )
        return AnswerService(self.embedder, store, engine, self.config)

    def close(self) -> None:
        with self._lock:
            if self._embedder is not None:
                self._embedder.close()
                self._embedder = None
            if self._language_model is not None:
                self._language_model.close()
                self._language_model = None
        LOGGER.debug("Runtime closed")
