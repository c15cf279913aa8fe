"""Shared fakes so tests never download or load real models."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Sequence

import numpy as np
import pytest

from docsage.errors import EmbeddingError, ValidationError
from docsage.index.storage import SQLiteVectorStore
from docsage.models import DocumentRecord
from docsage.utils.vectors import normalize

DIMENSION = 16


def make_document(
    path: Path, sha256: str = "hash-1", file_type: str = "txt", size: int = 10
) -> DocumentRecord:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return DocumentRecord(
        path=path,
        file_name=path.name,
        file_type=file_type,
        size=size,
        sha256=sha256,
        modified_at=now,
        indexed_at=now,
    )


class HashingEmbedder:
    """Bag-of-words embedder: each lowercased word lights up one hashed bucket.

    Texts sharing vocabulary score high, disjoint texts score zero. Any text in
    ``failing`` raises EmbeddingError, mimicking a model error on that item.
    """

    def __init__(self, dimension: int = DIMENSION, failing: Iterable[str] = ()) -> None:
        self.dimension = dimension
        self.failing = set(failing)
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        if text in self.failing:
            raise EmbeddingError(f"cannot embed {text!r}")
        vector = np.zeros(self.dimension, dtype=np.float64)
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return normalize(vector)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        texts = list(texts)
        self.calls.append(texts)
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)
        return np.vstack([self._vector(text) for text in texts])

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray | None]:
        vectors: List[np.ndarray | None] = []
        for text in texts:
            try:
                vectors.append(self._vector(text))
            except EmbeddingError:
                vectors.append(None)
        return vectors

    def embed_query(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise ValidationError("Query cannot be empty")
        return self._vector(text)

    def close(self) -> None:
        pass


class ScriptedLanguageModel:
    """Word-level language model whose next token follows a script.

    Words are assigned ids on first sight so ``decode(encode(text))`` returns the
    words joined by single spaces. ``next_token_logits`` puts a huge logit on the
    next scripted word, which makes sampling deterministic at any temperature,
    and on EOS once the script runs out.
    """

    EOS = 0

    def __init__(self, script: Sequence[str] = (), *, context_limit: int = 2048) -> None:
        self.context_limit = context_limit
        self._vocab: Dict[str, int] = {"<eos>": self.EOS}
        self._words: Dict[int, str] = {self.EOS: "<eos>"}
        self._script = [self._id(word) for word in script]
        self._step = 0
        self.calls: List[List[int]] = []
        self.fail_with: Exception | None = None

    def _id(self, word: str) -> int:
        if word not in self._vocab:
            token = len(self._vocab)
            self._vocab[word] = token
            self._words[token] = word
        return self._vocab[word]

    @property
    def eos_token_ids(self) -> FrozenSet[int]:
        return frozenset({self.EOS})

    @property
    def vocab_size(self) -> int:
        return 4096

    def encode(self, text: str) -> List[int]:
        return [self._id(word) for word in text.split()]

    def decode(self, token_ids: Sequence[int]) -> str:
        return " ".join(self._words[token] for token in token_ids if token != self.EOS)

    def next_token_logits(self, token_ids: Sequence[int]) -> np.ndarray:
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append(list(token_ids))
        logits = np.zeros(self.vocab_size, dtype=np.float32)
        if self._step < len(self._script):
            logits[self._script[self._step]] = 1000.0
        else:
            logits[self.EOS] = 1000.0
        self._step += 1
        return logits


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def store(tmp_path) -> SQLiteVectorStore:
    vector_store = SQLiteVectorStore(tmp_path / "docsage.db", dimension=DIMENSION)
    yield vector_store
    vector_store.close()
