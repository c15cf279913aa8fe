"""Vector math and the on-disk embedding layout."""

from __future__ import annotations

from typing import Sequence

import numpy as np

# Embeddings are stored as raw little-endian float32, 4 bytes per component.
EMBEDDING_DTYPE = np.dtype("<f4")


def _as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def _check_same_length(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise ValueError(f"Vectors must have the same dimension ({a.shape[0]} != {b.shape[0]})")


def dot_product(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    left, right = _as_vector(a), _as_vector(b)
    _check_same_length(left, right)
    return float(left @ right)


def magnitude(vector: Sequence[float] | np.ndarray) -> float:
    return float(np.linalg.norm(_as_vector(vector)))


def euclidean_distance(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    left, right = _as_vector(a), _as_vector(b)
    _check_same_length(left, right)
    return float(np.linalg.norm(left - right))


def normalize(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return a float32 unit vector; a zero vector is returned unchanged."""
    values = _as_vector(vector)
    norm = np.linalg.norm(values)
    if norm == 0:
        return values.astype(np.float32)
    return (values / norm).astype(np.float32)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Dot product of two unit vectors, clipped to [-1, 1].

    Inputs are expected to be normalized already, so no magnitudes are divided out.
    """
    return float(np.clip(dot_product(a, b), -1.0, 1.0))


def serialize_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    return np.asarray(vector, dtype=EMBEDDING_DTYPE).ravel().tobytes()


def deserialize_embedding(blob: bytes, dimension: int | None = None) -> np.ndarray:
    if len(blob) % EMBEDDING_DTYPE.itemsize:
        raise ValueError(f"Embedding blob of {len(blob)} bytes is not a float32 sequence")
    vector = np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(np.float32)
    if dimension is not None and vector.shape[0] != dimension:
        raise ValueError(f"Expected {dimension} components, found {vector.shape[0]}")
    return vector
