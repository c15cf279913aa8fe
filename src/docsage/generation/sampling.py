"""Temperature sampling over next-token logits."""

from __future__ import annotations

import numpy as np

DEFAULT_TEMPERATURE = 0.7


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax (the max logit is subtracted first)."""
    values = np.asarray(logits, dtype=np.float64).ravel()
    shifted = np.exp(values - values.max())
    return shifted / shifted.sum()


def apply_temperature(logits: np.ndarray, temperature: float) -> np.ndarray:
    if temperature <= 0:
        raise ValueError("temperature must be positive")
    return np.asarray(logits, dtype=np.float64).ravel() / temperature


def sample_categorical(probabilities: np.ndarray, rng: np.random.Generator) -> int:
    """Draw an index by walking the cumulative distribution.

    Returns the first index whose cumulative probability reaches the draw; if
    rounding leaves the draw above the total, the most probable index wins.
    """
    cumulative = np.cumsum(probabilities)
    draw = rng.random()
    index = int(np.searchsorted(cumulative, draw, side="left"))
    if index >= cumulative.shape[0]:
        return int(np.argmax(probabilities))
    return index


def sample_next_token(
    logits: np.ndarray,
    rng: np.random.Generator,
    temperature: float = DEFAULT_TEMPERATURE,
) -> int:
    return sample_categorical(softmax(apply_temperature(logits, temperature)), rng)
