"""Local causal language model handle."""

from __future__ import annotations

import logging
import threading
from typing import FrozenSet, List, Protocol, Sequence

import numpy as np
import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

DEFAULT_LLM_MODEL = "TinyLlama/TinyLlama-1.1B-Chat-v1.0"
DEFAULT_CONTEXT_LIMIT = 2048

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    """What the generation engine needs from a model: a tokenizer and one forward pass."""

    context_limit: int

    @property
    def eos_token_ids(self) -> FrozenSet[int]: ...

    def encode(self, text: str) -> List[int]: ...

    def decode(self, token_ids: Sequence[int]) -> str: ...

    def next_token_logits(self, token_ids: Sequence[int]) -> np.ndarray: ...


class CausalLanguageModel:
    """`transformers` causal LM loaded once and shared by every request.

    Forward passes are serialized with a lock; the runtime does not promise that
    concurrent calls on one model are safe.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_LLM_MODEL,
        *,
        context_limit: int = DEFAULT_CONTEXT_LIMIT,
        device: str | None = None,
    ) -> None:
        self.model_name = model_name
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self._lock = threading.Lock()

        logger.info("Loading language model %s on %s", model_name, self.device)
        self._tokenizer = AutoTokenizer.from_pretrained(model_name)
        self._model = AutoModelForCausalLM.from_pretrained(model_name)
        self._model.to(self.device)
        self._model.eval()

        model_limit = getattr(self._model.config, "max_position_embeddings", None)
        self.context_limit = min(context_limit, model_limit) if model_limit else context_limit

    @property
    def eos_token_ids(self) -> FrozenSet[int]:
        ids = {self._tokenizer.eos_token_id}
        generation_eos = getattr(self._model.generation_config, "eos_token_id", None)
        if isinstance(generation_eos, int):
            ids.add(generation_eos)
        elif generation_eos:
            ids.update(generation_eos)
        return frozenset(i for i in ids if i is not None)

    def encode(self, text: str) -> List[int]:
        return list(self._tokenizer.encode(text, add_special_tokens=True))

    def decode(self, token_ids: Sequence[int]) -> str:
        return self._tokenizer.decode(list(token_ids), skip_special_tokens=True)

    def next_token_logits(self, token_ids: Sequence[int]) -> np.ndarray:
        """Run one forward pass and return the logits at the last position."""
        input_ids = torch.tensor([list(token_ids)], dtype=torch.long, device=self.device)
        attention_mask = torch.ones_like(input_ids)
        with self._lock, torch.no_grad():
            output = self._model(input_ids=input_ids, attention_mask=attention_mask)
        return output.logits[0, -1].float().cpu().numpy()

    def close(self) -> None:
        self._model = None
        self._tokenizer = None
