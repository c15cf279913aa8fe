"""Prompt assembly and the autoregressive sampling loop."""

from __future__ import annotations

import logging
import re
from typing import List, Sequence

import numpy as np

from docsage.errors import GenerationError, ValidationError
from docsage.generation.model import LanguageModel
from docsage.generation.sampling import DEFAULT_TEMPERATURE, sample_next_token
from docsage.models import GenerationRequest, GenerationResult

LOGGER = logging.getLogger(__name__)

PREAMBLE = (
    "You are a helpful assistant for a private document search system.\n"
    "Answer the question using only the provided document excerpts.\n"
    "Always cite the number of each document excerpt you are using.\n"
    "If the provided documents don't contain the answer, clearly state that.\n"
)

CLARIFY_TEMPLATE = (
    "Based on the following query, generate 2-3 clarifying questions that would "
    "help narrow down the search:\n\nQuery: {query}\n\nQuestions:\n1."
)
CLARIFY_MAX_TOKENS = 150
MAX_CLARIFYING_QUESTIONS = 3

# Text the model tends to produce once it starts inventing the next prompt turn.
CONTINUATION_MARKERS = ("\nQuestion:", "\n---", "\n[Document")
_CONTINUATION_PATTERNS = tuple(
    re.compile(re.escape(marker), re.IGNORECASE) for marker in CONTINUATION_MARKERS
)

_NUMBERED_LINE = re.compile(r"^\s*\d+\s*[.)]\s*(.+?)\s*$")


def build_prompt(query: str, contexts: Sequence[str]) -> str:
    """Preamble, every excerpt labelled ``[Document i]``, then the question."""
    parts = [PREAMBLE, "\n"]
    if contexts:
        parts.append("Document Excerpts:\n---\n")
        for number, context in enumerate(contexts, start=1):
            parts.append(f"[Document {number}]\n{context}\n\n")
        parts.append("---\n\n")
    parts.append(f"Question: {query}\n\nAnswer: ")
    return "".join(parts)


def build_compact_prompt(
    query: str,
    contexts: Sequence[str],
    *,
    max_contexts: int = 3,
    max_chars: int = 400,
) -> str:
    """Prompt for small context windows: fewer excerpts, each cut to ``max_chars``."""
    trimmed = []
    for context in list(contexts)[:max_contexts]:
        if len(context) > max_chars:
            context = context[: max_chars - 3] + "..."
        trimmed.append(context)
    return build_prompt(query, trimmed)


def clean_generated_text(text: str, prompt: str) -> str:
    """Drop an echoed prompt and anything after the model starts a new turn."""
    if prompt and text.startswith(prompt):
        text = text[len(prompt) :]
    text = text.strip()

    cut = len(text)
    for pattern in _CONTINUATION_PATTERNS:
        match = pattern.search(text)
        if match and match.start() > 0:
            cut = min(cut, match.start())
    return text[:cut].strip()


def parse_numbered_questions(text: str, limit: int = MAX_CLARIFYING_QUESTIONS) -> List[str]:
    questions = []
    for line in text.splitlines():
        match = _NUMBERED_LINE.match(line)
        if match and match.group(1):
            questions.append(match.group(1))
    return questions[:limit]


def fallback_answer(query: str, contexts: Sequence[str], *, max_contexts: int = 3) -> str:
    """Echo the best excerpts when the model cannot produce an answer."""
    lines = [f"Based on the search for '{query}', here are the relevant excerpts:", ""]
    if not contexts:
        lines.append("No relevant documents found.")
    for number, context in enumerate(list(contexts)[:max_contexts], start=1):
        excerpt = context if len(context) <= 300 else context[:297] + "..."
        lines.extend([f"From Document {number}:", excerpt, ""])
    return "\n".join(lines).strip()


class GenerationEngine:
    """Drives a `LanguageModel` one sampled token at a time."""

    def __init__(
        self,
        model: LanguageModel,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        compact_prompt: bool = False,
        rng: np.random.Generator | None = None,
    ) -> None:
        if temperature <= 0:
            raise ValueError("temperature must be positive")
        self.model = model
        self.temperature = temperature
        self.compact_prompt = compact_prompt
        self.rng = rng if rng is not None else np.random.default_rng()

    def prompt_for(self, query: str, contexts: Sequence[str]) -> str:
        if self.compact_prompt:
            return build_compact_prompt(query, contexts)
        return build_prompt(query, contexts)

    def generate(self, request: GenerationRequest) -> GenerationResult:
        if not request.query or not request.query.strip():
            raise ValidationError("Query cannot be empty")

        prompt = self.prompt_for(request.query, request.contexts)
        LOGGER.info("Generating response for query: %s", request.query)
        LOGGER.debug("Prompt length: %d characters", len(prompt))

        try:
            raw_text, tokens_used = self.generate_text(prompt, request.max_tokens)
        except (GenerationError, ValidationError):
            raise
        except Exception as exc:
            raise GenerationError(f"Failed to generate a response: {exc}") from exc

        return GenerationResult(text=clean_generated_text(raw_text, prompt), tokens_used=tokens_used)

    def generate_text(self, prompt: str, max_tokens: int) -> tuple[str, int]:
        """Sample up to ``max_tokens`` tokens after ``prompt``.

        Returns the decoded continuation (prompt excluded) and how many tokens
        were sampled. Prompts longer than ``context_limit - max_tokens`` keep
        only their leading tokens.
        """
        context_limit = self.model.context_limit
        if max_tokens <= 0:
            raise ValidationError("max_tokens must be positive")
        if max_tokens >= context_limit:
            raise ValidationError(
                f"max_tokens ({max_tokens}) must be below the context limit ({context_limit})"
            )

        prompt_tokens = self.model.encode(prompt)
        budget = context_limit - max_tokens
        if len(prompt_tokens) > budget:
            LOGGER.warning(
                "Prompt too long, truncating from %d to %d tokens", len(prompt_tokens), budget
            )
            prompt_tokens = prompt_tokens[:budget]

        eos_ids = self.model.eos_token_ids
        sequence = list(prompt_tokens)
        generated: List[int] = []
        for _ in range(max_tokens):
            logits = self.model.next_token_logits(sequence)
            token = sample_next_token(logits, self.rng, self.temperature)
            if token in eos_ids:
                break
            sequence.append(token)
            generated.append(token)
            if len(sequence) >= context_limit:
                break

        LOGGER.debug("Sampled %d tokens", len(generated))
        return self.model.decode(generated), len(generated)

    def clarifying_questions(self, query: str) -> List[str]:
        """Ask the model for up to three follow-up questions; never raises."""
        prompt = CLARIFY_TEMPLATE.format(query=query)
        try:
            text, _ = self.generate_text(prompt, CLARIFY_MAX_TOKENS)
        except Exception:
            LOGGER.exception("Failed to generate clarifying questions")
            return []
        # The template already opened the first numbered item.
        return parse_numbered_questions("1." + text)
