"""Text helpers: sentence-aware chunking and token estimates."""

from __future__ import annotations

import re
from typing import Iterable, Iterator

SENTENCE_TERMINATORS = ".!?"
# How far back from a proposed chunk end we look for a sentence terminator.
SENTENCE_SEARCH_WINDOW = 100

_TOKEN_SPLIT = re.compile(r"[\s,.;:!?]+")


def _last_terminator(text: str, start: int, end: int) -> int:
    return max(text.rfind(mark, start, end) for mark in SENTENCE_TERMINATORS)


def _first_terminator(text: str, start: int, end: int) -> int:
    hits = [idx for idx in (text.find(mark, start, end) for mark in SENTENCE_TERMINATORS) if idx >= 0]
    return min(hits) if hits else -1


def chunk_text(text: str, *, max_chars: int = 1000, overlap: int = 200) -> Iterator[str]:
    """Split text into overlapping chunks that prefer to end on a sentence.

    Each chunk covers ``max_chars`` characters. When a chunk would end before
    the end of the text, its boundary snaps to just after the last ``.``, ``!``
    or ``?`` found searching back ``SENTENCE_SEARCH_WINDOW`` characters from
    the proposed end, the character at the proposed end included (so a chunk
    may reach ``max_chars + 1`` to keep a terminator with its sentence).
    Without one the raw ``max_chars`` boundary is kept. Chunks are stripped and
    blank chunks are dropped.

    The next chunk restarts ``overlap`` characters before the end of a raw cut.
    After a sentence cut it restarts at the first sentence start inside the last
    ``overlap`` characters, or right at the cut when there is none, so overlaps
    never begin mid-sentence.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if overlap < 0 or overlap >= max_chars:
        raise ValueError("overlap must be in [0, max_chars)")
    if not text or not text.strip():
        return

    length = len(text)
    position = 0
    while position < length:
        end = min(position + max_chars, length)
        snapped = False
        if end < length:
            window = min(SENTENCE_SEARCH_WINDOW, end - position)
            boundary = _last_terminator(text, end - window + 1, end + 1)
            if boundary > position:
                end = boundary + 1
                snapped = True

        chunk = text[position:end].strip()
        if chunk:
            yield chunk

        if end >= length:
            break

        if snapped:
            lookback = max(end - overlap, position + 1)
            boundary = _first_terminator(text, lookback, end - 1)
            next_position = boundary + 1 if boundary >= 0 else end
        else:
            next_position = end - overlap

        if next_position <= position:
            next_position = end
        position = next_position


def estimate_token_count(text: str) -> int:
    """Count whitespace/punctuation separated tokens.

    Bookkeeping only, this does not match any model tokenizer.
    """
    if not text or not text.strip():
        return 0
    return sum(1 for token in _TOKEN_SPLIT.split(text) if token)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
