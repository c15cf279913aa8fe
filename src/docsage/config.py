"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from docsage.embedding.encoder import DEFAULT_MODEL
from docsage.generation.model import DEFAULT_LLM_MODEL

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".pdf", ".docx", ".txt", ".md")


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / "Documents" / "DocSage" / "docsage.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/docsage.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    root_path: Path = field(default_factory=Path.cwd)
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    model_name: str = DEFAULT_MODEL
    llm_model_name: str = DEFAULT_LLM_MODEL
    chunk_chars: int = 1000
    overlap: int = 200
    top_k: int = 5
    similarity_threshold: float = 0.7
    max_response_tokens: int = 512
    context_limit: int = 2048
    temperature: float = 0.7
    compact_prompt: bool = False
    generation_fallback: bool = True
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        self.root_path = Path(self.root_path)
        self.extensions = tuple(ext.lower() for ext in self.extensions)
        if self.chunk_chars <= 0:
            raise ValueError("chunk_chars must be positive")
        if not 0 <= self.overlap < self.chunk_chars:
            raise ValueError("overlap must be in [0, chunk_chars)")
        if self.temperature <= 0:
            raise ValueError("temperature must be positive")
        if self.top_k <= 0:
            raise ValueError("top_k must be positive")
        if not 0 < self.max_response_tokens < self.context_limit:
            raise ValueError("max_response_tokens must be in (0, context_limit)")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
