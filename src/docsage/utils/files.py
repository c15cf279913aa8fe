"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator, Sequence


def iter_document_paths(inputs: Iterable[Path], extensions: Sequence[str]) -> Iterator[Path]:
    """Yield files with an allowed extension, descending into directories."""
    allowed = {ext.lower() for ext in extensions}
    for item in inputs:
        item = Path(item)
        if item.is_dir():
            yield from sorted(
                child
                for child in item.rglob("*")
                if child.is_file() and child.suffix.lower() in allowed
            )
        elif item.is_file() and item.suffix.lower() in allowed:
            yield item


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()
