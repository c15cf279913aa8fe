"""Exception hierarchy shared by the indexing and answering pipelines."""

from __future__ import annotations


class DocSageError(Exception):
    """Base class for DocSage failures."""


class ValidationError(DocSageError, ValueError):
    """Input rejected before any retrieval or generation work starts."""


class ExtractionError(DocSageError):
    """A source file could not be read or parsed."""


class EmptyContentError(DocSageError):
    """Extraction or chunking produced nothing worth indexing."""


class EmbeddingError(DocSageError):
    """A vector could not be produced for a piece of text."""


class PersistenceError(DocSageError):
    """The store rejected a write."""


class GenerationError(DocSageError):
    """The language model failed while producing an answer."""
