"""Question answering over the indexed corpus."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import List

from docsage.config import AppConfig
from docsage.embedding.encoder import EmbeddingModel
from docsage.errors import GenerationError, ValidationError
from docsage.generation.engine import GenerationEngine, fallback_answer
from docsage.index.search import Retriever
from docsage.index.storage import SQLiteVectorStore
from docsage.models import (
    AnswerReport,
    DatabaseStatistics,
    GenerationRequest,
    ReportFormat,
    SourceReference,
)
from docsage.reports import render_report

LOGGER = logging.getLogger(__name__)

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the document database to answer "
    "your question. The query might be too specific, or the documents might not "
    "contain information on this topic."
)
EMPTY_GENERATION_ANSWER = "Unable to generate a response from the retrieved documents."


class AnswerService:
    """Embeds a question, retrieves fragments and has the engine write the answer."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        engine: GenerationEngine,
        config: AppConfig,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.engine = engine
        self.config = config
        self.retriever = Retriever(store, embedder)

    def answer(
        self,
        query: str,
        *,
        include_report: bool = False,
        report_format: ReportFormat = ReportFormat.MARKDOWN,
    ) -> AnswerReport:
        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")
        query = query.strip()
        LOGGER.info("Processing query: %s", query)

        results = self.retriever.search(
            self.embedder.embed_query(query),
            top_k=self.config.top_k,
            threshold=self.config.similarity_threshold,
        )
        LOGGER.info("Found %d relevant fragments", len(results))
        self._record_search(query, len(results))

        if not results:
            report = AnswerReport(
                query=query,
                created_at=datetime.now(timezone.utc),
                answer=NO_RESULTS_ANSWER,
                sources=[],
                total_sources_found=0,
                average_score=0.0,
                found_relevant_documents=False,
            )
        else:
            contexts = [result.fragment.text for result in results]
            text, tokens_used = self._generate(query, contexts)
            report = AnswerReport(
                query=query,
                created_at=datetime.now(timezone.utc),
                answer=text,
                sources=[
                    SourceReference(
                        file_name=result.document.file_name,
                        path=str(result.document.path),
                        excerpt=result.fragment.text,
                        score=result.score,
                        sequence_index=result.fragment.sequence_index,
                    )
                    for result in results
                ],
                total_sources_found=len(results),
                average_score=sum(result.score for result in results) / len(results),
                found_relevant_documents=True,
                tokens_used=tokens_used,
            )

        if include_report:
            report.report_format = ReportFormat(report_format)
            report.formatted_report = render_report(report, report.report_format)
        return report

    def _generate(self, query: str, contexts: List[str]) -> tuple[str, int]:
        request = GenerationRequest(
            query=query, contexts=contexts, max_tokens=self.config.max_response_tokens
        )
        try:
            result = self.engine.generate(request)
        except GenerationError:
            if not self.config.generation_fallback:
                raise
            LOGGER.exception("Generation failed; answering with retrieved excerpts")
            return fallback_answer(query, contexts), 0

        LOGGER.info("Generated response with %d tokens", result.tokens_used)
        return result.text or EMPTY_GENERATION_ANSWER, result.tokens_used

    def _record_search(self, query: str, result_count: int) -> None:
        try:
            self.store.record_search(query, result_count)
        except sqlite3.Error:
            LOGGER.exception("Failed to save search history")

    def clarifying_questions(self, query: str) -> List[str]:
        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")
        questions = self.engine.clarifying_questions(query.strip())
        LOGGER.info("Generated %d clarifying questions", len(questions))
        return questions

    def statistics(self) -> DatabaseStatistics:
        return self.store.get_statistics()
