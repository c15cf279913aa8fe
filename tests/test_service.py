"""Tests for AnswerService."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from docsage.config import AppConfig
from docsage.errors import GenerationError, ValidationError
from docsage.generation.engine import GenerationEngine
from docsage.index.storage import SQLiteVectorStore
from docsage.models import FragmentRecord, ReportFormat
from docsage.service import EMPTY_GENERATION_ANSWER, NO_RESULTS_ANSWER, AnswerService

from conftest import HashingEmbedder, ScriptedLanguageModel, make_document

PASSAGE = "quarterly revenue grew in every region"


def build_service(store, embedder, model=None, **config_overrides) -> AnswerService:
    engine = GenerationEngine(model or ScriptedLanguageModel(), rng=np.random.default_rng(0))
    config = AppConfig(db_path=store.db_path, **config_overrides)
    return AnswerService(embedder, store, engine, config)


def index_passage(store: SQLiteVectorStore, embedder: HashingEmbedder, tmp_path: Path) -> None:
    fragment = FragmentRecord(
        sequence_index=0, text=PASSAGE, token_count=6, embedding=embedder.embed_query(PASSAGE)
    )
    store.replace_document(make_document(tmp_path / "report.txt"), [fragment])


class TestAnswer:
    """End-to-end answering with fakes."""

    def test_empty_corpus(self, store, embedder) -> None:
        report = build_service(store, embedder).answer("anything")

        assert report.answer == NO_RESULTS_ANSWER
        assert report.sources == []
        assert report.total_sources_found == 0
        assert report.found_relevant_documents is False
        assert report.average_score == 0.0

    def test_answer_with_sources(self, store, embedder, tmp_path: Path) -> None:
        index_passage(store, embedder, tmp_path)
        model = ScriptedLanguageModel(["Revenue", "grew", "[Document", "1]."])

        report = build_service(store, embedder, model).answer(f"  {PASSAGE}  ")

        assert report.query == PASSAGE
        assert report.answer == "Revenue grew [Document 1]."
        assert report.tokens_used == 4
        assert report.found_relevant_documents is True
        assert report.total_sources_found == 1
        (source,) = report.sources
        assert source.file_name == "report.txt"
        assert source.excerpt == PASSAGE
        assert source.sequence_index == 0
        assert report.average_score == pytest.approx(source.score)
        assert source.score == pytest.approx(1.0, abs=1e-5)

    def test_contexts_reach_the_prompt(self, store, embedder, tmp_path: Path) -> None:
        index_passage(store, embedder, tmp_path)
        model = ScriptedLanguageModel(["ok"])

        build_service(store, embedder, model).answer(PASSAGE)

        prompt_ids = model.calls[0]
        assert model.decode(prompt_ids).count("[Document 1]") == 1

    def test_blank_query_rejected(self, store, embedder) -> None:
        with pytest.raises(ValidationError):
            build_service(store, embedder).answer("   ")

    def test_empty_generation(self, store, embedder, tmp_path: Path) -> None:
        index_passage(store, embedder, tmp_path)

        report = build_service(store, embedder, ScriptedLanguageModel([])).answer(PASSAGE)

        assert report.answer == EMPTY_GENERATION_ANSWER

    def test_generation_failure_falls_back_to_excerpts(self, store, embedder, tmp_path: Path) -> None:
        index_passage(store, embedder, tmp_path)
        model = ScriptedLanguageModel()
        model.fail_with = RuntimeError("model crashed")

        report = build_service(store, embedder, model).answer(PASSAGE)

        assert report.answer.startswith("Based on the search for")
        assert PASSAGE in report.answer
        assert report.tokens_used == 0
        assert report.found_relevant_documents is True

    def test_generation_failure_propagates_without_fallback(
        self, store, embedder, tmp_path: Path
    ) -> None:
        index_passage(store, embedder, tmp_path)
        model = ScriptedLanguageModel()
        model.fail_with = RuntimeError("model crashed")
        service = build_service(store, embedder, model, generation_fallback=False)

        with pytest.raises(GenerationError):
            service.answer(PASSAGE)

    def test_search_is_recorded(self, store, embedder) -> None:
        service = build_service(store, embedder)

        service.answer("first question")
        service.answer("second question")

        stats = service.statistics()
        assert stats.recent_searches == ["second question", "first question"]

    def test_history_failure_does_not_break_answer(self, store, embedder) -> None:
        service = build_service(store, embedder)

        with patch.object(store, "record_search", side_effect=sqlite3.OperationalError("locked")):
            report = service.answer("anything")

        assert report.answer == NO_RESULTS_ANSWER

    @pytest.mark.parametrize(
        ("report_format", "marker"),
        [
            (ReportFormat.MARKDOWN, "# Search Report"),
            (ReportFormat.HTML, "<h1>Search Report</h1>"),
            (ReportFormat.PLAINTEXT, "SEARCH REPORT"),
        ],
    )
    def test_formatted_report(self, store, embedder, tmp_path: Path, report_format, marker) -> None:
        index_passage(store, embedder, tmp_path)

        report = build_service(store, embedder, ScriptedLanguageModel(["Yes."])).answer(
            PASSAGE, include_report=True, report_format=report_format
        )

        assert report.report_format == report_format
        assert marker in report.formatted_report
        assert "report.txt" in report.formatted_report

    def test_no_report_by_default(self, store, embedder) -> None:
        report = build_service(store, embedder).answer("anything")

        assert report.report_format is None
        assert report.formatted_report is None


class TestClarifyingQuestions:
    def test_returns_questions(self, store, embedder) -> None:
        model = ScriptedLanguageModel(["Which", "year?\n2.", "Which", "team?"])

        questions = build_service(store, embedder, model).clarifying_questions("results")

        assert questions == ["Which year?", "Which team?"]

    def test_blank_query_rejected(self, store, embedder) -> None:
        with pytest.raises(ValidationError):
            build_service(store, embedder).clarifying_questions("")
