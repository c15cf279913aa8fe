"""Tests for CLI commands."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from typer.testing import CliRunner

from docsage.cli import _ensure_db_parent, _setup_logging, app
from docsage.errors import ValidationError
from docsage.index.indexer import IndexStats
from docsage.models import (
    AnswerReport,
    DatabaseStatistics,
    FileTypeStatistic,
    FragmentRecord,
    ReportFormat,
    SearchResult,
    SourceReference,
)

from conftest import make_document

runner = CliRunner()


@pytest.fixture
def runtime_cls():
    """Patch the Runtime so commands never load models."""
    with patch("docsage.cli.Runtime") as mock_cls:
        mock_cls.return_value.db_path = Path("unused.db")
        yield mock_cls


@pytest.fixture
def runtime(runtime_cls: MagicMock) -> MagicMock:
    return runtime_cls.return_value


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "docsage.db"
    path.touch()
    return path


def make_report(**overrides) -> AnswerReport:
    values = dict(
        query="what grew?",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        answer="Revenue grew.",
        sources=[
            SourceReference(
                file_name="q1.txt", path="/docs/q1.txt", excerpt="Revenue grew.", score=0.9, sequence_index=0
            )
        ],
        total_sources_found=1,
        average_score=0.9,
        found_relevant_documents=True,
    )
    values.update(overrides)
    return AnswerReport(**values)


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("docsage.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("docsage.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestEnsureDbParent:
    def test_creates_directory(self, tmp_path: Path) -> None:
        db = tmp_path / "subdir" / "test.db"

        _ensure_db_parent(db)

        assert db.parent.exists()


class TestIndexCommand:
    """Tests for the index command."""

    def test_no_documents_found(self, runtime: MagicMock, tmp_path: Path) -> None:
        runtime.indexer.return_value.discover.return_value = []

        result = runner.invoke(app, ["index", str(tmp_path), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "No supported documents found" in result.stdout
        runtime.open_store.return_value.close.assert_called_once()
        runtime.close.assert_called_once()

    def test_prints_counts(self, runtime: MagicMock, tmp_path: Path) -> None:
        doc = tmp_path / "a.txt"
        doc.write_text("hello")
        indexer = runtime.indexer.return_value
        indexer.discover.return_value = [doc]
        indexer.index_paths.return_value = IndexStats(inserted=1, skipped=2)

        result = runner.invoke(app, ["index", str(tmp_path), "--db", str(tmp_path / "t.db"), "-v"])

        assert result.exit_code == 0
        assert "Inserted: 1" in result.stdout
        assert "skipped: 2" in result.stdout

    def test_rejects_bad_chunking(self, runtime: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(
            app, ["index", str(tmp_path), "--chunk-chars", "100", "--overlap", "100"]
        )

        assert result.exit_code != 0
        runtime.open_store.assert_not_called()


class TestIndexFileCommand:
    def test_success(self, runtime: MagicMock, tmp_path: Path) -> None:
        doc = tmp_path / "a.txt"
        doc.write_text("hello")
        runtime.indexer.return_value.index_document.return_value = True

        result = runner.invoke(app, ["index-file", str(doc), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "Indexed" in result.stdout

    def test_failure_exit_code(self, runtime: MagicMock, tmp_path: Path) -> None:
        runtime.indexer.return_value.index_document.return_value = False

        result = runner.invoke(app, ["index-file", str(tmp_path / "a.txt"), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 1


class TestCheckCommand:
    def test_needs_reindexing(self, runtime: MagicMock, db_path: Path, tmp_path: Path) -> None:
        runtime.indexer.return_value.needs_reindexing.return_value = True

        result = runner.invoke(app, ["check", str(tmp_path / "a.txt"), "--db", str(db_path)])

        assert result.exit_code == 0
        assert "needs reindexing" in result.stdout

    def test_up_to_date(self, runtime: MagicMock, db_path: Path, tmp_path: Path) -> None:
        runtime.indexer.return_value.needs_reindexing.return_value = False

        result = runner.invoke(app, ["check", str(tmp_path / "a.txt"), "--db", str(db_path)])

        assert "up to date" in result.stdout


class TestSearchCommand:
    """Tests for the search command."""

    def test_database_not_found(self, runtime: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(app, ["search", "query", "--db", str(tmp_path / "missing.db")])

        assert result.exit_code == 2
        runtime.open_store.assert_not_called()

    @patch("docsage.cli.Retriever")
    def test_no_results(self, retriever_cls: MagicMock, runtime: MagicMock, db_path: Path) -> None:
        retriever_cls.return_value.search_text.return_value = []

        result = runner.invoke(app, ["search", "query", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "No matches found" in result.stdout

    @patch("docsage.cli.Retriever")
    def test_results_table(self, retriever_cls: MagicMock, runtime: MagicMock, db_path: Path) -> None:
        fragment = FragmentRecord(
            sequence_index=2, text="Revenue grew", token_count=2, embedding=np.zeros(4, dtype=np.float32)
        )
        retriever_cls.return_value.search_text.return_value = [
            SearchResult(fragment=fragment, document=make_document(Path("/d/q1.txt")), score=0.8765)
        ]

        result = runner.invoke(app, ["search", "query", "--db", str(db_path), "--top-k", "3"])

        assert result.exit_code == 0
        assert "0.8765" in result.stdout
        assert "Revenue grew" in result.stdout
        assert retriever_cls.return_value.search_text.call_args.kwargs["top_k"] == 3


class TestAskCommand:
    def test_prints_answer_and_sources(
        self, runtime_cls: MagicMock, runtime: MagicMock, db_path: Path
    ) -> None:
        runtime.answer_service.return_value.answer.return_value = make_report()

        result = runner.invoke(app, ["ask", "what grew?", "--db", str(db_path), "--seed", "3"])

        assert result.exit_code == 0
        assert "Revenue grew." in result.stdout
        assert "0.9000" in result.stdout
        config = runtime_cls.call_args.args[0]
        assert config.seed == 3
        assert config.db_path == db_path

    def test_no_sources(self, runtime: MagicMock, db_path: Path) -> None:
        runtime.answer_service.return_value.answer.return_value = make_report(
            answer="Nothing found.", sources=[], total_sources_found=0, found_relevant_documents=False
        )

        result = runner.invoke(app, ["ask", "what?", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Nothing found." in result.stdout

    def test_report_format(self, runtime: MagicMock, db_path: Path) -> None:
        service = runtime.answer_service.return_value
        service.answer.return_value = make_report(
            report_format=ReportFormat.PLAINTEXT, formatted_report="SEARCH REPORT\nbody"
        )

        result = runner.invoke(
            app, ["ask", "what grew?", "--db", str(db_path), "--report", "--format", "plaintext"]
        )

        assert result.exit_code == 0
        assert "SEARCH REPORT" in result.stdout
        assert service.answer.call_args.kwargs == {
            "include_report": True,
            "report_format": ReportFormat.PLAINTEXT,
        }

    def test_rejects_token_budget_over_context(self, runtime_cls: MagicMock, db_path: Path) -> None:
        result = runner.invoke(app, ["ask", "what?", "--db", str(db_path), "--max-tokens", "4096"])

        assert result.exit_code != 0
        runtime_cls.assert_not_called()

    def test_blank_query(self, runtime: MagicMock, db_path: Path) -> None:
        runtime.answer_service.return_value.answer.side_effect = ValidationError("Query cannot be empty")

        result = runner.invoke(app, ["ask", "  ", "--db", str(db_path)])

        assert result.exit_code == 2
        runtime.close.assert_called_once()


class TestClarifyCommand:
    def test_lists_questions(self, runtime: MagicMock, tmp_path: Path) -> None:
        runtime.answer_service.return_value.clarifying_questions.return_value = ["Which year?", "Which team?"]

        result = runner.invoke(app, ["clarify", "results", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "1. Which year?" in result.stdout
        assert "2. Which team?" in result.stdout

    def test_no_questions(self, runtime: MagicMock, tmp_path: Path) -> None:
        runtime.answer_service.return_value.clarifying_questions.return_value = []

        result = runner.invoke(app, ["clarify", "results", "--db", str(tmp_path / "t.db")])

        assert "No clarifying questions" in result.stdout


class TestStatsCommand:
    def test_prints_statistics(self, runtime: MagicMock, db_path: Path) -> None:
        runtime.open_store.return_value.get_statistics.return_value = DatabaseStatistics(
            document_count=2,
            fragment_count=5,
            avg_fragments_per_document=2.5,
            recent_search_count=1,
            last_indexed_at=None,
            file_types=[FileTypeStatistic(file_type="pdf", count=2, total_size_bytes=2048)],
        )

        result = runner.invoke(app, ["stats", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Documents: 2" in result.stdout
        assert "Fragments per document: 2.5" in result.stdout
        assert "Last indexed: never" in result.stdout
        assert "2048" in result.stdout


class TestPruneCommand:
    def test_missing_database(self, runtime: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(app, ["prune", "--db", str(tmp_path / "missing.db")])

        assert result.exit_code == 0
        assert "nothing to prune" in result.stdout
        runtime.open_store.assert_not_called()

    def test_removes_orphans(self, runtime: MagicMock, db_path: Path) -> None:
        runtime.open_store.return_value.remove_missing_files.return_value = 3

        result = runner.invoke(app, ["prune", "--db", str(db_path)])

        assert "Removed 3 orphaned documents" in result.stdout
