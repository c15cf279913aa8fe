"""Command line interface for DocSage."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from docsage.config import AppConfig
from docsage.errors import ValidationError
from docsage.index.search import Retriever
from docsage.models import IndexingProgress, ReportFormat
from docsage.runtime import Runtime

console = Console()
app = typer.Typer(help="DocSage - ask questions about your local documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _require_db(config: AppConfig) -> Path:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return resolved_db


@app.command()
def index(
    root: Path = typer.Argument(
        Path.cwd(), help="Folder to scan recursively.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    chunk_chars: int = typer.Option(AppConfig().chunk_chars, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index every supported document under a folder."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        root_path=root,
        model_name=model,
        chunk_chars=chunk_chars,
        overlap=overlap,
    )

    runtime = Runtime(config)
    _ensure_db_parent(runtime.db_path)
    store = runtime.open_store()
    try:
        indexer = runtime.indexer(store)
        paths = indexer.discover()
        if not paths:
            console.print("[yellow]No supported documents found.[/yellow]")
            return

        console.print(f"Indexing into [bold]{runtime.db_path}[/bold]...")
        with Progress(
            TextColumn("{task.description}"), BarColumn(), TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Indexing", total=len(paths))

            def report(update: IndexingProgress) -> None:
                progress.update(task, completed=update.processed, description=update.status)

            stats = indexer.index_paths(paths, progress_callback=report)
    finally:
        store.close()
        runtime.close()

    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}"
    )


@app.command("index-file")
def index_file(
    path: Path = typer.Argument(..., help="Document to index.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index (or re-index) a single document."""
    _setup_logging(verbose)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        success = runtime.indexer(store).index_document(path)
    finally:
        store.close()
        runtime.close()

    if not success:
        console.print(f"[red]Failed to index {path}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Indexed [bold]{path}[/bold]")


@app.command()
def check(
    path: Path = typer.Argument(..., help="Document to check.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Tell whether a document changed since it was indexed."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    _require_db(config)
    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        needed = runtime.indexer(store).needs_reindexing(path)
    finally:
        store.close()
        runtime.close()
    console.print("needs reindexing" if needed else "up to date")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    top_k: int = typer.Option(AppConfig().top_k, help="Number of results to display"),
    threshold: float = typer.Option(0.0, help="Minimum similarity"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the fragments most similar to a query, without generating an answer."""
    _setup_logging(verbose)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    _require_db(config)

    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        results = Retriever(store, runtime.embedder).search_text(
            query, top_k=top_k, threshold=threshold
        )
    finally:
        store.close()
        runtime.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Fragment")
    table.add_column("Snippet")
    for result in results:
        snippet = result.fragment.text.replace("\n", " ")
        table.add_row(
            f"{result.score:.4f}",
            str(result.document.path),
            str(result.fragment.sequence_index),
            snippet[:180],
        )
    console.print(table)


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    report: bool = typer.Option(False, "--report", help="Print a formatted report"),
    report_format: ReportFormat = typer.Option(ReportFormat.MARKDOWN, "--format", help="Report format"),
    top_k: int = typer.Option(AppConfig().top_k, help="Fragments given to the model"),
    threshold: float = typer.Option(AppConfig().similarity_threshold, help="Minimum similarity"),
    max_tokens: int = typer.Option(AppConfig().max_response_tokens, help="Answer token budget"),
    llm_model: str = typer.Option(AppConfig().llm_model_name, help="Causal language model name"),
    compact: bool = typer.Option(False, "--compact", help="Short prompt for small context windows"),
    seed: Optional[int] = typer.Option(None, help="Seed for reproducible sampling"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question from the indexed documents."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        llm_model_name=llm_model,
        top_k=top_k,
        similarity_threshold=threshold,
        max_response_tokens=max_tokens,
        compact_prompt=compact,
        seed=seed,
    )
    _require_db(config)

    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        result = runtime.answer_service(store).answer(
            query, include_report=report, report_format=report_format
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()
        runtime.close()

    if result.formatted_report is not None:
        console.print(result.formatted_report, markup=False)
        return

    console.print(result.answer, markup=False)
    if not result.found_relevant_documents:
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Fragment")
    for number, source in enumerate(result.sources, start=1):
        table.add_row(str(number), f"{source.score:.4f}", source.path, str(source.sequence_index))
    console.print(table)


@app.command()
def clarify(
    query: str = typer.Argument(..., help="Ambiguous question"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    llm_model: str = typer.Option(AppConfig().llm_model_name, help="Causal language model name"),
) -> None:
    """Suggest questions that would narrow down a vague query."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, llm_model_name=llm_model)
    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        questions = runtime.answer_service(store).clarifying_questions(query)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()
        runtime.close()

    if not questions:
        console.print("[yellow]No clarifying questions generated.[/yellow]")
        return
    for number, question in enumerate(questions, start=1):
        console.print(f"{number}. {question}", markup=False)


@app.command()
def stats(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show what the index contains."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    _require_db(config)
    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        statistics = store.get_statistics()
    finally:
        store.close()
        runtime.close()

    console.print(f"Documents: {statistics.document_count}")
    console.print(f"Fragments: {statistics.fragment_count}")
    console.print(f"Fragments per document: {statistics.avg_fragments_per_document:.1f}")
    console.print(f"Recent searches: {statistics.recent_search_count}")
    last = statistics.last_indexed_at.isoformat() if statistics.last_indexed_at else "never"
    console.print(f"Last indexed: {last}")

    if statistics.file_types:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Type")
        table.add_column("Documents")
        table.add_column("Bytes")
        for entry in statistics.file_types:
            table.add_row(entry.file_type, str(entry.count), str(entry.total_size_bytes))
        console.print(table)


@app.command()
def prune(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove documents that no longer exist on disk."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    runtime = Runtime(config)
    store = runtime.open_store()
    try:
        removed = store.remove_missing_files()
    finally:
        store.close()
        runtime.close()
    console.print(f"Removed {removed} orphaned documents.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from docsage.web.app import app as web_app

    console.print(f"Starting DocSage API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
