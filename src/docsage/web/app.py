"""FastAPI application exposing indexing and question answering over HTTP."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from docsage.config import AppConfig
from docsage.errors import ValidationError
from docsage.models import IndexingProgress, ReportFormat
from docsage.runtime import Runtime

LOGGER = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = Runtime(AppConfig())
    try:
        yield
    finally:
        app.state.runtime.close()
        app.state.runtime = None


app = FastAPI(title="DocSage API", version=API_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class IndexAllPayload(BaseModel):
    root: str | None = None


class DocumentPayload(BaseModel):
    file_path: str = ""


class QueryPayload(BaseModel):
    query: str = ""
    include_report: bool = False
    report_format: ReportFormat = ReportFormat.MARKDOWN


class ClarifyPayload(BaseModel):
    query: str = ""


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def _require_text(value: str, what: str) -> str:
    value = value.strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{what} cannot be empty")
    return value


def _log_progress(update: IndexingProgress) -> None:
    LOGGER.info("Indexing progress: %s", update.status)


def _run_index_all(runtime: Runtime, root: Path | None) -> int:
    store = runtime.open_store()
    try:
        return runtime.indexer(store, root_path=root).index_all(progress_callback=_log_progress)
    finally:
        store.close()


def _run_index_document(runtime: Runtime, path: Path) -> bool:
    store = runtime.open_store()
    try:
        return runtime.indexer(store).index_document(path)
    finally:
        store.close()


def _run_check(runtime: Runtime, path: Path) -> bool:
    store = runtime.open_store()
    try:
        return runtime.indexer(store).needs_reindexing(path)
    finally:
        store.close()


def _run_query(runtime: Runtime, payload: QueryPayload) -> dict[str, Any]:
    store = runtime.open_store()
    try:
        report = runtime.answer_service(store).answer(
            payload.query,
            include_report=payload.include_report,
            report_format=payload.report_format,
        )
    finally:
        store.close()
    return asdict(report)


def _run_clarify(runtime: Runtime, query: str) -> List[str]:
    store = runtime.open_store()
    try:
        return runtime.answer_service(store).clarifying_questions(query)
    finally:
        store.close()


def _run_statistics(runtime: Runtime) -> dict[str, Any]:
    store = runtime.open_store()
    try:
        return asdict(store.get_statistics())
    finally:
        store.close()


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {
        "status": "Healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
    }


@app.post("/api/indexing/index-all")
async def index_all(
    payload: IndexAllPayload | None = None, runtime: Runtime = Depends(get_runtime)
) -> dict[str, Any]:
    root = None
    if payload is not None and payload.root and payload.root.strip():
        root = Path(payload.root.strip()).expanduser().resolve()
        if not root.is_dir():
            raise HTTPException(status_code=400, detail=f"Folder not found: {payload.root}")

    LOGGER.info("Starting document indexing")
    try:
        count = await asyncio.to_thread(_run_index_all, runtime, root)
    except Exception as exc:
        LOGGER.exception("Indexing failed")
        raise HTTPException(status_code=500, detail=f"Indexing failed: {exc}") from exc

    return {
        "success": True,
        "documents_processed": count,
        "message": f"Successfully indexed {count} documents",
    }


@app.post("/api/indexing/index-document")
async def index_document(
    payload: DocumentPayload, runtime: Runtime = Depends(get_runtime)
) -> dict[str, Any]:
    path = Path(_require_text(payload.file_path, "File path")).expanduser()
    try:
        success = await asyncio.to_thread(_run_index_document, runtime, path)
    except Exception as exc:
        LOGGER.exception("Error indexing document: %s", path)
        raise HTTPException(status_code=500, detail=f"Error: {exc}") from exc

    return {
        "success": success,
        "documents_processed": 1 if success else 0,
        "message": "Document indexed successfully" if success else "Failed to index document",
    }


@app.post("/api/indexing/check-reindex")
async def check_reindex(
    payload: DocumentPayload, runtime: Runtime = Depends(get_runtime)
) -> dict[str, Any]:
    raw_path = _require_text(payload.file_path, "File path")
    path = Path(raw_path).expanduser()
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"File not found: {raw_path}")
    needed = await asyncio.to_thread(_run_check, runtime, path)
    return {"file_path": raw_path, "needs_reindexing": needed}


@app.post("/api/search/query")
async def query(payload: QueryPayload, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    payload.query = _require_text(payload.query, "Query")
    LOGGER.info("Received search query: %s", payload.query)
    try:
        return await asyncio.to_thread(_run_query, runtime, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/search/clarify")
async def clarify(payload: ClarifyPayload, runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    text = _require_text(payload.query, "Query")
    try:
        questions = await asyncio.to_thread(_run_clarify, runtime, text)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"query": text, "questions": questions}


@app.get("/api/search/statistics")
async def statistics(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    return await asyncio.to_thread(_run_statistics, runtime)
