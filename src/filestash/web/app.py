"""FastAPI application exposing the FileStash scan engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from filestash.config import AppConfig
from filestash.errors import (
    InvalidCancelRequestError,
    PathNotFoundError,
    ScanNotADirectoryError,
    ScanNotFoundError,
)
from filestash.index.scanner import ScanOrchestrator
from filestash.index.search import MAX_PAGE_SIZE, Searcher
from filestash.index.storage import SQLiteIndexStore
from filestash.index.tree import tree_to_dict

LOGGER = logging.getLogger(__name__)

router = APIRouter()


class ScanPayload(BaseModel):
    roots: List[str]
    concurrency: int = Field(default_factory=lambda: AppConfig().concurrency, ge=1)
    fingerprint: bool = True


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _store(request: Request) -> SQLiteIndexStore:
    return request.app.state.store


def _orchestrator(request: Request) -> ScanOrchestrator:
    return request.app.state.orchestrator


@router.post("/scan")
async def start_scan(payload: ScanPayload, request: Request) -> dict[str, Any]:
    roots = [root.strip() for root in payload.roots if root.strip()]
    if not roots:
        raise HTTPException(status_code=400, detail="No path provided")
    if any("\0" in root for root in roots):
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")

    try:
        scan_id = await _orchestrator(request).start(
            roots, payload.concurrency, payload.fingerprint
        )
    except PathNotFoundError as exc:
        raise HTTPException(
            status_code=404, detail={"error": "PathNotFound", "path": exc.path}
        ) from exc
    except ScanNotADirectoryError as exc:
        raise HTTPException(
            status_code=400, detail={"error": "NotADirectory", "path": exc.path}
        ) from exc

    return {"scan_id": scan_id, "roots": roots}


@router.get("/scan/{scan_id}")
async def scan_progress(scan_id: str, request: Request) -> dict[str, Any]:
    try:
        return _orchestrator(request).progress(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"error": "ScanNotFound"}) from exc


@router.post("/scan/{scan_id}/cancel")
async def cancel_scan(scan_id: str, request: Request) -> dict[str, Any]:
    try:
        snapshot = _orchestrator(request).request_cancel(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"error": "ScanNotFound"}) from exc
    except InvalidCancelRequestError as exc:
        raise HTTPException(
            status_code=409,
            detail={"error": "InvalidCancelRequest", "current_status": exc.current_status},
        ) from exc
    return {"status": "ok", "scan": snapshot}


@router.get("/scans")
async def list_scans(request: Request) -> dict[str, Any]:
    return {"scans": _orchestrator(request).jobs()}


@router.get("/history")
def scan_history(request: Request, limit: int | None = None) -> dict[str, Any]:
    entries = _orchestrator(request).history(limit)
    return {"history": [entry.to_dict() for entry in entries]}


@router.get("/files")
def list_files(
    request: Request,
    prefix: str | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> dict[str, Any]:
    page = Searcher(_store(request)).search(search, prefix=prefix, skip=skip, limit=limit)
    return {
        "files": [record.to_dict() for record in page.records],
        "total": page.total,
        "skip": page.skip,
        "limit": page.limit,
        "max_limit": MAX_PAGE_SIZE,
    }


@router.delete("/files/cleanup")
def cleanup_missing_files(request: Request) -> dict[str, Any]:
    """Remove records whose files no longer exist on disk."""
    removed_count = _store(request).remove_missing_files()
    return {"status": "ok", "removed_count": removed_count}


@router.get("/files/{record_id:int}")
def get_file(record_id: int, request: Request) -> dict[str, Any]:
    record = _store(request).get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record with ID {record_id} not found")
    return record.to_dict()


@router.delete("/files/{record_id:int}")
def delete_file_record(record_id: int, request: Request) -> dict[str, Any]:
    """Delete an index record. The file on disk is left alone."""
    if not _store(request).delete_record(record_id):
        raise HTTPException(status_code=404, detail=f"Record with ID {record_id} not found")
    return {"status": "ok", "deleted_id": record_id}


@router.get("/tree")
def file_tree(
    request: Request, prefix: str | None = None, search: str | None = None
) -> dict[str, Any]:
    nodes = Searcher(_store(request)).tree(search, prefix=prefix)
    return {"nodes": [tree_to_dict(node) for node in nodes]}


@router.get("/stats")
def index_stats(request: Request) -> dict[str, Any]:
    return _store(request).get_stats()


@router.post("/clear")
def clear_index(request: Request) -> dict[str, Any]:
    removed = _store(request).clear()
    return {"status": "ok", "removed_count": removed}


def create_app(db_path: Path | None = None) -> FastAPI:
    """Build the application; the store is opened when the app starts."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        config = AppConfig()
        resolved_db = _resolve_db_path(db_path)
        _ensure_db_parent(resolved_db)
        store = SQLiteIndexStore(resolved_db, history_limit=config.history_limit)
        orchestrator = ScanOrchestrator(store, stat_concurrency=config.stat_concurrency)
        app.state.store = store
        app.state.orchestrator = orchestrator
        LOGGER.info("Using index database %s", resolved_db)
        try:
            yield
        finally:
            await orchestrator.shutdown()
            store.close()

    application = FastAPI(title="FileStash", version="0.1.0", lifespan=lifespan)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(router)
    return application


app = create_app()
