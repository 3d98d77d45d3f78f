"""Command line interface for FileStash."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from filestash.config import AppConfig
from filestash.errors import PathNotFoundError, ScanNotADirectoryError
from filestash.index.scanner import ScanOrchestrator
from filestash.index.search import Searcher
from filestash.index.storage import SQLiteIndexStore
from filestash.index.tree import DirectoryNode, TreeNode
from filestash.models import SCANNING

console = Console()
app = typer.Typer(help="FileStash - index local file trees into SQLite")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _resolve_db(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _open_existing_store(db: Path | None) -> SQLiteIndexStore:
    resolved_db = _resolve_db(db)
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return SQLiteIndexStore(resolved_db)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


async def _run_scan(
    orchestrator: ScanOrchestrator, roots: List[Path], concurrency: int, fingerprint: bool
) -> dict:
    scan_id = await orchestrator.start(roots, concurrency, fingerprint)
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Enumerating", total=None)
        while True:
            snapshot = orchestrator.progress(scan_id)
            if snapshot["total"]:
                progress.update(
                    task,
                    description="Indexing",
                    total=snapshot["total"],
                    completed=snapshot["processed"],
                )
            if snapshot["status"] != SCANNING:
                break
            await asyncio.sleep(0.1)
    return await orchestrator.wait(scan_id)


@app.command()
def scan(
    roots: List[Path] = typer.Argument(..., help="Directories to index."),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    concurrency: int = typer.Option(
        AppConfig().concurrency, "--concurrency", "-c", min=1, help="Concurrent chunk workers"
    ),
    fingerprint: bool = typer.Option(
        AppConfig().fingerprint, "--fingerprint/--no-fingerprint", help="Fingerprint file contents"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Scan one or more directories into the index."""
    _setup_logging(verbose)
    resolved_db = _resolve_db(db)
    _ensure_db_parent(resolved_db)

    store = SQLiteIndexStore(resolved_db)
    orchestrator = ScanOrchestrator(store, stat_concurrency=AppConfig().stat_concurrency)
    console.print(f"Indexing into [bold]{resolved_db}[/bold]...")
    try:
        result = asyncio.run(_run_scan(orchestrator, roots, concurrency, fingerprint))
    except (PathNotFoundError, ScanNotADirectoryError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()

    colour = {"completed": "green", "cancelled": "yellow"}.get(result["status"], "red")
    console.print(
        f"[{colour}]{result['status']}[/{colour}]: processed {result['processed']} "
        f"of {result['total']} items in {result['duration_ms']} ms"
    )
    for error in result["errors"]:
        console.print(f"[yellow]{error}[/yellow]")
    if result["status"] == "error":
        raise typer.Exit(code=1)


@app.command()
def search(
    text: Optional[str] = typer.Argument(None, help="Substring of name, path, extension or fingerprint"),
    prefix: Optional[str] = typer.Option(None, help="Only paths under this directory"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    skip: int = typer.Option(0, min=0, help="Records to skip"),
    limit: int = typer.Option(100, min=1, help="Records to display"),
) -> None:
    """List indexed records, directories first."""
    store = _open_existing_store(db)
    try:
        page = Searcher(store).search(text, prefix=prefix, skip=skip, limit=limit)
    finally:
        store.close()

    if not page.records:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Fingerprint")

    for record in page.records:
        size = "<DIR>" if record.is_directory else _format_size(record.size_bytes)
        table.add_row(record.full_path, size, record.modified_at or "", record.fingerprint or "")

    console.print(table)
    console.print(f"Showing {len(page.records)} of {page.total}")


def _add_branch(parent: Tree, node: TreeNode) -> None:
    label = node.name
    if isinstance(node, DirectoryNode):
        style = "bold blue" if node.in_index else "dim"
        branch = parent.add(f"[{style}]{label}/[/{style}]")
        for child in node.children.values():
            _add_branch(branch, child)
    else:
        suffix = f" [dim]{node.record.fingerprint}[/dim]" if node.record.fingerprint else ""
        parent.add(f"{label}{suffix}")


@app.command()
def tree(
    prefix: Optional[str] = typer.Option(None, help="Only paths under this directory"),
    search: Optional[str] = typer.Option(None, "--search", help="Substring filter"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show indexed records as a directory tree."""
    store = _open_existing_store(db)
    try:
        nodes = Searcher(store).tree(search, prefix=prefix)
    finally:
        store.close()

    if not nodes:
        console.print("[yellow]Index is empty.[/yellow]")
        return

    root = Tree("[bold]Index[/bold]")
    for node in nodes:
        _add_branch(root, node)
    console.print(root)


@app.command()
def stats(db: Path = typer.Option(None, "--db", help="SQLite database path")) -> None:
    """Show index statistics."""
    store = _open_existing_store(db)
    try:
        data = store.get_stats()
    finally:
        store.close()

    console.print(
        f"Files: {data['total_files']}, directories: {data['total_directories']}, "
        f"size: {_format_size(data['total_size_bytes'])}, "
        f"fingerprinted: {data['fingerprinted_files']}"
    )


@app.command()
def history(
    limit: int = typer.Option(20, min=1, help="Entries to display"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show recent scans."""
    store = _open_existing_store(db)
    try:
        entries = store.list_history(limit)
    finally:
        store.close()

    if not entries:
        console.print("[yellow]No scans recorded.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Scan")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Roots")

    for entry in entries:
        table.add_row(
            entry.scan_id,
            entry.status,
            f"{entry.processed}/{entry.total}",
            str(entry.error_count),
            f"{entry.duration_ms} ms",
            ", ".join(entry.roots),
        )
    console.print(table)


@app.command()
def prune(db: Path = typer.Option(None, "--db", help="SQLite database path")) -> None:
    """Remove records whose files no longer exist on disk."""
    resolved_db = _resolve_db(db)
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    store = SQLiteIndexStore(resolved_db)
    try:
        removed = store.remove_missing_files()
    finally:
        store.close()
    console.print(f"Removed {removed} orphaned records.")


@app.command()
def clear(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every record from the index."""
    store = _open_existing_store(db)
    try:
        if not yes and not typer.confirm("Delete all indexed records?"):
            console.print("Aborted.")
            return
        removed = store.clear()
    finally:
        store.close()
    console.print(f"Removed {removed} records.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Start the web API."""
    try:
        import uvicorn
    except ImportError as exc:
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from filestash.web.app import create_app

    resolved_db = _resolve_db(db)
    _ensure_db_parent(resolved_db)
    console.print(f"Starting web API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        create_app(resolved_db),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
