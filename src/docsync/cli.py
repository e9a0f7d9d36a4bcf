"""Command line interface for docsync."""

from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docsync.config import AppConfig
from docsync.embedding.encoder import build_provider
from docsync.embedding.tokenizer import TiktokenTokenizer
from docsync.errors import DocSyncError, SetupError
from docsync.index.reconciler import Reconciler
from docsync.index.search import Searcher
from docsync.index.storage import SQLiteStore
from docsync.ingestion.sources import discover_sources


console = Console()
app = typer.Typer(help="docsync - keep a docs embedding index in sync with Markdown sources")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_tokenizer(encoding_name: str) -> TiktokenTokenizer:
    tokenizer = TiktokenTokenizer(encoding_name)
    try:
        tokenizer.encoding
    except Exception as exc:
        raise SetupError(f"Unable to load tokenizer '{encoding_name}': {exc}") from exc
    return tokenizer


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[red]{escape(str(exc))}[/red]")
    return typer.Exit(code=1)


@app.command()
def sync(
    docs_root: Path = typer.Argument(
        AppConfig().docs_root, envvar="DOCSYNC_DOCS_ROOT", help="Root folder of the docs."
    ),
    db: Path = typer.Option(None, "--db", envvar="DOCSYNC_DB", help="SQLite database path"),
    provider: str = typer.Option(AppConfig().provider, help="Embedding provider: local or openai"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    openai_key: Optional[str] = typer.Option(
        None, "--openai-key", envvar="OPENAI_API_KEY", help="OpenAI API key"
    ),
    refresh: bool = typer.Option(False, "--refresh", help="Re-generate every page"),
    ignore: Optional[List[str]] = typer.Option(
        None, "--ignore", help="Logical page path to skip (repeatable)"
    ),
    chunk_tokens: int = typer.Option(AppConfig().chunk_tokens, help="Chunk size in tokens"),
    overlap: int = typer.Option(AppConfig().overlap_tokens, help="Chunk overlap in tokens"),
    workers: int = typer.Option(AppConfig().embed_workers, help="Parallel embedding calls per page"),
    timeout: float = typer.Option(AppConfig().timeout, help="Provider request timeout (seconds)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Generate embeddings for new or changed pages and remove deleted ones."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        docs_root=docs_root,
        provider=provider,
        model_name=model,
        openai_api_key=openai_key,
        timeout=timeout,
        chunk_tokens=chunk_tokens,
        overlap_tokens=overlap,
        ignored_paths=tuple(ignore) if ignore else AppConfig().ignored_paths,
        refresh=refresh,
        embed_workers=workers,
    )

    try:
        config.validate()
        tokenizer = _load_tokenizer(config.encoding_name)
        resolved_db = config.resolve_db_path(Path.cwd())
        _ensure_db_parent(resolved_db)
        embedder = build_provider(config.embedding_config())
        store = SQLiteStore(resolved_db, dimension=embedder.dimension)
    except DocSyncError as exc:
        raise _fail(exc)

    cancel_event = threading.Event()

    def _request_cancel(signum, frame) -> None:  # pragma: no cover - signal path
        console.print("[yellow]Stopping after the current page...[/yellow]")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        sources = list(
            discover_sources(
                config.docs_root,
                tokenizer=tokenizer,
                ignored_paths=config.ignored_paths,
                chunk_tokens=config.chunk_tokens,
                overlap_tokens=config.overlap_tokens,
            )
        )
        console.print(f"Discovered {len(sources)} pages")

        reconciler = Reconciler(
            embedder, store, refresh=config.refresh, embed_workers=config.embed_workers
        )
        stats = reconciler.run(sources, cancel_event=cancel_event)
    except DocSyncError as exc:
        raise _fail(exc)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        store.close()

    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"unchanged: {stats.unchanged}, failed: {stats.failed}, removed: {stats.removed}"
    )
    for path, message in stats.failures:
        console.print(f"[yellow]Failed:[/yellow] {path} ({message})")
    if stats.cancelled:
        console.print("[yellow]Sync cancelled before all pages were processed.[/yellow]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", envvar="DOCSYNC_DB", help="SQLite database path"),
    provider: str = typer.Option(AppConfig().provider, help="Embedding provider: local or openai"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    openai_key: Optional[str] = typer.Option(
        None, "--openai-key", envvar="OPENAI_API_KEY", help="OpenAI API key"
    ),
    top_k: int = typer.Option(10, min=1, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search over the stored page sections."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        provider=provider,
        model_name=model,
        openai_api_key=openai_key,
    )
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    try:
        embedder = build_provider(config.embedding_config())
        store = SQLiteStore(resolved_db, dimension=embedder.dimension)
    except DocSyncError as exc:
        raise _fail(exc)

    try:
        results = Searcher(embedder, store).search(query, top_k=top_k)
    except DocSyncError as exc:
        raise _fail(exc)
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Page")
    table.add_column("Heading")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        table.add_row(f"{result.score:.4f}", result.anchor, result.heading or "", snippet[:180])

    console.print(table)
