"""Command line interface for docsref."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from docsref.cache import TwoTierCache
from docsref.config import DEFAULT_SOURCES, AppConfig
from docsref.errors import DocsrefError, InvalidSearchArgumentsError, UnknownSourceError
from docsref.index.search import DocsSearchService, build_registry

console = Console()
app = typer.Typer(help="docsref - local keyword search for documentation corpora")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _make_config(root: Optional[Path], cache_dir: Optional[Path]) -> AppConfig:
    config = AppConfig(docs_root=root)
    if cache_dir is not None:
        config.cache_dir = cache_dir
    return config


def _get_service(config: AppConfig, source: str) -> DocsSearchService:
    registry = build_registry(config)
    try:
        return registry.get(source)
    except UnknownSourceError as exc:
        raise typer.BadParameter(
            f"{exc.message}. Available: {', '.join(registry.names())}"
        ) from exc


@app.command()
def sources() -> None:
    """List the configured documentation sources."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source")
    table.add_column("Directory")
    table.add_column("Categories")
    for source in DEFAULT_SOURCES:
        table.add_row(source.name, str(source.docs_dir), ", ".join(source.categories))
    console.print(table)


def _print_index_summary(service: DocsSearchService) -> None:
    if service.chunk_counts:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Category")
        table.add_column("Chunks", justify="right")
        for category, chunks in sorted(service.chunk_counts.items()):
            table.add_row(category, str(chunks))
        console.print(table)
    console.print(f"Entries: {len(service.builder)} ({service.builder.index_path})")


@app.command()
def index(
    source: Optional[str] = typer.Argument(None, help="Documentation source to index (default: all)"),
    root: Path = typer.Option(None, "--root", help="Directory holding the documentation checkouts"),
    cache_dir: Path = typer.Option(None, "--cache-dir", help="Index and query cache directory"),
    rebuild: bool = typer.Option(False, "--rebuild", help="Ignore any saved index"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Load or build the search index of one or every documentation source."""
    _setup_logging(verbose)
    config = _make_config(root, cache_dir)

    if source is None:
        registry = build_registry(config)
        console.print(f"Indexing {len(registry.names())} sources from {config.docs_root}...")
        failures = asyncio.run(registry.initialize_all(rebuild=rebuild))
        for service in registry:
            if service.name in failures:
                console.print(f"[red]{service.source.label}: {failures[service.name]}[/red]")
            else:
                console.print(f"[bold]{service.source.label}[/bold]")
                _print_index_summary(service)
        if failures:
            raise typer.Exit(code=1)
        return

    service = _get_service(config, source)
    console.print(f"Indexing [bold]{service.source.label}[/bold] from {service.processor.base_path}...")
    try:
        if rebuild:
            asyncio.run(service.reindex())
        else:
            loaded = asyncio.run(service.initialize())
            if loaded:
                console.print("Loaded existing index.")
    except DocsrefError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    _print_index_summary(service)


@app.command()
def search(
    source: str = typer.Argument(..., help="Documentation source to search"),
    query: str = typer.Argument(..., help="Query text"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Restrict to one category"),
    version: Optional[str] = typer.Option(None, "--version", help="Documentation version"),
    root: Path = typer.Option(None, "--root", help="Directory holding the documentation checkouts"),
    cache_dir: Path = typer.Option(None, "--cache-dir", help="Index and query cache directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a keyword search."""
    _setup_logging(verbose)
    config = _make_config(root, cache_dir)
    service = _get_service(config, source)

    try:
        results = asyncio.run(service.search(query, category=category, version=version))
    except InvalidSearchArgumentsError as exc:
        raise typer.BadParameter(exc.message) from exc
    except DocsrefError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    if not results:
        scope = f" ({category})" if category else ""
        console.print(f"[yellow]No matches found for \"{query}\"{scope}.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Path")
    table.add_column("Match")

    for result in results:
        table.add_row(f"{result.score:.4f}", result.title, result.category, result.path, result.snippet)

    console.print(table)


@app.command("clear-cache")
def clear_cache(
    root: Path = typer.Option(None, "--root", help="Directory holding the documentation checkouts"),
    cache_dir: Path = typer.Option(None, "--cache-dir", help="Index and query cache directory"),
) -> None:
    """Remove cached query results."""
    config = _make_config(root, cache_dir)
    cache = TwoTierCache(config.query_cache_dir(), config.cache)
    asyncio.run(cache.clear())
    console.print(f"Cleared query cache at {cache.directory}.")
