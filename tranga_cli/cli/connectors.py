"""Tranga connectors command - Inspect connectors, search and download publications."""

from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterator, List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from tranga_cli.cli.error_handler import handle_errors
from tranga_cli.cli.output import print_json, print_key_value, print_result, print_table
from tranga_cli.config import TrangaConfig, load_config
from tranga_cli.connectors.registry import ConnectorRegistry
from tranga_cli.download.client import DownloadClient
from tranga_cli.download.rate_limiter import RateLimiter
from tranga_cli.exceptions import NotFoundError, ValidationError

app = typer.Typer(help="List source connectors, search and download publications.")
console = Console()


def _config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    )


@contextmanager
def _open_registry(config: TrangaConfig) -> Iterator[ConnectorRegistry]:
    """Discover connectors wired to a rate-limited client closed on exit."""
    client = DownloadClient(
        RateLimiter(config.rate_limits.requests_per_minute),
        timeout=config.rate_limits.request_timeout,
        user_agent=config.rate_limits.user_agent,
        max_attempts=config.rate_limits.max_attempts or None,
    )
    with client:
        registry = ConnectorRegistry(
            download_client=client,
            download_location=config.library_dir,
            connector_dirs=config.connectors.connector_dirs,
            settings=config.connectors.connector_settings,
            enabled=config.connectors.enabled_connectors,
            disabled=config.connectors.disabled_connectors,
        )
        registry.discover()
        yield registry


def _is_json(json_output: bool) -> bool:
    from tranga_cli.main import is_json

    return json_output or is_json()


@app.command("list")
@handle_errors
def list_connectors(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """List installed source connectors.

    Example:
        tranga connectors list
    """
    config = load_config(config_file)
    with _open_registry(config) as registry:
        infos = [connector.info for connector in registry.connectors]

    if _is_json(json_output):
        print_json([asdict(info) for info in infos])
        return

    if not infos:
        console.print("[yellow]No connectors installed[/yellow]")
        console.print(
            "[dim]Install a connector package or add a connector directory with "
            "'tranga config set connectors.connector_dirs <path>'[/dim]"
        )
        return

    rows = [
        {
            "name": info.name,
            "display_name": info.display_name,
            "version": info.version,
            "languages": ", ".join(info.languages),
            "base_url": info.base_url,
        }
        for info in infos
    ]
    print_table(
        rows,
        ["name", "display_name", "version", "languages", "base_url"],
        title="Connectors",
        column_styles={"name": "cyan"},
    )


@app.command("info")
@handle_errors
def connector_info(
    name: str = typer.Argument(..., help="Connector name."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Show details of one connector.

    Example:
        tranga connectors info MangaDex
    """
    config = load_config(config_file)
    with _open_registry(config) as registry:
        connector = registry.require(name)
        info = connector.info
        issues = connector.validate_config()

    print_key_value(
        {
            "Name": info.name,
            "Display name": info.display_name,
            "Version": info.version,
            "Description": info.description or None,
            "Base URL": info.base_url or None,
            "Languages": ", ".join(info.languages) or None,
            "Config": "OK" if not issues else "; ".join(issues),
        },
        title=info.display_name,
    )


@app.command("search")
@handle_errors
def search(
    name: str = typer.Argument(..., help="Connector name."),
    query: str = typer.Argument("", help="Title to search for; empty lists everything."),
    limit: int = typer.Option(25, "--limit", "-n", help="Maximum results to show.", min=1),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Search a connector for publications.

    The publication ID shown is what 'tranga jobs add download-new-chapters'
    expects.

    Example:
        tranga connectors search MangaDex "Kimetsu no Yaiba"
    """
    config = load_config(config_file)
    with _open_registry(config) as registry:
        connector = registry.require(name)
        with console.status(f"Searching {connector.name}..."):
            publications = connector.fetch_publication_list(query)

    publications = publications[:limit]

    if _is_json(json_output):
        print_json([publication.to_dict() for publication in publications])
        return

    if not publications:
        console.print(f"[yellow]No publications found for '{query}'[/yellow]")
        return

    rows = [
        {
            "id": publication.publication_id,
            "title": publication.sort_name,
            "year": publication.year,
            "status": publication.status,
            "authors": ", ".join(publication.authors),
        }
        for publication in publications
    ]
    print_table(
        rows,
        ["id", "title", "year", "status", "authors"],
        title=f"{connector.name}: {query or 'all'}",
        column_styles={"id": "cyan"},
    )


def parse_chapter_selection(value: str, count: int) -> List[int]:
    """Turn a chapter selection into sorted chapter indices.

    Accepts ``a`` for all chapters, a single index (``3``), an inclusive
    range (``0-4``) or a comma-separated mix (``0,2-5``). Indices refer to
    the chapter list shown by ``--list``.

    Raises:
        ValueError: If the selection is malformed or out of range
    """
    text = value.strip().lower()
    if text in ("a", "all"):
        return list(range(count))

    selected = set()
    for part in text.split(","):
        part = part.strip()
        start_text, sep, end_text = part.partition("-")
        try:
            start = int(start_text)
            end = int(end_text) if sep else start
        except ValueError:
            raise ValueError(f"Invalid chapter selection: {value!r}") from None
        if start > end:
            raise ValueError(f"Invalid chapter range: {part}")
        if start < 0 or end >= count:
            raise ValueError(f"Chapter index out of range: {part} (0-{count - 1})")
        selected.update(range(start, end + 1))
    return sorted(selected)


@app.command("download")
@handle_errors
def download(
    name: str = typer.Argument(..., help="Connector name."),
    publication_id: str = typer.Argument(..., help="Publication ID from 'tranga connectors search'."),
    chapters: str = typer.Option(
        "a",
        "--chapters",
        "-x",
        help="Chapter indices: 3, 0-4, 0,2-5 or a for all.",
    ),
    language: str = typer.Option("en", "--language", "-l", help="Chapter language."),
    list_only: bool = typer.Option(False, "--list", help="Only list the chapters with their index."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Download chapters of a publication right away, outside any job.

    The cover is downloaded first. Chapters already in the library are
    skipped.

    Example:
        tranga connectors download MangaDex a1c7c817 --list
        tranga connectors download MangaDex a1c7c817 --chapters 0-4
    """
    config = load_config(config_file)
    with _open_registry(config) as registry:
        connector = registry.require(name)
        with console.status(f"Looking up {escape(publication_id)} on {connector.name}..."):
            publication = connector.get_publication(publication_id)
            if publication is None:
                raise NotFoundError(f"Publication {publication_id} not found on {connector.name}")
            available = connector.fetch_chapters_for(publication, language)

        if not available:
            console.print(f"[yellow]No '{language}' chapters found for {escape(publication.sort_name)}[/yellow]")
            return

        if list_only:
            rows = [
                {
                    "index": index,
                    "volume": chapter.volume_number or "",
                    "chapter": chapter.chapter_number,
                    "title": chapter.name or "",
                    "downloaded": "yes" if connector.is_chapter_downloaded(publication, chapter) else "",
                }
                for index, chapter in enumerate(available)
            ]
            print_table(
                rows,
                ["index", "volume", "chapter", "title", "downloaded"],
                title=publication.sort_name,
                column_styles={"index": "cyan"},
            )
            return

        try:
            indices = parse_chapter_selection(chapters, len(available))
        except ValueError as e:
            raise ValidationError(str(e), details={"chapters": len(available)}) from None

        selected = [available[index] for index in indices]
        pending = [chapter for chapter in selected if not connector.is_chapter_downloaded(publication, chapter)]

        if pending:
            publication.create_publication_folder(connector.download_location)
            with console.status(f"Downloading cover of {escape(publication.sort_name)}..."):
                connector.download_cover(publication)
            for position, chapter in enumerate(pending, start=1):
                with console.status(f"Downloading {escape(chapter.file_name)} ({position}/{len(pending)})..."):
                    connector.download_chapter(publication, chapter)

    print_result(
        True,
        f"Downloaded {len(pending)} chapters of {escape(publication.sort_name)}",
        {
            "selected": len(selected),
            "skipped": len(selected) - len(pending),
            "folder": str(config.library_dir / publication.folder_name),
        },
    )
