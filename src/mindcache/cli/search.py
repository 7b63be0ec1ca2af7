"""mindcache search — hybrid semantic + keyword search over saved content."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from mindcache.cli.session import load_settings, open_db, run_with_service
from mindcache.service import ContentService, SearchResponse

console = Console()

_SNIPPET_LENGTH = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", "-n", min=1, help="Maximum number of results."),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database."),
    ] = None,
) -> None:
    """Search saved content; one result per document, best match first."""
    cfg = load_settings(db)
    conn = open_db(Path(cfg.storage.db_path))
    try:

        async def _search(service: ContentService) -> SearchResponse:
            return await service.search(query, limit)

        response = run_with_service(cfg, conn, _search)
    finally:
        conn.close()

    if not response.results:
        console.print(f"[dim]No results for '{query}'.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Score", justify="right", width=6)
    table.add_column("Title")
    table.add_column("URL", style="dim")
    table.add_column("Match")
    for result in response.results:
        table.add_row(
            f"{result.score:.2f}",
            result.document.title,
            result.document.url,
            _snippet(result.chunk_content),
        )
    console.print(table)
    console.print(
        f"[dim]{len(response.results)} result(s) in {response.query_time_ms:.0f} ms[/]"
    )


def _snippet(text: str) -> str:
    if len(text) <= _SNIPPET_LENGTH:
        return text
    return text[:_SNIPPET_LENGTH].rstrip() + "..."
