"""mindcache save — store content and index it for search.

Usage:
  mindcache save --url https://example.com/post --title "Post" --file post.txt
  mindcache save --url https://example.com/note --title "Note" --text "Some text."
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from mindcache.cli.errors import err_content_source, err_empty_content, err_file_unreadable
from mindcache.cli.session import load_settings, open_db, run_with_service
from mindcache.service import ContentService, SaveResult

console = Console()


def save_cmd(
    url: Annotated[str, typer.Option("--url", "-u", help="Where the content came from.")],
    title: Annotated[str, typer.Option("--title", "-t", help="Document title.")],
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Read content from a UTF-8 text file."),
    ] = None,
    text: Annotated[
        Optional[str],
        typer.Option("--text", help="Content given inline."),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database (created if missing)."),
    ] = None,
) -> None:
    """Save content to the library and index it for semantic search."""
    if (file is None) == (text is None):
        console.print(err_content_source())
        raise typer.Exit(1)

    if file is not None:
        try:
            content = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            console.print(err_file_unreadable(str(file), str(exc)))
            raise typer.Exit(1)
    else:
        content = text or ""

    if not content.strip():
        console.print(err_empty_content())
        raise typer.Exit(1)

    cfg = load_settings(db)
    conn = open_db(Path(cfg.storage.db_path), create=True)
    try:

        async def _save(service: ContentService) -> SaveResult:
            return await service.save_content(url, title, content)

        result = run_with_service(cfg, conn, _save)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Saved: [bold]{title}[/]")
    console.print(f"  id: {result.document_id}  |  chunks: {result.chunks_count}")
