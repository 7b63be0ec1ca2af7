"""mindcache delete — remove a document and all its indexed chunks.

Usage:
  mindcache delete <document-id>
  mindcache delete <document-id> --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from mindcache.cli.errors import err_document_not_found
from mindcache.cli.session import load_settings, open_db, run_with_service
from mindcache.db.documents import DocumentStore
from mindcache.service import ContentService

console = Console()


def delete_cmd(
    doc_id: Annotated[str, typer.Argument(help="Document id (see: mindcache list).")],
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete a document and its chunks from the library."""
    cfg = load_settings(db)
    conn = open_db(Path(cfg.storage.db_path))
    try:
        document = DocumentStore(conn).get(doc_id)
        if document is None:
            console.print(err_document_not_found(doc_id))
            raise typer.Exit(1)

        console.print(f"\nDelete: [bold]{document.title}[/]  [dim]{document.url}[/]")
        if not yes:
            if not typer.confirm("Confirm deletion?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        async def _delete(service: ContentService) -> None:
            await service.delete_document(doc_id)

        run_with_service(cfg, conn, _delete)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Deleted: {document.title}")
