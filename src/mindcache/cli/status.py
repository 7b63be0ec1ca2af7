"""mindcache list / mindcache stats — read-only views of the library.

Neither command loads the embedding model: documents come straight from the
document store and chunk counts from the restored vector index.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mindcache.cli.errors import err_init_failed, err_storage
from mindcache.cli.session import load_settings, open_db
from mindcache.db.documents import DocumentStore
from mindcache.db.metadata import MetadataStore
from mindcache.errors import InitializationError, StorageError
from mindcache.index.vector_index import VectorIndex

console = Console()


def list_cmd(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database."),
    ] = None,
) -> None:
    """List saved documents, newest first."""
    cfg = load_settings(db)
    conn = open_db(Path(cfg.storage.db_path))
    try:
        documents = DocumentStore(conn).get_all()
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1)
    finally:
        conn.close()

    if not documents:
        console.print("[dim]No documents saved yet.[/]\n  Run:  mindcache save --help")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title")
    table.add_column("Saved", style="dim")
    table.add_column("Excerpt")
    for doc in documents:
        table.add_row(doc.id, doc.title, _format_ms(doc.saved_at), doc.excerpt)
    console.print(table)


def stats_cmd(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database."),
    ] = None,
) -> None:
    """Show document and chunk counts."""
    cfg = load_settings(db)
    db_path = Path(cfg.storage.db_path)
    conn = open_db(db_path)
    index = VectorIndex(MetadataStore(conn), cfg.embedding.dimensions)
    try:
        document_count = DocumentStore(conn).count()
        index.open()
        chunk_count = index.stats().count
    except InitializationError as exc:
        console.print(err_init_failed(str(exc)))
        raise typer.Exit(1)
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1)
    finally:
        index.close()
        conn.close()

    size_mb = db_path.stat().st_size / (1024 * 1024)
    lines = [
        f"Database:   {db_path} ({size_mb:.1f} MB)",
        f"Model:      {cfg.embedding.backend}/{cfg.embedding.model} "
        f"({cfg.embedding.dimensions} dims)",
        f"Documents:  [bold]{document_count}[/]  |  Chunks: [bold]{chunk_count:,}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]MindCache[/]", expand=False))


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")
