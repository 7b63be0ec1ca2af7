"""mindcache init — create the database and warm up the embedding model.

Creates:
  .mindcache.db              — empty library with schema (or --db path)
  ~/.mindcache/config.yaml   — global defaults (created once, mode 0o600)

Then loads the embedding model once so the first save/search does not wait
for the model download. Use --skip-model to only create the files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from mindcache.cli.session import load_settings, open_db, run_with_service
from mindcache.config import ensure_global_config
from mindcache.service import ContentService

console = Console()


def init_cmd(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Path to the library database (default: .mindcache.db)."),
    ] = None,
    skip_model: Annotated[
        bool,
        typer.Option("--skip-model", help="Do not load the embedding model."),
    ] = False,
) -> None:
    """Create the library database and load the embedding model."""
    cfg = load_settings(db)
    db_path = Path(cfg.storage.db_path)
    existed = db_path.exists()

    conn = open_db(db_path, create=True)
    try:
        marker = "already exists" if existed else "created"
        console.print(f"  [green]✓[/] {db_path} ({marker})")

        cfg_path = ensure_global_config()
        console.print(f"  [green]✓[/] {cfg_path} (global config)")

        if not skip_model:

            async def _warm_up(service: ContentService) -> int:
                return service.get_stats().chunk_count

            chunks = run_with_service(cfg, conn, _warm_up)
            console.print(
                f"  [green]✓[/] Embedding model ready: {cfg.embedding.model} "
                f"({chunks} chunks indexed)"
            )
    finally:
        conn.close()

    console.print("\n[bold green]✓ MindCache initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. mindcache save --url <url> --title <title> --file <path>")
    console.print("  2. mindcache search \"<query>\"")
