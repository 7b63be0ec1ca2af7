"""Shared plumbing for commands: config, database and a running ContentService."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from mindcache.cli.errors import (
    err_config,
    err_embedding_failed,
    err_init_failed,
    err_no_db,
    err_storage,
)
from mindcache.config import ConfigError, MindCacheConfig, load_config
from mindcache.db.connection import Database
from mindcache.db.schema import initialize
from mindcache.embedding.channel import EmbeddingChannel
from mindcache.embedding.messages import Progress as ModelProgress
from mindcache.errors import EmbeddingError, InitializationError, StorageError
from mindcache.log import configure_logging
from mindcache.service import ContentService

console = Console()

T = TypeVar("T")


def load_settings(db: Path | None = None) -> MindCacheConfig:
    """Load config, apply the ``--db`` flag and install logging.

    Exits with code 1 on an invalid config.
    """
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if db is not None:
        cfg.storage.db_path = str(db)
    configure_logging(cfg.logging.level)
    return cfg


def open_db(db_path: Path, *, create: bool = False) -> sqlite3.Connection:
    """Open and migrate *db_path*; exit 1 if it is missing and *create* is False."""
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    try:
        conn = Database(db_path).connect()
        initialize(conn)
    except sqlite3.Error as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1)
    return conn


def run_with_service(
    cfg: MindCacheConfig,
    conn: sqlite3.Connection,
    operation: Callable[[ContentService], Awaitable[T]],
) -> T:
    """Start a ContentService, run *operation* on it, and shut it down.

    Model loading is shown as a transient progress bar. Library errors are
    printed as actionable messages and turned into exit code 1.
    """

    async def _run() -> T:
        service = ContentService.from_config(
            cfg, conn, embedder=EmbeddingChannel.from_config(cfg.embedding)
        )
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Loading embedding model", total=100)

                def _on_progress(update: ModelProgress) -> None:
                    progress.update(
                        task,
                        completed=update.progress,
                        description=f"Loading embedding model ({update.status})",
                    )

                await service.init(on_progress=_on_progress)
            return await operation(service)
        finally:
            await service.close()

    try:
        return asyncio.run(_run())
    except InitializationError as exc:
        console.print(err_init_failed(str(exc)))
        raise typer.Exit(1)
    except EmbeddingError as exc:
        console.print(err_embedding_failed(str(exc)))
        raise typer.Exit(1)
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1)
