"""MindCache rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from mindcache.cli.errors import err_no_db
    console.print(err_no_db(".mindcache.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".mindcache.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  mindcache init"
    )


def err_config(message: str) -> str:
    """A config file or environment variable holds an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix mindcache.yaml or ~/.mindcache/config.yaml and retry."
    )


def err_init_failed(message: str) -> str:
    """The embedding model or the vector index failed to load."""
    return (
        f"[red]Error:[/] MindCache failed to start: {message}\n"
        "  Check the embedding settings in mindcache.yaml, then re-run the command.\n"
        "  A first run downloads the model and needs network access."
    )


def err_embedding_failed(message: str) -> str:
    """An embedding request failed."""
    return (
        f"[red]Error:[/] Embedding failed: {message}\n"
        "  Re-run the command. If it keeps failing, run with MINDCACHE_LOG_LEVEL=DEBUG."
    )


def err_storage(message: str) -> str:
    """A database read or write failed."""
    return (
        f"[red]Error:[/] Database error: {message}\n"
        "  Check that the database file is writable and not locked by another process."
    )


def err_content_source() -> str:
    """Neither or both of --file and --text were given."""
    return (
        "[red]Error:[/] Provide exactly one content source.\n"
        "  Use:  mindcache save --url <url> --title <title> --file <path>\n"
        "   or:  mindcache save --url <url> --title <title> --text \"...\""
    )


def err_empty_content() -> str:
    """Content to save is blank."""
    return (
        "[red]Error:[/] Content is empty — nothing to save.\n"
        "  Provide a file or text with at least one non-whitespace character."
    )


def err_file_unreadable(path: str, reason: str) -> str:
    """--file could not be read as UTF-8 text."""
    return (
        f"[red]Error:[/] Cannot read '{path}': {reason}\n"
        "  Provide a readable UTF-8 text file."
    )


def err_document_not_found(doc_id: str) -> str:
    """No document with *doc_id*."""
    return (
        f"[yellow]Document not found:[/] '{doc_id}' is not in the library.\n"
        "  Run:  mindcache list  to see all saved documents."
    )
