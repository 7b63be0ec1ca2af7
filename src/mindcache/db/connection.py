"""SQLite connection layer with the sqlite-vec extension loaded."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

MEMORY = ":memory:"


class Database:
    """A SQLite database (file-backed or in-memory) with sqlite-vec functions.

    The durable store (documents + metadata keyspace) lives in a file; the
    vector index runs on a private in-memory database opened the same way.
    """

    def __init__(self, db_path: Path | str = MEMORY) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing),
                or ``":memory:"`` for a private in-memory database.
        """
        self.db_path = db_path if db_path == MEMORY else Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        if not self.in_memory:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
