"""Durable key-value keyspace (get / put / delete / scan).

Holds opaque text values under fixed keys; the vector index keeps its
snapshot here.
"""

from __future__ import annotations

import sqlite3

from mindcache.db.documents import storage_errors


class MetadataStore:
    """Key-value access to the ``metadata`` table of an open connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, key: str) -> str | None:
        with storage_errors(f"read metadata '{key}'"):
            row = self._conn.execute(
                "SELECT value FROM metadata WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def put(self, key: str, value: str) -> None:
        """Insert or overwrite the value stored under *key*."""
        with storage_errors(f"write metadata '{key}'"):
            self._conn.execute(
                """
                INSERT INTO metadata (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with storage_errors(f"delete metadata '{key}'"):
            self._conn.execute("DELETE FROM metadata WHERE key = ?", (key,))
            self._conn.commit()

    def scan(self, prefix: str = "") -> list[tuple[str, str]]:
        """Return ``[(key, value), ...]`` for keys starting with *prefix*, sorted by key."""
        # substr() comparison avoids LIKE wildcards inside the prefix.
        with storage_errors("scan metadata"):
            rows = self._conn.execute(
                "SELECT key, value FROM metadata WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [(r["key"], r["value"]) for r in rows]
