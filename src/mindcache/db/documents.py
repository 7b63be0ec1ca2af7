"""Document store — durable CRUD over saved documents."""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from mindcache.db.models import Document, now_ms
from mindcache.errors import StorageError

_COLUMNS = "id, url, title, content, excerpt, saved_at, updated_at"
_UPDATABLE = frozenset({"url", "title", "content", "excerpt"})


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise any sqlite3 error raised inside the block as StorageError."""
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"{operation} failed: {exc}") from exc


class DocumentStore:
    """Data access for Document rows.

    Wraps an open sqlite3.Connection with the durable schema initialised (see
    mindcache.db.schema.initialize). The connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add(self, url: str, title: str, content: str, excerpt: str = "") -> str:
        """Insert a new document and return its generated id.

        Both ``saved_at`` and ``updated_at`` are set to the current time.
        """
        doc_id = str(uuid.uuid4())
        now = now_ms()
        with storage_errors("add document"):
            self._conn.execute(
                f"INSERT INTO documents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (doc_id, url, title, content, excerpt, now, now),
            )
            self._conn.commit()
        return doc_id

    def get(self, doc_id: str) -> Document | None:
        """Return a document by id, or None if not found."""
        with storage_errors("get document"):
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (doc_id,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def get_all(self) -> list[Document]:
        """Return all documents, most recently saved first."""
        with storage_errors("list documents"):
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM documents ORDER BY saved_at DESC, rowid DESC"
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def update(self, doc_id: str, **fields: str) -> None:
        """Update editable fields of a document and bump ``updated_at``.

        Unknown ids are ignored.

        Raises:
            ValueError: If *fields* names a column that cannot be edited.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update document field(s): {', '.join(sorted(unknown))}")

        assignments = [f"{name} = ?" for name in fields] + ["updated_at = ?"]
        params = [*fields.values(), now_ms(), doc_id]
        with storage_errors("update document"):
            self._conn.execute(
                f"UPDATE documents SET {', '.join(assignments)} WHERE id = ?", params
            )
            self._conn.commit()

    def delete(self, doc_id: str) -> None:
        """Delete a document by id. Deleting an unknown id is a no-op."""
        with storage_errors("delete document"):
            self._conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
            self._conn.commit()

    def count(self) -> int:
        with storage_errors("count documents"):
            return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        content=row["content"],
        excerpt=row["excerpt"],
        saved_at=row["saved_at"],
        updated_at=row["updated_at"],
    )
