"""In-memory hybrid vector index with snapshot persistence.

Chunk records live in a private in-memory SQLite database:

- ``chunks`` holds the records with float32 embedding blobs; cosine similarity
  is computed by sqlite-vec's ``vec_distance_cosine``.
- ``chunks_fts`` is an FTS5 table over content/title/url (rowid = chunks.rowid)
  providing BM25 lexical relevance.

Hybrid score = vector_weight * similarity + text_weight * lexical, where the
BM25 scores of a query are normalized so that its best lexical hit is 1.0.

After every mutation the whole index is written as one JSON snapshot under a
fixed key of the metadata keyspace; ``open()`` rebuilds the index from it.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Sequence

import numpy as np
from sqlite_vec import serialize_float32

from mindcache.db.connection import Database
from mindcache.db.metadata import MetadataStore
from mindcache.db.models import ChunkRecord
from mindcache.errors import InitializationError, NotInitializedError
from mindcache.index import snapshot
from mindcache.index.models import IndexStats, SearchHit

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "vector_index.snapshot"
DEFAULT_DIMENSIONS = 384

# Vector-only search needs a stricter floor: hybrid mode can lift weak vector
# matches with lexical signal.
VECTOR_MIN_SIMILARITY = 0.5
HYBRID_MIN_SIMILARITY = 0.3

DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_TEXT_WEIGHT = 0.3

_TOKEN_RE = re.compile(r"\w+")

_SCHEMA_SQL = """
CREATE TABLE chunks (
    id          TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    content     TEXT NOT NULL,
    title       TEXT NOT NULL,
    url         TEXT NOT NULL,
    embedding   BLOB NOT NULL,
    saved_at    INTEGER NOT NULL
);

CREATE INDEX idx_chunks_document ON chunks(document_id);

CREATE VIRTUAL TABLE chunks_fts USING fts5(content, title, url, tokenize='porter unicode61');
"""

_HIT_COLUMNS = "rowid AS rowid, id, document_id, content, title, url, saved_at"


def fts_query(text: str) -> str:
    """Build an FTS5 OR-query from the word tokens of *text* ('' if none).

    Tokens are quoted so FTS5 operators and punctuation in user input are
    treated as plain terms.
    """
    tokens = dict.fromkeys(t.lower() for t in _TOKEN_RE.findall(text))
    return " OR ".join(f'"{t}"' for t in tokens)


class VectorIndex:
    """Hybrid (cosine + BM25) index over chunk records.

    Args:
        metadata: Durable keyspace receiving the snapshot.
        dimensions: Embedding dimension D shared by every record.
        vector_weight: Weight of cosine similarity in hybrid scores.
        text_weight: Weight of normalized BM25 relevance in hybrid scores.
        snapshot_key: Metadata key holding the snapshot.

    Mutations are not internally serialized: callers keep at most one
    mutating operation in flight.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        dimensions: int = DEFAULT_DIMENSIONS,
        *,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
        text_weight: float = DEFAULT_TEXT_WEIGHT,
        snapshot_key: str = SNAPSHOT_KEY,
    ) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self.dimensions = dimensions
        self.vector_weight = vector_weight
        self.text_weight = text_weight
        self._metadata = metadata
        self._snapshot_key = snapshot_key
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Restore the index from its snapshot, or create it empty (idempotent).

        Raises:
            InitializationError: If the stored snapshot is corrupt or was built
                for a different embedding dimension.
            StorageError: If the snapshot cannot be read.
        """
        if self._conn is not None:
            return

        stored = self._metadata.get(self._snapshot_key)
        conn = _create_connection()
        if stored is None:
            self._conn = conn
            logger.info("Vector index created (dimensions=%d)", self.dimensions)
            return

        try:
            dimensions, records = snapshot.load(stored)
            if dimensions != self.dimensions:
                raise InitializationError(
                    f"Vector index snapshot holds {dimensions}-dimensional embeddings "
                    f"but the embedding model produces {self.dimensions}. "
                    "Clear the index or switch back to the original model."
                )
            try:
                self._insert_rows(conn, records)
            except ValueError as exc:
                raise InitializationError(f"Vector index snapshot is corrupt: {exc}") from exc
        except BaseException:
            conn.close()
            raise

        self._conn = conn
        logger.info("Vector index restored from snapshot (%d chunks)", len(records))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Mutations (each followed by exactly one snapshot write)
    # ------------------------------------------------------------------

    def insert(self, chunk: ChunkRecord) -> None:
        self.insert_batch([chunk])

    def insert_batch(self, chunks: Sequence[ChunkRecord]) -> None:
        """Insert *chunks* atomically, then persist one snapshot.

        Raises:
            ValueError: If any embedding has the wrong dimension or a chunk id
                already exists; the index is left unchanged.
            StorageError: If the snapshot could not be written; the inserted
                rows are removed again so memory matches the stored snapshot.
        """
        conn = self._require_open()
        if not chunks:
            return
        self._insert_rows(conn, chunks)
        try:
            self._persist()
        except Exception:
            self._delete_rows(conn, [c.id for c in chunks])
            raise
        logger.debug("Indexed %d chunks", len(chunks))

    def remove(self, chunk_id: str) -> bool:
        """Remove one chunk. Returns False (and writes nothing) if it was absent."""
        conn = self._require_open()
        removed = self._delete_rows(conn, [chunk_id])
        if removed:
            self._persist()
        return removed > 0

    def remove_all_for_document(self, document_id: str) -> int:
        """Remove every chunk of *document_id* with a single snapshot write.

        Returns:
            Number of chunks removed.
        """
        conn = self._require_open()
        chunk_ids = [
            r["id"]
            for r in conn.execute(
                "SELECT id FROM chunks WHERE document_id = ? ORDER BY rowid", (document_id,)
            ).fetchall()
        ]
        if not chunk_ids:
            return 0
        removed = self._delete_rows(conn, chunk_ids)
        self._persist()
        logger.debug("Removed %d chunks of document %s", removed, document_id)
        return removed

    def clear(self) -> None:
        """Drop every record and persist the empty index."""
        self._require_open().close()
        self._conn = _create_connection()
        self._persist()
        logger.info("Vector index cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(
        self,
        vector: Sequence[float],
        limit: int = 10,
        min_similarity: float = VECTOR_MIN_SIMILARITY,
    ) -> list[SearchHit]:
        """Rank chunks by cosine similarity to *vector*, best first."""
        conn = self._require_open()
        hits = [
            _row_to_hit(row, score=similarity, similarity=similarity)
            for row, similarity in self._similarity_rows(conn, vector)
        ]
        return _rank(hits, limit, min_similarity)

    def hybrid_search(
        self,
        vector: Sequence[float],
        text: str,
        limit: int = 10,
        min_similarity: float = HYBRID_MIN_SIMILARITY,
    ) -> list[SearchHit]:
        """Rank chunks by a weighted blend of cosine similarity and BM25 relevance."""
        conn = self._require_open()
        lexical = _lexical_scores(conn, text)
        hits: list[SearchHit] = []
        for row, similarity in self._similarity_rows(conn, vector):
            lex = lexical.get(row["rowid"], 0.0)
            score = self.vector_weight * similarity + self.text_weight * lex
            hits.append(_row_to_hit(row, score=score, similarity=similarity, lexical=lex))
        return _rank(hits, limit, min_similarity)

    def stats(self) -> IndexStats:
        conn = self._require_open()
        return IndexStats(count=conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])

    def records(self) -> list[ChunkRecord]:
        """Every record in insertion order, embeddings included."""
        conn = self._require_open()
        rows = conn.execute(
            "SELECT id, document_id, content, title, url, embedding, saved_at FROM chunks ORDER BY rowid"
        ).fetchall()
        return [
            ChunkRecord(
                id=r["id"],
                document_id=r["document_id"],
                content=r["content"],
                title=r["title"],
                url=r["url"],
                embedding=np.frombuffer(r["embedding"], dtype=np.float32).tolist(),
                saved_at=r["saved_at"],
            )
            for r in rows
        ]

    def snapshot(self) -> str:
        """Serialize the full index state (schema + records + embeddings)."""
        return snapshot.dump(self.dimensions, self.records())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise NotInitializedError("VectorIndex is not open. Call open() first.")
        return self._conn

    def _persist(self) -> None:
        self._metadata.put(self._snapshot_key, self.snapshot())

    def _check_dimensions(self, vector: Sequence[float], what: str) -> None:
        if len(vector) != self.dimensions:
            raise ValueError(
                f"{what} has {len(vector)} dimensions, index expects {self.dimensions}"
            )

    def _insert_rows(self, conn: sqlite3.Connection, records: Sequence[ChunkRecord]) -> None:
        for record in records:
            self._check_dimensions(record.embedding, f"Embedding of chunk '{record.id}'")
        try:
            with conn:
                for record in records:
                    cur = conn.execute(
                        """
                        INSERT INTO chunks (id, document_id, content, title, url, embedding, saved_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.id,
                            record.document_id,
                            record.content,
                            record.title,
                            record.url,
                            serialize_float32(list(record.embedding)),
                            record.saved_at,
                        ),
                    )
                    # Keep FTS5 in sync with explicit rowid mapping
                    conn.execute(
                        "INSERT INTO chunks_fts(rowid, content, title, url) VALUES (?, ?, ?, ?)",
                        (cur.lastrowid, record.content, record.title, record.url),
                    )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Duplicate chunk id in batch: {exc}") from exc

    def _delete_rows(self, conn: sqlite3.Connection, chunk_ids: Sequence[str]) -> int:
        removed = 0
        with conn:
            for chunk_id in chunk_ids:
                row = conn.execute("SELECT rowid FROM chunks WHERE id = ?", (chunk_id,)).fetchone()
                if row is None:
                    continue
                conn.execute("DELETE FROM chunks_fts WHERE rowid = ?", (row[0],))
                conn.execute("DELETE FROM chunks WHERE rowid = ?", (row[0],))
                removed += 1
        return removed

    def _similarity_rows(
        self, conn: sqlite3.Connection, vector: Sequence[float]
    ) -> list[tuple[sqlite3.Row, float]]:
        """Every chunk row paired with its cosine similarity to *vector*, in rowid order."""
        self._check_dimensions(vector, "Query vector")
        rows = conn.execute(
            f"""
            SELECT {_HIT_COLUMNS}, 1.0 - vec_distance_cosine(embedding, ?) AS similarity
            FROM chunks ORDER BY rowid
            """,
            (serialize_float32(list(vector)),),
        ).fetchall()
        # SQLite turns a NaN distance (zero vector) into NULL.
        return [(r, r["similarity"]) for r in rows if r["similarity"] is not None]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _create_connection() -> sqlite3.Connection:
    conn = Database().connect()
    conn.executescript(_SCHEMA_SQL)
    return conn


def _lexical_scores(conn: sqlite3.Connection, text: str) -> dict[int, float]:
    """Map rowid → BM25 relevance normalized to (0, 1], best match = 1.0.

    bm25() returns negative values; lower (more negative) = better match.
    """
    query = fts_query(text)
    if not query:
        return {}
    rows = conn.execute(
        "SELECT rowid AS rowid, bm25(chunks_fts) AS rank FROM chunks_fts WHERE chunks_fts MATCH ?",
        (query,),
    ).fetchall()
    if not rows:
        return {}
    best = min(r["rank"] for r in rows)
    if best >= 0:
        return {r["rowid"]: 1.0 for r in rows}
    return {r["rowid"]: r["rank"] / best for r in rows}


def _rank(hits: list[SearchHit], limit: int, min_similarity: float) -> list[SearchHit]:
    """Drop hits under the floor, sort best-first (stable on insertion order), cap at *limit*."""
    if limit <= 0:
        return []
    kept = [h for h in hits if h.score >= min_similarity]
    kept.sort(key=lambda h: h.score, reverse=True)
    return kept[:limit]


def _row_to_hit(
    row: sqlite3.Row, *, score: float, similarity: float, lexical: float = 0.0
) -> SearchHit:
    return SearchHit(
        id=row["id"],
        document_id=row["document_id"],
        title=row["title"],
        url=row["url"],
        content=row["content"],
        saved_at=row["saved_at"],
        score=score,
        similarity=similarity,
        lexical=lexical,
    )
