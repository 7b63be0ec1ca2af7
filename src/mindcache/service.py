"""Content orchestrator: save, search, delete, list and stats.

``ContentService`` composes the document store, the chunker, the embedding
channel and the vector index. It owns the ordering of each operation and the
consistency policy between the two stores:

- save writes the Document first, then chunks, embeds (one batch call) and
  indexes. If embedding or indexing fails the Document is either kept without
  chunks (``orphan_policy="keep"``) or deleted again (``"rollback"``).
- delete always attempts both stores; index hits whose parent Document is
  missing are dropped at search time.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mindcache.db.documents import DocumentStore
from mindcache.db.metadata import MetadataStore
from mindcache.db.models import ChunkRecord, Document, chunk_id, now_ms
from mindcache.embedding.channel import EmbeddingChannel, ProgressHandler
from mindcache.errors import InitializationError, NotInitializedError
from mindcache.index.vector_index import HYBRID_MIN_SIMILARITY, VectorIndex
from mindcache.ingest.chunker import DEFAULT_EXCERPT_LENGTH, TextChunker, excerpt

if TYPE_CHECKING:
    from mindcache.config import MindCacheConfig

logger = logging.getLogger(__name__)

ORPHAN_POLICIES = ("keep", "rollback")
DEFAULT_SEARCH_LIMIT = 10


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class SaveResult:
    document_id: str
    chunks_count: int


@dataclass
class SearchResult:
    """One search result: the parent document plus its best-matching chunk."""

    document: Document
    chunk_id: str
    chunk_content: str
    score: float
    similarity: float


@dataclass
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)
    query_time_ms: float = 0.0


@dataclass
class ContentStats:
    document_count: int
    chunk_count: int


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ContentService:
    """Save / search / delete pipeline over a document store and a vector index.

    Args:
        documents: Durable document store.
        index: Vector index (opened by ``init``).
        embedder: Embedding channel (started by ``init``).
        chunker: Chunker used on save; defaults to ``TextChunker()``.
        orphan_policy: ``keep`` or ``rollback`` (see module docstring).
        excerpt_length: Excerpt length stored with each Document.
        hybrid_min_similarity: Score floor for hybrid search.
        default_limit: Result count when ``search`` is called without a limit.
    """

    def __init__(
        self,
        documents: DocumentStore,
        index: VectorIndex,
        embedder: EmbeddingChannel,
        *,
        chunker: TextChunker | None = None,
        orphan_policy: str = "keep",
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
        hybrid_min_similarity: float = HYBRID_MIN_SIMILARITY,
        default_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        if orphan_policy not in ORPHAN_POLICIES:
            raise ValueError(
                f"orphan_policy must be one of {', '.join(ORPHAN_POLICIES)}, got '{orphan_policy}'"
            )
        self._documents = documents
        self._index = index
        self._embedder = embedder
        self._chunker = chunker or TextChunker()
        self._orphan_policy = orphan_policy
        self._excerpt_length = excerpt_length
        self._hybrid_min_similarity = hybrid_min_similarity
        self._default_limit = default_limit
        self._init_task: asyncio.Future[None] | None = None
        self._ready = False

    @classmethod
    def from_config(
        cls,
        cfg: MindCacheConfig,
        conn: sqlite3.Connection,
        *,
        embedder: EmbeddingChannel | None = None,
    ) -> ContentService:
        """Wire a service from configuration over an open, migrated connection."""
        index = VectorIndex(
            MetadataStore(conn),
            cfg.embedding.dimensions,
            vector_weight=cfg.retrieval.vector_weight,
            text_weight=cfg.retrieval.text_weight,
        )
        return cls(
            DocumentStore(conn),
            index,
            embedder or EmbeddingChannel.from_config(cfg.embedding),
            chunker=TextChunker(
                cfg.chunker.max_length, cfg.chunker.overlap, cfg.chunker.boundary
            ),
            orphan_policy=cfg.ingest.orphan_policy,
            excerpt_length=cfg.ingest.excerpt_length,
            hybrid_min_similarity=cfg.retrieval.hybrid_min_similarity,
            default_limit=cfg.retrieval.limit,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def init(self, on_progress: ProgressHandler | None = None) -> None:
        """Load the embedding model and restore the vector index.

        The model load runs in the worker while the index is restored. A second
        call, in flight or after completion, observes the same outcome.

        Raises:
            InitializationError: If either component failed to load.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize(on_progress))
        await asyncio.shield(self._init_task)

    async def _initialize(self, on_progress: ProgressHandler | None) -> None:
        started = time.perf_counter()
        try:
            self._embedder.start(on_progress)
            self._index.open()
            await self._embedder.init()
        except InitializationError:
            logger.error("Content service failed to initialize")
            raise
        except Exception as exc:
            logger.error("Content service failed to initialize: %s", exc)
            raise InitializationError(f"Failed to initialize: {exc}") from exc
        self._ready = True
        logger.info(
            "Content service ready in %.0f ms (%d chunks indexed)",
            (time.perf_counter() - started) * 1000,
            self._index.stats().count,
        )

    async def close(self) -> None:
        """Stop the embedding worker and drop the in-memory index.

        The SQLite connection belongs to the caller and stays open.
        """
        self._ready = False
        await self._embedder.close()
        self._index.close()

    async def __aenter__(self) -> ContentService:
        await self.init()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def save_content(self, url: str, title: str, content: str) -> SaveResult:
        """Persist a document, then chunk, embed and index it.

        Raises:
            ValueError: If *content* is blank.
            EmbeddingError: If embedding failed (orphan policy applied first).
            StorageError: If a store write failed.
        """
        self._require_ready()
        if not content or not content.strip():
            raise ValueError("Content must not be empty")

        doc_id = self._documents.add(
            url=url,
            title=title,
            content=content,
            excerpt=excerpt(content, self._excerpt_length),
        )
        try:
            chunks = self._chunker.chunk(content)
            embeddings = await self._embedder.embed_batch(chunks)
            saved_at = now_ms()
            records = [
                ChunkRecord(
                    id=chunk_id(doc_id, i),
                    document_id=doc_id,
                    content=text,
                    title=title,
                    url=url,
                    embedding=vector,
                    saved_at=saved_at,
                )
                for i, (text, vector) in enumerate(zip(chunks, embeddings))
            ]
            self._index.insert_batch(records)
        except Exception as exc:
            self._handle_orphan(doc_id, exc)
            raise

        logger.info("Saved document %s (%d chunks)", doc_id, len(records))
        return SaveResult(document_id=doc_id, chunks_count=len(records))

    async def search(self, query: str, limit: int | None = None) -> SearchResponse:
        """Hybrid search, one result per document, best first."""
        self._require_ready()
        started = time.perf_counter()
        limit = self._default_limit if limit is None else limit

        results: list[SearchResult] = []
        if query.strip() and limit > 0:
            vector = await self._embedder.embed(query)
            hits = self._index.hybrid_search(
                vector, query, limit=limit, min_similarity=self._hybrid_min_similarity
            )
            seen: set[str] = set()
            for hit in hits:
                if hit.document_id in seen:
                    continue
                document = self._documents.get(hit.document_id)
                if document is None:
                    logger.warning(
                        "Dropping hit %s: document %s no longer exists", hit.id, hit.document_id
                    )
                    continue
                seen.add(hit.document_id)
                results.append(
                    SearchResult(
                        document=document,
                        chunk_id=hit.id,
                        chunk_content=hit.content,
                        score=hit.score,
                        similarity=hit.similarity,
                    )
                )

        elapsed = (time.perf_counter() - started) * 1000
        logger.debug("Search %r: %d results in %.1f ms", query, len(results), elapsed)
        return SearchResponse(results=results, query_time_ms=elapsed)

    async def delete_document(self, doc_id: str) -> None:
        """Delete a document and every chunk indexed for it.

        Both stores are always attempted; the first failure is re-raised.
        """
        self._require_ready()
        first_error: Exception | None = None
        try:
            self._documents.delete(doc_id)
        except Exception as exc:
            first_error = exc
        try:
            removed = self._index.remove_all_for_document(doc_id)
        except Exception as exc:
            first_error = first_error or exc
            removed = 0
        if first_error is not None:
            logger.error("Delete of %s incomplete: %s", doc_id, first_error)
            raise first_error
        logger.info("Deleted document %s (%d chunks)", doc_id, removed)

    def get_all_documents(self) -> list[Document]:
        """All documents, newest first."""
        self._require_ready()
        return self._documents.get_all()

    def get_stats(self) -> ContentStats:
        self._require_ready()
        return ContentStats(
            document_count=self._documents.count(),
            chunk_count=self._index.stats().count,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotInitializedError("ContentService not initialized. Call init() first.")

    def _handle_orphan(self, doc_id: str, cause: Exception) -> None:
        if self._orphan_policy == "keep":
            logger.warning("Document %s saved without chunks: %s", doc_id, cause)
            return
        try:
            self._documents.delete(doc_id)
        except Exception as exc:
            logger.error("Rollback of document %s failed: %s", doc_id, exc)
        else:
            logger.warning("Rolled back document %s: %s", doc_id, cause)
