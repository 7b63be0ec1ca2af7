"""MindCache vector index — hybrid retrieval over chunk records."""

from mindcache.index.models import IndexStats, SearchHit
from mindcache.index.vector_index import (
    HYBRID_MIN_SIMILARITY,
    SNAPSHOT_KEY,
    VECTOR_MIN_SIMILARITY,
    VectorIndex,
    fts_query,
)

__all__ = [
    "HYBRID_MIN_SIMILARITY",
    "IndexStats",
    "SNAPSHOT_KEY",
    "SearchHit",
    "VECTOR_MIN_SIMILARITY",
    "VectorIndex",
    "fts_query",
]
