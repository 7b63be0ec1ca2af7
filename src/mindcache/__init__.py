"""MindCache — local-first content store with semantic search."""

from mindcache.errors import (
    ChannelClosedError,
    EmbeddingError,
    InitializationError,
    MindCacheError,
    NotInitializedError,
    ProtocolError,
    StorageError,
)
from mindcache.service import (
    ContentService,
    ContentStats,
    SaveResult,
    SearchResponse,
    SearchResult,
)

__all__ = [
    "ChannelClosedError",
    "ContentService",
    "ContentStats",
    "EmbeddingError",
    "InitializationError",
    "MindCacheError",
    "NotInitializedError",
    "ProtocolError",
    "SaveResult",
    "SearchResponse",
    "SearchResult",
    "StorageError",
]
