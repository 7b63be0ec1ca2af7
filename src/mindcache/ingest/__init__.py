"""MindCache ingest helpers — chunking and excerpts."""

from mindcache.ingest.chunker import TextChunker, chunk_text, excerpt, normalize_whitespace

__all__ = ["TextChunker", "chunk_text", "excerpt", "normalize_whitespace"]
