"""Result types returned by the vector index."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SearchHit:
    """A ranked index hit.

    Attributes:
        score: Ranking score (similarity in vector mode, weighted blend in hybrid mode).
        similarity: Cosine similarity between the query vector and the chunk.
        lexical: Normalized lexical relevance in [0, 1]; 0.0 in vector-only mode.
    """

    id: str
    document_id: str
    title: str
    url: str
    content: str
    saved_at: int
    score: float
    similarity: float
    lexical: float = 0.0


@dataclass
class IndexStats:
    count: int
