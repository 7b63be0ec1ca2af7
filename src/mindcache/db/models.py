"""Domain models shared by the stores, the vector index and the service."""

from __future__ import annotations

import time
from dataclasses import dataclass, field


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def chunk_id(document_id: str, index: int) -> str:
    """Deterministic chunk id for the *index*-th chunk of *document_id*."""
    return f"{document_id}_chunk_{index}"


@dataclass
class Document:
    id: str
    url: str
    title: str
    content: str
    excerpt: str
    saved_at: int
    updated_at: int


@dataclass
class ChunkRecord:
    """One retrievable unit: a substring of a document plus its embedding.

    ``title`` and ``url`` are copied from the parent document so hits can be
    displayed without a join. ``document_id`` is a back-reference only.
    """

    id: str
    document_id: str
    content: str
    title: str
    url: str
    embedding: list[float] = field(repr=False)
    saved_at: int
