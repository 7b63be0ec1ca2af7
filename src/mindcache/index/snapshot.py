"""Self-describing JSON snapshot format for the vector index.

A snapshot carries the schema (including the embedding dimension) and every
chunk record with its embedding, in insertion order, so that restoring it
reproduces the index exactly.
"""

from __future__ import annotations

import json
from typing import Any

from mindcache.db.models import ChunkRecord
from mindcache.errors import InitializationError

SNAPSHOT_FORMAT = "mindcache-vector-index"
SNAPSHOT_VERSION = 1


def index_schema(dimensions: int) -> dict[str, str]:
    """The fixed record schema of an index with *dimensions*-long embeddings."""
    return {
        "id": "string",
        "documentId": "string",
        "content": "string",
        "title": "string",
        "url": "string",
        "embedding": f"vector[{dimensions}]",
        "savedAt": "number",
    }


def dump(dimensions: int, records: list[ChunkRecord]) -> str:
    """Serialize *records* into snapshot text."""
    return json.dumps(
        {
            "format": SNAPSHOT_FORMAT,
            "version": SNAPSHOT_VERSION,
            "schema": index_schema(dimensions),
            "records": [_record_to_dict(r) for r in records],
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )


def load(text: str) -> tuple[int, list[ChunkRecord]]:
    """Parse snapshot text into ``(dimensions, records)``.

    Raises:
        InitializationError: If the snapshot is unreadable or not a MindCache index snapshot.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InitializationError(f"Vector index snapshot is not valid JSON: {exc}") from exc

    if not isinstance(data, dict) or data.get("format") != SNAPSHOT_FORMAT:
        raise InitializationError("Stored data is not a MindCache vector index snapshot.")
    if data.get("version") != SNAPSHOT_VERSION:
        raise InitializationError(
            f"Unsupported vector index snapshot version: {data.get('version')!r}"
        )

    try:
        dimensions = _parse_dimensions(data["schema"]["embedding"])
        records = [_dict_to_record(r) for r in data["records"]]
    except (KeyError, TypeError, ValueError) as exc:
        raise InitializationError(f"Vector index snapshot is corrupt: {exc}") from exc
    return dimensions, records


def _parse_dimensions(spec: str) -> int:
    if not (spec.startswith("vector[") and spec.endswith("]")):
        raise ValueError(f"bad embedding type {spec!r}")
    return int(spec[len("vector[") : -1])


def _record_to_dict(record: ChunkRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "documentId": record.document_id,
        "content": record.content,
        "title": record.title,
        "url": record.url,
        "embedding": record.embedding,
        "savedAt": record.saved_at,
    }


def _dict_to_record(raw: dict[str, Any]) -> ChunkRecord:
    return ChunkRecord(
        id=str(raw["id"]),
        document_id=str(raw["documentId"]),
        content=str(raw["content"]),
        title=str(raw["title"]),
        url=str(raw["url"]),
        embedding=[float(x) for x in raw["embedding"]],
        saved_at=int(raw["savedAt"]),
    )
