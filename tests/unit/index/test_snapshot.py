"""Tests for the vector index snapshot format."""

from __future__ import annotations

import json

import pytest

from mindcache.db.models import ChunkRecord
from mindcache.errors import InitializationError
from mindcache.index import snapshot


def _record(i: int = 0) -> ChunkRecord:
    return ChunkRecord(
        id=f"doc_chunk_{i}",
        document_id="doc",
        content=f"chunk {i} ünïcode",
        title="Title",
        url="https://example.com",
        embedding=[0.5, -0.25, 0.125],
        saved_at=123,
    )


def test_index_schema_names_dimension():
    schema = snapshot.index_schema(384)
    assert schema["embedding"] == "vector[384]"
    assert set(schema) == {"id", "documentId", "content", "title", "url", "embedding", "savedAt"}


def test_dump_is_self_describing():
    data = json.loads(snapshot.dump(3, [_record()]))
    assert data["format"] == snapshot.SNAPSHOT_FORMAT
    assert data["version"] == snapshot.SNAPSHOT_VERSION
    assert data["records"][0]["documentId"] == "doc"
    assert data["records"][0]["savedAt"] == 123


def test_load_returns_dimensions_and_records():
    records = [_record(0), _record(1)]
    dimensions, loaded = snapshot.load(snapshot.dump(3, records))
    assert dimensions == 3
    assert loaded == records


def test_load_empty_index():
    assert snapshot.load(snapshot.dump(16, [])) == (16, [])


def test_load_invalid_json():
    with pytest.raises(InitializationError, match="JSON"):
        snapshot.load("{")


def test_load_foreign_document():
    with pytest.raises(InitializationError, match="not a MindCache"):
        snapshot.load(json.dumps({"format": "something-else"}))


def test_load_unsupported_version():
    text = snapshot.dump(3, [])
    data = json.loads(text)
    data["version"] = 99
    with pytest.raises(InitializationError, match="version"):
        snapshot.load(json.dumps(data))


def test_load_missing_field_is_corrupt():
    data = json.loads(snapshot.dump(3, [_record()]))
    del data["records"][0]["embedding"]
    with pytest.raises(InitializationError, match="corrupt"):
        snapshot.load(json.dumps(data))


def test_load_bad_embedding_type_is_corrupt():
    data = json.loads(snapshot.dump(3, []))
    data["schema"]["embedding"] = "list"
    with pytest.raises(InitializationError, match="corrupt"):
        snapshot.load(json.dumps(data))
