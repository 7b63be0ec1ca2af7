"""Tests for the ContentService orchestrator."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import DIMENSIONS, FailingBackend, FakeBackend
from mindcache.config import MindCacheConfig
from mindcache.db.documents import DocumentStore
from mindcache.db.metadata import MetadataStore
from mindcache.db.models import ChunkRecord, chunk_id
from mindcache.embedding.worker import normalize
from mindcache.errors import (
    EmbeddingError,
    InitializationError,
    NotInitializedError,
    StorageError,
)
from mindcache.index.vector_index import SNAPSHOT_KEY, VectorIndex
from mindcache.ingest.chunker import TextChunker
from mindcache.service import ContentService

QUANTUM = "Quantum physics describes nature at the smallest scales."
PASTA = "Cooking pasta requires plenty of boiling salted water."


@pytest.fixture
def make_service(tmp_db, make_channel):
    def _make(backend=None, documents=None, **kwargs):
        index = VectorIndex(MetadataStore(tmp_db), DIMENSIONS)
        return ContentService(
            documents or DocumentStore(tmp_db), index, make_channel(backend), **kwargs
        )

    return _make


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_operations_before_init_raise(make_service):
    service = make_service()
    assert not service.is_ready
    with pytest.raises(NotInitializedError):
        await service.save_content("u", "t", "content")
    with pytest.raises(NotInitializedError):
        await service.search("content")
    with pytest.raises(NotInitializedError):
        await service.delete_document("x")
    with pytest.raises(NotInitializedError):
        service.get_all_documents()
    with pytest.raises(NotInitializedError):
        service.get_stats()


@pytest.mark.asyncio
async def test_init_is_idempotent(make_service):
    service = make_service()
    await asyncio.gather(service.init(), service.init())
    await service.init()
    assert service.is_ready
    await service.close()
    assert not service.is_ready


@pytest.mark.asyncio
async def test_init_forwards_progress(make_service):
    updates = []
    service = make_service()
    await service.init(on_progress=updates.append)
    await service.close()
    assert updates[-1].status == "ready"


@pytest.mark.asyncio
async def test_model_failure_surfaces_as_initialization_error(tmp_db, make_channel):
    service = ContentService(
        DocumentStore(tmp_db),
        VectorIndex(MetadataStore(tmp_db), DIMENSIONS),
        make_channel(load_error=RuntimeError("model missing")),
    )
    with pytest.raises(InitializationError, match="model missing"):
        await service.init()
    assert not service.is_ready
    with pytest.raises(InitializationError):
        await service.init()
    await service.close()


@pytest.mark.asyncio
async def test_corrupt_index_surfaces_as_initialization_error(tmp_db, make_service):
    MetadataStore(tmp_db).put(SNAPSHOT_KEY, "garbage")
    service = make_service()
    with pytest.raises(InitializationError):
        await service.init()
    assert not service.is_ready
    await service.close()


@pytest.mark.asyncio
async def test_async_context_manager(make_service):
    async with make_service() as service:
        assert service.is_ready
    assert not service.is_ready


def test_invalid_orphan_policy(make_service):
    with pytest.raises(ValueError, match="orphan_policy"):
        make_service(orphan_policy="ignore")


# ------------------------------------------------------------------
# save_content
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_save_1500_chars_creates_two_chunks(make_service):
    content = "x" * 599 + "." + "y" * 599 + "." + "z" * 300
    async with make_service(chunker=TextChunker(1000, 100)) as service:
        before = service.get_stats()
        result = await service.save_content("https://example.com", "Long", content)
        after = service.get_stats()
    assert result.chunks_count == 2
    assert after.document_count == before.document_count + 1
    assert after.chunk_count == before.chunk_count + 2


@pytest.mark.asyncio
async def test_save_stores_document_and_denormalized_chunks(tmp_db, make_channel):
    documents = DocumentStore(tmp_db)
    index = VectorIndex(MetadataStore(tmp_db), DIMENSIONS)
    async with ContentService(documents, index, make_channel()) as service:
        result = await service.save_content("https://q.example", "Quantum", QUANTUM)
        records = index.records()

    doc = documents.get(result.document_id)
    assert doc.content == QUANTUM
    assert doc.excerpt == QUANTUM
    assert [r.id for r in records] == [chunk_id(result.document_id, 0)]
    record = records[0]
    assert record.document_id == result.document_id
    assert record.title == "Quantum"
    assert record.url == "https://q.example"
    assert record.content == QUANTUM
    assert record.embedding == pytest.approx(normalize(FakeBackend().embed(QUANTUM)), abs=1e-6)


@pytest.mark.asyncio
async def test_save_chunks_share_saved_at(tmp_db, make_channel):
    index = VectorIndex(MetadataStore(tmp_db), DIMENSIONS)
    service = ContentService(
        DocumentStore(tmp_db), index, make_channel(), chunker=TextChunker(40, 5)
    )
    async with service:
        await service.save_content("u", "t", "One sentence here. " * 10)
        records = index.records()
    assert len(records) > 1
    assert len({r.saved_at for r in records}) == 1


@pytest.mark.asyncio
async def test_save_embeds_each_chunk_once(make_service):
    backend = FakeBackend()
    async with make_service(backend, chunker=TextChunker(40, 5)) as service:
        result = await service.save_content("u", "t", "Alpha beta gamma. " * 10)
    assert len(backend.calls) == result.chunks_count


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   \n\t  "])
async def test_save_blank_content_rejected(make_service, content):
    async with make_service() as service:
        with pytest.raises(ValueError, match="empty"):
            await service.save_content("u", "t", content)
        assert service.get_stats().document_count == 0


@pytest.mark.asyncio
async def test_embedding_failure_keeps_orphan_document(make_service):
    async with make_service(FailingBackend("boom")) as service:
        with pytest.raises(EmbeddingError):
            await service.save_content("u", "Broken", "this will boom")
        stats = service.get_stats()
        docs = service.get_all_documents()
    assert stats.document_count == 1
    assert stats.chunk_count == 0
    assert docs[0].title == "Broken"


@pytest.mark.asyncio
async def test_embedding_failure_rolls_back_document(make_service):
    async with make_service(FailingBackend("boom"), orphan_policy="rollback") as service:
        with pytest.raises(EmbeddingError):
            await service.save_content("u", "Broken", "this will boom")
        assert service.get_stats().document_count == 0
        # Later saves still work.
        await service.save_content("u", "Fine", "this is fine")
        assert service.get_stats().document_count == 1


class _FullDiskMetadata(MetadataStore):
    def put(self, key: str, value: str) -> None:
        raise StorageError("write metadata failed: disk full")


@pytest.mark.asyncio
@pytest.mark.parametrize(("policy", "documents_left"), [("rollback", 0), ("keep", 1)])
async def test_snapshot_failure_leaves_no_chunks(tmp_db, make_channel, policy, documents_left):
    index = VectorIndex(_FullDiskMetadata(tmp_db), DIMENSIONS)
    service = ContentService(
        DocumentStore(tmp_db), index, make_channel(), orphan_policy=policy
    )
    async with service:
        with pytest.raises(StorageError, match="disk full"):
            await service.save_content("u", "t", QUANTUM)
        stats = service.get_stats()
        hits = await service.search(QUANTUM)
    assert stats.document_count == documents_left
    assert stats.chunk_count == 0
    assert hits.results == []


# ------------------------------------------------------------------
# search
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_ranks_matching_document_first(make_service):
    async with make_service() as service:
        quantum = await service.save_content("https://q", "Quantum", QUANTUM)
        await service.save_content("https://p", "Pasta", PASTA)
        response = await service.search("quantum physics")
    assert response.results
    top = response.results[0]
    assert top.document.id == quantum.document_id
    assert top.document.title == "Quantum"
    assert top.chunk_id == chunk_id(quantum.document_id, 0)
    assert top.score >= 0.3
    assert response.query_time_ms >= 0


@pytest.mark.asyncio
async def test_search_blank_query_returns_nothing_without_embedding(make_service):
    backend = FakeBackend()
    async with make_service(backend) as service:
        await service.save_content("u", "t", QUANTUM)
        calls = len(backend.calls)
        response = await service.search("   ")
    assert response.results == []
    assert len(backend.calls) == calls


@pytest.mark.asyncio
async def test_search_one_result_per_document(tmp_db, make_channel):
    index = VectorIndex(MetadataStore(tmp_db), DIMENSIONS)
    service = ContentService(
        DocumentStore(tmp_db), index, make_channel(), chunker=TextChunker(60, 10)
    )
    content = (
        "Aurora lights glow green over the northern sky tonight. "
        "Filler words about nothing in particular fill this middle part. "
        "Aurora lights glow again before the sun rises over the hills."
    )
    async with service:
        saved = await service.save_content("u", "Aurora", content)
        hits = index.hybrid_search(
            normalize(FakeBackend().embed("aurora lights glow")), "aurora lights glow"
        )
        response = await service.search("aurora lights glow")
    assert saved.chunks_count > 1
    assert len([h for h in hits if h.document_id == saved.document_id]) > 1
    assert [r.document.id for r in response.results] == [saved.document_id]
    assert response.results[0].score == hits[0].score


@pytest.mark.asyncio
async def test_search_drops_hits_without_parent(tmp_db, make_channel, caplog):
    index = VectorIndex(MetadataStore(tmp_db), DIMENSIONS)
    async with ContentService(DocumentStore(tmp_db), index, make_channel()) as service:
        index.insert(
            ChunkRecord(
                id=chunk_id("ghost", 0),
                document_id="ghost",
                content=QUANTUM,
                title="Ghost",
                url="u",
                embedding=normalize(FakeBackend().embed(QUANTUM)),
                saved_at=1,
            )
        )
        with caplog.at_level(logging.WARNING, logger="mindcache.service"):
            response = await service.search("quantum physics")
    assert response.results == []
    assert "no longer exists" in caplog.text


@pytest.mark.asyncio
async def test_search_limit(make_service):
    async with make_service() as service:
        for i in range(3):
            await service.save_content("u", f"Note {i}", f"Shared topic notes number {i}.")
        response = await service.search("shared topic notes", limit=2)
        assert len(response.results) <= 2
        assert (await service.search("shared topic notes", limit=0)).results == []


@pytest.mark.asyncio
async def test_index_survives_restart(tmp_db, make_service):
    async with make_service() as first:
        saved = await first.save_content("u", "Quantum", QUANTUM)

    async with make_service() as second:
        assert second.get_stats().chunk_count == 1
        response = await second.search("quantum physics")
    assert response.results[0].document.id == saved.document_id


# ------------------------------------------------------------------
# delete / list / stats
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_removes_document_and_chunks(make_service):
    async with make_service(chunker=TextChunker(40, 5)) as service:
        saved = await service.save_content("u", "Quantum", QUANTUM + " " + QUANTUM)
        kept = await service.save_content("u", "Pasta", PASTA)
        await service.delete_document(saved.document_id)

        ids = [d.id for d in service.get_all_documents()]
        stats = service.get_stats()
        response = await service.search("quantum physics")
    assert ids == [kept.document_id]
    assert stats.document_count == 1
    assert stats.chunk_count == kept.chunks_count
    assert all(r.document.id != saved.document_id for r in response.results)


@pytest.mark.asyncio
async def test_delete_unknown_document_is_noop(make_service):
    async with make_service() as service:
        await service.save_content("u", "t", PASTA)
        await service.delete_document("does-not-exist")
        assert service.get_stats().document_count == 1


class _BrokenDeleteStore(DocumentStore):
    def delete(self, doc_id: str) -> None:
        raise StorageError("delete document failed: disk gone")


@pytest.mark.asyncio
async def test_delete_attempts_index_even_when_store_fails(tmp_db, make_service):
    async with make_service(documents=_BrokenDeleteStore(tmp_db)) as service:
        saved = await service.save_content("u", "t", PASTA)
        with pytest.raises(StorageError, match="disk gone"):
            await service.delete_document(saved.document_id)
        assert service.get_stats().chunk_count == 0


@pytest.mark.asyncio
async def test_get_all_documents_newest_first(make_service):
    async with make_service() as service:
        first = await service.save_content("u", "first", QUANTUM)
        second = await service.save_content("u", "second", PASTA)
        ids = [d.id for d in service.get_all_documents()]
    assert ids == [second.document_id, first.document_id]


# ------------------------------------------------------------------
# from_config
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_from_config_applies_settings(tmp_db, make_channel):
    cfg = MindCacheConfig()
    cfg.embedding.dimensions = DIMENSIONS
    cfg.chunker.max_length = 50
    cfg.chunker.overlap = 5
    cfg.ingest.orphan_policy = "rollback"
    service = ContentService.from_config(cfg, tmp_db, embedder=make_channel())
    async with service:
        result = await service.save_content("u", "t", "Word salad sentence. " * 10)
    assert result.chunks_count > 1


@pytest.mark.asyncio
async def test_from_config_applies_retrieval_settings(tmp_db, make_channel):
    cfg = MindCacheConfig()
    cfg.embedding.dimensions = DIMENSIONS
    cfg.retrieval.limit = 1
    service = ContentService.from_config(cfg, tmp_db, embedder=make_channel())
    async with service:
        await service.save_content("u", "quantum", QUANTUM)
        await service.save_content("u", "pasta", PASTA)
        assert len((await service.search(QUANTUM + " " + PASTA)).results) == 1

    # Best possible hybrid score is 1.0, so this floor rejects every hit.
    cfg.retrieval.hybrid_min_similarity = 1.01
    service = ContentService.from_config(cfg, tmp_db, embedder=make_channel())
    async with service:
        assert (await service.search(QUANTUM)).results == []
