"""
Tests for the embedding indexer and the document registry.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from docchat.data_models import PageText
from docchat.document_registry import IndexVersionConflict
from docchat.indexer import EmbeddingIndexer, IndexingError

from .fakes import SOLAR_PAGES, FailingEmbeddingService, FakeEmbeddingService


def versions_of(store, document_id):
    return {version for (doc, version) in store._versions if doc == document_id}


class TestEmbeddingIndexer:
    """Test indexing, re-indexing and failure handling."""

    def test_index_document(self, indexer, store, registry, solar_pages):
        result = asyncio.run(indexer.index("solar", solar_pages, title="Solar farm report"))

        assert result.chunk_count == len(SOLAR_PAGES)
        assert result.page_count == len(SOLAR_PAGES)
        assert result.batch_count == 4
        assert not result.skipped
        assert registry.is_indexed("solar")
        assert registry.get_active_version("solar") == result.index_version
        assert store.count("solar", result.index_version) == result.chunk_count

        chunks = store.get_chunks("solar", result.index_version)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert [c.page_number for c in chunks] == list(range(1, len(SOLAR_PAGES) + 1))

    def test_registry_status(self, indexer, registry, solar_pages):
        asyncio.run(indexer.index("solar", solar_pages, title="Solar farm report"))
        status = registry.get("solar")
        assert status.title == "Solar farm report"
        assert status.text_indexed
        assert status.chunk_count == len(SOLAR_PAGES)
        assert status.indexed_at is not None
        assert status.to_dict()["textExtracted"] is True

    def test_already_indexed_is_skipped(self, indexer, embedder, solar_pages):
        first = asyncio.run(indexer.index("solar", solar_pages))
        calls = embedder.calls

        second = asyncio.run(indexer.index("solar", solar_pages))

        assert second.skipped
        assert second.index_version == first.index_version
        assert second.chunk_count == first.chunk_count
        assert embedder.calls == calls

    def test_force_reindex_replaces_chunks(self, indexer, store, registry, solar_pages):
        first = asyncio.run(indexer.index("solar", solar_pages))
        second = asyncio.run(indexer.index("solar", solar_pages[:4], force=True))

        assert second.index_version != first.index_version
        assert registry.get_active_version("solar") == second.index_version
        assert versions_of(store, "solar") == {second.index_version}
        assert store.count("solar", second.index_version) == 4

    def test_failure_discards_partial_version(self, chunker, store, registry, solar_pages):
        """Batches written before the failure are removed and the flag stays false."""
        embedder = FailingEmbeddingService(succeed_calls=2)
        indexer = EmbeddingIndexer(chunker, embedder, store, registry, batch_size=1, max_concurrency=1)

        with pytest.raises(IndexingError):
            asyncio.run(indexer.index("solar", solar_pages))

        status = registry.get("solar")
        assert not status.text_indexed
        assert status.index_version is None
        assert versions_of(store, "solar") == set()

    def test_failed_reindex_keeps_previous_version(self, indexer, chunker, store, registry, solar_pages):
        first = asyncio.run(indexer.index("solar", solar_pages))

        failing = EmbeddingIndexer(chunker, FailingEmbeddingService(), store, registry, batch_size=2)
        with pytest.raises(IndexingError):
            asyncio.run(failing.index("solar", solar_pages, force=True))

        assert registry.get_active_version("solar") == first.index_version
        assert versions_of(store, "solar") == {first.index_version}
        assert store.count("solar", first.index_version) == first.chunk_count

    def test_concurrency_is_bounded(self, chunker, store, registry, solar_pages):
        embedder = FakeEmbeddingService(delay=0.01)
        indexer = EmbeddingIndexer(chunker, embedder, store, registry, batch_size=1, max_concurrency=2)

        result = asyncio.run(indexer.index("solar", solar_pages))

        assert result.batch_count == len(SOLAR_PAGES)
        assert embedder.max_in_flight <= 2
        assert store.count("solar", result.index_version) == len(SOLAR_PAGES)

    def test_pages_are_cleaned(self, indexer, store):
        pages = [PageText(1, "Raw\x00   text   with\t\tgaps.")]
        result = asyncio.run(indexer.index("raw", pages))
        [chunk] = store.get_chunks("raw", result.index_version)
        assert chunk.content == "Raw text with gaps."

    def test_empty_document(self, indexer, registry):
        result = asyncio.run(indexer.index("blank", [PageText(1, "   ")]))
        assert result.chunk_count == 0
        assert registry.is_indexed("blank")

    def test_delete_document(self, indexer, store, registry, solar_pages):
        asyncio.run(indexer.index("solar", solar_pages))

        assert asyncio.run(indexer.delete_document("solar"))
        assert registry.get("solar") is None
        assert versions_of(store, "solar") == set()
        assert not asyncio.run(indexer.delete_document("solar"))

    def test_overlapping_reindexes_take_turns(self, chunker, store, registry, solar_pages):
        """Two forced runs on one document: the live version matches the registry."""
        embedder = FakeEmbeddingService(delay=0.01)
        indexer = EmbeddingIndexer(chunker, embedder, store, registry, batch_size=1, max_concurrency=1)
        asyncio.run(indexer.index("solar", solar_pages))

        async def overlap():
            return await asyncio.gather(
                indexer.index("solar", solar_pages[:8], force=True),
                indexer.index("solar", solar_pages[:2], force=True),
            )

        _, second = asyncio.run(overlap())

        status = registry.get("solar")
        assert status.index_version == second.index_version
        assert status.chunk_count == 2
        assert store.count("solar", status.index_version) == status.chunk_count
        assert versions_of(store, "solar") == {status.index_version}
        assert indexer._locks == {}

    def test_concurrent_first_index_is_indexed_once(self, indexer, registry, solar_pages):
        async def overlap():
            return await asyncio.gather(
                indexer.index("fresh", solar_pages),
                indexer.index("fresh", solar_pages),
            )

        first, second = asyncio.run(overlap())

        assert not first.skipped
        assert second.skipped
        assert second.index_version == first.index_version
        assert registry.get("fresh").chunk_count == len(SOLAR_PAGES)

    def test_separate_indexers_cannot_corrupt_live_version(self, chunker, store, registry, solar_pages):
        """Runs that do not share a lock: the superseded one fails and cleans up after itself."""
        slow = EmbeddingIndexer(chunker, FakeEmbeddingService(delay=0.01), store, registry,
                                batch_size=1, max_concurrency=1)
        fast = EmbeddingIndexer(chunker, FakeEmbeddingService(delay=0.01), store, registry,
                                batch_size=1, max_concurrency=1)

        async def overlap():
            return await asyncio.gather(
                slow.index("solar", solar_pages[:8], force=True),
                fast.index("solar", solar_pages[:2], force=True),
                return_exceptions=True,
            )

        outcomes = asyncio.run(overlap())

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], IndexingError)
        status = registry.get("solar")
        assert status.text_indexed
        assert store.count("solar", status.index_version) == status.chunk_count
        assert versions_of(store, "solar") == {status.index_version}


class TestDocumentRegistry:
    """Test version bookkeeping."""

    def test_begin_indexing_keeps_active_version(self, registry):
        first = registry.begin_indexing("doc", title="Doc")
        registry.mark_indexed("doc", first, page_count=1, chunk_count=1)

        second = registry.begin_indexing("doc")

        assert second != first
        assert registry.get_active_version("doc") == first
        assert not registry.is_indexed("doc")

    def test_abort_ignores_other_versions(self, registry):
        version = registry.begin_indexing("doc")
        registry.abort_indexing("doc", "some-other-version")
        registry.mark_indexed("doc", version, page_count=2, chunk_count=3)
        assert registry.get("doc").chunk_count == 3

    def test_mark_unknown_document(self, registry):
        with pytest.raises(LookupError):
            registry.mark_indexed("missing", "v1", page_count=1, chunk_count=1)

    def test_superseded_version_is_rejected(self, registry):
        stale = registry.begin_indexing("doc")
        current = registry.begin_indexing("doc")

        with pytest.raises(IndexVersionConflict):
            registry.mark_indexed("doc", stale, page_count=1, chunk_count=1)

        assert registry.mark_indexed("doc", current, page_count=1, chunk_count=1) is None
        assert registry.get_active_version("doc") == current

    def test_mark_indexed_returns_replaced_version(self, registry):
        first = registry.begin_indexing("doc")
        registry.mark_indexed("doc", first, page_count=1, chunk_count=1)
        second = registry.begin_indexing("doc")
        assert registry.mark_indexed("doc", second, page_count=1, chunk_count=1) == first

    def test_concurrent_registration(self, registry):
        """Parallel first reservations of one document all succeed."""
        with ThreadPoolExecutor(max_workers=4) as pool:
            versions = list(pool.map(lambda _: registry.begin_indexing("doc", title="Doc"), range(8)))

        assert len(set(versions)) == 8
        assert registry.get("doc").title == "Doc"
