"""
Chunk store tests, run against both backends.

The ChromaDB backend uses an in-process EphemeralClient with a fresh
collection per test.
"""

from dataclasses import replace
from uuid import uuid4

import chromadb
import numpy as np
import pytest

from docchat.data_models import Chunk
from docchat.storage import InMemoryChunkStore
from docchat.vector_store import ChromaChunkStore, ChunkFilter

from .fakes import bag_of_words_embedding

TEXTS = [
    "Solar panels convert sunlight into electricity.",
    "Wind turbines were installed in 1998.",
    "Battery storage smooths the evening peak.",
    "Grid operators schedule maintenance in March.",
    "Panel cleaning improves output by a few percent.",
    "The final report was published in 2010.",
]


def make_chunks(document_id: str = "doc"):
    chunks = []
    for index, text in enumerate(TEXTS):
        chunks.append(Chunk(
            id=f"{document_id}-{index}",
            document_id=document_id,
            page_number=index + 1,
            chunk_index=index,
            content=text,
            start_index=0,
            end_index=len(text),
            embedding=bag_of_words_embedding(text),
        ))
    return chunks


def renamed(chunks):
    """Same chunks under fresh ids, as a re-index would produce."""
    return [replace(c, id=f"new-{c.id}") for c in chunks]


@pytest.fixture(params=["memory", "chroma"])
def chunk_store(request):
    if request.param == "memory":
        return InMemoryChunkStore()
    return ChromaChunkStore(collection_name=f"test_{uuid4().hex}", client=chromadb.EphemeralClient())


@pytest.fixture
def filled_store(chunk_store):
    chunk_store.add_chunks(make_chunks(), "v1")
    return chunk_store


def query_vector(text):
    return bag_of_words_embedding(text)


class TestChunkStore:
    """Test the chunk store contract."""

    def test_add_requires_embeddings(self, chunk_store):
        chunks = make_chunks()
        chunks[0].embedding = None
        with pytest.raises(ValueError):
            chunk_store.add_chunks(chunks, "v1")

    def test_count_and_max_page(self, filled_store):
        assert filled_store.count("doc", "v1") == len(TEXTS)
        assert filled_store.count("doc", "other") == 0
        assert filled_store.max_page("doc", "v1") == len(TEXTS)
        assert filled_store.max_page("doc", "other") == 0

    def test_similarity_search(self, filled_store):
        results = filled_store.similarity_search("doc", "v1", query_vector(TEXTS[2]), k=3)

        assert len(results) == 3
        assert results[0].id == "doc-2"
        assert np.isclose(results[0].similarity, 1.0, atol=1e-4)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)

    def test_search_is_scoped_to_version(self, filled_store):
        filled_store.add_chunks(make_chunks("other-doc"), "v1")
        results = filled_store.similarity_search("doc", "v1", query_vector("solar"), k=20)
        assert len(results) == len(TEXTS)
        assert all(r.document_id == "doc" for r in results)

    def test_page_filter(self, filled_store):
        chunk_filter = ChunkFilter(pages=[2, 4])
        results = filled_store.similarity_search("doc", "v1", query_vector("maintenance"), k=5,
                                                 chunk_filter=chunk_filter)
        assert {r.page_number for r in results} == {2, 4}

    def test_page_range_filter(self, filled_store):
        """Lower bound exclusive, upper bound inclusive."""
        chunk_filter = ChunkFilter(page_range=(2.0, 4.5))
        results = filled_store.get_chunks("doc", "v1", chunk_filter)
        assert [r.page_number for r in results] == [3, 4]

    def test_content_pattern_filter(self, filled_store):
        chunk_filter = ChunkFilter(content_pattern=r"\d{4}")
        results = filled_store.similarity_search("doc", "v1", query_vector("report"), k=5,
                                                 chunk_filter=chunk_filter)
        assert {r.page_number for r in results} == {2, 6}

    def test_case_insensitive_pattern(self, filled_store):
        results = filled_store.get_chunks("doc", "v1", ChunkFilter(content_pattern="(?i)panel"))
        assert [r.page_number for r in results] == [1, 5]

    def test_exclusion(self, filled_store):
        chunk_filter = ChunkFilter(exclude_ids={"doc-2"})
        results = filled_store.similarity_search("doc", "v1", query_vector(TEXTS[2]), k=3,
                                                 chunk_filter=chunk_filter)
        assert len(results) == 3
        assert "doc-2" not in {r.id for r in results}

    def test_get_chunks_ordered(self, filled_store):
        results = filled_store.get_chunks("doc", "v1", limit=4)
        assert [r.chunk_index for r in results] == [0, 1, 2, 3]
        assert all(r.similarity is None for r in results)

    def test_delete_version(self, filled_store):
        filled_store.add_chunks(renamed(make_chunks()), "v2")
        filled_store.delete_version("doc", "v1")
        assert filled_store.count("doc", "v1") == 0
        assert filled_store.count("doc", "v2") == len(TEXTS)

    def test_delete_document_keeps_version(self, chunk_store):
        chunk_store.add_chunks(make_chunks(), "v1")
        chunk_store.add_chunks(renamed(make_chunks()), "v2")

        chunk_store.delete_document("doc", keep_version="v2")

        assert chunk_store.count("doc", "v1") == 0
        assert chunk_store.count("doc", "v2") == len(TEXTS)

        chunk_store.delete_document("doc")
        assert chunk_store.count("doc", "v2") == 0
