"""
Shared fixtures: storage backed by a temporary SQLite file, the in-memory
chunk store and a small indexed document.
"""

import asyncio
from typing import List

import pytest

from docchat.chunker import TextChunker
from docchat.conversation_store import ConversationStore
from docchat.data_models import PageText
from docchat.database import Database
from docchat.document_registry import DocumentRegistry
from docchat.indexer import EmbeddingIndexer
from docchat.storage import InMemoryChunkStore

from .fakes import SOLAR_PAGES, FakeEmbeddingService


@pytest.fixture
def solar_pages() -> List[PageText]:
    return [PageText(number, text) for number, text in enumerate(SOLAR_PAGES, start=1)]


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'docchat.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def registry(database):
    return DocumentRegistry(database)


@pytest.fixture
def conversations(database):
    return ConversationStore(database)


@pytest.fixture
def store():
    return InMemoryChunkStore()


@pytest.fixture
def embedder():
    return FakeEmbeddingService()


@pytest.fixture
def chunker():
    return TextChunker(chunk_size=200, min_chunk_size=80, max_chunk_size=300, overlap=40)


@pytest.fixture
def indexer(chunker, embedder, store, registry):
    return EmbeddingIndexer(chunker, embedder, store, registry, batch_size=3, max_concurrency=2)


@pytest.fixture
def indexed_document(indexer, solar_pages):
    """The solar farm report indexed as document 'solar'; one chunk per page."""
    result = asyncio.run(indexer.index("solar", solar_pages, title="Solar farm report"))
    assert result.chunk_count == len(SOLAR_PAGES)
    return result
