"""
In-memory chunk store with exact numpy cosine search.
"""
import re
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np

from .data_models import Chunk, SearchResult
from .utils import compute_cosine_similarities, sort_by_similarity
from .vector_store import ChunkFilter, ChunkStore


class InMemoryChunkStore(ChunkStore):
    """A simplified chunk store that keeps everything in process memory."""

    def __init__(self):
        self._versions: Dict[Tuple[str, str], List[Chunk]] = {}
        self._lock = threading.Lock()

    def _select(self, document_id: str, index_version: str,
                chunk_filter: Optional[ChunkFilter]) -> List[Chunk]:
        with self._lock:
            chunks = list(self._versions.get((document_id, index_version), []))
        if chunk_filter is None:
            return chunks
        if chunk_filter.pages is not None:
            pages = set(chunk_filter.pages)
            chunks = [c for c in chunks if c.page_number in pages]
        if chunk_filter.page_range is not None:
            lower, upper = chunk_filter.integer_page_bounds()
            chunks = [c for c in chunks if lower < c.page_number <= upper]
        if chunk_filter.content_pattern:
            pattern = re.compile(chunk_filter.content_pattern)
            chunks = [c for c in chunks if pattern.search(c.content)]
        if chunk_filter.exclude_ids:
            chunks = [c for c in chunks if c.id not in chunk_filter.exclude_ids]
        return chunks

    def add_chunks(self, chunks: List[Chunk], index_version: str) -> int:
        """Adds embedded chunks to the store."""
        if not chunks:
            return 0
        if any(c.embedding is None for c in chunks):
            raise ValueError("All chunks must be embedded before they are stored")
        with self._lock:
            for chunk in chunks:
                self._versions.setdefault((chunk.document_id, index_version), []).append(chunk)
        return len(chunks)

    def similarity_search(
        self,
        document_id: str,
        index_version: str,
        query_embedding: np.ndarray,
        k: int,
        chunk_filter: Optional[ChunkFilter] = None
    ) -> List[SearchResult]:
        """Exact cosine ranking over the selected chunks."""
        if k <= 0:
            return []
        chunks = self._select(document_id, index_version, chunk_filter)
        if not chunks:
            return []
        embeddings = np.array([np.asarray(c.embedding, dtype=float) for c in chunks])
        scores = compute_cosine_similarities(np.asarray(query_embedding, dtype=float), embeddings)
        results = [
            SearchResult.from_chunk(chunk, similarity=float(score))
            for chunk, score in zip(chunks, scores)
        ]
        return sort_by_similarity(results)[:k]

    def get_chunks(
        self,
        document_id: str,
        index_version: str,
        chunk_filter: Optional[ChunkFilter] = None,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        chunks = sorted(self._select(document_id, index_version, chunk_filter), key=lambda c: c.chunk_index)
        if limit is not None:
            chunks = chunks[:limit]
        return [SearchResult.from_chunk(c) for c in chunks]

    def count(self, document_id: str, index_version: str) -> int:
        with self._lock:
            return len(self._versions.get((document_id, index_version), []))

    def max_page(self, document_id: str, index_version: str) -> int:
        with self._lock:
            chunks = self._versions.get((document_id, index_version), [])
            return max((c.page_number for c in chunks), default=0)

    def delete_version(self, document_id: str, index_version: str) -> None:
        with self._lock:
            self._versions.pop((document_id, index_version), None)

    def delete_document(self, document_id: str, keep_version: Optional[str] = None) -> None:
        with self._lock:
            for key in [k for k in self._versions if k[0] == document_id and k[1] != keep_version]:
                del self._versions[key]
