"""
Vector Store Module

Chunk storage and similarity search keyed by (document_id, index_version):
- ChunkFilter: page membership, page range, regex content match, id exclusion
- ChunkStore: the interface every backend implements
- ChromaChunkStore: ChromaDB collection with cosine space
"""
import logging
import math
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import chromadb

from .data_models import Chunk, SearchResult
from .utils import sort_by_similarity

logger = logging.getLogger(__name__)


@dataclass
class ChunkFilter:
    """
    Extra predicates combined with a document/version lookup.

    Attributes:
        pages: Only chunks on these page numbers
        page_range: (lower, upper) page bounds, lower exclusive and upper inclusive
        content_pattern: Regular expression the chunk content must match
        exclude_ids: Chunk ids to leave out
    """
    pages: Optional[List[int]] = None
    page_range: Optional[Tuple[float, float]] = None
    content_pattern: Optional[str] = None
    exclude_ids: Set[str] = field(default_factory=set)

    def integer_page_bounds(self) -> Tuple[int, int]:
        lower, upper = self.page_range
        return math.floor(lower + 1e-9), math.floor(upper + 1e-9)


class ChunkStore(ABC):
    """Abstract base class for chunk storage backends."""

    @abstractmethod
    def add_chunks(self, chunks: List[Chunk], index_version: str) -> int:
        """Write embedded chunks under an index version in one bulk call. Returns count written."""
        pass

    @abstractmethod
    def similarity_search(
        self,
        document_id: str,
        index_version: str,
        query_embedding: np.ndarray,
        k: int,
        chunk_filter: Optional[ChunkFilter] = None
    ) -> List[SearchResult]:
        """
        Top-k chunks by cosine similarity (1 - cosine distance).

        Results are ordered by similarity descending, ties broken by lower chunk_index.
        """
        pass

    @abstractmethod
    def get_chunks(
        self,
        document_id: str,
        index_version: str,
        chunk_filter: Optional[ChunkFilter] = None,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        """Chunks ordered by chunk_index ascending (which is also page order), without similarity."""
        pass

    @abstractmethod
    def count(self, document_id: str, index_version: str) -> int:
        pass

    @abstractmethod
    def max_page(self, document_id: str, index_version: str) -> int:
        """Highest page number with at least one chunk (0 for an empty version)."""
        pass

    @abstractmethod
    def delete_version(self, document_id: str, index_version: str) -> None:
        pass

    @abstractmethod
    def delete_document(self, document_id: str, keep_version: Optional[str] = None) -> None:
        """Delete every version of a document except `keep_version`."""
        pass


def chunk_metadata(chunk: Chunk, index_version: str) -> Dict[str, Any]:
    return {
        "document_id": chunk.document_id,
        "index_version": index_version,
        "page_number": chunk.page_number,
        "chunk_index": chunk.chunk_index,
        "start_index": chunk.start_index,
        "end_index": chunk.end_index,
        "created_at": chunk.created_at.isoformat(),
    }


def result_from_record(chunk_id: str, content: str, metadata: Dict[str, Any],
                       similarity: Optional[float] = None) -> SearchResult:
    return SearchResult(
        id=chunk_id,
        document_id=metadata["document_id"],
        page_number=int(metadata["page_number"]),
        chunk_index=int(metadata["chunk_index"]),
        content=content,
        start_index=int(metadata.get("start_index", 0)),
        end_index=int(metadata.get("end_index", 0)),
        similarity=similarity,
    )


class ChromaChunkStore(ChunkStore):
    """
    ChromaDB-based chunk store.

    Features:
    - Persistent storage (or any injected chromadb client)
    - Cosine similarity search
    - Metadata and document-content filtering
    """

    def __init__(
        self,
        collection_name: str = "document_chunks",
        persist_directory: Optional[str] = "./chroma_db",
        client=None
    ):
        """
        Initialize the chunk store.

        Args:
            collection_name: Name of the ChromaDB collection
            persist_directory: Directory for persistent storage (ignored when client is given)
            client: Pre-built chromadb client, e.g. chromadb.EphemeralClient()
        """
        self.collection_name = collection_name
        self.persist_directory = persist_directory

        if client is None:
            os.makedirs(persist_directory, exist_ok=True)
            client = chromadb.PersistentClient(path=persist_directory)
        self.client = client

        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"}
        )

    def _where(self, document_id: str, index_version: Optional[str],
               chunk_filter: Optional[ChunkFilter] = None) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = [{"document_id": document_id}]
        if index_version is not None:
            clauses.append({"index_version": index_version})
        if chunk_filter is not None:
            if chunk_filter.pages is not None:
                clauses.append({"page_number": {"$in": [int(p) for p in chunk_filter.pages]}})
            if chunk_filter.page_range is not None:
                lower, upper = chunk_filter.integer_page_bounds()
                clauses.append({"page_number": {"$gt": lower}})
                clauses.append({"page_number": {"$lte": upper}})
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    @staticmethod
    def _where_document(chunk_filter: Optional[ChunkFilter]) -> Optional[Dict[str, Any]]:
        if chunk_filter is None or not chunk_filter.content_pattern:
            return None
        return {"$regex": chunk_filter.content_pattern}

    def add_chunks(self, chunks: List[Chunk], index_version: str) -> int:
        if not chunks:
            return 0
        missing = [c.id for c in chunks if c.embedding is None]
        if missing:
            raise ValueError(f"{len(missing)} chunks have no embedding")

        self.collection.add(
            ids=[c.id for c in chunks],
            embeddings=[np.asarray(c.embedding, dtype=float).tolist() for c in chunks],
            documents=[c.content for c in chunks],
            metadatas=[chunk_metadata(c, index_version) for c in chunks]
        )
        return len(chunks)

    def similarity_search(
        self,
        document_id: str,
        index_version: str,
        query_embedding: np.ndarray,
        k: int,
        chunk_filter: Optional[ChunkFilter] = None
    ) -> List[SearchResult]:
        if k <= 0:
            return []
        if chunk_filter is not None and chunk_filter.pages is not None and not chunk_filter.pages:
            return []

        excluded = chunk_filter.exclude_ids if chunk_filter is not None else set()
        query_params = {
            "query_embeddings": [np.asarray(query_embedding, dtype=float).tolist()],
            # Over-fetch so exclusions can be dropped afterwards.
            "n_results": k + len(excluded),
            "where": self._where(document_id, index_version, chunk_filter),
            "include": ["documents", "metadatas", "distances"]
        }
        where_document = self._where_document(chunk_filter)
        if where_document:
            query_params["where_document"] = where_document

        results = self.collection.query(**query_params)

        output = []
        if not results['ids'] or not results['ids'][0]:
            return output
        for i in range(len(results['ids'][0])):
            chunk_id = results['ids'][0][i]
            if chunk_id in excluded:
                continue
            # ChromaDB returns cosine distance, so similarity = 1 - distance
            similarity = 1 - results['distances'][0][i]
            output.append(result_from_record(
                chunk_id,
                results['documents'][0][i],
                results['metadatas'][0][i],
                similarity=float(similarity),
            ))
        return sort_by_similarity(output)[:k]

    def get_chunks(
        self,
        document_id: str,
        index_version: str,
        chunk_filter: Optional[ChunkFilter] = None,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        if chunk_filter is not None and chunk_filter.pages is not None and not chunk_filter.pages:
            return []
        get_params = {
            "where": self._where(document_id, index_version, chunk_filter),
            "include": ["documents", "metadatas"]
        }
        where_document = self._where_document(chunk_filter)
        if where_document:
            get_params["where_document"] = where_document

        results = self.collection.get(**get_params)
        excluded = chunk_filter.exclude_ids if chunk_filter is not None else set()
        output = [
            result_from_record(id_, doc, meta)
            for id_, doc, meta in zip(results['ids'], results['documents'], results['metadatas'])
            if id_ not in excluded
        ]
        output.sort(key=lambda r: r.chunk_index)
        if limit is not None:
            output = output[:limit]
        return output

    def count(self, document_id: str, index_version: str) -> int:
        results = self.collection.get(where=self._where(document_id, index_version), include=["metadatas"])
        return len(results['ids'])

    def max_page(self, document_id: str, index_version: str) -> int:
        results = self.collection.get(
            where=self._where(document_id, index_version),
            include=["metadatas"]
        )
        pages = [int(meta["page_number"]) for meta in results['metadatas']]
        return max(pages) if pages else 0

    def delete_version(self, document_id: str, index_version: str) -> None:
        self.collection.delete(where=self._where(document_id, index_version))

    def delete_document(self, document_id: str, keep_version: Optional[str] = None) -> None:
        if keep_version is None:
            where = {"document_id": document_id}
        else:
            where = {"$and": [
                {"document_id": document_id},
                {"index_version": {"$ne": keep_version}},
            ]}
        self.collection.delete(where=where)
        logger.info(f"Deleted chunks of document {document_id} (kept version: {keep_version})")

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about the chunk store."""
        return {
            'total_chunks': self.collection.count(),
            'collection_name': self.collection_name,
            'persist_directory': self.persist_directory,
        }
