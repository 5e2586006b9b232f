"""
Retrieval Strategies Module

Implements strategy pattern for query-aware chunk selection:
- SemanticRetrievalStrategy: Top-k by similarity above a floor
- ComprehensiveRetrievalStrategy: Top chunks from each fifth of the document
- TimelineRetrievalStrategy: Date-bearing chunks first, presented in page order
- SummaryRetrievalStrategy: Top chunks from each third of the document
- PageSpecificRetrievalStrategy: Chunks of the requested pages plus semantic context
- HybridRetrievalStrategy: Semantic search plus case-insensitive keyword match
- DeterministicFallbackStrategy: First chunks of the document, no embedding needed

Usage:
    strategy = create_retrieval_strategy('comprehensive')
    results = await strategy.retrieve(searcher, query, classification)
"""
import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .data_models import QueryClassification, QueryType, SearchResult
from .embedder import EmbeddingService
from .query_classifier import preprocess_query
from .utils import dedupe_results, run_blocking, sort_by_page, sort_by_similarity
from .vector_store import ChunkFilter, ChunkStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 0.1

MONTH_NAMES = (
    "january|february|march|april|may|june|july|august|"
    "september|october|november|december"
)
# Understood by both Python's re and ChromaDB's regex filter.
DATE_PATTERN = rf"\d{{4}}|\d{{1,2}}/\d{{1,2}}/\d{{4}}|(?i:{MONTH_NAMES})"

KEYWORD_MIN_LENGTH = 4
NON_WORD = re.compile(r'\W+')


def first_keyword(query: str) -> Optional[str]:
    """First word of the query longer than three characters, lowercased."""
    for word in query.lower().split():
        cleaned = NON_WORD.sub('', word)
        if len(cleaned) >= KEYWORD_MIN_LENGTH:
            return cleaned
    return None


def keyword_pattern(keyword: str) -> str:
    return f"(?i){re.escape(keyword)}"


class ChunkSearcher:
    """
    Async view of one document version in the chunk store.

    Blocking store calls run in the executor; query embeddings are cached
    per query string for the lifetime of one retrieval call.
    """

    def __init__(self, store: ChunkStore, embedder: EmbeddingService, document_id: str, index_version: str):
        self.store = store
        self.embedder = embedder
        self.document_id = document_id
        self.index_version = index_version
        self._embeddings: Dict[str, np.ndarray] = {}
        self._max_page: Optional[int] = None

    async def embed(self, query: str) -> np.ndarray:
        if query not in self._embeddings:
            self._embeddings[query] = await self.embedder.embed_query(query)
        return self._embeddings[query]

    async def search(self, query_embedding: np.ndarray, k: int,
                     chunk_filter: Optional[ChunkFilter] = None) -> List[SearchResult]:
        return await run_blocking(
            self.store.similarity_search,
            self.document_id, self.index_version, query_embedding, k, chunk_filter
        )

    async def fetch(self, chunk_filter: Optional[ChunkFilter] = None,
                    limit: Optional[int] = None) -> List[SearchResult]:
        return await run_blocking(
            self.store.get_chunks, self.document_id, self.index_version, chunk_filter, limit
        )

    async def max_page(self) -> int:
        if self._max_page is None:
            self._max_page = await run_blocking(self.store.max_page, self.document_id, self.index_version)
        return self._max_page


class AbstractRetrievalStrategy(ABC):
    """Abstract base class for retrieval strategies."""

    # Name of the strategy to try when this one fails or finds nothing.
    fallback: Optional[str] = "deterministic"

    @abstractmethod
    async def retrieve(
        self,
        searcher: ChunkSearcher,
        query: str,
        classification: QueryClassification
    ) -> List[SearchResult]:
        """
        Select up to `classification.chunk_budget` chunks.

        Args:
            searcher: Document version to search
            query: Original user query
            classification: Query type, chunk budget and explicit pages

        Returns:
            Ordered SearchResult list tagged with the producing sub-path
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return strategy name."""
        pass

    def get_parameters(self) -> Dict[str, Any]:
        """Return current strategy parameters."""
        return {}


class SemanticRetrievalStrategy(AbstractRetrievalStrategy):
    """Plain semantic search: rank every chunk, drop those under the similarity floor."""

    fallback = "deterministic"

    def __init__(self, min_similarity: float = DEFAULT_MIN_SIMILARITY):
        self.min_similarity = min_similarity

    def get_name(self) -> str:
        return "semantic"

    def get_parameters(self) -> Dict[str, Any]:
        return {'min_similarity': self.min_similarity}

    async def retrieve(self, searcher, query, classification):
        processed = preprocess_query(query, classification.query_type)
        return await self.search(searcher, processed, classification.chunk_budget)

    async def search(self, searcher: ChunkSearcher, processed_query: str, k: int,
                     exclude_ids: Sequence[str] = (), tag: str = "semantic") -> List[SearchResult]:
        if k <= 0:
            return []
        embedding = await searcher.embed(processed_query)
        chunk_filter = ChunkFilter(exclude_ids=set(exclude_ids)) if exclude_ids else None
        results = await searcher.search(embedding, k, chunk_filter)
        return [
            r.tagged(tag) for r in results
            if r.similarity is not None and r.similarity >= self.min_similarity
        ]


class SectionedRetrievalStrategy(AbstractRetrievalStrategy):
    """
    Partition the pages into contiguous sections and rank within each.

    A page p belongs to the section (cut[i-1] * max_page, cut[i] * max_page];
    sections rank-select rather than threshold-select, so no similarity floor.
    """

    cuts: Sequence[float] = ()
    tag: str = ""

    @abstractmethod
    def per_section(self, budget: int) -> int:
        """Chunks to take from each section."""
        pass

    def sections(self, max_page: int) -> List[tuple]:
        bounds = [0.0] + [max_page * cut for cut in self.cuts] + [float(max_page)]
        return list(zip(bounds[:-1], bounds[1:]))

    async def retrieve(self, searcher, query, classification):
        max_page = await searcher.max_page()
        if max_page <= 0:
            return []
        embedding = await searcher.embed(preprocess_query(query, classification.query_type))
        k = self.per_section(classification.chunk_budget)

        # Sections are independent; merge order does not depend on arrival.
        per_section = await asyncio.gather(*[
            searcher.search(embedding, k, ChunkFilter(page_range=section))
            for section in self.sections(max_page)
        ])
        merged = [r.tagged(self.tag) for results in per_section for r in results]
        return sort_by_similarity(dedupe_results(merged))[:classification.chunk_budget]


class ComprehensiveRetrievalStrategy(SectionedRetrievalStrategy):
    """Top `ceil(budget / 5)` chunks from each fifth of the document."""

    cuts = (0.2, 0.4, 0.6, 0.8)
    tag = "comprehensive"
    fallback = "semantic"

    def per_section(self, budget: int) -> int:
        return math.ceil(budget / 5)

    def get_name(self) -> str:
        return "comprehensive"

    def get_parameters(self) -> Dict[str, Any]:
        return {'sections': len(self.cuts) + 1}


class SummaryRetrievalStrategy(SectionedRetrievalStrategy):
    """Top 3 chunks from each third of the document."""

    cuts = (0.33, 0.66)
    tag = "summary_distributed"
    fallback = "deterministic"

    def __init__(self, per_section_count: int = 3):
        self.per_section_count = per_section_count

    def per_section(self, budget: int) -> int:
        return self.per_section_count

    def get_name(self) -> str:
        return "summary"

    def get_parameters(self) -> Dict[str, Any]:
        return {'sections': len(self.cuts) + 1, 'per_section': self.per_section_count}


class TimelineRetrievalStrategy(AbstractRetrievalStrategy):
    """
    Chronological retrieval.

    Most of the budget goes to chunks that mention a year, a date or a month
    name; the rest is filled with the best remaining chunks. The merged list
    is returned in page order, not similarity order.
    """

    fallback = "semantic"

    def __init__(self, date_share: float = 0.7):
        self.date_share = date_share

    def get_name(self) -> str:
        return "timeline"

    def get_parameters(self) -> Dict[str, Any]:
        return {'date_share': self.date_share}

    async def retrieve(self, searcher, query, classification):
        budget = classification.chunk_budget
        embedding = await searcher.embed(preprocess_query(query, classification.query_type))

        date_k = math.floor(budget * self.date_share)
        dated = []
        if date_k > 0:
            dated = await searcher.search(embedding, date_k, ChunkFilter(content_pattern=DATE_PATTERN))
        dated = [r.tagged("timeline_date") for r in dated]

        context = []
        remaining = budget - len(dated)
        if remaining > 0:
            context = await searcher.search(
                embedding, remaining, ChunkFilter(exclude_ids={r.id for r in dated})
            )
        context = [r.tagged("timeline_context") for r in context]

        return sort_by_page(dedupe_results(dated + context))[:budget]


class PageSpecificRetrievalStrategy(AbstractRetrievalStrategy):
    """
    Chunks of the explicitly requested pages, in page order, with at least
    `budget - 2` slots reserved for them; leftover slots are filled by a
    semantic search of the query with the page reference rewritten away.
    """

    fallback = "deterministic"

    def __init__(self, min_similarity: float = DEFAULT_MIN_SIMILARITY, reserved_context: int = 2):
        self.semantic = SemanticRetrievalStrategy(min_similarity)
        self.reserved_context = reserved_context

    def get_name(self) -> str:
        return "page_specific"

    def get_parameters(self) -> Dict[str, Any]:
        return {'reserved_context': self.reserved_context, **self.semantic.get_parameters()}

    async def retrieve(self, searcher, query, classification):
        budget = classification.chunk_budget
        processed = preprocess_query(query, QueryType.PAGE_SPECIFIC)
        if not classification.explicit_pages:
            return await self.semantic.search(searcher, processed, budget)

        direct_limit = max(budget - self.reserved_context, 4)
        direct = await searcher.fetch(ChunkFilter(pages=list(classification.explicit_pages)), limit=direct_limit)
        direct = [r.tagged("page_direct") for r in direct]
        found_pages = {r.page_number for r in direct}
        missing = [p for p in classification.explicit_pages if p not in found_pages]
        if missing:
            logger.info(f"No chunks on requested pages {missing}")

        context = []
        if len(direct) < budget:
            try:
                context = await self.semantic.search(
                    searcher, processed, budget - len(direct),
                    exclude_ids=[r.id for r in direct], tag="page_context"
                )
            except Exception as exc:
                if not direct:
                    raise
                logger.warning(f"Page context search failed, keeping {len(direct)} page chunks: {exc}")

        return dedupe_results(direct + context)[:budget]


class HybridRetrievalStrategy(AbstractRetrievalStrategy):
    """Semantic search for ~70% of the budget plus keyword matches for ~30%."""

    fallback = "semantic"

    def __init__(self, min_similarity: float = DEFAULT_MIN_SIMILARITY, semantic_share: float = 0.7):
        self.semantic = SemanticRetrievalStrategy(min_similarity)
        self.semantic_share = semantic_share

    def get_name(self) -> str:
        return "hybrid"

    def get_parameters(self) -> Dict[str, Any]:
        return {'semantic_share': self.semantic_share, **self.semantic.get_parameters()}

    async def _keyword_matches(self, searcher: ChunkSearcher, query: str, k: int) -> List[SearchResult]:
        keyword = first_keyword(query)
        if keyword is None or k <= 0:
            return []
        matches = await searcher.fetch(ChunkFilter(content_pattern=keyword_pattern(keyword)), limit=k)
        return [r.tagged("keyword_match") for r in matches]

    async def retrieve(self, searcher, query, classification):
        budget = classification.chunk_budget
        # Small epsilon keeps float noise (10 * 0.7 = 7.000000000000001) from rounding up.
        semantic_k = math.ceil(budget * self.semantic_share - 1e-9)
        keyword_k = math.ceil(budget * (1 - self.semantic_share) - 1e-9)
        processed = preprocess_query(query, classification.query_type)

        semantic, keyword = await asyncio.gather(
            self.semantic.search(searcher, processed, semantic_k),
            self._keyword_matches(searcher, query, keyword_k),
        )
        return dedupe_results(semantic + keyword)[:budget]


class DeterministicFallbackStrategy(AbstractRetrievalStrategy):
    """The document's first chunks in chunk_index order; needs no embedding."""

    fallback = None

    def __init__(self, tag: str = "fallback"):
        self.tag = tag

    def get_name(self) -> str:
        return "deterministic"

    def get_parameters(self) -> Dict[str, Any]:
        return {'tag': self.tag}

    async def retrieve(self, searcher, query, classification):
        results = await searcher.fetch(limit=classification.chunk_budget)
        return [r.tagged(self.tag) for r in results]


STRATEGIES = {
    'semantic': SemanticRetrievalStrategy,
    'comprehensive': ComprehensiveRetrievalStrategy,
    'timeline': TimelineRetrievalStrategy,
    'summary': SummaryRetrievalStrategy,
    'page_specific': PageSpecificRetrievalStrategy,
    'hybrid': HybridRetrievalStrategy,
    'deterministic': DeterministicFallbackStrategy,
}


def create_retrieval_strategy(method: str, **kwargs) -> AbstractRetrievalStrategy:
    """
    Factory function for creating retrieval strategies.

    Args:
        method: One of the names in STRATEGIES
        **kwargs: Strategy-specific parameters

    Returns:
        AbstractRetrievalStrategy instance

    Examples:
        >>> strategy = create_retrieval_strategy('semantic', min_similarity=0.2)
        >>> strategy = create_retrieval_strategy('deterministic', tag='summary_fallback')
    """
    method = method.lower()
    if method not in STRATEGIES:
        raise ValueError(f"Unknown retrieval method: {method}. Valid options: {sorted(STRATEGIES)}")
    return STRATEGIES[method](**kwargs)
