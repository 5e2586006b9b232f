"""
Retriever Module

RetrievalEngine: classify the query, pick the strategy for its type and walk
the fallback chain (strategy -> its fallback -> ... -> deterministic) until
one produces results. Retrieval never raises to the caller; at worst it
returns an empty list.
"""
import logging
from typing import Dict, List, Optional

from .data_models import QueryClassification, QueryType, SearchResult
from .document_registry import DocumentRegistry
from .embedder import EmbeddingService
from .query_classifier import QueryClassifier
from .retrieval_strategies import (
    AbstractRetrievalStrategy,
    ChunkSearcher,
    DEFAULT_MIN_SIMILARITY,
    DeterministicFallbackStrategy,
    create_retrieval_strategy,
)
from .utils import dedupe_results, run_blocking
from .vector_store import ChunkStore

logger = logging.getLogger(__name__)

STRATEGY_FOR_TYPE = {
    QueryType.COMPREHENSIVE: 'comprehensive',
    QueryType.TIMELINE: 'timeline',
    QueryType.SUMMARY: 'summary',
    QueryType.PAGE_SPECIFIC: 'page_specific',
    QueryType.KEYWORD: 'hybrid',
    QueryType.GENERAL: 'semantic',
}

_USES_SIMILARITY_FLOOR = {'semantic', 'page_specific', 'hybrid'}


class RetrievalEngine:
    """
    Single entry point for chunk retrieval.

    Implements:
    - Query classification
    - Strategy selection by query type
    - Fallback chain ending in the deterministic first-chunks strategy
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: EmbeddingService,
        registry: DocumentRegistry,
        classifier: Optional[QueryClassifier] = None,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        strategies: Optional[Dict[str, AbstractRetrievalStrategy]] = None
    ):
        """
        Initialize the engine.

        Args:
            store: Chunk store to search
            embedder: Embeds (preprocessed) queries
            registry: Resolves a document's active index version
            classifier: Query classifier (default rule table if None)
            min_similarity: Floor for plain semantic searches
            strategies: Override strategies by name
        """
        self.store = store
        self.embedder = embedder
        self.registry = registry
        self.classifier = classifier or QueryClassifier()
        self.strategies: Dict[str, AbstractRetrievalStrategy] = {}
        for name in STRATEGY_FOR_TYPE.values():
            params = {'min_similarity': min_similarity} if name in _USES_SIMILARITY_FLOOR else {}
            self.strategies[name] = create_retrieval_strategy(name, **params)
        if strategies:
            self.strategies.update(strategies)

    def strategy_chain(self, name: str) -> List[str]:
        """Names of the strategies tried, in order, for a primary strategy."""
        chain = []
        while name is not None and name not in chain:
            chain.append(name)
            if name == 'deterministic':
                break
            name = self.strategies[name].fallback
        if chain[-1] != 'deterministic':
            chain.append('deterministic')
        return chain

    def _strategy(self, name: str, primary: str) -> AbstractRetrievalStrategy:
        if name == 'deterministic':
            return self.strategies.get('deterministic') or DeterministicFallbackStrategy(tag=f"{primary}_fallback")
        return self.strategies[name]

    async def retrieve(
        self,
        document_id: str,
        query: str,
        classification: Optional[QueryClassification] = None
    ) -> List[SearchResult]:
        """
        Retrieve chunks of a document for a query.

        Args:
            document_id: Document to search
            query: Raw user query
            classification: Precomputed classification (computed if None)

        Returns:
            Up to chunk_budget unique SearchResults; empty when the document
            has no index or the store is unreachable
        """
        if classification is None:
            classification = self.classifier.classify(query)

        try:
            version = await run_blocking(self.registry.get_active_version, document_id)
        except Exception as exc:
            logger.error(f"Could not resolve index version of document {document_id}: {exc}")
            return []
        if version is None:
            logger.info(f"Document {document_id} has no chunk index")
            return []

        searcher = ChunkSearcher(self.store, self.embedder, document_id, version)
        primary = STRATEGY_FOR_TYPE[classification.query_type]
        logger.info(
            f"Query type: {classification.query_type.value}, budget: {classification.chunk_budget}, "
            f"pages: {classification.explicit_pages}"
        )

        for name in self.strategy_chain(primary):
            strategy = self._strategy(name, primary)
            try:
                results = await strategy.retrieve(searcher, query, classification)
            except Exception as exc:
                logger.warning(f"Strategy '{name}' failed for document {document_id}: {exc}")
                continue
            if results:
                results = dedupe_results(results)[:classification.chunk_budget]
                logger.info(f"Strategy '{name}' returned {len(results)} chunks")
                return results
            logger.info(f"Strategy '{name}' found nothing, falling back")

        return []
