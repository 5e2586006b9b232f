"""Core modules for the document chat system."""
from .chunker import TextChunker, chunk_pages
from .data_models import (
    Chunk,
    ChatMessage,
    Citation,
    IndexingResult,
    PageText,
    QueryClassification,
    QueryType,
    SearchResult,
    StreamEvent,
)
from .embedder import EmbeddingError, EmbeddingService, create_embedding_service
from .generator import AnswerStream, CompletionError, CompletionService, GeminiCompletionService
from .indexer import EmbeddingIndexer, IndexingError
from .query_classifier import QueryClassifier, extract_page_numbers, preprocess_query
from .retriever import RetrievalEngine
from .storage import InMemoryChunkStore
from .vector_store import ChromaChunkStore, ChunkFilter, ChunkStore
