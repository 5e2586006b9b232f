"""
Chat Service - Wires the document chat pipeline together.

One instance per process owns the chunker, embedder, chunk store, database
and retrieval engine, so every endpoint goes through the same components.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from config.settings import RAGConfig
from docchat.chunker import TextChunker
from docchat.conversation_store import DEFAULT_PAGE_SIZE, ConversationStore
from docchat.data_models import (
    ChatMessage,
    ConversationSummary,
    IndexingResult,
    MessagePage,
    PageText,
    QueryClassification,
    SearchResult,
    StreamEvent,
)
from docchat.database import Database
from docchat.document_registry import DocumentRegistry
from docchat.embedder import EmbeddingService, create_embedding_service
from docchat.generator import AnswerStream, CompletionService, GeminiCompletionService
from docchat.indexer import EmbeddingIndexer
from docchat.query_classifier import QueryClassifier
from docchat.retriever import RetrievalEngine
from docchat.storage import InMemoryChunkStore
from docchat.utils import run_blocking
from docchat.vector_store import ChromaChunkStore, ChunkStore

logger = logging.getLogger(__name__)


class ServiceNotConfigured(Exception):
    """Raised when a request needs a backend that has no credentials."""


def create_chunk_store(config: RAGConfig) -> ChunkStore:
    backend = config.vector_backend.lower()
    if backend == "chroma":
        return ChromaChunkStore(
            collection_name=config.collection_name,
            persist_directory=config.persist_directory,
        )
    elif backend == "memory":
        return InMemoryChunkStore()
    raise ValueError(f"Unknown vector backend: {config.vector_backend}. Valid options: chroma, memory")


class ChatService:
    """
    Service layer behind the HTTP API.

    Components can be injected (tests pass fakes); anything not given is
    built from the config. The completion backend is created on first use so
    the service starts without an API key.
    """

    def __init__(
        self,
        config: Optional[RAGConfig] = None,
        embedder: Optional[EmbeddingService] = None,
        store: Optional[ChunkStore] = None,
        database: Optional[Database] = None,
        completion: Optional[CompletionService] = None
    ):
        self.config = config or RAGConfig.from_env()

        self.chunker = TextChunker(
            chunk_size=self.config.chunk_size,
            min_chunk_size=self.config.min_chunk_size,
            max_chunk_size=self.config.max_chunk_size,
            overlap=self.config.chunk_overlap,
        )
        self.embedder = embedder or create_embedding_service(self.config)
        self.store = store or create_chunk_store(self.config)

        self.database = database or Database(self.config.database_url)
        self.database.create_all()
        self.registry = DocumentRegistry(self.database)
        self.conversations = ConversationStore(self.database)

        self.indexer = EmbeddingIndexer(
            chunker=self.chunker,
            embedder=self.embedder,
            store=self.store,
            registry=self.registry,
            batch_size=self.config.embedding_batch_size,
            max_concurrency=self.config.embedding_max_concurrency,
        )
        self.engine = RetrievalEngine(
            store=self.store,
            embedder=self.embedder,
            registry=self.registry,
            classifier=QueryClassifier(max_budget=self.config.max_chunk_budget),
            min_similarity=self.config.min_similarity,
        )

        self._completion = completion
        self._answer_stream: Optional[AnswerStream] = None

    @property
    def completion_configured(self) -> bool:
        return self._completion is not None or bool(self.config.gemini_api_key)

    @property
    def answer_stream(self) -> AnswerStream:
        """Lazy load the completion backend."""
        if self._answer_stream is None:
            if self._completion is None:
                try:
                    self._completion = GeminiCompletionService(
                        model=self.config.llm_model,
                        temperature=self.config.temperature,
                        max_tokens=self.config.max_tokens,
                        api_key=self.config.gemini_api_key or None,
                    )
                except ValueError as exc:
                    raise ServiceNotConfigured(str(exc)) from exc
            self._answer_stream = AnswerStream(
                self._completion, self.conversations, system_prompt=self.config.system_prompt
            )
        return self._answer_stream

    async def index_document(
        self,
        pdf_id: str,
        pages: Sequence[PageText],
        title: Optional[str] = None,
        force: bool = False
    ) -> IndexingResult:
        """
        Index a document, giving up after the configured timeout.

        Raises:
            asyncio.TimeoutError: Indexing took too long (the attempt is discarded)
            IndexingError: Embedding or storage failed
        """
        return await asyncio.wait_for(
            self.indexer.index(pdf_id, list(pages), title=title, force=force),
            timeout=self.config.index_timeout_seconds,
        )

    async def chunk_count(self, pdf_id: str) -> dict:
        status = await run_blocking(self.registry.get, pdf_id)
        if status is None:
            raise LookupError(f"Document {pdf_id} not found")
        count = 0
        if status.index_version:
            count = await run_blocking(self.store.count, pdf_id, status.index_version)
        return {"count": count, "pdfId": pdf_id, "textExtracted": status.text_indexed}

    async def delete_document(self, pdf_id: str) -> bool:
        return await self.indexer.delete_document(pdf_id)

    async def retrieve(self, pdf_id: str, query: str) -> Tuple[QueryClassification, List[SearchResult]]:
        classification = self.engine.classifier.classify(query)
        results = await self.engine.retrieve(pdf_id, query, classification)
        return classification, results

    async def start_chat(
        self,
        pdf_id: str,
        messages: List[ChatMessage],
        chat_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Validate a chat request and return its event stream.

        Everything that can be rejected up front (unknown document or
        conversation, missing question, unconfigured backend) raises here,
        before any event is produced.
        """
        if not messages or messages[-1].role != "user" or not messages[-1].content.strip():
            raise ValueError("The last message must be a non-empty user message")
        if await run_blocking(self.registry.get, pdf_id) is None:
            raise LookupError(f"Document {pdf_id} not found")
        if chat_id is not None:
            owner = await run_blocking(self.conversations.get_document_id, chat_id)
            if owner != pdf_id:
                raise LookupError(f"Conversation {chat_id} not found for document {pdf_id}")

        answer_stream = self.answer_stream
        return self._chat_events(answer_stream, pdf_id, messages, chat_id)

    async def _chat_events(
        self,
        answer_stream: AnswerStream,
        pdf_id: str,
        messages: List[ChatMessage],
        chat_id: Optional[str]
    ) -> AsyncIterator[StreamEvent]:
        question = messages[-1].content
        context = await self.engine.retrieve(pdf_id, question)
        logger.info(f"Chat on document {pdf_id}: {len(context)} context chunks")

        events = answer_stream.answer(pdf_id, messages, context, conversation_id=chat_id)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    async def list_messages(
        self,
        chat_id: str,
        before: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> MessagePage:
        if await run_blocking(self.conversations.get_document_id, chat_id) is None:
            raise LookupError(f"Conversation {chat_id} not found")
        return await run_blocking(self.conversations.page_messages, chat_id, before, limit)

    async def list_conversations(self, pdf_id: Optional[str] = None) -> List[ConversationSummary]:
        return await run_blocking(self.conversations.list_conversations, pdf_id)

    async def delete_conversation(self, chat_id: str) -> bool:
        return await run_blocking(self.conversations.delete_conversation, chat_id)

    def close(self) -> None:
        self.database.dispose()


# Global service instance
_service_instance: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Get or create the global chat service instance."""
    global _service_instance
    if _service_instance is None:
        _service_instance = ChatService()
    return _service_instance
