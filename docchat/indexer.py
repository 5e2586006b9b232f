"""
Embedding Indexer Module

Cleans and chunks a document's pages, embeds the chunks in batches with
bounded concurrency and writes each batch to the chunk store in one call.

The document only becomes "indexed" once every batch of the new version
has been written; on any failure the partial version is discarded and the
previously active version (if any) stays readable.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence

from tqdm.auto import tqdm

from .chunker import TextChunker, chunk_pages
from .data_models import Chunk, IndexingResult, PageText
from .document_registry import DocumentRegistry
from .embedder import EmbeddingError, EmbeddingService
from .utils import clean_page_text, run_blocking
from .vector_store import ChunkStore

logger = logging.getLogger(__name__)


class IndexingError(Exception):
    """Raised when a document could not be indexed; nothing of the attempt is kept."""


class EmbeddingIndexer:
    """
    Builds the searchable chunk index for a document.

    Batches are embedded concurrently (at most `max_concurrency` in flight)
    and may finish in any order; ordering is carried by `chunk_index`.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedder: EmbeddingService,
        store: ChunkStore,
        registry: DocumentRegistry,
        batch_size: int = 50,
        max_concurrency: int = 2,
        show_progress: bool = False
    ):
        """
        Initialize the indexer.

        Args:
            chunker: Chunker shared with every other call site
            embedder: Embedding backend
            store: Chunk store receiving one bulk write per batch
            registry: Holds the indexed flag and active version
            batch_size: Chunks per embedding request
            max_concurrency: Embedding batches in flight at once
            show_progress: Whether to show a tqdm progress bar
        """
        if batch_size < 1 or max_concurrency < 1:
            raise ValueError("batch_size and max_concurrency must be positive")
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.registry = registry
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.show_progress = show_progress
        self._locks: Dict[str, list] = {}

    async def index(
        self,
        document_id: str,
        pages: Sequence[PageText],
        title: Optional[str] = None,
        force: bool = False
    ) -> IndexingResult:
        """
        Index a document from its extracted pages.

        Already indexed documents are skipped unless `force` is set, in which
        case the new chunks replace the old ones. Runs on the same document
        take turns.
        """
        async with self._document_lock(document_id):
            if not force and await run_blocking(self.registry.is_indexed, document_id):
                status = await run_blocking(self.registry.get, document_id)
                logger.info(f"Document {document_id} already indexed, skipping")
                return IndexingResult(
                    document_id=document_id,
                    chunk_count=status.chunk_count,
                    page_count=status.page_count,
                    index_version=status.index_version,
                    skipped=True,
                )

            cleaned = [PageText(page.page_number, clean_page_text(page.content)) for page in pages]
            chunks = chunk_pages(self.chunker, cleaned, document_id)
            stats = self.chunker.get_statistics(chunks)
            logger.info(
                f"Document {document_id}: {len(cleaned)} pages -> {stats['total_chunks']} chunks "
                f"(avg {stats['avg_chunk_size']:.0f} chars)"
            )
            return await self._write_version(document_id, chunks, len(cleaned), title)

    async def index_chunks(
        self,
        document_id: str,
        chunks: List[Chunk],
        page_count: Optional[int] = None,
        title: Optional[str] = None
    ) -> IndexingResult:
        """Embed and store already chunked text as a new version of the document."""
        if page_count is None:
            page_count = len({c.page_number for c in chunks})
        async with self._document_lock(document_id):
            return await self._write_version(document_id, chunks, page_count, title)

    @asynccontextmanager
    async def _document_lock(self, document_id: str) -> AsyncIterator[None]:
        """Serialize index runs per document; the lock is dropped once nobody holds or waits for it."""
        entry = self._locks.get(document_id)
        if entry is None:
            entry = self._locks[document_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[document_id]

    async def _write_version(
        self,
        document_id: str,
        chunks: List[Chunk],
        page_count: int,
        title: Optional[str]
    ) -> IndexingResult:
        batches = [chunks[i:i + self.batch_size] for i in range(0, len(chunks), self.batch_size)]
        semaphore = asyncio.Semaphore(self.max_concurrency)
        progress = tqdm(total=len(batches), desc="Embedding batches", disable=not self.show_progress)
        version: Optional[str] = None
        tasks: List[asyncio.Task] = []

        try:
            version = await run_blocking(self.registry.begin_indexing, document_id, title)
            tasks = [
                asyncio.create_task(self._index_batch(number, batch, version, semaphore, progress))
                for number, batch in enumerate(batches, start=1)
            ]
            written = await asyncio.gather(*tasks)
            replaced = await run_blocking(
                self.registry.mark_indexed, document_id, version, page_count, sum(written)
            )
        except asyncio.CancelledError:
            await self._abort(document_id, version, tasks)
            raise
        except Exception as exc:
            await self._abort(document_id, version, tasks)
            raise IndexingError(f"Indexing of document {document_id} failed: {exc}") from exc
        finally:
            progress.close()

        if replaced is not None and replaced != version:
            await run_blocking(self.store.delete_version, document_id, replaced)
        logger.info(f"Document {document_id}: indexed {sum(written)} chunks in {len(batches)} batches")

        return IndexingResult(
            document_id=document_id,
            chunk_count=sum(written),
            page_count=page_count,
            batch_count=len(batches),
            index_version=version,
        )

    async def _index_batch(
        self,
        number: int,
        batch: List[Chunk],
        version: str,
        semaphore: asyncio.Semaphore,
        progress
    ) -> int:
        async with semaphore:
            embeddings = await self.embedder.embed_texts([c.content for c in batch])
            if len(embeddings) != len(batch):
                raise EmbeddingError(f"Batch {number}: expected {len(batch)} embeddings, got {len(embeddings)}")
            for chunk, embedding in zip(batch, embeddings):
                chunk.embedding = embedding
            written = await run_blocking(self.store.add_chunks, batch, version)
            progress.update(1)
            logger.debug(f"Batch {number}: wrote {written} chunks to version {version}")
            return written

    async def _abort(self, document_id: str, version: Optional[str], tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if version is None:
            return
        await run_blocking(self.store.delete_version, document_id, version)
        await run_blocking(self.registry.abort_indexing, document_id, version)
        logger.warning(f"Document {document_id}: discarded partial version {version}")

    async def delete_document(self, document_id: str) -> bool:
        """Remove every chunk version and the registry entry of a document."""
        async with self._document_lock(document_id):
            await run_blocking(self.store.delete_document, document_id)
            return await run_blocking(self.registry.delete, document_id)
