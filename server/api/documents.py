"""
Documents API - Index, inspect and delete a document's chunk index.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from docchat.data_models import PageText
from docchat.indexer import IndexingError

from ..models.schemas import ChunkCountResponse, DeleteResponse, IndexRequest, IndexResponse
from ..services.chat_service import ChatService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.post("/{pdf_id}/index", response_model=IndexResponse)
async def index_document(
    pdf_id: str,
    request: IndexRequest,
    service: ChatService = Depends(get_chat_service)
) -> IndexResponse:
    """
    Chunk, embed and store the extracted pages of a document.

    An already indexed document is left alone unless `force` is set.
    """
    pages = [PageText(page.page_number, page.content) for page in request.pages]
    try:
        result = await service.index_document(pdf_id, pages, title=request.title, force=request.force)
    except asyncio.TimeoutError:
        logger.error(f"Indexing of document {pdf_id} timed out")
        raise HTTPException(
            status_code=504,
            detail=f"Indexing timed out after {service.config.index_timeout_seconds:.0f} seconds"
        )
    except IndexingError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return IndexResponse(**result.to_dict())


@router.get("/{pdf_id}/chunks-count", response_model=ChunkCountResponse)
async def chunks_count(pdf_id: str, service: ChatService = Depends(get_chat_service)) -> ChunkCountResponse:
    """Number of chunks in the document's active index."""
    try:
        return ChunkCountResponse(**await service.chunk_count(pdf_id))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{pdf_id}", response_model=DeleteResponse)
async def delete_document(pdf_id: str, service: ChatService = Depends(get_chat_service)) -> DeleteResponse:
    """Delete every chunk, conversation and message of a document."""
    deleted = await service.delete_document(pdf_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Document {pdf_id} not found")
    return DeleteResponse(pdfId=pdf_id, deleted=True)
