"""
Chat API - Streamed answers over server-sent events, conversation history.
"""

import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from docchat.conversation_store import DEFAULT_PAGE_SIZE
from docchat.data_models import ChatMessage, StreamEvent

from ..models.schemas import (
    ChatRequest,
    ConversationDeleteResponse,
    ConversationListResponse,
    MessagesResponse,
)
from ..services.chat_service import ChatService, ServiceNotConfigured, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_event(event: StreamEvent) -> str:
    return f"data: {json.dumps(event.to_dict())}\n\n"


async def event_source(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield format_event(event)
    except Exception as e:
        # Headers are already sent; report the failure as a terminal event.
        logger.error(f"Chat stream failed: {e}")
        yield format_event(StreamEvent.failure(str(e)))


@router.post("")
async def chat(request: ChatRequest, service: ChatService = Depends(get_chat_service)) -> StreamingResponse:
    """
    Answer the last user message, streaming tokens as they arrive.

    Each event is `data: <json>`; the last one carries the rewritten answer
    and its citations (or an error).
    """
    messages = [ChatMessage(role=m.role, content=m.content) for m in request.messages]
    try:
        events = await service.start_chat(request.pdf_id, messages, chat_id=request.chat_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))

    return StreamingResponse(event_source(events), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/list", response_model=ConversationListResponse)
async def list_conversations(
    pdf_id: Optional[str] = Query(None, alias="pdfId", description="Only conversations about this document"),
    service: ChatService = Depends(get_chat_service)
) -> ConversationListResponse:
    """Conversations, most recently active first, each with its latest message."""
    conversations = await service.list_conversations(pdf_id)
    return ConversationListResponse(chats=[c.to_dict() for c in conversations])


@router.get("/{chat_id}/messages", response_model=MessagesResponse)
async def list_messages(
    chat_id: str,
    before: Optional[str] = Query(None, description="Message id; return the messages preceding it"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    service: ChatService = Depends(get_chat_service)
) -> MessagesResponse:
    """A page of persisted turns, oldest first, with their citations."""
    try:
        page = await service.list_messages(chat_id, before=before, limit=limit)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessagesResponse(
        chatId=chat_id,
        messages=[m.to_dict() for m in page.messages],
        hasMore=page.has_more,
        oldestMessageId=page.oldest_message_id,
    )


@router.delete("/{chat_id}", response_model=ConversationDeleteResponse)
async def delete_conversation(
    chat_id: str,
    service: ChatService = Depends(get_chat_service)
) -> ConversationDeleteResponse:
    if not await service.delete_conversation(chat_id):
        raise HTTPException(status_code=404, detail=f"Conversation {chat_id} not found")
    return ConversationDeleteResponse(chatId=chat_id, deleted=True)
