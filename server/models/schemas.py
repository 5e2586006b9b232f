"""
Pydantic models for API request/response schemas.

Field names follow the web client's camelCase wire format.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PageInput(BaseModel):
    """Extracted text of one page."""
    model_config = ConfigDict(populate_by_name=True)

    page_number: int = Field(..., alias="pageNumber", description="1-based page number", ge=1)
    content: str = Field("", description="Raw extracted page text")


class IndexRequest(BaseModel):
    """Request for POST /api/documents/{pdf_id}/index."""
    title: Optional[str] = Field(None, description="Document title")
    pages: List[PageInput] = Field(..., description="Pages in reading order", min_length=1)
    force: bool = Field(False, description="Re-index even if the document is already indexed")


class IndexResponse(BaseModel):
    """Outcome of an indexing request."""
    model_config = ConfigDict(populate_by_name=True)

    pdf_id: str = Field(..., alias="pdfId")
    chunk_count: int = Field(..., alias="chunkCount")
    page_count: int = Field(..., alias="pageCount")
    batch_count: int = Field(0, alias="batchCount")
    index_version: Optional[str] = Field(None, alias="indexVersion")
    skipped: bool = Field(False, description="True when an existing index was kept")


class ChunkCountResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = Field(..., description="Chunks in the active index version")
    pdf_id: str = Field(..., alias="pdfId")
    text_extracted: bool = Field(..., alias="textExtracted")


class DeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdf_id: str = Field(..., alias="pdfId")
    deleted: bool


class RetrieveRequest(BaseModel):
    """Request for POST /api/retrieve."""
    model_config = ConfigDict(populate_by_name=True)

    pdf_id: str = Field(..., alias="pdfId", description="Document to search", min_length=1)
    query: str = Field(..., description="User query")


class ClassificationModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query_type: str = Field(..., alias="queryType")
    chunk_budget: int = Field(..., alias="chunkBudget", ge=1, le=50)
    explicit_pages: List[int] = Field(default_factory=list, alias="explicitPages")


class RetrievedChunk(BaseModel):
    """Single retrieved chunk."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    pdf_id: str = Field(..., alias="pdfId")
    page_number: int = Field(..., alias="pageNumber")
    chunk_index: int = Field(..., alias="chunkIndex")
    content: str
    start_index: int = Field(0, alias="startIndex")
    end_index: int = Field(0, alias="endIndex")
    similarity: Optional[float] = Field(None, description="Cosine similarity, absent for non-ranked paths")
    search_strategy: str = Field("", alias="searchStrategy")


class RetrieveResponse(BaseModel):
    """Response from POST /api/retrieve."""
    query: str
    classification: ClassificationModel
    results: List[RetrievedChunk]


class MessageInput(BaseModel):
    role: str = Field(..., description="'user' or 'assistant'", pattern="^(user|assistant)$")
    content: str


class ChatRequest(BaseModel):
    """Request for POST /api/chat."""
    model_config = ConfigDict(populate_by_name=True)

    pdf_id: str = Field(..., alias="pdfId", min_length=1)
    chat_id: Optional[str] = Field(None, alias="chatId", description="Existing conversation to continue")
    messages: List[MessageInput] = Field(..., min_length=1, description="Conversation so far, ending with the user's question")


class CitationModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    page_number: int = Field(..., alias="pageNumber")
    chunk_id: str = Field(..., alias="chunkId")
    text: str


class MessageModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    role: str
    content: str
    citations: List[CitationModel] = Field(default_factory=list)
    partial: bool = False
    created_at: Optional[str] = Field(None, alias="createdAt")


class MessagesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., alias="chatId")
    messages: List[MessageModel]
    has_more: bool = Field(False, alias="hasMore", description="Whether older messages exist")
    oldest_message_id: Optional[str] = Field(None, alias="oldestMessageId", description="Cursor for the next page")


class LastMessageModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: str
    content: str
    created_at: Optional[str] = Field(None, alias="createdAt")


class ConversationModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., alias="chatId")
    pdf_id: str = Field(..., alias="pdfId")
    title: Optional[str] = None
    message_count: int = Field(..., alias="messageCount")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")
    last_message: Optional[LastMessageModel] = Field(None, alias="lastMessage")


class ConversationListResponse(BaseModel):
    """Response for GET /api/chat/list."""
    chats: List[ConversationModel]


class ConversationDeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., alias="chatId")
    deleted: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field("healthy", description="API status")
    embedding_backend: str = Field(..., description="Embedding service in use")
    vector_backend: str = Field(..., description="Chunk store backend")
    completion_configured: bool = Field(..., description="Whether a completion API key is set")
