from .schemas import (
    PageInput,
    IndexRequest,
    IndexResponse,
    ChunkCountResponse,
    DeleteResponse,
    RetrieveRequest,
    ClassificationModel,
    RetrievedChunk,
    RetrieveResponse,
    MessageInput,
    ChatRequest,
    CitationModel,
    MessageModel,
    MessagesResponse,
    LastMessageModel,
    ConversationModel,
    ConversationListResponse,
    ConversationDeleteResponse,
    HealthResponse,
)

__all__ = [
    "PageInput",
    "IndexRequest",
    "IndexResponse",
    "ChunkCountResponse",
    "DeleteResponse",
    "RetrieveRequest",
    "ClassificationModel",
    "RetrievedChunk",
    "RetrieveResponse",
    "MessageInput",
    "ChatRequest",
    "CitationModel",
    "MessageModel",
    "MessagesResponse",
    "LastMessageModel",
    "ConversationModel",
    "ConversationListResponse",
    "ConversationDeleteResponse",
    "HealthResponse",
]
