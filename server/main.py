"""
Document Chat API

FastAPI backend for chatting with a single large document.
Provides endpoints for indexing extracted pages, inspecting retrieval and
streaming cited answers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import RAGConfig
from server.api import chat_router, documents_router, retrieve_router
from server.models.schemas import HealthResponse
from server.services.chat_service import ChatService, get_chat_service

settings = RAGConfig.from_env()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Builds the chat service (database schema, chunk store) on startup.
    """
    logger.info("Starting Document Chat API...")
    service = get_chat_service()
    logger.info(
        f"Embeddings: {service.embedder.get_name()}, chunk store: {settings.vector_backend}, "
        f"completion configured: {service.completion_configured}"
    )
    logger.info("API ready!")
    yield
    logger.info("Shutting down...")
    service.close()


# Create FastAPI app
app = FastAPI(
    title="Document Chat API",
    description="""
    Backend API for conversing with one large document.

    ## Endpoints

    - `POST /api/documents/{pdf_id}/index` - Chunk and embed extracted pages
    - `GET /api/documents/{pdf_id}/chunks-count` - Size of the active index
    - `DELETE /api/documents/{pdf_id}` - Remove a document and its chats
    - `POST /api/retrieve` - Classify a query and show the selected chunks
    - `POST /api/chat` - Streamed, cited answer (server-sent events)
    - `GET /api/chat/list` - Conversations, optionally for one document
    - `GET /api/chat/{chat_id}/messages` - Conversation history, paged with `before`/`limit`
    - `DELETE /api/chat/{chat_id}` - Delete a conversation
    - `GET /api/health` - Health check
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(documents_router)
app.include_router(retrieve_router)
app.include_router(chat_router)


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check(service: ChatService = Depends(get_chat_service)) -> HealthResponse:
    """
    Health check endpoint.

    Returns status of the API and the configured backends.
    """
    return HealthResponse(
        status="healthy",
        embedding_backend=service.embedder.get_name(),
        vector_backend=service.config.vector_backend,
        completion_configured=service.completion_configured,
    )


@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Document Chat API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
