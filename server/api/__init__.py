from .documents import router as documents_router
from .retrieve import router as retrieve_router
from .chat import router as chat_router

__all__ = ["documents_router", "retrieve_router", "chat_router"]
