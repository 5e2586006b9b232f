from .chat_service import ChatService, ServiceNotConfigured, get_chat_service

__all__ = ["ChatService", "ServiceNotConfigured", "get_chat_service"]
