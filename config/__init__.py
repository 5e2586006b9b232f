from .settings import RAGConfig

__all__ = ["RAGConfig"]
