"""
Embedding Service Module

Turns chunk text and queries into vectors.
Backends:
- sentence-transformers (local model, lazy loaded)
- Google Gemini embedding API
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import google.generativeai as genai

from .utils import run_blocking

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding backend fails or returns a malformed response."""


class EmbeddingService(ABC):
    """Abstract base class for embedding backends."""

    @abstractmethod
    async def embed_texts(self, texts: List[str]) -> np.ndarray:
        """
        Embed a batch of texts.

        Returns:
            Array of shape (len(texts), dim), rows in input order
        """
        pass

    async def embed_query(self, query: str) -> np.ndarray:
        """Embed a single query string."""
        return (await self.embed_texts([query]))[0]

    @abstractmethod
    def get_name(self) -> str:
        """Return backend/model name."""
        pass

    @staticmethod
    def _check_shape(texts: List[str], embeddings: np.ndarray) -> np.ndarray:
        if embeddings.ndim != 2 or embeddings.shape[0] != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got array of shape {embeddings.shape}"
            )
        return embeddings


class SentenceTransformerEmbeddingService(EmbeddingService):
    """
    Local embeddings with sentence-transformers.

    Supported models include:
    - all-MiniLM-L6-v2 (fast, 384 dimensions)
    - all-mpnet-base-v2 (balanced, 768 dimensions)
    - multi-qa-mpnet-base-cos-v1 (QA optimized)
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str = "cpu", batch_size: int = 32):
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model = None

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(f"Model loaded (dim={self._model.get_sentence_embedding_dimension()})")
        return self._model

    def _encode(self, texts: List[str]) -> np.ndarray:
        return self.model.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            show_progress_bar=False
        )

    async def embed_texts(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0))
        try:
            embeddings = await run_blocking(self._encode, texts)
        except Exception as exc:
            raise EmbeddingError(f"sentence-transformers encoding failed: {exc}") from exc
        return self._check_shape(texts, np.asarray(embeddings))

    def get_name(self) -> str:
        return f"sentence-transformers/{self.model_name}"


class GeminiEmbeddingService(EmbeddingService):
    """Embeddings from the Gemini API (`genai.embed_content`)."""

    def __init__(
        self,
        model_name: str = "models/text-embedding-004",
        api_key: Optional[str] = None
    ):
        """
        Initialize the Gemini embedding client.

        Args:
            model_name: Gemini embedding model
            api_key: Gemini API key (falls back to whatever genai is already configured with)
        """
        self.model_name = model_name if model_name.startswith("models/") else f"models/{model_name}"
        if api_key:
            genai.configure(api_key=api_key)

    def _embed(self, texts: List[str], task_type: str) -> np.ndarray:
        response = genai.embed_content(model=self.model_name, content=texts, task_type=task_type)
        return np.asarray(response['embedding'], dtype=float)

    async def embed_texts(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0))
        try:
            embeddings = await run_blocking(self._embed, texts, "retrieval_document")
        except Exception as exc:
            raise EmbeddingError(f"Gemini embedding request failed: {exc}") from exc
        return self._check_shape(texts, embeddings)

    async def embed_query(self, query: str) -> np.ndarray:
        try:
            embeddings = await run_blocking(self._embed, [query], "retrieval_query")
        except Exception as exc:
            raise EmbeddingError(f"Gemini query embedding failed: {exc}") from exc
        return self._check_shape([query], embeddings)[0]

    def get_name(self) -> str:
        return f"gemini/{self.model_name}"


def create_embedding_service(config) -> EmbeddingService:
    """
    Factory function for embedding backends.

    Args:
        config: RAGConfig

    Returns:
        EmbeddingService instance
    """
    provider = config.embedding_provider.lower()
    if provider in ("sentence-transformers", "local"):
        return SentenceTransformerEmbeddingService(
            model_name=config.embedding_model,
            device=config.embedding_device,
        )
    elif provider == "gemini":
        return GeminiEmbeddingService(
            model_name=config.embedding_model,
            api_key=config.gemini_api_key or None,
        )
    else:
        raise ValueError(
            f"Unknown embedding provider: {config.embedding_provider}. "
            f"Choose from ['sentence-transformers', 'gemini']"
        )
