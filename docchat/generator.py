"""
Response Generator Module

Streams answers from Google Gemini with the retrieved chunks as context:
- CompletionService / GeminiCompletionService: incremental text from the model
- AnswerStream: forwards tokens as they arrive, rewrites citation markers on
  completion and persists both sides of the turn
"""
import asyncio
import inspect
import logging
import os
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Sequence

import google.generativeai as genai
from dotenv import load_dotenv

from config.settings import DEFAULT_SYSTEM_PROMPT

from .citations import CITATION_INSTRUCTIONS, format_context, rewrite_citations
from .conversation_store import ConversationStore
from .data_models import ChatMessage, SearchResult, StreamEvent
from .utils import run_blocking

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion service fails before or during streaming."""


class CompletionService(ABC):
    """Abstract base class for streaming completion backends."""

    @abstractmethod
    def stream(self, messages: List[ChatMessage], system_instruction: str) -> AsyncIterator[str]:
        """
        Stream the model's reply.

        Args:
            messages: Ordered conversation turns (user/assistant)
            system_instruction: System prompt including the document context

        Yields:
            Partial text as it arrives
        """
        pass


class GeminiCompletionService(CompletionService):
    """Streaming completions from the Gemini API."""

    AVAILABLE_MODELS = {
        'gemini-2.0-flash': {
            'description': 'Balanced speed and quality (default)',
        },
        'gemini-2.0-flash-lite': {
            'description': 'Fast, efficient model',
        },
        'gemini-2.5-flash': {
            'description': 'Stronger reasoning',
        },
    }

    def __init__(
        self,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        api_key: Optional[str] = None
    ):
        """
        Initialize the completion service.

        Args:
            model: Gemini model name
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum tokens in response
            api_key: Gemini API key (or set GEMINI_API_KEY env var)
        """
        load_dotenv()

        self.model_name = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.api_key = api_key or os.getenv('GEMINI_API_KEY')
        if not self.api_key:
            raise ValueError(
                "Gemini API key not found. Set GEMINI_API_KEY environment variable "
                "or pass api_key parameter."
            )
        genai.configure(api_key=self.api_key)

    @staticmethod
    def _to_contents(messages: List[ChatMessage]) -> List[dict]:
        return [
            {"role": "model" if m.role == "assistant" else "user", "parts": [m.content]}
            for m in messages
        ]

    async def stream(self, messages: List[ChatMessage], system_instruction: str) -> AsyncIterator[str]:
        model = genai.GenerativeModel(self.model_name, system_instruction=system_instruction)
        generation_config = genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )
        response = None
        finished = False
        try:
            response = await model.generate_content_async(
                self._to_contents(messages),
                generation_config=generation_config,
                stream=True
            )
            async for chunk in response:
                try:
                    text = chunk.text
                except ValueError:
                    # Chunk without text parts, e.g. only a finish reason.
                    continue
                if text:
                    yield text
            finished = True
        except Exception as exc:
            raise CompletionError(f"Gemini completion failed: {exc}") from exc
        finally:
            if response is not None and not finished:
                await self.cancel_response(response)

    @staticmethod
    async def cancel_response(response) -> None:
        """Cancel the streaming RPC behind a response the caller stopped reading."""
        stream = getattr(response, "_iterator", None)
        for method in ("cancel", "aclose"):
            closer = getattr(stream, method, None)
            if closer is None:
                continue
            outcome = closer()
            if inspect.isawaitable(outcome):
                await outcome
            logger.info("Cancelled Gemini response stream")
            return


class AnswerStream:
    """
    Streams one answer and records the turn.

    The user's message is stored before the model is called. The assistant's
    message is stored after citation rewriting, or with whatever text had
    arrived if the completion failed or the client went away.
    """

    def __init__(
        self,
        completion: CompletionService,
        conversations: ConversationStore,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT
    ):
        self.completion = completion
        self.conversations = conversations
        self.system_prompt = system_prompt

    def build_system_instruction(self, chunks: Sequence[SearchResult]) -> str:
        if not chunks:
            return (
                f"{self.system_prompt}\n\n"
                "No excerpts of the document matched this question. Say so if you cannot answer."
            )
        return (
            f"{self.system_prompt}\n\n"
            f"Document excerpts:\n\n{format_context(chunks)}\n\n"
            f"{CITATION_INSTRUCTIONS}"
        )

    async def answer(
        self,
        document_id: str,
        history: List[ChatMessage],
        retrieved_chunks: Sequence[SearchResult],
        conversation_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream an answer to the last user message of `history`.

        Yields token events, then one terminal event: the rewritten answer with
        its citations, or an error.
        """
        if not history or history[-1].role != "user":
            raise ValueError("history must end with a user message")

        if conversation_id is None:
            conversation_id = await run_blocking(self.conversations.create_conversation, document_id)
        await run_blocking(self.conversations.add_message, conversation_id, "user", history[-1].content)

        system_instruction = self.build_system_instruction(retrieved_chunks)
        token_stream = self.completion.stream(history, system_instruction)
        tokens: List[str] = []
        persisted = False
        try:
            try:
                async for token in token_stream:
                    if not token:
                        continue
                    tokens.append(token)
                    yield StreamEvent.token(token, conversation_id)
            except Exception as exc:
                logger.error(f"Completion failed for conversation {conversation_id}: {exc}")
                persisted = True
                await self._persist(conversation_id, tokens, retrieved_chunks, partial=True)
                yield StreamEvent.failure(str(exc), conversation_id)
                return

            persisted = True
            final_text, citations = await self._persist(conversation_id, tokens, retrieved_chunks)
            yield StreamEvent.final(final_text, citations, conversation_id)
        finally:
            aclose = getattr(token_stream, "aclose", None)
            if aclose is not None:
                await aclose()
            if not persisted:
                # Client went away mid-stream; keep what had arrived.
                logger.info(f"Stream for conversation {conversation_id} interrupted after {len(tokens)} tokens")
                await asyncio.shield(
                    self._persist(conversation_id, tokens, retrieved_chunks, partial=True)
                )

    async def _persist(self, conversation_id: str, tokens: List[str],
                       retrieved_chunks: Sequence[SearchResult], partial: bool = False):
        final_text, citations = rewrite_citations("".join(tokens), retrieved_chunks)
        if final_text.strip():
            await run_blocking(
                self.conversations.add_message,
                conversation_id, "assistant", final_text, citations, partial
            )
        return final_text, citations
