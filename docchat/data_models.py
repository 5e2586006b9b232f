"""
Core data models for the document chat system.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional

import numpy as np


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PageText:
    """Cleaned text of one page of a document."""
    page_number: int
    content: str


@dataclass
class Chunk:
    """
    A contiguous slice of one page's text.

    `overlap_length` is the number of leading characters repeated from the
    previous chunk on the same page; `content[overlap_length:]` is the chunk's
    own core.
    """
    id: str
    document_id: str
    page_number: int
    chunk_index: int
    content: str
    start_index: int = 0
    end_index: int = 0
    overlap_length: int = 0
    embedding: Optional[np.ndarray] = None
    created_at: datetime = field(default_factory=utcnow)

    def __len__(self) -> int:
        """Return the length of the chunk content."""
        return len(self.content)

    @property
    def core(self) -> str:
        """Content without the overlap carried over from the previous chunk."""
        return self.content[self.overlap_length:]


@dataclass
class SearchResult:
    """A chunk annotated with retrieval metadata."""
    id: str
    document_id: str
    page_number: int
    chunk_index: int
    content: str
    start_index: int = 0
    end_index: int = 0
    similarity: Optional[float] = None
    search_strategy: str = ""

    @classmethod
    def from_chunk(cls, chunk: Chunk, similarity: Optional[float] = None, search_strategy: str = "") -> 'SearchResult':
        return cls(
            id=chunk.id,
            document_id=chunk.document_id,
            page_number=chunk.page_number,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            start_index=chunk.start_index,
            end_index=chunk.end_index,
            similarity=similarity,
            search_strategy=search_strategy,
        )

    def tagged(self, search_strategy: str) -> 'SearchResult':
        """Return a copy labelled with the strategy that produced it."""
        return replace(self, search_strategy=search_strategy)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'pdfId': self.document_id,
            'pageNumber': self.page_number,
            'chunkIndex': self.chunk_index,
            'content': self.content,
            'startIndex': self.start_index,
            'endIndex': self.end_index,
            'similarity': self.similarity,
            'searchStrategy': self.search_strategy,
        }


class QueryType(str, Enum):
    """Kinds of question a user can ask about a document."""
    COMPREHENSIVE = "comprehensive"
    TIMELINE = "timeline"
    SUMMARY = "summary"
    PAGE_SPECIFIC = "page_specific"
    KEYWORD = "keyword"
    GENERAL = "general"


@dataclass
class QueryClassification:
    """Query type, chunk budget and explicit page references for one query."""
    query_type: QueryType
    chunk_budget: int
    explicit_pages: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'queryType': self.query_type.value,
            'chunkBudget': self.chunk_budget,
            'explicitPages': list(self.explicit_pages),
        }


@dataclass
class Citation:
    """A structured reference from an answer back to a context chunk."""
    id: str
    page_number: int
    chunk_id: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'pageNumber': self.page_number,
            'chunkId': self.chunk_id,
            'text': self.text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Citation':
        return cls(
            id=data['id'],
            page_number=int(data['pageNumber']),
            chunk_id=data['chunkId'],
            text=data.get('text', ''),
        )


@dataclass
class ChatMessage:
    """One turn of a conversation."""
    role: str
    content: str
    citations: List[Citation] = field(default_factory=list)
    id: Optional[str] = None
    partial: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'role': self.role,
            'content': self.content,
            'citations': [c.to_dict() for c in self.citations],
            'partial': self.partial,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class MessagePage:
    """A window of a conversation's messages, oldest first."""
    messages: List[ChatMessage]
    has_more: bool = False

    @property
    def oldest_message_id(self) -> Optional[str]:
        return self.messages[0].id if self.messages else None


@dataclass
class ConversationSummary:
    """A conversation as listed for a document: most recently active first."""
    id: str
    document_id: str
    title: Optional[str]
    message_count: int
    created_at: datetime
    updated_at: datetime
    last_message: Optional[ChatMessage] = None

    def to_dict(self) -> Dict[str, Any]:
        last = None
        if self.last_message is not None:
            last = {
                'role': self.last_message.role,
                'content': self.last_message.content,
                'createdAt': self.last_message.created_at.isoformat() if self.last_message.created_at else None,
            }
        return {
            'chatId': self.id,
            'pdfId': self.document_id,
            'title': self.title,
            'messageCount': self.message_count,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
            'lastMessage': last,
        }


@dataclass
class StreamEvent:
    """
    One event of a streamed answer.

    Token events carry `content`; the terminal event carries the rewritten
    `final_content` and its citations; a failure is reported as a terminal
    event with `error` set.
    """
    content: str = ""
    done: bool = False
    final_content: Optional[str] = None
    citations: List[Citation] = field(default_factory=list)
    error: Optional[str] = None
    chat_id: Optional[str] = None

    @classmethod
    def token(cls, content: str, chat_id: Optional[str] = None) -> 'StreamEvent':
        return cls(content=content, chat_id=chat_id)

    @classmethod
    def final(cls, final_content: str, citations: List[Citation], chat_id: Optional[str] = None) -> 'StreamEvent':
        return cls(content="", done=True, final_content=final_content, citations=citations, chat_id=chat_id)

    @classmethod
    def failure(cls, error: str, chat_id: Optional[str] = None) -> 'StreamEvent':
        return cls(done=True, error=error, chat_id=chat_id)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            payload = {'error': self.error, 'done': True}
        elif self.done:
            payload = {
                'content': "",
                'done': True,
                'finalContent': self.final_content or "",
                'citations': [c.to_dict() for c in self.citations],
            }
        else:
            payload = {'content': self.content, 'done': False}
        if self.chat_id is not None:
            payload['chatId'] = self.chat_id
        return payload


@dataclass
class IndexingResult:
    """Outcome of indexing one document."""
    document_id: str
    chunk_count: int
    page_count: int
    batch_count: int = 0
    index_version: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pdfId': self.document_id,
            'chunkCount': self.chunk_count,
            'pageCount': self.page_count,
            'batchCount': self.batch_count,
            'indexVersion': self.index_version,
            'skipped': self.skipped,
        }
