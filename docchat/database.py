"""Database ORM models.

Relational side of the system (chunk vectors live in the chunk store):
- DocumentRecord: one uploaded document, its indexed flag and active index version
- ConversationRecord: a chat about one document
- MessageRecord: one turn, with citations stored as structured JSON
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRecord(Base):
    """A document that can be indexed and chatted with.

    `text_indexed` is only set once every chunk batch of `index_version` has
    been written; readers always query chunks of `index_version`.
    """
    __tablename__ = "documents"

    id = Column(String(64), primary_key=True)
    title = Column(String(512), nullable=True)
    page_count = Column(Integer, nullable=False, default=0)
    chunk_count = Column(Integer, nullable=False, default=0)
    text_indexed = Column(Boolean, nullable=False, default=False)
    index_version = Column(String(64), nullable=True)
    pending_version = Column(String(64), nullable=True)
    indexed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    conversations = relationship(
        "ConversationRecord", back_populates="document", cascade="all, delete-orphan"
    )


class ConversationRecord(Base):
    __tablename__ = "conversations"

    id = Column(String(64), primary_key=True)
    document_id = Column(String(64), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    document = relationship("DocumentRecord", back_populates="conversations")
    messages = relationship(
        "MessageRecord",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="MessageRecord.sequence",
    )

    __table_args__ = (
        Index("idx_conversations_document", "document_id"),
    )


class MessageRecord(Base):
    __tablename__ = "messages"

    id = Column(String(64), primary_key=True)
    conversation_id = Column(String(64), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    citations = Column(JSON, nullable=False, default=list)
    partial = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    conversation = relationship("ConversationRecord", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_conversation", "conversation_id", "sequence"),
    )


class Database:
    """Engine and session factory for the relational store."""

    def __init__(self, url: str = "sqlite:///./docchat.db", echo: bool = False):
        connect_args = {}
        if url.startswith("sqlite"):
            # Sessions are used from executor threads.
            connect_args["check_same_thread"] = False
        self.url = url
        self.engine = create_engine(url, echo=echo, future=True, connect_args=connect_args)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info(f"Database schema ready at {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope: commit on success, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
