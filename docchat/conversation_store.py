"""
Conversation persistence: conversations per document and their messages.
"""
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import func, select

from .data_models import ChatMessage, Citation, ConversationSummary, MessagePage
from .database import ConversationRecord, Database, DocumentRecord, MessageRecord

DEFAULT_PAGE_SIZE = 10


class ConversationStore:
    """Stores chat turns; citations are kept as structured JSON next to the message."""

    def __init__(self, database: Database):
        self.database = database

    def create_conversation(self, document_id: str, title: Optional[str] = None) -> str:
        with self.database.session_scope() as session:
            if session.get(DocumentRecord, document_id) is None:
                raise LookupError(f"Document {document_id} not found")
            conversation = ConversationRecord(id=uuid4().hex, document_id=document_id, title=title)
            session.add(conversation)
            return conversation.id

    def get_document_id(self, conversation_id: str) -> Optional[str]:
        with self.database.session_scope() as session:
            conversation = session.get(ConversationRecord, conversation_id)
            return conversation.document_id if conversation else None

    def list_conversations(self, document_id: Optional[str] = None) -> List[ConversationSummary]:
        """Conversations, most recently active first, optionally for one document only."""
        with self.database.session_scope() as session:
            stmt = select(ConversationRecord)
            if document_id is not None:
                stmt = stmt.where(ConversationRecord.document_id == document_id)
            stmt = stmt.order_by(ConversationRecord.updated_at.desc(), ConversationRecord.created_at.desc())
            summaries = []
            for conversation in session.execute(stmt).scalars():
                count = session.execute(
                    select(func.count(MessageRecord.id))
                    .where(MessageRecord.conversation_id == conversation.id)
                ).scalar()
                last = session.execute(
                    select(MessageRecord)
                    .where(MessageRecord.conversation_id == conversation.id)
                    .order_by(MessageRecord.sequence.desc())
                    .limit(1)
                ).scalar()
                summaries.append(ConversationSummary(
                    id=conversation.id,
                    document_id=conversation.document_id,
                    title=conversation.title,
                    message_count=count or 0,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                    last_message=self._to_message(last) if last is not None else None,
                ))
            return summaries

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages; False if it does not exist."""
        with self.database.session_scope() as session:
            conversation = session.get(ConversationRecord, conversation_id)
            if conversation is None:
                return False
            session.delete(conversation)
            return True

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        citations: Optional[List[Citation]] = None,
        partial: bool = False
    ) -> ChatMessage:
        with self.database.session_scope() as session:
            conversation = session.get(ConversationRecord, conversation_id)
            if conversation is None:
                raise LookupError(f"Conversation {conversation_id} not found")
            last = session.execute(
                select(func.max(MessageRecord.sequence))
                .where(MessageRecord.conversation_id == conversation_id)
            ).scalar()
            record = MessageRecord(
                id=uuid4().hex,
                conversation_id=conversation_id,
                sequence=(last or 0) + 1,
                role=role,
                content=content,
                citations=[c.to_dict() for c in citations or []],
                partial=partial,
            )
            session.add(record)
            if conversation.title is None and role == "user":
                conversation.title = content[:80]
            conversation.updated_at = datetime.now(timezone.utc)
            session.flush()
            return self._to_message(record)

    def list_messages(self, conversation_id: str) -> List[ChatMessage]:
        with self.database.session_scope() as session:
            records = session.execute(
                select(MessageRecord)
                .where(MessageRecord.conversation_id == conversation_id)
                .order_by(MessageRecord.sequence)
            ).scalars().all()
            return [self._to_message(r) for r in records]

    def page_messages(
        self,
        conversation_id: str,
        before: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> MessagePage:
        """
        The `limit` messages preceding `before` (or the latest ones), oldest first.

        An unknown `before` id is ignored. `has_more` tells whether older
        messages exist beyond the returned window.
        """
        if limit < 1:
            raise ValueError("limit must be positive")
        with self.database.session_scope() as session:
            stmt = select(MessageRecord).where(MessageRecord.conversation_id == conversation_id)
            if before is not None:
                cursor = session.execute(
                    select(MessageRecord.sequence)
                    .where(MessageRecord.id == before, MessageRecord.conversation_id == conversation_id)
                ).scalar()
                if cursor is not None:
                    stmt = stmt.where(MessageRecord.sequence < cursor)
            records = session.execute(
                stmt.order_by(MessageRecord.sequence.desc()).limit(limit + 1)
            ).scalars().all()
            has_more = len(records) > limit
            window = list(reversed(records[:limit]))
            return MessagePage(messages=[self._to_message(r) for r in window], has_more=has_more)

    @staticmethod
    def _to_message(record: MessageRecord) -> ChatMessage:
        return ChatMessage(
            id=record.id,
            role=record.role,
            content=record.content,
            citations=[Citation.from_dict(c) for c in record.citations or []],
            partial=record.partial,
            created_at=record.created_at,
        )
