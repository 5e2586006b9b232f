"""
Document registry: the indexed flag and the active chunk index version.

Indexing writes chunks under a fresh version while readers keep using the
active one; `mark_indexed` flips the active version only after every batch
has been written.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from .database import Database, DocumentRecord

logger = logging.getLogger(__name__)


class IndexVersionConflict(Exception):
    """Raised when a finished version is no longer the one reserved for its document."""


@dataclass
class DocumentStatus:
    document_id: str
    title: Optional[str]
    page_count: int
    chunk_count: int
    text_indexed: bool
    index_version: Optional[str]
    indexed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: DocumentRecord) -> 'DocumentStatus':
        return cls(
            document_id=record.id,
            title=record.title,
            page_count=record.page_count,
            chunk_count=record.chunk_count,
            text_indexed=record.text_indexed,
            index_version=record.index_version,
            indexed_at=record.indexed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pdfId': self.document_id,
            'title': self.title,
            'pageCount': self.page_count,
            'chunkCount': self.chunk_count,
            'textExtracted': self.text_indexed,
            'indexedAt': self.indexed_at.isoformat() if self.indexed_at else None,
        }


class DocumentRegistry:
    """Tracks documents and which chunk index version is live for each."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, document_id: str) -> Optional[DocumentStatus]:
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            return DocumentStatus.from_record(record) if record else None

    def _register(self, document_id: str, title: Optional[str] = None) -> None:
        """Insert the document row unless it exists; a concurrent insert counts as existing."""
        try:
            with self.database.session_scope() as session:
                if session.get(DocumentRecord, document_id) is None:
                    session.add(DocumentRecord(id=document_id, title=title))
        except IntegrityError:
            logger.debug(f"Document {document_id} was registered concurrently")

    def ensure_document(self, document_id: str, title: Optional[str] = None) -> DocumentStatus:
        self._register(document_id, title)
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            if title and not record.title:
                record.title = title
            return DocumentStatus.from_record(record)

    def is_indexed(self, document_id: str) -> bool:
        status = self.get(document_id)
        return bool(status and status.text_indexed)

    def get_active_version(self, document_id: str) -> Optional[str]:
        status = self.get(document_id)
        return status.index_version if status else None

    def begin_indexing(self, document_id: str, title: Optional[str] = None) -> str:
        """
        Reserve a new index version for a document.

        Clears the indexed flag; the previously active version stays readable
        until `mark_indexed` replaces it. A later reservation supersedes this
        one.
        """
        version = uuid4().hex
        self._register(document_id, title)
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise LookupError(f"Document {document_id} was deleted while indexing started")
            if title:
                record.title = title
            record.text_indexed = False
            record.pending_version = version
        logger.info(f"Document {document_id}: indexing version {version}")
        return version

    def mark_indexed(self, document_id: str, version: str, page_count: int, chunk_count: int) -> Optional[str]:
        """
        Make `version` the active index of a document.

        Returns:
            The version it replaced, if any

        Raises:
            LookupError: If the document is not registered
            IndexVersionConflict: If `version` is not the pending reservation
        """
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise LookupError(f"Document {document_id} is not registered")
            if record.pending_version != version:
                raise IndexVersionConflict(
                    f"Version {version} of document {document_id} was superseded by {record.pending_version}"
                )
            replaced = record.index_version
            record.index_version = version
            record.pending_version = None
            record.text_indexed = True
            record.page_count = page_count
            record.chunk_count = chunk_count
            record.indexed_at = datetime.now(timezone.utc)
        return replaced

    def abort_indexing(self, document_id: str, version: str) -> None:
        """Forget a failed version; the indexed flag stays false."""
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            if record is not None and record.pending_version == version:
                record.pending_version = None

    def delete(self, document_id: str) -> bool:
        with self.database.session_scope() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return False
            session.delete(record)
            return True
