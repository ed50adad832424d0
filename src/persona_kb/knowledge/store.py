"""Storage interface for knowledge documents and their chunks."""

from abc import ABC, abstractmethod
from uuid import UUID

from .models import ContentType, DocumentStatus, KnowledgeChunk, KnowledgeDocument


class KnowledgeStore(ABC):
    """Persists documents and chunks.

    Implementations must delete a document's chunks together with the
    document, and return documents and chunks in insertion order.
    """

    @abstractmethod
    def insert_document(
        self,
        persona_id: str,
        title: str,
        content: str,
        content_type: ContentType,
        embedding: list[float] | None = None,
        metadata: dict | None = None,
        file_url: str | None = None,
        created_by: str | None = None,
        status: DocumentStatus = DocumentStatus.READY,
    ) -> KnowledgeDocument:
        """Insert a document and return it with its generated id and timestamps."""

    @abstractmethod
    def insert_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        """Insert chunks in one batch; all must reference an existing document."""

    @abstractmethod
    def update_document_status(
        self,
        document_id: UUID,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        """Set a document's processing status, recording `error_message` in metadata."""

    @abstractmethod
    def get_document(self, document_id: UUID) -> KnowledgeDocument | None:
        """Return the document, or None if it does not exist."""

    @abstractmethod
    def list_documents(self, persona_id: str | None = None) -> list[KnowledgeDocument]:
        """Return documents, oldest first, optionally for a single persona."""

    @abstractmethod
    def get_chunks(self, document_id: UUID) -> list[KnowledgeChunk]:
        """Return a document's chunks ordered by chunk index."""

    @abstractmethod
    def get_chunk(self, chunk_id: UUID) -> KnowledgeChunk | None:
        """Return the chunk, or None if it does not exist."""

    @abstractmethod
    def list_chunks_with_documents(
        self, persona_id: str
    ) -> list[tuple[KnowledgeChunk, KnowledgeDocument]]:
        """Return every chunk of a persona joined with its owning document."""

    @abstractmethod
    def update_document(
        self,
        document_id: UUID,
        title: str | None = None,
        content: str | None = None,
        embedding: list[float] | None = None,
        metadata: dict | None = None,
    ) -> KnowledgeDocument | None:
        """Apply the given fields, bump `updated_at`, and return the updated document.

        Returns None if the document does not exist. Fields left as None are unchanged.
        """

    @abstractmethod
    def delete_document(self, document_id: UUID) -> bool:
        """Delete a document and all its chunks. Returns False if it did not exist."""

    def find_incomplete_documents(
        self, persona_id: str | None = None
    ) -> list[KnowledgeDocument]:
        """Documents whose ingestion never reached the ready state."""
        return [
            doc
            for doc in self.list_documents(persona_id)
            if doc.status != DocumentStatus.READY
        ]
