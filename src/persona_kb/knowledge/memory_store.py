"""In-process knowledge store for development and tests."""

import threading
from datetime import datetime, timezone
from uuid import UUID, uuid4

from ..logger import logger
from .models import ContentType, DocumentStatus, KnowledgeChunk, KnowledgeDocument
from .store import KnowledgeStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryKnowledgeStore(KnowledgeStore):
    """Dict-backed store. Returned models are copies, so callers can't mutate stored state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._documents: dict[UUID, KnowledgeDocument] = {}
        self._chunks: dict[UUID, KnowledgeChunk] = {}

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
        now = _now()
        doc = KnowledgeDocument(
            id=uuid4(),
            persona_id=persona_id,
            title=title,
            content=content,
            content_type=content_type,
            file_url=file_url,
            embedding=embedding,
            metadata=metadata or {},
            status=status,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        with self._lock:
            self._documents[doc.id] = doc
        logger.debug("document inserted", document_id=str(doc.id), store="memory")
        return doc.model_copy(deep=True)

    def insert_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        if not chunks:
            return []

        now = _now()
        with self._lock:
            missing = {c.document_id for c in chunks} - self._documents.keys()
            if missing:
                raise ValueError(f"Chunks reference unknown documents: {sorted(map(str, missing))}")
            inserted = [c.model_copy(update={"id": uuid4(), "created_at": now}) for c in chunks]
            for chunk in inserted:
                self._chunks[chunk.id] = chunk

        logger.debug(
            "chunks inserted",
            document_id=str(chunks[0].document_id),
            chunks_count=len(inserted),
            store="memory",
        )
        return [c.model_copy(deep=True) for c in inserted]

    def update_document_status(
        self,
        document_id: UUID,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                return
            metadata = dict(doc.metadata)
            if error_message is not None:
                metadata["error_message"] = error_message
            self._documents[document_id] = doc.model_copy(
                update={"status": status, "metadata": metadata, "updated_at": _now()}
            )

    def get_document(self, document_id: UUID) -> KnowledgeDocument | None:
        with self._lock:
            doc = self._documents.get(document_id)
        return doc.model_copy(deep=True) if doc else None

    def list_documents(self, persona_id: str | None = None) -> list[KnowledgeDocument]:
        with self._lock:
            docs = list(self._documents.values())
        return [
            d.model_copy(deep=True)
            for d in docs
            if persona_id is None or d.persona_id == persona_id
        ]

    def get_chunks(self, document_id: UUID) -> list[KnowledgeChunk]:
        with self._lock:
            chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        chunks.sort(key=lambda c: c.chunk_index)
        return [c.model_copy(deep=True) for c in chunks]

    def get_chunk(self, chunk_id: UUID) -> KnowledgeChunk | None:
        with self._lock:
            chunk = self._chunks.get(chunk_id)
        return chunk.model_copy(deep=True) if chunk else None

    def list_chunks_with_documents(
        self, persona_id: str
    ) -> list[tuple[KnowledgeChunk, KnowledgeDocument]]:
        with self._lock:
            pairs = [
                (chunk, self._documents[chunk.document_id])
                for chunk in self._chunks.values()
                if self._documents[chunk.document_id].persona_id == persona_id
            ]
        return [(c.model_copy(deep=True), d.model_copy(deep=True)) for c, d in pairs]

    def update_document(
        self,
        document_id: UUID,
        title: str | None = None,
        content: str | None = None,
        embedding: list[float] | None = None,
        metadata: dict | None = None,
    ) -> KnowledgeDocument | None:
        changes = {
            key: value
            for key, value in {
                "title": title,
                "content": content,
                "embedding": embedding,
                "metadata": metadata,
            }.items()
            if value is not None
        }
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                return None
            updated = doc.model_copy(update={**changes, "updated_at": _now()})
            self._documents[document_id] = updated
        return updated.model_copy(deep=True)

    def delete_document(self, document_id: UUID) -> bool:
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                return False
            orphaned = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
            for chunk_id in orphaned:
                del self._chunks[chunk_id]
        logger.debug(
            "document deleted",
            document_id=str(document_id),
            chunks_deleted=len(orphaned),
            store="memory",
        )
        return True
