from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class Persona(str, Enum):
    """Personas that own a knowledge corpus."""

    GARY_HORMOZI = "gary_hormozi"
    RORY_SUTHERLAND = "rory_sutherland"


class ContentType(str, Enum):
    PDF = "pdf"
    TEXT = "text"
    MARKDOWN = "markdown"


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class SearchType(str, Enum):
    CHUNKS = "chunks"
    DOCUMENTS = "documents"


def normalize_persona_id(persona_id: str) -> str:
    """Map chat-style persona ids ("gary-hormozi") to the storage form ("gary_hormozi")."""
    return persona_id.strip().lower().replace("-", "_")


def resolve_persona(persona_id: str | None) -> Persona | None:
    """Return the Persona for an id in either form, or None if it has no corpus."""
    if not persona_id:
        return None
    try:
        return Persona(normalize_persona_id(persona_id))
    except ValueError:
        return None


class KnowledgeDocument(BaseModel):
    id: UUID
    persona_id: str
    title: str
    content: str
    content_type: ContentType
    file_url: str | None = None
    embedding: list[float] | None = None
    metadata: dict = Field(default_factory=dict)
    status: DocumentStatus = DocumentStatus.READY
    created_at: datetime
    updated_at: datetime
    created_by: str | None = None

    @property
    def embedding_model(self) -> str | None:
        return self.metadata.get("embedding_model")

    @property
    def requested_dimensions(self) -> int | None:
        """Custom output size asked of the model at ingestion, None for its native size."""
        return self.metadata.get("requested_dimensions")

    @property
    def is_complete(self) -> bool:
        return self.status == DocumentStatus.READY


class KnowledgeChunk(BaseModel):
    id: UUID | None = None
    document_id: UUID
    chunk_index: int = Field(ge=0)
    content: str
    embedding: list[float] | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = None

    @field_validator("metadata")
    @classmethod
    def validate_offsets(cls, v: dict) -> dict:
        start = v.get("start_position")
        end = v.get("end_position")
        if start is not None and end is not None and start > end:
            raise ValueError("start_position must not exceed end_position")
        return v


class SearchResult(BaseModel):
    """A scored document or chunk. `chunk` is None for document-level results."""

    similarity: float
    document: KnowledgeDocument
    chunk: KnowledgeChunk | None = None

    @property
    def content(self) -> str:
        return self.chunk.content if self.chunk else self.document.content

    @property
    def source_title(self) -> str:
        return self.document.title

    @property
    def display_title(self) -> str:
        if self.chunk is None:
            return self.document.title
        return f"{self.document.title} (Chunk {self.chunk.chunk_index + 1})"


class SearchResponse(BaseModel):
    results: list[SearchResult]
    query: str
    search_type: SearchType
    embedding_model: str
    total_results: int
    threshold: float
