"""Document ingestion pipeline for persona knowledge bases."""

import time
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, Field

from ..logger import log_context, logger
from .chunking import TextFragment, chunk_text, fixed_size_chunking
from .config import ChunkingConfig, EmbeddingOptions
from .costs import (
    CostEstimate,
    cost_for_model,
    estimate_costs,
    estimate_tokens,
    resolve_embedding_model,
)
from .embeddings import EmbeddingClient
from .errors import (
    EmbeddingUnavailableError,
    EmptyContentError,
    InvalidParameterError,
    MissingParameterError,
    NotFoundError,
)
from .extraction import extract_text, store_original_file
from .models import (
    ContentType,
    DocumentStatus,
    KnowledgeChunk,
    KnowledgeDocument,
    resolve_persona,
)
from .pages import estimate_page, locate_pages
from .store import KnowledgeStore


class UploadedFile(BaseModel):
    filename: str
    data: bytes
    mime_type: str | None = None


class IngestionRequest(BaseModel):
    """Everything needed to ingest one document.

    Exactly one of `file` or `text_content` supplies the content; `file` wins
    when both are given.
    """

    persona_id: str | None = None
    title: str | None = None
    file: UploadedFile | None = None
    text_content: str | None = None
    content_type: ContentType | None = None
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingOptions = Field(default_factory=EmbeddingOptions)
    estimate_only: bool = False
    created_by: str | None = None


class EstimateResult(BaseModel):
    estimated_tokens: int
    cost_estimates: list[CostEstimate]
    content_length: int
    chunk_count: int


class IngestResult(BaseModel):
    document: KnowledgeDocument
    chunks_created: int
    estimated_tokens: int
    actual_cost: float


def build_chunk_records(
    document_id: UUID,
    content: str,
    fragments: list[TextFragment],
    embeddings: list[list[float]],
) -> list[KnowledgeChunk]:
    """Pair fragments with their embeddings and offset/page metadata.

    Args:
        document_id: Owning document.
        content: Full document text the fragments were cut from.
        fragments: Fragments in chunk order.
        embeddings: One embedding per fragment, same order.

    Returns:
        Chunk records ready for insertion.
    """
    if len(embeddings) != len(fragments):
        raise ValueError(
            f"Embedding count mismatch: expected {len(fragments)}, got {len(embeddings)}"
        )

    markers = locate_pages(content)
    return [
        KnowledgeChunk(
            document_id=document_id,
            chunk_index=fragment.chunk_index,
            content=fragment.text,
            embedding=embedding,
            metadata={
                "start_position": fragment.start_char,
                "end_position": fragment.end_char,
                "length": fragment.length,
                "page_number": estimate_page(fragment.start_char, len(content), markers),
                "chunk_index": fragment.chunk_index,
            },
        )
        for fragment, embedding in zip(fragments, embeddings)
    ]


class KnowledgeIngestionPipeline:
    """Turns uploads into persona-scoped documents and chunks."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_client: EmbeddingClient | None = None,
        upload_dir: Path | None = None,
    ):
        """Initialize the ingestion pipeline.

        Args:
            store: Where documents and chunks are persisted.
            embedding_client: Embedding provider. When None, only estimates work.
            upload_dir: Optional directory to keep uploaded originals in.
        """
        self.store = store
        self.embedding_client = embedding_client
        self.upload_dir = upload_dir

    def _require_embedding_client(self) -> EmbeddingClient:
        if self.embedding_client is None:
            raise EmbeddingUnavailableError()
        return self.embedding_client

    def _extract(self, request: IngestionRequest) -> tuple[str, ContentType]:
        if request.file is not None:
            extracted = extract_text(
                request.file.data, request.file.filename, request.file.mime_type
            )
            content_type = request.content_type or extracted.content_type
            return extracted.text, content_type
        if request.text_content is not None:
            return request.text_content, request.content_type or ContentType.TEXT
        raise MissingParameterError("file or text_content")

    def estimate(self, content: str, content_type: ContentType, chunking: ChunkingConfig) -> EstimateResult:
        """Project token count and cost without calling the provider.

        The chunk count is what fixed-size chunking with the requested size and
        overlap would produce, before any `max_chunks` cap.
        """
        tokens = estimate_tokens(content, content_type)
        return EstimateResult(
            estimated_tokens=tokens,
            cost_estimates=estimate_costs(tokens),
            content_length=len(content),
            chunk_count=len(
                fixed_size_chunking(content, chunking.chunk_size, chunking.overlap)
            ),
        )

    def ingest(self, request: IngestionRequest) -> IngestResult | EstimateResult:
        """Ingest a single document, or only estimate its cost.

        Steps: extract text, estimate cost (stop here in estimate-only mode),
        chunk, embed the document and all chunks, then persist the document
        followed by its chunks. The document is written as ``processing`` and
        only marked ``ready`` once its chunks are stored; a failure after the
        write marks it ``error``.

        Args:
            request: Content source, persona, title and chunking/embedding settings.

        Returns:
            EstimateResult in estimate-only mode, otherwise IngestResult.

        Raises:
            MissingParameterError: If persona, title or content source is absent.
            InvalidParameterError: If the persona has no knowledge base.
            EmptyContentError: If the content is blank after trimming.
            EmbeddingUnavailableError: If no embedding client is configured.
            EmbeddingProviderError: If an embedding call fails.
        """
        missing = [
            name for name in ("persona_id", "title") if not getattr(request, name)
        ]
        if missing:
            raise MissingParameterError(*missing)

        persona = resolve_persona(request.persona_id)
        if persona is None:
            raise InvalidParameterError(f"Unknown persona: {request.persona_id}")

        with log_context(persona_id=persona.value, title=request.title):
            content, content_type = self._extract(request)
            if not content.strip():
                raise EmptyContentError()

            estimate = self.estimate(content, content_type, request.chunking)
            if request.estimate_only:
                logger.info(
                    "cost estimate computed",
                    estimated_tokens=estimate.estimated_tokens,
                    content_length=estimate.content_length,
                    chunk_count=estimate.chunk_count,
                )
                return estimate

            embedding_client = self._require_embedding_client()
            return self._ingest_content(
                request, persona.value, content, content_type, estimate, embedding_client
            )

    def _ingest_content(
        self,
        request: IngestionRequest,
        persona_id: str,
        content: str,
        content_type: ContentType,
        estimate: EstimateResult,
        embedding_client: EmbeddingClient,
    ) -> IngestResult:
        start = time.perf_counter()
        chunking = request.chunking

        # chunk_text caps the result at max_chunks
        fragments = chunk_text(content, chunking.strategy, chunking.to_params())

        model = resolve_embedding_model(request.embedding.model)
        embed_start = time.perf_counter()
        document_embedding = embedding_client.embed(content, request.embedding)
        chunk_embeddings = embedding_client.embed_many(
            [f.text for f in fragments], request.embedding
        )
        embed_duration_ms = (time.perf_counter() - embed_start) * 1000
        logger.info(
            "embeddings generated",
            chunks_count=len(fragments),
            model=model.id,
            dimensions=len(document_embedding),
            duration_ms=round(embed_duration_ms, 2),
        )

        actual_cost = cost_for_model(estimate.cost_estimates, request.embedding.model)

        file_url = None
        metadata = {
            "embedding_model": model.id,
            "requested_embedding_model": request.embedding.model,
            "original_length": len(content),
            "chunk_count": len(fragments),
            "estimated_tokens": estimate.estimated_tokens,
            "actual_cost": actual_cost,
            "chunking_strategy": chunking.strategy.value,
            "chunk_size": chunking.chunk_size,
            "overlap": chunking.overlap,
            "max_chunks": chunking.max_chunks,
            "embedding_dimensions": len(document_embedding),
            "requested_dimensions": request.embedding.dimensions,
            "encoding_format": request.embedding.encoding_format,
            "normalize_embeddings": request.embedding.normalize,
        }
        if request.file is not None and self.upload_dir is not None:
            file_url, file_hash = store_original_file(
                request.file.data, request.file.filename, self.upload_dir
            )
            metadata["file_hash"] = file_hash

        document = self.store.insert_document(
            persona_id=persona_id,
            title=request.title,
            content=content,
            content_type=content_type,
            embedding=document_embedding,
            metadata=metadata,
            file_url=file_url,
            created_by=request.created_by,
            status=DocumentStatus.PROCESSING,
        )

        try:
            records = build_chunk_records(document.id, content, fragments, chunk_embeddings)
            inserted = self.store.insert_chunks(records)
            self.store.update_document_status(document.id, DocumentStatus.READY)
        except Exception as e:
            try:
                self.store.update_document_status(
                    document.id, DocumentStatus.ERROR, error_message=str(e)
                )
            except Exception:
                logger.error(
                    "failed to update document status to error",
                    document_id=str(document.id),
                )
            raise

        document = document.model_copy(update={"status": DocumentStatus.READY})
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document ingested",
            document_id=str(document.id),
            chunks_count=len(inserted),
            actual_cost=actual_cost,
            duration_ms=round(duration_ms, 2),
        )

        return IngestResult(
            document=document,
            chunks_created=len(inserted),
            estimated_tokens=estimate.estimated_tokens,
            actual_cost=actual_cost,
        )

    def get_document(self, document_id: UUID) -> tuple[KnowledgeDocument, list[KnowledgeChunk]]:
        """Return a document and its chunks in chunk order.

        Raises:
            NotFoundError: If the document does not exist.
        """
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Knowledge document {document_id} not found")
        return document, self.store.get_chunks(document_id)

    def update_document(
        self,
        document_id: UUID,
        title: str | None = None,
        content: str | None = None,
        embedding_model: str | None = None,
    ) -> KnowledgeDocument:
        """Edit a document's title and/or content.

        New content is re-embedded before anything is written. Existing chunks
        are left as they are and the document is flagged with
        ``chunks_outdated`` in its metadata.

        Raises:
            MissingParameterError: If neither title nor content is given.
            NotFoundError: If the document does not exist.
            EmptyContentError: If the new content is blank.
            EmbeddingUnavailableError: If content changed and no embedding client is configured.
        """
        if title is None and content is None:
            raise MissingParameterError("title or content")

        existing = self.store.get_document(document_id)
        if existing is None:
            raise NotFoundError(f"Knowledge document {document_id} not found")

        embedding = None
        metadata = None
        if content is not None:
            if not content.strip():
                raise EmptyContentError("Updated content is empty")
            embedding_client = self._require_embedding_client()
            # Chunks keep their vectors, so the document is re-embedded the same way
            stored = existing.metadata
            options = EmbeddingOptions(
                model=embedding_model or existing.embedding_model or EmbeddingOptions().model,
                dimensions=stored.get("requested_dimensions"),
                encoding_format=stored.get("encoding_format", "float"),
                normalize=stored.get("normalize_embeddings", False),
            )
            embedding = embedding_client.embed(content, options)
            metadata = {
                **existing.metadata,
                "embedding_model": resolve_embedding_model(options.model).id,
                "original_length": len(content),
                "embedding_dimensions": len(embedding),
                "last_updated": datetime.now(timezone.utc).isoformat(),
                "chunks_outdated": True,
            }
            logger.warn(
                "document content replaced, chunks keep previous content",
                document_id=str(document_id),
            )

        updated = self.store.update_document(
            document_id,
            title=title,
            content=content,
            embedding=embedding,
            metadata=metadata,
        )
        if updated is None:
            raise NotFoundError(f"Knowledge document {document_id} not found")
        return updated

    def delete_document(self, document_id: UUID) -> None:
        """Delete a document and, with it, all of its chunks.

        Raises:
            NotFoundError: If the document does not exist.
        """
        if not self.store.delete_document(document_id):
            raise NotFoundError(f"Knowledge document {document_id} not found")
