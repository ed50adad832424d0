"""FastAPI REST API for persona knowledge bases."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .knowledge import (
    ChunkingConfig,
    ChunkingStrategy,
    ContentType,
    DimensionMismatchError,
    DocumentStatus,
    EmbeddingClient,
    EmbeddingOptions,
    EmbeddingProviderError,
    EmbeddingUnavailableError,
    EstimateResult,
    InMemoryKnowledgeStore,
    IngestionRequest,
    InvalidInputError,
    KnowledgeBaseError,
    KnowledgeChunk,
    KnowledgeContextBuilder,
    KnowledgeDocument,
    KnowledgeIngestionPipeline,
    KnowledgeStore,
    NotFoundError,
    PgVectorStore,
    SearchResult,
    SearchType,
    Settings,
    SimilaritySearchEngine,
    UploadedFile,
    create_embedding_client,
    load_settings,
)
from .knowledge.costs import DEFAULT_EMBEDDING_MODEL, CostEstimate
from .knowledge.models import normalize_persona_id
from .logger import logger


# --- Request/Response Models ---


class DocumentResponse(BaseModel):
    id: UUID
    persona_id: str
    title: str
    content: str
    content_type: ContentType
    file_url: str | None
    status: DocumentStatus
    metadata: dict
    created_at: datetime
    updated_at: datetime
    created_by: str | None

    @classmethod
    def from_document(cls, doc: KnowledgeDocument) -> "DocumentResponse":
        return cls(**doc.model_dump(exclude={"embedding"}))


class ChunkResponse(BaseModel):
    id: UUID
    chunk_index: int
    content: str
    metadata: dict

    @classmethod
    def from_chunk(cls, chunk: KnowledgeChunk) -> "ChunkResponse":
        return cls(
            id=chunk.id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            metadata=chunk.metadata,
        )


class DocumentDetailResponse(BaseModel):
    document: DocumentResponse
    chunks: list[ChunkResponse]


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]
    count: int


class UpdateDocumentRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    content: str | None = None
    embedding_model: str | None = None


class DeleteResponse(BaseModel):
    deleted: bool
    document_id: UUID


class IngestResponse(BaseModel):
    document: DocumentResponse
    chunks_created: int
    estimated_tokens: int
    actual_cost: float


class EstimateResponse(BaseModel):
    estimated_tokens: int
    cost_estimates: list[CostEstimate]
    content_length: int
    chunk_count: int


class SearchRequest(BaseModel):
    query: str | None = None
    persona_id: str | None = None
    search_type: SearchType = SearchType.CHUNKS
    limit: int = 5
    threshold: float = 0.7
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int | None = Field(default=None, ge=1)


class SearchResultResponse(BaseModel):
    id: UUID
    source: Literal["document", "chunk"]
    document_id: UUID
    title: str
    source_title: str
    content: str
    similarity: float
    chunk_index: int | None = None
    metadata: dict

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResultResponse":
        chunk = result.chunk
        return cls(
            id=chunk.id if chunk else result.document.id,
            source="chunk" if chunk else "document",
            document_id=result.document.id,
            title=result.display_title,
            source_title=result.source_title,
            content=result.content,
            similarity=result.similarity,
            chunk_index=chunk.chunk_index if chunk else None,
            metadata=chunk.metadata if chunk else result.document.metadata,
        )


class SearchResponseBody(BaseModel):
    results: list[SearchResultResponse]
    query: str
    search_type: SearchType
    embedding_model: str
    total_results: int
    threshold: float


class ContextRequest(BaseModel):
    base_prompt: str
    message: str
    persona_id: str
    limit: int = Field(default=5, ge=1, le=20)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)


class ContextResponse(BaseModel):
    prompt: str
    augmented: bool


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    code: str
    message: str


# --- App State ---

store: KnowledgeStore | None = None
_settings: Settings | None = None
_embedding_client: EmbeddingClient | None = None


def get_settings() -> Settings:
    """Lazy initialization of settings."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_pipeline() -> KnowledgeIngestionPipeline:
    return KnowledgeIngestionPipeline(
        store=store,
        embedding_client=_embedding_client,
        upload_dir=get_settings().upload_dir,
    )


def get_search_engine() -> SimilaritySearchEngine:
    return SimilaritySearchEngine(store=store, embedding_client=_embedding_client)


def build_store(settings: Settings) -> KnowledgeStore:
    if settings.store_backend == "memory":
        logger.warn("using in-memory knowledge store, data will not persist")
        return InMemoryKnowledgeStore()
    pg_store = PgVectorStore(settings.database_url)
    pg_store.connect()
    return pg_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global store, _embedding_client

    settings = get_settings()
    logger.info("starting server", store_backend=settings.store_backend)

    store = build_store(settings)
    _embedding_client = create_embedding_client(settings)

    yield

    if isinstance(store, PgVectorStore):
        store.disconnect()
    logger.info("server shutdown")


app = FastAPI(
    title="Persona Knowledge Base API",
    description="Knowledge ingestion, similarity search and prompt augmentation for chat personas",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Exception Handlers ---

# Checked in order; the first matching class wins
ERROR_STATUS_CODES: list[tuple[type[KnowledgeBaseError], int]] = [
    (InvalidInputError, 400),
    (NotFoundError, 404),
    (DimensionMismatchError, 409),
    (EmbeddingProviderError, 502),
    (EmbeddingUnavailableError, 503),
]


def status_code_for(exc: KnowledgeBaseError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(KnowledgeBaseError)
async def knowledge_error_handler(request, exc: KnowledgeBaseError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("request failed", path=request.url.path, code=exc.code, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=exc.code, message=str(exc)).model_dump(),
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(code="INVALID_PARAMETER", message=str(exc)).model_dump(),
    )


# --- Health Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness check."""
    return HealthResponse(status="healthy")


@app.get("/ready", response_model=HealthResponse)
async def ready():
    """Readiness check - verifies the knowledge store is reachable."""
    checks = {"store": False, "embeddings": _embedding_client is not None}

    if isinstance(store, PgVectorStore):
        if store.conn:
            try:
                with store.conn.cursor() as cur:
                    cur.execute("SELECT 1")
                checks["store"] = True
            except Exception as e:
                logger.debug("health check db query failed", error=str(e))
    elif store is not None:
        checks["store"] = True

    # Missing embeddings only disables ingestion and search, estimates still work
    status = "healthy" if checks["store"] else "unhealthy"
    return HealthResponse(status=status, checks=checks)


# --- Knowledge Endpoints ---


@app.post("/api/v1/knowledge/upload", response_model=IngestResponse | EstimateResponse)
async def upload(
    file: UploadFile | None = File(None),
    persona_id: str | None = Form(None),
    title: str | None = Form(None),
    text_content: str | None = Form(None),
    content_type: ContentType | None = Form(None),
    embedding_model: str = Form(DEFAULT_EMBEDDING_MODEL),
    chunking_strategy: ChunkingStrategy = Form(ChunkingStrategy.FIXED_SIZE),
    chunk_size: int = Form(1000),
    overlap: int = Form(200),
    max_chunks: int = Form(50),
    embedding_dimensions: int | None = Form(None),
    encoding_format: Literal["float", "base64"] = Form("float"),
    normalize_embeddings: bool = Form(False),
    estimate_only: bool = Form(False),
    created_by: str | None = Form(None),
):
    """Upload a file or pasted text into a persona's knowledge base."""
    uploaded = None
    if file is not None and file.filename:
        max_size = get_settings().max_upload_size
        if file.size and file.size > max_size:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size is {max_size // (1024 * 1024)}MB",
            )
        data = await file.read()
        uploaded = UploadedFile(filename=file.filename, data=data, mime_type=file.content_type)

    request = IngestionRequest(
        persona_id=persona_id,
        title=title,
        file=uploaded,
        text_content=text_content,
        content_type=content_type,
        chunking=ChunkingConfig(
            strategy=chunking_strategy,
            chunk_size=chunk_size,
            overlap=overlap,
            max_chunks=max_chunks,
        ),
        embedding=EmbeddingOptions(
            model=embedding_model,
            dimensions=embedding_dimensions,
            encoding_format=encoding_format,
            normalize=normalize_embeddings,
        ),
        estimate_only=estimate_only,
        created_by=created_by,
    )

    # Run in thread pool to avoid blocking event loop (extraction, embeddings, DB)
    result = await asyncio.to_thread(get_pipeline().ingest, request)

    if isinstance(result, EstimateResult):
        return EstimateResponse(**result.model_dump())
    return IngestResponse(
        document=DocumentResponse.from_document(result.document),
        chunks_created=result.chunks_created,
        estimated_tokens=result.estimated_tokens,
        actual_cost=result.actual_cost,
    )


@app.post("/api/v1/knowledge/search", response_model=SearchResponseBody)
async def search(request: SearchRequest):
    """Rank a persona's documents or chunks against a query."""
    response = await asyncio.to_thread(
        get_search_engine().search,
        request.query,
        request.persona_id,
        limit=request.limit,
        threshold=request.threshold,
        search_type=request.search_type,
        embedding_model=request.embedding_model,
        embedding_dimensions=request.embedding_dimensions,
    )
    return SearchResponseBody(
        results=[SearchResultResponse.from_result(r) for r in response.results],
        query=response.query,
        search_type=response.search_type,
        embedding_model=response.embedding_model,
        total_results=response.total_results,
        threshold=response.threshold,
    )


@app.post("/api/v1/knowledge/context", response_model=ContextResponse)
async def build_context(request: ContextRequest):
    """Augment a persona prompt with knowledge relevant to a chat message."""
    builder = KnowledgeContextBuilder(get_search_engine())
    prompt = await asyncio.to_thread(
        builder.build,
        request.base_prompt,
        request.message,
        request.persona_id,
        limit=request.limit,
        threshold=request.threshold,
    )
    return ContextResponse(prompt=prompt, augmented=prompt != request.base_prompt)


@app.get("/api/v1/knowledge/documents", response_model=DocumentListResponse)
async def list_documents(persona_id: str | None = None):
    """List documents, optionally for a single persona."""
    if persona_id:
        persona_id = normalize_persona_id(persona_id)
    docs = await asyncio.to_thread(store.list_documents, persona_id)
    return DocumentListResponse(
        documents=[DocumentResponse.from_document(d) for d in docs],
        count=len(docs),
    )


@app.get("/api/v1/knowledge/documents/{document_id}", response_model=DocumentDetailResponse)
async def get_document(document_id: UUID):
    """Fetch a document with its chunks."""
    document, chunks = await asyncio.to_thread(get_pipeline().get_document, document_id)
    return DocumentDetailResponse(
        document=DocumentResponse.from_document(document),
        chunks=[ChunkResponse.from_chunk(c) for c in chunks],
    )


@app.put("/api/v1/knowledge/documents/{document_id}", response_model=DocumentResponse)
async def update_document(document_id: UUID, request: UpdateDocumentRequest):
    """Update a document's title and/or content."""
    document = await asyncio.to_thread(
        get_pipeline().update_document,
        document_id,
        title=request.title,
        content=request.content,
        embedding_model=request.embedding_model,
    )
    return DocumentResponse.from_document(document)


@app.delete("/api/v1/knowledge/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(document_id: UUID):
    """Delete a document and its chunks."""
    await asyncio.to_thread(get_pipeline().delete_document, document_id)
    return DeleteResponse(deleted=True, document_id=document_id)
