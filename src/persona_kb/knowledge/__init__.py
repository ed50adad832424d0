from .models import (
    ContentType,
    DocumentStatus,
    KnowledgeChunk,
    KnowledgeDocument,
    Persona,
    SearchResponse,
    SearchResult,
    SearchType,
)
from .errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    EmbeddingUnavailableError,
    EmptyContentError,
    InvalidInputError,
    InvalidParameterError,
    KnowledgeBaseError,
    MissingParameterError,
    NotFoundError,
)
from .chunking import ChunkingStrategy, TextFragment, chunk_text
from .config import ChunkingConfig, EmbeddingOptions, Settings, load_settings
from .embeddings import EmbeddingClient, RateLimiter, create_embedding_client
from .store import KnowledgeStore
from .database import PgVectorStore
from .memory_store import InMemoryKnowledgeStore
from .ingestion import (
    EstimateResult,
    IngestionRequest,
    IngestResult,
    KnowledgeIngestionPipeline,
    UploadedFile,
)
from .search import SimilaritySearchEngine, cosine_similarity
from .context import KnowledgeContextBuilder, extract_search_terms, inject_knowledge_context

__all__ = [
    "ContentType",
    "DocumentStatus",
    "KnowledgeChunk",
    "KnowledgeDocument",
    "Persona",
    "SearchResponse",
    "SearchResult",
    "SearchType",
    "DimensionMismatchError",
    "EmbeddingProviderError",
    "EmbeddingUnavailableError",
    "EmptyContentError",
    "InvalidInputError",
    "InvalidParameterError",
    "KnowledgeBaseError",
    "MissingParameterError",
    "NotFoundError",
    "ChunkingStrategy",
    "TextFragment",
    "chunk_text",
    "ChunkingConfig",
    "EmbeddingOptions",
    "Settings",
    "load_settings",
    "EmbeddingClient",
    "RateLimiter",
    "create_embedding_client",
    "KnowledgeStore",
    "PgVectorStore",
    "InMemoryKnowledgeStore",
    "EstimateResult",
    "IngestionRequest",
    "IngestResult",
    "KnowledgeIngestionPipeline",
    "UploadedFile",
    "SimilaritySearchEngine",
    "cosine_similarity",
    "KnowledgeContextBuilder",
    "extract_search_terms",
    "inject_knowledge_context",
]
