"""Similarity search over a persona's stored embeddings.

Every candidate is scored in process (a full linear scan). This is sized for
per-persona corpora of hundreds to a few thousand vectors.
"""

import math
import time

from ..logger import logger
from .config import EmbeddingOptions
from .costs import DEFAULT_EMBEDDING_MODEL, resolve_embedding_model
from .embeddings import EmbeddingClient
from .errors import (
    DimensionMismatchError,
    EmbeddingUnavailableError,
    InvalidParameterError,
    MissingParameterError,
)
from .models import (
    KnowledgeChunk,
    KnowledgeDocument,
    SearchResponse,
    SearchResult,
    SearchType,
    normalize_persona_id,
)
from .store import KnowledgeStore

DEFAULT_LIMIT = 5
DEFAULT_THRESHOLD = 0.7


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0 if either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot_product = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot_product += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = dot_product / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Float rounding can push identical vectors just past 1
    return max(-1.0, min(1.0, similarity))


def rank_results(
    results: list[SearchResult], threshold: float, limit: int
) -> list[SearchResult]:
    """Keep results at or above `threshold`, best first, at most `limit` of them.

    Equal similarities keep their input order.
    """
    kept = [r for r in results if r.similarity >= threshold]
    kept.sort(key=lambda r: r.similarity, reverse=True)
    return kept[:limit]


class SimilaritySearchEngine:
    """Embeds a query and ranks a persona's documents or chunks against it."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_client: EmbeddingClient | None = None,
    ):
        """Initialize the search engine.

        Args:
            store: Knowledge store to scan.
            embedding_client: Client used to embed queries. Must be the same
                provider used at ingestion time.
        """
        self.store = store
        self.embedding_client = embedding_client

    def search(
        self,
        query: str | None,
        persona_id: str | None,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        search_type: SearchType | str = SearchType.CHUNKS,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        embedding_dimensions: int | None = None,
    ) -> SearchResponse:
        """Find the entries most similar to `query` within one persona.

        Args:
            query: Search text.
            persona_id: Persona whose corpus is searched.
            limit: Maximum number of results.
            threshold: Minimum similarity for a result to be returned.
            search_type: Score whole documents or individual chunks.
            embedding_model: Catalog id of the model to embed the query with.
                Unknown ids fall back to the default model.
            embedding_dimensions: Custom output size for the query embedding.
                Only entries ingested with the same requested size are scored.

        Returns:
            SearchResponse with results sorted by descending similarity.

        Raises:
            MissingParameterError: If query or persona_id is absent.
            InvalidParameterError: If limit, threshold or search_type is invalid.
            EmbeddingUnavailableError: If no embedding client is configured.
            DimensionMismatchError: If a stored embedding has a different length than the query's.
        """
        missing = [
            name for name, value in (("query", query), ("persona_id", persona_id)) if not value
        ]
        if missing:
            raise MissingParameterError(*missing)
        if limit < 1:
            raise InvalidParameterError(f"limit must be at least 1, got {limit}")
        if not -1.0 <= threshold <= 1.0:
            raise InvalidParameterError(f"threshold must be within [-1, 1], got {threshold}")
        try:
            search_type = SearchType(search_type)
        except ValueError as e:
            raise InvalidParameterError(f"Unknown search type: {search_type}") from e

        if self.embedding_client is None:
            raise EmbeddingUnavailableError(
                "Embedding provider not configured. Cannot perform knowledge base search."
            )

        start = time.perf_counter()
        persona_id = normalize_persona_id(persona_id)
        model = resolve_embedding_model(embedding_model)
        query_embedding = self.embedding_client.embed(
            query, EmbeddingOptions(model=model.id, dimensions=embedding_dimensions)
        )
        key = (model.id, embedding_dimensions)

        if search_type == SearchType.CHUNKS:
            candidates = self._score_chunks(query_embedding, persona_id, key)
        else:
            candidates = self._score_documents(query_embedding, persona_id, key)

        results = rank_results(candidates, threshold, limit)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "similarity search completed",
            persona_id=persona_id,
            search_type=search_type.value,
            query_length=len(query),
            candidates=len(candidates),
            results_count=len(results),
            threshold=threshold,
            limit=limit,
            duration_ms=round(duration_ms, 2),
        )

        return SearchResponse(
            results=results,
            query=query,
            search_type=search_type,
            embedding_model=embedding_model,
            total_results=len(results),
            threshold=threshold,
        )

    def _is_comparable(
        self,
        embedding: list[float] | None,
        document: KnowledgeDocument,
        key: tuple[str, int | None],
        entry_id: str,
        kind: str,
    ) -> bool:
        if not document.is_complete:
            logger.warn(
                f"{kind} belongs to an incomplete document, skipping",
                entry_id=entry_id,
                document_id=str(document.id),
                status=document.status.value,
            )
            return False
        if not embedding:
            logger.warn(f"{kind} missing embedding, skipping", entry_id=entry_id)
            return False
        model_id, dimensions = key
        stored_model = document.embedding_model
        if stored_model is not None and stored_model != model_id:
            logger.warn(
                f"{kind} embedded with a different model, skipping",
                entry_id=entry_id,
                stored_model=stored_model,
                query_model=model_id,
            )
            return False
        if document.requested_dimensions != dimensions:
            logger.warn(
                f"{kind} embedded at a different size, skipping",
                entry_id=entry_id,
                stored_dimensions=document.requested_dimensions,
                query_dimensions=dimensions,
            )
            return False
        return True

    def _score_chunks(
        self, query_embedding: list[float], persona_id: str, key: tuple[str, int | None]
    ) -> list[SearchResult]:
        results = []
        pairs: list[tuple[KnowledgeChunk, KnowledgeDocument]] = (
            self.store.list_chunks_with_documents(persona_id)
        )
        for chunk, document in pairs:
            if not self._is_comparable(chunk.embedding, document, key, str(chunk.id), "chunk"):
                continue
            results.append(
                SearchResult(
                    similarity=cosine_similarity(query_embedding, chunk.embedding),
                    document=document,
                    chunk=chunk,
                )
            )
        return results

    def _score_documents(
        self, query_embedding: list[float], persona_id: str, key: tuple[str, int | None]
    ) -> list[SearchResult]:
        results = []
        for document in self.store.list_documents(persona_id):
            if not self._is_comparable(
                document.embedding, document, key, str(document.id), "document"
            ):
                continue
            results.append(
                SearchResult(
                    similarity=cosine_similarity(query_embedding, document.embedding),
                    document=document,
                )
            )
        return results
