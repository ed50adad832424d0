"""Shared fixtures for knowledge base tests."""

import hashlib

import pytest

from persona_kb.knowledge import (
    ContentType,
    InMemoryKnowledgeStore,
    KnowledgeIngestionPipeline,
)
from persona_kb.knowledge.costs import DEFAULT_EMBEDDING_MODEL


class FakeEmbeddingClient:
    """Deterministic stand-in for EmbeddingClient.

    Texts listed in `vectors` get that vector; anything else gets a vector
    derived from its SHA-256 digest, sized by `options.dimensions` when given
    (at most 32).
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimensions: int = 8):
        self.vectors = vectors or {}
        self.dimensions = dimensions
        self.calls: list[tuple[str, object]] = []
        self.options: list[object] = []

    def _vector(self, text: str, options=None) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        size = self.dimensions
        if options is not None and options.dimensions:
            size = options.dimensions
        digest = hashlib.sha256(text.encode()).digest()
        return [(b + 1) / 256 for b in digest[:size]]

    def embed(self, text, options=None):
        self.calls.append(("embed", text))
        self.options.append(options)
        return self._vector(text, options)

    def embed_many(self, texts, options=None):
        self.calls.append(("embed_many", list(texts)))
        self.options.append(options)
        return [self._vector(t, options) for t in texts]


@pytest.fixture
def store():
    return InMemoryKnowledgeStore()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingClient()


@pytest.fixture
def pipeline(store, fake_embeddings):
    return KnowledgeIngestionPipeline(store=store, embedding_client=fake_embeddings)


@pytest.fixture
def add_document(store):
    """Insert a ready document with the given embedding directly into the store."""

    def _add(
        title: str,
        embedding: list[float] | None,
        persona_id: str = "gary_hormozi",
        content: str | None = None,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
    ):
        return store.insert_document(
            persona_id=persona_id,
            title=title,
            content=content or f"{title} content",
            content_type=ContentType.TEXT,
            embedding=embedding,
            metadata={"embedding_model": embedding_model},
        )

    return _add


@pytest.fixture
def embedding_client_factory():
    """Build a FakeEmbeddingClient with fixed vectors for specific texts."""
    return FakeEmbeddingClient
