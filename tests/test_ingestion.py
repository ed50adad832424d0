"""Tests for the knowledge ingestion pipeline."""

from unittest.mock import patch
from uuid import uuid4

import pytest

from persona_kb.knowledge import (
    ChunkingConfig,
    ChunkingStrategy,
    ContentType,
    DocumentStatus,
    EmbeddingOptions,
    EmbeddingProviderError,
    EmbeddingUnavailableError,
    EmptyContentError,
    EstimateResult,
    IngestionRequest,
    InvalidParameterError,
    KnowledgeIngestionPipeline,
    MissingParameterError,
    NotFoundError,
    UploadedFile,
)
from persona_kb.knowledge.costs import EMBEDDING_MODELS


def text_request(text, **overrides):
    fields = {
        "persona_id": "gary_hormozi",
        "title": "Offer notes",
        "text_content": text,
    }
    fields.update(overrides)
    return IngestionRequest(**fields)


class TestValidation:
    def test_missing_persona(self, pipeline):
        with pytest.raises(MissingParameterError, match="persona_id"):
            pipeline.ingest(text_request("content", persona_id=None))

    def test_missing_title(self, pipeline):
        with pytest.raises(MissingParameterError, match="title"):
            pipeline.ingest(text_request("content", title=""))

    def test_missing_content_source(self, pipeline):
        with pytest.raises(MissingParameterError, match="file or text_content"):
            pipeline.ingest(text_request(None))

    def test_unknown_persona(self, pipeline):
        with pytest.raises(InvalidParameterError, match="Unknown persona"):
            pipeline.ingest(text_request("content", persona_id="elon_musk"))

    def test_blank_content_aborts_before_embedding(self, pipeline, fake_embeddings, store):
        with pytest.raises(EmptyContentError):
            pipeline.ingest(text_request("  \n\t "))
        assert fake_embeddings.calls == []
        assert store.list_documents() == []

    def test_no_embedding_client(self, store):
        pipeline = KnowledgeIngestionPipeline(store=store, embedding_client=None)
        with pytest.raises(EmbeddingUnavailableError):
            pipeline.ingest(text_request("content"))


class TestEstimateOnly:
    def test_estimate_for_40000_chars(self, store):
        # No embedding client needed for estimates
        pipeline = KnowledgeIngestionPipeline(store=store, embedding_client=None)

        result = pipeline.ingest(
            text_request("a" * 40_000, content_type=ContentType.TEXT, estimate_only=True)
        )

        assert isinstance(result, EstimateResult)
        assert result.estimated_tokens == 10_000
        assert len(result.cost_estimates) == len(EMBEDDING_MODELS)
        assert result.content_length == 40_000
        assert result.chunk_count == 51
        assert store.list_documents() == []

    def test_estimate_does_not_call_provider(self, pipeline, fake_embeddings):
        pipeline.ingest(text_request("some text", estimate_only=True))
        assert fake_embeddings.calls == []


class TestIngest:
    def test_single_sentence_chunk(self, pipeline, store):
        text = "Alpha. Beta. Gamma."
        result = pipeline.ingest(
            text_request(
                text,
                chunking=ChunkingConfig(
                    strategy=ChunkingStrategy.SENTENCE, chunk_size=100, max_chunks=10
                ),
            )
        )

        assert result.chunks_created == 1
        chunks = store.get_chunks(result.document.id)
        assert [c.content for c in chunks] == [text]
        assert chunks[0].metadata["start_position"] == 0
        assert chunks[0].metadata["end_position"] == len(text)

    def test_document_and_chunks_persisted(self, pipeline, store, fake_embeddings):
        text = "x" * 2500
        result = pipeline.ingest(text_request(text))

        document = store.get_document(result.document.id)
        assert document.status == DocumentStatus.READY
        assert result.document.status == DocumentStatus.READY
        assert document.embedding == fake_embeddings.embed(text)
        assert document.metadata["embedding_model"] == "openai:text-embedding-3-small"
        assert document.metadata["chunk_count"] == 4
        assert document.metadata["chunking_strategy"] == "fixed-size"
        assert document.metadata["estimated_tokens"] == 625

        chunks = store.get_chunks(document.id)
        assert result.chunks_created == len(chunks) == 4
        assert [c.metadata["start_position"] for c in chunks] == [0, 800, 1600, 2300]
        assert all(c.embedding is not None for c in chunks)

    def test_actual_cost_uses_requested_model(self, pipeline):
        result = pipeline.ingest(text_request("a" * 4000))
        # 1000 tokens at $0.02 per million
        assert result.actual_cost == pytest.approx(1000 * 0.02 / 1_000_000)
        assert result.estimated_tokens == 1000

    def test_persona_id_normalised(self, pipeline):
        result = pipeline.ingest(text_request("content", persona_id="Rory-Sutherland"))
        assert result.document.persona_id == "rory_sutherland"

    def test_page_numbers_recorded(self, pipeline, store):
        text = "Intro text.\n1\n\nMiddle section.\n2\n\nClosing words.\n3"
        result = pipeline.ingest(
            text_request(text, chunking=ChunkingConfig(strategy=ChunkingStrategy.PARAGRAPH))
        )

        pages = [c.metadata["page_number"] for c in store.get_chunks(result.document.id)]
        assert pages[0] == 1
        assert all(p in (1, 2, 3) for p in pages)

    def test_file_upload_stored(self, store, fake_embeddings, tmp_path):
        pipeline = KnowledgeIngestionPipeline(
            store=store, embedding_client=fake_embeddings, upload_dir=tmp_path
        )
        request = IngestionRequest(
            persona_id="gary_hormozi",
            title="Playbook",
            file=UploadedFile(
                filename="playbook.md",
                data=b"# Playbook\n\nSell the vacation, not the plane flight.",
                mime_type="text/markdown",
            ),
        )

        result = pipeline.ingest(request)

        assert result.document.content_type == ContentType.MARKDOWN
        assert result.document.file_url.startswith(str(tmp_path))
        assert result.document.metadata["file_hash"] in result.document.file_url

    def test_provider_failure_writes_nothing(self, pipeline, store, fake_embeddings):
        with patch.object(
            fake_embeddings, "embed_many", side_effect=EmbeddingProviderError("down")
        ):
            with pytest.raises(EmbeddingProviderError):
                pipeline.ingest(text_request("content"))
        assert store.list_documents() == []

    def test_chunk_insert_failure_marks_document_error(self, pipeline, store):
        with patch.object(store, "insert_chunks", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError, match="disk full"):
                pipeline.ingest(text_request("content"))

        [document] = store.list_documents()
        assert document.status == DocumentStatus.ERROR
        assert document.metadata["error_message"] == "disk full"
        assert store.find_incomplete_documents() == [document]


class TestDocumentOperations:
    @pytest.fixture
    def ingested(self, pipeline):
        return pipeline.ingest(text_request("First paragraph.\n\nSecond paragraph."))

    def test_get_document_with_chunks(self, pipeline, ingested):
        document, chunks = pipeline.get_document(ingested.document.id)
        assert document.id == ingested.document.id
        assert len(chunks) == ingested.chunks_created

    def test_get_missing_document(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.get_document(uuid4())

    def test_update_title_does_not_reembed(self, pipeline, fake_embeddings, ingested):
        fake_embeddings.calls.clear()

        updated = pipeline.update_document(ingested.document.id, title="Renamed")

        assert updated.title == "Renamed"
        assert updated.embedding == ingested.document.embedding
        assert fake_embeddings.calls == []

    def test_update_content_reembeds(self, pipeline, fake_embeddings, ingested):
        updated = pipeline.update_document(ingested.document.id, content="Brand new text.")

        assert updated.content == "Brand new text."
        assert updated.embedding == fake_embeddings.embed("Brand new text.")
        assert updated.metadata["chunks_outdated"] is True
        assert updated.metadata["original_length"] == len("Brand new text.")
        assert "last_updated" in updated.metadata
        # Unrelated metadata survives the merge
        assert updated.metadata["chunking_strategy"] == "fixed-size"

    def test_update_keeps_custom_embedding_size(self, pipeline, store, fake_embeddings):
        result = pipeline.ingest(
            text_request(
                "Alpha. Beta. Gamma.",
                embedding=EmbeddingOptions(dimensions=12, normalize=True),
            )
        )

        updated = pipeline.update_document(result.document.id, content="Alpha changed.")

        chunk = store.get_chunks(result.document.id)[0]
        assert len(updated.embedding) == len(chunk.embedding) == 12
        assert updated.metadata["embedding_dimensions"] == 12
        assert updated.metadata["requested_dimensions"] == 12
        assert fake_embeddings.options[-1].normalize is True

    def test_update_requires_a_field(self, pipeline, ingested):
        with pytest.raises(MissingParameterError):
            pipeline.update_document(ingested.document.id)

    def test_update_blank_content(self, pipeline, ingested):
        with pytest.raises(EmptyContentError):
            pipeline.update_document(ingested.document.id, content="   ")

    def test_update_missing_document(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.update_document(uuid4(), title="x")

    def test_delete_cascades(self, pipeline, store, ingested):
        pipeline.delete_document(ingested.document.id)

        assert store.get_document(ingested.document.id) is None
        assert store.get_chunks(ingested.document.id) == []
        with pytest.raises(NotFoundError):
            pipeline.delete_document(ingested.document.id)
