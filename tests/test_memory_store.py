"""Tests for the in-memory knowledge store."""

from uuid import uuid4

import pytest

from persona_kb.knowledge.models import ContentType, DocumentStatus, KnowledgeChunk


def make_chunks(document_id, count):
    return [
        KnowledgeChunk(
            document_id=document_id,
            chunk_index=i,
            content=f"chunk {i}",
            embedding=[float(i), 1.0],
            metadata={"start_position": i * 10, "end_position": i * 10 + 7},
        )
        for i in range(count)
    ]


class TestDocuments:
    def test_insert_and_get(self, store):
        doc = store.insert_document(
            persona_id="gary_hormozi",
            title="Offers",
            content="Make offers so good people feel stupid saying no.",
            content_type=ContentType.TEXT,
            embedding=[0.1, 0.2],
            metadata={"embedding_model": "openai:text-embedding-3-small"},
            created_by="admin@example.com",
        )

        fetched = store.get_document(doc.id)
        assert fetched == doc
        assert fetched.status == DocumentStatus.READY
        assert fetched.embedding_model == "openai:text-embedding-3-small"

    def test_get_missing(self, store):
        assert store.get_document(uuid4()) is None

    def test_list_filters_by_persona(self, store, add_document):
        add_document("A", [1.0], persona_id="gary_hormozi")
        add_document("B", [1.0], persona_id="rory_sutherland")
        add_document("C", [1.0], persona_id="gary_hormozi")

        assert [d.title for d in store.list_documents("gary_hormozi")] == ["A", "C"]
        assert len(store.list_documents()) == 3

    def test_returned_copies_are_detached(self, store, add_document):
        doc = add_document("A", [1.0])
        doc.metadata["tampered"] = True
        assert "tampered" not in store.get_document(doc.id).metadata

    def test_update_document_partial(self, store, add_document):
        doc = add_document("Old title", [1.0])

        updated = store.update_document(doc.id, title="New title")

        assert updated.title == "New title"
        assert updated.content == doc.content
        assert updated.embedding == [1.0]
        assert updated.updated_at >= doc.updated_at

    def test_update_missing(self, store):
        assert store.update_document(uuid4(), title="x") is None

    def test_status_error_records_message(self, store, add_document):
        doc = add_document("A", [1.0])

        store.update_document_status(doc.id, DocumentStatus.ERROR, error_message="boom")

        fetched = store.get_document(doc.id)
        assert fetched.status == DocumentStatus.ERROR
        assert fetched.metadata["error_message"] == "boom"
        assert not fetched.is_complete

    def test_find_incomplete_documents(self, store, add_document):
        ready = add_document("ready", [1.0])
        stuck = add_document("stuck", [1.0])
        store.update_document_status(stuck.id, DocumentStatus.PROCESSING)

        incomplete = store.find_incomplete_documents()
        assert [d.id for d in incomplete] == [stuck.id]
        assert ready.id not in {d.id for d in incomplete}


class TestChunks:
    def test_insert_assigns_ids(self, store, add_document):
        doc = add_document("A", [1.0])
        inserted = store.insert_chunks(make_chunks(doc.id, 3))

        assert len(inserted) == 3
        assert all(c.id is not None and c.created_at is not None for c in inserted)
        assert [c.chunk_index for c in store.get_chunks(doc.id)] == [0, 1, 2]

    def test_insert_empty(self, store):
        assert store.insert_chunks([]) == []

    def test_insert_for_unknown_document_raises(self, store):
        with pytest.raises(ValueError, match="unknown documents"):
            store.insert_chunks(make_chunks(uuid4(), 1))

    def test_chunks_joined_with_documents_by_persona(self, store, add_document):
        gary = add_document("Gary doc", [1.0], persona_id="gary_hormozi")
        rory = add_document("Rory doc", [1.0], persona_id="rory_sutherland")
        store.insert_chunks(make_chunks(gary.id, 2))
        store.insert_chunks(make_chunks(rory.id, 1))

        pairs = store.list_chunks_with_documents("gary_hormozi")

        assert len(pairs) == 2
        assert all(doc.title == "Gary doc" for _, doc in pairs)

    def test_offsets_validated(self):
        with pytest.raises(ValueError):
            KnowledgeChunk(
                document_id=uuid4(),
                chunk_index=0,
                content="x",
                metadata={"start_position": 10, "end_position": 2},
            )


class TestDelete:
    def test_delete_cascades_to_chunks(self, store, add_document):
        doc = add_document("A", [1.0])
        other = add_document("B", [1.0])
        chunk_ids = [c.id for c in store.insert_chunks(make_chunks(doc.id, 3))]
        kept = store.insert_chunks(make_chunks(other.id, 1))

        assert store.delete_document(doc.id) is True

        assert store.get_document(doc.id) is None
        assert store.get_chunks(doc.id) == []
        assert all(store.get_chunk(cid) is None for cid in chunk_ids)
        assert store.get_chunk(kept[0].id) is not None

    def test_delete_missing(self, store):
        assert store.delete_document(uuid4()) is False
