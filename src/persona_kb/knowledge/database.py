import os
import time
from pathlib import Path
from uuid import UUID

import psycopg2
from pgvector.psycopg2 import register_vector
from psycopg2.extras import Json, RealDictCursor, execute_values

from ..logger import logger
from .config import DEFAULT_DATABASE_URL
from .models import ContentType, DocumentStatus, KnowledgeChunk, KnowledgeDocument
from .store import KnowledgeStore

DOCUMENT_COLUMNS = (
    "id, persona_id, title, content, content_type, file_url, embedding, metadata, "
    "status, created_at, updated_at, created_by"
)
CHUNK_COLUMNS = "id, document_id, chunk_index, content, embedding, metadata, created_at"


def _as_floats(value) -> list[float] | None:
    # pgvector hands back numpy arrays
    if value is None:
        return None
    return [float(x) for x in value]


def _document_from_row(row: dict, prefix: str = "") -> KnowledgeDocument:
    return KnowledgeDocument(
        id=row[f"{prefix}id"],
        persona_id=row[f"{prefix}persona_id"],
        title=row[f"{prefix}title"],
        content=row[f"{prefix}content"],
        content_type=row[f"{prefix}content_type"],
        file_url=row[f"{prefix}file_url"],
        embedding=_as_floats(row[f"{prefix}embedding"]),
        metadata=row[f"{prefix}metadata"] or {},
        status=row[f"{prefix}status"],
        created_at=row[f"{prefix}created_at"],
        updated_at=row[f"{prefix}updated_at"],
        created_by=row[f"{prefix}created_by"],
    )


def _chunk_from_row(row: dict) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding=_as_floats(row["embedding"]),
        metadata=row["metadata"] or {},
        created_at=row["created_at"],
    )


class PgVectorStore(KnowledgeStore):
    def __init__(self, connection_string: str | None = None):
        self.connection_string = connection_string or os.getenv(
            "DATABASE_URL", DEFAULT_DATABASE_URL
        )
        self.conn = None
        self._vector_registered = False

    def connect(self):
        start = time.perf_counter()
        self.conn = psycopg2.connect(self.connection_string)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("connected to database", duration_ms=round(duration_ms, 2))

    def _ensure_vector_registered(self):
        if not self._vector_registered:
            register_vector(self.conn)
            self._vector_registered = True

    def disconnect(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            self._vector_registered = False
            logger.info("disconnected from database")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def run_migrations(self, migrations_dir: str | Path):
        """Run database migrations from the specified directory.

        Args:
            migrations_dir: Path to the directory containing *.up.sql files.
        """
        migrations_dir = Path(migrations_dir)

        migration_files = sorted(migrations_dir.glob("*.up.sql"))
        start = time.perf_counter()
        try:
            with self.conn.cursor() as cur:
                for migration_file in migration_files:
                    cur.execute(migration_file.read_text())
            self.conn.commit()
            self._ensure_vector_registered()
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "migrations completed",
                migrations_count=len(migration_files),
                duration_ms=round(duration_ms, 2),
            )
        except Exception as e:
            self.conn.rollback()
            logger.error("migrations failed", error=str(e))
            raise

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
        metadata = metadata or {}
        self._ensure_vector_registered()
        start = time.perf_counter()
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO knowledge_documents
                        (persona_id, title, content, content_type, file_url, embedding,
                         metadata, status, created_by)
                    VALUES (%s, %s, %s, %s, %s, %s::vector, %s, %s, %s)
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        persona_id,
                        title,
                        content,
                        ContentType(content_type).value,
                        file_url,
                        embedding,
                        Json(metadata),
                        DocumentStatus(status).value,
                        created_by,
                    ),
                )
                row = cur.fetchone()
            self.conn.commit()
            doc = _document_from_row(row)
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "document inserted",
                document_id=str(doc.id),
                persona_id=persona_id,
                status=doc.status.value,
                duration_ms=round(duration_ms, 2),
            )
            return doc
        except Exception as e:
            self.conn.rollback()
            logger.error("document insert failed", persona_id=persona_id, error=str(e))
            raise

    def insert_chunks(self, chunks: list[KnowledgeChunk]) -> list[KnowledgeChunk]:
        if not chunks:
            return []

        self._ensure_vector_registered()
        start = time.perf_counter()
        document_id = str(chunks[0].document_id)
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                values = [
                    (
                        str(chunk.document_id),
                        chunk.chunk_index,
                        chunk.content,
                        chunk.embedding,
                        Json(chunk.metadata),
                    )
                    for chunk in chunks
                ]
                inserted_rows = execute_values(
                    cur,
                    f"""
                    INSERT INTO knowledge_chunks (document_id, chunk_index, content, embedding, metadata)
                    VALUES %s
                    RETURNING {CHUNK_COLUMNS}
                    """,
                    values,
                    template="(%s, %s, %s, %s::vector, %s)",
                    fetch=True,
                )
            self.conn.commit()
            result = sorted(
                (_chunk_from_row(row) for row in inserted_rows),
                key=lambda c: c.chunk_index,
            )
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "chunks inserted",
                document_id=document_id,
                chunks_count=len(result),
                duration_ms=round(duration_ms, 2),
            )
            return result
        except Exception as e:
            self.conn.rollback()
            logger.error(
                "chunks insert failed",
                document_id=document_id,
                chunks_count=len(chunks),
                error=str(e),
            )
            raise

    def update_document_status(
        self,
        document_id: UUID,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        patch = {"error_message": error_message} if error_message is not None else {}
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE knowledge_documents
                    SET status = %s, metadata = metadata || %s, updated_at = NOW()
                    WHERE id = %s
                    """,
                    (DocumentStatus(status).value, Json(patch), str(document_id)),
                )
            self.conn.commit()
            logger.info(
                "document status updated",
                document_id=str(document_id),
                status=DocumentStatus(status).value,
            )
        except Exception as e:
            self.conn.rollback()
            logger.error(
                "document status update failed",
                document_id=str(document_id),
                error=str(e),
            )
            raise

    def get_document(self, document_id: UUID) -> KnowledgeDocument | None:
        self._ensure_vector_registered()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {DOCUMENT_COLUMNS} FROM knowledge_documents WHERE id = %s",
                (str(document_id),),
            )
            row = cur.fetchone()
        return _document_from_row(row) if row else None

    def list_documents(self, persona_id: str | None = None) -> list[KnowledgeDocument]:
        self._ensure_vector_registered()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            if persona_id is None:
                cur.execute(
                    f"SELECT {DOCUMENT_COLUMNS} FROM knowledge_documents ORDER BY created_at, id"
                )
            else:
                cur.execute(
                    f"""
                    SELECT {DOCUMENT_COLUMNS} FROM knowledge_documents
                    WHERE persona_id = %s
                    ORDER BY created_at, id
                    """,
                    (persona_id,),
                )
            rows = cur.fetchall()
        return [_document_from_row(row) for row in rows]

    def get_chunks(self, document_id: UUID) -> list[KnowledgeChunk]:
        self._ensure_vector_registered()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {CHUNK_COLUMNS} FROM knowledge_chunks
                WHERE document_id = %s
                ORDER BY chunk_index
                """,
                (str(document_id),),
            )
            rows = cur.fetchall()
        return [_chunk_from_row(row) for row in rows]

    def get_chunk(self, chunk_id: UUID) -> KnowledgeChunk | None:
        self._ensure_vector_registered()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT {CHUNK_COLUMNS} FROM knowledge_chunks WHERE id = %s",
                (str(chunk_id),),
            )
            row = cur.fetchone()
        return _chunk_from_row(row) if row else None

    def list_chunks_with_documents(
        self, persona_id: str
    ) -> list[tuple[KnowledgeChunk, KnowledgeDocument]]:
        self._ensure_vector_registered()
        start = time.perf_counter()
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT
                    c.id, c.document_id, c.chunk_index, c.content, c.embedding,
                    c.metadata, c.created_at,
                    d.id AS doc_id, d.persona_id AS doc_persona_id, d.title AS doc_title,
                    d.content AS doc_content, d.content_type AS doc_content_type,
                    d.file_url AS doc_file_url, NULL AS doc_embedding,
                    d.metadata AS doc_metadata, d.status AS doc_status,
                    d.created_at AS doc_created_at, d.updated_at AS doc_updated_at,
                    d.created_by AS doc_created_by
                FROM knowledge_chunks c
                JOIN knowledge_documents d ON c.document_id = d.id
                WHERE d.persona_id = %s
                ORDER BY d.created_at, d.id, c.chunk_index
                """,
                (persona_id,),
            )
            rows = cur.fetchall()

        pairs = [(_chunk_from_row(row), _document_from_row(row, prefix="doc_")) for row in rows]
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "chunks loaded for scan",
            persona_id=persona_id,
            chunks_count=len(pairs),
            duration_ms=round(duration_ms, 2),
        )
        return pairs

    def update_document(
        self,
        document_id: UUID,
        title: str | None = None,
        content: str | None = None,
        embedding: list[float] | None = None,
        metadata: dict | None = None,
    ) -> KnowledgeDocument | None:
        self._ensure_vector_registered()
        start = time.perf_counter()
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    UPDATE knowledge_documents
                    SET title = COALESCE(%s, title),
                        content = COALESCE(%s, content),
                        embedding = COALESCE(%s::vector, embedding),
                        metadata = COALESCE(%s, metadata),
                        updated_at = NOW()
                    WHERE id = %s
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        title,
                        content,
                        embedding,
                        Json(metadata) if metadata is not None else None,
                        str(document_id),
                    ),
                )
                row = cur.fetchone()
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error("document update failed", document_id=str(document_id), error=str(e))
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document updated",
            document_id=str(document_id),
            found=row is not None,
            duration_ms=round(duration_ms, 2),
        )
        return _document_from_row(row) if row else None

    def delete_document(self, document_id: UUID) -> bool:
        start = time.perf_counter()
        try:
            with self.conn.cursor() as cur:
                # knowledge_chunks rows go with it (ON DELETE CASCADE)
                cur.execute("DELETE FROM knowledge_documents WHERE id = %s", (str(document_id),))
                deleted = cur.rowcount > 0
            self.conn.commit()
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "document deleted",
                document_id=str(document_id),
                deleted=deleted,
                duration_ms=round(duration_ms, 2),
            )
            return deleted
        except Exception as e:
            self.conn.rollback()
            logger.error("document delete failed", document_id=str(document_id), error=str(e))
            raise

    def truncate_tables(self) -> None:
        """Truncate all tables. Use only in tests for isolation between test runs."""
        try:
            with self.conn.cursor() as cur:
                cur.execute("TRUNCATE TABLE knowledge_chunks, knowledge_documents CASCADE")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
