"""Shared SQLite persistence for chunk stores."""

from __future__ import annotations

import datetime
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from docrag.config import config
from docrag.errors import InvalidInput, StorageFailure
from docrag.models import Chunk, Document, RetrievedPassage

logger = config.get_logger(__name__)

EMBEDDING_DTYPE = np.float32

CHUNK_COLUMNS = "c.id, c.document_id, c.chunk_index, c.chunk_text, c.embedding"


def encode_embedding(embedding: np.ndarray) -> bytes:
    return np.asarray(embedding, dtype=EMBEDDING_DTYPE).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE)


def rank_passages(
    candidates: Iterable[RetrievedPassage],
    threshold: float,
    k: int,
) -> list[RetrievedPassage]:
    """Keep passages at or above ``threshold`` and return the best ``k``.

    Ties on similarity are ordered by (document id, chunk index).

    Returns:
        At most k passages in descending similarity order.
    """
    qualifying = [p for p in candidates if p.similarity >= threshold]
    qualifying.sort(key=lambda p: (-p.similarity, p.chunk.document_id, p.chunk.index))
    return qualifying[:k]


class BaseSQLiteStore:
    """Schema management, document bookkeeping and chunk rows in SQLite."""

    backend = "base"

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self.timeout = timeout
        self._create_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for one operation and commit it on success.

        Raises:
            StorageFailure: If SQLite reports any error.
        """
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as exc:
            logger.exception("Unable to open chunk store at %s", self.db_path)
            msg = f"Unable to open chunk store: {exc}"
            raise StorageFailure(msg) from exc

        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.exception("Chunk store operation failed")
            msg = f"Chunk store operation failed: {exc}"
            raise StorageFailure(msg) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_tables(self) -> None:
        """Create document and chunk tables if they don't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    media_type TEXT NOT NULL,
                    byte_size INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    chunk_text TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (document_id) REFERENCES documents (id)
                        ON DELETE CASCADE
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner)"
            )
            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_chunks_document "
                    "ON chunks(document_id, chunk_index)"
                ),
            )

    # Documents

    def add_document(self, document: Document) -> None:
        """Persist a document row.

        Raises:
            StorageFailure: If a document with the same id already exists.
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    id, owner, title, content, media_type, byte_size, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.owner,
                    document.title,
                    document.content,
                    document.media_type,
                    document.byte_size,
                    document.created_at.isoformat(),
                ),
            )
        logger.info("Registered document %s for owner %s", document.id, document.owner)

    @staticmethod
    def _build_document_from_row(row: tuple) -> Document:
        doc_id, owner, title, content, media_type, byte_size, created_at = row
        return Document(
            id=doc_id,
            owner=owner,
            title=title,
            content=content,
            media_type=media_type,
            byte_size=int(byte_size),
            created_at=datetime.datetime.fromisoformat(created_at),
        )

    def get_document(
        self, document_id: str, owner: str | None = None
    ) -> Document | None:
        """Fetch a document, optionally only if it belongs to ``owner``.

        Returns:
            The Document if found; otherwise None.
        """
        sql = (
            "SELECT id, owner, title, content, media_type, byte_size, created_at "
            "FROM documents WHERE id = ?"
        )
        params: tuple = (document_id,)
        if owner is not None:
            sql += " AND owner = ?"
            params = (document_id, owner)

        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return self._build_document_from_row(row) if row else None

    def list_documents(self, owner: str) -> list[Document]:
        """List the owner's documents, newest first.

        Returns:
            Documents belonging to ``owner``.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, owner, title, content, media_type, byte_size, created_at
                FROM documents
                WHERE owner = ?
                ORDER BY created_at DESC, id
                """,
                (owner,),
            ).fetchall()
        return [self._build_document_from_row(row) for row in rows]

    def delete_document(self, document_id: str, owner: str) -> bool:
        """Delete an owner's document together with all of its chunks.

        Returns:
            True if the document existed and was deleted.
        """
        with self._connect() as conn:
            chunk_ids = self._chunk_ids_for(conn, document_id)
            cursor = conn.execute(
                "DELETE FROM documents WHERE id = ? AND owner = ?",
                (document_id, owner),
            )
            deleted = cursor.rowcount > 0
            if deleted:
                self._on_chunks_removed(chunk_ids)

        if deleted:
            logger.info(
                "Deleted document %s and %d chunks", document_id, len(chunk_ids)
            )
        return deleted

    # Chunks

    @staticmethod
    def _chunk_ids_for(conn: sqlite3.Connection, document_id: str) -> list[int]:
        rows = conn.execute(
            "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchall()
        return [int(row[0]) for row in rows]

    def put(self, chunk: Chunk) -> Chunk:
        """Persist one chunk; duplicate inserts become distinct rows.

        Raises:
            InvalidInput: If the chunk has no embedding.
            StorageFailure: If the parent document is missing or the write fails.

        Returns:
            The chunk carrying its assigned row id.
        """
        if chunk.embedding is None:
            msg = (
                f"Chunk {chunk.index} of document {chunk.document_id} "
                "has no embedding"
            )
            raise InvalidInput(msg)

        embedding = np.asarray(chunk.embedding, dtype=EMBEDDING_DTYPE)
        self._check_dimension(embedding.shape[0])

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO chunks (
                    document_id, chunk_index, chunk_text, dimension, embedding
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    chunk.document_id,
                    chunk.index,
                    chunk.text,
                    int(embedding.shape[0]),
                    encode_embedding(embedding),
                ),
            )
            chunk_row_id = cursor.lastrowid
            if chunk_row_id is None:
                msg = "Failed to insert chunk row"
                raise StorageFailure(msg)

        # Index only committed rows; a failed index write removes the row again.
        try:
            self._on_chunk_added(int(chunk_row_id), embedding)
        except Exception:
            with self._connect() as conn:
                conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_row_id,))
            raise

        return Chunk(
            document_id=chunk.document_id,
            index=chunk.index,
            text=chunk.text,
            embedding=chunk.embedding,
            id=int(chunk_row_id),
        )

    def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks in ordinal order.

        Returns:
            Chunks with embeddings loaded.
        """
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {CHUNK_COLUMNS}
                FROM chunks c
                WHERE c.document_id = ?
                ORDER BY c.chunk_index, c.id
                """,
                (document_id,),
            ).fetchall()
        return [self._build_chunk_from_row(row) for row in rows]

    def delete_chunks(self, document_id: str) -> int:
        """Remove every chunk of a document, keeping the document itself.

        Returns:
            Number of chunks removed.
        """
        with self._connect() as conn:
            chunk_ids = self._chunk_ids_for(conn, document_id)
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            self._on_chunks_removed(chunk_ids)
        logger.info("Removed %d chunks of document %s", len(chunk_ids), document_id)
        return len(chunk_ids)

    def count_chunks(self, document_id: str | None = None) -> int:
        with self._connect() as conn:
            if document_id is None:
                row = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE document_id = ?",
                    (document_id,),
                ).fetchone()
        return int(row[0])

    @staticmethod
    def _build_chunk_from_row(row: tuple) -> Chunk:
        chunk_db_id, document_id, chunk_index, chunk_text, blob = row
        return Chunk(
            document_id=document_id,
            index=int(chunk_index),
            text=chunk_text,
            embedding=decode_embedding(blob),
            id=int(chunk_db_id),
        )

    # Similarity search

    @staticmethod
    def _validate_query(query_vector: np.ndarray, k: int) -> np.ndarray:
        if k <= 0:
            msg = f"match count must be positive, got {k}"
            raise InvalidInput(msg)
        vector = np.asarray(query_vector, dtype=np.float64)
        if vector.ndim != 1 or vector.size == 0:
            msg = "query embedding must be a non-empty 1-D vector"
            raise InvalidInput(msg)
        return vector

    def query_similar(
        self,
        query_vector: np.ndarray,
        owner: str,
        threshold: float,
        k: int,
    ) -> list[RetrievedPassage]:
        """Return the owner's top-k chunks with similarity at or above threshold."""
        raise NotImplementedError

    # Backend hooks

    def _check_dimension(self, dimension: int) -> None:
        """Reject embeddings the backend cannot index."""

    def _on_chunk_added(self, chunk_db_id: int, embedding: np.ndarray) -> None:
        """Index a freshly committed row; raising deletes the row again."""

    def _on_chunks_removed(self, chunk_db_ids: list[int]) -> None:
        """Drop deleted rows from any secondary index."""

    def save(self) -> None:
        """Persist any state held outside SQLite."""

    def load(self) -> None:
        """Bring any state held outside SQLite in line with the rows."""
