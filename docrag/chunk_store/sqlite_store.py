"""SQLite chunk store with an exact linear cosine scan in numpy."""

from __future__ import annotations

from pathlib import Path

import numpy as np

from docrag.chunk_store.base import CHUNK_COLUMNS, BaseSQLiteStore, rank_passages
from docrag.config import config
from docrag.errors import StorageFailure
from docrag.models import RetrievedPassage

logger = config.get_logger(__name__)


class SQLiteChunkStore(BaseSQLiteStore):
    """Chunk storage and brute-force similarity search over SQLite rows."""

    backend = "sqlite"

    def __init__(self, db_path: Path = Path("data/chunk_store.db")) -> None:
        """Initialize the SQLiteChunkStore.

        Args:
            db_path: Path to the SQLite database file.
        """
        super().__init__(db_path)

    def _stored_dimensions(self, owner: str | None = None) -> set[int]:
        sql = "SELECT DISTINCT c.dimension FROM chunks c"
        params: tuple = ()
        if owner is not None:
            sql += " JOIN documents d ON c.document_id = d.id WHERE d.owner = ?"
            params = (owner,)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return {int(row[0]) for row in rows}

    def _check_dimension(self, dimension: int) -> None:
        """Reject an embedding whose length differs from the stored ones.

        Raises:
            StorageFailure: If stored chunks have another dimension.
        """
        stored = self._stored_dimensions()
        if stored and stored != {dimension}:
            msg = (
                f"Embedding dimension {dimension} does not match "
                f"stored embedding dimension {min(stored)}"
            )
            raise StorageFailure(msg)

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and document embeddings.

        Zero-length vectors score 0 against everything.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each document embedding.
        """
        query_norm = np.linalg.norm(query_embedding)
        if query_norm == 0:
            return np.zeros(embeddings.shape[0])
        doc_norms = np.linalg.norm(embeddings, axis=1)
        safe_norms = np.where(doc_norms == 0, 1.0, doc_norms)

        scores = (embeddings @ (query_embedding / query_norm)) / safe_norms
        return np.clip(scores, -1.0, 1.0)

    def query_similar(
        self,
        query_vector: np.ndarray,
        owner: str,
        threshold: float,
        k: int,
    ) -> list[RetrievedPassage]:
        """Search the owner's chunks for the ones closest to the query vector.

        Raises:
            StorageFailure: If the owner's chunks have another dimension.

        Returns:
            At most k passages with similarity >= threshold, best first.
        """
        query = self._validate_query(query_vector, k)
        stored = self._stored_dimensions(owner)
        if stored and stored != {int(query.shape[0])}:
            msg = (
                f"Query dimension {query.shape[0]} does not match "
                f"stored embedding dimension {min(stored)}"
            )
            raise StorageFailure(msg)

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {CHUNK_COLUMNS}
                FROM chunks c
                JOIN documents d ON c.document_id = d.id
                WHERE d.owner = ?
                """,
                (owner,),
            ).fetchall()

        if not rows:
            return []

        chunks = [self._build_chunk_from_row(row) for row in rows]
        matrix = np.vstack([chunk.embedding for chunk in chunks]).astype(np.float64)
        similarities = self.cosine_similarity(query, matrix)

        results = rank_passages(
            (
                RetrievedPassage(chunk=chunk, similarity=float(score))
                for chunk, score in zip(chunks, similarities, strict=True)
            ),
            threshold,
            k,
        )
        logger.info(
            "Scanned %d chunks for owner %s; %d passed threshold %.2f",
            len(chunks),
            owner,
            len(results),
            threshold,
        )
        return results

    def save(self) -> None:  # noqa: PLR6301
        """
        Save operation - data is already persisted in SQLite.

        Note:
            Kept for interface consistency with the FAISS-backed store.
        """
        logger.debug("Data already persisted in SQLite database")
