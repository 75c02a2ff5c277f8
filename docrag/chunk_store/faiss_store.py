"""FAISS-backed similarity search with SQLite persistence."""

from __future__ import annotations

import threading
from pathlib import Path

import faiss
import numpy as np

from docrag.chunk_store.base import (
    CHUNK_COLUMNS,
    BaseSQLiteStore,
    decode_embedding,
    rank_passages,
)
from docrag.config import config
from docrag.errors import StorageFailure
from docrag.models import Chunk, RetrievedPassage

logger = config.get_logger(__name__)

SQLITE_ID_BATCH = 500


def _clip_score(score: float) -> float:
    return min(1.0, max(-1.0, float(score)))


class FaissChunkStore(BaseSQLiteStore):
    """Chunk storage using SQLite for rows and FAISS for inner-product search."""

    backend = "faiss"

    def __init__(
        self,
        db_path: Path = Path("data/chunk_store.db"),
        index_path: Path = Path("data/faiss/index.faiss"),
        raw_top_k_multiplier: int = 2,
    ) -> None:
        """Configure FAISS-backed chunk store."""
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(exist_ok=True, parents=True)

        self.index: faiss.IndexIDMap | None = None
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)
        self._lock = threading.RLock()

        super().__init__(db_path)

    @staticmethod
    def _normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """Normalize embedding for cosine similarity using inner product search.

        Returns:
            Normalized float32 row vector of shape (1, dimension).
        """
        vector = np.ascontiguousarray(embedding, dtype="float32").reshape(1, -1)
        if np.linalg.norm(vector) == 0:
            return vector
        faiss.normalize_L2(vector)
        return vector

    def _init_index(self, dimension: int) -> None:
        base_index = faiss.IndexFlatIP(dimension)
        self.index = faiss.IndexIDMap(base_index)
        logger.info("Initialized FAISS IndexIDMap with dimension %d", dimension)

    def _check_dimension(self, dimension: int) -> None:
        """Reject an embedding whose length differs from the index.

        Raises:
            StorageFailure: If the dimension does not match the index.
        """
        with self._lock:
            if self.index is not None and dimension != self.index.d:
                msg = (
                    f"Embedding dimension {dimension} does not match "
                    f"FAISS index dimension {self.index.d}"
                )
                raise StorageFailure(msg)

    def _on_chunk_added(self, chunk_db_id: int, embedding: np.ndarray) -> None:
        vector = self._normalize_embedding(embedding)
        with self._lock:
            if self.index is None:
                self._init_index(vector.shape[1])
            self._check_dimension(vector.shape[1])
            self.index.add_with_ids(vector, np.asarray([chunk_db_id], dtype="int64"))

    def _on_chunks_removed(self, chunk_db_ids: list[int]) -> None:
        if not chunk_db_ids:
            return
        with self._lock:
            if self.index is None:
                return
            removed = self.index.remove_ids(np.asarray(chunk_db_ids, dtype="int64"))
        logger.info("Removed %d vectors from FAISS index", removed)

    def _fetch_owner_chunks(
        self, chunk_db_ids: list[int], owner: str
    ) -> dict[int, Chunk]:
        """Load the rows among ``chunk_db_ids`` whose document belongs to owner.

        Returns:
            Mapping of row id to Chunk for the owner's rows only.
        """
        found: dict[int, Chunk] = {}
        with self._connect() as conn:
            for start in range(0, len(chunk_db_ids), SQLITE_ID_BATCH):
                batch = chunk_db_ids[start : start + SQLITE_ID_BATCH]
                placeholders = ", ".join("?" for _ in batch)
                rows = conn.execute(
                    f"""
                    SELECT {CHUNK_COLUMNS}
                    FROM chunks c
                    JOIN documents d ON c.document_id = d.id
                    WHERE c.id IN ({placeholders}) AND d.owner = ?
                    """,
                    (*batch, owner),
                ).fetchall()
                for row in rows:
                    chunk = self._build_chunk_from_row(row)
                    found[chunk.id] = chunk
        return found

    def query_similar(
        self,
        query_vector: np.ndarray,
        owner: str,
        threshold: float,
        k: int,
    ) -> list[RetrievedPassage]:
        """Search similar chunks using the FAISS index, scoped to one owner.

        The raw window starts at ``raw_top_k_multiplier * k`` and doubles until
        the owner's top k are settled, scores fall below the threshold, or the
        whole index has been scanned.

        Raises:
            StorageFailure: If the query dimension differs from the index.

        Returns:
            Ranked list of passages, at most k long.
        """
        query = self._validate_query(query_vector, k)
        normalized_query = self._normalize_embedding(query)

        with self._lock:
            if self.index is None or self.index.ntotal == 0:
                logger.warning("FAISS index is empty; returning no results")
                return []
            if normalized_query.shape[1] != self.index.d:
                msg = (
                    f"Query dimension {normalized_query.shape[1]} does not match "
                    f"FAISS index dimension {self.index.d}"
                )
                raise StorageFailure(msg)
            raw_top_k = max(k, self.raw_top_k_multiplier * k)

        while True:
            with self._lock:
                ntotal = self.index.ntotal
                raw_top_k = min(raw_top_k, ntotal)
                scores, vector_ids = self.index.search(normalized_query, raw_top_k)

            raw_hits = [
                (int(vector_id), _clip_score(score))
                for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
                if int(vector_id) != -1  # faiss pads missing results with -1
            ]
            above = [(vid, score) for vid, score in raw_hits if score >= threshold]
            owned = self._fetch_owner_chunks([vid for vid, _ in above], owner)
            candidates = [
                RetrievedPassage(chunk=owned[vid], similarity=score)
                for vid, score in above
                if vid in owned
            ]

            last_score = raw_hits[-1][1] if raw_hits else -1.0
            settled = len(candidates) >= k and last_score < sorted(
                (p.similarity for p in candidates), reverse=True
            )[k - 1]
            if raw_top_k >= ntotal or last_score < threshold or settled:
                break
            raw_top_k *= 2

        results = rank_passages(candidates, threshold, k)
        logger.info(
            "FAISS search over %d vectors returned %d passages for owner %s",
            ntotal,
            len(results),
            owner,
        )
        return results

    def _rebuild_index(self) -> None:
        """Recreate the FAISS index from the embeddings stored in SQLite.

        Raises:
            StorageFailure: If stored embeddings have mixed dimensions.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, dimension, embedding FROM chunks ORDER BY id"
            ).fetchall()

        with self._lock:
            self.index = None
            if not rows:
                logger.info("No stored chunks; FAISS index left empty")
                return

            dimensions = {int(row[1]) for row in rows}
            if len(dimensions) > 1:
                msg = f"Stored embeddings have mixed dimensions: {sorted(dimensions)}"
                raise StorageFailure(msg)

            vectors = np.vstack([
                self._normalize_embedding(decode_embedding(row[2])) for row in rows
            ])
            ids_array = np.asarray([int(row[0]) for row in rows], dtype="int64")
            self._init_index(dimensions.pop())
            self.index.add_with_ids(vectors, ids_array)
        logger.info("Rebuilt FAISS index with %d vectors", len(rows))

    def save(self) -> None:
        """Persist FAISS index to disk.

        Raises:
            StorageFailure: If FAISS cannot write the index file.
        """
        with self._lock:
            index = self.index
            if index is None:
                logger.warning("No FAISS index to save")
                return

            self.index_path.parent.mkdir(exist_ok=True, parents=True)
            try:
                faiss.write_index(index, str(self.index_path))
            except RuntimeError as exc:
                logger.exception("Unable to write FAISS index to %s", self.index_path)
                msg = f"Unable to write FAISS index: {exc}"
                raise StorageFailure(msg) from exc
        logger.info("Saved FAISS index to %s", self.index_path)

    def load(self) -> None:
        """Load the FAISS index from disk, rebuilding it if it is out of sync.

        Raises:
            StorageFailure: If the index file cannot be read.
        """
        with self._lock:
            if self.index_path.exists():
                try:
                    loaded_index = faiss.read_index(str(self.index_path))
                except RuntimeError as exc:
                    logger.exception("Unable to read FAISS index %s", self.index_path)
                    msg = f"Unable to read FAISS index: {exc}"
                    raise StorageFailure(msg) from exc
                logger.info(
                    "Loaded FAISS index from %s with %d vectors",
                    self.index_path,
                    loaded_index.ntotal,
                )
                self.index = loaded_index
            else:
                logger.warning(
                    "FAISS index not found at %s. Start with an empty index.",
                    self.index_path,
                )
                self.index = None

            index = self.index
            row_count = self.count_chunks()
            in_sync = (index is None and row_count == 0) or (
                isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2))
                and index.ntotal == row_count
            )
            if not in_sync:
                logger.warning(
                    "FAISS index holds %s vectors but %d chunks are stored; rebuilding",
                    index.ntotal if index is not None else 0,
                    row_count,
                )
                self._rebuild_index()
