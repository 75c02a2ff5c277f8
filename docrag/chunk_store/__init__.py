"""Chunk store backends and factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from docrag.config import config

from .base import BaseSQLiteStore, rank_passages
from .faiss_store import FaissChunkStore
from .sqlite_store import SQLiteChunkStore

if TYPE_CHECKING:
    from pathlib import Path

ChunkStoreBackend = Literal["faiss", "sqlite"]
ChunkStore = FaissChunkStore | SQLiteChunkStore


def get_chunk_store(
    store: ChunkStoreBackend = "faiss",
    *,
    db_path: Path | None = None,
    index_path: Path | None = None,
    raw_top_k_multiplier: int | None = None,
) -> ChunkStore:
    """Return a configured chunk store instance.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    if db_path is None:
        db_path = config.VECTOR_STORE_DB_PATH
    backend = store.lower()

    if backend == "faiss":
        return FaissChunkStore(
            db_path=db_path,
            index_path=(
                index_path if index_path is not None else config.FAISS_INDEX_PATH
            ),
            raw_top_k_multiplier=(
                raw_top_k_multiplier
                if raw_top_k_multiplier is not None
                else config.VECTOR_RAW_TOP_K_MULTIPLIER
            ),
        )

    if backend == "sqlite":
        return SQLiteChunkStore(db_path=db_path)

    msg = f"Unsupported chunk store backend: {store}"
    raise ValueError(msg)


__all__ = [
    "BaseSQLiteStore",
    "ChunkStore",
    "ChunkStoreBackend",
    "FaissChunkStore",
    "SQLiteChunkStore",
    "get_chunk_store",
    "rank_passages",
]
