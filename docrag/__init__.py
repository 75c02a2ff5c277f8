"""DocRAG - question answering grounded in uploaded documents."""

from .chunk_store import FaissChunkStore, SQLiteChunkStore, get_chunk_store
from .document_processing import DocumentLoader, TextChunker
from .embeddings import EmbeddingService
from .errors import (
    DocRAGError,
    InvalidInput,
    ProviderUnavailable,
    QuotaExhausted,
    RateLimited,
    StorageFailure,
    UnsupportedType,
)
from .models import (
    Answer,
    Chunk,
    Document,
    IngestionResult,
    IngestionState,
    QueryState,
    RetrievedPassage,
)
from .pipeline import IngestionPipeline, QueryPipeline
from .synthesis import AnswerSynthesizer

__all__ = [
    "Answer",
    "AnswerSynthesizer",
    "Chunk",
    "DocRAGError",
    "Document",
    "DocumentLoader",
    "EmbeddingService",
    "FaissChunkStore",
    "IngestionPipeline",
    "IngestionResult",
    "IngestionState",
    "InvalidInput",
    "ProviderUnavailable",
    "QueryPipeline",
    "QueryState",
    "QuotaExhausted",
    "RateLimited",
    "RetrievedPassage",
    "SQLiteChunkStore",
    "StorageFailure",
    "TextChunker",
    "UnsupportedType",
    "get_chunk_store",
]
