"""Data models for DocRAG."""

import datetime
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np


class IngestionState(str, Enum):
    """Lifecycle of one document ingestion run."""

    RECEIVED = "received"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORED = "stored"
    FAILED = "failed"


class QueryState(str, Enum):
    """Lifecycle of one question."""

    RECEIVED = "received"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    SYNTHESIZING = "synthesizing"
    ANSWERED = "answered"
    NO_EVIDENCE = "no_evidence"
    FAILED = "failed"


@dataclass(frozen=True)
class Document:
    """An uploaded document owned by a single user."""

    id: str
    owner: str
    title: str
    content: str
    media_type: str
    byte_size: int
    created_at: datetime.datetime

    @classmethod
    def create(
        cls,
        owner: str,
        title: str,
        content: str,
        media_type: str = "text/plain",
        document_id: str | None = None,
    ) -> "Document":
        """Build a new document, deriving its id, size and timestamp.

        Returns:
            A Document stamped with the current UTC time.
        """
        return cls(
            id=document_id or uuid.uuid4().hex,
            owner=owner,
            title=title,
            content=content,
            media_type=media_type,
            byte_size=len(content.encode("utf-8")),
            created_at=datetime.datetime.now(tz=datetime.UTC),
        )


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of a document, the unit of embedding and retrieval."""

    document_id: str
    index: int
    text: str
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)
    id: int | None = None

    def with_embedding(self, embedding: np.ndarray) -> "Chunk":
        return replace(self, embedding=embedding)


@dataclass(frozen=True)
class RetrievedPassage:
    """A stored chunk matched against a query, with its cosine similarity."""

    chunk: Chunk
    similarity: float

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def text(self) -> str:
        return self.chunk.text


@dataclass(frozen=True)
class Answer:
    """Synthesized answer plus the passages used as evidence."""

    text: str
    passages: list[RetrievedPassage]
    state: QueryState
    query_id: str


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of a successful ingestion run."""

    document_id: str
    chunks_processed: int
    state: IngestionState = IngestionState.STORED
