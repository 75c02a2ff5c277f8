"""Ingestion and query pipelines orchestrating chunking, embedding and retrieval."""

from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from .config import config
from .document_processing import TextChunker, is_supported_media_type
from .errors import InvalidInput, UnsupportedType
from .models import (
    Answer,
    Chunk,
    Document,
    IngestionResult,
    IngestionState,
    QueryState,
    RetrievedPassage,
)
from .synthesis import SYSTEM_INSTRUCTION

if TYPE_CHECKING:
    from .chunk_store import ChunkStore
    from .embeddings import EmbeddingService
    from .synthesis import AnswerSynthesizer

logger = config.get_logger(__name__)

NO_EVIDENCE_ANSWER = (
    "I couldn't find any relevant information in your documents "
    "to answer this question."
)
CONTEXT_SEPARATOR = "\n\n"


def build_context(passages: list[RetrievedPassage]) -> str:
    """Join passage texts, in retrieval order, separated by a blank line.

    Returns:
        The grounding context block.
    """
    return CONTEXT_SEPARATOR.join(passage.text for passage in passages)


class IngestionPipeline:
    """Ingestion pipeline orchestrating Chunk -> Embed -> Store for one document."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        chunk_store: ChunkStore,
        *,
        chunk_size: int | None = None,
        max_workers: int | None = None,
        cleanup_on_failure: bool | None = None,
    ) -> None:
        """Initialize the ingestion pipeline.

        Args:
            embedding_service: Client used to embed every chunk.
            chunk_store: Destination for embedded chunks.
            chunk_size: Maximum chunk length. If None, uses config.CHUNK_SIZE.
            max_workers: Concurrent embedding calls per document. If None, uses
                config.EMBEDDING_WORKERS; 1 embeds strictly sequentially.
            cleanup_on_failure: Remove already stored chunks when a run fails
                part way. If None, uses config.CLEANUP_PARTIAL_INGESTION.
        """
        self.embedding_service = embedding_service
        self.chunk_store = chunk_store
        self.chunker = TextChunker(
            chunk_size=chunk_size if chunk_size is not None else config.CHUNK_SIZE
        )
        self.max_workers = max(
            1, max_workers if max_workers is not None else config.EMBEDDING_WORKERS
        )
        self.cleanup_on_failure = (
            cleanup_on_failure
            if cleanup_on_failure is not None
            else config.CLEANUP_PARTIAL_INGESTION
        )

    @staticmethod
    def _transition(document_id: str, state: IngestionState) -> None:
        logger.info("Document %s: %s", document_id, state.value)

    @staticmethod
    def validate(document: Document) -> None:
        """Reject documents that cannot be ingested, before any work is done.

        Raises:
            InvalidInput: If the content is empty.
            UnsupportedType: If the media type is not ingestible as text.
        """
        if not is_supported_media_type(document.media_type):
            raise UnsupportedType(document.media_type, {"document_id": document.id})
        if not document.content or not document.content.strip():
            msg = "Document content is empty"
            raise InvalidInput(msg, {"document_id": document.id})

    def ingest_text(
        self,
        document_id: str,
        content: str,
        title: str,
        owner: str,
        media_type: str = "text/plain",
    ) -> IngestionResult:
        """Ingest raw text under an existing or new document id.

        Returns:
            The ingestion result for the document.
        """
        document = Document.create(
            owner=owner,
            title=title,
            content=content,
            media_type=media_type,
            document_id=document_id,
        )
        return self.ingest(document)

    def _register(self, document: Document) -> None:
        existing = self.chunk_store.get_document(document.id)
        if existing is None:
            self.chunk_store.add_document(document)
            return
        if existing.owner != document.owner:
            msg = f"Document {document.id} not found"
            raise InvalidInput(msg, {"document_id": document.id})
        if existing.content != document.content:
            msg = f"Document {document.id} already exists with different content"
            raise InvalidInput(msg, {"document_id": document.id})

        # Re-ingesting replaces the chunk set so ordinals stay unique.
        replaced = self.chunk_store.delete_chunks(document.id)
        if replaced:
            logger.info(
                "Replacing %d existing chunks of document %s", replaced, document.id
            )

    def ingest(self, document: Document) -> IngestionResult:
        """Process a document through the complete ingestion pipeline.

        Raises:
            InvalidInput: If the document fails validation.

        Returns:
            IngestionResult with the number of chunks stored.
        """
        self._transition(document.id, IngestionState.RECEIVED)
        logger.info(
            "Starting ingestion for document %s (%r, %s, %d bytes)",
            document.id,
            document.title,
            document.media_type,
            document.byte_size,
        )

        try:
            self.validate(document)
            self._register(document)
        except Exception:
            logger.exception("Document %s rejected", document.id)
            self._transition(document.id, IngestionState.FAILED)
            raise

        self._transition(document.id, IngestionState.CHUNKING)
        chunks = self.chunker.chunk_text(document.content, document.id)

        self._transition(document.id, IngestionState.EMBEDDING)
        stored: list[Chunk] = []
        try:
            self._embed_and_store(chunks, stored)
            self.chunk_store.save()
        except Exception:
            logger.exception(
                "Ingestion of document %s failed after %d of %d chunks",
                document.id,
                len(stored),
                len(chunks),
            )
            self._transition(document.id, IngestionState.FAILED)
            if self.cleanup_on_failure and stored:
                self._cleanup(document.id)
            raise

        self._transition(document.id, IngestionState.STORED)
        logger.info(
            "Successfully processed document %s with %d chunks",
            document.id,
            len(stored),
        )
        return IngestionResult(document_id=document.id, chunks_processed=len(stored))

    def _embed_and_store(self, chunks: list[Chunk], stored: list[Chunk]) -> None:
        """Embed and persist chunks in ordinal order, stopping at the first error."""
        if self.max_workers == 1:
            for chunk in chunks:
                logger.debug("Processing chunk %d/%d", chunk.index + 1, len(chunks))
                embedding = self.embedding_service.embed(chunk.text)
                stored.append(self.chunk_store.put(chunk.with_embedding(embedding)))
            return

        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="docrag-embed"
        )
        try:
            futures = [
                executor.submit(self.embedding_service.embed, chunk.text)
                for chunk in chunks
            ]
            for chunk, future in zip(chunks, futures, strict=True):
                embedding = future.result()
                stored.append(self.chunk_store.put(chunk.with_embedding(embedding)))
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _cleanup(self, document_id: str) -> None:
        try:
            removed = self.chunk_store.delete_chunks(document_id)
            self.chunk_store.save()
        except Exception:
            logger.exception(
                "Cleanup of partially indexed document %s failed", document_id
            )
        else:
            logger.warning(
                "Removed %d partially indexed chunks of document %s",
                removed,
                document_id,
            )


class QueryPipeline:
    """Query pipeline orchestrating Embed -> Retrieve -> Synthesize for one question."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        chunk_store: ChunkStore,
        synthesizer: AnswerSynthesizer,
        *,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> None:
        """Initialize the query pipeline.

        Args:
            embedding_service: Client used to embed the question.
            chunk_store: Source of candidate passages.
            synthesizer: Chat model wrapper producing the final answer.
            top_k: Maximum passages retrieved. If None, uses config.MATCH_COUNT.
            threshold: Minimum cosine similarity. If None, uses
                config.MATCH_THRESHOLD.
        """
        self.embedding_service = embedding_service
        self.chunk_store = chunk_store
        self.synthesizer = synthesizer
        self.top_k = top_k if top_k is not None else config.MATCH_COUNT
        self.threshold = threshold if threshold is not None else config.MATCH_THRESHOLD

    @staticmethod
    def _transition(query_id: str, state: QueryState) -> None:
        logger.info("Query %s: %s", query_id, state.value)

    def answer(self, question: str, owner: str) -> Answer:
        """Answer a question from the owner's documents.

        Raises:
            InvalidInput: If the question is empty or whitespace only.

        Returns:
            Answer with its evidence passages, or the canned no-evidence answer.
        """
        query_id = uuid.uuid4().hex[:12]
        self._transition(query_id, QueryState.RECEIVED)

        if not question or not question.strip():
            logger.warning("Query %s rejected: empty question", query_id)
            self._transition(query_id, QueryState.FAILED)
            msg = "Query must not be empty"
            raise InvalidInput(msg, {"query_id": query_id})

        logger.info("Processing query %s", query_id)
        logger.debug("Query %s question: %s", query_id, question)

        try:
            self._transition(query_id, QueryState.EMBEDDING)
            query_embedding = self.embedding_service.embed(question)

            self._transition(query_id, QueryState.RETRIEVING)
            passages = self.chunk_store.query_similar(
                query_embedding, owner, threshold=self.threshold, k=self.top_k
            )
            logger.info("Query %s found %d similar chunks", query_id, len(passages))

            if not passages:
                self._transition(query_id, QueryState.NO_EVIDENCE)
                return Answer(
                    text=NO_EVIDENCE_ANSWER,
                    passages=[],
                    state=QueryState.NO_EVIDENCE,
                    query_id=query_id,
                )

            self._transition(query_id, QueryState.SYNTHESIZING)
            answer_text = self.synthesizer.synthesize(
                SYSTEM_INSTRUCTION, build_context(passages), question
            )
        except Exception:
            logger.exception("Query %s failed", query_id)
            self._transition(query_id, QueryState.FAILED)
            raise

        for rank, passage in enumerate(passages, start=1):
            logger.info(
                "  Source %d: document %s chunk %d (similarity: %.4f)",
                rank,
                passage.document_id,
                passage.chunk.index,
                passage.similarity,
            )
        self._transition(query_id, QueryState.ANSWERED)
        return Answer(
            text=answer_text,
            passages=passages,
            state=QueryState.ANSWERED,
            query_id=query_id,
        )
