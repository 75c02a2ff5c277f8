"""Tests for the ingestion and query pipelines."""

import logging
import threading

import pytest

from docrag import (
    Document,
    IngestionState,
    InvalidInput,
    ProviderUnavailable,
    QueryState,
    RateLimited,
    StorageFailure,
    UnsupportedType,
)
from docrag.pipeline import NO_EVIDENCE_ANSWER, build_context
from docrag.synthesis import SYSTEM_INSTRUCTION

from conftest import (
    EchoSynthesizer,
    MockEmbeddingService,
    StubEmbeddingService,
    TestConstants,
    basis_vector,
    vector_with_similarity,
)

OWNER = TestConstants.OWNER
OTHER_OWNER = TestConstants.OTHER_OWNER


def _document(content, document_id="doc-1", media_type="text/plain", owner=OWNER):
    return Document.create(
        owner=owner,
        title="Test document",
        content=content,
        media_type=media_type,
        document_id=document_id,
    )


# Ingestion


def test_ingest_stores_every_chunk(chunk_store, ingestion_factory):
    content = "a" * 500 + "b" * 500 + "c" * 200
    embedder = MockEmbeddingService(dimension=8)
    pipeline = ingestion_factory(chunk_store, embedding_service=embedder)

    result = pipeline.ingest(_document(content))

    assert result.chunks_processed == 3
    assert result.state is IngestionState.STORED
    chunks = chunk_store.get_chunks("doc-1")
    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert "".join(chunk.text for chunk in chunks) == content
    assert embedder.calls == [chunk.text for chunk in chunks]


def test_ingest_text_registers_document(chunk_store, ingestion_factory):
    pipeline = ingestion_factory(chunk_store)

    result = pipeline.ingest_text("doc-1", "Some text.", "Title", OWNER)

    assert result.document_id == "doc-1"
    assert result.chunks_processed == 1
    document = chunk_store.get_document("doc-1", owner=OWNER)
    assert document.title == "Title"
    assert document.content == "Some text."


def test_ingest_text_accepts_preregistered_document(chunk_store, ingestion_factory):
    chunk_store.add_document(_document("Some text."))
    pipeline = ingestion_factory(chunk_store)

    result = pipeline.ingest_text("doc-1", "Some text.", "Title", OWNER)

    assert result.chunks_processed == 1


def test_reingest_replaces_existing_chunks(chunk_store, ingestion_factory):
    pipeline = ingestion_factory(chunk_store, chunk_size=5)

    pipeline.ingest_text("doc-1", "hello world", "Title", OWNER)
    result = pipeline.ingest_text("doc-1", "hello world", "Title", OWNER)

    chunks = chunk_store.get_chunks("doc-1")
    assert result.chunks_processed == 3
    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert "".join(chunk.text for chunk in chunks) == "hello world"


def test_reingest_with_different_content_rejected(chunk_store, ingestion_factory):
    embedder = StubEmbeddingService()
    pipeline = ingestion_factory(chunk_store, embedding_service=embedder, chunk_size=5)
    pipeline.ingest_text("doc-1", "hello world", "Title", OWNER)
    calls_before = len(embedder.calls)

    with pytest.raises(InvalidInput, match="different content"):
        pipeline.ingest_text("doc-1", "totally different", "Title", OWNER)

    assert len(embedder.calls) == calls_before
    chunks = chunk_store.get_chunks("doc-1")
    assert "".join(chunk.text for chunk in chunks) == "hello world"
    assert chunk_store.get_document("doc-1").content == "hello world"


def test_ingest_rejects_document_of_other_owner(chunk_store, ingestion_factory):
    chunk_store.add_document(_document("Theirs.", owner=OTHER_OWNER))
    embedder = StubEmbeddingService()
    pipeline = ingestion_factory(chunk_store, embedding_service=embedder)

    with pytest.raises(InvalidInput, match="not found"):
        pipeline.ingest_text("doc-1", "Mine.", "Title", OWNER)

    assert embedder.calls == []
    assert chunk_store.count_chunks() == 0


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_ingest_rejects_empty_content(chunk_store, ingestion_factory, content):
    embedder = StubEmbeddingService()
    pipeline = ingestion_factory(chunk_store, embedding_service=embedder)

    with pytest.raises(InvalidInput, match="empty"):
        pipeline.ingest(_document(content))

    assert embedder.calls == []
    assert chunk_store.get_document("doc-1") is None


def test_ingest_rejects_unsupported_type(chunk_store, ingestion_factory):
    embedder = StubEmbeddingService()
    pipeline = ingestion_factory(chunk_store, embedding_service=embedder)

    with pytest.raises(UnsupportedType, match="image/png"):
        pipeline.ingest(_document("binary", media_type="image/png"))

    assert embedder.calls == []


def test_unsupported_type_checked_before_content(chunk_store, ingestion_factory):
    pipeline = ingestion_factory(chunk_store)

    with pytest.raises(UnsupportedType):
        pipeline.ingest(_document("", media_type="application/zip"))


def test_failure_stops_at_first_error_and_cleans_up(chunk_store, ingestion_factory):
    embedder = StubEmbeddingService(fail_on_call=3, error=RateLimited("slow down"))
    pipeline = ingestion_factory(
        chunk_store, embedding_service=embedder, chunk_size=10
    )

    with pytest.raises(RateLimited):
        pipeline.ingest(_document("x" * 50))

    assert len(embedder.calls) == 3
    assert chunk_store.count_chunks("doc-1") == 0
    assert chunk_store.query_similar(basis_vector(0), OWNER, 0.0, 5) == []


def test_failure_without_cleanup_keeps_prefix(chunk_store, ingestion_factory):
    embedder = StubEmbeddingService(
        fail_on_call=3, error=ProviderUnavailable("provider down")
    )
    pipeline = ingestion_factory(
        chunk_store,
        embedding_service=embedder,
        chunk_size=10,
        cleanup_on_failure=False,
    )

    with pytest.raises(ProviderUnavailable):
        pipeline.ingest(_document("x" * 50))

    assert [chunk.index for chunk in chunk_store.get_chunks("doc-1")] == [0, 1]


def test_storage_failure_propagates(temp_sqlite_store, ingestion_factory):
    class BrokenStore(type(temp_sqlite_store)):
        def put(self, chunk):
            raise StorageFailure("disk full")

    store = BrokenStore(temp_sqlite_store.db_path)
    pipeline = ingestion_factory(store)

    with pytest.raises(StorageFailure, match="disk full"):
        pipeline.ingest(_document("Some text."))


def test_concurrent_embedding_preserves_order(chunk_store, ingestion_factory):
    class SlowFirstEmbedder(MockEmbeddingService):
        def __init__(self):
            super().__init__(dimension=8)
            self.release = threading.Event()

        def embed(self, text):
            if text.startswith("a"):
                self.release.wait(timeout=2)
            else:
                self.release.set()
            return super().embed(text)

    content = "a" * 10 + "b" * 10 + "c" * 10 + "d" * 10
    pipeline = ingestion_factory(
        chunk_store,
        embedding_service=SlowFirstEmbedder(),
        chunk_size=10,
        max_workers=4,
    )

    result = pipeline.ingest(_document(content))

    assert result.chunks_processed == 4
    chunks = chunk_store.get_chunks("doc-1")
    assert [chunk.text[0] for chunk in chunks] == ["a", "b", "c", "d"]
    stored_ids = [chunk.id for chunk in chunks]
    assert stored_ids == sorted(stored_ids)


def test_concurrent_failure_is_reported(chunk_store, ingestion_factory):
    class FailingOnC(MockEmbeddingService):
        def embed(self, text):
            if text.startswith("c"):
                raise RateLimited("slow down")
            return super().embed(text)

    embedder = FailingOnC(dimension=8)
    pipeline = ingestion_factory(
        chunk_store, embedding_service=embedder, chunk_size=10, max_workers=3
    )

    with pytest.raises(RateLimited):
        pipeline.ingest(_document("a" * 10 + "b" * 10 + "c" * 10 + "d" * 10))

    assert chunk_store.count_chunks("doc-1") == 0


def test_worker_count_floor(chunk_store, ingestion_factory):
    assert ingestion_factory(chunk_store, max_workers=0).max_workers == 1


# Query


def test_build_context_joins_with_blank_line(chunk_store, stored_chunk_factory):
    first = stored_chunk_factory(chunk_store, "doc-1", 0, basis_vector(0), text="One.")
    second = stored_chunk_factory(chunk_store, "doc-1", 1, basis_vector(0), text="Two.")
    passages = chunk_store.query_similar(basis_vector(0), OWNER, 0.7, 5)

    assert [p.chunk.id for p in passages] == [first.id, second.id]
    assert build_context(passages) == "One.\n\nTwo."


def test_answer_uses_retrieved_context(
    chunk_store, stored_chunk_factory, query_factory
):
    stored_chunk_factory(
        chunk_store, "doc-1", 0, vector_with_similarity(0.9), text="Paris is big."
    )
    stored_chunk_factory(
        chunk_store, "doc-1", 1, vector_with_similarity(0.8), text="It has a tower."
    )
    stored_chunk_factory(chunk_store, "doc-1", 2, basis_vector(1), text="Unrelated.")
    synthesizer = EchoSynthesizer()
    pipeline = query_factory(chunk_store, synthesizer=synthesizer)

    answer = pipeline.answer("Tell me about Paris", OWNER)

    assert answer.state is QueryState.ANSWERED
    assert [p.text for p in answer.passages] == ["Paris is big.", "It has a tower."]
    assert [p.similarity for p in answer.passages] == pytest.approx(
        [0.9, 0.8], abs=1e-5
    )
    assert synthesizer.calls == [
        (
            SYSTEM_INSTRUCTION,
            "Paris is big.\n\nIt has a tower.",
            "Tell me about Paris",
        )
    ]
    assert answer.text == "Answer from context: Paris is big.\n\nIt has a tower."


def test_no_evidence_skips_synthesis(chunk_store, stored_chunk_factory, query_factory):
    stored_chunk_factory(chunk_store, "doc-1", 0, basis_vector(1))
    synthesizer = EchoSynthesizer()
    pipeline = query_factory(chunk_store, synthesizer=synthesizer)

    answer = pipeline.answer("Anything?", OWNER)

    assert answer.state is QueryState.NO_EVIDENCE
    assert answer.text == NO_EVIDENCE_ANSWER
    assert answer.passages == []
    assert synthesizer.calls == []


def test_answer_only_sees_owner_documents(
    chunk_store, stored_chunk_factory, query_factory
):
    stored_chunk_factory(
        chunk_store, "theirs", 0, basis_vector(0), text="secret", owner=OTHER_OWNER
    )
    pipeline = query_factory(chunk_store)

    answer = pipeline.answer("What is the secret?", OWNER)

    assert answer.state is QueryState.NO_EVIDENCE


@pytest.mark.parametrize("question", ["", "   "])
def test_empty_question_rejected_before_embedding(chunk_store, query_factory, question):
    embedder = StubEmbeddingService()
    pipeline = query_factory(chunk_store, embedding_service=embedder)

    with pytest.raises(InvalidInput, match="must not be empty"):
        pipeline.answer(question, OWNER)

    assert embedder.calls == []


def test_question_text_not_logged_at_info(
    chunk_store, stored_chunk_factory, query_factory, caplog
):
    stored_chunk_factory(chunk_store, "doc-1", 0, basis_vector(0))
    question = "What is my private medical history?"

    with caplog.at_level(logging.DEBUG, logger="docrag.pipeline"):
        answer = query_factory(chunk_store).answer(question, OWNER)

    info_messages = [
        record.getMessage()
        for record in caplog.records
        if record.levelno >= logging.INFO
    ]
    debug_messages = [
        record.getMessage()
        for record in caplog.records
        if record.levelno == logging.DEBUG
    ]
    assert any(answer.query_id in message for message in info_messages)
    assert not any(question in message for message in info_messages)
    assert any(question in message for message in debug_messages)


def test_embedding_failure_propagates(chunk_store, query_factory):
    embedder = StubEmbeddingService(fail_on_call=1, error=RateLimited("slow down"))
    synthesizer = EchoSynthesizer()
    pipeline = query_factory(
        chunk_store, embedding_service=embedder, synthesizer=synthesizer
    )

    with pytest.raises(RateLimited):
        pipeline.answer("Question?", OWNER)

    assert synthesizer.calls == []


def test_top_k_and_threshold_passed_to_store(
    chunk_store, stored_chunk_factory, query_factory
):
    for index in range(4):
        stored_chunk_factory(chunk_store, "doc-1", index, vector_with_similarity(0.6))
    stored_chunk_factory(chunk_store, "doc-2", 0, basis_vector(0))

    loose = query_factory(chunk_store, top_k=3, threshold=0.5).answer("q", OWNER)
    strict = query_factory(chunk_store, top_k=3, threshold=0.7).answer("q", OWNER)

    assert len(loose.passages) == 3
    assert [p.document_id for p in strict.passages] == ["doc-2"]


# End to end


def test_ingest_then_query_round_trip(chunk_store, ingestion_factory, query_factory):
    text = "Photosynthesis converts light into chemical energy."
    embedder = StubEmbeddingService(
        vectors={
            text: basis_vector(0),
            "How do plants get energy?": vector_with_similarity(0.9),
        }
    )
    ingestion_factory(chunk_store, embedding_service=embedder).ingest_text(
        "doc-bio", text, "Biology", OWNER
    )

    answer = query_factory(chunk_store, embedding_service=embedder).answer(
        "How do plants get energy?", OWNER
    )

    assert answer.state is QueryState.ANSWERED
    assert len(answer.passages) == 1
    assert answer.passages[0].document_id == "doc-bio"
    assert answer.passages[0].text == text
    assert answer.passages[0].similarity == pytest.approx(0.9, abs=1e-5)
