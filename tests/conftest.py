"""Test configuration and fixtures for DocRAG tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Stub embedding services and synthesizers
- Mock OpenAI API responses (SDK-level and HTTP-level)
- Chunk store fixtures for both backends
- Sample data factories
"""

import hashlib
import math
from collections.abc import Callable
from unittest.mock import Mock, patch

import httpx
import numpy as np
import pytest

from docrag import (
    AnswerSynthesizer,
    Chunk,
    Document,
    EmbeddingService,
    FaissChunkStore,
    IngestionPipeline,
    QueryPipeline,
    SQLiteChunkStore,
)
from docrag.config import ProviderSettings


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # Provider Configuration
    TEST_API_KEY = "test-key"
    TEST_BASE_URL = "http://provider.test/v1"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    TEST_CHAT_MODEL = "test-chat-model"
    DEFAULT_EMBEDDING_DIMENSION = 384
    SMALL_DIMENSION = 4

    # Ownership
    OWNER = "owner-a"
    OTHER_OWNER = "owner-b"

    # Retrieval
    DEFAULT_CHUNK_SIZE = 500
    DEFAULT_THRESHOLD = 0.7
    DEFAULT_TOP_K = 5


def vector_with_similarity(
    similarity: float, dimension: int = TestConstants.SMALL_DIMENSION
) -> np.ndarray:
    """Build a unit vector whose cosine similarity to e1 is ``similarity``."""
    vector = np.zeros(dimension)
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity**2))
    return vector


def basis_vector(
    axis: int, dimension: int = TestConstants.SMALL_DIMENSION
) -> np.ndarray:
    vector = np.zeros(dimension)
    vector[axis] = 1.0
    return vector


class MockEmbeddingService:
    """Mock embedding service for testing without API calls.

    Generates deterministic embeddings based on text content hash,
    ensuring consistent test results across runs.
    """

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension
        self.calls: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        """Generate deterministic mock embedding based on text hash."""
        self.calls.append(text)
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return embedding / np.linalg.norm(embedding)


class StubEmbeddingService:
    """Embedding stub returning fixed vectors per text, with optional failures."""

    def __init__(
        self,
        vectors: dict[str, np.ndarray] | None = None,
        default: np.ndarray | None = None,
        fail_on_call: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.vectors = vectors or {}
        self.default = default if default is not None else basis_vector(0)
        self.fail_on_call = fail_on_call
        self.error = error
        self.calls: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.error
        return self.vectors.get(text, self.default)


class EchoSynthesizer:
    """Synthesizer stub that records its inputs and echoes the context."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    def synthesize(self, system_instruction: str, context: str, question: str) -> str:
        self.calls.append((system_instruction, context, question))
        return f"Answer from context: {context}"


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response."""
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def embedding_payload(vector: list[float]) -> dict:
    """JSON body of a successful embeddings response."""
    return {
        "object": "list",
        "data": [{"object": "embedding", "index": 0, "embedding": vector}],
        "model": TestConstants.TEST_EMBEDDING_MODEL,
        "usage": {"prompt_tokens": 1, "total_tokens": 1},
    }


def chat_payload(content: str | None) -> dict:
    """JSON body of a successful chat completion response."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": TestConstants.TEST_CHAT_MODEL,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def error_payload(message: str, code: str | None = None) -> dict:
    return {"error": {"message": message, "type": "error", "code": code}}


@pytest.fixture
def embedding_settings() -> ProviderSettings:
    return ProviderSettings(
        api_key=TestConstants.TEST_API_KEY,
        model=TestConstants.TEST_EMBEDDING_MODEL,
        base_url=TestConstants.TEST_BASE_URL,
        timeout=5.0,
    )


@pytest.fixture
def chat_settings() -> ProviderSettings:
    return ProviderSettings(
        api_key=TestConstants.TEST_API_KEY,
        model=TestConstants.TEST_CHAT_MODEL,
        base_url=TestConstants.TEST_BASE_URL,
        timeout=5.0,
    )


@pytest.fixture
def provider_transport():
    """Factory for HTTP clients whose requests are answered by ``handler``.

    Every request seen by the transport is appended to the returned list.
    """
    clients: list[httpx.Client] = []

    def _create_client(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> tuple[httpx.Client, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(_record))
        clients.append(client)
        return client, requests

    yield _create_client

    for client in clients:
        client.close()


@pytest.fixture
def http_embedding_service(embedding_settings, provider_transport):
    """Factory for an EmbeddingService talking to a stubbed HTTP provider."""

    def _create_service(
        handler: Callable[[httpx.Request], httpx.Response],
        expected_dimension: int | None = None,
    ) -> tuple[EmbeddingService, list[httpx.Request]]:
        client, requests = provider_transport(handler)
        service = EmbeddingService(
            embedding_settings,
            http_client=client,
            expected_dimension=expected_dimension,
        )
        return service, requests

    return _create_service


@pytest.fixture
def http_synthesizer(chat_settings, provider_transport):
    """Factory for an AnswerSynthesizer talking to a stubbed HTTP provider."""

    def _create_synthesizer(
        handler: Callable[[httpx.Request], httpx.Response],
        temperature: float | None = None,
    ) -> tuple[AnswerSynthesizer, list[httpx.Request]]:
        client, requests = provider_transport(handler)
        synthesizer = AnswerSynthesizer(
            chat_settings, http_client=client, temperature=temperature
        )
        return synthesizer, requests

    return _create_synthesizer


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the SDK's embeddings.create method."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def embedding_service(embedding_settings) -> EmbeddingService:
    return EmbeddingService(embedding_settings)


@pytest.fixture
def synthesizer(chat_settings) -> AnswerSynthesizer:
    return AnswerSynthesizer(chat_settings)


@pytest.fixture
def temp_sqlite_store(tmp_path) -> SQLiteChunkStore:
    """Create temporary SQLite chunk store for testing."""
    return SQLiteChunkStore(tmp_path / "test_store.db")


@pytest.fixture
def temp_faiss_store(tmp_path) -> FaissChunkStore:
    """Create temporary FAISS chunk store for testing."""
    return FaissChunkStore(
        db_path=tmp_path / "faiss_store.db",
        index_path=tmp_path / "faiss" / "index.faiss",
    )


@pytest.fixture(params=["sqlite", "faiss"])
def chunk_store(request, tmp_path):
    """Each test using this fixture runs against both backends."""
    if request.param == "sqlite":
        return SQLiteChunkStore(tmp_path / "store.db")
    return FaissChunkStore(
        db_path=tmp_path / "store.db",
        index_path=tmp_path / "faiss" / "index.faiss",
    )


@pytest.fixture
def document_factory():
    """Factory registering documents in a store."""

    def _create_document(
        store,
        document_id: str,
        owner: str = TestConstants.OWNER,
        content: str = "placeholder content",
        title: str = "Test document",
    ) -> Document:
        document = Document.create(
            owner=owner,
            title=title,
            content=content,
            document_id=document_id,
        )
        store.add_document(document)
        return document

    return _create_document


@pytest.fixture
def stored_chunk_factory(document_factory):
    """Factory storing one embedded chunk, registering its document on demand."""

    def _put_chunk(
        store,
        document_id: str,
        index: int,
        embedding: np.ndarray,
        text: str | None = None,
        owner: str = TestConstants.OWNER,
    ) -> Chunk:
        if store.get_document(document_id) is None:
            document_factory(store, document_id, owner=owner)
        chunk = Chunk(
            document_id=document_id,
            index=index,
            text=text or f"{document_id} chunk {index}",
            embedding=embedding,
        )
        return store.put(chunk)

    return _put_chunk


@pytest.fixture
def ingestion_factory():
    """Factory for IngestionPipeline instances wired to test doubles."""

    def _create_pipeline(
        store,
        embedding_service=None,
        chunk_size: int = TestConstants.DEFAULT_CHUNK_SIZE,
        max_workers: int = 1,
        cleanup_on_failure: bool = True,
    ) -> IngestionPipeline:
        return IngestionPipeline(
            embedding_service or StubEmbeddingService(),
            store,
            chunk_size=chunk_size,
            max_workers=max_workers,
            cleanup_on_failure=cleanup_on_failure,
        )

    return _create_pipeline


@pytest.fixture
def query_factory():
    """Factory for QueryPipeline instances wired to test doubles."""

    def _create_pipeline(
        store,
        embedding_service=None,
        synthesizer=None,
        top_k: int = TestConstants.DEFAULT_TOP_K,
        threshold: float = TestConstants.DEFAULT_THRESHOLD,
    ) -> QueryPipeline:
        return QueryPipeline(
            embedding_service or StubEmbeddingService(),
            store,
            synthesizer or EchoSynthesizer(),
            top_k=top_k,
            threshold=threshold,
        )

    return _create_pipeline
