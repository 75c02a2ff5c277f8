"""HTTP entry points for document ingestion and question answering.

Routes:
- POST /process-document - chunk, embed and store a document's content
- POST /rag-query - answer a question from the caller's documents
- GET /documents - list the caller's documents
- POST /documents - register and ingest a new document
- DELETE /documents/{document_id} - delete a document and its chunks

The caller is identified by the ``X-User-Id`` header, set by the upstream
authentication layer.
"""

import datetime
import threading
from typing import ClassVar

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .chunk_store import ChunkStore, get_chunk_store
from .config import config
from .embeddings import EmbeddingService
from .errors import DocRAGError
from .models import Document
from .pipeline import IngestionPipeline, QueryPipeline
from .synthesis import AnswerSynthesizer

logger = config.get_logger(__name__)

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-user-id",
]


class Unauthorized(DocRAGError):
    """Raised when a request carries no caller identity."""

    status_code: ClassVar[int] = 401


class NotFound(DocRAGError):
    """Raised when a document does not exist for the caller."""

    status_code: ClassVar[int] = 404


class InternalError(DocRAGError):
    """Wraps unexpected failures so they are reported as ``{error}`` bodies."""


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessDocumentRequest(CamelModel):
    document_id: str = Field(min_length=1)
    content: str
    title: str = ""
    media_type: str = "text/plain"


class ProcessDocumentResponse(CamelModel):
    success: bool = True
    chunks_processed: int


class RagQueryRequest(CamelModel):
    query: str


class SourceResponse(CamelModel):
    document_id: str
    text: str
    similarity: float


class RagQueryResponse(CamelModel):
    answer: str
    sources: list[SourceResponse]


class CreateDocumentRequest(CamelModel):
    title: str = Field(min_length=1)
    content: str
    media_type: str = "text/plain"


class CreateDocumentResponse(CamelModel):
    id: str
    chunks_processed: int


class DocumentSummary(CamelModel):
    id: str
    title: str
    media_type: str
    byte_size: int
    created_at: datetime.datetime

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.title,
            media_type=document.media_type,
            byte_size=document.byte_size,
            created_at=document.created_at,
        )


class Services:
    """Lazily built, shared pipeline instances for the application."""

    def __init__(
        self,
        ingestion_pipeline: IngestionPipeline | None = None,
        query_pipeline: QueryPipeline | None = None,
        chunk_store: ChunkStore | None = None,
    ) -> None:
        self._ingestion_pipeline = ingestion_pipeline
        self._query_pipeline = query_pipeline
        self._chunk_store = chunk_store
        self._embedding_service: EmbeddingService | None = None
        self._lock = threading.Lock()

    @property
    def chunk_store(self) -> ChunkStore:
        with self._lock:
            if self._chunk_store is None:
                store = get_chunk_store(config.VECTOR_BACKEND)
                store.load()
                logger.info("Using %s chunk store", store.backend)
                self._chunk_store = store
            return self._chunk_store

    def _embedding(self) -> EmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = EmbeddingService()
        return self._embedding_service

    @property
    def ingestion_pipeline(self) -> IngestionPipeline:
        store = self.chunk_store
        with self._lock:
            if self._ingestion_pipeline is None:
                self._ingestion_pipeline = IngestionPipeline(self._embedding(), store)
            return self._ingestion_pipeline

    @property
    def query_pipeline(self) -> QueryPipeline:
        store = self.chunk_store
        with self._lock:
            if self._query_pipeline is None:
                self._query_pipeline = QueryPipeline(
                    self._embedding(), store, AnswerSynthesizer()
                )
            return self._query_pipeline


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_owner(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the caller identity supplied by the authentication layer.

    Raises:
        Unauthorized: If the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        msg = "Missing X-User-Id header"
        raise Unauthorized(msg)
    return x_user_id.strip()


def _unexpected(operation: str, exc: Exception) -> InternalError:
    logger.exception("Error in %s", operation)
    return InternalError(str(exc) or "Unknown error occurred")


def create_app(
    ingestion_pipeline: IngestionPipeline | None = None,
    query_pipeline: QueryPipeline | None = None,
    chunk_store: ChunkStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators that are not supplied are built from configuration on first use.

    Returns:
        FastAPI: Configured application instance.
    """
    app = FastAPI(
        title="DocRAG API",
        description="Question answering grounded in your uploaded documents",
        version="0.1.0",
    )
    app.state.services = Services(ingestion_pipeline, query_pipeline, chunk_store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_ALLOW_HEADERS,
    )

    @app.exception_handler(DocRAGError)
    async def handle_docrag_error(_request: Request, exc: DocRAGError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) for error in exc.errors()
        )
        return JSONResponse(
            {"error": f"Invalid request body: {fields}"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.post("/process-document", response_model=ProcessDocumentResponse)
    def process_document(
        body: ProcessDocumentRequest,
        owner: str = Depends(get_owner),
        services: Services = Depends(get_services),
    ) -> ProcessDocumentResponse:
        logger.info("Processing document: %s, title: %s", body.document_id, body.title)
        try:
            result = services.ingestion_pipeline.ingest_text(
                document_id=body.document_id,
                content=body.content,
                title=body.title,
                owner=owner,
                media_type=body.media_type,
            )
        except DocRAGError:
            raise
        except Exception as exc:
            raise _unexpected("process-document", exc) from exc
        return ProcessDocumentResponse(chunks_processed=result.chunks_processed)

    @app.post("/rag-query", response_model=RagQueryResponse)
    def rag_query(
        body: RagQueryRequest,
        owner: str = Depends(get_owner),
        services: Services = Depends(get_services),
    ) -> RagQueryResponse:
        try:
            answer = services.query_pipeline.answer(body.query, owner)
        except DocRAGError:
            raise
        except Exception as exc:
            raise _unexpected("rag-query", exc) from exc
        return RagQueryResponse(
            answer=answer.text,
            sources=[
                SourceResponse(
                    document_id=passage.document_id,
                    text=passage.text,
                    similarity=passage.similarity,
                )
                for passage in answer.passages
            ],
        )

    @app.get("/documents", response_model=list[DocumentSummary])
    def list_documents(
        owner: str = Depends(get_owner),
        services: Services = Depends(get_services),
    ) -> list[DocumentSummary]:
        documents = services.chunk_store.list_documents(owner)
        return [DocumentSummary.from_document(document) for document in documents]

    @app.post(
        "/documents",
        response_model=CreateDocumentResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_document(
        body: CreateDocumentRequest,
        owner: str = Depends(get_owner),
        services: Services = Depends(get_services),
    ) -> CreateDocumentResponse:
        document = Document.create(
            owner=owner,
            title=body.title,
            content=body.content,
            media_type=body.media_type,
        )
        try:
            result = services.ingestion_pipeline.ingest(document)
        except DocRAGError:
            raise
        except Exception as exc:
            raise _unexpected("create-document", exc) from exc
        return CreateDocumentResponse(
            id=document.id, chunks_processed=result.chunks_processed
        )

    @app.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_document(
        document_id: str,
        owner: str = Depends(get_owner),
        services: Services = Depends(get_services),
    ) -> Response:
        store = services.chunk_store
        if not store.delete_document(document_id, owner):
            msg = f"Document {document_id} not found"
            raise NotFound(msg)
        store.save()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app
