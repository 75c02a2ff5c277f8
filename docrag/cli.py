"""Command-line entry point for serving, ingesting and querying DocRAG."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING

import uvicorn
from pypdf.errors import PyPdfError

from .chunk_store import get_chunk_store
from .config import config
from .document_processing import DocumentLoader
from .embeddings import EmbeddingService
from .errors import DocRAGError
from .models import Document
from .pipeline import IngestionPipeline, QueryPipeline
from .synthesis import AnswerSynthesizer

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

DEFAULT_OWNER = "local"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Ask questions answered from your own documents.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument(
        "--host",
        default=config.API_HOST,
        help=f"Bind address for the API server (default: {config.API_HOST}).",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=config.API_PORT,
        help=f"Port for the API server (default: {config.API_PORT}).",
    )

    ingest = subparsers.add_parser("ingest", help="Chunk, embed and store a file.")
    ingest.add_argument(
        "path", type=Path, help="Path to a .txt, .md, .csv or .pdf file."
    )
    ingest.add_argument("--title", help="Document title (default: file name).")
    ingest.add_argument(
        "--owner",
        default=DEFAULT_OWNER,
        help=f"Owner the document is stored under (default: {DEFAULT_OWNER}).",
    )

    ask = subparsers.add_parser("ask", help="Answer a question from stored documents.")
    ask.add_argument("question", help="The question to answer.")
    ask.add_argument(
        "--owner",
        default=DEFAULT_OWNER,
        help=f"Owner whose documents are searched (default: {DEFAULT_OWNER}).",
    )

    return parser.parse_args(argv)


def run_ingest(args: argparse.Namespace, logger: Logger) -> int:
    """Ingest one file into the configured chunk store."""  # noqa: DOC201
    path: Path = args.path
    if not path.exists():
        logger.error("File not found: %s", path)
        return 1

    content, media_type = DocumentLoader.load_document(path)
    document = Document.create(
        owner=args.owner,
        title=args.title or path.name,
        content=content,
        media_type=media_type,
    )

    store = get_chunk_store(config.VECTOR_BACKEND)
    store.load()
    pipeline = IngestionPipeline(EmbeddingService(), store)
    result = pipeline.ingest(document)
    print(f"Stored {result.chunks_processed} chunks for document {result.document_id}")
    return 0


def run_ask(args: argparse.Namespace) -> int:
    """Answer one question and print it with its sources."""  # noqa: DOC201
    store = get_chunk_store(config.VECTOR_BACKEND)
    store.load()
    embedding_service = EmbeddingService()
    pipeline = QueryPipeline(embedding_service, store, AnswerSynthesizer())

    answer = pipeline.answer(args.question, args.owner)
    print(answer.text)
    for rank, passage in enumerate(answer.passages, start=1):
        preview = passage.text[:80].replace("\n", " ")
        print(f"  [{rank}] {passage.document_id} ({passage.similarity:.3f}) {preview}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    if args.command == "serve":
        logger.info("Starting DocRAG API at http://%s:%s", args.host, args.port)
        uvicorn.run(
            "docrag.api:create_app",
            factory=True,
            host=args.host,
            port=args.port,
        )
        return 0

    try:
        if args.command == "ingest":
            return run_ingest(args, logger)
        return run_ask(args)
    except (DocRAGError, OSError, UnicodeDecodeError, PyPdfError) as exc:
        logger.error("%s failed: %s", args.command, exc)  # noqa: TRY400
        return 1
