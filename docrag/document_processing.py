"""Document loading and text chunking functionality."""

from pathlib import Path

import pypdf

from .config import config
from .errors import UnsupportedType
from .models import Chunk

logger = config.get_logger(__name__)

SUFFIX_MEDIA_TYPES = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".pdf": "application/pdf",
}
# PDFs are accepted because they are reduced to plain text before ingestion.
SUPPORTED_APPLICATION_TYPES = {"application/pdf", "application/json", "application/xml"}


def is_supported_media_type(media_type: str | None) -> bool:
    """Check whether a declared media type can be ingested as plain text.

    Returns:
        True for any ``text/*`` type and the supported application types.
    """
    if not media_type:
        return False
    essence = media_type.split(";", 1)[0].strip().lower()
    return essence.startswith("text/") or essence in SUPPORTED_APPLICATION_TYPES


class DocumentLoader:
    """Handles loading of PDF and plain-text documents."""

    @staticmethod
    def media_type_for(file_path: Path) -> str:
        """Map a file suffix to the media type it is ingested as.

        Raises:
            UnsupportedType: If the suffix is not a supported document format.

        Returns:
            The media type string for the file.
        """
        file_ext = file_path.suffix.lower()
        try:
            return SUFFIX_MEDIA_TYPES[file_ext]
        except KeyError:
            raise UnsupportedType(file_ext or "<none>") from None

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file.

        Returns:
            The extracted text content from the PDF as a string.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                text = ""
                for page_num, page in enumerate(pdf_reader.pages):
                    page_text = page.extract_text()
                    text += f"\n--- Page {page_num + 1} ---\n{page_text}\n"
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            return text

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a text file.

        Returns:
            The file content as a string.
        """
        try:
            with file_path.open(encoding="utf-8") as file:
                text = file.read()
            logger.info("Successfully loaded text file %s", file_path.name)
        except Exception:
            logger.exception("Error loading text file %s", file_path)
            raise
        else:
            return text

    @classmethod
    def load_document(cls, file_path: Path) -> tuple[str, str]:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            Tuple of the document's text content and its media type.
        """
        media_type = cls.media_type_for(file_path)
        if media_type == "application/pdf":
            return cls.load_pdf(file_path), media_type
        return cls.load_txt(file_path), media_type


class TextChunker:
    """Splits text into fixed-size, contiguous, non-overlapping chunks."""

    def __init__(self, chunk_size: int = 500) -> None:
        """Initialize the TextChunker with the maximum chunk length.

        Args:
            chunk_size: Maximum number of characters in each chunk.

        Raises:
            ValueError: If chunk_size is not positive.
        """
        if chunk_size <= 0:
            msg = f"chunk_size must be positive, got {chunk_size}"
            raise ValueError(msg)
        self.chunk_size = chunk_size

    def split(self, text: str) -> list[str]:
        """Split text positionally; joining the pieces gives back ``text``.

        Returns:
            The ordered list of text pieces, empty for empty text.
        """
        size = self.chunk_size
        return [text[start : start + size] for start in range(0, len(text), size)]

    def chunk_text(self, text: str, document_id: str) -> list[Chunk]:
        """Split text into ordinal chunks belonging to ``document_id``.

        Returns:
            A list of Chunk objects without embeddings, in document order.
        """
        chunks = [
            Chunk(document_id=document_id, index=index, text=piece)
            for index, piece in enumerate(self.split(text))
        ]
        logger.info("Text split into %d chunks", len(chunks))
        return chunks
