"""Exception hierarchy for DocRAG.

Every error carries a human-readable message, optional context details and the
HTTP status the entry points report for it.
"""

from typing import Any, ClassVar


class DocRAGError(Exception):
    """Base exception for all DocRAG errors."""

    status_code: ClassVar[int] = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize base exception with message and optional context.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional context for debugging
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation including details."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidInput(DocRAGError, ValueError):
    """Raised when a question or document is rejected before any provider call."""

    status_code: ClassVar[int] = 400


class UnsupportedType(InvalidInput):
    """Raised when a document's media type cannot be ingested."""

    def __init__(
        self,
        media_type: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize unsupported type error.

        Args:
            media_type: The rejected media type or file suffix
            details: Additional context
        """
        details = details or {}
        details["media_type"] = media_type
        super().__init__(f"Unsupported file type: {media_type}", details)


class RateLimited(DocRAGError):
    """Raised when the AI provider signals throttling."""

    status_code: ClassVar[int] = 429


class QuotaExhausted(DocRAGError):
    """Raised when the AI provider signals billing or credit exhaustion."""

    status_code: ClassVar[int] = 402


class ProviderUnavailable(DocRAGError):
    """Raised for any other provider failure: non-2xx, transport error, timeout."""


class StorageFailure(DocRAGError):
    """Raised when the chunk store cannot read or write."""
