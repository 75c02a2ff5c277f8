"""OpenAI-compatible embeddings service."""

import httpx
import numpy as np

from .config import ProviderSettings, config
from .errors import InvalidInput, ProviderUnavailable
from .providers import build_openai_client, provider_errors

logger = config.get_logger(__name__)


class EmbeddingService:
    """Turns text into fixed-length vectors via the hosted embedding model."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        http_client: httpx.Client | None = None,
        expected_dimension: int | None = None,
    ) -> None:
        """Initialize the EmbeddingService.

        Args:
            settings: Provider settings. If None, uses config.embedding_provider().
            http_client: Optional transport for the SDK client.
            expected_dimension: If set, every returned vector must have this
                length. If None, uses config.EMBEDDING_DIMENSION.
        """
        self.settings = settings or config.embedding_provider()
        self.client = build_openai_client(self.settings, http_client=http_client)
        self.model = self.settings.model
        self.expected_dimension = (
            expected_dimension
            if expected_dimension is not None
            else config.EMBEDDING_DIMENSION
        )

    def embed(self, text: str) -> np.ndarray:
        """Get the embedding for a single text.

        Args:
            text: The input text to generate an embedding for.

        Raises:
            InvalidInput: If text is empty.
            ProviderUnavailable: If the response carries no usable vector.

        Returns:
            np.ndarray: The embedding vector for the input text.
        """
        if not text:
            msg = "Cannot embed empty text"
            raise InvalidInput(msg)

        with provider_errors("generate embedding"):
            response = self.client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float",
            )

        try:
            embedding = np.asarray(response.data[0].embedding, dtype=np.float64)
        except (AttributeError, IndexError, TypeError, ValueError) as exc:
            logger.exception("Malformed embedding response from %s", self.model)
            msg = "Failed to generate embedding: malformed provider response"
            raise ProviderUnavailable(msg, {"model": self.model}) from exc

        if embedding.ndim != 1 or embedding.size == 0:
            msg = "Failed to generate embedding: provider returned an empty vector"
            raise ProviderUnavailable(msg, {"model": self.model})
        if self.expected_dimension and embedding.shape[0] != self.expected_dimension:
            msg = (
                f"Embedding dimension {embedding.shape[0]} does not match "
                f"expected dimension {self.expected_dimension}"
            )
            raise ProviderUnavailable(msg, {"model": self.model})

        return embedding
