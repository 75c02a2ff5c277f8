"""Configuration management for DocRAG."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name)
    return int(value) if value else None


@dataclass(frozen=True)
class ProviderSettings:
    """Connection settings for one hosted AI provider endpoint."""

    api_key: str
    model: str
    base_url: str | None = None
    timeout: float = 30.0


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI-compatible provider
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get the provider API key from environment variables.

        Returns:
            API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")
    PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "30.0"))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Ingestion Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "500"))
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSION: int | None = _env_optional_int("EMBEDDING_DIMENSION")
    EMBEDDING_WORKERS: int = int(os.getenv("EMBEDDING_WORKERS", "1"))
    CLEANUP_PARTIAL_INGESTION: bool = _env_bool("CLEANUP_PARTIAL_INGESTION", "true")

    # Retrieval Configuration
    MATCH_THRESHOLD: float = float(os.getenv("MATCH_THRESHOLD", "0.7"))
    MATCH_COUNT: int = int(os.getenv("MATCH_COUNT", "5"))

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4.1-nano-2025-04-14")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Chunk Store Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "faiss").lower()
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/chunk_store.db")
    )
    FAISS_INDEX_PATH: Path = Path(
        os.getenv("FAISS_INDEX_PATH", "data/faiss/index.faiss")
    )
    VECTOR_RAW_TOP_K_MULTIPLIER: int = int(
        os.getenv("VECTOR_RAW_TOP_K_MULTIPLIER", "2")
    )

    # HTTP Server Configuration
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "DocRAG/0.1")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If OPENAI_API_KEY is not set or a numeric setting is
                out of range.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)
        if cls.CHUNK_SIZE <= 0:
            msg = f"CHUNK_SIZE must be positive, got {cls.CHUNK_SIZE}"
            raise ValueError(msg)
        if cls.MATCH_COUNT <= 0:
            msg = f"MATCH_COUNT must be positive, got {cls.MATCH_COUNT}"
            raise ValueError(msg)

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment.

        Returns:
            True if environment is development.
        """
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def embedding_provider(cls) -> ProviderSettings:
        """Build provider settings for the embedding endpoint.

        Returns:
            ProviderSettings pointing at the configured embedding model.
        """
        return ProviderSettings(
            api_key=cls.get_openai_api_key(),
            model=cls.EMBEDDING_MODEL,
            base_url=cls.OPENAI_BASE_URL,
            timeout=cls.PROVIDER_TIMEOUT,
        )

    @classmethod
    def chat_provider(cls) -> ProviderSettings:
        """Build provider settings for the chat completion endpoint.

        Returns:
            ProviderSettings pointing at the configured chat model.
        """
        return ProviderSettings(
            api_key=cls.get_openai_api_key(),
            model=cls.CHAT_MODEL,
            base_url=cls.OPENAI_BASE_URL,
            timeout=cls.PROVIDER_TIMEOUT,
        )

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Provider SDK and its transport are noisy at INFO
        provider_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        logging.getLogger("openai").setLevel(provider_level)
        logging.getLogger("httpx").setLevel(provider_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
