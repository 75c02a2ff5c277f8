"""OpenAI-compatible client construction and provider error translation."""

from collections.abc import Iterator
from contextlib import contextmanager

import httpx
import openai
from openai import OpenAI

from .config import ProviderSettings, config
from .errors import DocRAGError, ProviderUnavailable, QuotaExhausted, RateLimited

logger = config.get_logger(__name__)

HTTP_PAYMENT_REQUIRED = 402
HTTP_TOO_MANY_REQUESTS = 429
QUOTA_ERROR_CODES = {"insufficient_quota", "billing_hard_limit_reached"}


def build_openai_client(
    settings: ProviderSettings,
    http_client: httpx.Client | None = None,
) -> OpenAI:
    """Create an SDK client that never retries and enforces the call deadline.

    Returns:
        Configured OpenAI client.
    """
    default_headers = config.get_api_headers()
    return OpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout,
        max_retries=0,
        default_headers=default_headers or None,
        http_client=http_client,
    )


def translate_status_error(exc: openai.APIStatusError, operation: str) -> DocRAGError:
    """Map a non-2xx provider response onto the DocRAG error taxonomy.

    Returns:
        The typed error to raise in place of ``exc``.
    """
    details = {"operation": operation, "status": exc.status_code}
    if exc.status_code == HTTP_PAYMENT_REQUIRED or exc.code in QUOTA_ERROR_CODES:
        return QuotaExhausted(
            "AI credits exhausted. Please add credits to your workspace.", details
        )
    if exc.status_code == HTTP_TOO_MANY_REQUESTS:
        return RateLimited("Rate limit exceeded. Please try again later.", details)
    return ProviderUnavailable(
        f"Failed to {operation}: provider returned {exc.status_code}", details
    )


@contextmanager
def provider_errors(operation: str) -> Iterator[None]:
    """Translate SDK exceptions raised inside the block into typed errors.

    Args:
        operation: Short description used in messages, e.g. "generate embedding".

    Raises:
        RateLimited: Provider signaled throttling.
        QuotaExhausted: Provider signaled billing or credit exhaustion.
        ProviderUnavailable: Any other provider or transport failure.
    """
    try:
        yield
    except openai.APIStatusError as exc:
        logger.warning(
            "Provider call '%s' failed with status %s", operation, exc.status_code
        )
        raise translate_status_error(exc, operation) from exc
    except openai.APITimeoutError as exc:
        logger.warning("Provider call '%s' timed out", operation)
        msg = f"Failed to {operation}: provider call timed out"
        raise ProviderUnavailable(msg, {"operation": operation}) from exc
    except openai.APIConnectionError as exc:
        logger.warning("Provider call '%s' could not connect", operation)
        msg = f"Failed to {operation}: {exc}"
        raise ProviderUnavailable(msg, {"operation": operation}) from exc
