"""Model construction for the auxiliary pydantic-ai agents.

The market summary (Stage 1) and social posts (Stage 3) agents talk to the
same OpenAI-compatible endpoint as the generation stream, configured through
``XAI_*`` settings. Unlike the generation stream, these calls are retried on
transient upstream errors.

Usage:
    from services.model_factory import get_text_model

    agent = Agent(get_text_model(), output_type=MarketSummary)
"""

from __future__ import annotations

import logging
from typing import Any

from httpx import AsyncBaseTransport, AsyncClient, HTTPStatusError
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.retries import AsyncTenacityTransport, RetryConfig, wait_retry_after
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})


def create_resilient_http_client(
    timeout: float = 60.0, wrapped: AsyncBaseTransport | None = None
) -> AsyncClient:
    """HTTP client with exponential backoff that honours Retry-After."""

    def should_retry_status(response: Any) -> None:
        if response.status_code in RETRYABLE_STATUS_CODES:
            response.raise_for_status()

    transport = AsyncTenacityTransport(
        config=RetryConfig(
            retry=retry_if_exception_type(HTTPStatusError),
            wait=wait_retry_after(
                fallback_strategy=wait_exponential(multiplier=1, min=1, max=10),
                max_wait=30,
            ),
            stop=stop_after_attempt(3),
            reraise=True,
        ),
        wrapped=wrapped,
        validate_response=should_retry_status,
    )
    return AsyncClient(transport=transport, timeout=timeout)


def get_text_model(http_client: AsyncClient | None = None) -> Model:
    """Return the configured chat model for short structured tasks.

    Raises:
        ValueError: If ``XAI_API_KEY`` is not configured.
    """
    settings = get_settings()
    if not settings.XAI_API_KEY:
        raise ValueError("No LLM provider configured; set XAI_API_KEY")

    provider = OpenAIProvider(
        base_url=settings.XAI_BASE_URL.rstrip("/"),
        api_key=settings.XAI_API_KEY,
        http_client=http_client or create_resilient_http_client(),
    )
    logger.info("Using %s via %s", settings.XAI_MODEL, settings.XAI_BASE_URL)
    return OpenAIChatModel(
        settings.XAI_MODEL,
        provider=provider,
        settings={"temperature": settings.XAI_TEMPERATURE},
    )
