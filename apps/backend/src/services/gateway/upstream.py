"""Token-streaming client for the OpenAI-compatible generation service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from core.config import Settings
from services.gateway.exceptions import UpstreamStreamError, UpstreamUnavailable


logger = logging.getLogger(__name__)

# Longest upstream error body echoed into logs.
_ERROR_BODY_LOG_LIMIT = 500


class UpstreamStream:
    """An open streaming response, exposed as raw text fragments."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False
        self.fragments_delivered = 0

    async def fragments(self) -> AsyncIterator[str]:
        """Yield decoded text fragments in arrival order.

        A transport failure after the connection was established raises
        `UpstreamStreamError`; fragments already yielded stay delivered.
        """
        try:
            async for text in self._response.aiter_text():
                if not text:
                    continue
                self.fragments_delivered += 1
                yield text
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.warning(
                "Upstream stream dropped after %d fragments: %s",
                self.fragments_delivered,
                type(exc).__name__,
            )
            raise UpstreamStreamError(
                f"Generation stream interrupted: {type(exc).__name__}",
                fragments_delivered=self.fragments_delivered,
            ) from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class UpstreamStreamingClient:
    """Opens streaming chat-completion calls against the generation service.

    There is deliberately no retry here; the orchestrator owns retry policy.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        connect_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=connect_timeout, read=None, write=10.0, pool=10.0)
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> UpstreamStreamingClient:
        return cls(
            api_key=settings.XAI_API_KEY,
            base_url=settings.XAI_BASE_URL,
            model=settings.XAI_MODEL,
            temperature=settings.XAI_TEMPERATURE,
            connect_timeout=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            http_client=http_client,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def build_chat_payload(
        self, prompt: str, system_message: str | None = None
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
        }

    async def open(self, payload: dict[str, Any]) -> UpstreamStream:
        """Open the stream; fail with `UpstreamUnavailable` before any fragment."""
        if not self._api_key:
            raise UpstreamUnavailable("XAI_API_KEY not configured")

        request = self._client.build_request(
            "POST",
            f"{self._base_url}/chat/completions",
            json=payload,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "text/event-stream",
            },
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("Could not reach generation service: %s", type(exc).__name__)
            raise UpstreamUnavailable(
                f"Could not reach generation service: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.HTTPError:
                body = ""
            finally:
                await response.aclose()
            logger.error(
                "Generation service returned %d: %s",
                response.status_code,
                body[:_ERROR_BODY_LOG_LIMIT],
            )
            raise UpstreamUnavailable(
                f"Generation service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return UpstreamStream(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
