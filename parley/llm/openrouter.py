"""OpenRouter chat-completions backend over httpx."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from parley.errors import UpstreamError
from parley.llm.cost import fetch_generation_cost
from parley.llm.stream import decode_sse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parley.config import Settings
    from parley.llm.base import GenerationCost
    from parley.llm.models import ModelCatalog
    from parley.llm.stream import StreamChunk

logger = logging.getLogger(__name__)


def _format_temperature(temperature: float | None) -> str:
    return "nil" if temperature is None else f"{temperature:.2f}"


class OpenRouterProvider:
    """Streams chat completions from OpenRouter and looks up generation cost.

    The ``id`` of the streamed frames is OpenRouter's generation id, which
    ``fetch_cost`` resolves against the ``/generation`` endpoint.
    """

    name = "openrouter"

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._catalog = catalog
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)

    @property
    def chat_url(self) -> str:
        return f"{self._settings.openrouter_base_url}/chat/completions"

    @property
    def generation_url(self) -> str:
        return f"{self._settings.openrouter_base_url}/generation"

    def default_model(self) -> str:
        return self._catalog.default_model()

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "HTTP-Referer": self._settings.openrouter_referer,
            "X-Title": self._settings.openrouter_title,
        }

    def _payload(
        self,
        messages: list[dict[str, str]],
        *,
        system_prompt: str,
        response_format: str,
        model: str | None,
        temperature: float | None,
        stream: bool,
    ) -> dict[str, Any]:
        top_p, top_k = self._settings.sampling_for(response_format)
        payload: dict[str, Any] = {
            "model": model or self.default_model(),
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "stream": stream,
            "top_p": top_p,
            "top_k": top_k,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if self._settings.require_parameters:
            payload["provider"] = {"require_parameters": True}
        return payload

    def _require_key(self) -> None:
        if not self._settings.openrouter_api_key:
            raise UpstreamError("OPENROUTER_API_KEY not configured")

    async def stream_chat(
        self,
        messages: list[dict[str, str]],
        *,
        system_prompt: str,
        response_format: str = "text",
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield content fragments, then usage/generation-id metadata.

        Raises:
            UpstreamError: missing API key, non-200 status, or a transport
                failure while streaming.
        """
        self._require_key()
        payload = self._payload(
            messages,
            system_prompt=system_prompt,
            response_format=response_format,
            model=model,
            temperature=temperature,
            stream=True,
        )
        logger.info(
            "Calling OpenRouter API (streaming): model=%s format=%s temperature=%s messages=%d",
            payload["model"],
            response_format,
            _format_temperature(temperature),
            len(messages),
        )

        try:
            async with self._client.stream(
                "POST", self.chat_url, json=payload, headers=self._headers()
            ) as resp:
                if resp.status_code != 200:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    msg = f"API returned status {resp.status_code}: {body[:500]}"
                    raise UpstreamError(msg)
                async for chunk in decode_sse(resp.aiter_lines()):
                    yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamError(f"error streaming from OpenRouter: {exc}") from exc

    async def summarize(
        self,
        messages: list[dict[str, str]],
        *,
        prompt: str,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Non-streaming completion with *prompt* as the only system message."""
        self._require_key()
        payload = self._payload(
            messages,
            system_prompt=prompt,
            response_format="text",
            model=model,
            temperature=temperature,
            stream=False,
        )
        logger.info(
            "Calling OpenRouter API for summarization: model=%s temperature=%s messages=%d",
            payload["model"],
            _format_temperature(temperature),
            len(messages),
        )

        try:
            resp = await self._client.post(self.chat_url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamError(f"error sending request: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamError(f"API returned status {resp.status_code}: {resp.text[:500]}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise UpstreamError("no response from API") from exc

        logger.debug("Received summarization content (%d chars)", len(content or ""))
        return content or ""

    async def fetch_cost(self, generation_id: str) -> GenerationCost:
        return await fetch_generation_cost(
            self._client,
            generation_id,
            url=self.generation_url,
            api_key=self._settings.openrouter_api_key,
            attempts=self._settings.cost_lookup_attempts,
            base_delay=self._settings.cost_lookup_base_delay,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
