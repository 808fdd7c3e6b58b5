"""Direct Anthropic backend using the official async SDK.

Anthropic exposes no cost-lookup endpoint, so streams end with a
usage-only metadata frame and ``fetch_cost`` always fails.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import anthropic

from parley.errors import CostLookupError, UpstreamError
from parley.llm.stream import StreamChunk, StreamMetadata, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parley.config import Settings
    from parley.llm.base import GenerationCost
    from parley.llm.models import ModelCatalog

logger = logging.getLogger(__name__)


def render_transcript(messages: list[dict[str, str]]) -> str:
    """Flatten a message list into one tagged transcript string."""
    lines = []
    for msg in messages:
        role = msg.get("role", "unknown")
        lines.append(f"<{role}>{msg.get('content', '')}</{role}>")
    return "<conversation>\n" + "\n".join(lines) + "\n</conversation>"


class AnthropicProvider:
    """Streams chat completions from the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._settings = settings
        self._catalog = catalog
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._settings.anthropic_api_key)
        return self._client

    def default_model(self) -> str:
        return self._settings.anthropic_default_model

    def _kwargs(
        self,
        messages: list[dict[str, str]],
        *,
        system_prompt: str,
        response_format: str,
        model: str | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        top_p, top_k = self._settings.sampling_for(response_format)
        kwargs: dict[str, Any] = {
            "model": model or self.default_model(),
            "max_tokens": self._settings.anthropic_max_tokens,
            "system": system_prompt,
            "messages": messages,
            "top_k": top_k,
        }
        # Current Claude models reject temperature and top_p together.
        if temperature is not None:
            kwargs["temperature"] = temperature
        else:
            kwargs["top_p"] = top_p
        return kwargs

    async def stream_chat(
        self,
        messages: list[dict[str, str]],
        *,
        system_prompt: str,
        response_format: str = "text",
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._kwargs(
            messages,
            system_prompt=system_prompt,
            response_format=response_format,
            model=model,
            temperature=temperature,
        )
        logger.info(
            "Calling Anthropic API (streaming): model=%s format=%s messages=%d",
            kwargs["model"],
            response_format,
            len(messages),
        )

        try:
            async with self._get_client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(content=text)
                final = await stream.get_final_message()
        except anthropic.APIError as exc:
            raise UpstreamError(f"Anthropic API error: {exc}") from exc

        usage = getattr(final, "usage", None)
        if usage is not None:
            prompt = usage.input_tokens or 0
            completion = usage.output_tokens or 0
            yield StreamChunk(
                metadata=StreamMetadata(
                    usage=Usage(
                        prompt_tokens=prompt,
                        completion_tokens=completion,
                        total_tokens=prompt + completion,
                    )
                )
            )

    async def summarize(
        self,
        messages: list[dict[str, str]],
        *,
        prompt: str,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Summarize *messages* sent as a single transcript user turn.

        The transcript form keeps the request valid when the input opens
        with an assistant-role "previous summary" line.
        """
        kwargs: dict[str, Any] = {
            "model": model or self.default_model(),
            "max_tokens": self._settings.anthropic_max_tokens,
            "system": prompt,
            "messages": [{"role": "user", "content": render_transcript(messages)}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        logger.info(
            "Calling Anthropic API for summarization: model=%s messages=%d",
            kwargs["model"],
            len(messages),
        )
        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise UpstreamError(f"Anthropic API error: {exc}") from exc

        if not response.content:
            raise UpstreamError("no response from API")
        return response.content[0].text

    async def fetch_cost(self, generation_id: str) -> GenerationCost:
        raise CostLookupError("generation cost tracking not supported for Anthropic provider")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
