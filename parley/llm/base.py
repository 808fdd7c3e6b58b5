"""Capability interface every LLM backend implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parley.llm.stream import StreamChunk


@dataclass(frozen=True)
class GenerationCost:
    """Billing data for one generation, as reported by a cost lookup.

    ``latency`` is time to first token and ``generation_time`` total
    generation time, both in milliseconds.
    """

    total_cost: float
    native_tokens_prompt: int
    native_tokens_completion: int
    latency: int | None = None
    generation_time: int | None = None

    @property
    def total_tokens(self) -> int:
        return self.native_tokens_prompt + self.native_tokens_completion

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> GenerationCost:
        latency = data.get("latency")
        generation_time = data.get("generation_time")
        return cls(
            total_cost=float(data.get("total_cost") or 0.0),
            native_tokens_prompt=int(data.get("native_tokens_prompt") or 0),
            native_tokens_completion=int(data.get("native_tokens_completion") or 0),
            latency=int(latency) if latency is not None else None,
            generation_time=int(generation_time) if generation_time is not None else None,
        )


class LLMProvider(Protocol):
    """A chat backend.

    ``stream_chat`` receives the fully assembled system directive and
    prepends it to *messages* unchanged. ``summarize`` sends only the
    given summarization prompt as the system message.
    """

    name: str

    def stream_chat(
        self,
        messages: list[dict[str, str]],
        *,
        system_prompt: str,
        response_format: str = "text",
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]: ...

    async def summarize(
        self,
        messages: list[dict[str, str]],
        *,
        prompt: str,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str: ...

    async def fetch_cost(self, generation_id: str) -> GenerationCost: ...

    def default_model(self) -> str: ...
