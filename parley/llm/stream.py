"""Streaming protocol adapter.

Every provider turns its wire format into ``StreamChunk`` envelopes: a run
of content fragments followed by at most one terminal metadata frame.
``StreamChannel`` pumps those envelopes through a bounded queue on a
background task so the consumer can relay them as they arrive and stop
reading at any point without leaking the upstream connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from parley.errors import UpstreamError

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_EOF = object()


@dataclass(frozen=True)
class Usage:
    """Token counts reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Usage:
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = data.get("total_tokens")
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(total) if total is not None else prompt + completion,
        )


@dataclass(frozen=True)
class StreamMetadata:
    """Terminal frame of a stream.

    ``generation_id`` is only set by providers that support a later cost
    lookup. Cost and timing fields are filled in by reconciliation.
    """

    generation_id: str | None = None
    usage: Usage | None = None
    total_cost: float | None = None
    latency_ms: int | None = None
    generation_time_ms: int | None = None


@dataclass(frozen=True)
class StreamChunk:
    """One streaming envelope: a content fragment or the terminal metadata."""

    content: str = ""
    metadata: StreamMetadata | None = None

    @property
    def is_final(self) -> bool:
        return self.metadata is not None


# -- SSE decoding --------------------------------------------------------------


class SSEDecoder:
    """Line-at-a-time decoder for ``data: {json}`` chat-completion streams.

    Blank lines, SSE comments (``: keep-alive``) and unparseable frames are
    skipped. The generation id is taken from the first frame that carries
    one; usage from the last frame that carries it (usually a final frame
    with empty ``choices``).
    """

    def __init__(self) -> None:
        self.generation_id: str | None = None
        self.usage: Usage | None = None
        self.done = False

    def feed(self, line: str) -> str | None:
        """Consume one line. Returns a content fragment, if the line had one.

        Raises ``UpstreamError`` when the provider reports an error frame.
        """
        line = line.strip()
        if not line or line.startswith(":") or not line.startswith("data:"):
            return None

        data = line[len("data:"):].strip()
        if data == DONE_SENTINEL:
            self.done = True
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream frame: %s", data[:200])
            return None
        if not isinstance(payload, dict):
            logger.warning("Skipping non-object stream frame: %s", data[:200])
            return None

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamError(f"provider error mid-stream: {message}")

        frame_id = payload.get("id")
        if frame_id and self.generation_id is None:
            self.generation_id = str(frame_id)
            logger.debug("Captured generation ID %s", self.generation_id)

        usage = payload.get("usage")
        if isinstance(usage, dict):
            try:
                self.usage = Usage.from_payload(usage)
            except (TypeError, ValueError):
                logger.warning("Skipping stream frame with unreadable usage: %s", data[:200])
                return None
            logger.debug(
                "Captured usage: prompt=%d completion=%d total=%d",
                self.usage.prompt_tokens,
                self.usage.completion_tokens,
                self.usage.total_tokens,
            )

        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            return content
        return None

    def metadata(self) -> StreamMetadata | None:
        """Return the terminal metadata, or None if nothing was captured."""
        if self.generation_id is None and self.usage is None:
            return None
        return StreamMetadata(generation_id=self.generation_id, usage=self.usage)


async def decode_sse(lines: AsyncIterable[str]) -> AsyncIterator[StreamChunk]:
    """Turn raw SSE lines into envelopes, ending with metadata if any."""
    decoder = SSEDecoder()
    async for line in lines:
        content = decoder.feed(line)
        if content:
            yield StreamChunk(content=content)
        if decoder.done:
            break

    metadata = decoder.metadata()
    if metadata is not None:
        yield StreamChunk(metadata=metadata)


# -- Channel -------------------------------------------------------------------


async def _aclose(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamChannel:
    """Background reader feeding a provider stream into a bounded queue.

    Use as an async context manager and iterate::

        async with StreamChannel(provider.stream_chat(...)) as channel:
            async for chunk in channel:
                ...

    Leaving the block (normally, on error, or because the consumer was
    cancelled) sets the shared ``cancelled`` event, cancels the pump task
    and closes the upstream iterator so its HTTP connection is released.
    Upstream exceptions reach the consumer as ``UpstreamError``. Frames
    that arrive after a terminal metadata frame are dropped.
    """

    def __init__(self, source: AsyncIterator[StreamChunk], maxsize: int = 64) -> None:
        self._source = source
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.cancelled = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> StreamChannel:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self._iterate()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        try:
            async for chunk in self._source:
                if self.cancelled.is_set():
                    return
                await self._queue.put(chunk)
        except UpstreamError as exc:
            await self._queue.put(exc)
            return
        except Exception as exc:
            logger.warning("Upstream stream failed: %s", exc)
            await self._queue.put(UpstreamError(str(exc) or type(exc).__name__))
            return
        finally:
            await _aclose(self._source)
        await self._queue.put(_EOF)

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        self.start()
        seen_final = False
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            if seen_final:
                logger.warning("Dropping stream frame received after terminal metadata")
                continue
            if item.is_final:
                seen_final = True
            yield item

    async def close(self) -> None:
        """Stop the background reader and release the upstream stream."""
        self.cancelled.set()
        task = self._task
        if task is None:
            await _aclose(self._source)
            return
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
