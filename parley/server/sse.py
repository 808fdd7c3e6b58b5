"""Server-sent event framing for chat turns.

Frames are ``data: <payload>`` lines followed by a blank line. The first
frames of a turn carry its metadata as ``CONV_ID:``, ``MODEL:`` and
``TEMPERATURE:`` prefixes; content fragments have newlines escaped as
``\\n`` so each fragment stays on one line.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from parley.chat.service import TurnContent, TurnDone, TurnError, TurnStarted, TurnUsage

if TYPE_CHECKING:
    from parley.chat.service import TurnEvent

DONE_FRAME = b"data: [DONE]\n\n"


def frame(payload: str) -> bytes:
    return f"data: {payload}\n\n".encode()


def escape_content(text: str) -> str:
    # A bare CR also ends an SSE line.
    return text.replace("\r", "\\r").replace("\n", "\\n")


def usage_payload(usage: TurnUsage) -> dict[str, Any]:
    """Token counts always; cost and timings only when known."""
    data: dict[str, Any] = {
        "prompt_tokens": usage.prompt_tokens or 0,
        "completion_tokens": usage.completion_tokens or 0,
        "total_tokens": usage.total_tokens or 0,
    }
    if usage.total_cost is not None:
        data["total_cost"] = round(usage.total_cost, 6)
    if usage.latency is not None:
        data["latency"] = usage.latency
    if usage.generation_time is not None:
        data["generation_time"] = usage.generation_time
    return data


def error_frame(message: str) -> bytes:
    return frame(json.dumps({"error": message}))


def encode_event(event: TurnEvent) -> list[bytes]:
    """Render one turn event as zero or more SSE frames."""
    if isinstance(event, TurnStarted):
        frames = [frame(f"CONV_ID:{event.conversation_id}"), frame(f"MODEL:{event.model}")]
        if event.temperature is not None:
            frames.append(frame(f"TEMPERATURE:{event.temperature:.2f}"))
        return frames
    if isinstance(event, TurnContent):
        return [frame(escape_content(event.text))] if event.text else []
    if isinstance(event, TurnUsage):
        return [frame("USAGE:" + json.dumps(usage_payload(event), separators=(",", ":")))]
    if isinstance(event, TurnError):
        return [error_frame(event.message)]
    if isinstance(event, TurnDone):
        return [DONE_FRAME]
    msg = f"Unknown turn event: {event!r}"
    raise TypeError(msg)
