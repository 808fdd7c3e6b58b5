"""Chat turn orchestration."""

from parley.chat.service import (
    ChatReply,
    ChatRequest,
    ChatService,
    TurnContent,
    TurnDone,
    TurnError,
    TurnEvent,
    TurnStarted,
    TurnUsage,
)

__all__ = [
    "ChatReply",
    "ChatRequest",
    "ChatService",
    "TurnContent",
    "TurnDone",
    "TurnError",
    "TurnEvent",
    "TurnStarted",
    "TurnUsage",
]
