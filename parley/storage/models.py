"""Conversation, Message and Summary data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

RESPONSE_FORMATS = ("text", "json", "xml")


def make_id() -> str:
    """Generate a new row ID."""
    return uuid.uuid4().hex


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Conversation:
    """A chat thread owned by one user.

    ``response_format`` and ``response_schema`` are set at creation and
    never change afterwards.
    """

    id: str
    user_id: str
    title: str
    response_format: str = "text"
    response_schema: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def is_structured(self) -> bool:
        return self.response_format in ("json", "xml")

    def to_row(self) -> tuple:
        return (
            self.id,
            self.user_id,
            self.title,
            self.response_format,
            self.response_schema,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            user_id=row[1],
            title=row[2],
            response_format=row[3],
            response_schema=row[4] or "",
            created_at=row[5],
            updated_at=row[6],
        )


@dataclass
class Message:
    """A single stored turn half.

    User messages carry only role and content. Assistant messages also
    record the model, sampling temperature, provider tag and whatever
    usage/cost figures were known when the turn finished.
    """

    id: str
    conversation_id: str
    role: str  # "user" or "assistant"
    content: str
    model: str | None = None
    temperature: float | None = None
    provider: str | None = None
    generation_id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    total_cost: float | None = None
    latency: int | None = None
    generation_time: int | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    def to_api(self) -> dict[str, str]:
        """Format for a provider ``messages`` array."""
        return {"role": self.role, "content": self.content}

    def to_row(self) -> tuple:
        return (
            self.id,
            self.conversation_id,
            self.role,
            self.content,
            self.model,
            self.temperature,
            self.provider,
            self.generation_id,
            self.prompt_tokens,
            self.completion_tokens,
            self.total_tokens,
            self.total_cost,
            self.latency,
            self.generation_time,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(*row)


@dataclass
class Summary:
    """A compressed view of a conversation up to ``cutoff_message_id``.

    Rows are never edited except for ``usage_count``; a newer row
    supersedes older ones.
    """

    id: str
    conversation_id: str
    content: str
    cutoff_message_id: str | None = None
    usage_count: int = 0
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    def to_row(self) -> tuple:
        return (
            self.id,
            self.conversation_id,
            self.content,
            self.cutoff_message_id,
            self.usage_count,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Summary:
        return cls(
            id=row[0],
            conversation_id=row[1],
            content=row[2],
            cutoff_message_id=row[3],
            usage_count=row[4] or 0,
            created_at=row[5],
        )
