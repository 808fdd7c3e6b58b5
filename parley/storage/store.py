"""aiosqlite persistence for conversations, messages and summaries."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol

import aiosqlite

from parley.errors import PersistenceError
from parley.storage.models import Conversation, Message, Summary, make_id, utcnow

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    response_format TEXT NOT NULL DEFAULT 'text',
    response_schema TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    model TEXT,
    temperature REAL,
    provider TEXT,
    generation_id TEXT,
    prompt_tokens INTEGER,
    completion_tokens INTEGER,
    total_tokens INTEGER,
    total_cost REAL,
    latency INTEGER,
    generation_time INTEGER,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);

CREATE TABLE IF NOT EXISTS conversation_summaries (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    summary_content TEXT NOT NULL,
    summarized_up_to_message_id TEXT REFERENCES messages(id) ON DELETE SET NULL,
    usage_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_summaries_conversation_id ON conversation_summaries(conversation_id);
"""

_MESSAGE_COLUMNS = (
    "id, conversation_id, role, content, model, temperature, provider, generation_id, "
    "prompt_tokens, completion_tokens, total_tokens, total_cost, latency, "
    "generation_time, created_at"
)

_SUMMARY_COLUMNS = (
    "id, conversation_id, summary_content, summarized_up_to_message_id, usage_count, created_at"
)


class ChatRepository(Protocol):
    """The persistence operations the chat and summary services rely on."""

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def create_conversation(
        self, user_id: str, title: str, response_format: str, response_schema: str
    ) -> Conversation: ...

    async def list_conversations(self, user_id: str) -> list[Conversation]: ...

    async def add_message(self, message: Message) -> Message: ...

    async def get_messages(self, conversation_id: str) -> list[Message]: ...

    async def get_messages_after(
        self, conversation_id: str, message_id: str
    ) -> list[Message]: ...

    async def get_last_message_id(self, conversation_id: str) -> str | None: ...

    async def get_active_summary(self, conversation_id: str) -> Summary | None: ...

    async def create_summary(
        self, conversation_id: str, content: str, cutoff_message_id: str | None
    ) -> Summary: ...

    async def list_summaries(self, conversation_id: str) -> list[Summary]: ...

    async def increment_summary_usage(self, summary_id: str) -> None: ...


class ChatStore:
    """Persists conversations, messages and summaries in SQLite.

    Opens a short-lived connection per operation. Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    Every ``aiosqlite`` failure is re-raised as ``PersistenceError``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        try:
            await db.execute("PRAGMA foreign_keys = ON")
            if not self._initialised:
                await db.executescript(_SCHEMA)
                await db.commit()
                self._initialised = True
        except BaseException:
            await db.close()
            raise
        return db

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceError(f"could not open database: {exc}") from exc
        try:
            yield db
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await db.close()

    # -- Conversations ---------------------------------------------------------

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Fetch a conversation by ID, or None if not found."""
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT id, user_id, title, response_format, response_schema, "
                "created_at, updated_at FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return Conversation.from_row(row) if row else None

    async def create_conversation(
        self,
        user_id: str,
        title: str,
        response_format: str = "text",
        response_schema: str = "",
    ) -> Conversation:
        conversation = Conversation(
            id=make_id(),
            user_id=user_id,
            title=title,
            response_format=response_format or "text",
            response_schema=response_schema or "",
        )
        async with self._session() as db:
            await db.execute(
                """
                INSERT INTO conversations
                    (id, user_id, title, response_format, response_schema, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                conversation.to_row(),
            )
            await db.commit()
        logger.info("Created conversation %s (format=%s)", conversation.id, conversation.response_format)
        return conversation

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Return a user's conversations, most recently active first."""
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT id, user_id, title, response_format, response_schema, "
                "created_at, updated_at FROM conversations WHERE user_id = ? "
                "ORDER BY updated_at DESC, rowid DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [Conversation.from_row(row) for row in rows]

    # -- Messages --------------------------------------------------------------

    async def add_message(self, message: Message) -> Message:
        """Insert a message and bump the conversation's ``updated_at``."""
        async with self._session() as db:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (utcnow(), message.conversation_id),
            )
            await db.commit()
        logger.debug("Stored %s message %s", message.role, message.id)
        return message

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Return the full history in creation order."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at, rowid",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]

    async def get_messages_after(self, conversation_id: str, message_id: str) -> list[Message]:
        """Return messages created strictly after *message_id*.

        An unknown *message_id* yields an empty list.
        """
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? "
                "AND rowid > (SELECT rowid FROM messages WHERE id = ?) "
                "ORDER BY created_at, rowid",
                (conversation_id, message_id),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]

    async def get_last_message_id(self, conversation_id: str) -> str | None:
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT id FROM messages WHERE conversation_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    # -- Summaries -------------------------------------------------------------

    async def get_active_summary(self, conversation_id: str) -> Summary | None:
        """Return the most recently created summary, or None."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM conversation_summaries "
                "WHERE conversation_id = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return Summary.from_row(row) if row else None

    async def create_summary(
        self, conversation_id: str, content: str, cutoff_message_id: str | None
    ) -> Summary:
        summary = Summary(
            id=make_id(),
            conversation_id=conversation_id,
            content=content,
            cutoff_message_id=cutoff_message_id,
        )
        async with self._session() as db:
            await db.execute(
                f"INSERT INTO conversation_summaries ({_SUMMARY_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                summary.to_row(),
            )
            await db.commit()
        logger.info(
            "Created summary %s for conversation %s (cutoff=%s)",
            summary.id,
            conversation_id,
            cutoff_message_id,
        )
        return summary

    async def list_summaries(self, conversation_id: str) -> list[Summary]:
        """Return every summary for a conversation, oldest first."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM conversation_summaries "
                "WHERE conversation_id = ? ORDER BY created_at, rowid",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [Summary.from_row(row) for row in rows]

    async def increment_summary_usage(self, summary_id: str) -> None:
        async with self._session() as db:
            await db.execute(
                "UPDATE conversation_summaries SET usage_count = usage_count + 1 WHERE id = ?",
                (summary_id,),
            )
            await db.commit()
