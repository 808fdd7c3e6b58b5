"""Chat turn orchestration.

A turn runs in two phases. ``stream_message`` validates the request,
resolves or creates the conversation, stores the user message and builds
the provider context before returning; any failure there raises. The
returned iterator then relays the provider stream as ``TurnEvent`` values,
reconciles usage and stores the assistant reply.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from parley.chat.validation import (
    get_owned_conversation,
    validate_corpus_percent,
    validate_message,
    validate_model,
    validate_response_format,
    validate_response_schema,
    validate_temperature,
)
from parley.errors import PersistenceError, UpstreamError
from parley.llm.cost import reconcile_usage
from parley.llm.prompt import build_system_prompt, select_history
from parley.llm.stream import StreamChannel
from parley.storage.models import Message, make_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parley.config import Settings
    from parley.corpus import ReferenceCorpus
    from parley.llm.base import LLMProvider
    from parley.llm.factory import ProviderRegistry
    from parley.llm.models import ModelCatalog
    from parley.llm.stream import StreamMetadata
    from parley.storage import ChatRepository, Conversation

logger = logging.getLogger(__name__)


@dataclass
class ChatRequest:
    """One user turn as received from the caller."""

    message: str
    user_id: str
    conversation_id: str | None = None
    system_prompt: str = ""
    response_format: str | None = None
    response_schema: str | None = None
    model: str | None = None
    temperature: float | None = None
    provider: str | None = None
    use_reference_corpus: bool = False
    reference_corpus_percent: int = 100


# -- Turn events ---------------------------------------------------------------


@dataclass(frozen=True)
class TurnStarted:
    conversation_id: str
    model: str
    temperature: float | None = None


@dataclass(frozen=True)
class TurnContent:
    text: str


@dataclass(frozen=True)
class TurnUsage:
    """Token and cost figures for the finished turn."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    total_cost: float | None = None
    latency: int | None = None
    generation_time: int | None = None

    @classmethod
    def from_metadata(cls, metadata: StreamMetadata | None) -> TurnUsage | None:
        """Build from stream metadata, or None if no counts or cost are known."""
        if metadata is None or (metadata.usage is None and metadata.total_cost is None):
            return None
        usage = metadata.usage
        return cls(
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            total_cost=metadata.total_cost,
            latency=metadata.latency_ms,
            generation_time=metadata.generation_time_ms,
        )


@dataclass(frozen=True)
class TurnError:
    message: str


@dataclass(frozen=True)
class TurnDone:
    pass


TurnEvent = TurnStarted | TurnContent | TurnUsage | TurnError | TurnDone


@dataclass
class ChatReply:
    """Result of a non-streaming turn."""

    response: str
    conversation_id: str
    model: str
    usage: TurnUsage | None = None


@dataclass
class _PreparedTurn:
    conversation: Conversation
    provider: LLMProvider
    model: str
    temperature: float | None
    system_prompt: str
    messages: list[dict[str, str]] = field(default_factory=list)


# -- Service -------------------------------------------------------------------


class ChatService:
    """Runs chat turns against the configured providers and store."""

    def __init__(
        self,
        settings: Settings,
        store: ChatRepository,
        catalog: ModelCatalog,
        providers: ProviderRegistry,
        corpus: ReferenceCorpus | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._catalog = catalog
        self._providers = providers
        self._corpus = corpus
        self._background: set[asyncio.Task[None]] = set()

    async def stream_message(self, request: ChatRequest) -> AsyncIterator[TurnEvent]:
        """Prepare a turn and return an iterator over its events.

        Raises:
            ValidationError: bad input or unknown provider.
            ConversationNotFoundError: *conversation_id* does not exist.
            AuthorizationError: the conversation belongs to another user.
            PersistenceError: the user message could not be stored.
        """
        turn = await self._prepare(request)
        return self._relay(turn)

    async def send_message(self, request: ChatRequest) -> ChatReply:
        """Run a turn to completion and return the whole reply.

        Raises ``UpstreamError`` if the provider fails mid-turn, in
        addition to everything ``stream_message`` raises.
        """
        events = await self.stream_message(request)
        reply: ChatReply | None = None
        parts: list[str] = []
        async with aclosing(events):
            async for event in events:
                if isinstance(event, TurnStarted):
                    reply = ChatReply(response="", conversation_id=event.conversation_id, model=event.model)
                elif isinstance(event, TurnContent):
                    parts.append(event.text)
                elif isinstance(event, TurnUsage) and reply is not None:
                    reply.usage = event
                elif isinstance(event, TurnError):
                    raise UpstreamError(event.message)

        if reply is None:
            raise UpstreamError("turn ended before it started")
        reply.response = "".join(parts)
        return reply

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        return await self._store.list_conversations(user_id)

    async def get_messages(self, conversation_id: str, user_id: str) -> list[Message]:
        await get_owned_conversation(self._store, conversation_id, user_id)
        return await self._store.get_messages(conversation_id)

    # -- Preparation -----------------------------------------------------------

    def _validate(self, request: ChatRequest) -> LLMProvider:
        validate_message(request.message)
        validate_temperature(request.temperature)
        provider = self._providers.get(request.provider)
        validate_model(request.model, self._catalog, provider.name)
        validate_response_format(request.response_format)
        if not request.conversation_id:
            validate_response_schema(request.response_format, request.response_schema)
        if request.use_reference_corpus:
            validate_corpus_percent(request.reference_corpus_percent)
        return provider

    async def _resolve_conversation(self, request: ChatRequest) -> Conversation:
        if request.conversation_id:
            conversation = await get_owned_conversation(
                self._store, request.conversation_id, request.user_id
            )
            if request.response_format and request.response_format != conversation.response_format:
                logger.debug(
                    "Ignoring response_format=%s for existing %s conversation %s",
                    request.response_format,
                    conversation.response_format,
                    conversation.id,
                )
            return conversation

        title = request.message[: self._settings.title_max_chars]
        return await self._store.create_conversation(
            request.user_id,
            title,
            request.response_format or "text",
            request.response_schema or "",
        )

    async def _prepare(self, request: ChatRequest) -> _PreparedTurn:
        provider = self._validate(request)
        conversation = await self._resolve_conversation(request)

        await self._store.add_message(
            Message(
                id=make_id(),
                conversation_id=conversation.id,
                role="user",
                content=request.message,
            )
        )

        summary, history = await select_history(self._store, conversation.id)
        system_prompt = build_system_prompt(
            conversation,
            self._settings,
            summary=summary,
            custom_prompt=request.system_prompt,
            corpus=self._corpus,
            corpus_percent=request.reference_corpus_percent if request.use_reference_corpus else None,
        )

        model = request.model or provider.default_model()
        logger.info(
            "Prepared turn: conversation=%s provider=%s model=%s format=%s history=%d",
            conversation.id,
            provider.name,
            model,
            conversation.response_format,
            len(history),
        )
        return _PreparedTurn(
            conversation=conversation,
            provider=provider,
            model=model,
            temperature=request.temperature,
            system_prompt=system_prompt,
            messages=[m.to_api() for m in history],
        )

    # -- Relay -----------------------------------------------------------------

    async def _relay(self, turn: _PreparedTurn) -> AsyncIterator[TurnEvent]:
        yield TurnStarted(
            conversation_id=turn.conversation.id,
            model=turn.model,
            temperature=turn.temperature,
        )

        parts: list[str] = []
        metadata: StreamMetadata | None = None
        failed = False
        saved = False
        try:
            source = turn.provider.stream_chat(
                turn.messages,
                system_prompt=turn.system_prompt,
                response_format=turn.conversation.response_format,
                model=turn.model,
                temperature=turn.temperature,
            )
            try:
                async with StreamChannel(source, maxsize=self._settings.stream_queue_size) as channel:
                    async for chunk in channel:
                        if chunk.is_final:
                            metadata = chunk.metadata
                        elif chunk.content:
                            parts.append(chunk.content)
                            yield TurnContent(chunk.content)
            except UpstreamError as exc:
                failed = True
                logger.error("Provider error in conversation %s: %s", turn.conversation.id, exc)
                yield TurnError(str(exc))
                return

            metadata = await reconcile_usage(turn.provider, metadata)
            usage = TurnUsage.from_metadata(metadata)
            if usage is not None:
                yield usage

            saved = True
            await self._save_reply(turn, "".join(parts), metadata)
            yield TurnDone()
        finally:
            if not failed and not saved and parts:
                logger.info(
                    "Client left conversation %s mid-turn, keeping %d chars received",
                    turn.conversation.id,
                    sum(len(p) for p in parts),
                )
                self._save_detached(turn, "".join(parts), metadata)

    async def _save_reply(
        self, turn: _PreparedTurn, content: str, metadata: StreamMetadata | None
    ) -> None:
        if not content:
            logger.warning("Empty response in conversation %s, nothing stored", turn.conversation.id)
            return

        usage = metadata.usage if metadata else None
        message = Message(
            id=make_id(),
            conversation_id=turn.conversation.id,
            role="assistant",
            content=content,
            model=turn.model,
            temperature=turn.temperature,
            provider=turn.provider.name,
            generation_id=metadata.generation_id if metadata else None,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            total_cost=metadata.total_cost if metadata else None,
            latency=metadata.latency_ms if metadata else None,
            generation_time=metadata.generation_time_ms if metadata else None,
        )
        try:
            await self._store.add_message(message)
        except PersistenceError:
            logger.exception("Error storing assistant message for conversation %s", turn.conversation.id)
            return
        logger.info("Completed turn in conversation %s (%d chars)", turn.conversation.id, len(content))

    def _save_detached(
        self, turn: _PreparedTurn, content: str, metadata: StreamMetadata | None
    ) -> None:
        task = asyncio.create_task(self._save_reply(turn, content, metadata))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for detached writes to finish (used at shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
