"""User-triggered conversation summarization.

A summary replaces the history it covers on later turns. Each turn that
reads the active summary bumps its ``usage_count``; once that reaches the
reuse limit, the next summarize request folds the old summary and the
newer messages into a fresh row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from parley.chat.validation import get_owned_conversation, validate_model, validate_temperature
from parley.errors import ValidationError

if TYPE_CHECKING:
    from parley.config import Settings
    from parley.llm.factory import ProviderRegistry
    from parley.llm.models import ModelCatalog
    from parley.storage import ChatRepository, Summary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryResult:
    text: str
    cutoff_message_id: str | None
    is_new: bool


class SummaryService:
    def __init__(
        self,
        settings: Settings,
        store: ChatRepository,
        catalog: ModelCatalog,
        providers: ProviderRegistry,
    ) -> None:
        self._settings = settings
        self._store = store
        self._catalog = catalog
        self._providers = providers

    def _should_create(self, summary: Summary | None) -> bool:
        return summary is None or summary.usage_count >= self._settings.summary_reuse_limit

    async def _build_input(
        self, conversation_id: str, summary: Summary | None
    ) -> tuple[list[dict[str, str]], str | None]:
        last_id = await self._store.get_last_message_id(conversation_id)
        if last_id is None:
            raise ValidationError("conversation has no messages to summarize")

        if summary is None:
            logger.info("No active summary for %s, summarizing all messages", conversation_id)
            messages = await self._store.get_messages(conversation_id)
            return [m.to_api() for m in messages], last_id

        logger.info(
            "Rolling summary %s (usage=%d) into a new summary", summary.id, summary.usage_count
        )
        inputs = [{"role": "assistant", "content": f"Previous summary:\n{summary.content}"}]
        if summary.cutoff_message_id:
            newer = await self._store.get_messages_after(conversation_id, summary.cutoff_message_id)
            inputs.extend(m.to_api() for m in newer)
        return inputs, last_id

    async def summarize(
        self,
        conversation_id: str,
        user_id: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        provider: str | None = None,
    ) -> SummaryResult:
        """Return the active summary, or create a new one when it is used up.

        Raises:
            ValidationError: bad model/temperature/provider, or an empty
                conversation.
            ConversationNotFoundError: no such conversation.
            AuthorizationError: *user_id* does not own it.
            UpstreamError: the LLM call failed; nothing is stored.
        """
        llm = self._providers.get(provider)
        validate_model(model, self._catalog, llm.name)
        validate_temperature(temperature)
        await get_owned_conversation(self._store, conversation_id, user_id)

        active = await self._store.get_active_summary(conversation_id)
        if not self._should_create(active):
            logger.info(
                "Active summary %s has usage_count=%d, returning it", active.id, active.usage_count
            )
            return SummaryResult(
                text=active.content,
                cutoff_message_id=active.cutoff_message_id,
                is_new=False,
            )

        inputs, cutoff = await self._build_input(conversation_id, active)
        logger.info(
            "Summarizing conversation %s with %s (%d input message(s))",
            conversation_id,
            llm.name,
            len(inputs),
        )
        text = await llm.summarize(
            inputs,
            prompt=self._settings.summarization_prompt,
            model=model,
            temperature=temperature,
        )

        summary = await self._store.create_summary(conversation_id, text, cutoff)
        logger.info("Stored summary %s (%d chars)", summary.id, len(text))
        return SummaryResult(text=text, cutoff_message_id=cutoff, is_new=True)

    async def list_summaries(self, conversation_id: str, user_id: str) -> list[Summary]:
        """All summaries for a conversation, oldest first."""
        await get_owned_conversation(self._store, conversation_id, user_id)
        return await self._store.list_summaries(conversation_id)
