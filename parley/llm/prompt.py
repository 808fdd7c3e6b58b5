"""Per-turn context assembly: the system directive and the history window."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from parley.errors import PersistenceError

if TYPE_CHECKING:
    from parley.config import Settings
    from parley.corpus import ReferenceCorpus
    from parley.storage import ChatRepository, Conversation, Message, Summary

logger = logging.getLogger(__name__)

STRUCTURED_PROMPT_TEMPLATE = """\
You are a strict {fmt} generator. Every response must be a single valid {fmt} \
document that conforms exactly to the following schema:

{schema}

Output only the raw {fmt}. Do not include any explanation, prose, markdown, \
or code fences before or after it."""


def _format_directive(conversation: Conversation, custom_prompt: str, settings: Settings) -> str:
    if conversation.is_structured and conversation.response_schema:
        if custom_prompt:
            logger.debug("Ignoring custom system prompt for %s conversation", conversation.response_format)
        return STRUCTURED_PROMPT_TEMPLATE.format(
            fmt=conversation.response_format.upper(),
            schema=conversation.response_schema,
        )

    directive = settings.default_system_prompt
    if custom_prompt:
        directive = f"{directive}\n\n{custom_prompt}"
    return directive


def build_system_prompt(
    conversation: Conversation,
    settings: Settings,
    *,
    summary: Summary | None = None,
    custom_prompt: str = "",
    corpus: ReferenceCorpus | None = None,
    corpus_percent: int | None = None,
) -> str:
    """Assemble the system directive for one turn.

    Args:
        conversation: Supplies the fixed response format and schema.
        summary: Active summary, prepended when present.
        custom_prompt: Caller addendum; only used for text conversations.
        corpus: Reference corpus to append, when *corpus_percent* is set.
        corpus_percent: Share of the corpus to include. Values outside
            [1, 100] include the whole corpus.
    """
    directive = _format_directive(conversation, custom_prompt, settings)

    if summary is not None:
        directive = f"Previous conversation summary:\n{summary.content}\n\n{directive}"

    if corpus_percent is not None:
        if corpus is None or not len(corpus):
            logger.warning("Reference corpus requested but not loaded, skipping")
        else:
            excerpt = corpus.slice(corpus_percent)
            directive = f"{directive}\n\nContext ({corpus.label}):\n{excerpt}"
            logger.info("Added %d chars of reference corpus to system prompt", len(excerpt))

    return directive


async def select_history(
    store: ChatRepository, conversation_id: str
) -> tuple[Summary | None, list[Message]]:
    """Return the active summary and the messages the provider should see.

    With a summary, only messages after its cutoff are included and the
    summary's usage count is bumped. A failed bump is logged.
    """
    summary = await store.get_active_summary(conversation_id)
    if summary is None:
        return None, await store.get_messages(conversation_id)

    if summary.cutoff_message_id:
        messages = await store.get_messages_after(conversation_id, summary.cutoff_message_id)
    else:
        messages = []

    try:
        await store.increment_summary_usage(summary.id)
    except PersistenceError:
        logger.exception("Failed to increment usage count for summary %s", summary.id)

    logger.info(
        "Using summary %s (usage=%d) with %d message(s) after cutoff",
        summary.id,
        summary.usage_count,
        len(messages),
    )
    return summary, messages
