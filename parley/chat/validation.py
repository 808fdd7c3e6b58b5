"""Input checks for chat and summarize requests.

Each check raises ``ValidationError`` with a caller-facing message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from parley.errors import AuthorizationError, ConversationNotFoundError, ValidationError
from parley.storage.models import RESPONSE_FORMATS

if TYPE_CHECKING:
    from parley.llm.models import ModelCatalog
    from parley.storage import ChatRepository, Conversation

logger = logging.getLogger(__name__)

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def validate_message(message: str) -> None:
    if not message:
        raise ValidationError("message cannot be empty")


def validate_temperature(temperature: float | None) -> None:
    if temperature is None:
        return
    if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        msg = f"temperature must be between 0 and 2, got {temperature:.2f}"
        raise ValidationError(msg)


def validate_model(model: str | None, catalog: ModelCatalog, provider_name: str | None = None) -> None:
    """Check *model* is in the catalog and, when given, served by *provider_name*."""
    if not model:
        return
    if not catalog.is_valid(model):
        msg = f"invalid model specified: {model}"
        raise ValidationError(msg)
    backend = catalog.backend_of(model)
    if provider_name and backend != provider_name:
        msg = f"model {model} is served by provider '{backend}', not '{provider_name}'"
        raise ValidationError(msg)


def validate_response_format(response_format: str | None) -> None:
    if response_format and response_format not in RESPONSE_FORMATS:
        msg = f"response_format must be one of: text, json, xml; got {response_format}"
        raise ValidationError(msg)


def validate_response_schema(response_format: str | None, response_schema: str | None) -> None:
    """Structured formats need a schema to constrain the output."""
    if response_format in ("json", "xml") and not response_schema:
        msg = f"response_schema is required for {response_format} format"
        raise ValidationError(msg)


def validate_corpus_percent(percent: int) -> None:
    if percent < 0 or percent > 100:
        msg = f"reference_corpus_percent must be between 0 and 100, got {percent}"
        raise ValidationError(msg)


async def get_owned_conversation(
    store: ChatRepository, conversation_id: str, user_id: str
) -> Conversation:
    """Load a conversation and check that *user_id* owns it.

    Raises:
        ConversationNotFoundError: no conversation with that id.
        AuthorizationError: the conversation belongs to someone else.
    """
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        msg = f"conversation {conversation_id} not found"
        raise ConversationNotFoundError(msg)
    if conversation.user_id != user_id:
        logger.warning(
            "User %s denied access to conversation %s", user_id, conversation_id
        )
        raise AuthorizationError("user does not own this conversation")
    return conversation
