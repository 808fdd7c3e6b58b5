"""Persistence gateway for conversations, messages and summaries."""

from parley.storage.models import Conversation, Message, Summary
from parley.storage.store import ChatRepository, ChatStore

__all__ = ["ChatRepository", "ChatStore", "Conversation", "Message", "Summary"]
