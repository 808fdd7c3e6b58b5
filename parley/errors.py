"""Exception taxonomy shared by the chat and summary services."""


class ParleyError(Exception):
    """Base class for all errors raised by the core."""


class ValidationError(ParleyError):
    """Bad input: empty message, out-of-range temperature, unknown model, etc."""


class AuthorizationError(ParleyError):
    """The requester does not own the conversation."""


class ConversationNotFoundError(ParleyError):
    """No conversation exists with the requested id."""


class UpstreamError(ParleyError):
    """The LLM provider failed (HTTP status, network, or SDK error)."""


class PersistenceError(ParleyError):
    """The persistence gateway failed to read or write."""


class CostLookupError(ParleyError):
    """Generation cost data could not be fetched. Never surfaced to callers."""
