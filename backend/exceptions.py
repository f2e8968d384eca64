"""Custom exception classes for the chat pipeline."""


class RagChatError(Exception):
    """Base exception for chat pipeline errors."""
    pass


class InputError(RagChatError):
    """Raised when a user message is missing or empty after sanitization."""
    pass


class ProviderUnavailableError(RagChatError):
    """Raised when an upstream provider cannot serve the request."""
    pass


class EmbeddingUnavailableError(ProviderUnavailableError):
    """Raised when the embedding provider fails or returns a malformed payload."""
    pass


class VectorStoreError(ProviderUnavailableError):
    """Raised when the vector index / document store cannot be reached."""
    pass


class ConversationStoreError(ProviderUnavailableError):
    """Raised when a durable conversation store operation fails."""
    pass
