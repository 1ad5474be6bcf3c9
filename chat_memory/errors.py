"""Exceptions raised by the memory orchestration core."""


class ChatMemoryError(Exception):
    """Base class for all chat memory errors."""

    retryable = False


class PreconditionError(ChatMemoryError):
    """Raised before any side effect when a call's inputs are invalid."""
    pass


class NotFoundError(PreconditionError):
    """Raised when a conversation or record does not exist for the caller."""
    pass


class BackendUnavailableError(ChatMemoryError):
    """Raised when the model or embedding backend cannot serve a request."""

    retryable = True


class EmbeddingError(ChatMemoryError):
    """Raised when an embedding vector is empty or not usable."""
    pass


class StorageError(ChatMemoryError):
    """Raised when the repository fails for reasons other than a missing record."""
    pass
