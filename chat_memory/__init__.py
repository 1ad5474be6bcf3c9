"""
chat-memory: conversational memory engine for local LLM chat.

Short-term context windows, long-term semantic memory, reflection
synthesis and single-hop tool use around an Ollama (or mock) backend.
"""

from .chat import TurnOrchestrator, TurnResult
from .config import Settings
from .errors import (
    BackendUnavailableError,
    ChatMemoryError,
    EmbeddingError,
    NotFoundError,
    PreconditionError,
    StorageError,
)

__version__ = "0.1.0"

__all__ = [
    "TurnOrchestrator",
    "TurnResult",
    "Settings",
    "ChatMemoryError",
    "PreconditionError",
    "NotFoundError",
    "BackendUnavailableError",
    "EmbeddingError",
    "StorageError",
]
