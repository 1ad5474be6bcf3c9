"""
Persistence layer for the chat memory engine.

Provides:
- Repository contract (conversations, turns, memories, reflections)
- SQLite-backed repository with atomic turn-order assignment
- In-process repository for tests and ephemeral sessions
- Embedding blob encoding/decoding
"""

from .repository import Repository
from .sqlite_store import SQLiteRepository
from .inmemory_store import InMemoryRepository
from .embedding_codec import encode_embedding, decode_embedding

__all__ = [
    "Repository",
    "SQLiteRepository",
    "InMemoryRepository",
    "encode_embedding",
    "decode_embedding",
]
