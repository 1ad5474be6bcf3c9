"""
Conversation memory data models.

Defines conversations, turns, long-term memories and reflections.
"""

import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# Type aliases
SenderRole = Literal["user", "assistant", "system"]
MemoryType = Literal["fact", "preference", "goal", "synthesized", "observation"]
ReflectionStatus = Literal["pending", "processed", "archived"]
ConversationStatus = Literal["active", "archived", "ended"]


def new_id(prefix: str) -> str:
    """Generate a short prefixed identifier, e.g. ``mem_3f9c0a1b2c4d``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Conversation(BaseModel):
    """A dialogue owned by one user."""

    id: str = Field(default_factory=lambda: new_id("conv"), description="Unique identifier")
    user_id: str = Field(..., description="Owning user")
    title: Optional[str] = Field(None, description="Optional display title")
    status: ConversationStatus = Field("active", description="Lifecycle status")
    created_at: float = Field(default_factory=time.time, description="Unix timestamp")
    last_activity_at: float = Field(default_factory=time.time, description="Last stored turn")


class TurnDraft(BaseModel):
    """A turn that has not been assigned an order yet."""

    role: SenderRole
    content: str
    token_count: int = Field(0, ge=0)
    metadata: Optional[Dict[str, Any]] = None


class Turn(BaseModel):
    """
    A single stored message within a conversation.

    ``order`` is strictly increasing per conversation; gaps are allowed.
    """

    id: str = Field(default_factory=lambda: new_id("turn"))
    conversation_id: str
    order: int = Field(..., ge=1, description="Position within the conversation")
    role: SenderRole
    content: str
    token_count: int = Field(0, ge=0, description="Estimated token cost")
    metadata: Optional[Dict[str, Any]] = Field(None, description="e.g. which tool fired")
    created_at: float = Field(default_factory=time.time)

    def as_message(self) -> Dict[str, str]:
        """Render as a ``{role, content}`` dict for the model backend."""
        return {"role": self.role, "content": self.content}


class LongTermMemory(BaseModel):
    """
    A durable, embedding-indexed memory owned by a user.

    The embedding is kept as an opaque blob; only the similarity code
    decodes it (see ``chat_memory.persist.embedding_codec``).
    """

    id: str = Field(default_factory=lambda: new_id("mem"))
    user_id: str
    text: str
    embedding: bytes = Field(..., repr=False)
    memory_type: MemoryType
    importance_score: float = Field(0.5, ge=0.0, le=1.0)
    source_turn_ids: Optional[List[str]] = None
    source_reflection_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    last_accessed_at: float = Field(default_factory=time.time)

    def snippet(self, max_chars: int = 100) -> str:
        """Get truncated text for display."""
        if len(self.text) <= max_chars:
            return self.text
        return self.text[:max_chars - 3] + "..."


class ScoredMemory(BaseModel):
    """A retrieval hit: the memory plus its cosine similarity to the query."""

    memory: LongTermMemory
    score: float


class Reflection(BaseModel):
    """An insight synthesized from a batch of recent turns."""

    id: str = Field(default_factory=lambda: new_id("refl"))
    user_id: str
    text: str
    triggering_turn_ids: List[str] = Field(default_factory=list)
    status: ReflectionStatus = "pending"
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
