"""
Repository contract for conversations, turns, memories and reflections.

Implementations raise ``NotFoundError`` for missing records and
``StorageError`` for everything else that goes wrong in storage.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from chat_memory.schemas import (
    Conversation,
    ConversationStatus,
    LongTermMemory,
    Reflection,
    ReflectionStatus,
    SenderRole,
    Turn,
    TurnDraft,
)


class Repository(ABC):
    """Abstract storage for the memory orchestration core."""

    # Conversations

    @abstractmethod
    def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        """Create an active conversation for a user."""
        pass

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Conversation:
        """Fetch a conversation or raise ``NotFoundError``."""
        pass

    @abstractmethod
    def list_conversations(self, user_id: str) -> List[Conversation]:
        """List a user's conversations, most recently active first."""
        pass

    @abstractmethod
    def touch_conversation(self, conversation_id: str) -> None:
        """Set ``last_activity_at`` to now."""
        pass

    @abstractmethod
    def update_conversation_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its turns."""
        pass

    # Turns

    @abstractmethod
    def get_next_order(self, conversation_id: str) -> int:
        """
        Atomically reserve the next turn order for a conversation.

        Two callers never receive the same value.
        """
        pass

    @abstractmethod
    def create_turn(self, conversation_id: str, order: int, draft: TurnDraft) -> Turn:
        """Insert a turn at an order previously reserved with ``get_next_order``."""
        pass

    @abstractmethod
    def append_turns(self, conversation_id: str, drafts: Sequence[TurnDraft]) -> List[Turn]:
        """
        Append turns with consecutive new orders in one transaction.

        Either every draft is stored and the conversation is touched,
        or nothing is written.
        """
        pass

    @abstractmethod
    def list_turns(self, conversation_id: str, from_order: Optional[int] = None) -> List[Turn]:
        """List turns oldest to newest, optionally starting at ``from_order``."""
        pass

    @abstractmethod
    def list_recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        """Return the newest ``limit`` turns in chronological order."""
        pass

    @abstractmethod
    def count_turns(
        self,
        conversation_id: str,
        role: Optional[SenderRole] = None,
        through_order: Optional[int] = None,
    ) -> int:
        """Count turns, optionally by role and only up to and including ``through_order``."""
        pass

    @abstractmethod
    def conversation_token_total(self, conversation_id: str) -> int:
        """Sum of ``token_count`` over the conversation's turns."""
        pass

    # Long-term memories

    @abstractmethod
    def create_memory(self, memory: LongTermMemory) -> LongTermMemory:
        pass

    @abstractmethod
    def get_memory(self, memory_id: str) -> LongTermMemory:
        pass

    @abstractmethod
    def list_memories(self, user_id: str) -> List[LongTermMemory]:
        """List a user's memories in insertion order."""
        pass

    @abstractmethod
    def update_memory_access_time(self, memory_ids: Iterable[str], accessed_at: float) -> int:
        """Set ``last_accessed_at`` on the given memories; returns rows updated."""
        pass

    # Reflections

    @abstractmethod
    def create_reflection(self, reflection: Reflection) -> Reflection:
        pass

    @abstractmethod
    def get_reflection(self, reflection_id: str) -> Reflection:
        pass

    @abstractmethod
    def list_reflections(self, user_id: str, status: Optional[ReflectionStatus] = None) -> List[Reflection]:
        pass

    @abstractmethod
    def update_reflection_status(self, reflection_id: str, status: ReflectionStatus) -> Reflection:
        pass

    def close(self) -> None:
        """Release resources held by the repository."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
