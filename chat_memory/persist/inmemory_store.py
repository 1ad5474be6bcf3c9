"""
In-process repository for tests and throwaway sessions.

Same contract as ``SQLiteRepository``; all state lives in dicts guarded by
a single lock, and records are copied on the way in and out so callers
cannot mutate stored state.
"""

import threading
import time
from typing import Dict, Iterable, List, Optional, Sequence

from chat_memory.errors import NotFoundError, StorageError
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
from .repository import Repository


class InMemoryRepository(Repository):
    """Dict-backed repository; thread-safe, not persistent."""

    def __init__(self):
        self._lock = threading.RLock()
        self.conversations: Dict[str, Conversation] = {}
        self.turns: Dict[str, List[Turn]] = {}
        self.next_orders: Dict[str, int] = {}
        self.memories: Dict[str, LongTermMemory] = {}
        self.reflections: Dict[str, Reflection] = {}

    def _require_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    # Conversations

    def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title)
        with self._lock:
            self.conversations[conversation.id] = conversation
            self.turns[conversation.id] = []
            self.next_orders[conversation.id] = 1
        return conversation.model_copy()

    def get_conversation(self, conversation_id: str) -> Conversation:
        with self._lock:
            return self._require_conversation(conversation_id).model_copy()

    def list_conversations(self, user_id: str) -> List[Conversation]:
        with self._lock:
            owned = [c.model_copy() for c in self.conversations.values() if c.user_id == user_id]
        # Stable sort keeps newer insertions ahead on equal timestamps
        owned.reverse()
        owned.sort(key=lambda c: c.last_activity_at, reverse=True)
        return owned

    def touch_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._require_conversation(conversation_id).last_activity_at = time.time()

    def update_conversation_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        with self._lock:
            conversation = self._require_conversation(conversation_id)
            conversation.status = status
            return conversation.model_copy()

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            if conversation_id not in self.conversations:
                return False
            del self.conversations[conversation_id]
            self.turns.pop(conversation_id, None)
            self.next_orders.pop(conversation_id, None)
            return True

    # Turns

    def get_next_order(self, conversation_id: str) -> int:
        with self._lock:
            self._require_conversation(conversation_id)
            order = self.next_orders[conversation_id]
            self.next_orders[conversation_id] = order + 1
            return order

    def create_turn(self, conversation_id: str, order: int, draft: TurnDraft) -> Turn:
        with self._lock:
            conversation = self._require_conversation(conversation_id)
            existing = self.turns[conversation_id]
            if existing and order <= existing[-1].order:
                raise StorageError(
                    f"Turn order {order} is not greater than {existing[-1].order} in {conversation_id}"
                )
            turn = Turn(
                conversation_id=conversation_id,
                order=order,
                role=draft.role,
                content=draft.content,
                token_count=draft.token_count,
                metadata=draft.metadata,
            )
            existing.append(turn)
            self.next_orders[conversation_id] = max(self.next_orders[conversation_id], order + 1)
            conversation.last_activity_at = turn.created_at
            return turn.model_copy(deep=True)

    def append_turns(self, conversation_id: str, drafts: Sequence[TurnDraft]) -> List[Turn]:
        if not drafts:
            return []

        with self._lock:
            conversation = self._require_conversation(conversation_id)
            first = self.next_orders[conversation_id]
            now = time.time()
            turns = [
                Turn(
                    conversation_id=conversation_id,
                    order=first + offset,
                    role=draft.role,
                    content=draft.content,
                    token_count=draft.token_count,
                    metadata=draft.metadata,
                    created_at=now,
                )
                for offset, draft in enumerate(drafts)
            ]
            self.turns[conversation_id].extend(turns)
            self.next_orders[conversation_id] = first + len(turns)
            conversation.last_activity_at = now
            return [t.model_copy(deep=True) for t in turns]

    def list_turns(self, conversation_id: str, from_order: Optional[int] = None) -> List[Turn]:
        with self._lock:
            turns = self.turns.get(conversation_id, [])
            if from_order is not None:
                turns = [t for t in turns if t.order >= from_order]
            return [t.model_copy(deep=True) for t in turns]

    def list_recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        with self._lock:
            return [t.model_copy(deep=True) for t in self.turns.get(conversation_id, [])[-limit:]]

    def count_turns(
        self,
        conversation_id: str,
        role: Optional[SenderRole] = None,
        through_order: Optional[int] = None,
    ) -> int:
        with self._lock:
            return sum(
                1 for t in self.turns.get(conversation_id, [])
                if (role is None or t.role == role)
                and (through_order is None or t.order <= through_order)
            )

    def conversation_token_total(self, conversation_id: str) -> int:
        with self._lock:
            return sum(t.token_count for t in self.turns.get(conversation_id, []))

    # Long-term memories

    def create_memory(self, memory: LongTermMemory) -> LongTermMemory:
        with self._lock:
            if memory.id in self.memories:
                raise StorageError(f"Memory {memory.id} already exists")
            self.memories[memory.id] = memory.model_copy(deep=True)
        return memory

    def get_memory(self, memory_id: str) -> LongTermMemory:
        with self._lock:
            memory = self.memories.get(memory_id)
            if memory is None:
                raise NotFoundError(f"Memory {memory_id} not found")
            return memory.model_copy(deep=True)

    def list_memories(self, user_id: str) -> List[LongTermMemory]:
        # dicts preserve insertion order
        with self._lock:
            return [m.model_copy(deep=True) for m in self.memories.values() if m.user_id == user_id]

    def update_memory_access_time(self, memory_ids: Iterable[str], accessed_at: float) -> int:
        updated = 0
        with self._lock:
            for memory_id in memory_ids:
                memory = self.memories.get(memory_id)
                if memory is not None:
                    memory.last_accessed_at = accessed_at
                    updated += 1
        return updated

    # Reflections

    def create_reflection(self, reflection: Reflection) -> Reflection:
        with self._lock:
            if reflection.id in self.reflections:
                raise StorageError(f"Reflection {reflection.id} already exists")
            self.reflections[reflection.id] = reflection.model_copy(deep=True)
        return reflection

    def get_reflection(self, reflection_id: str) -> Reflection:
        with self._lock:
            reflection = self.reflections.get(reflection_id)
            if reflection is None:
                raise NotFoundError(f"Reflection {reflection_id} not found")
            return reflection.model_copy(deep=True)

    def list_reflections(self, user_id: str, status: Optional[ReflectionStatus] = None) -> List[Reflection]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self.reflections.values()
                if r.user_id == user_id and (status is None or r.status == status)
            ]

    def update_reflection_status(self, reflection_id: str, status: ReflectionStatus) -> Reflection:
        with self._lock:
            reflection = self.reflections.get(reflection_id)
            if reflection is None:
                raise NotFoundError(f"Reflection {reflection_id} not found")
            reflection.status = status
            reflection.updated_at = time.time()
            return reflection.model_copy(deep=True)
