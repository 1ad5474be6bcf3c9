"""
Long-term memory store.

Adds user-scoped memories with embeddings and retrieves the most similar
ones for a query. Retrieval marks the returned records as accessed.
"""

import time
from typing import Callable, List, Optional, Sequence, get_args

import numpy as np
import structlog

from chat_memory.errors import EmbeddingError, PreconditionError
from chat_memory.generation.generator import BaseGenerator
from chat_memory.persist.embedding_codec import encode_embedding
from chat_memory.persist.repository import Repository
from chat_memory.schemas import LongTermMemory, MemoryType, ScoredMemory
from .recall import rank_memories, score_memories


logger = structlog.get_logger(__name__)

MEMORY_TYPES = get_args(MemoryType)


class LongTermMemoryStore:
    """
    User-scoped semantic memory.

    Args:
        repository: Persistence backend
        generator: Backend used for embeddings
        embed_model: Embedding model name passed to ``generator.embed``
        clock: Time source for access timestamps
    """

    def __init__(
        self,
        repository: Repository,
        generator: BaseGenerator,
        embed_model: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.generator = generator
        self.embed_model = embed_model
        self.clock = clock

    def add_memory(
        self,
        user_id: str,
        text: str,
        memory_type: MemoryType,
        importance_score: float = 0.5,
        source_turn_ids: Optional[List[str]] = None,
        source_reflection_id: Optional[str] = None,
        embedding: Optional[Sequence[float]] = None,
    ) -> LongTermMemory:
        """
        Store a new memory, embedding its text when no vector is given.

        Args:
            user_id: Owning user
            text: Memory text
            memory_type: fact, preference, goal, synthesized or observation
            importance_score: Value in [0, 1]
            source_turn_ids: Turns the memory was derived from
            source_reflection_id: Reflection it was promoted from
            embedding: Precomputed vector

        Returns:
            The stored LongTermMemory

        Raises:
            PreconditionError: Invalid text, type or importance
            EmbeddingError: The vector is empty or not finite
            BackendUnavailableError: The embedding call failed
        """
        if not isinstance(text, str) or not text.strip():
            raise PreconditionError("Memory text must be a non-empty string")
        if memory_type not in MEMORY_TYPES:
            raise PreconditionError(f"Unknown memory type: {memory_type!r}")
        if not 0.0 <= importance_score <= 1.0:
            raise PreconditionError(f"importance_score must be in [0, 1], got {importance_score}")

        if embedding is None:
            embedding = self.generator.embed(text, model=self.embed_model)

        if embedding is None or len(embedding) == 0:
            raise EmbeddingError(f"Embedding backend returned no vector for memory of user {user_id}")
        try:
            blob = encode_embedding(embedding)
        except ValueError as e:
            raise EmbeddingError(str(e)) from e

        now = self.clock()
        memory = LongTermMemory(
            user_id=user_id,
            text=text,
            embedding=blob,
            memory_type=memory_type,
            importance_score=importance_score,
            source_turn_ids=source_turn_ids,
            source_reflection_id=source_reflection_id,
            created_at=now,
            last_accessed_at=now,
        )
        stored = self.repository.create_memory(memory)
        logger.info(
            "memory_added",
            user_id=user_id,
            memory_id=stored.id,
            memory_type=memory_type,
            dim=len(embedding),
        )
        return stored

    def find_relevant(
        self,
        user_id: str,
        query_text: str,
        top_n: int = 3,
        similarity_threshold: float = 0.5,
    ) -> List[ScoredMemory]:
        """
        Retrieve the user's memories most similar to ``query_text``.

        Args:
            user_id: Owning user
            query_text: Text to match
            top_n: Maximum number of results
            similarity_threshold: Minimum cosine similarity

        Returns:
            Hits sorted by descending score; empty when the query is blank,
            the user has no memories, or nothing clears the threshold

        Raises:
            BackendUnavailableError: The query embedding call failed
        """
        if not isinstance(query_text, str) or not query_text.strip():
            return []
        if top_n <= 0:
            return []

        memories = self.repository.list_memories(user_id)
        if not memories:
            return []

        query_vector = self.generator.embed(query_text, model=self.embed_model)
        if query_vector is None or len(query_vector) == 0:
            logger.warning("query_embedding_empty", user_id=user_id)
            return []
        if not np.isfinite(np.asarray(query_vector, dtype=np.float64)).all():
            logger.warning("query_embedding_not_finite", user_id=user_id)
            return []

        hits = rank_memories(score_memories(query_vector, memories), top_n, similarity_threshold)
        if not hits:
            return []

        accessed_at = self.clock()
        self.repository.update_memory_access_time([h.memory.id for h in hits], accessed_at)
        for hit in hits:
            hit.memory.last_accessed_at = accessed_at

        logger.debug(
            "memories_recalled",
            user_id=user_id,
            candidates=len(memories),
            returned=len(hits),
            top_score=round(hits[0].score, 4),
        )
        return hits

    def list_memories(self, user_id: str) -> List[LongTermMemory]:
        """All memories of a user in insertion order."""
        return self.repository.list_memories(user_id)
