"""
Similarity scoring and ranking for long-term memory recall.
"""

import math
from typing import List, Sequence

import numpy as np
import structlog

from chat_memory.persist.embedding_codec import decode_embedding
from chat_memory.schemas import LongTermMemory, ScoredMemory


logger = structlog.get_logger(__name__)


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm, the shapes differ, or
    the result is not finite (NaN or overflowing components).
    The result is clamped to [-1, 1] to absorb float rounding.
    """
    vec_a = np.asarray(a, dtype=np.float64).ravel()
    vec_b = np.asarray(b, dtype=np.float64).ravel()

    if vec_a.size == 0 or vec_a.shape != vec_b.shape:
        return 0.0

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    if not math.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def score_memories(query_vector: Sequence[float], memories: List[LongTermMemory]) -> List[ScoredMemory]:
    """
    Score every memory against the query vector.

    A memory whose embedding cannot be decoded scores 0.0.
    """
    scored = []
    for memory in memories:
        try:
            vector = decode_embedding(memory.embedding)
        except ValueError as e:
            logger.warning("memory_embedding_corrupt", memory_id=memory.id, error=str(e))
            score = 0.0
        else:
            score = cosine_similarity(query_vector, vector)
        scored.append(ScoredMemory(memory=memory, score=score))
    return scored


def rank_memories(scored: List[ScoredMemory], top_n: int, threshold: float) -> List[ScoredMemory]:
    """
    Sort by descending score, keep scores >= threshold, truncate to top_n.

    ``sorted`` is stable, so equal scores keep their input order.
    """
    if top_n <= 0:
        return []
    ranked = sorted(scored, key=lambda s: -s.score)
    return [s for s in ranked if s.score >= threshold][:top_n]


def format_memory_context(memories: List[ScoredMemory]) -> str:
    """
    Render recalled memories as a system-message block.

    Returns:
        Formatted block, or "" when there is nothing to show
    """
    if not memories:
        return ""

    lines = ["[MEMORY NOTES]", "Things you remember about this user from earlier conversations:"]
    for i, hit in enumerate(memories, 1):
        lines.append(f"{i}. ({hit.memory.memory_type}) {hit.memory.text}")
    lines.append("[/MEMORY NOTES]")
    return "\n".join(lines)
