"""
Memory components for the chat engine.

Provides:
- Token estimation
- Short-term context window construction
- Long-term memory storage and similarity recall
- Reflection synthesis and its trigger policy
- Permissive JSON parsing of model output
"""

from .tokens import TokenEstimator, CharRatioEstimator, estimate_tokens
from .window import ShortTermWindow, select_suffix
from .recall import cosine_similarity, rank_memories, score_memories, format_memory_context
from .store import LongTermMemoryStore
from .parsing import JsonParse, extract_json_array, parse_json_object
from .reflection import ReflectionSynthesizer
from .policy import ReflectionPolicy

__all__ = [
    "TokenEstimator",
    "CharRatioEstimator",
    "estimate_tokens",
    "ShortTermWindow",
    "select_suffix",
    "cosine_similarity",
    "rank_memories",
    "score_memories",
    "format_memory_context",
    "LongTermMemoryStore",
    "JsonParse",
    "extract_json_array",
    "parse_json_object",
    "ReflectionSynthesizer",
    "ReflectionPolicy",
]
