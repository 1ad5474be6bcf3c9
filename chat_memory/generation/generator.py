"""Model backend contract and an in-process mock implementation."""
from __future__ import annotations

import hashlib
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

import numpy as np


@dataclass
class GenerationConfig:
    """Configuration for text generation."""
    temperature: float = 0.7
    max_new_tokens: Optional[int] = None


@dataclass
class GeneratedResponse:
    """Container for generated response with metadata."""
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model_used: str = ""
    processing_time: float = 0.0


class BaseGenerator(ABC):
    """
    Abstract chat-completion and embedding backend.

    ``history`` is an ordered list of ``{"role", "content"}`` dicts; the
    prompt is sent after it as the final user message.
    """

    @abstractmethod
    def complete(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        model: Optional[str] = None,
    ) -> GeneratedResponse:
        """Generate a reply to ``prompt`` given prior ``history``."""
        pass

    @abstractmethod
    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """Return an embedding vector for ``text``."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend is reachable."""
        pass


def hash_embedding(text: str, dim: int = 64) -> List[float]:
    """
    Deterministic unit-length pseudo-embedding derived from a text hash.

    Identical texts map to identical vectors; different texts are
    close to orthogonal in expectation.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
    rng = np.random.default_rng(seed)
    vector = rng.standard_normal(dim)
    norm = float(np.linalg.norm(vector))
    return (vector / norm).tolist() if norm > 0 else vector.tolist()


class MockGenerator(BaseGenerator):
    """
    Scripted generator for tests and offline runs.

    Responses are consumed in order; an ``Exception`` instance in the
    script is raised instead of returned. When the script runs out the
    ``default_response`` is used. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        responses: Optional[Iterable[Union[str, Exception]]] = None,
        default_response: str = "Based on what you told me, here is my answer.",
        embeddings: Optional[Dict[str, List[float]]] = None,
        dim: int = 64,
    ):
        self.responses = deque(responses or [])
        self.default_response = default_response
        self.embeddings = dict(embeddings or {})
        self.dim = dim
        self.calls: List[Dict[str, object]] = []
        self.embed_calls: List[str] = []
        self.embed_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def complete(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        model: Optional[str] = None,
    ) -> GeneratedResponse:
        start_time = time.time()
        history = list(history or [])

        with self._lock:
            self.calls.append({"prompt": prompt, "history": history, "model": model})
            scripted = self.responses.popleft() if self.responses else self.default_response

        if isinstance(scripted, Exception):
            raise scripted

        prompt_chars = len(prompt) + sum(len(m.get("content", "")) for m in history)
        return GeneratedResponse(
            text=scripted,
            prompt_tokens=math.ceil(prompt_chars / 4),
            completion_tokens=math.ceil(len(scripted) / 4),
            model_used=model or "mock_generator",
            processing_time=time.time() - start_time,
        )

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        with self._lock:
            self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        if text in self.embeddings:
            return list(self.embeddings[text])
        return hash_embedding(text, self.dim)

    def is_available(self) -> bool:
        """Mock generator is always available."""
        return True
