"""
Shared fixtures for unit tests.
"""
import pytest

from chat_memory.memory import LongTermMemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(repo, generator, clock):
    """Long-term memory store over the in-process repository."""
    return LongTermMemoryStore(repo, generator, embed_model="nomic-embed-text", clock=clock)
