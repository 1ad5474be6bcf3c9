"""Test configuration and fixtures."""

from typing import Callable, Generator, List

import pytest

from chat_memory.config import Settings
from chat_memory.generation import MockGenerator
from chat_memory.persist import InMemoryRepository, SQLiteRepository
from chat_memory.schemas import Conversation, Turn, TurnDraft


@pytest.fixture
def repo() -> InMemoryRepository:
    """Fresh in-process repository."""
    return InMemoryRepository()


@pytest.fixture
def sqlite_repo(tmp_path) -> Generator[SQLiteRepository, None, None]:
    """SQLite repository on a temporary file."""
    store = SQLiteRepository(tmp_path / "chat_memory.db")
    yield store
    store.close()


@pytest.fixture
def generator() -> MockGenerator:
    """Scripted generator with no responses queued."""
    return MockGenerator()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def user_id() -> str:
    return "user_alice"


@pytest.fixture
def conversation(repo, user_id) -> Conversation:
    return repo.create_conversation(user_id, title="test chat")


@pytest.fixture
def add_turns(repo) -> Callable[..., List[Turn]]:
    """
    Append turns to a conversation.

    Each item is ``(role, content)`` or ``(role, content, token_count)``.
    """
    def _add(conversation_id: str, *turn_specs) -> List[Turn]:
        drafts = []
        for item in turn_specs:
            role, content = item[0], item[1]
            token_count = item[2] if len(item) > 2 else len(content)
            drafts.append(TurnDraft(role=role, content=content, token_count=token_count))
        return repo.append_turns(conversation_id, drafts)

    return _add
