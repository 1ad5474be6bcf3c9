"""
Unit tests for the turn pipeline.

Tests:
- Lazy conversation creation and paired persistence
- Preconditions checked before any backend call
- No partial persistence on backend failure
- Memory injection and window budgeting
- Reflection dispatch and isolation of its failures
- Linearizable turn orders under concurrent turns
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from structlog.testing import capture_logs

from chat_memory.chat import TurnOrchestrator
from chat_memory.config import Settings
from chat_memory.config.settings import MemoryCfg
from chat_memory.errors import BackendUnavailableError, NotFoundError, PreconditionError
from chat_memory.generation import MockGenerator
from chat_memory.ops import BackgroundRunner
from chat_memory.persist import InMemoryRepository


TIME_CALL = '{"tool_name": "get_current_time", "arguments": {}}'


def _make(repo, generator, **memory_overrides):
    settings = Settings(memory=MemoryCfg(**memory_overrides))
    return TurnOrchestrator(repo, generator, settings=settings, runner=BackgroundRunner(max_workers=1))


@pytest.fixture
def orchestrator(repo, generator):
    orch = _make(repo, generator, reflection_every_n=100)
    yield orch
    orch.runner.shutdown(wait=True)


# ============================================================================
# Happy Path Tests
# ============================================================================

def test_first_turn_creates_conversation(orchestrator, generator, repo, user_id):
    generator.responses.append("Hello there!")

    result = orchestrator.handle_turn(user_id, "Hi, I'm Alice.")

    assert result.reply == "Hello there!"
    assert result.conversation.user_id == user_id
    assert [c.id for c in repo.list_conversations(user_id)] == [result.conversation.id]
    assert (result.user_turn.order, result.assistant_turn.order) == (1, 2)
    assert result.user_turn.role == "user" and result.assistant_turn.role == "assistant"
    assert result.user_turn.token_count == 4
    assert result.assistant_turn.token_count == 3
    assert result.run_id


def test_follow_up_turn_sees_history(orchestrator, generator, user_id):
    generator.responses.extend(["Nice to meet you.", "You are Alice."])
    first = orchestrator.handle_turn(user_id, "I'm Alice.")

    second = orchestrator.handle_turn(user_id, "Who am I?", conversation_id=first.conversation.id)

    assert (second.user_turn.order, second.assistant_turn.order) == (3, 4)
    sent = generator.calls[1]["history"]
    assert sent[1:] == [
        {"role": "user", "content": "I'm Alice."},
        {"role": "assistant", "content": "Nice to meet you."},
    ]
    assert generator.calls[1]["prompt"] == "Who am I?"


def test_zero_budget_sends_no_history(repo, generator, user_id):
    orch = _make(repo, generator, context_token_limit=0, reflection_every_n=100)
    first = orch.handle_turn(user_id, "I'm Alice.")
    orch.handle_turn(user_id, "Who am I?", conversation_id=first.conversation.id)

    assert len(generator.calls[1]["history"]) == 1  # tool instruction only
    orch.runner.shutdown()


def test_budget_accounts_for_user_text(repo, generator, user_id, conversation, add_turns):
    add_turns(conversation.id, ("user", "old question", 3), ("assistant", "old answer", 3))
    orch = _make(repo, generator, context_token_limit=8, reflection_every_n=100)

    # "abcdefgh" costs 2 tokens, leaving room for exactly two 3-token turns
    orch.handle_turn(user_id, "abcdefgh", conversation_id=conversation.id)
    assert len(generator.calls[0]["history"]) == 3

    # 12 chars cost 3 tokens; the newest stored reply (12 tokens) no longer fits
    orch.handle_turn(user_id, "abcdefghijkl", conversation_id=conversation.id)
    assert len(generator.calls[1]["history"]) == 1
    orch.runner.shutdown()


def test_memories_injected_as_system_message(orchestrator, generator, repo, user_id):
    generator.embeddings["Plan my weekend"] = [1.0, 0.0]
    memory = orchestrator.memory_store.add_memory(
        user_id, "User loves hiking", "preference", embedding=[1.0, 0.0]
    )
    orchestrator.memory_store.add_memory(user_id, "User hates cheese", "preference", embedding=[0.0, 1.0])
    generator.responses.append("Go hiking!")

    result = orchestrator.handle_turn(user_id, "Plan my weekend")

    sent = generator.calls[0]["history"]
    assert sent[1]["role"] == "system"
    assert "User loves hiking" in sent[1]["content"]
    assert "User hates cheese" not in sent[1]["content"]
    assert [m.memory.id for m in result.memories] == [memory.id]
    assert result.assistant_turn.metadata["memory_ids"] == [memory.id]
    assert repo.get_memory(memory.id).last_accessed_at >= memory.last_accessed_at


def test_tool_turn_records_execution(orchestrator, generator, user_id):
    generator.responses.extend([TIME_CALL, "It's noon."])

    result = orchestrator.handle_turn(user_id, "What time is it?")

    assert result.reply == "It's noon."
    assert result.tool_execution.tool_name == "get_current_time"
    assert result.assistant_turn.metadata["tool"]["tool_name"] == "get_current_time"
    assert result.assistant_turn.metadata["tool"]["result"]["success"] is True
    assert len(generator.calls) == 2


def test_model_override(orchestrator, generator, user_id):
    result = orchestrator.handle_turn(user_id, "hi", model="llama3")
    assert generator.calls[0]["model"] == "llama3"
    assert result.assistant_turn.metadata["model"] == "llama3"


def test_pipeline_steps_logged(orchestrator, user_id):
    with capture_logs() as logs:
        orchestrator.handle_turn(user_id, "hi")

    steps = [e["step"] for e in logs if e["event"] == "turn_step"]
    assert steps == ["received", "context_assembled", "model_invoked", "persisted"]


# ============================================================================
# Precondition Tests
# ============================================================================

def test_missing_conversation_rejected_before_model(orchestrator, generator, user_id):
    with pytest.raises(NotFoundError):
        orchestrator.handle_turn(user_id, "hi", conversation_id="conv_missing")
    assert generator.calls == []
    assert generator.embed_calls == []


def test_foreign_conversation_rejected_before_model(orchestrator, generator, repo):
    foreign = repo.create_conversation("user_bob")

    with pytest.raises(NotFoundError):
        orchestrator.handle_turn("user_alice", "hi", conversation_id=foreign.id)
    assert generator.calls == []
    assert repo.count_turns(foreign.id) == 0


@pytest.mark.parametrize("status", ["ended", "archived"])
def test_inactive_conversation_rejected(orchestrator, generator, repo, user_id, conversation, status):
    repo.update_conversation_status(conversation.id, status)

    with pytest.raises(PreconditionError):
        orchestrator.handle_turn(user_id, "hi", conversation_id=conversation.id)
    assert generator.calls == []


@pytest.mark.parametrize("text", ["", "   ", None])
def test_blank_message_rejected(orchestrator, generator, user_id, text):
    with pytest.raises(PreconditionError):
        orchestrator.handle_turn(user_id, text)
    assert generator.calls == []


def test_blank_user_rejected(orchestrator):
    with pytest.raises(PreconditionError):
        orchestrator.handle_turn("", "hi")


# ============================================================================
# Failure Atomicity Tests
# ============================================================================

def test_failed_first_turn_persists_nothing(orchestrator, generator, repo, user_id):
    generator.responses.append(BackendUnavailableError("ollama down"))

    with pytest.raises(BackendUnavailableError):
        orchestrator.handle_turn(user_id, "hi")

    assert repo.list_conversations(user_id) == []


def test_failed_turn_leaves_conversation_untouched(orchestrator, generator, repo, user_id, conversation):
    generator.responses.extend(["first answer", BackendUnavailableError("ollama down")])
    orchestrator.handle_turn(user_id, "first", conversation_id=conversation.id)

    with pytest.raises(BackendUnavailableError):
        orchestrator.handle_turn(user_id, "second", conversation_id=conversation.id)

    assert [t.content for t in repo.list_turns(conversation.id)] == ["first", "first answer"]


def test_failed_followup_after_tool_persists_nothing(orchestrator, generator, repo, user_id, conversation):
    generator.responses.extend([TIME_CALL, BackendUnavailableError("ollama down")])

    with pytest.raises(BackendUnavailableError):
        orchestrator.handle_turn(user_id, "time?", conversation_id=conversation.id)

    assert repo.count_turns(conversation.id) == 0


def test_embedding_failure_aborts_before_model(orchestrator, generator, repo, user_id, conversation):
    orchestrator.memory_store.add_memory(user_id, "User likes tea", "preference", embedding=[1.0])
    generator.embed_error = BackendUnavailableError("embeddings down")

    with pytest.raises(BackendUnavailableError):
        orchestrator.handle_turn(user_id, "hi", conversation_id=conversation.id)

    assert generator.calls == []
    assert repo.count_turns(conversation.id) == 0


# ============================================================================
# Reflection Dispatch Tests
# ============================================================================

def test_reflection_dispatched_every_n_assistant_turns(repo, generator, user_id):
    orch = _make(repo, generator, reflection_every_n=2)
    generator.responses.extend(["one", "two", '["User counts turns."]'])

    first = orch.handle_turn(user_id, "turn one")
    second = orch.handle_turn(user_id, "turn two", conversation_id=first.conversation.id)

    assert not first.reflection_dispatched
    assert second.reflection_dispatched
    assert orch.runner.wait_idle(timeout=5)
    assert orch.runner.get(second.reflection_job_id).state == "succeeded"
    reflections = repo.list_reflections(user_id)
    assert [r.text for r in reflections] == ["User counts turns."]
    assert reflections[0].status == "processed"
    assert len(reflections[0].triggering_turn_ids) == 4
    orch.runner.shutdown()


def test_reflection_failure_does_not_fail_turn(repo, generator, user_id):
    orch = _make(repo, generator, reflection_every_n=1)
    generator.responses.extend(["answer", BackendUnavailableError("ollama down")])

    result = orch.handle_turn(user_id, "hello")

    assert result.reply == "answer"
    assert orch.runner.wait_idle(timeout=5)
    assert orch.runner.get(result.reflection_job_id).state == "failed"
    assert repo.count_turns(result.conversation.id) == 2
    orch.runner.shutdown()


def test_dispatch_error_is_logged_not_raised(repo, generator, user_id):
    orch = _make(repo, generator, reflection_every_n=1)
    orch.runner.shutdown()

    with capture_logs() as logs:
        result = orch.handle_turn(user_id, "hello")

    assert result.reply
    assert not result.reflection_dispatched
    assert any(e["event"] == "reflection_dispatch_failed" for e in logs)


def test_reflect_now(orchestrator, generator, repo, user_id):
    generator.responses.extend(["ok", '["User said hello."]'])
    result = orchestrator.handle_turn(user_id, "hello")

    reflections = orchestrator.reflect_now(user_id, result.conversation.id)

    assert [r.text for r in reflections] == ["User said hello."]


# ============================================================================
# Conversation Lifecycle Tests
# ============================================================================

def test_start_end_archive(orchestrator, repo, user_id):
    conversation = orchestrator.start_conversation(user_id, title="Trip planning")
    assert conversation.status == "active"
    assert conversation.title == "Trip planning"

    assert orchestrator.end_conversation(user_id, conversation.id).status == "ended"
    assert orchestrator.archive_conversation(user_id, conversation.id).status == "archived"

    with pytest.raises(NotFoundError):
        orchestrator.end_conversation("user_bob", conversation.id)


def test_conversation_history(orchestrator, generator, user_id):
    generator.responses.extend(["a1", "a2"])
    first = orchestrator.handle_turn(user_id, "q1")
    orchestrator.handle_turn(user_id, "q2", conversation_id=first.conversation.id)

    history = orchestrator.conversation_history(user_id, first.conversation.id)

    assert [t.content for t in history] == ["q1", "a1", "q2", "a2"]
    assert [t.order for t in history] == [1, 2, 3, 4]
    with pytest.raises(NotFoundError):
        orchestrator.conversation_history("user_bob", first.conversation.id)


# ============================================================================
# Concurrency Tests
# ============================================================================

@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_concurrent_turns_get_unique_orders(backend, repo, sqlite_repo, user_id):
    store = repo if backend == "memory" else sqlite_repo
    orch = _make(store, MockGenerator(default_response="ok"), reflection_every_n=1000)
    conversation = orch.start_conversation(user_id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(
            lambda i: orch.handle_turn(user_id, f"message {i}", conversation_id=conversation.id),
            range(24),
        ))

    orders = [t.order for r in results for t in (r.user_turn, r.assistant_turn)]
    assert len(orders) == len(set(orders)) == 48
    assert all(r.assistant_turn.order == r.user_turn.order + 1 for r in results)
    stored = [t.order for t in store.list_turns(conversation.id)]
    assert stored == sorted(set(orders))
    orch.runner.shutdown()


class CountBarrierRepository(InMemoryRepository):
    """Holds every assistant count until both turns have been persisted."""

    def __init__(self, parties: int):
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def count_turns(self, conversation_id, role=None, through_order=None):
        if role == "assistant":
            self.barrier.wait()
        return super().count_turns(conversation_id, role=role, through_order=through_order)


def test_concurrent_turns_dispatch_reflection_once(user_id):
    store = CountBarrierRepository(parties=2)
    orch = _make(store, MockGenerator(default_response="ok"), reflection_every_n=2)
    conversation = orch.start_conversation(user_id)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(
            lambda i: orch.handle_turn(user_id, f"message {i}", conversation_id=conversation.id),
            range(2),
        ))

    assert sorted(r.assistant_turn.order for r in results) == [2, 4]
    assert sum(r.reflection_dispatched for r in results) == 1
    dispatched = next(r for r in results if r.reflection_dispatched)
    assert dispatched.assistant_turn.order == 4
    assert orch.runner.wait_idle(timeout=5)
    orch.runner.shutdown()
