"""
Turn orchestration.

One call to ``handle_turn`` runs the whole pipeline for a user message:

    received -> context_assembled -> model_invoked -> (tool_resolved)
             -> persisted -> (reflection_dispatched)

The user and assistant turns are written in one repository transaction,
so a failure before ``persisted`` leaves no trace. Reflection runs on the
background runner and cannot fail the turn.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from chat_memory.config.settings import Settings
from chat_memory.errors import NotFoundError, PreconditionError
from chat_memory.generation.generator import BaseGenerator, GenerationConfig
from chat_memory.generation.ollama_generator import OllamaGenerator
from chat_memory.memory.policy import ReflectionPolicy
from chat_memory.memory.recall import format_memory_context
from chat_memory.memory.reflection import ReflectionSynthesizer
from chat_memory.memory.store import LongTermMemoryStore
from chat_memory.memory.tokens import CharRatioEstimator, TokenEstimator
from chat_memory.memory.window import ShortTermWindow
from chat_memory.ops.jobs import BackgroundRunner
from chat_memory.ops.telemetry import log_step, new_run_id
from chat_memory.persist.repository import Repository
from chat_memory.persist.sqlite_store import SQLiteRepository
from chat_memory.schemas import Conversation, Reflection, ScoredMemory, Turn, TurnDraft
from chat_memory.tools.orchestrator import ToolExecution, ToolOrchestrator
from chat_memory.tools.registry import ToolRegistry, default_registry


logger = structlog.get_logger(__name__)


@dataclass
class TurnResult:
    """Everything a caller needs to render one completed turn."""
    conversation: Conversation
    user_turn: Turn
    assistant_turn: Turn
    memories: List[ScoredMemory] = field(default_factory=list)
    tool_execution: Optional[ToolExecution] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    run_id: str = ""
    reflection_job_id: Optional[str] = None

    @property
    def reply(self) -> str:
        return self.assistant_turn.content

    @property
    def reflection_dispatched(self) -> bool:
        return self.reflection_job_id is not None


class TurnOrchestrator:
    """
    Coordinates memory, model and persistence for each chat turn.

    Args:
        repository: Persistence backend
        generator: Chat and embedding backend
        settings: Tunables (defaults used when omitted)
        registry: Tools offered to the model
        estimator: Token estimator for budgeting and stored counts
        runner: Background runner for reflection
    """

    def __init__(
        self,
        repository: Repository,
        generator: BaseGenerator,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        estimator: Optional[TokenEstimator] = None,
        runner: Optional[BackgroundRunner] = None,
    ):
        self.settings = settings or Settings()
        cfg = self.settings.memory

        self.repository = repository
        self.generator = generator
        self.chat_model = self.settings.ollama.chat_model
        self.estimator = estimator or CharRatioEstimator(cfg.chars_per_token)
        self.runner = runner or BackgroundRunner(
            max_workers=self.settings.jobs.max_workers,
            max_history=self.settings.jobs.max_history,
        )

        self.window = ShortTermWindow(repository)
        self.memory_store = LongTermMemoryStore(
            repository, generator, embed_model=self.settings.ollama.embed_model
        )
        self.synthesizer = ReflectionSynthesizer(
            repository,
            self.memory_store,
            generator,
            default_model=self.chat_model,
            importance=cfg.synthesized_importance,
        )
        self.tools = ToolOrchestrator(
            generator,
            registry or default_registry(),
            estimator=self.estimator,
            default_model=self.chat_model,
        )
        self.policy = ReflectionPolicy(every_n=cfg.reflection_every_n)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        generator: Optional[BaseGenerator] = None,
        repository: Optional[Repository] = None,
    ) -> "TurnOrchestrator":
        """Wire a SQLite repository and an Ollama backend from settings."""
        if generator is None:
            generator = OllamaGenerator(
                model=settings.ollama.chat_model,
                embed_model=settings.ollama.embed_model,
                base_url=settings.ollama.host,
                timeout=settings.ollama.timeout,
                config=GenerationConfig(temperature=settings.ollama.temperature),
            )
        if repository is None:
            repository = SQLiteRepository(settings.storage.db_path)
        return cls(repository, generator, settings=settings)

    # Conversations

    def start_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        """Create an empty conversation for ``user_id``."""
        _require_text(user_id, "user_id")
        conversation = self.repository.create_conversation(user_id, title=title)
        logger.info("conversation_started", user_id=user_id, conversation_id=conversation.id)
        return conversation

    def get_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        """
        Fetch a conversation owned by ``user_id``.

        Raises:
            NotFoundError: Missing, or owned by another user
        """
        try:
            conversation = self.repository.get_conversation(conversation_id)
        except NotFoundError:
            conversation = None
        if conversation is None or conversation.user_id != user_id:
            raise NotFoundError(f"Conversation {conversation_id} not found for user {user_id}")
        return conversation

    def list_conversations(self, user_id: str) -> List[Conversation]:
        return self.repository.list_conversations(user_id)

    def end_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        self.get_conversation(user_id, conversation_id)
        return self.repository.update_conversation_status(conversation_id, "ended")

    def archive_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        self.get_conversation(user_id, conversation_id)
        return self.repository.update_conversation_status(conversation_id, "archived")

    def conversation_history(self, user_id: str, conversation_id: str) -> List[Turn]:
        """All turns of a conversation, oldest first."""
        self.get_conversation(user_id, conversation_id)
        return self.repository.list_turns(conversation_id)

    # Turns

    def handle_turn(
        self,
        user_id: str,
        user_text: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> TurnResult:
        """
        Answer one user message and persist the exchange.

        Args:
            user_id: Caller; every conversation access is checked against it
            user_text: The message
            conversation_id: Existing conversation, or None to start one
            model: Chat model override

        Returns:
            TurnResult with both persisted turns

        Raises:
            PreconditionError: Blank input, or the conversation is not active
            NotFoundError: Conversation missing or owned by someone else
            BackendUnavailableError: Model or embedding backend failed
            StorageError: The repository failed
        """
        run_id = new_run_id()
        model = model or self.chat_model
        cfg = self.settings.memory

        # received
        _require_text(user_id, "user_id")
        _require_text(user_text, "user_text")
        conversation = None
        if conversation_id is not None:
            conversation = self.get_conversation(user_id, conversation_id)
            if conversation.status != "active":
                raise PreconditionError(
                    f"Conversation {conversation_id} is {conversation.status}; start a new one"
                )
        log_step(run_id, "received", 0.0, {"user_id": user_id, "conversation_id": conversation_id})

        # context_assembled
        t0 = time.time()
        memories = self.memory_store.find_relevant(
            user_id,
            user_text,
            top_n=cfg.ltm_top_n,
            similarity_threshold=cfg.similarity_threshold,
        )
        memory_block = format_memory_context(memories)
        user_tokens = self.estimator.estimate(user_text, model)
        budget = max(
            cfg.context_token_limit - user_tokens - self.estimator.estimate(memory_block, model),
            0,
        )
        history: List[Dict[str, str]] = []
        if memory_block:
            history.append({"role": "system", "content": memory_block})
        if conversation is not None:
            history.extend(self.window.build_window(conversation.id, budget))
        log_step(
            run_id,
            "context_assembled",
            (time.time() - t0) * 1000,
            {"memories": len(memories), "history_messages": len(history), "budget": budget},
        )

        # model_invoked / tool_resolved
        t0 = time.time()
        resolution = self.tools.resolve(user_text, history, model=model)
        log_step(
            run_id,
            "tool_resolved" if resolution.tool_execution else "model_invoked",
            (time.time() - t0) * 1000,
            {"model": model, "model_calls": resolution.model_calls},
        )

        # persisted
        t0 = time.time()
        if conversation is None:
            conversation = self.repository.create_conversation(user_id)
        metadata = {"model": model, "memory_ids": [m.memory.id for m in memories]}
        if resolution.tool_execution is not None:
            metadata["tool"] = resolution.tool_execution.to_dict()
        user_turn, assistant_turn = self.repository.append_turns(
            conversation.id,
            [
                TurnDraft(role="user", content=user_text, token_count=user_tokens),
                TurnDraft(
                    role="assistant",
                    content=resolution.final_text,
                    token_count=resolution.final_token_count,
                    metadata=metadata,
                ),
            ],
        )
        log_step(
            run_id,
            "persisted",
            (time.time() - t0) * 1000,
            {"conversation_id": conversation.id, "orders": [user_turn.order, assistant_turn.order]},
        )

        result = TurnResult(
            conversation=conversation,
            user_turn=user_turn,
            assistant_turn=assistant_turn,
            memories=memories,
            tool_execution=resolution.tool_execution,
            prompt_tokens=resolution.prompt_tokens,
            completion_tokens=resolution.completion_tokens,
            run_id=run_id,
        )
        result.reflection_job_id = self._maybe_reflect(run_id, user_id, conversation.id, assistant_turn.order, model)
        return result

    # Reflection

    def _maybe_reflect(
        self,
        run_id: str,
        user_id: str,
        conversation_id: str,
        assistant_order: int,
        model: str,
    ) -> Optional[str]:
        """
        Dispatch background reflection when the policy says it is due.

        The count is taken as of the assistant turn just written, so two
        concurrent turns never see the same count.
        """
        try:
            assistant_turns = self.repository.count_turns(
                conversation_id, role="assistant", through_order=assistant_order
            )
            if not self.policy.should_reflect(assistant_turns):
                return None
            job_id = self.runner.submit(
                "reflection",
                self.synthesizer.synthesize,
                user_id,
                conversation_id,
                lookback=self.settings.memory.reflection_lookback,
                model=model,
            )
        except Exception:
            logger.error(
                "reflection_dispatch_failed",
                run_id=run_id,
                conversation_id=conversation_id,
                exc_info=True,
            )
            return None

        log_step(run_id, "reflection_dispatched", 0.0, {"job_id": job_id, "assistant_turns": assistant_turns})
        return job_id

    def reflect_now(self, user_id: str, conversation_id: str, model: Optional[str] = None) -> List[Reflection]:
        """Run reflection synchronously, e.g. on explicit user request."""
        self.get_conversation(user_id, conversation_id)
        return self.synthesizer.synthesize(
            user_id,
            conversation_id,
            lookback=self.settings.memory.reflection_lookback,
            model=model or self.chat_model,
        )

    def close(self) -> None:
        """Wait for background work, then release the repository."""
        self.runner.shutdown(wait=True)
        self.repository.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _require_text(value, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise PreconditionError(f"{name} must be a non-empty string")
