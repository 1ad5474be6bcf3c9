"""
Reflection synthesis.

Asks the model for short insights about recent turns, stores each one as a
Reflection and promotes it into a ``synthesized`` long-term memory.
"""

import time
from typing import List, Optional

import structlog

from chat_memory.generation.generator import BaseGenerator
from chat_memory.persist.repository import Repository
from chat_memory.schemas import Reflection, Turn
from .parsing import extract_json_array
from .store import LongTermMemoryStore


logger = structlog.get_logger(__name__)

REFLECTION_PROMPT = """Based on the following recent conversation snippets, what are 2-3 high-level observations, insights, or questions that could be important for future interactions or understanding the user better?
Consider the user's statements, preferences, goals, or significant information revealed.
Format your response ONLY as a JSON list of strings, where each string is a concise reflection.
Example:
User: I love hiking on weekends. Last month I went to Eagle Peak.
User: I'm planning another hike for this Saturday.
Assistant: Sounds fun!
Expected JSON Output: ["User enjoys hiking as a weekend activity and recently hiked Eagle Peak.", "User is planning another hike soon."]

If no significant insights are found, output an empty JSON list: [].

Conversation Snippets:
{snippets}

JSON Output of Reflections:"""

_SPEAKERS = {"user": "User", "assistant": "Assistant", "system": "System"}


class ReflectionSynthesizer:
    """
    Turns a batch of recent turns into stored reflections and memories.

    Promotion failures are isolated per reflection: a reflection that could
    not be promoted stays ``pending`` and the rest of the batch continues.
    """

    def __init__(
        self,
        repository: Repository,
        memory_store: LongTermMemoryStore,
        generator: BaseGenerator,
        default_model: str = "gemma:2b",
        importance: float = 0.6,
    ):
        self.repository = repository
        self.memory_store = memory_store
        self.generator = generator
        self.default_model = default_model
        self.importance = importance

    @staticmethod
    def build_prompt(turns: List[Turn]) -> str:
        """Render turns into the reflection prompt."""
        snippets = "\n".join(
            f"{_SPEAKERS.get(turn.role, turn.role)}: {turn.content}" for turn in turns
        )
        return REFLECTION_PROMPT.format(snippets=snippets)

    def synthesize(
        self,
        user_id: str,
        conversation_id: str,
        lookback: int = 10,
        model: Optional[str] = None,
    ) -> List[Reflection]:
        """
        Reflect on the last ``lookback`` turns of a conversation.

        Args:
            user_id: User the reflections belong to
            conversation_id: Conversation to read
            lookback: Number of most recent turns to consider
            model: Chat model override

        Returns:
            Created reflections, with their final status

        Raises:
            BackendUnavailableError: The model call failed
            StorageError: Reflections could not be stored
        """
        turns = self.repository.list_recent_turns(conversation_id, lookback)
        if not turns:
            logger.info("reflection_skipped", conversation_id=conversation_id, reason="no_turns")
            return []

        response = self.generator.complete(self.build_prompt(turns), history=[], model=model or self.default_model)

        parsed = extract_json_array(response.text)
        if not parsed.ok:
            logger.warning(
                "reflection_response_malformed",
                conversation_id=conversation_id,
                reason=parsed.reason,
                raw=response.text[:200],
            )
            return []

        texts = [item.strip() for item in parsed.value if isinstance(item, str) and item.strip()]
        if not texts:
            logger.info("reflection_empty", conversation_id=conversation_id)
            return []

        turn_ids = [turn.id for turn in turns]
        created = []
        for text in texts:
            reflection = self.repository.create_reflection(
                Reflection(user_id=user_id, text=text, triggering_turn_ids=turn_ids)
            )
            created.append(self._promote(reflection))

        logger.info(
            "reflections_created",
            user_id=user_id,
            conversation_id=conversation_id,
            count=len(created),
            processed=sum(1 for r in created if r.status == "processed"),
        )
        return created

    def _promote(self, reflection: Reflection) -> Reflection:
        """Promote one reflection to long-term memory; leave it pending on failure."""
        try:
            self.memory_store.add_memory(
                reflection.user_id,
                reflection.text,
                "synthesized",
                self.importance,
                source_reflection_id=reflection.id,
            )
            return self.repository.update_reflection_status(reflection.id, "processed")
        except Exception as e:
            logger.warning(
                "reflection_promotion_failed",
                reflection_id=reflection.id,
                error=str(e),
                exc_info=True,
            )
            return reflection

    def promote_pending(self, user_id: str) -> int:
        """
        Retry promotion for every pending reflection of a user.

        Returns:
            Number of reflections that became ``processed``
        """
        started = time.time()
        promoted = 0
        for reflection in self.repository.list_reflections(user_id, status="pending"):
            if self._promote(reflection).status == "processed":
                promoted += 1
        logger.info(
            "pending_reflections_promoted",
            user_id=user_id,
            promoted=promoted,
            seconds=round(time.time() - started, 3),
        )
        return promoted
