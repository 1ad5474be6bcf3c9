"""
Short-term context window.

Selects the newest contiguous run of turns that fits a token budget.
"""

import numbers
from typing import Dict, List

import structlog

from chat_memory.errors import PreconditionError
from chat_memory.persist.repository import Repository
from chat_memory.schemas import Turn


logger = structlog.get_logger(__name__)


def _validate_budget(token_budget) -> int:
    if isinstance(token_budget, bool) or not isinstance(token_budget, numbers.Real):
        raise PreconditionError(f"token_budget must be a number, got {token_budget!r}")
    if token_budget != token_budget:  # NaN
        raise PreconditionError("token_budget must not be NaN")
    return token_budget


def select_suffix(turns: List[Turn], token_budget) -> List[Turn]:
    """
    Take the longest suffix of ``turns`` whose token counts fit the budget.

    Walks backward from the newest turn and stops at the first turn that
    would overflow; a single turn is never truncated.

    Args:
        turns: Turns in chronological order
        token_budget: Maximum summed ``token_count``

    Returns:
        Selected turns in chronological order
    """
    if token_budget <= 0:
        return []

    selected: List[Turn] = []
    used = 0
    for turn in reversed(turns):
        cost = max(turn.token_count, 0)
        if used + cost > token_budget:
            break
        selected.append(turn)
        used += cost

    selected.reverse()
    return selected


class ShortTermWindow:
    """Builds the bounded history slice sent alongside each prompt."""

    def __init__(self, repository: Repository):
        self.repository = repository

    def select_turns(self, conversation_id: str, token_budget) -> List[Turn]:
        """
        Select the newest turns of a conversation that fit ``token_budget``.

        Raises:
            PreconditionError: If the budget is not a number
        """
        budget = _validate_budget(token_budget)
        if budget <= 0:
            return []

        turns = self.repository.list_turns(conversation_id)
        selected = select_suffix(turns, budget)
        logger.debug(
            "window_selected",
            conversation_id=conversation_id,
            budget=budget,
            available=len(turns),
            selected=len(selected),
        )
        return selected

    def build_window(self, conversation_id: str, token_budget) -> List[Dict[str, str]]:
        """
        Build the chronological ``{role, content}`` history for a conversation.

        Args:
            conversation_id: Conversation to read
            token_budget: Token ceiling; ``<= 0`` yields an empty window

        Returns:
            Ordered list of message dicts
        """
        return [turn.as_message() for turn in self.select_turns(conversation_id, token_budget)]
