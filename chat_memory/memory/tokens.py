"""
Token estimation.

Estimates are used for window budgeting only; exact counts come back
from the model backend and are not needed here.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Optional


class TokenEstimator(ABC):
    """Deterministic, offline token count estimator."""

    @abstractmethod
    def estimate(self, text: Any, model: Optional[str] = None) -> int:
        """
        Estimate the token cost of ``text`` for ``model``.

        Must return an integer >= 0 and never raise; non-text input is 0.
        """
        pass

    def __call__(self, text: Any, model: Optional[str] = None) -> int:
        return self.estimate(text, model)


class CharRatioEstimator(TokenEstimator):
    """Characters divided by a fixed ratio, rounded up."""

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self.chars_per_token = chars_per_token

    def estimate(self, text: Any, model: Optional[str] = None) -> int:
        if not isinstance(text, str) or not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def __repr__(self) -> str:
        return f"CharRatioEstimator(chars_per_token={self.chars_per_token})"


_default_estimator = CharRatioEstimator()


def estimate_tokens(text: Any, model: Optional[str] = None) -> int:
    """Estimate tokens with the default 4-chars-per-token heuristic."""
    return _default_estimator.estimate(text, model)
