"""
Permissive JSON extraction from model output.

Models wrap JSON in prose or code fences. These helpers return a tagged
``JsonParse`` result instead of raising, so callers branch on ``ok``.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional


_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class JsonParse:
    """Outcome of a permissive parse: a value, or the reason it is malformed."""

    value: Any = None
    malformed: bool = False
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.malformed

    @classmethod
    def success(cls, value: Any) -> "JsonParse":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "JsonParse":
        return cls(malformed=True, reason=reason)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def extract_json_array(text: Any) -> JsonParse:
    """
    Find a JSON array in ``text``.

    Tries each ``[`` in turn and decodes from there, accepting the first
    position that yields a list; falls back to parsing the whole text.

    Returns:
        JsonParse whose value is a list on success
    """
    if not isinstance(text, str) or not text.strip():
        return JsonParse.failure("empty response")

    start = text.find("[")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return JsonParse.success(value)
        start = text.find("[", start + 1)

    try:
        value = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        return JsonParse.failure(f"no JSON array found: {e.msg}")

    if not isinstance(value, list):
        return JsonParse.failure(f"expected a JSON array, got {type(value).__name__}")
    return JsonParse.success(value)


def parse_json_object(text: Any) -> JsonParse:
    """
    Parse ``text`` as a single JSON object, tolerating a code fence.

    Returns:
        JsonParse whose value is a dict on success
    """
    if not isinstance(text, str) or not text.strip():
        return JsonParse.failure("empty response")

    try:
        value = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        return JsonParse.failure(e.msg)

    if not isinstance(value, dict):
        return JsonParse.failure(f"expected a JSON object, got {type(value).__name__}")
    return JsonParse.success(value)
