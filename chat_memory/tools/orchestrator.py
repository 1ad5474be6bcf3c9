"""
Single-hop tool resolution.

The model is told which tools exist and how to invoke one. If its first
reply is a tool invocation, the tool runs and one follow-up call turns
the result into the final answer. Tool chaining is not supported.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from chat_memory.generation.generator import BaseGenerator, GeneratedResponse
from chat_memory.memory.parsing import parse_json_object
from chat_memory.memory.tokens import CharRatioEstimator, TokenEstimator
from .registry import ToolRegistry, ToolResult


logger = structlog.get_logger(__name__)

TOOL_CALL_EXAMPLE = '{"tool_name": "get_current_time", "arguments": {}}'


def build_tool_instruction(registry: ToolRegistry) -> str:
    """System instruction listing the tools and the invocation format."""
    return (
        "You have access to the following tools:\n"
        + registry.describe()
        + "\n\nTo use a tool, you MUST output ONLY a single-line JSON object in the "
        'following format, and nothing else:\n  {"tool_name": "<name>", "arguments": {...}}\n\n'
        "Example:\nUser: What is the current time?\nAssistant: "
        + TOOL_CALL_EXAMPLE
        + "\n\nIf you do not need to use a tool, respond normally."
    )


@dataclass
class ToolCall:
    """A tool invocation parsed from model output."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolExecution:
    """What ran and what it returned."""
    tool_name: str
    arguments: Dict[str, Any]
    result: ToolResult
    raw_call: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ToolResolution:
    """Final answer for a turn plus accounting across all model calls."""
    final_text: str
    final_token_count: int
    prompt_tokens: int = 0
    completion_tokens: int = 0
    tool_execution: Optional[ToolExecution] = None
    model_calls: int = 1


def detect_tool_call(text: str) -> Optional[ToolCall]:
    """
    Interpret a model reply as a tool call.

    Returns:
        ToolCall if the whole reply is a JSON object with a string
        ``tool_name``; None for prose or malformed JSON
    """
    parsed = parse_json_object(text)
    if not parsed.ok:
        return None

    name = parsed.value.get("tool_name")
    if not isinstance(name, str) or not name.strip():
        return None

    arguments = parsed.value.get("arguments")
    return ToolCall(name=name.strip(), arguments=arguments if isinstance(arguments, dict) else {})


def build_followup_prompt(user_text: str, call: ToolCall, result: ToolResult) -> str:
    """Prompt for the follow-up call after a tool ran."""
    if result.success:
        outcome = f"The tool returned: {result.output}"
    else:
        outcome = f"The tool failed with error: {result.error}"
    return (
        f'The user asked: "{user_text}"\n'
        f"You called the tool \"{call.name}\" with arguments {json.dumps(call.arguments)}.\n"
        f"{outcome}\n"
        "Using this information, answer the user's question directly in natural language."
    )


class ToolOrchestrator:
    """Runs at most one tool round-trip for a user message."""

    def __init__(
        self,
        generator: BaseGenerator,
        registry: ToolRegistry,
        estimator: Optional[TokenEstimator] = None,
        default_model: Optional[str] = None,
    ):
        self.generator = generator
        self.registry = registry
        self.estimator = estimator or CharRatioEstimator()
        self.default_model = default_model

    def resolve(
        self,
        user_text: str,
        history: Optional[List[Dict[str, str]]] = None,
        model: Optional[str] = None,
    ) -> ToolResolution:
        """
        Produce the final assistant text for ``user_text``.

        Args:
            user_text: Current user message
            history: Prior ``{role, content}`` messages, oldest first
            model: Chat model override

        Returns:
            ToolResolution; ``tool_execution`` is set when a tool ran

        Raises:
            BackendUnavailableError: Either model call failed
        """
        model = model or self.default_model
        history = list(history or [])
        instruction = {"role": "system", "content": build_tool_instruction(self.registry)}

        first = self.generator.complete(user_text, history=[instruction, *history], model=model)
        call = detect_tool_call(first.text)
        if call is None:
            return self._resolution(first.text, [first], model)

        start_time = time.time()
        result = self.registry.execute(call.name, call.arguments)
        execution = ToolExecution(
            tool_name=call.name,
            arguments=call.arguments,
            result=result,
            raw_call=first.text,
        )
        logger.info(
            "tool_call_resolved",
            tool=call.name,
            success=result.success,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )

        result_message = (
            f"Tool {call.name} output: {result.output}"
            if result.success
            else f"Tool {call.name} error: {result.error}"
        )
        followup_history = [
            *history,
            {"role": "user", "content": user_text},
            {"role": "assistant", "content": first.text},
            {"role": "system", "content": result_message},
        ]
        second = self.generator.complete(
            build_followup_prompt(user_text, call, result),
            history=followup_history,
            model=model,
        )
        resolution = self._resolution(second.text, [first, second], model)
        resolution.tool_execution = execution
        return resolution

    def _resolution(self, text: str, responses: List[GeneratedResponse], model: Optional[str]) -> ToolResolution:
        return ToolResolution(
            final_text=text,
            final_token_count=self.estimator.estimate(text, model),
            prompt_tokens=sum(r.prompt_tokens for r in responses),
            completion_tokens=sum(r.completion_tokens for r in responses),
            model_calls=len(responses),
        )
