"""
Tool registry.

Maps tool names to callables that take an argument dict and return text.
``execute`` never raises: unknown tools and tool exceptions become failed
results that are handed back to the model.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog


logger = structlog.get_logger(__name__)

ToolFunc = Callable[[Dict[str, Any]], Any]


@dataclass
class ToolResult:
    """Outcome of one tool execution."""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ToolSpec:
    """A registered tool."""
    name: str
    func: ToolFunc
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, ToolSpec] = {}

    def register(
        self,
        name: str,
        func: ToolFunc,
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
    ) -> ToolSpec:
        """Register a new tool, replacing any tool with the same name."""
        tool = ToolSpec(name=name, func=func, description=description, parameters=parameters or {})
        self.tools[name] = tool
        return tool

    def has(self, name: str) -> bool:
        return name in self.tools

    def names(self) -> List[str]:
        return list(self.tools)

    def execute(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Run a tool by name.

        Args:
            name: Registered tool name
            arguments: Tool arguments; anything but a dict is treated as ``{}``

        Returns:
            ToolResult; ``success`` is False for unknown tools or tool errors
        """
        tool = self.tools.get(name)
        if tool is None:
            logger.warning("tool_unknown", tool=name)
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        if not isinstance(arguments, dict):
            arguments = {}

        try:
            output = tool.func(arguments)
        except Exception as e:
            logger.warning("tool_failed", tool=name, error=str(e), exc_info=True)
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        logger.info("tool_executed", tool=name)
        return ToolResult(success=True, output=None if output is None else str(output))

    def describe(self) -> str:
        """Render the tool list for the model's system instruction."""
        lines = []
        for tool in self.tools.values():
            line = f"- {tool.name}: {tool.description}".rstrip()
            if tool.parameters:
                params = ", ".join(
                    f"{param} ({info.get('type', 'any')})" if isinstance(info, dict) else param
                    for param, info in tool.parameters.items()
                )
                line += f" Arguments: {params}."
            lines.append(line)
        return "\n".join(lines)


def get_current_time(arguments: Dict[str, Any]) -> str:
    """Current local date and time."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def default_registry() -> ToolRegistry:
    """Registry preloaded with the built-in tools."""
    registry = ToolRegistry()
    registry.register(
        "get_current_time",
        get_current_time,
        description="Useful for finding the current date and time.",
    )
    return registry
