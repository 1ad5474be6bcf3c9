"""Tool registry and single-hop tool resolution."""
from .registry import ToolRegistry, ToolResult, ToolSpec, default_registry, get_current_time
from .orchestrator import (
    ToolCall, ToolExecution, ToolOrchestrator, ToolResolution,
    build_tool_instruction, detect_tool_call
)

__all__ = [
    'ToolRegistry', 'ToolResult', 'ToolSpec', 'default_registry', 'get_current_time',
    'ToolCall', 'ToolExecution', 'ToolOrchestrator', 'ToolResolution',
    'build_tool_instruction', 'detect_tool_call'
]
