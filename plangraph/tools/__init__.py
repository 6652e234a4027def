"""Tool catalog and step execution."""

from plangraph.tools.registry import (
    RegisteredTool,
    StepExecutor,
    Tool,
    ToolRegistry,
    ToolResult,
    format_tool_result,
)

__all__ = [
    "RegisteredTool",
    "StepExecutor",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "format_tool_result",
]
