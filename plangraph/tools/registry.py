"""Tool registration and execution for the executor node."""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Tool:
    """A tool the model can choose for a todo."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    categories: list[str] = field(default_factory=list)


@dataclass
class ToolResult:
    """Outcome of one tool call. Errors are values, never raised."""

    success: bool
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "result": self.result, "error": self.error}


class StepExecutor(ABC):
    """Performs one named action and reports success or error."""

    @abstractmethod
    async def execute(self, name: str, args: dict[str, Any]) -> ToolResult: ...


@dataclass
class RegisteredTool:
    """A tool with its executor function."""

    tool: Tool
    executor: Callable[[dict], Any]


class ToolRegistry(StepExecutor):
    """
    Holds the tool catalog and dispatches calls by name.

    Tools carry free-form category tags; prompts only ever receive the
    documentation for the categories a todo hints at.

    Example:
        registry = ToolRegistry()

        def fetch_data(url: str) -> dict:
            '''Fetch JSON from a URL.'''
            ...

        registry.register_function(fetch_data, categories=["web"])
        result = await registry.execute("fetch_data", {"url": "https://example.com"})
    """

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, name: str, tool: Tool, executor: Callable[[dict], Any]) -> None:
        """
        Register a single tool with its executor.

        Args:
            name: Tool name (must match tool.name)
            tool: Tool definition
            executor: Sync or async function taking the tool input dict
        """
        self._tools[name] = RegisteredTool(tool=tool, executor=executor)

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        categories: Iterable[str] = (),
    ) -> None:
        """Register a function as a tool, deriving its parameter schema from the signature."""
        tool_name = name or func.__name__
        tool_desc = description or inspect.getdoc(func) or f"Execute {tool_name}"

        sig = inspect.signature(func)
        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in ("self", "cls"):
                continue

            param_type = "string"
            if param.annotation is int:
                param_type = "integer"
            elif param.annotation is float:
                param_type = "number"
            elif param.annotation is bool:
                param_type = "boolean"
            elif param.annotation is dict:
                param_type = "object"
            elif param.annotation is list:
                param_type = "array"

            properties[param_name] = {"type": param_type}
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        tool = Tool(
            name=tool_name,
            description=tool_desc,
            parameters={"type": "object", "properties": properties, "required": required},
            categories=list(categories),
        )

        def executor(inputs: dict) -> Any:
            return func(**inputs)

        self.register(tool_name, tool, executor)

    def get_tools(self, categories: Iterable[str] | None = None) -> dict[str, Tool]:
        """
        Registered tools, optionally narrowed to the given categories.

        Uncategorised tools are always included. An empty category list
        means "no narrowing".
        """
        wanted = {c.lower() for c in categories or []}
        tools = {}
        for name, registered in self._tools.items():
            tags = {c.lower() for c in registered.tool.categories}
            if not wanted or not tags or tags & wanted:
                tools[name] = registered.tool
        return tools

    def describe_tools(self, categories: Iterable[str] | None = None) -> str:
        """Prompt documentation for the category-scoped tool subset."""
        lines = []
        for tool in self.get_tools(categories).values():
            params = tool.parameters.get("properties", {})
            signature = ", ".join(
                f"{p}: {spec.get('type', 'string')}" for p, spec in params.items()
            )
            summary = tool.description.strip().splitlines()[0] if tool.description else ""
            lines.append(f"- {tool.name}({signature}): {summary}")
        return "\n".join(lines)

    def get_registered_names(self) -> list[str]:
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        if name not in self._tools:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        registered = self._tools[name]
        try:
            result = registered.executor(dict(args or {}))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(f"⚠ Tool {name} raised: {e}")
            return ToolResult(success=False, error=str(e))

        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, result=result)


def format_tool_result(result: Any, limit: int = 2000) -> str:
    """Compact string form of a tool result for prompts."""
    text = result if isinstance(result, str) else json.dumps(result, default=str)
    if len(text) > limit:
        return text[:limit] + "…"
    return text
