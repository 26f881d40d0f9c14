"""Base classes for tools and capability backends.

A tool is one named capability with typed parameters. A backend groups tools
behind a single ``execute(tool_name, params)`` entry point; the ToolRouter
aggregates several backends.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any

from ..types import ToolDescriptor, ToolParameter, ToolResult


class BaseTool(ABC):
    """Abstract base class for all tools.

    ``execute`` may be a plain function or a coroutine function; backends
    await the result when needed.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Return the tool description."""
        pass

    @property
    def parameters(self) -> list[ToolParameter]:
        """Return the tool parameters."""
        return []

    @abstractmethod
    def execute(self, **kwargs) -> Any:
        """Execute the tool with the given arguments."""
        pass

    async def run(self, **kwargs) -> Any:
        """Execute the tool, awaiting the result if it is awaitable."""
        result = self.execute(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_descriptor(self) -> ToolDescriptor:
        """Return the descriptor advertised by backends."""
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=list(self.parameters),
        )

    def to_schema(self) -> dict[str, Any]:
        """Return the tool schema for LLM function calling."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_descriptor().to_schema(),
            },
        }


class BaseBackend(ABC):
    """Abstract base class for capability backends.

    Backends must tolerate concurrent ``execute`` calls from independent
    agent forks.
    """

    @abstractmethod
    def list_tools(self) -> list[ToolDescriptor]:
        """Return descriptors for every tool this backend provides."""

    @abstractmethod
    async def execute(self, tool_name: str, params: dict[str, Any]) -> ToolResult:
        """Execute a tool.

        Args:
            tool_name: Name of a tool returned by list_tools()
            params: JSON-like parameters

        Returns:
            ToolResult describing success or failure

        Raises:
            UnknownToolError: If the backend does not provide the tool
        """

    def describe(self, tool_name: str) -> ToolDescriptor | None:
        """Return the descriptor for one tool, or None."""
        for descriptor in self.list_tools():
            if descriptor.name == tool_name:
                return descriptor
        return None
