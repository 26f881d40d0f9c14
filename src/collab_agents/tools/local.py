"""In-process backend built from BaseTool instances."""

from typing import Any, Callable

from ..exceptions import UnknownToolError
from ..logging import get_logger
from ..types import ToolDescriptor, ToolParameter, ToolResult
from .base import BaseBackend, BaseTool

logger = get_logger(__name__)


class FunctionTool(BaseTool):
    """Wrap a plain or async callable as a tool.

    Example:
        add = FunctionTool(
            "add",
            "Add two numbers",
            lambda a, b: a + b,
            [ToolParameter("a", "number", True), ToolParameter("b", "number", True)],
        )
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Any],
        parameters: list[ToolParameter] | None = None,
    ):
        self._name = name
        self._description = description
        self._func = func
        self._parameters = parameters or []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> list[ToolParameter]:
        return self._parameters

    def execute(self, **kwargs) -> Any:
        return self._func(**kwargs)


class LocalBackend(BaseBackend):
    """Expose a list of tools as a single backend.

    A tool returning a ToolResult is passed through unchanged; any other
    return value becomes a successful result with that output. Exceptions
    propagate to the router, which wraps them in BackendError.
    """

    def __init__(self, tools: list[BaseTool] | None = None):
        self._tools: dict[str, BaseTool] = {}
        for tool in tools or []:
            self.add_tool(tool)

    def add_tool(self, tool: BaseTool) -> None:
        """Add a tool. Routers only see it after the backend is (re)registered."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already defined in this backend")
        self._tools[tool.name] = tool

    def list_tools(self) -> list[ToolDescriptor]:
        return [tool.to_descriptor() for tool in self._tools.values()]

    async def execute(self, tool_name: str, params: dict[str, Any]) -> ToolResult:
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownToolError(tool_name)

        logger.debug(f"executing local tool {tool_name} with {params}")
        result = await tool.run(**params)
        if isinstance(result, ToolResult):
            return result
        return ToolResult.ok(result)
