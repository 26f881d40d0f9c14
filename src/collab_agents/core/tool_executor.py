"""Tool execution logic for the agent.

Models request tools in-band by writing a JSON object of the form
``{"tool_call": {"name": ..., "parameters": {...}}}`` somewhere in a reply.
This module finds that object and dispatches it through the tool router,
turning every outcome (including routing misses and backend errors) into a
text result the model can read.
"""

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import ToolError
from ..logging import get_logger

if TYPE_CHECKING:
    from ..tools.router import ToolRouter

logger = get_logger(__name__)

_TOOL_CALL_START = re.compile(r'\{\s*"tool_call"')


@dataclass
class ParsedToolCall:
    """A tool request found in a model reply."""
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


def _matching_brace(text: str, start: int) -> int | None:
    """Index just past the brace closing the object that opens at ``start``."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def parse_tool_call(text: str) -> ParsedToolCall | None:
    """Return the first well-formed tool call in ``text``, or None."""
    for match in _TOOL_CALL_START.finditer(text):
        end = _matching_brace(text, match.start())
        if end is None:
            continue
        try:
            parsed = json.loads(text[match.start():end])
        except json.JSONDecodeError:
            continue

        call = parsed.get("tool_call")
        if not isinstance(call, dict):
            continue
        name = call.get("name")
        parameters = call.get("parameters", {})
        if isinstance(name, str) and isinstance(parameters, dict):
            return ParsedToolCall(name=name, parameters=parameters)
    return None


class ToolExecutor:
    """Runs parsed tool calls against a router and formats the outcome."""

    def __init__(self, router: "ToolRouter", timeout: float | None = None):
        """Initialize the tool executor.

        Args:
            router: Router shared with the agent (and its forks).
            timeout: Per-call timeout in seconds, None for the router default.
        """
        self.router = router
        self.timeout = timeout

    async def execute(self, call: ParsedToolCall) -> str:
        """Execute a tool call and describe the result for the model."""
        logger.info(f"executing tool {call.name}")
        try:
            result = await self.router.call(call.name, call.parameters, timeout=self.timeout)
        except ToolError as e:
            logger.warning(f"tool {call.name} failed: {e}")
            return f"Tool '{call.name}' failed. Error: {e}"

        if result.success:
            output = json.dumps(result.output, default=str)
            return f"Tool '{call.name}' executed successfully. Result: {output}"
        return f"Tool '{call.name}' failed. Error: {result.error}"
