"""Core agent components.

This module provides the building blocks used by Agent:
- MemoryManager: budgeted conversation history with context strategies
- PromptBuilder: persona augmentation and tool advertisement
- ToolExecutor: in-band tool-call parsing and dispatch
"""

from .memory_manager import (
    ContextStrategy,
    MemoryManager,
    SummaryStrategy,
    TrimStrategy,
    estimate_tokens,
)
from .prompt_builder import PromptBuilder
from .tool_executor import ParsedToolCall, ToolExecutor, parse_tool_call

__all__ = [
    "ContextStrategy",
    "MemoryManager",
    "ParsedToolCall",
    "PromptBuilder",
    "SummaryStrategy",
    "ToolExecutor",
    "TrimStrategy",
    "estimate_tokens",
    "parse_tool_call",
]
