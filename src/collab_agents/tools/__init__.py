"""Tools, capability backends, and the tool router.

Backends implement BaseBackend; the ToolRouter aggregates them and routes
each call to the backend that owns the tool.
"""

from .base import BaseBackend, BaseTool
from .local import FunctionTool, LocalBackend
from .memory import MemoryBackend, MemoryStore
from .router import ToolRouter
from .task_pool import TaskPoolBackend

__all__ = [
    "BaseTool",
    "BaseBackend",
    "FunctionTool",
    "LocalBackend",
    "MemoryBackend",
    "MemoryStore",
    "TaskPoolBackend",
    "ToolRouter",
]
