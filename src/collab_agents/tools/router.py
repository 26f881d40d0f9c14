"""Tool router aggregating several capability backends.

The routing table maps each tool name to the backend that owns it. Writers
(register/unregister) build a new table under a lock and swap it in with a
single assignment; readers grab the current table once per call and never
hold a lock while awaiting the backend. A call that resolved its backend
before an unregister therefore completes against that backend.
"""

import asyncio
import threading
from typing import Any

from ..exceptions import (
    BackendError,
    DuplicateToolError,
    ToolError,
    ToolTimeoutError,
    UnknownToolError,
)
from ..logging import get_logger
from ..types import ToolDescriptor, ToolResult
from .base import BaseBackend

logger = get_logger(__name__)


class ToolRouter:
    """Routes tool calls to the backend that owns each tool.

    Conflicts are resolved by first-registered precedence: when two backends
    advertise the same tool name, the backend registered first keeps it.
    """

    def __init__(self, default_timeout: float | None = None):
        """Initialize an empty router.

        Args:
            default_timeout: Per-call timeout in seconds used when call()
                             gets none.
        """
        self.default_timeout = default_timeout
        self._write_lock = threading.Lock()
        # backend name -> backend, in registration order
        self._backends: dict[str, BaseBackend] = {}
        # tool name -> (backend name, backend); replaced wholesale on every write
        self._table: dict[str, tuple[str, BaseBackend]] = {}

    # ==================== registration ====================

    def register(
        self,
        name: str,
        backend: BaseBackend,
        strict: bool = False,
    ) -> list[DuplicateToolError]:
        """Register a backend and route its tools.

        Args:
            name: Unique backend name
            backend: The backend to add
            strict: Raise the first conflict instead of skipping it

        Returns:
            Conflicts that were skipped (empty when every tool was routed).

        Raises:
            ValueError: If a backend with this name is already registered
            DuplicateToolError: In strict mode, if a tool is already routed
        """
        descriptors = backend.list_tools()

        with self._write_lock:
            if name in self._backends:
                raise ValueError(f"Backend '{name}' already registered")

            table = dict(self._table)
            conflicts: list[DuplicateToolError] = []
            for descriptor in descriptors:
                owner = table.get(descriptor.name)
                if owner is not None:
                    conflicts.append(DuplicateToolError(descriptor.name, owner[0], name))
                    continue
                table[descriptor.name] = (name, backend)

            if strict and conflicts:
                raise conflicts[0]

            backends = dict(self._backends)
            backends[name] = backend
            self._backends = backends
            self._table = table

        for conflict in conflicts:
            logger.warning(str(conflict))
        logger.debug(f"registered backend {name} with {len(descriptors) - len(conflicts)} tools")
        return conflicts

    def unregister(self, name: str) -> bool:
        """Remove a backend and every tool it owned.

        In-flight calls that already resolved this backend still complete.

        Returns:
            True if the backend was registered.
        """
        with self._write_lock:
            if name not in self._backends:
                return False
            backends = {k: v for k, v in self._backends.items() if k != name}
            table = {tool: entry for tool, entry in self._table.items() if entry[0] != name}
            self._backends = backends
            self._table = table

        logger.debug(f"unregistered backend {name}")
        return True

    # ==================== lookup ====================

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._table

    def backend_for(self, tool_name: str) -> str | None:
        """Return the name of the backend that owns a tool."""
        entry = self._table.get(tool_name)
        return entry[0] if entry else None

    def list_backends(self) -> list[str]:
        return list(self._backends)

    def describe(self, tool_name: str) -> ToolDescriptor | None:
        """Return the owning backend's descriptor for a tool."""
        entry = self._table.get(tool_name)
        if entry is None:
            return None
        return entry[1].describe(tool_name)

    def list_all(self) -> list[ToolDescriptor]:
        """Return descriptors of every routed tool, grouped by backend in registration order."""
        table = self._table
        backends = self._backends
        descriptors: list[ToolDescriptor] = []
        for backend_name, backend in backends.items():
            for descriptor in backend.list_tools():
                entry = table.get(descriptor.name)
                if entry is not None and entry[0] == backend_name:
                    descriptors.append(descriptor)
        return descriptors

    # ==================== dispatch ====================

    async def call(
        self,
        tool_name: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolResult:
        """Execute a tool on its owning backend.

        Args:
            tool_name: Tool to execute
            params: Tool parameters
            timeout: Seconds before the call fails with ToolTimeoutError

        Returns:
            The backend's ToolResult, unchanged (including failed results).

        Raises:
            UnknownToolError: If no backend owns the tool
            ToolTimeoutError: If the backend does not answer in time
            BackendError: If the backend raises
        """
        # one read of the current table; the reference stays valid after a swap
        entry = self._table.get(tool_name)
        if entry is None:
            raise UnknownToolError(tool_name)
        backend_name, backend = entry

        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug(f"routing {tool_name} to backend {backend_name}")

        try:
            if timeout is None:
                return await backend.execute(tool_name, params or {})
            try:
                return await asyncio.wait_for(backend.execute(tool_name, params or {}), timeout)
            except asyncio.TimeoutError as e:
                raise ToolTimeoutError(tool_name, timeout) from e
        except ToolError:
            raise
        except Exception as e:
            raise BackendError(tool_name, e) from e
