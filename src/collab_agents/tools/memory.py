"""Key-value memory with optional expiry, exposed as a backend.

MemoryStore is the shared substrate for task pool claims: its
``compare_and_set`` performs the check and the write under one lock, so
concurrent claimants cannot both observe a key as free.
"""

import threading
import time
from typing import Any

from ..exceptions import UnknownToolError
from ..types import ToolDescriptor, ToolParameter, ToolResult
from .base import BaseBackend

_MISSING = object()

# key namespace owned by task pools
TASK_POOL_PREFIX = "teams:"


class MemoryStore:
    """Thread-safe key-value store with lazy TTL expiry."""

    def __init__(self):
        self._lock = threading.Lock()
        # key -> (value, expires_at or None)
        self._data: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str, now: float) -> Any:
        """Return the value for key, dropping it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return _MISSING
        value, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._data[key]
            return _MISSING
        return value

    @staticmethod
    def _expiry(ttl: float | None, now: float) -> float | None:
        return now + ttl if ttl is not None else None

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, optionally expiring after ``ttl`` seconds."""
        now = time.monotonic()
        with self._lock:
            self._data[key] = (value, self._expiry(ttl, now))

    def get(self, key: str, default: Any = None) -> Any:
        now = time.monotonic()
        with self._lock:
            value = self._live(key, now)
        return default if value is _MISSING else value

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed and had not expired."""
        now = time.monotonic()
        with self._lock:
            if self._live(key, now) is _MISSING:
                return False
            del self._data[key]
            return True

    def list_keys(self, prefix: str = "") -> list[str]:
        """Return live keys starting with prefix, sorted."""
        now = time.monotonic()
        with self._lock:
            keys = list(self._data)
            return sorted(k for k in keys if k.startswith(prefix) and self._live(k, now) is not _MISSING)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def compare_and_set(
        self,
        key: str,
        expected: Any,
        new: Any,
        ttl: float | None = None,
    ) -> bool:
        """Atomically replace a value if it currently equals ``expected``.

        ``expected=None`` means the key must be absent; ``new=None`` deletes
        the key on success.

        Returns:
            True if the swap happened.
        """
        now = time.monotonic()
        with self._lock:
            current = self._live(key, now)
            current = None if current is _MISSING else current
            if current != expected:
                return False
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = (new, self._expiry(ttl, now))
            return True


class MemoryBackend(BaseBackend):
    """Expose a MemoryStore as memory_put/get/list/delete tools.

    Keys under a protected prefix can be read but not written or deleted;
    task pool claims live there and change only through the pool's
    compare-and-set operations.
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        protected_prefixes: tuple[str, ...] = (TASK_POOL_PREFIX,),
    ):
        self.store = store if store is not None else MemoryStore()
        self.protected_prefixes = tuple(protected_prefixes)

    def _protected(self, key: str) -> bool:
        return any(key.startswith(prefix) for prefix in self.protected_prefixes)

    def list_tools(self) -> list[ToolDescriptor]:
        key = ToolParameter("key", "string", True, "Memory key")
        return [
            ToolDescriptor(
                "memory_put",
                "Store a value under a key, optionally expiring after ttl_seconds",
                [
                    key,
                    ToolParameter("value", "string", True, "Value to store"),
                    ToolParameter("ttl_seconds", "number", False, "Seconds until the entry expires"),
                ],
            ),
            ToolDescriptor("memory_get", "Read the value stored under a key", [key]),
            ToolDescriptor(
                "memory_list",
                "List stored keys, optionally filtered by prefix",
                [ToolParameter("prefix", "string", False, "Only keys starting with this")],
            ),
            ToolDescriptor("memory_delete", "Delete a key", [key]),
        ]

    async def execute(self, tool_name: str, params: dict[str, Any]) -> ToolResult:
        if tool_name == "memory_put":
            if "key" not in params or "value" not in params:
                return ToolResult.failure("memory_put requires 'key' and 'value'")
            if self._protected(params["key"]):
                return ToolResult.failure(f"'{params['key']}' is read-only; use the task pool tools")
            self.store.put(params["key"], params["value"], params.get("ttl_seconds"))
            return ToolResult.ok({"stored": params["key"]})

        if tool_name == "memory_get":
            if "key" not in params:
                return ToolResult.failure("memory_get requires 'key'")
            value = self.store.get(params["key"])
            if value is None:
                return ToolResult.failure(f"No value stored under '{params['key']}'")
            return ToolResult.ok({"key": params["key"], "value": value})

        if tool_name == "memory_list":
            return ToolResult.ok({"keys": self.store.list_keys(params.get("prefix", ""))})

        if tool_name == "memory_delete":
            if "key" not in params:
                return ToolResult.failure("memory_delete requires 'key'")
            if self._protected(params["key"]):
                return ToolResult.failure(f"'{params['key']}' is read-only; use the task pool tools")
            return ToolResult.ok({"deleted": self.store.delete(params["key"])})

        raise UnknownToolError(tool_name)
