"""Budgeted conversation history for an agent.

The system prompt is held apart from the rolling history. After every
mutation the manager keeps ``system + history`` inside the token budget by
handing the history to a context strategy, which drops or condenses the
oldest messages first.
"""

import copy
from abc import ABC, abstractmethod

from ..logging import get_logger
from ..types import Message, MessageRole

logger = get_logger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, at least one."""
    return max(1, len(text) // 4)


def message_tokens(message: Message) -> int:
    """Token estimate for a message, including one token for its role."""
    return estimate_tokens(message.content) + 1


def history_tokens(messages: list[Message]) -> int:
    return sum(message_tokens(m) for m in messages)


# ==================== context strategies ====================


class ContextStrategy(ABC):
    """Decides how an over-budget history is shortened."""

    name: str = "base"

    @abstractmethod
    def compact(self, history: list[Message], limit: int) -> list[Message]:
        """Return a history whose estimate is at most ``limit`` tokens.

        Args:
            history: Messages, oldest first
            limit: Token allowance for the history

        Returns:
            A new list; the input list is not modified.
        """


class TrimStrategy(ContextStrategy):
    """Drop the oldest messages until the history fits."""

    name = "trim"

    def compact(self, history: list[Message], limit: int) -> list[Message]:
        kept = list(history)
        total = history_tokens(kept)
        while kept and total > limit:
            total -= message_tokens(kept.pop(0))
        return kept


class SummaryStrategy(ContextStrategy):
    """Replace the oldest span with one short note, then trim if still over.

    The note keeps a clipped excerpt of each dropped message so later turns
    still see who said what.

    Args:
        excerpt_chars: Characters kept from each dropped message
        max_lines: Excerpt lines in the note before the rest is counted only
    """

    name = "summary"

    def __init__(self, excerpt_chars: int = 80, max_lines: int = 8):
        self.excerpt_chars = excerpt_chars
        self.max_lines = max_lines
        self._fallback = TrimStrategy()

    def _note(self, dropped: list[Message]) -> Message:
        lines = [f"Summary of {len(dropped)} earlier messages:"]
        for message in dropped[: self.max_lines]:
            text = " ".join(message.content.split())
            if len(text) > self.excerpt_chars:
                text = text[: self.excerpt_chars].rstrip() + "..."
            lines.append(f"- {message.role.value}: {text}")
        if len(dropped) > self.max_lines:
            lines.append(f"- ... and {len(dropped) - self.max_lines} more")
        return Message(
            role=MessageRole.SYSTEM,
            content="\n".join(lines),
            metadata={"compacted": str(len(dropped))},
        )

    def compact(self, history: list[Message], limit: int) -> list[Message]:
        if history_tokens(history) <= limit:
            return list(history)

        # keep the longest possible tail that fits next to its summary note
        for split in range(1, len(history) + 1):
            note = self._note(history[:split])
            rest = history[split:]
            if message_tokens(note) + history_tokens(rest) <= limit:
                return [note] + list(rest)

        return self._fallback.compact(history, limit)


# ==================== memory manager ====================


class MemoryManager:
    """Manages an agent's system prompt and budgeted conversation history."""

    def __init__(self, token_budget: int, strategy: ContextStrategy | None = None):
        """Initialize the memory manager with empty state.

        Args:
            token_budget: Maximum estimated tokens for system prompt + history
            strategy: How to shorten history (defaults to TrimStrategy)
        """
        self.token_budget = token_budget
        self.strategy = strategy or TrimStrategy()
        self.system_prompt: str | None = None
        self.history: list[Message] = []

    @property
    def system_tokens(self) -> int:
        if not self.system_prompt:
            return 0
        return estimate_tokens(self.system_prompt) + 1

    @property
    def history_limit(self) -> int:
        """Tokens left for history once the system prompt is counted."""
        return max(0, self.token_budget - self.system_tokens)

    def total_tokens(self) -> int:
        return self.system_tokens + history_tokens(self.history)

    def remaining_tokens(self) -> int:
        return max(0, self.token_budget - self.total_tokens())

    def set_system_prompt(self, prompt: str | None) -> None:
        self.system_prompt = prompt
        self._enforce()

    def add_message(self, message: Message) -> None:
        """Add a message to conversation history, then enforce the budget."""
        self.history.append(message)
        self._enforce()

    def add(self, role: MessageRole, content: str, metadata: dict[str, str] | None = None) -> Message:
        """Create, store, and return a message."""
        message = Message(role=role, content=content, metadata=metadata)
        self.add_message(message)
        return message

    def _enforce(self) -> None:
        limit = self.history_limit
        if history_tokens(self.history) > limit:
            before = len(self.history)
            self.history = self.strategy.compact(self.history, limit)
            logger.debug(
                f"{self.strategy.name} strategy shortened history from "
                f"{before} to {len(self.history)} messages"
            )

    def compact(self, target: int) -> None:
        """Shrink history to at most ``target`` tokens using the strategy."""
        self.history = self.strategy.compact(self.history, max(0, target))

    def build_messages(self, extra: list[Message] | None = None) -> list[Message]:
        """Return the system prompt (as a message) followed by history and ``extra``."""
        messages: list[Message] = []
        if self.system_prompt:
            messages.append(Message(role=MessageRole.SYSTEM, content=self.system_prompt))
        messages.extend(self.history)
        if extra:
            messages.extend(extra)
        return messages

    def clear(self) -> None:
        """Clear conversation history; the system prompt stays."""
        self.history = []

    def get_history(self) -> list[dict]:
        """Export history as list of dicts."""
        return [msg.to_dict() for msg in self.history]

    def copy(self) -> "MemoryManager":
        """Return an independent manager with a deep copy of the history."""
        clone = MemoryManager(self.token_budget, self.strategy)
        clone.system_prompt = self.system_prompt
        clone.history = copy.deepcopy(self.history)
        return clone
