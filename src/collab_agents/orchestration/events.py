"""Lifecycle events emitted during an orchestration run.

Events carry enough identifying fields (agent, task, round) for an observer
to follow progress without reading the transcript. Sinks receive events from
the coordinating flow only, one at a time.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from ..logging import get_logger


class EventType(Enum):
    """Kinds of lifecycle events."""
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    ROUND_STARTED = "round_started"
    ROUND_COMPLETED = "round_completed"
    AGENT_SELECTED = "agent_selected"
    AGENT_RESPONDED = "agent_responded"
    AGENT_FAILED = "agent_failed"
    CONVERGENCE_CHECKED = "convergence_checked"
    TASK_CLAIMED = "task_claimed"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"


@dataclass(frozen=True)
class OrchestrationEvent:
    """One lifecycle event.

    Attributes:
        type: What happened
        orchestration_id: Id of the emitting orchestration
        round: Round, iteration, or layer index (1-based) when relevant
        agent_id: Agent involved, if any
        agent_name: Display name of that agent
        task_id: Task involved, if any
        data: Extra fields (mode, score, error, tokens, ...)
    """
    type: EventType
    orchestration_id: str
    round: int | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    task_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> str:
        """One-line human readable form."""
        parts = [self.type.value]
        if self.round is not None:
            parts.append(f"round={self.round}")
        if self.agent_id is not None:
            parts.append(f"agent={self.agent_name or self.agent_id}")
        if self.task_id is not None:
            parts.append(f"task={self.task_id}")
        for key, value in self.data.items():
            parts.append(f"{key}={value}")
        return " ".join(parts)


class EventSink(ABC):
    """Receives lifecycle events."""

    @abstractmethod
    async def emit(self, event: OrchestrationEvent) -> None:
        """Handle one event."""


class CallbackEventSink(EventSink):
    """Forward events to a plain or async callable."""

    def __init__(self, callback: Callable[[OrchestrationEvent], Any]):
        self.callback = callback

    async def emit(self, event: OrchestrationEvent) -> None:
        result = self.callback(event)
        if inspect.isawaitable(result):
            await result


class LoggingEventSink(EventSink):
    """Write events to a logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO):
        self.logger = logger or get_logger("collab_agents.events")
        self.level = level

    async def emit(self, event: OrchestrationEvent) -> None:
        level = logging.WARNING if event.type in (EventType.AGENT_FAILED, EventType.TASK_FAILED) else self.level
        self.logger.log(level, f"[{event.orchestration_id}] {event.describe()}")


class CollectingEventSink(EventSink):
    """Keep every event in memory."""

    def __init__(self):
        self.events: list[OrchestrationEvent] = []

    async def emit(self, event: OrchestrationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[OrchestrationEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]
