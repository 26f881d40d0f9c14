"""Multi-agent orchestration: modes, engine, task pool, and lifecycle events."""

from .convergence import convergence_score, jaccard_similarity, word_set
from .engine import Orchestration, parse_completion_markers
from .events import (
    CallbackEventSink,
    CollectingEventSink,
    EventSink,
    EventType,
    LoggingEventSink,
    OrchestrationEvent,
)
from .modes import (
    DEFAULT_CONVERGENCE_THRESHOLD,
    Checklist,
    CollaborationMode,
    Debate,
    DecentralizedPool,
    Hierarchical,
    Moderated,
    Parallel,
    RoundRobin,
)
from .task_pool import TaskPool

__all__ = [
    "Orchestration",
    "CollaborationMode",
    "Parallel",
    "RoundRobin",
    "Moderated",
    "Hierarchical",
    "Debate",
    "Checklist",
    "DecentralizedPool",
    "DEFAULT_CONVERGENCE_THRESHOLD",
    "TaskPool",
    "EventType",
    "OrchestrationEvent",
    "EventSink",
    "CallbackEventSink",
    "LoggingEventSink",
    "CollectingEventSink",
    "convergence_score",
    "jaccard_similarity",
    "word_set",
    "parse_completion_markers",
]
