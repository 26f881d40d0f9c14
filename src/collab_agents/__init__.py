"""Collab Agents - provider-agnostic multi-agent orchestration.

This package coordinates teams of model-backed agents through a set of
collaboration modes (parallel, round robin, moderated, hierarchical, debate,
checklist, and a decentralized task pool), with a shared tool router and
per-agent budgeted memory.
"""

from .agent import Agent
from .exceptions import (
    AgentError,
    AgentNotFoundError,
    BudgetExceededError,
    ClaimConflictError,
    ClientError,
    ConfigurationError,
    OrchestrationError,
    ToolError,
)
from .orchestration import (
    Checklist,
    Debate,
    DecentralizedPool,
    Hierarchical,
    Moderated,
    Orchestration,
    Parallel,
    RoundRobin,
    TaskPool,
)
from .tools import ToolRouter
from .types import (
    AgentReply,
    BudgetPolicy,
    Message,
    MessageRole,
    ReplyRecord,
    RunResult,
    Task,
    TaskStatus,
    UsageStats,
)

__all__ = [
    # agents and engine
    "Agent",
    "Orchestration",
    "ToolRouter",
    "TaskPool",
    # modes
    "Parallel",
    "RoundRobin",
    "Moderated",
    "Hierarchical",
    "Debate",
    "Checklist",
    "DecentralizedPool",
    # types
    "AgentReply",
    "BudgetPolicy",
    "Message",
    "MessageRole",
    "ReplyRecord",
    "RunResult",
    "Task",
    "TaskStatus",
    "UsageStats",
    # exceptions
    "AgentError",
    "AgentNotFoundError",
    "BudgetExceededError",
    "ClaimConflictError",
    "ClientError",
    "ConfigurationError",
    "OrchestrationError",
    "ToolError",
]
