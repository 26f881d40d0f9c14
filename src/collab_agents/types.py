"""Shared types for collab_agents.

These types are the provider-agnostic vocabulary used by agents, the tool
router, and the orchestration engine. Capability clients convert their
provider-specific formats to and from these types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(Enum):
    """Role of a message in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class BudgetPolicy(Enum):
    """What an agent does when a prompt cannot fit its token budget."""
    STRICT = "strict"
    ADAPTIVE = "adaptive"
    PERMISSIVE = "permissive"


class TaskStatus(Enum):
    """Lifecycle state of a work item."""
    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Message:
    """A message in an agent's conversation history.

    Messages are immutable once created; history mutation only ever appends
    or drops whole messages.

    Attributes:
        role: The role of the message sender
        content: Text content of the message
        timestamp: UTC creation time
        metadata: Optional free-form string metadata
    """
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary representation."""
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


@dataclass(frozen=True)
class UsageStats:
    """Token usage statistics."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "UsageStats") -> "UsageStats":
        return UsageStats(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class ClientReply:
    """Reply from a capability client for a single call."""
    content: str
    usage: UsageStats | None = None


@dataclass
class AgentReply:
    """Reply from an agent, with usage summed over every model call it made."""
    content: str
    usage: UsageStats | None = None
    tool_calls_made: int = 0


@dataclass(frozen=True)
class ReplyRecord:
    """One entry of an orchestration transcript.

    Appended by the engine after a successful agent call and never mutated.

    Attributes:
        agent_id: Id of the agent that replied (None for non-agent entries)
        display_name: Display name of the agent
        role: Conversation role of the entry
        content: Reply text
        round: Round, iteration, or layer index the reply belongs to
        layer: Hierarchical layer index, if any
        usage: Token usage of the call that produced the reply
        metadata: Mode-specific annotations (moderator, tasks_completed, ...)
    """
    agent_id: str | None
    display_name: str | None
    role: MessageRole
    content: str
    round: int
    layer: int | None = None
    usage: UsageStats | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class Task:
    """A unit of work in a checklist or a task pool.

    Attributes:
        id: Short identifier used in completion markers and pool keys
        title: Human-readable title
        description: What the task entails
        status: Current lifecycle state
        claimant_id: Agent that holds or held the task
        result: Completion note recorded by the claimant
        error: Failure note recorded by the claimant
    """
    id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    claimant_id: str | None = None
    result: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "claimant_id": self.claimant_id,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class AgentFailure:
    """A call that failed for good during a run."""
    agent_id: str
    error: str
    round: int
    task_id: str | None = None


# ==================== tool types ====================


@dataclass
class ToolParameter:
    """One parameter of a tool."""
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


@dataclass
class ToolDescriptor:
    """Description of a tool advertised by a backend."""
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_schema(self) -> dict[str, Any]:
        """Return a JSON schema for the tool parameters."""
        return {
            "type": "object",
            "properties": {
                p.name: {"type": p.type, "description": p.description}
                for p in self.parameters
            },
            "required": [p.name for p in self.parameters if p.required],
        }


@dataclass
class ToolResult:
    """Outcome of a tool execution."""
    success: bool
    output: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: Any = None, **metadata: Any) -> "ToolResult":
        """Build a successful result."""
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ToolResult":
        """Build a failed result."""
        return cls(success=False, error=error, metadata=metadata)


# ==================== run result ====================


@dataclass
class RunResult:
    """Aggregate result of one orchestration run.

    Attributes:
        transcript: Every successful reply, in append order
        rounds_completed: Rounds, iterations, or layers actually executed
        is_complete: Whether the mode reached its natural end
        convergence_score: Debate similarity or checklist/pool completion fraction
        total_usage: Sum of usage over every successful call
        failures: Calls that failed after retries and fallbacks
        task_status: Final task list (checklist and pool modes)
    """
    transcript: list[ReplyRecord]
    rounds_completed: int
    is_complete: bool
    convergence_score: float | None = None
    total_usage: UsageStats = field(default_factory=UsageStats)
    failures: list[AgentFailure] = field(default_factory=list)
    task_status: list[Task] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        """Total tokens used by the run."""
        return self.total_usage.total_tokens
