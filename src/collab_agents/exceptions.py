"""Custom exception hierarchy for collab_agents.

This module defines all custom exceptions used throughout the package,
organized into logical categories: client errors, tool errors, task pool
errors, budget errors, and orchestration configuration errors.
"""


class AgentError(Exception):
    """Base exception for all collab_agents errors."""


# =============================================================================
# Client Errors - Issues with remote model calls
# =============================================================================

class ClientError(AgentError):
    """Base class for capability client errors.

    Raised when a remote model call fails or times out. Transient subclasses
    (rate limits, unavailable providers, timeouts) are retried by the agent;
    everything else fails immediately.

    Attributes:
        usage: Usage of the calls that succeeded earlier in the same turn
            (a tool loop), or None when nothing was spent
    """

    usage = None


class AuthenticationError(ClientError):
    """API key is invalid or missing."""


class RateLimitError(ClientError):
    """Rate limit exceeded."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        self.retry_after = retry_after
        if retry_after:
            message = f"{message}. Retry after: {retry_after}s"
        super().__init__(message)


class ProviderUnavailableError(ClientError):
    """Provider API is temporarily unavailable."""


class InvalidResponseError(ClientError):
    """Response from provider could not be parsed."""


class CallTimeoutError(ClientError):
    """A single model call exceeded its timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Model call timed out after {timeout}s")


# errors worth another attempt
TRANSIENT_CLIENT_ERRORS = (RateLimitError, ProviderUnavailableError, CallTimeoutError)


# =============================================================================
# Tool Errors - Issues with tool routing and execution
# =============================================================================

class ToolError(AgentError):
    """Base class for tool routing and execution errors."""


class UnknownToolError(ToolError):
    """No registered backend owns the requested tool."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}")


class DuplicateToolError(ToolError):
    """Two backends advertise the same tool name.

    The first registered backend keeps the tool. This is reported as a
    warning by the router unless strict registration was requested.

    Attributes:
        tool_name: The contested tool name
        owner: Backend that keeps the tool
        rejected: Backend whose advertisement was skipped
    """

    def __init__(self, tool_name: str, owner: str, rejected: str):
        self.tool_name = tool_name
        self.owner = owner
        self.rejected = rejected
        super().__init__(
            f"Tool '{tool_name}' already provided by backend '{owner}'; "
            f"ignoring duplicate from '{rejected}'"
        )


class BackendError(ToolError):
    """Tool execution failed inside a backend."""

    def __init__(self, tool_name: str, cause: Exception | str):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"Tool '{tool_name}' execution failed: {cause}")


class ToolTimeoutError(BackendError):
    """Tool execution timed out."""

    def __init__(self, tool_name: str, timeout: float):
        self.timeout = timeout
        super().__init__(tool_name, f"timed out after {timeout}s")


# =============================================================================
# Task Pool Errors
# =============================================================================

class ClaimConflictError(AgentError):
    """Lost a claim race: the task is already owned by someone else.

    This is the expected outcome for every losing claimant, not a failure
    of the run.
    """

    def __init__(self, task_id: str, holder: str | None = None):
        self.task_id = task_id
        self.holder = holder
        if holder:
            message = f"Task '{task_id}' already claimed by '{holder}'"
        else:
            message = f"Task '{task_id}' is not claimable"
        super().__init__(message)


class TaskNotFoundError(AgentError):
    """Task id is not part of the pool."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


# =============================================================================
# Budget Errors
# =============================================================================

class BudgetExceededError(AgentError):
    """A prompt cannot fit inside an agent's token budget."""

    def __init__(self, agent_id: str, required: int, budget: int, policy: str = "strict"):
        self.agent_id = agent_id
        self.required = required
        self.budget = budget
        self.policy = policy
        super().__init__(
            f"Agent '{agent_id}' needs ~{required} tokens but its budget is {budget}"
        )


# =============================================================================
# Orchestration Errors - Detected before any call is issued
# =============================================================================

class OrchestrationError(AgentError):
    """Base class for whole-run orchestration errors."""


class ConfigurationError(OrchestrationError):
    """The orchestration or team configuration is invalid."""


class AgentNotFoundError(ConfigurationError):
    """A mode references an agent id that is not registered."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")
