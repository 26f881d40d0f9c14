"""Agent implementation.

An Agent wraps one capability client with an identity, an optional persona,
a private budgeted history, and an optional tool router. It is the unit the
orchestration engine schedules; concurrent steps work on forks so sibling
calls never share a mutable history.
"""

import copy

from .clients.base import BaseLLMClient, RetryPolicy, call_with_retry
from .config import get_settings
from .core import ContextStrategy, MemoryManager, PromptBuilder, ToolExecutor, parse_tool_call
from .core.memory_manager import estimate_tokens
from .exceptions import BudgetExceededError, ClientError
from .logging import get_logger
from .tools.router import ToolRouter
from .types import AgentReply, BudgetPolicy, Message, MessageRole, UsageStats

logger = get_logger(__name__)

MAX_ITERATIONS_WARNING = "[Warning: Maximum tool iterations reached]"


class Agent:
    """A model-backed participant with its own conversation history.

    The respond loop:
    1. Append the prompt to history (subject to the budget policy)
    2. Invoke the client with retries on transient failures
    3. If the reply contains an in-band tool call, run it through the router,
       append the result, and invoke again
    4. Append the final reply and return it with the summed usage
    """

    def __init__(
        self,
        id: str,
        client: BaseLLMClient,
        name: str | None = None,
        expertise: str | None = None,
        personality: str | None = None,
        metadata: dict[str, str] | None = None,
        token_budget: int | None = None,
        tool_router: ToolRouter | None = None,
        context_strategy: ContextStrategy | None = None,
        budget_policy: BudgetPolicy | None = None,
        retry_policy: RetryPolicy | None = None,
        max_tool_iterations: int | None = None,
        tool_timeout: float | None = None,
    ):
        """Initialize the agent.

        Args:
            id: Unique identifier within an orchestration
            client: Capability client, shared with every fork
            name: Display name (defaults to id)
            expertise: Optional persona expertise
            personality: Optional persona approach
            metadata: Free-form string metadata
            token_budget: History budget in tokens (settings default if None)
            tool_router: Optional router, shared with every fork
            context_strategy: How over-budget history is shortened
            budget_policy: What to do when a prompt cannot fit; when None the
                orchestration's policy applies, then the settings default
            retry_policy: Retry/timeout settings for client calls
            max_tool_iterations: Tool calls allowed per respond()
            tool_timeout: Per tool call timeout in seconds
        """
        settings = get_settings()

        self.id = id
        self.client = client
        self.name = name or id
        self.expertise = expertise
        self.personality = personality
        self.metadata = dict(metadata or {})
        self.tool_router = tool_router
        self.budget_policy = budget_policy
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.max_tool_iterations = (
            max_tool_iterations if max_tool_iterations is not None else settings.max_tool_iterations
        )

        self.prompt_builder = PromptBuilder(self.name, expertise, personality)
        self.memory = MemoryManager(token_budget or settings.agent_token_budget, context_strategy)
        self.tool_executor = (
            ToolExecutor(tool_router, timeout=tool_timeout if tool_timeout is not None else settings.tool_timeout)
            if tool_router is not None
            else None
        )
        self._base_prompt: str | None = None

    def __repr__(self) -> str:
        return f"Agent(id={self.id!r}, name={self.name!r})"

    @property
    def token_budget(self) -> int:
        return self.memory.token_budget

    @property
    def history(self) -> list[Message]:
        return self.memory.history

    @property
    def effective_budget_policy(self) -> BudgetPolicy:
        return self.budget_policy or get_settings().budget_policy

    # ==================== identity and state ====================

    def augmented_prompt(self, base_prompt: str) -> str:
        """Prefix persona text (name, expertise, approach) to ``base_prompt``."""
        return self.prompt_builder.augment(base_prompt)

    def set_system_prompt(self, base_prompt: str) -> None:
        """Use ``base_prompt``, persona-augmented, as the system prompt."""
        self._base_prompt = base_prompt
        self._refresh_system_prompt()

    def receive_message(
        self,
        role: MessageRole,
        content: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Inject a message into history without calling the model."""
        self.memory.add(role, content, metadata)

    def clear_history(self) -> None:
        self.memory.clear()

    def fork(self) -> "Agent":
        """Return an independent copy for one concurrent branch.

        The fork gets a deep copy of the history and metadata and shares the
        client, tool router, and policies with the original.
        """
        clone = copy.copy(self)
        clone.metadata = dict(self.metadata)
        clone.memory = self.memory.copy()
        return clone

    def _tools_enabled(self) -> bool:
        return self.tool_router is not None and bool(self.tool_router.list_all())

    def _refresh_system_prompt(self) -> None:
        """Rebuild the system prompt so it advertises the router's current tools."""
        tools = self.tool_router.list_all() if self.tool_router is not None else []
        if self._base_prompt is not None:
            self.memory.set_system_prompt(self.prompt_builder.build_system_prompt(self._base_prompt, tools))
        elif tools:
            self.memory.set_system_prompt(self.prompt_builder.format_tools(tools))

    # ==================== budget ====================

    def _fit_prompt(self, prompt: str) -> tuple[str, bool]:
        """Apply the budget policy to a prompt.

        Returns:
            The prompt to send and whether it goes out over budget.

        Raises:
            BudgetExceededError: Under STRICT, or under ADAPTIVE when even a
                truncated prompt cannot fit next to the system prompt.
        """
        budget = self.memory.token_budget
        required = self.memory.system_tokens + estimate_tokens(prompt) + 1
        if required <= budget:
            return prompt, False

        policy = self.effective_budget_policy
        if policy == BudgetPolicy.STRICT:
            raise BudgetExceededError(self.id, required, budget, policy.value)

        if policy == BudgetPolicy.PERMISSIVE:
            logger.warning(
                f"agent {self.id} sending ~{required} tokens over its budget of {budget}"
            )
            return prompt, True

        # adaptive: drop history, truncate the prompt to what is left, and retry once
        self.memory.compact(0)
        allowance = budget - self.memory.system_tokens - 1
        if allowance < 1:
            raise BudgetExceededError(self.id, required, budget, policy.value)
        truncated = prompt[: allowance * 4]
        logger.info(f"agent {self.id} compacted history and truncated prompt to fit {budget} tokens")
        if self.memory.system_tokens + estimate_tokens(truncated) + 1 > budget:
            raise BudgetExceededError(self.id, required, budget, policy.value)
        return truncated, False

    # ==================== respond ====================

    async def respond(self, prompt: str) -> AgentReply:
        """Answer a prompt, running in-band tool calls along the way.

        Args:
            prompt: The user-role content for this turn

        Returns:
            AgentReply with the final text and usage summed over every
            model call made for this turn.

        Raises:
            ClientError: If the client still fails after retries; its ``usage``
                holds what earlier calls of this turn spent
            BudgetExceededError: If the prompt cannot fit the budget under the
                active policy
        """
        self._refresh_system_prompt()
        prompt, over_budget = self._fit_prompt(prompt)

        user_message = Message(role=MessageRole.USER, content=prompt)
        if over_budget:
            messages = self.memory.build_messages([user_message])
            self.memory.add_message(user_message)
        else:
            self.memory.add_message(user_message)
            messages = self.memory.build_messages()

        usage: UsageStats | None = None
        tool_calls_made = 0
        use_tools = self.tool_executor is not None and self._tools_enabled()

        while True:
            budget_hint = self.memory.remaining_tokens()
            try:
                reply = await call_with_retry(
                    lambda: self.client.invoke(messages, budget_hint),
                    self.retry_policy,
                    name=f"agent {self.id}",
                )
            except ClientError as e:
                # earlier calls of this turn were billed
                e.usage = usage
                raise
            if reply.usage is not None:
                usage = reply.usage if usage is None else usage + reply.usage

            content = reply.content
            tool_call = parse_tool_call(content) if use_tools else None
            if tool_call is None:
                break

            if tool_calls_made >= self.max_tool_iterations:
                logger.warning(f"agent {self.id} hit the tool iteration limit ({self.max_tool_iterations})")
                content = f"{content}\n\n{MAX_ITERATIONS_WARNING}"
                break

            self.memory.add(MessageRole.ASSISTANT, content)
            result_text = await self.tool_executor.execute(tool_call)
            tool_calls_made += 1
            self.memory.add(MessageRole.USER, result_text, {"tool": tool_call.name})
            messages = self.memory.build_messages()

        self.memory.add(MessageRole.ASSISTANT, content)
        return AgentReply(content=content, usage=usage, tool_calls_made=tool_calls_made)
