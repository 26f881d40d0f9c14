"""Base class for capability clients.

All model provider clients inherit from BaseLLMClient and implement a single
coroutine, ``invoke``, that turns an ordered message list into a reply plus
usage statistics. The orchestration core never inspects which provider sits
behind a client.
"""

import asyncio
import functools
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from ..exceptions import TRANSIENT_CLIENT_ERRORS, CallTimeoutError, RateLimitError
from ..logging import get_logger
from ..types import ClientReply, Message, MessageRole

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry and timeout settings for remote calls.

    Attributes:
        max_retries: Maximum number of retry attempts after the first call
        initial_delay: Initial delay in seconds between retries
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Whether to add random jitter to delay
        timeout: Per-attempt timeout in seconds (None for no timeout)
    """
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    timeout: float | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        """Build a policy from a Settings instance."""
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            timeout=settings.call_timeout,
        )


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    name: str = "call",
) -> T:
    """Await ``fn()`` with per-attempt timeout and exponential backoff.

    Retries on RateLimitError, ProviderUnavailableError and CallTimeoutError.
    Other exceptions are raised immediately. A timed out attempt is cancelled
    and treated like any other transient failure.

    Args:
        fn: Zero-argument callable returning a fresh awaitable per attempt
        policy: Retry settings (defaults to RetryPolicy())
        name: Label used in log messages

    Returns:
        The result of the first successful attempt.
    """
    policy = policy or RetryPolicy()
    delay = policy.initial_delay

    for attempt in range(policy.max_retries + 1):
        try:
            if policy.timeout is None:
                return await fn()
            try:
                return await asyncio.wait_for(fn(), timeout=policy.timeout)
            except asyncio.TimeoutError as e:
                raise CallTimeoutError(policy.timeout) from e
        except TRANSIENT_CLIENT_ERRORS as e:
            if attempt == policy.max_retries:
                logger.warning(f"max retries ({policy.max_retries}) exceeded for {name}: {e}")
                raise

            # calculate delay with optional jitter
            actual_delay = min(delay, policy.max_delay)
            if policy.jitter:
                actual_delay *= (0.5 + random.random())
            if isinstance(e, RateLimitError) and e.retry_after:
                actual_delay = max(actual_delay, min(e.retry_after, policy.max_delay))

            logger.info(
                f"retry {attempt + 1}/{policy.max_retries} for {name} "
                f"after {actual_delay:.1f}s: {e}"
            )
            await asyncio.sleep(actual_delay)
            delay *= policy.exponential_base

    raise RuntimeError("Unexpected retry loop exit")


def with_retry(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    timeout: float | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator for retrying async API calls with exponential backoff.

    Example:
        @with_retry(max_retries=3, initial_delay=1.0)
        async def make_api_call():
            ...
    """
    policy = RetryPolicy(
        max_retries=max_retries,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        timeout=timeout,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_retry(lambda: func(*args, **kwargs), policy, func.__name__)

        return wrapper
    return decorator


class BaseLLMClient(ABC):
    """Abstract base class for all capability clients.

    Each client is responsible for:
    1. Converting Message lists to provider format
    2. Making the API call
    3. Converting the response back to a ClientReply

    Clients must be stateless per call: independent agent forks share one
    client instance and invoke it concurrently.
    """

    def __init__(self, client_config: dict | None = None):
        """Initialize the client.
        Args:
            client_config: Optional dictionary of configuration parameters
                           (e.g. temperature, max_tokens, etc.)
        """
        self.client_config = client_config or {}

    @abstractmethod
    async def invoke(
        self,
        messages: list[Message],
        budget_hint: int | None = None,
    ) -> ClientReply:
        """Generate a reply from the model.

        Args:
            messages: Ordered conversation, system messages first
            budget_hint: Tokens left in the caller's budget, used to cap
                         the reply length

        Returns:
            ClientReply with the text and usage statistics

        Raises:
            ClientError: If the call fails
        """

    def _max_output_tokens(self, budget_hint: int | None, default: int = 4096) -> int:
        """Resolve the reply length cap from config and the caller's budget."""
        configured = self.client_config.get("max_tokens", default)
        if budget_hint is None or budget_hint <= 0:
            return configured
        return max(1, min(configured, budget_hint))

    @staticmethod
    def _split_system(messages: list[Message]) -> tuple[str | None, list[Message]]:
        """Separate system messages from the conversation.

        Providers that take the system prompt as a separate parameter use this;
        multiple system messages are joined in order.
        """
        system_parts = [m.content for m in messages if m.role == MessageRole.SYSTEM]
        rest = [m for m in messages if m.role != MessageRole.SYSTEM]
        system = "\n\n".join(system_parts) if system_parts else None
        return system, rest
