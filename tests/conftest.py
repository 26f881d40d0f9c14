"""Shared test fixtures and configuration."""

import pytest

from collab_agents.agent import Agent
from collab_agents.clients.base import BaseLLMClient, RetryPolicy
from collab_agents.types import ClientReply, Message, MessageRole, UsageStats


class ScriptedClient(BaseLLMClient):
    """Client that replays a script instead of calling a provider.

    Each script item is a reply string, an exception to raise, or a callable
    taking the message list and returning a reply string. When the script
    runs out, ``default`` is returned.
    """

    def __init__(self, replies=None, default="ok", usage=None):
        super().__init__()
        self.replies = list(replies or [])
        self.default = default
        self.usage = usage or UsageStats(input_tokens=10, output_tokens=5, total_tokens=15)
        self.calls: list[list[Message]] = []

    async def invoke(self, messages, budget_hint=None):
        self.calls.append(list(messages))
        item = self.replies.pop(0) if self.replies else self.default
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(messages)
        return ClientReply(content=item, usage=self.usage)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def last_user_message(self, call: int = -1) -> str:
        """Content of the last user message of one recorded call."""
        users = [m.content for m in self.calls[call] if m.role == MessageRole.USER]
        return users[-1]

    def user_messages(self, call: int = -1) -> list[str]:
        return [m.content for m in self.calls[call] if m.role == MessageRole.USER]


@pytest.fixture
def fast_retry():
    """Retry policy without delays or timeouts."""
    return RetryPolicy(max_retries=2, initial_delay=0, max_delay=0, jitter=False, timeout=None)


@pytest.fixture
def scripted():
    """Factory for scripted clients."""
    def _make(replies=None, default="ok", usage=None):
        return ScriptedClient(replies, default, usage)
    return _make


@pytest.fixture
def make_agent(fast_retry):
    """Factory for agents backed by scripted clients.

    Returns ``(agent, client)``; pass ``client=`` to reuse a client.
    """
    def _make(agent_id, replies=None, default=None, client=None, **kwargs):
        if client is None:
            client = ScriptedClient(replies, default if default is not None else f"reply from {agent_id}")
        kwargs.setdefault("retry_policy", fast_retry)
        kwargs.setdefault("tool_timeout", None)
        return Agent(agent_id, client, **kwargs), client
    return _make
