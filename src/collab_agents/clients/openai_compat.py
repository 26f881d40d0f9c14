"""Base class for OpenAI-compatible API clients.

This class provides shared implementation for providers that use the
OpenAI-compatible chat completions format (OpenAI, Together, Groq, etc.).
"""

from abc import abstractmethod
from contextlib import contextmanager
from typing import Any

from ..exceptions import InvalidResponseError
from ..types import ClientReply, Message, UsageStats
from .base import BaseLLMClient


class OpenAICompatibleClient(BaseLLMClient):
    """Base class for clients using OpenAI-compatible API format.

    Subclasses must implement:
    - _create_client(): initialize the provider's async SDK client
    - _get_supported_config_keys(): return set of supported config parameters
    - _get_default_api_args(): return provider-specific default arguments
    - _handle_api_errors(): context manager for exception mapping
    """

    def __init__(
        self,
        api_key: str | None,
        model: str,
        client_config: dict | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: API key for the provider
            model: Model name to use
            client_config: Optional configuration parameters
        """
        super().__init__(client_config)
        self.model = model
        self.client = self._create_client(api_key)

    @abstractmethod
    def _create_client(self, api_key: str | None) -> Any:
        """Create the provider's async SDK client instance."""

    @abstractmethod
    def _get_supported_config_keys(self) -> set[str]:
        """Return the set of config keys supported by this provider."""

    @abstractmethod
    def _get_default_api_args(self) -> dict[str, Any]:
        """Return provider-specific default API arguments."""

    @abstractmethod
    @contextmanager
    def _handle_api_errors(self):
        """Context manager for handling provider-specific errors.

        Should catch provider exceptions and re-raise as our exceptions:
        - AuthenticationError
        - RateLimitError
        - ProviderUnavailableError
        """

    # ==================== shared implementations ====================

    async def invoke(
        self,
        messages: list[Message],
        budget_hint: int | None = None,
    ) -> ClientReply:
        """Generate a reply from the provider.

        Raises:
            AuthenticationError: If API key is invalid
            RateLimitError: If rate limit is exceeded
            ProviderUnavailableError: If API is unavailable
            InvalidResponseError: If the response cannot be parsed
        """
        api_args = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            **self._get_default_api_args(),
        }

        # apply config overrides for supported keys
        if self.client_config:
            supported_keys = self._get_supported_config_keys()
            for key, value in self.client_config.items():
                if key in supported_keys:
                    api_args[key] = value

        if budget_hint is not None:
            api_args["max_tokens"] = self._max_output_tokens(
                budget_hint, api_args.get("max_tokens", 4096)
            )

        with self._handle_api_errors():
            response = await self.client.chat.completions.create(**api_args)
        return self._parse_response(response)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert messages to OpenAI-compatible format."""
        return [{"role": msg.role.value, "content": msg.content} for msg in messages]

    def _parse_response(self, response: Any) -> ClientReply:
        """Parse a chat completion into a ClientReply."""
        try:
            choice = response.choices[0]
            content = choice.message.content or ""

            usage = None
            if response.usage:
                usage = UsageStats(
                    input_tokens=response.usage.prompt_tokens or 0,
                    output_tokens=response.usage.completion_tokens or 0,
                    total_tokens=response.usage.total_tokens or 0,
                )

            return ClientReply(content=content, usage=usage)
        except (AttributeError, IndexError, TypeError) as e:
            raise InvalidResponseError(f"Failed to parse response: {e}") from e
