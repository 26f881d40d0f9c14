"""Anthropic client implementation.

This client handles communication with the Anthropic API (Claude models)
through the async SDK.

Anthropic has unique requirements:
- System prompt is passed separately, not in messages
- Consecutive messages with the same role are merged into one turn
- Extended thinking uses a separate "thinking" parameter with budget_tokens
"""

import os
from typing import Any

from anthropic import APIConnectionError, AsyncAnthropic, InternalServerError
from anthropic import AuthenticationError as AnthropicAuthError
from anthropic import RateLimitError as AnthropicRateLimitError

from ..exceptions import (
    AuthenticationError,
    InvalidResponseError,
    ProviderUnavailableError,
    RateLimitError,
)
from ..types import ClientReply, Message, UsageStats
from .base import BaseLLMClient

# supported configuration keys for anthropic
SUPPORTED_CONFIG_KEYS = {
    "temperature",
    "top_p",
    "top_k",
    "max_tokens",
    "stop_sequences",
    # extended thinking
    "thinking_enabled",
    "thinking_budget_tokens",
}


class AnthropicClient(BaseLLMClient):
    """Anthropic API client.

    Supports:
    - Extended thinking with budget_tokens configuration
    - Generation parameters: temperature, top_p, top_k, stop_sequences
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-5-20250929",
        client_config: dict | None = None,
    ):
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key. Defaults to ANTHROPIC_API_KEY env var.
            model: Model to use. Defaults to Claude Sonnet 4.5.
            client_config: Optional configuration parameters:
                - temperature: float (0.0-1.0, default 1.0)
                - top_p: float (nucleus sampling)
                - top_k: int (top-k sampling)
                - max_tokens: int (default 4096)
                - stop_sequences: list[str]
                - thinking_enabled: bool (enable extended thinking)
                - thinking_budget_tokens: int (min 1024, must be < max_tokens)
        """
        super().__init__(client_config)
        self.client = AsyncAnthropic(api_key=api_key or os.environ.get("ANTHROPIC_API_KEY"))
        self.model = model
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate the client configuration."""
        if not self.client_config:
            return

        unsupported = set(self.client_config.keys()) - SUPPORTED_CONFIG_KEYS
        if unsupported:
            raise ValueError(f"Unsupported config keys for Anthropic: {unsupported}")

        thinking_enabled = self.client_config.get("thinking_enabled", False)
        budget_tokens = self.client_config.get("thinking_budget_tokens")
        max_tokens = self.client_config.get("max_tokens", 4096)

        if thinking_enabled and budget_tokens:
            if budget_tokens < 1024:
                raise ValueError("thinking_budget_tokens must be at least 1024")
            if budget_tokens >= max_tokens:
                raise ValueError("thinking_budget_tokens must be less than max_tokens")

    async def invoke(
        self,
        messages: list[Message],
        budget_hint: int | None = None,
    ) -> ClientReply:
        """Generate a reply from Anthropic.

        Raises:
            AuthenticationError: If API key is invalid
            RateLimitError: If rate limit is exceeded
            ProviderUnavailableError: If API is unavailable
        """
        system_prompt, converted_messages = self._convert_messages(messages)
        kwargs = self._build_api_kwargs(system_prompt, converted_messages, budget_hint)

        try:
            response = await self.client.messages.create(**kwargs)
        except AnthropicAuthError as e:
            raise AuthenticationError(f"Anthropic authentication failed: {e}") from e
        except AnthropicRateLimitError as e:
            raise RateLimitError("Anthropic rate limit exceeded") from e
        except (APIConnectionError, InternalServerError) as e:
            raise ProviderUnavailableError(f"Anthropic API unavailable: {e}") from e

        return self._parse_response(response)

    def _build_api_kwargs(
        self,
        system_prompt: str | None,
        messages: list[dict[str, Any]],
        budget_hint: int | None,
    ) -> dict[str, Any]:
        """Build the API kwargs from configuration."""
        config = self.client_config or {}

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self._max_output_tokens(budget_hint),
        }

        if system_prompt:
            kwargs["system"] = system_prompt

        # generation parameters
        for key in ("temperature", "top_p", "top_k", "stop_sequences"):
            if key in config:
                kwargs[key] = config[key]

        # extended thinking needs room for the reply on top of the thinking budget
        if config.get("thinking_enabled"):
            budget_tokens = config.get("thinking_budget_tokens", 1024)
            if kwargs["max_tokens"] > budget_tokens:
                kwargs["thinking"] = {
                    "type": "enabled",
                    "budget_tokens": budget_tokens,
                }

        return kwargs

    def _convert_messages(
        self, messages: list[Message]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert messages to Anthropic format, merging same-role runs."""
        system_prompt, rest = self._split_system(messages)
        converted: list[dict[str, Any]] = []

        for msg in rest:
            role = msg.role.value
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"] += "\n\n" + msg.content
            else:
                converted.append({"role": role, "content": msg.content})

        return system_prompt, converted

    def _parse_response(self, response: Any) -> ClientReply:
        """Parse Anthropic response, keeping text blocks only."""
        try:
            text_content = "".join(
                block.text for block in response.content if block.type == "text"
            )

            usage = None
            if response.usage:
                input_tokens = response.usage.input_tokens or 0
                output_tokens = response.usage.output_tokens or 0
                usage = UsageStats(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                )

            return ClientReply(content=text_content, usage=usage)
        except (AttributeError, TypeError) as e:
            raise InvalidResponseError(f"Failed to parse Anthropic response: {e}") from e
