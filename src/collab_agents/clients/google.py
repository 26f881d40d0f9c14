"""Google Gemini client implementation using the google-genai SDK.

Google Gemini has unique requirements:
- Uses "parts" format for message content
- System instruction is a separate parameter
- Role names: "user" and "model" (not "assistant")
- Supports thinking/reasoning with thinking_budget and include_thoughts
"""

import os
from typing import Any

from google import genai
from google.genai import types
from google.genai.errors import APIError, ClientError, ServerError

from ..exceptions import (
    AuthenticationError,
    InvalidResponseError,
    ProviderUnavailableError,
    RateLimitError,
)
from ..types import ClientReply, Message, MessageRole, UsageStats
from .base import BaseLLMClient

# supported configuration keys for google
SUPPORTED_CONFIG_KEYS = {
    "temperature",
    "top_p",
    "top_k",
    "max_tokens",
    "stop_sequences",
    # thinking features
    "thinking_budget",
    "include_thoughts",
}


class GoogleClient(BaseLLMClient):
    """Google Gemini API client on the async surface of the google-genai SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.0-flash",
        client_config: dict | None = None,
    ):
        """Initialize the Google client.

        Args:
            api_key: Google API key. Defaults to GOOGLE_API_KEY or GEMINI_API_KEY env var.
            model: Model to use. Defaults to gemini-2.0-flash.
            client_config: Optional configuration parameters:
                - temperature: float (0.0-2.0)
                - top_p: float (default 0.95)
                - top_k: int
                - max_tokens: int (default 4096)
                - stop_sequences: list[str]
                - thinking_budget: int
                - include_thoughts: bool (return thought summaries)
        """
        super().__init__(client_config)

        resolved_key = api_key or os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
        if not resolved_key:
            raise ValueError("Google API key not found. Set GOOGLE_API_KEY or GEMINI_API_KEY env var.")

        self.client = genai.Client(api_key=resolved_key)
        self.model_name = model
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.client_config:
            return

        unsupported = set(self.client_config.keys()) - SUPPORTED_CONFIG_KEYS
        if unsupported:
            raise ValueError(f"Unsupported config keys for Google: {unsupported}")

    async def invoke(
        self,
        messages: list[Message],
        budget_hint: int | None = None,
    ) -> ClientReply:
        """Generate a reply from Google Gemini."""
        system_instruction, converted_messages = self._convert_messages(messages)
        config = self._build_generation_config(system_instruction, budget_hint)

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=converted_messages,
                config=config,
            )
        except ClientError as e:
            error_msg = str(e).lower()
            if "unauthorized" in error_msg or "authentication" in error_msg or "api key" in error_msg:
                raise AuthenticationError(f"Google authentication failed: {e}") from e
            if getattr(e, "code", None) == 429 or "resource_exhausted" in error_msg:
                raise RateLimitError("Google rate limit exceeded") from e
            raise InvalidResponseError(f"Invalid request to Google API: {e}") from e
        except ServerError as e:
            raise ProviderUnavailableError(f"Google API unavailable: {e}") from e
        except APIError as e:
            raise InvalidResponseError(f"Google API error: {e}") from e

        return self._parse_response(response)

    def _build_generation_config(
        self,
        system_instruction: str | None,
        budget_hint: int | None,
    ) -> types.GenerateContentConfig:
        """Build the generation config from client configuration."""
        cfg = self.client_config or {}

        config_kwargs: dict[str, Any] = {
            "max_output_tokens": self._max_output_tokens(budget_hint),
        }

        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction

        for key in ("temperature", "top_p", "top_k", "stop_sequences"):
            if key in cfg:
                config_kwargs[key] = cfg[key]

        thinking_budget = cfg.get("thinking_budget")
        include_thoughts = cfg.get("include_thoughts", False)
        if thinking_budget is not None or include_thoughts:
            thinking_config_kwargs: dict[str, Any] = {}
            if thinking_budget is not None:
                thinking_config_kwargs["thinking_budget"] = thinking_budget
            if include_thoughts:
                thinking_config_kwargs["include_thoughts"] = include_thoughts
            config_kwargs["thinking_config"] = types.ThinkingConfig(**thinking_config_kwargs)

        return types.GenerateContentConfig(**config_kwargs)

    def _convert_messages(
        self, messages: list[Message]
    ) -> tuple[str | None, list[types.Content]]:
        """Convert messages to Gemini contents."""
        system_instruction, rest = self._split_system(messages)
        converted = [
            types.Content(
                role="model" if msg.role == MessageRole.ASSISTANT else "user",
                parts=[types.Part(text=msg.content)],
            )
            for msg in rest
        ]
        return system_instruction, converted

    def _parse_response(self, response: Any) -> ClientReply:
        """Parse Gemini response, skipping thought parts."""
        try:
            text_content = ""
            if response.candidates:
                candidate = response.candidates[0]
                if candidate.content and candidate.content.parts:
                    for part in candidate.content.parts:
                        if part.text and not getattr(part, "thought", False):
                            text_content += part.text

            usage = None
            if getattr(response, "usage_metadata", None):
                um = response.usage_metadata
                usage = UsageStats(
                    input_tokens=getattr(um, "prompt_token_count", 0) or 0,
                    output_tokens=getattr(um, "candidates_token_count", 0) or 0,
                    total_tokens=getattr(um, "total_token_count", 0) or 0,
                )

            return ClientReply(content=text_content, usage=usage)
        except (AttributeError, IndexError, TypeError) as e:
            raise InvalidResponseError(f"Failed to parse Google response: {e}") from e
