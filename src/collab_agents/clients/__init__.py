"""Capability client implementations.

All clients implement the BaseLLMClient interface and normalize
provider-specific responses to ClientReply.
"""

from .anthropic import AnthropicClient
from .base import BaseLLMClient, RetryPolicy, call_with_retry, with_retry
from .factory import create_client, get_available_providers
from .google import GoogleClient
from .openai import OpenAIClient
from .openai_compat import OpenAICompatibleClient
from .together import TogetherClient

__all__ = [
    "BaseLLMClient",
    "OpenAICompatibleClient",
    "OpenAIClient",
    "TogetherClient",
    "AnthropicClient",
    "GoogleClient",
    "RetryPolicy",
    "call_with_retry",
    "with_retry",
    "create_client",
    "get_available_providers",
]
