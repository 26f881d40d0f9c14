"""Factory for creating capability clients.

This module provides a centralized way to create clients based on provider
name, using a registry pattern that makes it easy to add new providers.
"""

import importlib
import os
from typing import Any

from ..config import get_settings
from .base import BaseLLMClient

# registry of provider configurations
_PROVIDER_REGISTRY: dict[str, dict[str, Any]] = {
    "anthropic": {
        "class_path": "collab_agents.clients.anthropic.AnthropicClient",
        "api_key_env": "ANTHROPIC_API_KEY",
        "default_model": "claude-sonnet-4-5-20250929",
    },
    "openai": {
        "class_path": "collab_agents.clients.openai.OpenAIClient",
        "api_key_env": "OPENAI_API_KEY",
        "default_model": "gpt-4o",
    },
    "together": {
        "class_path": "collab_agents.clients.together.TogetherClient",
        "api_key_env": "TOGETHER_API_KEY",
        "default_model": "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
    },
    "google": {
        "class_path": "collab_agents.clients.google.GoogleClient",
        "api_key_env": "GOOGLE_API_KEY",
        "default_model": "gemini-2.0-flash",
    },
}


def get_available_providers() -> list[str]:
    """Get list of available provider names."""
    return list(_PROVIDER_REGISTRY.keys())


def register_provider(
    name: str,
    class_path: str,
    api_key_env: str,
    default_model: str,
) -> None:
    """Add or replace a provider entry.

    Args:
        name: Provider name used in team files and on the command line.
        class_path: Dotted path to a BaseLLMClient subclass.
        api_key_env: Environment variable holding the API key.
        default_model: Model used when none is given.
    """
    _PROVIDER_REGISTRY[name] = {
        "class_path": class_path,
        "api_key_env": api_key_env,
        "default_model": default_model,
    }


def get_default_model(provider: str) -> str:
    """Get the default model for a provider.

    Raises:
        ValueError: If provider is unknown.
    """
    if provider not in _PROVIDER_REGISTRY:
        raise ValueError(f"Unknown provider: {provider}. Available: {get_available_providers()}")
    return _PROVIDER_REGISTRY[provider]["default_model"]


def create_client(
    provider: str,
    model: str | None = None,
    client_config: dict | None = None,
    api_key: str | None = None,
) -> BaseLLMClient:
    """Create a capability client for the specified provider.

    Args:
        provider: The provider name (anthropic, openai, together, google).
        model: Optional model override. If not provided, uses provider default.
        client_config: Optional configuration dict for the client.
        api_key: Optional API key. If not provided, reads settings, then the
                 provider's environment variable.

    Returns:
        An initialized client instance.

    Raises:
        ValueError: If provider is unknown or API key is not available.
    """
    if provider not in _PROVIDER_REGISTRY:
        raise ValueError(f"Unknown provider: {provider}. Available: {get_available_providers()}")

    config = _PROVIDER_REGISTRY[provider]

    # resolve API key: argument > settings (.env aware) > raw env var
    resolved_key = (
        api_key
        or get_settings().get_api_key_for_provider(provider)
        or os.getenv(config["api_key_env"])
    )
    if not resolved_key:
        raise ValueError(f"{config['api_key_env']} not set in environment")

    resolved_model = model or config["default_model"]
    client_class = _import_client_class(config["class_path"])

    return client_class(
        api_key=resolved_key,
        model=resolved_model,
        client_config=client_config,
    )


def _import_client_class(class_path: str) -> type[BaseLLMClient]:
    """Dynamically import a client class from its dotted path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
