"""centralized configuration management using pydantic settings.

this module provides type-safe, validated configuration for collab_agents.
runtime settings are loaded from environment variables and optional .env
files; team definitions are loaded from yaml files and validated with
pydantic models.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .types import BudgetPolicy


class Settings(BaseSettings):
    """main settings class for collab_agents.

    configuration is loaded from environment variables. a .env file in the
    working directory is also loaded if present.

    attributes:
        anthropic_api_key: api key for anthropic (claude)
        openai_api_key: api key for openai
        together_api_key: api key for together ai
        google_api_key: api key for google (gemini)
        llm_provider: explicit provider selection (auto-detected if not set)
        llm_model: model to use (provider default if not set)
        log_level: logging level (DEBUG, INFO, WARNING, ERROR)
        max_retries: retries for transient model call failures
        retry_initial_delay: first backoff delay in seconds
        retry_max_delay: backoff ceiling in seconds
        call_timeout: timeout for a single model call in seconds
        tool_timeout: timeout for a single tool call in seconds
        agent_token_budget: default per-agent history budget in tokens
        budget_policy: what to do when a prompt does not fit the budget
        max_tool_iterations: tool calls an agent may chain in one reply
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore extra env vars
    )

    # api keys for llm providers
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    together_api_key: str | None = None
    google_api_key: str | None = None
    gemini_api_key: str | None = None  # alias for google

    # llm configuration
    llm_provider: str | None = Field(default=None, alias="LLM_PROVIDER")
    llm_model: str | None = Field(default=None, alias="LLM_MODEL")

    log_level: str = Field(default="WARNING", alias="COLLAB_AGENTS_LOG_LEVEL")

    # engine defaults
    max_retries: int = Field(default=3, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    call_timeout: float | None = Field(default=120.0, gt=0)
    tool_timeout: float | None = Field(default=60.0, gt=0)
    agent_token_budget: int = Field(default=128_000, ge=1)
    budget_policy: BudgetPolicy = BudgetPolicy.ADAPTIVE
    max_tool_iterations: int = Field(default=5, ge=0)

    def get_google_api_key(self) -> str | None:
        """get google api key, checking both GOOGLE_API_KEY and GEMINI_API_KEY."""
        return self.google_api_key or self.gemini_api_key

    def detect_provider(self) -> str | None:
        """auto-detect provider based on available api keys.

        returns:
            provider name or None if no keys are set
        """
        if self.llm_provider:
            return self.llm_provider

        if self.anthropic_api_key:
            return "anthropic"
        if self.openai_api_key:
            return "openai"
        if self.together_api_key:
            return "together"
        if self.get_google_api_key():
            return "google"

        return None

    def get_api_key_for_provider(self, provider: str) -> str | None:
        """get the api key for a specific provider.

        args:
            provider: provider name (anthropic, openai, together, google)

        returns:
            api key or None if not set
        """
        key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "together": self.together_api_key,
            "google": self.get_google_api_key(),
        }
        return key_map.get(provider)


@lru_cache
def get_settings() -> Settings:
    """get the singleton settings instance.

    uses lru_cache to ensure only one instance is created.
    call get_settings.cache_clear() to reload settings if needed.

    returns:
        the settings instance
    """
    return Settings()


# ==================== team files ====================


class AgentSpec(BaseModel):
    """one agent of a team file."""

    id: str
    name: str | None = None
    provider: str | None = None
    model: str | None = None
    expertise: str | None = None
    personality: str | None = None
    token_budget: int | None = Field(default=None, ge=1)
    client_config: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TaskSpec(BaseModel):
    """one work item for checklist and pool modes."""

    id: str
    title: str
    description: str = ""


class ModeSpec(BaseModel):
    """collaboration mode of a team file.

    only the fields relevant to `type` are read; the rest keep their defaults.
    """

    type: Literal[
        "parallel",
        "round_robin",
        "moderated",
        "hierarchical",
        "debate",
        "checklist",
        "pool",
    ] = "parallel"
    order: list[str] = Field(default_factory=list)
    moderator: str | None = None
    respondents: list[str] = Field(default_factory=list)
    layers: list[list[str]] = Field(default_factory=list)
    max_rounds: int = Field(default=3, ge=1)
    convergence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    sequential: bool = False
    max_iterations: int = Field(default=5, ge=1)
    pool_id: str | None = None


class TeamConfig(BaseModel):
    """a team file: agents, their collaboration mode and optional tasks."""

    name: str = "team"
    system_context: str | None = None
    budget_policy: BudgetPolicy | None = None
    mode: ModeSpec = Field(default_factory=ModeSpec)
    agents: list[AgentSpec]
    fallbacks: dict[str, AgentSpec] = Field(default_factory=dict)
    tasks: list[TaskSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> "TeamConfig":
        ids = [agent.id for agent in self.agents]
        if not ids:
            raise ValueError("a team needs at least one agent")
        if len(set(ids)) != len(ids):
            raise ValueError("agent ids must be unique")

        known = set(ids)
        referenced = list(self.mode.order) + list(self.mode.respondents)
        for layer in self.mode.layers:
            referenced.extend(layer)
        if self.mode.moderator:
            referenced.append(self.mode.moderator)
        referenced.extend(self.fallbacks.keys())

        missing = [agent_id for agent_id in referenced if agent_id not in known]
        if missing:
            raise ValueError(f"unknown agent ids: {', '.join(missing)}")
        return self


def load_team_config(path: str | Path) -> TeamConfig:
    """load and validate a team file.

    args:
        path: path to the yaml team file

    returns:
        the validated team configuration

    raises:
        ConfigurationError: if the file is missing, not yaml, or invalid
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigurationError(f"team file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"team file is not valid yaml: {e}") from e

    try:
        return TeamConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid team file {path}: {e}") from e
