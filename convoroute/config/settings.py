"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
Settings are built once at startup and handed to component constructors;
nothing in the package reads configuration from module globals.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from convoroute.config.tiers import PolicySet, TierPolicy, default_tiers


class RedisSettings(BaseSettings):
    """Redis connection used for conversation logs, counters and spend cache."""

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    socket_timeout: float = Field(
        default=5.0, description="Per-command timeout in seconds for Redis calls"
    )

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class ProviderEndpoint(BaseModel):
    """Connection details for one LLM backend."""

    model: str = Field(description="Default model used by this backend")
    api_key: str = Field(default="", description="API key for the backend")
    api_base: str | None = Field(default=None, description="Override the API base URL")


class ProviderSettings(BaseSettings):
    """Provider router configuration."""

    weights: dict[str, int] = Field(
        default_factory=lambda: {
            "openai": 40, "grok": 25, "claude": 20, "deepseek": 15, "openrouter": 0
        },
        description="Provider name -> selection weight. "
                    "Set via PROVIDERS__WEIGHTS='{\"openai\": 40, \"claude\": 20}'",
    )
    fallback: str | None = Field(
        default="openrouter",
        description="Provider used for models no weighted provider serves (weight ignored)",
    )
    request_timeout: float = Field(
        default=300.0, description="Timeout in seconds for one primary completion call"
    )
    max_tokens: int = Field(default=4096, description="Maximum tokens in a response")

    openai: ProviderEndpoint = Field(default_factory=lambda: ProviderEndpoint(model="gpt-4.1"))
    claude: ProviderEndpoint = Field(
        default_factory=lambda: ProviderEndpoint(model="claude-3-5-sonnet-latest")
    )
    grok: ProviderEndpoint = Field(default_factory=lambda: ProviderEndpoint(model="grok-3"))
    deepseek: ProviderEndpoint = Field(
        default_factory=lambda: ProviderEndpoint(model="deepseek-chat")
    )
    openrouter: ProviderEndpoint = Field(
        default_factory=lambda: ProviderEndpoint(model="openai/gpt-4.1")
    )

    model_config = SettingsConfigDict(env_prefix="PROVIDERS_")

    @field_validator("weights")
    @classmethod
    def _weights_non_negative(cls, value: dict[str, int]) -> dict[str, int]:
        negative = [name for name, weight in value.items() if weight < 0]
        if negative:
            raise ValueError(f"Provider weights must be >= 0: {', '.join(negative)}")
        if not any(weight > 0 for weight in value.values()):
            raise ValueError("At least one provider must have a positive weight")
        return value


class AgentSettings(BaseSettings):
    """Auxiliary decision agents (context selection, model selection, response length)."""

    context_model: str = Field(
        default="openrouter/openai/gpt-4o-mini",
        description="LiteLLM model string for the context selection agent",
    )
    model_selection_model: str = Field(
        default="openrouter/openai/gpt-4o-mini",
        description="LiteLLM model string for the model selection agent",
    )
    response_length_model: str = Field(
        default="openrouter/openai/gpt-4o-mini",
        description="LiteLLM model string for the response length agent",
    )
    response_length_enabled: bool = Field(
        default=True, description="Add a response length guideline to the system prompt"
    )
    api_key: str = Field(default="", description="API key used by the agent models")
    context_timeout: float = Field(default=45.0, description="Context agent timeout (seconds)")
    model_timeout: float = Field(default=30.0, description="Model agent timeout (seconds)")
    response_length_timeout: float = Field(
        default=20.0, description="Response length agent timeout (seconds)"
    )
    context_prompt: str = Field(
        default="",
        description="Override for the context selection prompt (plain text or base64)",
    )
    model_selection_prompt: str = Field(
        default="",
        description="Override for the model selection prompt (plain text or base64)",
    )
    response_length_prompt: str = Field(
        default="",
        description="Override for the response length prompt (plain text or base64)",
    )
    trolling_models: list[str] = Field(
        default_factory=lambda: ["openai/gpt-4.1-mini", "x-ai/grok-4-fast", "x-ai/grok-4-fast:free"],
        description="Low-capability models reserved for abusive or joke turns",
    )

    model_config = SettingsConfigDict(env_prefix="AGENT_")


class OrchestratorSettings(BaseSettings):
    """Retry, timeout and prompt policy of the orchestration loop."""

    max_retries: int = Field(default=3, ge=1, description="Dispatch attempts per turn")
    backoff_delay: float = Field(
        default=1.0, ge=0, description="Base delay in seconds; attempt n waits delay * 2**n"
    )
    timeout: float = Field(default=600.0, description="Budget in seconds for the whole turn")
    limit_exceeded_model: str = Field(
        default="openai/gpt-4o-mini",
        description="Model forced onto turns of users over their spending limit",
    )
    support_prompt_addendum: str = Field(
        default=(
            "\n\nAt the end of your answer, briefly and kindly remind the user that the "
            "service is supported by donations."
        ),
        description="Appended to the system prompt for users without donation history",
    )

    model_config = SettingsConfigDict(env_prefix="ORCHESTRATOR_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    tokenizer_encoding: str = Field(
        default="o200k_base", description="tiktoken encoding used for context budgeting"
    )

    # Sub-configurations
    redis: RedisSettings = Field(default_factory=RedisSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    tiers: list[TierPolicy] = Field(
        default_factory=default_tiers,
        description="Tier policies, lowest grade first. Set via TIERS='[...]' (JSON)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def policy_set(self) -> PolicySet:
        """Build the validated, ordered policy set from the configured tiers."""
        return PolicySet(self.tiers)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
