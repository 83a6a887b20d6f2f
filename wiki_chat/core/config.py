"""Application configuration using Pydantic Settings V2."""

from functools import cached_property
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wiki_chat.core.settings import (
    AppConfig,
    AuthConfig,
    ChatConfig,
    DatabaseConfig,
    KnowledgeConfig,
    LLMConfig,
    RetryConfig,
)

logger = structlog.get_logger()

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (1, 4096)

DEFAULT_DOMAIN_ANCHORS = (
    "tum,technical university of munich,campus,student,students,university,"
    "semester,lecture,lectures,course,courses,exam,exams,enrollment,enrolment,"
    "mensa,library,professor,faculty,degree,study,studies,wiki"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Flat fields are loaded directly from environment variables.
    Domain properties provide grouped access (e.g. settings.llm.provider).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Provider
    llm_provider: Literal["openai", "anthropic"] = Field(
        default="openai",
        description="LLM provider to use",
    )
    llm_temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        description="Sampling temperature, 0 to 2",
    )
    llm_max_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS,
        description="Maximum tokens per answer, 1 to 4096",
    )

    # OpenAI
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model name",
    )

    # Anthropic
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Anthropic API key",
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Anthropic model name",
    )

    # Retry / backoff
    retry_base_delay: float = Field(
        default=1.0,
        gt=0,
        description="Delay before the first retry, in seconds",
    )
    retry_max_delay: float = Field(
        default=32.0,
        gt=0,
        description="Upper bound for any single retry delay, in seconds",
    )
    retry_max_attempts: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Total attempts including the first one",
    )
    retry_jitter: float = Field(
        default=0.25,
        ge=0,
        description="Maximum random offset added to or removed from a delay",
    )

    # App
    app_name: str = Field(
        default="wiki-chat",
        description="Application name",
    )
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=True,
        description="Debug mode",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum log level",
    )
    cors_origins: str = Field(
        default="",
        description="Comma-separated CORS origins outside development",
    )

    # Chat
    platform_name: str = Field(
        default="TUM Community Platform",
        description="Platform name used in the assistant's role statement",
    )
    institution_name: str = Field(
        default="TUM",
        description="Institution the wiki covers, used in scope rules",
    )
    chat_rate_limit: str = Field(
        default="10/minute",
        description="Per-user limit for chat messages",
    )
    chat_history_limit: int = Field(
        default=20,
        ge=0,
        le=200,
        description="Prior messages sent to the model as context",
    )
    domain_anchor_terms: str = Field(
        default=DEFAULT_DOMAIN_ANCHORS,
        description="Comma-separated terms that keep a query in scope",
    )

    # Knowledge base
    wiki_content_url: str | None = Field(
        default=None,
        description="GraphQL endpoint of the wiki content service",
    )
    wiki_content_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token for the wiki content service",
    )
    wiki_articles_path: Path | None = Field(
        default=None,
        description="JSON file with wiki articles, used when no content URL is set",
    )
    wiki_max_results: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum retrieved articles per query",
    )
    wiki_request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for content service requests, in seconds",
    )
    wiki_cache_ttl: float = Field(
        default=300.0,
        ge=0,
        description="Seconds content service lookups stay cached, 0 disables caching",
    )

    # JWT Auth
    jwt_secret_key: SecretStr = Field(
        description="Secret used to verify platform-issued access tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm",
    )

    # Database
    database_url: SecretStr = Field(
        description="Async database URL (mysql+aiomysql://...)",
    )

    # --- Lenient fields ---

    @field_validator("llm_temperature", mode="before")
    @classmethod
    def _fallback_temperature(cls, value: Any) -> float:
        return _parse_in_range(
            "LLM_TEMPERATURE", value, float, TEMPERATURE_RANGE, DEFAULT_TEMPERATURE
        )

    @field_validator("llm_max_tokens", mode="before")
    @classmethod
    def _fallback_max_tokens(cls, value: Any) -> int:
        return _parse_in_range(
            "LLM_MAX_TOKENS", value, int, MAX_TOKENS_RANGE, DEFAULT_MAX_TOKENS
        )

    @model_validator(mode="after")
    def _require_provider_credential(self) -> "Settings":
        key = (
            self.anthropic_api_key
            if self.llm_provider == "anthropic"
            else self.openai_api_key
        )
        if not key.get_secret_value().strip():
            raise ValueError(
                f"{self.llm_provider.upper()}_API_KEY environment variable is required"
            )
        return self

    # --- Domain properties ---

    @cached_property
    def llm(self) -> LLMConfig:
        """LLM provider configuration."""
        return LLMConfig(
            provider=self.llm_provider,
            openai_api_key=self.openai_api_key,
            openai_model=self.openai_model,
            anthropic_api_key=self.anthropic_api_key,
            anthropic_model=self.anthropic_model,
            temperature=self.llm_temperature,
            max_tokens=self.llm_max_tokens,
        )

    @cached_property
    def retry(self) -> RetryConfig:
        """Backoff configuration for remote LLM calls."""
        return RetryConfig(
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            max_attempts=self.retry_max_attempts,
            jitter=self.retry_jitter,
        )

    @cached_property
    def app(self) -> AppConfig:
        """Application environment configuration."""
        return AppConfig(
            name=self.app_name,
            env=self.app_env,
            debug=self.debug,
            log_level=self.log_level.upper(),
            cors_origins=tuple(
                origin.strip()
                for origin in self.cors_origins.split(",")
                if origin.strip()
            ),
        )

    @cached_property
    def chat(self) -> ChatConfig:
        """Chat pipeline configuration."""
        return ChatConfig(
            platform_name=self.platform_name,
            institution_name=self.institution_name,
            rate_limit=self.chat_rate_limit,
            history_limit=self.chat_history_limit,
            domain_anchor_terms=self.domain_anchor_terms,
        )

    @cached_property
    def knowledge(self) -> KnowledgeConfig:
        """Knowledge base source configuration."""
        return KnowledgeConfig(
            content_url=self.wiki_content_url or None,
            content_token=self.wiki_content_token,
            articles_path=self.wiki_articles_path,
            max_results=self.wiki_max_results,
            request_timeout=self.wiki_request_timeout,
            cache_ttl=self.wiki_cache_ttl,
        )

    @cached_property
    def auth(self) -> AuthConfig:
        """Access token verification configuration."""
        return AuthConfig(
            secret_key=self.jwt_secret_key,
            algorithm=self.jwt_algorithm,
        )

    @cached_property
    def database(self) -> DatabaseConfig:
        """Database connection configuration."""
        return DatabaseConfig(url=self.database_url)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app.is_development


def _parse_in_range(
    env_name: str,
    value: Any,
    cast: type,
    bounds: tuple[float, float],
    default: float,
) -> Any:
    """Coerce ``value`` with ``cast``; log and fall back to ``default`` when invalid."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        logger.warning(
            "Invalid configuration value, using default",
            setting=env_name,
            value=value,
            default=default,
        )
        return default
    low, high = bounds
    if not low <= parsed <= high:
        logger.warning(
            "Configuration value out of range, using default",
            setting=env_name,
            value=parsed,
            allowed=f"{low}-{high}",
            default=default,
        )
        return default
    return parsed


# Global settings instance
settings = Settings()
