"""
Application settings and configuration management.

This module handles all environment variables, API keys, and pipeline
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_AI_PROVIDERS = ("openai", "gemini", "anthropic")
SUPPORTED_EMBEDDING_PROVIDERS = ("gemini", "openai")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Keys
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    gemini_api_key: Optional[SecretStr] = Field(default=None, alias="GEMINI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Provider Routing
    ai_provider: str = Field(default="gemini", alias="AI_PROVIDER")

    # OpenAI
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_max_tokens: int = Field(default=8192, alias="OPENAI_MAX_TOKENS")
    openai_temperature: float = Field(default=0.7, alias="OPENAI_TEMPERATURE")
    openai_timeout_seconds: int = Field(default=120, alias="OPENAI_TIMEOUT_SECONDS")

    # Gemini
    gemini_model: str = Field(default="gemini-1.5-pro", alias="GEMINI_MODEL")
    gemini_max_tokens: int = Field(default=16384, alias="GEMINI_MAX_TOKENS")
    gemini_temperature: float = Field(default=0.7, alias="GEMINI_TEMPERATURE")
    gemini_timeout_seconds: int = Field(default=180, alias="GEMINI_TIMEOUT_SECONDS")

    # Anthropic
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="ANTHROPIC_MODEL"
    )
    anthropic_max_tokens: int = Field(default=8192, alias="ANTHROPIC_MAX_TOKENS")
    anthropic_temperature: float = Field(default=0.7, alias="ANTHROPIC_TEMPERATURE")
    anthropic_timeout_seconds: int = Field(default=120, alias="ANTHROPIC_TIMEOUT_SECONDS")

    # Provider retries (seconds between attempts)
    provider_max_retries: int = Field(default=3, alias="PROVIDER_MAX_RETRIES")
    provider_retry_delays: list[float] = Field(
        default_factory=lambda: [5.0, 15.0, 30.0],
        alias="PROVIDER_RETRY_DELAYS",
    )
    rate_limit_retry_delays: list[float] = Field(
        default_factory=lambda: [30.0, 60.0, 90.0],
        alias="RATE_LIMIT_RETRY_DELAYS",
    )

    # Embeddings
    embedding_provider: str = Field(default="gemini", alias="EMBEDDING_PROVIDER")
    embedding_model: Optional[str] = Field(default=None, alias="EMBEDDING_MODEL")
    embedding_dimensions: Optional[int] = Field(default=None, alias="EMBEDDING_DIMENSIONS")
    embedding_timeout_seconds: int = Field(default=30, alias="EMBEDDING_TIMEOUT_SECONDS")

    # Similarity
    similarity_threshold: float = Field(default=0.85, alias="SIMILARITY_THRESHOLD")

    # Analysis windows
    analysis_period_days: int = Field(default=15, alias="ANALYSIS_PERIOD_DAYS")
    lite_analysis_period_days: int = Field(default=7, alias="LITE_ANALYSIS_PERIOD_DAYS")

    # Stage execution
    stage_timeout_seconds: int = Field(default=180, alias="STAGE_TIMEOUT_SECONDS")
    stage_max_retries: int = Field(default=3, alias="STAGE_MAX_RETRIES")
    stage_retry_delays: list[float] = Field(
        default_factory=lambda: [30.0, 60.0, 120.0],
        alias="STAGE_RETRY_DELAYS",
    )

    @field_validator("ai_provider", "embedding_provider", mode="before")
    @classmethod
    def normalize_provider_name(cls, v: str) -> str:
        """Lowercase and strip provider names."""
        return str(v or "").strip().lower()

    @field_validator("similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Similarity threshold must be a fraction."""
        if not 0.0 < v <= 1.0:
            raise ValueError("SIMILARITY_THRESHOLD must be in (0, 1]")
        return v

    def provider_api_key(self, name: str) -> Optional[str]:
        """Return the raw API key for a provider, or None."""
        secret = getattr(self, f"{name}_api_key", None)
        if secret is None:
            return None
        value = secret.get_secret_value()
        return value or None

    def is_provider_configured(self, name: str) -> bool:
        """Check whether a provider has credentials."""
        return name in SUPPORTED_AI_PROVIDERS and bool(self.provider_api_key(name))

    def configured_providers(self) -> list[str]:
        """Providers with credentials, in registry order."""
        return [p for p in SUPPORTED_AI_PROVIDERS if self.is_provider_configured(p)]


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
