"""
Provider routing with configuration checks and fallback.

``AIManager`` resolves the configured provider by name, fails fast when it is
unknown or missing credentials, and falls back through the other configured
providers (in registry order) when the primary fails with a transient error.

Example:
    >>> manager = AIManager()
    >>> text = await manager.chat([ChatMessage.user("Hi")], temperature=0.3)
    >>> manager.available_providers()
    ['gemini', 'anthropic']
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from store_insights.config.settings import Settings, get_settings
from store_insights.services.ai_providers import (
    PROVIDER_CLASSES,
    AIProvider,
    MessageInput,
    ProviderConfigurationError,
    ProviderError,
    ProviderName,
)
from store_insights.utils.logger import get_logger
from store_insights.utils.retry import is_retryable_error

logger = get_logger(__name__)


class AIManager:
    """
    Routing layer over the closed provider registry.

    Provider instances are created lazily and cached.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.default_provider = self.settings.ai_provider
        self._providers: dict[ProviderName, AIProvider] = {}

    def _instance(self, name: str) -> AIProvider:
        try:
            key = ProviderName(name)
        except ValueError:
            raise ProviderConfigurationError(
                f"AI provider [{name}] is not supported.", provider=name
            ) from None
        if key not in self._providers:
            self._providers[key] = PROVIDER_CLASSES[key](settings=self.settings)
        return self._providers[key]

    def provider(self, name: Optional[str] = None) -> AIProvider:
        """
        Get a configured provider by name (the default when omitted).

        Raises:
            ProviderConfigurationError: Unknown or unconfigured provider
        """
        name = name or self.default_provider
        instance = self._instance(name)
        if not instance.is_configured:
            raise ProviderConfigurationError(
                f"AI provider [{name}] is not properly configured.", provider=name
            )
        return instance

    def available_providers(self) -> list[str]:
        """Configured provider names in registry order."""
        return [p.value for p in ProviderName if self.settings.is_provider_configured(p.value)]

    def has_provider(self, name: str) -> bool:
        try:
            return self._instance(name).is_configured
        except ProviderConfigurationError:
            return False

    async def chat(
        self,
        messages: Sequence[MessageInput],
        provider: Optional[str] = None,
        disable_fallback: bool = False,
        **options: Any,
    ) -> str:
        """
        Chat through the primary provider, falling back on transient errors.

        Configuration errors on the primary provider are never retried
        elsewhere.
        """
        primary = provider or self.default_provider
        try:
            return await self.provider(primary).chat(messages, **options)
        except ProviderConfigurationError:
            raise
        except ProviderError as e:
            if disable_fallback or not is_retryable_error(e):
                raise
            primary_error = e

        logger.warning(
            "Primary AI provider failed, attempting fallback",
            provider=primary,
            error=str(primary_error),
        )
        for fallback in self.available_providers():
            if fallback == primary:
                continue
            try:
                logger.info("Attempting fallback AI provider", provider=fallback)
                return await self.provider(fallback).chat(messages, **options)
            except ProviderError as fallback_error:
                logger.warning(
                    "Fallback provider also failed",
                    provider=fallback,
                    error=str(fallback_error),
                )

        raise ProviderError(
            f"All AI providers failed. Primary error: {primary_error}",
            provider=primary,
            status_code=primary_error.status_code,
            retryable=primary_error.retryable,
        ) from primary_error

    async def close(self) -> None:
        """Close all provider connections."""
        for instance in self._providers.values():
            await instance.disconnect()
        self._providers.clear()


__all__ = ["AIManager"]
