"""
Chat-completion providers behind a single ``chat`` contract.

Each backend has its own request and response shape:

    - OpenAI: flat message list, temperature always sent
    - Gemini: separate system instruction, assistant role renamed to "model",
      temperature omitted at the neutral default
    - Anthropic: separate system prompt, mandatory max_tokens, content as
      typed blocks that must be concatenated

``AIProvider`` normalizes all of them. Transient failures (connection
errors, HTTP 429 and 5xx) are retried inside the provider with configured
delays; responses cut off at the output ceiling are retried with a larger
token budget where the backend allows it.

Example:
    >>> provider = GeminiProvider()
    >>> async with provider:
    ...     text = await provider.chat([ChatMessage.user("Hello")], temperature=0.2)
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence, Union

import anthropic
import httpx

from store_insights.config.settings import Settings, get_settings
from store_insights.models.schemas import ChatMessage, ChatRole, ErrorType
from store_insights.utils.logger import get_logger
from store_insights.utils.retry import AppError

logger = get_logger(__name__)

MessageInput = Union[ChatMessage, dict[str, Any]]

NEUTRAL_TEMPERATURE = 1.0


# =============================================================================
# Enums and Data Classes
# =============================================================================

class ProviderName(str, Enum):
    """Closed registry of supported chat providers, in fallback order."""
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class ProviderStatus(str, Enum):
    """Provider health status."""
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass
class TokenUsage:
    """Token usage for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Completion:
    """Raw provider output before retry decisions."""
    text: str
    truncated: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)


# =============================================================================
# Exceptions
# =============================================================================

class ProviderError(AppError):
    """An upstream chat call failed or returned unusable content."""

    error_type = ErrorType.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after = retry_after


class ProviderConfigurationError(ProviderError):
    """The requested provider is unknown or missing credentials."""

    error_type = ErrorType.CONFIGURATION_ERROR

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider=provider, retryable=False)


# =============================================================================
# Abstract Provider
# =============================================================================

class AIProvider(ABC):
    """
    Abstract base class for chat providers.

    Subclasses implement ``_complete`` for one request/response round trip;
    the base class owns option resolution, retries and truncation handling.
    """

    # Ceiling for doubling max tokens on truncated output. None disables it.
    MAX_TOKENS_CAP: Optional[int] = None

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[httpx.AsyncClient] = None
        self._status = ProviderStatus.AVAILABLE
        self._last_error: Optional[str] = None
        self._request_count = 0
        self._error_count = 0
        self.usage_history: list[TokenUsage] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @property
    def is_configured(self) -> bool:
        """Check if provider has credentials."""
        return self.settings.is_provider_configured(self.name)

    @property
    def status(self) -> ProviderStatus:
        return self._status

    @property
    def default_model(self) -> str:
        return getattr(self.settings, f"{self.name}_model")

    @property
    def default_max_tokens(self) -> int:
        return getattr(self.settings, f"{self.name}_max_tokens")

    @property
    def default_temperature(self) -> float:
        return getattr(self.settings, f"{self.name}_temperature")

    @property
    def timeout_seconds(self) -> float:
        return float(getattr(self.settings, f"{self.name}_timeout_seconds"))

    def _api_key(self) -> str:
        key = self.settings.provider_api_key(self.name)
        if not key:
            raise ProviderConfigurationError(
                f"AI provider [{self.name}] is not properly configured.",
                provider=self.name,
            )
        return key

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.timeout_seconds,
                    write=10.0,
                    pool=5.0,
                ),
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                ),
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AIProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def chat(self, messages: Sequence[MessageInput], **options: Any) -> str:
        """
        Send a chat completion and return the raw response text.

        Args:
            messages: Ordered chat turns (ChatMessage or role/content dicts)
            **options: Optional ``model``, ``temperature`` and ``max_tokens``
                overrides layered over provider defaults

        Raises:
            ProviderConfigurationError: Missing credentials
            ProviderError: Upstream failure after retries, or empty content
        """
        self._api_key()
        turns = normalize_messages(messages)
        model = options.get("model") or self.default_model
        temperature = options.get("temperature")
        if temperature is None:
            temperature = self.default_temperature
        max_tokens = options.get("max_tokens") or self.default_max_tokens

        attempts = max(1, self.settings.provider_max_retries)
        last_error: Optional[ProviderError] = None

        for attempt in range(1, attempts + 1):
            logger.info(
                "Provider request",
                provider=self.name,
                model=model,
                attempt=attempt,
                max_attempts=attempts,
                max_tokens=max_tokens,
            )
            start_time = time.time()
            try:
                completion = await self._complete(turns, model, temperature, max_tokens)
            except ProviderError as e:
                last_error = e
                self._update_status(False, str(e))
                if not e.retryable:
                    logger.error(
                        "Provider request failed",
                        provider=self.name,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    raise
                if attempt < attempts:
                    delay = self._retry_delay(attempt, e)
                    logger.warning(
                        "Transient provider error, retrying",
                        provider=self.name,
                        attempt=attempt,
                        status_code=e.status_code,
                        wait_seconds=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                continue

            self._update_status(True)
            self.usage_history.append(completion.usage)
            logger.info(
                "Provider request completed",
                provider=self.name,
                attempt=attempt,
                elapsed_seconds=f"{time.time() - start_time:.2f}",
                input_tokens=completion.usage.input_tokens,
                output_tokens=completion.usage.output_tokens,
                response_length=len(completion.text),
                truncated=completion.truncated,
            )

            if completion.truncated:
                if self.MAX_TOKENS_CAP and attempt < attempts:
                    max_tokens = min(max_tokens * 2, self.MAX_TOKENS_CAP)
                    logger.warning(
                        "Response truncated, retrying with larger token budget",
                        provider=self.name,
                        max_tokens=max_tokens,
                    )
                    continue
                logger.warning("Response truncated at output ceiling", provider=self.name)

            return completion.text

        logger.error(
            "Provider request failed after all retries",
            provider=self.name,
            attempts=attempts,
            last_error=str(last_error),
        )
        raise ProviderError(
            f"{self.name} API request failed after {attempts} attempts: {last_error}",
            provider=self.name,
            status_code=last_error.status_code if last_error else None,
            retryable=True,
        )

    @abstractmethod
    async def _complete(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        """Perform one request. Raise ProviderError on failure."""
        pass

    def _retry_delay(self, attempt: int, error: ProviderError) -> float:
        if error.retry_after:
            return error.retry_after
        delays = self.settings.provider_retry_delays
        return delays[attempt - 1] if attempt - 1 < len(delays) else 30.0

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def _post(self, url: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        """POST JSON and translate transport and status failures to ProviderError."""
        if not self._client:
            await self.connect()
        try:
            response = await self._client.post(url, json=payload, **kwargs)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise ProviderError(
                f"{self.name} connection error: {e!r}",
                provider=self.name,
                retryable=True,
            ) from e

        if response.status_code >= 400:
            status = response.status_code
            raise ProviderError(
                f"{self.name} API error (HTTP {status}): {_error_message(response)}",
                provider=self.name,
                status_code=status,
                retryable=status == 429 or status >= 500,
                retry_after=_retry_after(response),
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned a non-JSON body",
                provider=self.name,
                status_code=response.status_code,
            ) from e

    def _update_status(self, success: bool, error: Optional[str] = None) -> None:
        """Update provider status based on request result."""
        self._request_count += 1
        if success:
            self._error_count = 0
            self._status = ProviderStatus.AVAILABLE
        else:
            self._error_count += 1
            self._last_error = error
            if self._error_count >= 3:
                if "429" in (error or "") or "rate limit" in (error or "").lower():
                    self._status = ProviderStatus.RATE_LIMITED
                else:
                    self._status = ProviderStatus.ERROR

    def get_stats(self) -> dict[str, Any]:
        """Get provider statistics."""
        return {
            "name": self.name,
            "status": self._status.value,
            "configured": self.is_configured,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "last_error": self._last_error,
            "input_tokens": sum(u.input_tokens for u in self.usage_history),
            "output_tokens": sum(u.output_tokens for u in self.usage_history),
        }


# =============================================================================
# OpenAI
# =============================================================================

class OpenAIProvider(AIProvider):
    """OpenAI chat completions over HTTP."""

    BASE_URL = "https://api.openai.com/v1/chat/completions"
    MAX_TOKENS_CAP = 16384

    @property
    def name(self) -> str:
        return ProviderName.OPENAI.value

    async def _complete(self, messages, model, temperature, max_tokens) -> Completion:
        payload = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        data = await self._post(
            self.BASE_URL,
            payload,
            headers={"Authorization": f"Bearer {self._api_key()}"},
        )

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("No choices in OpenAI response", provider=self.name)
        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            raise ProviderError("OpenAI returned empty content", provider=self.name)

        usage = data.get("usage") or {}
        return Completion(
            text=content,
            truncated=choices[0].get("finish_reason") == "length",
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
                model=model,
            ),
        )


# =============================================================================
# Gemini
# =============================================================================

class GeminiProvider(AIProvider):
    """Google Gemini generateContent over HTTP."""

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    MAX_TOKENS_CAP = 65536
    TOP_P = 0.95

    @property
    def name(self) -> str:
        return ProviderName.GEMINI.value

    def build_payload(
        self,
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        system = next((m.content for m in messages if m.role == ChatRole.SYSTEM.value), None)
        contents = [
            {
                "role": "model" if m.role == ChatRole.ASSISTANT.value else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != ChatRole.SYSTEM.value
        ]
        generation_config: dict[str, Any] = {
            "maxOutputTokens": max_tokens,
            "topP": self.TOP_P,
        }
        if temperature != NEUTRAL_TEMPERATURE:
            generation_config["temperature"] = temperature

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    async def _complete(self, messages, model, temperature, max_tokens) -> Completion:
        data = await self._post(
            f"{self.BASE_URL}/models/{model}:generateContent",
            self.build_payload(messages, temperature, max_tokens),
            params={"key": self._api_key()},
        )

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ProviderError(f"Content blocked by Gemini: {block_reason}", provider=self.name)

        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("No response candidates from Gemini", provider=self.name)

        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            raise ProviderError("No content parts in Gemini response", provider=self.name)

        usage = data.get("usageMetadata") or {}
        return Completion(
            text="".join(part.get("text", "") for part in parts),
            truncated=candidates[0].get("finishReason") == "MAX_TOKENS",
            usage=TokenUsage(
                input_tokens=usage.get("promptTokenCount", 0),
                output_tokens=usage.get("candidatesTokenCount", 0),
                model=model,
            ),
        )


# =============================================================================
# Anthropic
# =============================================================================

class AnthropicProvider(AIProvider):
    """Anthropic Messages API through the official SDK."""

    # Per-request token limit messages; waiting will not help.
    INPUT_TOO_LARGE_MARKERS = ("would exceed", "input tokens")

    def __init__(self, settings: Optional[Settings] = None):
        super().__init__(settings)
        self._sdk: Optional[anthropic.AsyncAnthropic] = None

    @property
    def name(self) -> str:
        return ProviderName.ANTHROPIC.value

    async def connect(self) -> None:
        if self._sdk is None:
            self._sdk = anthropic.AsyncAnthropic(
                api_key=self._api_key(),
                timeout=self.timeout_seconds,
                max_retries=0,
            )

    async def disconnect(self) -> None:
        if self._sdk is not None:
            await self._sdk.close()
            self._sdk = None

    def _retry_delay(self, attempt: int, error: ProviderError) -> float:
        if error.status_code == 429 and not error.retry_after:
            delays = self.settings.rate_limit_retry_delays
            return delays[attempt - 1] if attempt - 1 < len(delays) else 60.0
        return super()._retry_delay(attempt, error)

    def build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        system = next((m.content for m in messages if m.role == ChatRole.SYSTEM.value), None)
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [
                {
                    "role": "assistant" if m.role == ChatRole.ASSISTANT.value else "user",
                    "content": m.content,
                }
                for m in messages
                if m.role != ChatRole.SYSTEM.value
            ],
        }
        if system:
            request["system"] = system
        if temperature != NEUTRAL_TEMPERATURE:
            request["temperature"] = temperature
        return request

    async def _complete(self, messages, model, temperature, max_tokens) -> Completion:
        if self._sdk is None:
            await self.connect()

        try:
            response = await self._sdk.messages.create(
                **self.build_request(messages, model, temperature, max_tokens)
            )
        except anthropic.RateLimitError as e:
            message = str(e)
            too_large = any(marker in message for marker in self.INPUT_TOO_LARGE_MARKERS)
            raise ProviderError(
                f"Anthropic API rate limit (HTTP 429): {message}",
                provider=self.name,
                status_code=429,
                retryable=not too_large,
                retry_after=_retry_after(e.response),
            ) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"Anthropic API error (HTTP {e.status_code}): {e}",
                provider=self.name,
                status_code=e.status_code,
                retryable=e.status_code >= 500,
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(
                f"Anthropic connection error: {e}",
                provider=self.name,
                retryable=True,
            ) from e

        text = "".join(
            block.text for block in (response.content or []) if block.type == "text"
        )
        if not text:
            raise ProviderError("Anthropic API returned no text content", provider=self.name)

        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            truncated=response.stop_reason == "max_tokens",
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
                model=model,
            ),
        )


# =============================================================================
# Helpers
# =============================================================================

PROVIDER_CLASSES: dict[ProviderName, type[AIProvider]] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.GEMINI: GeminiProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
}


def normalize_messages(messages: Sequence[MessageInput]) -> list[ChatMessage]:
    """Coerce role/content dicts into ChatMessage instances."""
    return [
        m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
        for m in messages
    ]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error or body)[:200]


def _retry_after(response: Optional[httpx.Response]) -> Optional[float]:
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


__all__ = [
    "ProviderName",
    "ProviderStatus",
    "TokenUsage",
    "Completion",
    "ProviderError",
    "ProviderConfigurationError",
    "AIProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "AnthropicProvider",
    "PROVIDER_CLASSES",
    "normalize_messages",
]
