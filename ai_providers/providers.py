"""
Chat-completion providers for the analysis service.

All providers implement the ChatProvider protocol and can be injected
into AnalysisService or registered in a ProviderRegistry.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

import anthropic
import openai

logger = logging.getLogger(__name__)


# ============================================================================
# Error Types
# ============================================================================


class LLMError(Exception):
    """Base error for LLM-related failures."""

    def __init__(self, message: str, provider: str, retryable: bool = False):
        self.provider = provider
        self.retryable = retryable
        super().__init__(message)


class LLMTimeoutError(LLMError):
    """Raised when LLM call times out."""

    def __init__(self, message: str, provider: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(message, provider, retryable=True)


class LLMRateLimitError(LLMError):
    """Raised when rate limited by LLM provider."""

    def __init__(self, message: str, provider: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, provider, retryable=True)


class LLMResponseError(LLMError):
    """Raised when LLM returns invalid response."""

    def __init__(self, message: str, provider: str, raw_response: Optional[str] = None):
        self.raw_response = raw_response
        super().__init__(message, provider, retryable=False)


class ChatProvider(Protocol):
    """Protocol for chat-completion providers."""

    name: str

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a prompt and return the response text."""
        ...


def _retry_after(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    header = response.headers.get("retry-after")
    if not header:
        return None
    try:
        return float(header)
    except ValueError:
        return None


class _RetryingProvider:
    """Shared retry loop with exponential backoff (1s, 2s, 4s...)."""

    name = "base"
    max_retries = 2

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send prompt and return response.

        Raises:
            LLMTimeoutError: If request times out.
            LLMRateLimitError: If rate limited.
            LLMResponseError: If response is invalid.
            LLMError: For other failures.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                return await self._make_request(prompt, system, max_tokens)
            except LLMError as e:
                last_error = e
                if not e.retryable or attempt >= self.max_retries:
                    raise

                backoff = 2 ** attempt
                logger.warning(
                    f"{self.name} API call failed (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {backoff}s: {e}"
                )
                await asyncio.sleep(backoff)

        raise last_error or LLMError("Unknown error", provider=self.name)

    async def _make_request(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: Optional[int],
    ) -> str:
        raise NotImplementedError


# ============================================================================
# Claude Provider
# ============================================================================


class ClaudeChatProvider(_RetryingProvider):
    """
    Claude provider using the Anthropic API.

    Features:
    - Timeout protection
    - Retry with exponential backoff (max 2 retries)
    - Optional system prompt
    """

    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    DEFAULT_TIMEOUT = 30.0  # seconds
    DEFAULT_MAX_RETRIES = 2
    DEFAULT_MAX_TOKENS = 1024

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
        client: Optional[Any] = None,
    ):
        if not api_key:
            raise ValueError("An Anthropic api_key is required")

        self.name = "claude"
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> Any:
        """Lazy-load the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def _make_request(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: Optional[int],
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise LLMTimeoutError(
                f"Claude API timed out after {self.timeout}s",
                provider=self.name,
                timeout_seconds=self.timeout,
            ) from e
        except anthropic.RateLimitError as e:
            raise LLMRateLimitError(
                "Claude API rate limited",
                provider=self.name,
                retry_after=_retry_after(e),
            ) from e
        except anthropic.APIConnectionError as e:
            raise LLMError(
                f"Failed to connect to Claude API: {e}",
                provider=self.name,
                retryable=True,
            ) from e
        except anthropic.APIStatusError as e:
            raise LLMError(
                f"Claude API error: {e}",
                provider=self.name,
                retryable=e.status_code >= 500,
            ) from e

        if not response.content:
            raise LLMResponseError(
                "Empty response from Claude",
                provider=self.name,
                raw_response=str(response),
            )

        text_content = response.content[0]
        if hasattr(text_content, "text"):
            return text_content.text
        raise LLMResponseError(
            "Unexpected response format from Claude",
            provider=self.name,
            raw_response=str(response),
        )


# ============================================================================
# OpenAI-compatible Providers (DeepSeek, OpenAI, Grok)
# ============================================================================


OPENAI_COMPATIBLE_VENDORS: dict[str, dict[str, Optional[str]]] = {
    "deepseek": {"base_url": "https://api.deepseek.com", "model": "deepseek-chat"},
    "openai": {"base_url": None, "model": "gpt-4o-mini"},
    "grok": {"base_url": "https://api.x.ai/v1", "model": "grok-3-mini"},
}


class OpenAICompatibleChatProvider(_RetryingProvider):
    """
    Provider for any vendor exposing the OpenAI chat-completions API.

    DeepSeek and xAI Grok are reached by pointing the client at their
    base URL.
    """

    DEFAULT_TIMEOUT = 60.0
    DEFAULT_MAX_RETRIES = 2
    DEFAULT_MAX_TOKENS = 1000

    def __init__(
        self,
        vendor: str,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
        client: Optional[Any] = None,
    ):
        if vendor not in OPENAI_COMPATIBLE_VENDORS:
            raise ValueError(
                f"Unknown vendor: {vendor}. Available: {list(OPENAI_COMPATIBLE_VENDORS.keys())}"
            )
        if not api_key:
            raise ValueError(f"An api_key is required for {vendor}")

        defaults = OPENAI_COMPATIBLE_VENDORS[vendor]
        self.name = vendor
        self.api_key = api_key
        self.model = model or defaults["model"]
        self.base_url = base_url or defaults["base_url"]
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> Any:
        """Lazy-load the OpenAI client."""
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def _make_request(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: Optional[int],
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(
                f"{self.name} API timed out after {self.timeout}s",
                provider=self.name,
                timeout_seconds=self.timeout,
            ) from e
        except openai.RateLimitError as e:
            raise LLMRateLimitError(
                f"{self.name} API rate limited",
                provider=self.name,
                retry_after=_retry_after(e),
            ) from e
        except openai.APIConnectionError as e:
            raise LLMError(
                f"Failed to connect to {self.name} API: {e}",
                provider=self.name,
                retryable=True,
            ) from e
        except openai.APIStatusError as e:
            raise LLMError(
                f"{self.name} API error: {e}",
                provider=self.name,
                retryable=e.status_code >= 500,
            ) from e

        if not response.choices:
            raise LLMResponseError(
                f"Empty response from {self.name}",
                provider=self.name,
                raw_response=str(response),
            )
        return response.choices[0].message.content or ""


# ============================================================================
# Mock Provider for Testing
# ============================================================================


class MockChatProvider:
    """
    Mock chat provider for testing.

    Can be configured to return specific responses or raise errors.
    """

    def __init__(
        self,
        responses: Optional[list[str]] = None,
        error_on_call: Optional[int] = None,
        error_type: type[Exception] = LLMError,
        name: str = "mock",
    ):
        """
        Initialize mock provider.

        Args:
            responses: List of responses to return in order.
            error_on_call: Call number (0-indexed) on which to raise error.
            error_type: Type of error to raise.
            name: Provider name reported in errors.
        """
        self.name = name
        self.responses = responses or []
        self.error_on_call = error_on_call
        self.error_type = error_type
        self.call_count = 0
        self.prompts_received: list[str] = []
        self.systems_received: list[Optional[str]] = []

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return mocked response."""
        self.prompts_received.append(prompt)
        self.systems_received.append(system)

        if self.error_on_call is not None and self.call_count == self.error_on_call:
            self.call_count += 1
            if issubclass(self.error_type, LLMTimeoutError):
                raise LLMTimeoutError("Mock timeout", provider=self.name, timeout_seconds=30)
            elif issubclass(self.error_type, LLMRateLimitError):
                raise LLMRateLimitError("Mock rate limit", provider=self.name)
            else:
                raise self.error_type("Mock error", provider=self.name)

        if self.call_count < len(self.responses):
            response = self.responses[self.call_count]
        else:
            response = "Mock response"

        self.call_count += 1
        return response

    def add_json_response(self, **payload: Any) -> None:
        """Helper to queue a structured JSON response."""
        self.responses.append(json.dumps(payload))


# ============================================================================
# Provider Factory and Registry
# ============================================================================


def create_provider(provider_type: str, **kwargs: Any) -> ChatProvider:
    """
    Factory function to create chat providers.

    Args:
        provider_type: "claude", "deepseek", "openai", "grok" or "mock".
        **kwargs: Additional arguments for the provider.

    Raises:
        ValueError: If provider_type is unknown.
    """
    if provider_type == "claude":
        return ClaudeChatProvider(**kwargs)
    if provider_type == "mock":
        return MockChatProvider(**kwargs)
    if provider_type in OPENAI_COMPATIBLE_VENDORS:
        return OpenAICompatibleChatProvider(provider_type, **kwargs)

    available = ["claude", "mock", *OPENAI_COMPATIBLE_VENDORS.keys()]
    raise ValueError(f"Unknown provider type: {provider_type}. Available: {available}")


class ProviderRegistry:
    """Named chat providers with a default."""

    def __init__(self, default: Optional[str] = None):
        self._providers: dict[str, ChatProvider] = {}
        self._default = default

    def register(self, name: str, provider: ChatProvider) -> None:
        self._providers[name] = provider
        if self._default is None:
            self._default = name

    def get(self, name: Optional[str] = None) -> ChatProvider:
        """
        Look up a provider by name, or the default one.

        Raises:
            LLMError: If the provider is not registered.
        """
        key = name or self._default
        if key is None or key not in self._providers:
            raise LLMError(f"AI provider '{key}' is not configured", provider=key or "none")
        return self._providers[key]

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    @classmethod
    def from_keys(
        cls,
        anthropic_api_key: Optional[str] = None,
        deepseek_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        xai_api_key: Optional[str] = None,
    ) -> "ProviderRegistry":
        """
        Build a registry holding only vendors with an API key.

        DeepSeek is preferred as the default, matching the analysis prompts.
        """
        keys = {
            "deepseek": deepseek_api_key,
            "claude": anthropic_api_key,
            "openai": openai_api_key,
            "grok": xai_api_key,
        }
        registry = cls()
        for name, key in keys.items():
            if key:
                registry.register(name, create_provider(name, api_key=key))
        if registry.names:
            logger.info(f"AI providers available: {registry.names}")
        else:
            logger.warning("No AI provider API keys set, analysis will use default results")
        return registry
