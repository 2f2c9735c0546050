"""Chat-completion providers and AI analysis."""

from ai_providers.analysis import AnalysisService, extract_score
from ai_providers.providers import (
    ChatProvider,
    ClaudeChatProvider,
    LLMError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
    MockChatProvider,
    OpenAICompatibleChatProvider,
    ProviderRegistry,
    create_provider,
)

__all__ = [
    # Providers
    "ChatProvider",
    "ClaudeChatProvider",
    "OpenAICompatibleChatProvider",
    "MockChatProvider",
    "ProviderRegistry",
    "create_provider",
    # Errors
    "LLMError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMResponseError",
    # Analysis
    "AnalysisService",
    "extract_score",
]
