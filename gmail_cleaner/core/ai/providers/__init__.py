"""
LLM Provider Abstraction Layer

Provides a unified interface for different LLM providers (OpenAI, Anthropic).
"""
from typing import Optional

from gmail_cleaner.core.config import Settings, get_settings
from .base import BaseLLMProvider, ClassificationProviderError, LLMResponse, TokenUsage
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider


def get_provider(settings: Optional[Settings] = None) -> BaseLLMProvider:
    """
    Build the configured provider.

    Raises:
        ClassificationProviderError: Unknown provider or missing API key
    """
    settings = settings or get_settings()

    if settings.llm_provider == "openai":
        return OpenAIProvider(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            temperature=settings.openai_temperature,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout_seconds,
        )
    if settings.llm_provider == "anthropic":
        return AnthropicProvider(
            model=settings.anthropic_model,
            api_key=settings.anthropic_api_key,
            temperature=settings.openai_temperature,
            timeout=settings.llm_timeout_seconds,
        )
    raise ClassificationProviderError(
        f"Unknown provider: {settings.llm_provider}. Use 'openai' or 'anthropic'"
    )


__all__ = [
    'BaseLLMProvider',
    'ClassificationProviderError',
    'LLMResponse',
    'TokenUsage',
    'OpenAIProvider',
    'AnthropicProvider',
    'get_provider',
]
