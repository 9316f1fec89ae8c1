"""
Base LLM Provider Interface

Defines the abstract interface that all LLM providers must implement.
Providers return free text; callers own parsing and validation of the reply.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict
import time
import logging

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio used when a provider reports no usage
CHARS_PER_TOKEN_ESTIMATE = 4


class ClassificationProviderError(Exception):
    """LLM call failed (transport, auth or configuration)"""
    pass


@dataclass
class TokenUsage:
    """Token usage information from LLM API call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def estimate(cls, prompt_text: str, completion_text: str) -> "TokenUsage":
        prompt_tokens = len(prompt_text) // CHARS_PER_TOKEN_ESTIMATE
        completion_tokens = len(completion_text) // CHARS_PER_TOKEN_ESTIMATE
        return cls(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)


@dataclass
class LLMResponse:
    """Unified response from any LLM provider."""
    text: str
    usage: TokenUsage
    raw_response: Dict[str, Any] = field(default_factory=dict)
    latency_ms: int = 0


class BaseLLMProvider(ABC):
    """
    Base interface for LLM providers (the classification gateway).

    All providers (OpenAI, Anthropic, test doubles) implement _complete_impl.
    """

    # Per 1M tokens; subclasses override
    pricing: Dict[str, Dict[str, float]] = {}

    def __init__(self, model: str, temperature: float = 0.1):
        self.model = model
        self.temperature = temperature

        # Usage tracking
        self.total_requests = 0
        self.total_tokens = 0
        self.total_cost = 0.0

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Get a free-text completion.

        Args:
            system_prompt: Task instructions
            user_prompt: Payload to operate on

        Returns:
            Raw reply text, with no structural guarantees

        Raises:
            ClassificationProviderError: If the provider call fails
        """
        start_time = time.time()

        response = await self._complete_impl(system_prompt, user_prompt)

        response.latency_ms = int((time.time() - start_time) * 1000)

        self.total_requests += 1
        self.total_tokens += response.usage.total_tokens
        cost = self.calculate_cost(response.usage)
        self.total_cost += cost

        logger.info(
            f"{self.model}: {response.usage.total_tokens} tokens, "
            f"${cost:.4f}, {response.latency_ms}ms"
        )

        return response.text

    @abstractmethod
    async def _complete_impl(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        """
        Provider-specific implementation of completion.

        Must be implemented by each provider.
        """

    def calculate_cost(self, usage: TokenUsage) -> float:
        """Cost in USD from token usage; zero for models without a price entry."""
        model_pricing = self.pricing.get(self.model)
        if not model_pricing:
            return 0.0
        input_cost = (usage.prompt_tokens / 1_000_000) * model_pricing["input"]
        output_cost = (usage.completion_tokens / 1_000_000) * model_pricing["output"]
        return input_cost + output_cost

    def get_stats(self) -> dict:
        """Get provider usage statistics."""
        return {
            "model": self.model,
            "requests": self.total_requests,
            "tokens": self.total_tokens,
            "cost": round(self.total_cost, 4),
            "avg_tokens_per_request": (
                self.total_tokens / max(1, self.total_requests)
            )
        }


def message_text(content: Any) -> str:
    """Flatten a LangChain message content (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")


def usage_from_message(message: Any, prompt_text: str, completion_text: str) -> TokenUsage:
    """Token usage reported on a LangChain AIMessage, estimated when absent."""
    usage_metadata = getattr(message, "usage_metadata", None)
    if usage_metadata:
        prompt_tokens = usage_metadata.get("input_tokens", 0)
        completion_tokens = usage_metadata.get("output_tokens", 0)
        return TokenUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)

    metadata = getattr(message, "response_metadata", None) or {}
    token_usage = metadata.get("token_usage") if isinstance(metadata, dict) else None
    if token_usage:
        prompt_tokens = token_usage.get("prompt_tokens", 0)
        completion_tokens = token_usage.get("completion_tokens", 0)
        return TokenUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)

    logger.debug("Provider reported no token usage, using estimation")
    return TokenUsage.estimate(prompt_text, completion_text)
