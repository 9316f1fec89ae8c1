"""
Anthropic Provider Implementation

Wraps LangChain's ChatAnthropic for Claude models.
"""

from typing import Optional
import logging

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from .base import BaseLLMProvider, ClassificationProviderError, LLMResponse, message_text, usage_from_message

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic/Claude provider using LangChain, returning raw text."""

    pricing = {
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
        "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    }

    def __init__(self,
                 model: str,
                 api_key: Optional[str],
                 temperature: float = 0.4,
                 timeout: int = 60):
        super().__init__(model, temperature)

        if not api_key:
            raise ClassificationProviderError("ANTHROPIC_API_KEY not configured")

        self.client = ChatAnthropic(
            model=model,
            temperature=temperature,
            anthropic_api_key=api_key,
            default_request_timeout=timeout,
        )

    async def _complete_impl(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        try:
            message = await self.client.ainvoke([
                SystemMessage(content=system_prompt),
                HumanMessage(content=user_prompt),
            ])
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            raise ClassificationProviderError(f"Anthropic request failed: {e}") from e

        text = message_text(message.content)
        return LLMResponse(
            text=text,
            usage=usage_from_message(message, system_prompt + user_prompt, text),
            raw_response={"response_metadata": getattr(message, "response_metadata", {})},
        )
