"""
OpenAI Provider Implementation

Wraps LangChain's ChatOpenAI. openai_base_url points it at any
OpenAI-compatible endpoint.
"""

from typing import Optional
import logging

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

from .base import BaseLLMProvider, ClassificationProviderError, LLMResponse, message_text, usage_from_message

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI chat completions via LangChain, returning raw text."""

    pricing = {
        "gpt-4o-mini": {"input": 0.150, "output": 0.600},
        "gpt-4o": {"input": 2.50, "output": 10.00},
        "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
        "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
        "gpt-4.1": {"input": 2.00, "output": 8.00},
        "gpt-5-nano": {"input": 0.05, "output": 0.40},
        "gpt-5-mini": {"input": 0.25, "output": 2.00},
        "gpt-5": {"input": 1.25, "output": 10.00},
    }

    def __init__(self,
                 model: str,
                 api_key: Optional[str],
                 temperature: float = 0.4,
                 base_url: Optional[str] = None,
                 timeout: int = 60):
        super().__init__(model, temperature)

        if not api_key:
            raise ClassificationProviderError("OPENAI_API_KEY not configured")

        # GPT-5 series only supports temperature=1.0
        if model.startswith("gpt-5") and temperature != 1.0:
            logger.warning(f"{model} only supports temperature=1.0, overriding from {temperature}")
            self.temperature = 1.0

        self.client = ChatOpenAI(
            model=model,
            temperature=self.temperature,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
        )

    async def _complete_impl(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        try:
            message = await self.client.ainvoke([
                SystemMessage(content=system_prompt),
                HumanMessage(content=user_prompt),
            ])
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise ClassificationProviderError(f"OpenAI request failed: {e}") from e

        text = message_text(message.content)
        return LLMResponse(
            text=text,
            usage=usage_from_message(message, system_prompt + user_prompt, text),
            raw_response={"response_metadata": getattr(message, "response_metadata", {})},
        )
