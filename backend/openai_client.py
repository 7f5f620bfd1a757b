"""
OpenAI API Client
"""

import logging
from typing import Any, Optional

from openai import AsyncOpenAI

from llm_provider import LLMProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenAIClient(LLMProvider):
    """OpenAI APIクライアント（Chat Completions）"""

    provider_type = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        client: Optional[Any] = None
    ):
        super().__init__(api_key, model)
        self.client = client
        if self.client is None and self.enabled:
            self.client = AsyncOpenAI(api_key=self.api_key)

    async def _generate(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            logger.error(f"Failed to generate text (OpenAI): {e}")
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError("OpenAI response contained no choices")
        return response.choices[0].message.content or ""
