import logging
from typing import Any, Optional

from anthropic import AsyncAnthropic

from llm_provider import LLMProvider, ProviderError

logger = logging.getLogger(__name__)


class AnthropicClient(LLMProvider):
    provider_type = "anthropic"
    display_name = "Anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-3-5-sonnet-20241022",
        client: Optional[Any] = None
    ):
        super().__init__(api_key, model)
        self.client = client
        self._init_client()

    def _init_client(self) -> None:
        if self.client is not None or not self.enabled:
            return
        self.client = AsyncAnthropic(api_key=self.api_key)

    async def _generate(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_instruction,
                messages=[
                    {"role": "user", "content": user_prompt}
                ]
            )
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            raise ProviderError(str(e)) from e

        for block in message.content or []:
            text = getattr(block, "text", None)
            if text:
                return text
        raise ProviderError("Anthropic response contained no text content")
