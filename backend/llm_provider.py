"""
LLM provider contract
Three backends (Anthropic / OpenAI / Gemini) behind one generate() call.
"""

import abc
import logging
from typing import Optional

from settings_manager import CoachingConfig, get_model_type

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 200


class ConfigurationError(Exception):
    """Required credential for the selected provider is missing."""


class ProviderError(Exception):
    """Network / API failure or an unusable response."""


class LLMProvider(abc.ABC):
    provider_type: str = ""
    display_name: str = ""

    def __init__(self, api_key: Optional[str], model: str):
        self.api_key = (api_key or "").strip()
        self.model = model

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        if not self.enabled:
            raise ConfigurationError(
                f"{self.display_name} API key required. Please set it in Settings."
            )

    async def generate(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS
    ) -> str:
        """
        Returns the raw response text.

        Raises:
            ConfigurationError: before any network call when the key is missing
            ProviderError: on API errors or malformed responses
        """
        self.ensure_configured()
        text = await self._generate(system_instruction, user_prompt, temperature, max_tokens)
        if not text or not text.strip():
            raise ProviderError(f"{self.display_name} returned an empty response")
        return text

    @abc.abstractmethod
    async def _generate(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} model={self.model} enabled={self.enabled}>"


def create_provider(config: CoachingConfig) -> LLMProvider:
    """Pick the provider variant for the configured model (once per config load)."""
    from anthropic_client import AnthropicClient
    from gemini_client import GeminiClient
    from openai_client import OpenAIClient

    model_type = get_model_type(config.ai_model, config.custom_models)

    if model_type == "anthropic":
        provider: LLMProvider = AnthropicClient(config.anthropic_api_key, config.ai_model)
    elif model_type == "gemini":
        provider = GeminiClient(config.gemini_api_key, config.ai_model)
    else:
        provider = OpenAIClient(config.openai_api_key, config.ai_model)

    if provider.enabled:
        logger.info(f"✅ {provider.display_name} provider ready (model={config.ai_model})")
    else:
        logger.warning(f"⚠️ {provider.display_name} API key not set. Question generation disabled.")
    return provider
