"""
Gemini API Client
コーチング質問の生成（generate_content 形式）
"""

import logging
from typing import Optional

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from llm_provider import LLMProvider, ProviderError

logger = logging.getLogger(__name__)


class GeminiClient(LLMProvider):
    """Gemini APIクライアント"""

    provider_type = "gemini"
    display_name = "Gemini"

    def __init__(self, api_key: Optional[str] = None, model: str = "gemini-1.5-flash"):
        super().__init__(api_key, model)
        self.safety_settings = {
            HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
        }

    def _build_model(self, system_instruction: str, temperature: float, max_tokens: int):
        # genai.configure is process-wide; set this instance's key right before the model is built
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(
            self.model,
            system_instruction=system_instruction,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
        )

    async def _generate(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        """
        Geminiでテキスト生成

        Args:
            system_instruction: システム指示（system_instruction フィールドに渡す）
            user_prompt: ユーザープロンプト
            temperature: 温度
            max_tokens: 最大出力トークン数

        Returns:
            生成テキスト
        """
        try:
            model = self._build_model(system_instruction, temperature, max_tokens)
            response = await model.generate_content_async(
                user_prompt,
                safety_settings=self.safety_settings
            )
        except Exception as e:
            logger.error(f"Failed to generate text (Gemini): {e}")
            raise ProviderError(str(e)) from e

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            logger.warning(f"⚠️ Prompt blocked: {feedback}")
            raise ProviderError(f"Gemini blocked the prompt: {feedback.block_reason}")

        try:
            return response.text.strip()
        except ValueError as e:
            # response.text raises when no candidate carries text
            raise ProviderError(f"Gemini response contained no text: {e}") from e
