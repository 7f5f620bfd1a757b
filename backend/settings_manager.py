import json
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from models import CustomModel

load_dotenv()
logger = logging.getLogger(__name__)

BUILT_IN_MODEL_GROUPS: List[Dict[str, Any]] = [
    {
        "name": "Anthropic Models",
        "models": [
            {"value": "claude-3-5-sonnet-20241022", "label": "Claude 3.5 Sonnet (Latest)"},
            {"value": "claude-3-5-haiku-20241022", "label": "Claude 3.5 Haiku"},
            {"value": "claude-3-opus-20240229", "label": "Claude 3 Opus"},
            {"value": "claude-3-haiku-20240307", "label": "Claude 3 Haiku"},
        ],
    },
    {
        "name": "OpenAI Models",
        "models": [
            {"value": "gpt-4o", "label": "GPT-4o (Latest)"},
            {"value": "gpt-4o-mini", "label": "GPT-4o Mini"},
            {"value": "gpt-4-turbo", "label": "GPT-4 Turbo"},
            {"value": "gpt-3.5-turbo", "label": "GPT-3.5 Turbo"},
        ],
    },
    {
        "name": "Gemini Models",
        "models": [
            {"value": "gemini-2.0-flash-exp", "label": "Gemini 2.0 Flash (Experimental)"},
            {"value": "gemini-1.5-pro", "label": "Gemini 1.5 Pro"},
            {"value": "gemini-1.5-flash", "label": "Gemini 1.5 Flash"},
        ],
    },
]

DEFAULT_QUESTION_BANK = """What would you like to achieve from this conversation?

What does success look like for you?

What assumptions are you making about this situation?

What patterns do you notice in your behavior?

What would you do if you knew you couldn't fail?

How might others see this situation?

What's the cost of maintaining the status quo?

What support do you need to move forward?

What would you tell a friend in a similar situation?

What strengths can you leverage in this challenge?

What's one small step you could take today?

How do you define success in this situation?

What would need to be true for this to work?

What are you avoiding in this situation?

What would be different if you achieved this goal?"""

DEFAULT_SYSTEM_PROMPT = """You are an expert executive coaching question generator. Your sole purpose is to create powerful, open-ended coaching questions based on dialogue context.

Key Principles:
- Generate only coaching questions, no commentary or advice
- Focus on open-ended questions that promote self-discovery
- Keep questions concise and impactful (under 15 words)
- Use "what" and "how" rather than "why" questions
- Challenge assumptions while remaining non-judgmental
- Adapt questions to the conversation context and energy
- Create questions that move the coachee toward insights and action

You will receive conversation snippets and generate the exact number of questions requested. Respond only with the numbered questions, nothing else."""


class CoachingConfig(BaseModel):
    """Configuration snapshot. Defaults are applied here and nowhere else."""

    # API keys
    anthropic_api_key: str = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    gemini_api_key: str = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))

    # Model selection
    ai_model: str = "claude-3-5-sonnet-20241022"
    custom_models: List[CustomModel] = []

    # Question generation
    auto_suggest_questions: bool = True
    random_suggest: bool = True          # 30% per-utterance single-question trigger
    dialogue_listen_duration: int = Field(default=30, ge=10, le=120)  # seconds
    number_of_questions: int = Field(default=2, ge=1, le=3)
    speech_language: str = "en-US"
    style_guidelines: str = ""

    question_bank: str = DEFAULT_QUESTION_BANK
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


def get_model_type(model_name: str, custom_models: Optional[List[CustomModel]] = None) -> str:
    """モデル名からプロバイダー種別を判定"""
    if model_name.startswith("claude"):
        return "anthropic"
    if model_name.startswith("gpt"):
        return "openai"
    if model_name.startswith("gemini"):
        return "gemini"

    for custom in custom_models or []:
        if custom.value == model_name:
            return custom.type

    return "openai"


API_KEY_FIELDS = ("anthropic_api_key", "openai_api_key", "gemini_api_key")


def mask_secret(value: str) -> str:
    """APIキーを末尾4文字以外伏せ字にする"""
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * 8
    return "*" * 8 + value[-4:]


class SettingsManager:
    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self.config = CoachingConfig()
        self._load_settings()

    def _load_settings(self) -> None:
        if not self.config_path.exists():
            # Create default
            self.config = CoachingConfig()
            self._save_settings()
            return

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                self.config = CoachingConfig(**json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load settings: {e}")
            self.config = CoachingConfig()

    def _save_settings(self) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.config.model_dump(), f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")

    def get_config(self) -> CoachingConfig:
        return self.config

    def get_public_settings(self) -> Dict[str, Any]:
        """API レスポンス用（APIキーは伏せ字）"""
        data = self.config.model_dump()
        for field in API_KEY_FIELDS:
            data[field] = mask_secret(data[field])
        return data

    def get_setting(self, key: str, default: Any = None) -> Any:
        return getattr(self.config, key, default)

    def update_settings(self, new_settings: Dict[str, Any]) -> CoachingConfig:
        """Validate and persist. Raises ValidationError on bad values."""
        merged = self.config.model_dump()
        for key, value in new_settings.items():
            # a masked key sent back unchanged keeps the stored key
            if key in API_KEY_FIELDS and value and value == mask_secret(merged[key]):
                continue
            merged[key] = value
        self.config = CoachingConfig(**merged)
        self._save_settings()
        logger.info("✅ Settings updated (model=%s)", self.config.ai_model)
        return self.config
