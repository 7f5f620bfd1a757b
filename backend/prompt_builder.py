"""
質問生成プロンプトの構築
プロバイダー非依存の system instruction とユーザープロンプトを作る
"""

import logging
from typing import Optional, Sequence

from models import PromptPair, Source, Utterance
from settings_manager import CoachingConfig

logger = logging.getLogger(__name__)

MAX_CONTEXT_UTTERANCES = 10
EMPTY_DIALOGUE_PLACEHOLDER = "No recent dialogue captured yet."

LANGUAGE_MAP = {
    'en-US': 'English',
    'en-GB': 'English',
    'it-IT': 'Italian',
    'fr-FR': 'French',
    'es-ES': 'Spanish',
    'de-DE': 'German',
    'pt-PT': 'Portuguese',
    'nl-NL': 'Dutch',
    'ru-RU': 'Russian',
    'ja-JP': 'Japanese',
    'ko-KR': 'Korean',
    'zh-CN': 'Chinese (Simplified)',
    'zh-TW': 'Chinese (Traditional)',
}

GUIDELINES = """Guidelines for powerful coaching questions:
- Use open-ended questions that cannot be answered with yes/no
- Keep questions short and clear (ideally under 15 words)
- Focus on the coachee's thoughts, feelings, and actions
- Avoid "why" questions when possible (use "what" or "how" instead)
- Include questions that challenge assumptions
- Ensure questions are non-judgmental and curious"""

# (keywords, style hint) — first match wins
STYLE_RULES = [
    (("stuck", "blocked", "lost", "confused", "don't know"),
     "Exploratory and option-generating; help the coachee see new possibilities"),
    (("feel", "frustrated", "anxious", "worried", "afraid", "overwhelmed", "upset"),
     "Empathetic and reflective; explore emotions before moving to action"),
    (("goal", "achieve", "want", "success", "vision"),
     "Future-focused; clarify the desired outcome and what success looks like"),
    (("decide", "decision", "choose", "option", "either"),
     "Clarifying; surface the criteria and trade-offs behind the choice"),
    (("plan", "next step", "will do", "going to", "commit"),
     "Action-oriented; turn insight into concrete, owned next steps"),
]
DEFAULT_STYLE = "Curious and open; deepen understanding of the coachee's situation"
OPENING_STYLE = "Opening and rapport-building; establish what the coachee wants to explore"


def get_language_instructions(language_tag: str) -> str:
    language = LANGUAGE_MAP.get(language_tag, 'English')

    if language == 'English':
        return 'Generate questions in English.'

    return f"""Generate questions in {language}. Ensure the questions are:
- Natural and fluent in {language}
- Culturally appropriate for {language}-speaking contexts
- Using proper coaching terminology in {language}"""


def analyze_dialogue_for_question_style(dialogue: Sequence[Utterance]) -> str:
    """直近の会話から質問スタイルのヒントを決める（簡易キーワード判定）"""
    if not dialogue:
        return OPENING_STYLE

    # コーチーの発話を優先して判定
    coachee_text = " ".join(u.text for u in dialogue if u.source == Source.COACHEE).lower()
    text = coachee_text or " ".join(u.text for u in dialogue).lower()

    for keywords, style in STYLE_RULES:
        if any(k in text for k in keywords):
            return style
    return DEFAULT_STYLE


def format_dialogue(snapshot: Sequence[Utterance]) -> str:
    recent = list(snapshot)[-MAX_CONTEXT_UTTERANCES:]
    if not recent:
        return EMPTY_DIALOGUE_PLACEHOLDER
    return "\n".join(f"{u.source.value}: {u.text}" for u in recent)


def build_prompt(
    snapshot: Sequence[Utterance],
    requested_count: int,
    config: CoachingConfig,
    style: Optional[str] = None
) -> PromptPair:
    """
    質問生成用プロンプトを構築

    Args:
        snapshot: トリガー時点の対話スナップショット
        requested_count: 生成する質問数
        config: 設定スナップショット
        style: 質問スタイル（省略時は会話から推定）

    Returns:
        system instruction とユーザープロンプト
    """
    question_style = style if style is not None else analyze_dialogue_for_question_style(snapshot)
    if config.style_guidelines.strip():
        question_style = f"{question_style}. {config.style_guidelines.strip()}"

    user_prompt = f"""As an expert executive coach, generate exactly {requested_count} powerful coaching question(s) based on the conversation context provided.

{get_language_instructions(config.speech_language)}

{GUIDELINES}

Style: {question_style}

Recent conversation context:
{format_dialogue(snapshot)}

Please provide exactly {requested_count} question(s), numbered and separated by newlines. Only provide the questions themselves, no additional explanation or context."""

    logger.debug("Built prompt: count=%d, context=%d utterances", requested_count, len(snapshot))
    return PromptPair(system_instruction=config.system_prompt, user_prompt=user_prompt)
