"""
データモデル定義
- 発話（Utterance）と質問生成リクエスト/結果
- 通知、永続化レコード
- API リクエスト/レスポンス
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Source(str, Enum):
    """話者ロール"""
    COACH = "coach"
    COACHEE = "coachee"
    AI = "ai"


class Utterance(BaseModel):
    """確定した1発話（不変）"""
    model_config = ConfigDict(frozen=True)

    text: str
    source: Source
    timestamp: int  # epoch ms


class GenerationRequest(BaseModel):
    """質問生成リクエスト（トリガー時に作成し、呼び出し後に破棄）"""
    requested_count: int = Field(ge=1, le=3)
    window_snapshot: List[Utterance] = []
    style: str = ""
    language_tag: str = "en-US"


class GenerationResult(BaseModel):
    """質問生成結果"""
    questions: List[str]
    raw_text: str
    generated_at: int  # epoch ms


class PromptPair(BaseModel):
    system_instruction: str
    user_prompt: str


class Notification(BaseModel):
    """ユーザーに表示する通知"""
    severity: Literal['success', 'info', 'warning', 'error']
    message: str


class QuestionBatchRecord(BaseModel):
    """永続化先へ送る質問バッチ"""
    timestamp: int
    questions: List[str]


class StorageResult(BaseModel):
    """永続化処理の結果"""
    success: bool
    error: Optional[str] = None
    session_id: Optional[str] = None
    data: Optional[Any] = None


class CustomModel(BaseModel):
    value: str
    label: str = ""
    type: Literal['anthropic', 'openai', 'gemini'] = 'openai'


# リクエスト/レスポンス用モデル
class AddUtteranceRequest(BaseModel):
    """発話追加リクエスト"""
    text: str
    source: str = "coachee"


class GenerateQuestionsRequest(BaseModel):
    """手動質問生成リクエスト"""
    count: Optional[int] = Field(default=None, ge=1, le=3)


class UseQuestionRequest(BaseModel):
    """質問バンクの質問を会話に追加"""
    question: str


class SessionState(BaseModel):
    """ライブセッションの状態"""
    session_id: str
    started_at: int
    state: str
    generating: bool
    dialogue_duration: int
    transcript: List[Utterance] = []
    suggested_questions: List[str] = []
    question_bank: List[str] = []


# 保存済みセッション一覧の並び替えに使えるフィールド
SessionSortField = Literal[
    "created_at", "session_start_time", "session_end_time", "duration_seconds", "total_entries"
]


class ListSessionsResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    data: List[Dict[str, Any]] = []
    count: int = 0
    has_more: bool = False
