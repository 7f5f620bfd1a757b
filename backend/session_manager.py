"""
ライブセッション管理
- セッションごとに対話ウィンドウ・スケジューラー・質問リストを保持
- 設定変更時のプロバイダー再構築
- 終了時の保存
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from dialogue_window import DialogueWindow
from llm_provider import LLMProvider, create_provider
from models import (
    Notification,
    QuestionBatchRecord,
    SessionState,
    Source,
    StorageResult,
    Utterance,
)
from question_bank import highlight_relevant_questions, parse_question_bank
from question_scheduler import QuestionScheduler
from result_sink import GenerationGuard, ResultSink
from settings_manager import CoachingConfig, SettingsManager
from storage import SessionStore
from utterance_ingestor import Clock, UtteranceIngestor, now_ms

logger = logging.getLogger(__name__)

Broadcaster = Callable[[str, dict], Awaitable[None]]
ProviderFactory = Callable[[CoachingConfig], LLMProvider]


async def _no_broadcast(session_id: str, message: dict) -> None:
    return None


class LiveSession:
    """1つのコーチングセッション"""

    def __init__(
        self,
        session_id: str,
        config: CoachingConfig,
        store: Optional[SessionStore] = None,
        broadcaster: Broadcaster = _no_broadcast,
        provider_factory: ProviderFactory = create_provider,
        clock: Clock = now_ms,
        rng: Optional[random.Random] = None
    ):
        self.session_id = session_id
        self.store = store
        self.broadcast = broadcaster
        self.provider_factory = provider_factory
        self.clock = clock
        self.started_at = clock()
        self.ended = False

        self.config = config
        self.provider: Optional[LLMProvider] = provider_factory(config)
        self.question_bank: List[str] = parse_question_bank(config.question_bank)

        # 全文の会話ログ（ウィンドウとは別に全件保持）
        self.transcript: List[Utterance] = []

        self.window = DialogueWindow()
        self.ingestor = UtteranceIngestor(self.window, clock=clock, listeners=[self.transcript.append])
        self.guard = GenerationGuard()
        self.sink = ResultSink(
            self.guard,
            on_update=self._publish_questions,
            persist=self._persist_questions if store is not None else None
        )
        self.scheduler = QuestionScheduler(
            window=self.window,
            guard=self.guard,
            sink=self.sink,
            get_config=lambda: self.config,
            get_provider=lambda: self.provider,
            notify=self.notify,
            on_status=self._publish_status,
            clock=clock,
            rng=rng
        )

    @property
    def suggested_questions(self) -> List[str]:
        return self.sink.questions

    def state(self) -> SessionState:
        return SessionState(
            session_id=self.session_id,
            started_at=self.started_at,
            state=self.scheduler.state.value,
            generating=self.guard.active,
            dialogue_duration=self.scheduler.dialogue_duration,
            transcript=list(self.transcript),
            suggested_questions=list(self.suggested_questions),
            question_bank=list(self.question_bank)
        )

    async def notify(self, notification: Notification) -> None:
        await self.broadcast(self.session_id, {
            'type': 'notification',
            'data': notification.model_dump()
        })

    async def handle_transcription(self, text: str, source: str) -> Optional[Utterance]:
        """
        確定した文字起こしを取り込む

        Args:
            text: 認識テキスト
            source: 話者（coach / coachee / ai）

        Returns:
            追加された発話（空文字の場合は None）
        """
        if self.ended:
            raise ValueError(f"Session {self.session_id} has ended")

        utterance = self.ingestor.ingest(text, source)
        if utterance is None:
            return None

        await self.broadcast(self.session_id, {
            'type': 'transcript_update',
            'data': utterance.model_dump(mode='json')
        })

        highlighted = highlight_relevant_questions(utterance.text, self.question_bank)
        if highlighted:
            await self.broadcast(self.session_id, {
                'type': 'bank_highlight',
                'data': {'indexes': highlighted}
            })

        await self.scheduler.on_utterance(utterance)
        return utterance

    async def generate_questions(self, count: Optional[int] = None):
        """手動で質問生成（生成中なら警告のみ）"""
        if self.ended:
            raise ValueError(f"Session {self.session_id} has ended")
        return await self.scheduler.generate_now(count)

    async def use_question(self, question: str) -> Optional[Utterance]:
        """質問バンクの質問をコーチの発話として会話ログに追加"""
        text = UtteranceIngestor.clean_text(question)
        if not text:
            return None

        utterance = Utterance(text=text, source=Source.COACH, timestamp=self.clock())
        self.transcript.append(utterance)
        await self.broadcast(self.session_id, {
            'type': 'transcript_update',
            'data': utterance.model_dump(mode='json')
        })
        await self.notify(Notification(severity='success', message='Question added to conversation'))
        return utterance

    def reload_config(self, config: CoachingConfig) -> None:
        """
        設定の再読み込み
        新しいプロバイダーを作成し、タイマーを作り直す。生成中の呼び出しは古いプロバイダーで完了する。
        """
        self.config = config
        self.provider = self.provider_factory(config)
        self.question_bank = parse_question_bank(config.question_bank)
        self.scheduler.reload()
        logger.info(f"🔄 Session {self.session_id} reloaded (model={config.ai_model})")

    async def end(self, save: bool = True) -> Optional[StorageResult]:
        """セッション終了（タイマー停止・保存）"""
        if self.ended:
            return None
        self.ended = True
        self.scheduler.stop()
        await self._publish_status(False)

        if not save or self.store is None or not self.transcript:
            return None

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            lambda: self.store.save_coaching_session(
                session_id=self.session_id,
                transcript=list(self.transcript),
                start_time=self.started_at,
                end_time=self.clock(),
                metadata={
                    "ai_model": self.config.ai_model,
                    "language": self.config.speech_language,
                    "suggested_questions": list(self.suggested_questions),
                }
            )
        )
        if result.success:
            await self.notify(Notification(severity='success', message='Session saved'))
        else:
            await self.notify(Notification(severity='warning', message=f'Session not saved: {result.error}'))
        return result

    async def _publish_questions(self, questions: List[str]) -> None:
        await self.broadcast(self.session_id, {
            'type': 'questions_updated',
            'data': {'questions': questions}
        })

    async def _publish_status(self, generating: bool) -> None:
        await self.broadcast(self.session_id, {
            'type': 'generation_status',
            'data': {'generating': generating}
        })

    async def _persist_questions(self, record: QuestionBatchRecord) -> StorageResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.store.save_question_batch, self.session_id, record)


class SessionManager:
    def __init__(
        self,
        settings: SettingsManager,
        store: Optional[SessionStore] = None,
        broadcaster: Broadcaster = _no_broadcast,
        provider_factory: ProviderFactory = create_provider,
        clock: Clock = now_ms
    ):
        self.settings = settings
        self.store = store
        self.broadcast = broadcaster
        self.provider_factory = provider_factory
        self.clock = clock

        # メモリ上のライブセッション
        self.sessions: Dict[str, LiveSession] = {}

    def _generate_session_id(self) -> str:
        """セッションID生成: session_YYYYMMDD_HHMMSS_MICROSEC"""
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"

    def create_session(self) -> LiveSession:
        session_id = self._generate_session_id()
        session = LiveSession(
            session_id=session_id,
            config=self.settings.get_config(),
            store=self.store,
            broadcaster=self.broadcast,
            provider_factory=self.provider_factory,
            clock=self.clock
        )
        self.sessions[session_id] = session
        logger.info(f"✅ Created session: {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[LiveSession]:
        return self.sessions.get(session_id)

    def list_sessions(self) -> List[LiveSession]:
        return list(self.sessions.values())

    def apply_config(self, config: CoachingConfig) -> None:
        """全セッションに新しい設定を反映"""
        for session in self.sessions.values():
            session.reload_config(config)

    async def end_session(self, session_id: str, save: bool = True) -> Optional[StorageResult]:
        session = self.sessions.pop(session_id, None)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        return await session.end(save=save)

    async def shutdown(self) -> None:
        for session_id in list(self.sessions.keys()):
            try:
                await self.end_session(session_id)
            except Exception as e:
                logger.error(f"Failed to end session {session_id} on shutdown: {e}")
