"""
質問生成スケジューラー
- 1秒ごとのタイマーで対話時間を計測し、設定間隔ごとに質問を生成
- 新しい発話ごとに 30% の確率で 2 秒後に1問生成
- 手動トリガー
生成は常に1件のみ（生成中のトリガーは警告して破棄）
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from dialogue_window import DialogueWindow
from llm_provider import ConfigurationError, LLMProvider, ProviderError
from models import GenerationRequest, GenerationResult, Notification, Utterance
from prompt_builder import MAX_CONTEXT_UTTERANCES, analyze_dialogue_for_question_style, build_prompt
from question_parser import parse_questions
from result_sink import GenerationGuard, ResultSink
from settings_manager import CoachingConfig
from timers import DelayedCall, RepeatingTimer
from utterance_ingestor import Clock, now_ms

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0
RANDOM_TRIGGER_PROBABILITY = 0.3
RANDOM_TRIGGER_DELAY_SECONDS = 2.0

Notifier = Callable[[Notification], Awaitable[None]]
StatusListener = Callable[[bool], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    GENERATING = "generating"


class TriggerKind(str, Enum):
    TIMER = "timer"
    RANDOM = "random"
    MANUAL = "manual"


class QuestionScheduler:
    """質問生成のトリガー管理"""

    def __init__(
        self,
        window: DialogueWindow,
        guard: GenerationGuard,
        sink: ResultSink,
        get_config: Callable[[], CoachingConfig],
        get_provider: Callable[[], Optional[LLMProvider]],
        notify: Notifier,
        on_status: Optional[StatusListener] = None,
        clock: Clock = now_ms,
        rng: Optional[random.Random] = None,
        tick_seconds: float = TICK_SECONDS
    ):
        """
        Args:
            window: 対話ウィンドウ
            guard: 生成中フラグ
            sink: 結果の反映先
            get_config: 現在の設定を返す関数
            get_provider: 現在のプロバイダーを返す関数
            notify: ユーザー通知
            on_status: 生成中状態の変化通知
            clock: 現在時刻（epoch ms）
            rng: 確率トリガー用の乱数
            tick_seconds: タイマー間隔（秒）
        """
        self.window = window
        self.guard = guard
        self.sink = sink
        self.get_config = get_config
        self.get_provider = get_provider
        self.notify = notify
        self.on_status = on_status
        self.clock = clock
        self.rng = rng or random.Random()
        self.tick_seconds = tick_seconds

        self.dialogue_duration = 0
        self._timer: Optional[RepeatingTimer] = None
        self._delayed: Set[DelayedCall] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._epoch = 0
        self._closed = False
        self._status_lock = asyncio.Lock()

    @property
    def state(self) -> SchedulerState:
        if self.guard.active:
            return SchedulerState.GENERATING
        if self._timer is not None and self._timer.running:
            return SchedulerState.LISTENING
        return SchedulerState.IDLE

    # ---------- タイマー ----------

    def _start_timer(self) -> None:
        self._timer = RepeatingTimer(self.tick_seconds, self.tick, name="dialogue timer")
        self._timer.start()

    def _cancel_timers(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for call in list(self._delayed):
            call.cancel()
        self._delayed.clear()

    async def on_utterance(self, utterance: Utterance) -> None:
        """新しい発話の受信（対話タイマー開始と確率トリガー）"""
        if self._closed:
            return

        if self._timer is None or not self._timer.running:
            self.dialogue_duration = 0
            self._start_timer()
            logger.info("🎙 Dialogue active, timer started")

        config = self.get_config()
        if config.auto_suggest_questions and config.random_suggest:
            if self.rng.random() < RANDOM_TRIGGER_PROBABILITY:
                logger.debug("Random trigger hit for: %s", utterance.text[:30])
                call = DelayedCall(
                    RANDOM_TRIGGER_DELAY_SECONDS,
                    lambda: self.trigger(1, TriggerKind.RANDOM),
                    name="random trigger"
                )
                self._delayed.add(call)
                call.add_done_callback(self._delayed.discard)

    async def tick(self) -> bool:
        """
        1秒ごとの処理

        Returns:
            False ならタイマーを停止（対話が途切れて IDLE に戻った）
        """
        if self._closed:
            return False

        self.dialogue_duration += 1
        self.window.evict(self.clock())

        if len(self.window) == 0 and not self.guard.active:
            logger.info("💤 Dialogue window empty, back to idle")
            self.dialogue_duration = 0
            self._timer = None
            return False

        config = self.get_config()
        interval = config.dialogue_listen_duration
        if config.auto_suggest_questions and self.dialogue_duration % interval == 0:
            if self.guard.active:
                logger.debug("Skipping timed trigger at %ds, generation in flight", self.dialogue_duration)
            else:
                await self.trigger(config.number_of_questions, TriggerKind.TIMER)
        return True

    # ---------- 生成 ----------

    async def trigger(
        self,
        count: Optional[int] = None,
        kind: TriggerKind = TriggerKind.MANUAL
    ) -> Optional[asyncio.Task]:
        """
        質問生成を開始

        Args:
            count: 質問数（省略時は設定値）
            kind: トリガー種別

        Returns:
            生成タスク（開始できなかった場合は None）
        """
        if self._closed:
            return None

        config = self.get_config()
        requested = min(max(count or config.number_of_questions, 1), 3)

        provider = self.get_provider()
        try:
            if provider is None:
                raise ConfigurationError("AI client is not ready. Please check settings.")
            provider.ensure_configured()
        except ConfigurationError as e:
            logger.warning(f"⚠️ {kind.value} trigger rejected: {e}")
            await self._notify('error', str(e))
            return None

        if not self.guard.try_acquire():
            logger.info(f"⏳ {kind.value} trigger ignored, generation already in flight")
            await self._notify('warning', "Questions are already being generated. Please wait.")
            return None

        snapshot = self.window.snapshot(MAX_CONTEXT_UTTERANCES)
        request = GenerationRequest(
            requested_count=requested,
            window_snapshot=list(snapshot),
            style=analyze_dialogue_for_question_style(snapshot),
            language_tag=config.speech_language
        )

        logger.info(f"🤖 {kind.value} trigger: generating {requested} question(s) with {provider!r}")
        task = asyncio.create_task(self._run_generation(provider, request, config, self._epoch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def generate_now(self, count: Optional[int] = None) -> Optional[GenerationResult]:
        """手動トリガーして結果を待つ"""
        task = await self.trigger(count, TriggerKind.MANUAL)
        if task is None:
            return None
        return await task

    async def _run_generation(
        self,
        provider: LLMProvider,
        request: GenerationRequest,
        config: CoachingConfig,
        epoch: int
    ) -> Optional[GenerationResult]:
        committed = False
        await self._publish_status()
        try:
            prompt = build_prompt(request.window_snapshot, request.requested_count, config, style=request.style)
            raw_text = await provider.generate(prompt.system_instruction, prompt.user_prompt)

            if epoch != self._epoch:
                logger.info("🗑 Discarding questions from a closed session")
                return None

            result = GenerationResult(
                questions=parse_questions(raw_text, request.requested_count),
                raw_text=raw_text,
                generated_at=self.clock()
            )
            # commit() releases the guard itself
            committed = True
            await self.sink.commit(result)
            await self._publish_status()

            if result.questions:
                await self._notify('success', f"Generated {len(result.questions)} coaching question(s)")
            else:
                await self._notify('warning', "No questions could be parsed from the AI response")
            logger.info(f"💡 Generated {len(result.questions)}/{request.requested_count} question(s)")
            return result

        except (ConfigurationError, ProviderError) as e:
            logger.error(f"Error generating questions: {e}")
            if epoch == self._epoch:
                await self._notify('error', f"Failed to generate questions: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error generating questions: {e}", exc_info=True)
            if epoch == self._epoch:
                await self._notify('error', f"Failed to generate questions: {e}")
            return None
        finally:
            if not committed and epoch == self._epoch:
                self.guard.release()
                await self._publish_status()

    async def drain(self) -> None:
        """実行中の生成タスクを待つ"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------- ライフサイクル ----------

    def reload(self) -> None:
        """設定変更時にタイマーを作り直す（生成中の呼び出しはそのまま完了させる）"""
        if self._closed:
            return
        was_listening = self._timer is not None and self._timer.running
        self._cancel_timers()
        if was_listening:
            self._start_timer()
        logger.info("🔄 Scheduler reloaded (listening=%s, duration=%ds)", was_listening, self.dialogue_duration)

    def stop(self) -> None:
        """タイマーを停止し、生成中の結果は破棄する"""
        self._closed = True
        self._epoch += 1
        self._cancel_timers()
        self.guard.release()
        self.dialogue_duration = 0
        logger.info("🛑 Scheduler stopped")

    async def _notify(self, severity: str, message: str) -> None:
        try:
            await self.notify(Notification(severity=severity, message=message))
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")

    async def _publish_status(self) -> None:
        """生成中フラグの現在値を送信（送信は直列化し、値は送信直前に読む）"""
        if not self.on_status:
            return
        async with self._status_lock:
            try:
                await self.on_status(self.guard.active)
            except Exception as e:
                logger.error(f"Failed to publish generation status: {e}")
