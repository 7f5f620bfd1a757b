"""
生成結果の反映
- 表示用の質問リストに最新バッチを先頭追加
- 永続化先へ非同期で転送（失敗しても UI 更新は巻き戻さない）
- 生成中フラグの解除
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from models import GenerationResult, QuestionBatchRecord, StorageResult

logger = logging.getLogger(__name__)

QuestionsListener = Callable[[List[str]], Awaitable[None]]
PersistFn = Callable[[QuestionBatchRecord], Awaitable[StorageResult]]


class GenerationGuard:
    """生成中フラグ（同時に1件のみ）"""

    def __init__(self):
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def try_acquire(self) -> bool:
        if self._active:
            return False
        self._active = True
        return True

    def release(self) -> None:
        self._active = False


class ResultSink:
    def __init__(
        self,
        guard: GenerationGuard,
        on_update: Optional[QuestionsListener] = None,
        persist: Optional[PersistFn] = None
    ):
        self.guard = guard
        self.on_update = on_update
        self.persist = persist
        self.questions: List[str] = []
        self._pending: Set[asyncio.Task] = set()

    async def commit(self, result: GenerationResult) -> None:
        """
        最新バッチを表示リストの先頭へ追加

        Args:
            result: 生成結果
        """
        try:
            self.questions[:0] = result.questions

            if self.on_update:
                try:
                    await self.on_update(list(self.questions))
                except Exception as e:
                    logger.error(f"Failed to publish question list: {e}")

            if self.persist and result.questions:
                record = QuestionBatchRecord(timestamp=result.generated_at, questions=result.questions)
                task = asyncio.create_task(self._forward(record))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        finally:
            self.guard.release()

    async def _forward(self, record: QuestionBatchRecord) -> None:
        try:
            outcome = await self.persist(record)
            if outcome is not None and not outcome.success:
                logger.warning(f"⚠️ Question batch not saved: {outcome.error}")
        except Exception as e:
            logger.error(f"Failed to persist question batch: {e}")

    async def drain(self) -> None:
        """未完了の永続化タスクを待つ"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
