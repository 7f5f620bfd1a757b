"""
対話ウィンドウ
直近5分間の発話を保持し、質問生成のコンテキストとして使う
"""

import logging
from collections import deque
from typing import Deque, Iterator, Optional, Tuple

from models import Utterance

logger = logging.getLogger(__name__)

HORIZON_MS = 5 * 60 * 1000


class DialogueWindow:
    """時間で区切った発話バッファ（追記のみ、古いものから削除）"""

    def __init__(self, horizon_ms: int = HORIZON_MS):
        self.horizon_ms = horizon_ms
        self._entries: Deque[Utterance] = deque()
        self._ordered = True  # False once an out-of-order timestamp has been appended

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Utterance]:
        return iter(tuple(self._entries))

    def append(self, utterance: Utterance, now: Optional[int] = None) -> None:
        """
        発話を追加し、続けて期限切れの発話を削除

        Args:
            utterance: 追加する発話
            now: 削除判定の基準時刻（省略時は発話のタイムスタンプ）
        """
        if self._entries and utterance.timestamp < self._entries[-1].timestamp:
            self._ordered = False
        self._entries.append(utterance)
        self.evict(utterance.timestamp if now is None else now)

    def evict(self, now: int) -> int:
        """
        timestamp < now - horizon の発話を削除

        Returns:
            削除した件数
        """
        cutoff = now - self.horizon_ms
        before = len(self._entries)

        if self._ordered:
            while self._entries and self._entries[0].timestamp < cutoff:
                self._entries.popleft()
        else:
            self._entries = deque(u for u in self._entries if u.timestamp >= cutoff)
            self._ordered = all(
                a.timestamp <= b.timestamp
                for a, b in zip(self._entries, list(self._entries)[1:])
            )

        removed = before - len(self._entries)
        if removed:
            logger.debug("Evicted %d utterances older than %d", removed, cutoff)
        return removed

    def snapshot(self, max_count: int = 10) -> Tuple[Utterance, ...]:
        """直近 max_count 件のコピー（時系列順）。ウィンドウは変更しない"""
        if max_count <= 0:
            return ()
        return tuple(self._entries)[-max_count:]

    def clear(self) -> None:
        self._entries.clear()
        self._ordered = True
