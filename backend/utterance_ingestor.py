"""
Utterance ingestion: turns raw recognition events into canonical entries.
"""

import logging
import re
import time
from typing import Callable, List, Optional, Union

from dialogue_window import DialogueWindow
from models import Source, Utterance

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
TranscriptListener = Callable[[Utterance], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_source(source: Union[Source, str, None]) -> Source:
    if isinstance(source, Source):
        return source
    try:
        return Source(str(source).strip().lower())
    except ValueError:
        logger.debug("Unknown source %r, treating as coachee", source)
        return Source.COACHEE


class UtteranceIngestor:
    def __init__(
        self,
        window: DialogueWindow,
        clock: Clock = now_ms,
        listeners: Optional[List[TranscriptListener]] = None
    ):
        self.window = window
        self.clock = clock
        self.listeners: List[TranscriptListener] = list(listeners or [])

    def add_listener(self, listener: TranscriptListener) -> None:
        self.listeners.append(listener)

    @staticmethod
    def clean_text(text: str) -> str:
        return re.sub(r'\s+', ' ', text or '').strip()

    def ingest(self, raw_text: str, source: Union[Source, str, None]) -> Optional[Utterance]:
        """Returns None when nothing is left after whitespace cleanup."""
        text = self.clean_text(raw_text)
        if not text:
            logger.debug("Ingestor: empty text, skipped")
            return None

        utterance = Utterance(
            text=text,
            source=normalize_source(source),
            timestamp=self.clock()
        )

        self.window.append(utterance)
        for listener in self.listeners:
            listener(utterance)

        return utterance
