"""
Shared test fixtures.

Provides:
- a controllable epoch-ms clock
- a stub LLM provider (no network)
- a notification collector
- a fully wired generation pipeline
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass
from typing import List, Optional

import pytest

# main.py builds its globals at import time; point them at a scratch dir first
_TMP_DIR = tempfile.mkdtemp(prefix="coaching-tests-")
os.environ.setdefault("COACH_CONFIG_PATH", os.path.join(_TMP_DIR, "config.json"))
os.environ.setdefault("SESSION_DATA_DIR", os.path.join(_TMP_DIR, "sessions"))
os.environ.setdefault("STORAGE_BACKEND", "file")

from dialogue_window import DialogueWindow  # noqa: E402
from llm_provider import LLMProvider  # noqa: E402
from models import Notification  # noqa: E402
from question_scheduler import QuestionScheduler  # noqa: E402
from result_sink import GenerationGuard, ResultSink  # noqa: E402
from settings_manager import CoachingConfig  # noqa: E402
from utterance_ingestor import UtteranceIngestor  # noqa: E402


class FakeClock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class StubProvider(LLMProvider):
    provider_type = "stub"
    display_name = "Stub"

    def __init__(
        self,
        response: str = "1. What would you like to explore?",
        api_key: str = "test-key",
        model: str = "stub-model",
        gate: Optional[asyncio.Event] = None,
        error: Optional[Exception] = None
    ):
        super().__init__(api_key, model)
        self.response = response
        self.gate = gate
        self.error = error
        self.calls: List[dict] = []

    async def _generate(self, system_instruction, user_prompt, temperature, max_tokens):
        self.calls.append({
            "system_instruction": system_instruction,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


class NotificationLog:
    def __init__(self):
        self.items: List[Notification] = []

    async def __call__(self, notification: Notification) -> None:
        self.items.append(notification)

    def severities(self) -> List[str]:
        return [n.severity for n in self.items]


@dataclass
class Pipeline:
    clock: FakeClock
    window: DialogueWindow
    ingestor: UtteranceIngestor
    guard: GenerationGuard
    sink: ResultSink
    scheduler: QuestionScheduler
    notifications: NotificationLog
    holder: dict

    @property
    def provider(self) -> LLMProvider:
        return self.holder["provider"]

    @provider.setter
    def provider(self, value: LLMProvider) -> None:
        self.holder["provider"] = value

    @property
    def config(self) -> CoachingConfig:
        return self.holder["config"]

    @config.setter
    def config(self, value: CoachingConfig) -> None:
        self.holder["config"] = value

    async def ingest(self, text: str, source: str):
        utterance = self.ingestor.ingest(text, source)
        if utterance is not None:
            await self.scheduler.on_utterance(utterance)
        return utterance

    async def ticks(self, count: int, ms_per_tick: int = 1000) -> None:
        for _ in range(count):
            self.clock.advance(ms_per_tick)
            await self.scheduler.tick()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub_provider_cls():
    return StubProvider


@pytest.fixture
def notifications() -> NotificationLog:
    return NotificationLog()


@pytest.fixture
def base_config() -> CoachingConfig:
    return CoachingConfig(
        anthropic_api_key="",
        openai_api_key="",
        gemini_api_key="",
        auto_suggest_questions=True,
        random_suggest=False,
        dialogue_listen_duration=30,
        number_of_questions=2,
    )


@pytest.fixture
async def make_pipeline(clock, notifications, base_config):
    """Wire window → scheduler → sink around a stub provider."""
    built: List[Pipeline] = []

    def _make(
        provider: Optional[LLMProvider] = None,
        config: Optional[CoachingConfig] = None,
        rng=None,
        on_status=None
    ):
        holder = {"provider": provider or StubProvider(), "config": config or base_config}
        window = DialogueWindow()
        ingestor = UtteranceIngestor(window, clock=clock)
        guard = GenerationGuard()
        sink = ResultSink(guard)
        scheduler = QuestionScheduler(
            window=window,
            guard=guard,
            sink=sink,
            get_config=lambda: holder["config"],
            get_provider=lambda: holder["provider"],
            notify=notifications,
            on_status=on_status,
            clock=clock,
            rng=rng,
            # the background timer never fires during a test; ticks are driven by hand
            tick_seconds=3600
        )
        pipeline = Pipeline(clock, window, ingestor, guard, sink, scheduler, notifications, holder)
        built.append(pipeline)
        return pipeline

    yield _make

    for pipeline in built:
        pipeline.scheduler.stop()
