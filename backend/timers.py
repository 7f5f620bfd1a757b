"""
Cancellable timer handles on top of asyncio tasks.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """
    Calls `callback` every `interval` seconds until cancelled.
    The loop stops by itself when the callback returns False.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[Optional[bool]]], name: str = "timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    keep_running = await self.callback()
                except Exception as e:
                    logger.error(f"Error in {self.name} callback: {e}")
                    continue
                if keep_running is False:
                    break
        except asyncio.CancelledError:
            logger.debug(f"{self.name} cancelled")


class DelayedCall:
    """Runs `callback` once after `delay` seconds unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[object]], name: str = "delayed"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = asyncio.create_task(self._run())

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def add_done_callback(self, fn: Callable[["DelayedCall"], None]) -> None:
        if self._task is not None:
            self._task.add_done_callback(lambda _task: fn(self))

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self.delay)
            await self.callback()
        except asyncio.CancelledError:
            logger.debug(f"{self.name} cancelled")
        except Exception as e:
            logger.error(f"Error in {self.name}: {e}")
