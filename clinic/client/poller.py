# clinic/client/poller.py
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Poller(Generic[T]):
    """
    Re-run `fetch` every `interval` seconds in a background task and hand
    each result to `callback`.

    A failing fetch or callback is logged and the next cycle still runs.
    `stop()` cancels the task and waits for it to finish.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        callback: Callable[[T], Any],
        *,
        interval: float = 10.0,
        name: str = "poller",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.callback = callback
        self.interval = interval
        self.name = name
        self.cycles = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "Poller[T]":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _tick(self) -> None:
        try:
            result = await self.fetch()
        except Exception:
            logger.exception("%s: fetch failed", self.name)
            return
        try:
            delivered = self.callback(result)
            if inspect.isawaitable(delivered):
                await delivered
        except Exception:
            logger.exception("%s: callback failed", self.name)

    async def _run(self) -> None:
        while True:
            await self._tick()
            self.cycles += 1
            await asyncio.sleep(self.interval)
