from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

DEFAULT_SWEEP_INTERVAL_SECONDS = 86400.0


class CacheJanitor:
    """Periodically runs a cache sweep on the event loop's default executor."""

    def __init__(self, sweep: Callable[[], int], *, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0.")
        self._sweep = sweep
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._log = structlog.get_logger().bind(component="cache_janitor")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        try:
            removed = await asyncio.to_thread(self._sweep)
        except Exception as e:
            self._log.error("cache_sweep_failed", error=str(e))
            return 0
        self._log.info("cache_sweep_done", removed=removed)
        return removed

    async def _loop(self) -> None:
        self._log.info("cache_janitor_started", interval_seconds=self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            self._log.info("cache_janitor_stopped")
