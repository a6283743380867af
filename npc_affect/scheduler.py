"""
Background task helpers.

- safe_create_task: fire-and-forget tasks whose failures are logged
- PeriodicJob: run a callable on a fixed interval until stopped
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


def safe_create_task(coro, *, name: Optional[str] = None) -> asyncio.Task:
    """
    Create an asyncio task that logs its exception instead of dropping it.

    Args:
        coro: The coroutine to schedule.
        name: Optional human-readable task name for log messages.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error(
            "Background task '%s' failed: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )


class PeriodicJob:
    """
    Run ``func`` every ``interval`` seconds on the running event loop.

    ``func`` may be sync or async. An exception in one run is logged and
    the job keeps its schedule. Sync work runs inline, so it must be short:
    the fairness and cleanup jobs only read copy-on-read snapshots.

    Example:
        >>> job = PeriodicJob("fairness", 300, analytics.calculate_fairness_metrics)
        >>> job.start()
        >>> ...
        >>> await job.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Union[Any, Awaitable[Any]]],
    ):
        self.name = name
        self.interval = interval
        self.func = func
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = safe_create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"Started periodic job {self.name} every {self.interval}s")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    async def run_once(self) -> None:
        try:
            result = self.func()
            if inspect.isawaitable(result):
                await result
            self.runs += 1
        except Exception as e:
            self.failures += 1
            logger.error(f"Periodic job {self.name} failed: {e}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped periodic job {self.name}")
