"""
Fire-and-forget task management.

Side effects that must not delay a response (last-used bookkeeping,
periodic maintenance) run as detached asyncio tasks. Their failures are
observed only through logging.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Coroutine

import structlog

from agencyhub.core.metrics import background_task_failures_total

logger = structlog.get_logger(__name__)


class TaskSpawner:
    """
    Owns detached tasks until they finish.

    The event loop keeps only weak references to tasks, so each one is
    held here until its done-callback runs.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            background_task_failures_total.labels(task=task.get_name()).inc()
            logger.warning(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return

        pending = list(self._tasks)
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()

        if still_pending:
            logger.warning("background_tasks_cancelled", count=len(still_pending))


class PeriodicTask:
    """
    Run an async callable every ``interval`` seconds until stopped.

    Errors in one run are logged and do not stop the loop.

    Usage:
        loop = PeriodicTask("rate_limit_sweep", limiter.asweep, interval=60)
        await loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: float,
    ) -> None:
        self.name = name
        self._func = func
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        try:
            return await self._func()
        except Exception as e:
            logger.error("periodic_task_failed", task=self.name, error=str(e), exc_info=True)
            return None

    async def start(self) -> None:
        if self.is_running:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("periodic_task_started", task=self.name, interval=self._interval)

    async def stop(self) -> None:
        if not self._task:
            return

        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_task_stopped", task=self.name)

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()
