"""Fire-and-forget task tracking for side effects off the request path."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from woodshop_rag.obs.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Holds strong references to spawned tasks until they finish.

    Failures are logged and never re-raised; callers that need the outcome
    should await the work directly instead.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tasks, e.g. on shutdown or in tests."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                group=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
