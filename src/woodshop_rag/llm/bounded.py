"""Reusable retry/timeout wrapper for provider calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from woodshop_rag.errors import PipelineError, StageTimeoutError, StageTransientError
from woodshop_rag.obs.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class BoundedCall:
    """Runs an async provider call under attempt, per-attempt and overall limits.

    - `max_attempts`: total tries, including the first one.
    - `attempt_timeout`: cap for a single try, in seconds.
    - `deadline`: cap for all tries together, in seconds.

    A try that exceeds its timeout is cancelled. When all tries are used up the
    last failure is re-raised as `StageTimeoutError` if it was a timeout and as
    `StageTransientError` otherwise. `PipelineError`s raised by the call itself
    propagate untouched.
    """

    def __init__(
        self,
        stage: str,
        *,
        max_attempts: int = 1,
        attempt_timeout: float | None = None,
        deadline: float | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.stage = stage
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout
        self.deadline = deadline

    async def __call__(self, call: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_error: BaseException | None = None
        timed_out = False

        for attempt in range(1, self.max_attempts + 1):
            timeout = self._attempt_budget(loop.time() - started)
            if timeout is not None and timeout <= 0:
                timed_out = True
                break
            try:
                return await asyncio.wait_for(call(), timeout=timeout)
            except PipelineError:
                raise
            except asyncio.TimeoutError as exc:
                last_error, timed_out = exc, True
            except Exception as exc:
                last_error, timed_out = exc, False
            logger.warning(
                "stage_attempt_failed",
                stage=self.stage,
                attempt=attempt,
                max_attempts=self.max_attempts,
                timed_out=timed_out,
                error=str(last_error),
                error_type=type(last_error).__name__,
            )

        if timed_out:
            raise StageTimeoutError(
                f"{self.stage} exceeded its time budget", stage=self.stage
            ) from last_error
        raise StageTransientError(
            f"{self.stage} failed after {self.max_attempts} attempt(s): {last_error}",
            stage=self.stage,
        ) from last_error

    def _attempt_budget(self, elapsed: float) -> float | None:
        remaining = None if self.deadline is None else self.deadline - elapsed
        if self.attempt_timeout is None:
            return remaining
        if remaining is None:
            return self.attempt_timeout
        return min(self.attempt_timeout, remaining)
