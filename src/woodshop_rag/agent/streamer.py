"""Incremental delivery of finalized answers."""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any

from woodshop_rag.agent.prompts import HISTORY_WINDOW, stream_prompt
from woodshop_rag.errors import StreamingError
from woodshop_rag.llm.completion import CompletionClient
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import ChatMessage, ResponseType, TraceRun

logger = get_logger(__name__)

_WORDS = re.compile(r"\S+\s*|\s+")


class StreamEventKind(str, Enum):
    TEXT = "text"
    ERROR = "error"
    FINISH = "finish"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    kind: StreamEventKind
    text: str = ""
    error: dict[str, Any] | None = None
    finish_reason: str | None = None


def split_words(text: str) -> list[str]:
    """Split text into word-sized deltas that concatenate back to the input."""
    return _WORDS.findall(text)


async def _replay(text: str) -> AsyncIterator[str]:
    for word in split_words(text):
        yield word


class ResponseStreamer:
    """Streams a traced answer to the caller.

    By default the answer is re-issued through a streaming completion with the
    persona, recent history and the answer as context. Inappropriate-content
    deflections, and every answer when `restream_answer` is off, are replayed
    word by word without a model call.

    Errors after the stream has started become a single ERROR event; text
    already yielded stays delivered. Closing the iterator closes the model
    stream.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        window: int = HISTORY_WINDOW,
        restream_answer: bool = True,
    ) -> None:
        self.client = client
        self.window = window
        self.restream_answer = restream_answer

    def source(self, run: TraceRun, history: Sequence[ChatMessage]) -> AsyncIterator[str]:
        result = run.result
        if not self.restream_answer or result.type is ResponseType.INAPPROPRIATE:
            return _replay(result.text)
        return self.client.stream(stream_prompt(history, result.text, window=self.window))

    async def stream(
        self,
        run: TraceRun,
        history: Sequence[ChatMessage],
        *,
        deadline: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        delivered = 0
        try:
            async with aclosing(self.source(run, history)) as tokens:
                while True:
                    timeout = None if deadline is None else deadline - loop.time()
                    if timeout is not None and timeout <= 0:
                        raise asyncio.TimeoutError()
                    try:
                        token = await asyncio.wait_for(tokens.__anext__(), timeout=timeout)
                    except StopAsyncIteration:
                        break
                    delivered += 1
                    yield StreamEvent(kind=StreamEventKind.TEXT, text=token)
        except asyncio.TimeoutError:
            logger.warning("stream_deadline_exceeded", run_id=run.run_id, delivered=delivered)
            error = StreamingError("Response deadline exceeded", stage="stream")
            yield StreamEvent(kind=StreamEventKind.ERROR, error=error.to_payload()["error"])
            return
        except Exception as exc:
            logger.error(
                "stream_failed",
                run_id=run.run_id,
                delivered=delivered,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            error = StreamingError(f"Failed to stream response: {exc}", stage="stream")
            yield StreamEvent(kind=StreamEventKind.ERROR, error=error.to_payload()["error"])
            return

        logger.info("stream_completed", run_id=run.run_id, delivered=delivered)
        yield StreamEvent(kind=StreamEventKind.FINISH, finish_reason="stop")
