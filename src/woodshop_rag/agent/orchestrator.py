"""Query orchestration: classify, branch, retrieve, generate, trace."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from woodshop_rag.agent.classifier import RelevanceClassifier
from woodshop_rag.agent.generator import AnswerGenerator
from woodshop_rag.agent.prompts import (
    INAPPROPRIATE_RESPONSE,
    deflection_prompt,
    greeting_prompt,
)
from woodshop_rag.agent.rewriter import QueryRewriter
from woodshop_rag.agent.streamer import ResponseStreamer, StreamEvent, StreamEventKind
from woodshop_rag.background import BackgroundTasks
from woodshop_rag.errors import InvalidRequestError, PipelineError, StageTransientError
from woodshop_rag.llm.completion import CompletionClient
from woodshop_rag.llm.embedding import EmbeddingClient
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.obs.tracing import Timer, TraceRecorder
from woodshop_rag.retrieval.context import assemble_context
from woodshop_rag.retrieval.enrichment import EnrichmentClient
from woodshop_rag.retrieval.vector_store import VectorStore
from woodshop_rag.types import (
    ChatMessage,
    PipelineResult,
    RelevanceLabel,
    ResponseType,
    Role,
    StageTrace,
    TraceRun,
)

T = TypeVar("T")

logger = get_logger(__name__)

_PREVIEW_CHARS = 320


class PipelineState(str, Enum):
    START = "start"
    CLASSIFIED = "classified"
    SHORT_CIRCUITED = "short_circuited"
    RETRIEVING = "retrieving"
    RETRIEVED = "retrieved"
    GENERATING = "generating"
    TRACED = "traced"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class _RunContext:
    """Per-request scratch state; never shared between requests."""

    query: str
    history: list[ChatMessage]
    states: list[str] = field(default_factory=lambda: [PipelineState.START.value])
    stages: list[StageTrace] = field(default_factory=list)

    def advance(self, state: PipelineState) -> None:
        self.states.append(state.value)
        logger.debug("pipeline_state", state=state.value)


def extract_query(messages: Sequence[ChatMessage]) -> str:
    """Return the content of the last user message or raise `InvalidRequestError`."""
    if not messages:
        raise InvalidRequestError("Expected a non-empty messages array", stage="validate")
    for message in reversed(messages):
        if message.role is Role.USER:
            if not message.content.strip():
                break
            return message.content
    raise InvalidRequestError("The last user message is missing or empty", stage="validate")


class Orchestrator:
    """Sequences the pipeline stages for one request at a time.

    Instances hold only collaborators, so one orchestrator serves any number of
    concurrent requests. Stages run strictly in order. Any stage failure other
    than a rewrite failure aborts the run before a result exists, so nothing is
    traced for failed requests.
    """

    def __init__(
        self,
        *,
        completion: CompletionClient,
        embedder: EmbeddingClient,
        vector_store: VectorStore,
        trace_recorder: TraceRecorder,
        corpus: str = "bents",
        top_k: int = 10,
        window: int = 5,
        format_retries: int = 0,
        enrichment: EnrichmentClient | None = None,
        streamer: ResponseStreamer | None = None,
    ) -> None:
        self.completion = completion
        self.embedder = embedder
        self.vector_store = vector_store
        self.trace_recorder = trace_recorder
        self.corpus = corpus
        self.top_k = top_k
        self.enrichment = enrichment
        self.classifier = RelevanceClassifier(completion, window=window)
        self.rewriter = QueryRewriter(completion, window=window)
        self.generator = AnswerGenerator(
            completion, window=window, format_retries=format_retries
        )
        self.streamer = streamer or ResponseStreamer(completion, window=window)
        self._background = BackgroundTasks("enrichment")

    async def run(self, messages: Sequence[ChatMessage]) -> TraceRun:
        """Run one request to a traced result.

        Raises:
            InvalidRequestError: no usable user query.
            PipelineError: any fatal stage failure.
        """
        query = extract_query(messages)
        ctx = _RunContext(query=query, history=list(messages))
        started_at = datetime.now(timezone.utc)

        try:
            with Timer() as timer:
                label = await self._stage(
                    ctx,
                    "classify",
                    lambda: self.classifier.classify(query, ctx.history),
                    preview=query,
                    describe=lambda value: value.value,
                )
                ctx.advance(PipelineState.CLASSIFIED)

                if label is RelevanceLabel.RELEVANT:
                    result = await self._answer(ctx)
                else:
                    result = await self._short_circuit(ctx, label)
        except PipelineError:
            ctx.advance(PipelineState.FAILED)
            logger.warning("pipeline_failed", states=ctx.states)
            raise

        ctx.advance(PipelineState.TRACED)
        run = self.trace_recorder.record(
            result,
            stages=ctx.stages,
            states=ctx.states,
            started_at=started_at,
            latency_ms=timer.elapsed_ms,
        )
        logger.info(
            "pipeline_completed",
            run_id=run.run_id,
            response_type=result.type.value,
            context_count=result.metadata.context_count,
            latency_ms=round(timer.elapsed_ms, 2),
        )
        return run

    async def stream(
        self,
        run: TraceRun,
        messages: Sequence[ChatMessage],
        *,
        deadline: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Deliver a traced run incrementally; see `ResponseStreamer.stream`."""
        logger.info("pipeline_state", state=PipelineState.STREAMING.value, run_id=run.run_id)
        final = PipelineState.DONE
        async with aclosing(
            self.streamer.stream(run, messages, deadline=deadline)
        ) as events:
            async for event in events:
                if event.kind is StreamEventKind.ERROR:
                    final = PipelineState.FAILED
                yield event
        logger.info("pipeline_state", state=final.value, run_id=run.run_id)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background enrichment calls and trace writes."""
        await self._background.drain(timeout)
        await self.trace_recorder.drain(timeout)

    async def _short_circuit(
        self, ctx: _RunContext, label: RelevanceLabel
    ) -> PipelineResult:
        ctx.advance(PipelineState.SHORT_CIRCUITED)
        if label is RelevanceLabel.INAPPROPRIATE:
            return PipelineResult.build(
                text=INAPPROPRIATE_RESPONSE,
                response_type=ResponseType.INAPPROPRIATE,
                query=ctx.query,
            )

        if label is RelevanceLabel.GREETING:
            payload, response_type = greeting_prompt(ctx.query), ResponseType.GREETING
        else:
            payload, response_type = deflection_prompt(ctx.query), ResponseType.NOT_RELEVANT
        text = await self._stage(
            ctx,
            payload.stage.value,
            lambda: self.completion.complete(payload),
            preview=ctx.query,
        )
        return PipelineResult.build(text=text, response_type=response_type, query=ctx.query)

    async def _answer(self, ctx: _RunContext) -> PipelineResult:
        ctx.advance(PipelineState.RETRIEVING)
        rewritten = await self._stage(
            ctx,
            "rewrite",
            lambda: self.rewriter.rewrite(ctx.query, ctx.history),
            preview=ctx.query,
        )
        embedding = await self._stage(
            ctx,
            "embed",
            lambda: self.embedder.embed(rewritten),
            preview=rewritten,
            describe=lambda vector: f"dimension={len(vector)}",
        )
        documents = await self._stage(
            ctx,
            "vector_search",
            lambda: self.vector_store.search(embedding, self.corpus, self.top_k),
            preview=f"corpus={self.corpus} top_k={self.top_k}",
            describe=lambda docs: ", ".join(
                f"{doc.chunk_id}:{doc.similarity_score:.3f}" for doc in docs
            ),
        )
        context = assemble_context(documents)
        ctx.advance(PipelineState.RETRIEVED)

        if context and self.enrichment is not None:
            self._background.spawn(self.enrichment.prefetch(context, rewritten))

        ctx.advance(PipelineState.GENERATING)
        answer = await self._stage(
            ctx,
            "generate",
            lambda: self.generator.generate(ctx.history, context, ctx.query),
            preview=ctx.query,
        )
        return PipelineResult.build(
            text=answer,
            response_type=ResponseType.CHAT,
            query=ctx.query,
            context_count=len(documents),
            rewritten_query=rewritten,
        )

    async def _stage(
        self,
        ctx: _RunContext,
        name: str,
        call: Callable[[], Awaitable[T]],
        *,
        preview: str,
        describe: Callable[[T], str] = str,
    ) -> T:
        """Run one stage, record its timing, and normalize unexpected failures."""
        try:
            with Timer() as timer:
                value = await call()
        except PipelineError as exc:
            logger.warning("stage_failed", stage=name, code=exc.code, error=exc.message)
            raise
        except Exception as exc:
            logger.error(
                "stage_failed",
                stage=name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StageTransientError(f"{name} failed: {exc}", stage=name) from exc

        ctx.stages.append(
            StageTrace(
                name=name,
                input_preview=preview[:_PREVIEW_CHARS],
                output_preview=describe(value)[:_PREVIEW_CHARS],
                latency_ms=timer.elapsed_ms,
            )
        )
        return value
