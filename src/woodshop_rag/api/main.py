"""FastAPI entrypoint for chat, trace and health endpoints."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from woodshop_rag.agent.orchestrator import Orchestrator, extract_query
from woodshop_rag.agent.streamer import ResponseStreamer, StreamEvent, StreamEventKind
from woodshop_rag.config import Settings
from woodshop_rag.errors import PipelineError, StageTimeoutError
from woodshop_rag.llm.completion import LangChainCompletionClient, build_chat_model
from woodshop_rag.llm.embedding import EmbeddingClient
from woodshop_rag.obs.logging import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from woodshop_rag.obs.tracing import InMemoryTraceStore, TraceRecorder, build_trace_recorder
from woodshop_rag.retrieval.enrichment import EnrichmentClient
from woodshop_rag.retrieval.vector_store import PgVectorStore
from woodshop_rag.types import ChatMessage, Role, TraceRun

logger = get_logger(__name__)


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    def to_domain(self) -> ChatMessage:
        return ChatMessage(role=Role(self.role), content=self.content)


class ChatRequest(BaseModel):
    messages: list[ChatMessageModel]

    def to_domain(self) -> list[ChatMessage]:
        return [message.to_domain() for message in self.messages]


def build_orchestrator(settings: Settings, trace_recorder: TraceRecorder) -> Orchestrator:
    """Wire production providers; raises `ConfigurationError` on missing model credentials.

    A missing `POSTGRES_URL` only fails requests that reach vector search.
    """
    chat_model = build_chat_model(settings.llm)
    completion = LangChainCompletionClient(
        chat_model,
        request_timeout=settings.llm.request_timeout_seconds,
        max_attempts=settings.llm.max_attempts,
    )
    embedder = EmbeddingClient.from_config(settings.embedding)
    vector_store = PgVectorStore(settings.vector_store)
    window = settings.pipeline.history_window
    return Orchestrator(
        completion=completion,
        embedder=embedder,
        vector_store=vector_store,
        trace_recorder=trace_recorder,
        corpus=settings.vector_store.table,
        top_k=settings.vector_store.top_k,
        window=window,
        format_retries=settings.pipeline.format_retries,
        enrichment=EnrichmentClient.from_config(settings.enrichment),
        streamer=ResponseStreamer(
            completion,
            window=window,
            restream_answer=settings.pipeline.restream_answer,
        ),
    )


def encode_event(event: StreamEvent) -> str:
    """Frame one event for the line-based data stream protocol."""
    if event.kind is StreamEventKind.TEXT:
        return f"0:{json.dumps(event.text)}\n"
    if event.kind is StreamEventKind.ERROR:
        return f"3:{json.dumps(event.error)}\n"
    return f"d:{json.dumps({'finishReason': event.finish_reason})}\n"


class _AppState:
    def __init__(
        self,
        settings: Settings,
        trace_store: InMemoryTraceStore,
        trace_recorder: TraceRecorder,
        orchestrator: Orchestrator | None,
    ) -> None:
        self.settings = settings
        self.trace_store = trace_store
        self.trace_recorder = trace_recorder
        self.orchestrator = orchestrator
        self._lock = asyncio.Lock()

    async def get_orchestrator(self) -> Orchestrator:
        if self.orchestrator is not None:
            return self.orchestrator
        async with self._lock:
            if self.orchestrator is None:
                self.orchestrator = build_orchestrator(self.settings, self.trace_recorder)
        return self.orchestrator

    async def shutdown(self) -> None:
        if self.orchestrator is None:
            return
        await self.orchestrator.drain(timeout=5.0)
        if isinstance(self.orchestrator.vector_store, PgVectorStore):
            await self.orchestrator.vector_store.close()


def create_app(
    *,
    settings: Settings | None = None,
    orchestrator: Orchestrator | None = None,
    trace_store: InMemoryTraceStore | None = None,
) -> FastAPI:
    """Build the application.

    Tests pass a pre-wired `orchestrator` (and the `trace_store` its recorder
    writes to). Otherwise providers are wired from `settings` on the first chat
    request so a missing credential surfaces as a structured error instead of
    a startup crash.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.log_json)

    trace_store = trace_store or InMemoryTraceStore(limit=settings.tracing.history_limit)
    recorder = (
        orchestrator.trace_recorder
        if orchestrator is not None
        else build_trace_recorder(settings.tracing, trace_store)
    )
    state = _AppState(settings, trace_store, recorder, orchestrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await state.shutdown()

    app = FastAPI(title="Woodshop RAG Assistant", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = state

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        clear_request_context()
        request_id = bind_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        payload = {
            "error": {
                "code": "validation_error",
                "message": "Invalid request format. Expected messages array.",
                "stage": "validate",
                "retryable": False,
                "details": jsonable_encoder(exc.errors()),
            }
        }
        return JSONResponse(status_code=400, content=payload)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
        payload = {
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "stage": None,
                "retryable": False,
            }
        }
        return JSONResponse(status_code=500, content=payload)

    async def _run(request: ChatRequest) -> tuple[Orchestrator, list[ChatMessage], TraceRun, float]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.pipeline.request_timeout_seconds
        messages = request.to_domain()
        extract_query(messages)
        pipeline = await state.get_orchestrator()
        try:
            run = await asyncio.wait_for(
                pipeline.run(messages), timeout=deadline - loop.time()
            )
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError("Request deadline exceeded", stage="request") from exc
        return pipeline, messages, run, deadline

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": settings.llm.api_key is not None,
            "vector_store_configured": settings.vector_store.dsn is not None,
            "tracing_configured": settings.tracing.enabled,
            "trace_count": len(trace_store.list_recent(limit=settings.tracing.history_limit)),
        }

    @app.post("/api/chat")
    async def chat(request: ChatRequest) -> StreamingResponse:
        pipeline, messages, run, deadline = await _run(request)

        async def _frames() -> AsyncIterator[str]:
            async for event in pipeline.stream(run, messages, deadline=deadline):
                yield encode_event(event)

        return StreamingResponse(
            _frames(),
            media_type="text/plain; charset=utf-8",
            headers={
                "X-Trace-Id": run.run_id,
                "X-Response-Type": run.result.type.value,
                "X-Vercel-AI-Data-Stream": "v1",
            },
        )

    @app.post("/api/chat/complete")
    async def chat_complete(request: ChatRequest) -> dict[str, Any]:
        _, _, run, _ = await _run(request)
        return {**run.result.to_dict(), "trace_id": run.run_id}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [record.to_dict() for record in trace_store.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return record.to_dict()

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


app = create_app()
