import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from conftest import FailingSink
from woodshop_rag.config import TracingConfig
from woodshop_rag.errors import ConfigurationError
from woodshop_rag.obs.tracing import (
    InMemoryTraceStore,
    LangSmithTraceSink,
    TraceRecorder,
    build_trace_recorder,
)
from woodshop_rag.types import PipelineResult, ResponseType, StageTrace


class _FakeLangSmithClient:
    def __init__(self) -> None:
        self.runs: list[dict[str, Any]] = []

    def create_run(self, name: str, inputs: dict[str, Any], run_type: str, **kwargs: Any) -> None:
        self.runs.append({"name": name, "inputs": inputs, "run_type": run_type, **kwargs})


def _result(response_type: ResponseType = ResponseType.CHAT, context_count: int = 0) -> PipelineResult:
    return PipelineResult.build(
        text="answer",
        response_type=response_type,
        query="question",
        context_count=context_count,
        rewritten_query="rewritten" if response_type is ResponseType.CHAT else "",
    )


def _record(recorder: TraceRecorder, result: PipelineResult, latency_ms: float = 10.0):
    async def _go():
        run = recorder.record(
            result,
            stages=[StageTrace("classify", "question", "RELEVANT", 1.5)],
            states=["start", "classified"],
            started_at=datetime.now(timezone.utc),
            latency_ms=latency_ms,
        )
        await recorder.drain()
        return run

    return asyncio.run(_go())


def test_failing_sink_does_not_prevent_other_sinks_or_raise() -> None:
    failing = FailingSink()
    store = InMemoryTraceStore()
    recorder = TraceRecorder([failing, store])

    run = _record(recorder, _result())

    assert failing.attempts == 1
    assert store.get(run.run_id).result.text == "answer"
    assert run.name == "chat-completion"


def test_store_is_bounded_and_summarizes_by_type() -> None:
    store = InMemoryTraceStore(limit=2)
    recorder = TraceRecorder([store])

    _record(recorder, _result(ResponseType.GREETING), latency_ms=5.0)
    _record(recorder, _result(ResponseType.CHAT, context_count=4), latency_ms=15.0)
    _record(recorder, _result(ResponseType.CHAT, context_count=2), latency_ms=25.0)

    summary = store.summary()
    assert summary["total_requests"] == 2
    assert summary["by_type"] == {"chat": 2}
    assert summary["avg_latency_ms"] == 20.0
    assert summary["avg_context_count"] == 3.0


def test_empty_store_summary() -> None:
    assert InMemoryTraceStore().summary()["total_requests"] == 0


def test_langsmith_sink_writes_named_run_with_stage_metadata() -> None:
    client = _FakeLangSmithClient()
    recorder = TraceRecorder(
        [LangSmithTraceSink(client, project_name="woodshop")],
        metadata={"project_name": "woodshop", "endpoint": "https://smith.example"},
    )

    run = _record(recorder, _result(context_count=3))

    [written] = client.runs
    assert written["name"] == "chat-completion"
    assert written["id"] == run.run_id
    assert written["project_name"] == "woodshop"
    metadata = written["extra"]["metadata"]
    assert metadata["context_count"] == 3
    assert metadata["rewritten_query"] == "rewritten"
    assert metadata["endpoint"] == "https://smith.example"
    assert metadata["stages"][0]["name"] == "classify"


def test_unconfigured_tracing_keeps_only_local_store() -> None:
    store = InMemoryTraceStore()

    recorder = build_trace_recorder(TracingConfig(), store)

    assert recorder.sinks == [store]
    assert recorder.metadata["project_name"] == "default"


def test_langsmith_sink_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        LangSmithTraceSink.from_config(TracingConfig())
