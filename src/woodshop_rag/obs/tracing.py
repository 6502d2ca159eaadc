"""Trace recording, sinks, and timing helpers."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from woodshop_rag.background import BackgroundTasks
from woodshop_rag.config import TracingConfig
from woodshop_rag.errors import ConfigurationError
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import PipelineResult, StageTrace, TraceRun

logger = get_logger(__name__)


class TraceSink(Protocol):
    async def write(self, run: TraceRun) -> None:
        """Persist one finalized run."""


class InMemoryTraceStore:
    """Bounded in-memory trace history for API-level observability."""

    def __init__(self, limit: int = 500) -> None:
        self.limit = limit
        self._records: OrderedDict[str, TraceRun] = OrderedDict()

    async def write(self, run: TraceRun) -> None:
        self._records[run.run_id] = run
        while len(self._records) > self.limit:
            self._records.popitem(last=False)

    def get(self, run_id: str) -> TraceRun:
        record = self._records.get(run_id)
        if record is None:
            raise KeyError(f"Trace not found: {run_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRun]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_context_count": 0.0,
                "by_type": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        by_type: dict[str, int] = {}
        for record in records:
            key = record.result.type.value
            by_type[key] = by_type.get(key, 0) + 1
        context_total = sum(record.result.metadata.context_count for record in records)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_context_count": context_total / total,
            "by_type": by_type,
        }


class LangSmithTraceSink:
    """Writes each run to LangSmith as a single chain run.

    Stage traces and the state path travel as nested run metadata.
    """

    def __init__(self, client: Any, *, project_name: str) -> None:
        self.client = client
        self.project_name = project_name

    @classmethod
    def from_config(cls, config: TracingConfig) -> "LangSmithTraceSink":
        from langsmith import Client

        if config.api_key is None:
            raise ConfigurationError("LANGSMITH_API_KEY is not configured", stage="trace")
        client = Client(api_key=config.api_key.get_secret_value(), api_url=config.endpoint)
        return cls(client, project_name=config.project)

    async def write(self, run: TraceRun) -> None:
        await asyncio.to_thread(self._write_sync, run)

    def _write_sync(self, run: TraceRun) -> None:
        result = run.result
        self.client.create_run(
            name=run.name,
            inputs={"input": result.metadata.input},
            run_type="chain",
            project_name=self.project_name,
            id=run.run_id,
            outputs={"output": result.text},
            start_time=datetime.fromisoformat(run.started_at),
            end_time=datetime.fromisoformat(run.ended_at),
            extra={
                "metadata": {
                    **run.metadata,
                    "type": run.name,
                    "context_count": result.metadata.context_count,
                    "rewritten_query": result.metadata.rewritten_query,
                    "response_type": result.type.value,
                    "states": list(run.states),
                    "stages": [
                        {
                            "name": stage.name,
                            "latency_ms": stage.latency_ms,
                            "input": stage.input_preview,
                            "output": stage.output_preview,
                        }
                        for stage in run.stages
                    ],
                }
            },
        )


class TraceRecorder:
    """Turns finalized results into `TraceRun`s and ships them to sinks.

    Sink writes run as background tasks: `record` returns as soon as the run
    exists, and a failing sink is logged without touching the caller.
    """

    def __init__(
        self,
        sinks: Sequence[TraceSink] = (),
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.sinks = list(sinks)
        self.metadata = dict(metadata or {})
        self._tasks = BackgroundTasks("trace")

    def record(
        self,
        result: PipelineResult,
        *,
        stages: Sequence[StageTrace],
        states: Sequence[str],
        started_at: datetime,
        latency_ms: float,
    ) -> TraceRun:
        run = TraceRun(
            run_id=str(uuid.uuid4()),
            name=f"{result.type.value}-completion",
            result=result,
            stages=tuple(stages),
            states=tuple(states),
            started_at=started_at.isoformat(),
            ended_at=datetime.now(timezone.utc).isoformat(),
            latency_ms=latency_ms,
            metadata=dict(self.metadata),
        )
        for sink in self.sinks:
            self._tasks.spawn(self._write(sink, run))
        return run

    async def drain(self, timeout: float | None = None) -> None:
        await self._tasks.drain(timeout)

    async def _write(self, sink: TraceSink, run: TraceRun) -> None:
        try:
            await sink.write(run)
        except Exception as exc:
            logger.warning(
                "trace_sink_failed",
                sink=type(sink).__name__,
                run_id=run.run_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )


def build_trace_recorder(
    config: TracingConfig, store: InMemoryTraceStore | None = None
) -> TraceRecorder:
    sinks: list[TraceSink] = []
    if store is not None:
        sinks.append(store)
    if config.enabled:
        sinks.append(LangSmithTraceSink.from_config(config))
    else:
        logger.warning("langsmith_not_configured", detail="LANGSMITH_API_KEY not set")
    return TraceRecorder(
        sinks,
        metadata={"project_name": config.project, "endpoint": config.endpoint},
    )


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
