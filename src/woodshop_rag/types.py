"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One chat turn. Sequences of these are chronological."""

    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True, slots=True)
class RetrievedDocument:
    """A corpus chunk returned by nearest-neighbor search."""

    id: str
    text: str
    title: str
    url: str
    chunk_id: str
    similarity_score: float


class RelevanceLabel(str, Enum):
    GREETING = "GREETING"
    RELEVANT = "RELEVANT"
    INAPPROPRIATE = "INAPPROPRIATE"
    NOT_RELEVANT = "NOT_RELEVANT"


class ResponseType(str, Enum):
    GREETING = "greeting"
    INAPPROPRIATE = "inappropriate"
    NOT_RELEVANT = "not-relevant"
    CHAT = "chat"


@dataclass(frozen=True, slots=True)
class PipelineMetadata:
    input: str
    output: str
    context_count: int
    rewritten_query: str
    response_type: ResponseType


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Final answer of one pipeline run, handed to tracing and streaming."""

    text: str
    type: ResponseType
    metadata: PipelineMetadata

    @classmethod
    def build(
        cls,
        *,
        text: str,
        response_type: ResponseType,
        query: str,
        context_count: int = 0,
        rewritten_query: str = "",
    ) -> "PipelineResult":
        return cls(
            text=text,
            type=response_type,
            metadata=PipelineMetadata(
                input=query,
                output=text,
                context_count=context_count,
                rewritten_query=rewritten_query,
                response_type=response_type,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["metadata"]["response_type"] = self.type.value
        return payload


@dataclass(slots=True)
class StageTrace:
    """Trace record for an executed pipeline stage."""

    name: str
    input_preview: str
    output_preview: str
    latency_ms: float


@dataclass(frozen=True, slots=True)
class TraceRun:
    """A finalized pipeline result bound to its run identifier."""

    run_id: str
    name: str
    result: PipelineResult
    stages: tuple[StageTrace, ...]
    states: tuple[str, ...]
    started_at: str
    ended_at: str
    latency_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "name": self.name,
            "result": self.result.to_dict(),
            "stages": [asdict(stage) for stage in self.stages],
            "states": list(self.states),
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "latency_ms": self.latency_ms,
            "metadata": dict(self.metadata),
        }
