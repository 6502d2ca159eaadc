from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from hashlib import blake2b
from math import sqrt

import pytest
from langchain_core.embeddings import Embeddings

from woodshop_rag.agent.orchestrator import Orchestrator
from woodshop_rag.agent.prompts import PromptPayload, PromptStage
from woodshop_rag.agent.streamer import split_words
from woodshop_rag.llm.embedding import EmbeddingClient
from woodshop_rag.obs.tracing import InMemoryTraceStore, TraceRecorder
from woodshop_rag.retrieval.vector_store import InMemoryVectorStore
from woodshop_rag.types import RetrievedDocument, TraceRun

CHAT_ANSWER = (
    "### 1. **Choosing Glue for End Grain**\n"
    "- Jason Bent suggests sizing end grain with thinned glue first. "
    "This keeps the joint from starving as the fibers wick up moisture.\n"
    "- Epoxy is a strong option for end-grain work. It fills gaps and does not rely on long-grain contact."
)


class HashingEmbeddings(Embeddings):
    """Deterministic token-hashing embeddings without external model calls."""

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += -1.0 if digest[4] % 2 else 1.0
        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class FixedEmbeddings(Embeddings):
    """Returns the same query vector every time; optionally slow."""

    def __init__(self, vector: list[float], *, delay: float = 0.0) -> None:
        self.vector = vector
        self.delay = delay
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(self.vector) for _ in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        return list(self.vector)

    async def aembed_query(self, text: str) -> list[float]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.vector)


class ScriptedCompletionClient:
    """Completion fake answering per prompt stage and recording every payload."""

    def __init__(
        self,
        responses: dict[PromptStage, object] | None = None,
        *,
        fail_stream_after: int | None = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.fail_stream_after = fail_stream_after
        self.calls: list[PromptPayload] = []
        self.stream_calls: list[PromptPayload] = []
        self.stream_closed = False

    def calls_for(self, stage: PromptStage) -> list[PromptPayload]:
        return [payload for payload in self.calls if payload.stage is stage]

    async def complete(self, payload: PromptPayload) -> str:
        self.calls.append(payload)
        response = self.responses.get(payload.stage, f"{payload.stage.value} reply")
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, list):
            return str(response.pop(0))
        return str(response)

    async def stream(self, payload: PromptPayload) -> AsyncIterator[str]:
        self.stream_calls.append(payload)
        content = payload.messages[-1].content
        answer = content.split("Prepared answer:\n", 1)[-1].split("\n\nDeliver the prepared", 1)[0]
        try:
            for index, word in enumerate(split_words(answer)):
                if self.fail_stream_after is not None and index >= self.fail_stream_after:
                    raise ConnectionError("provider stream dropped")
                yield word
        finally:
            self.stream_closed = True


class FailingSink:
    def __init__(self) -> None:
        self.attempts = 0

    async def write(self, run: TraceRun) -> None:
        self.attempts += 1
        raise RuntimeError("observability sink unavailable")


def make_document(doc_id: str, text: str, *, title: str = "", score: float = 0.0) -> RetrievedDocument:
    return RetrievedDocument(
        id=doc_id,
        text=text,
        title=title or f"Title {doc_id}",
        url=f"https://example.com/{doc_id}",
        chunk_id=f"{doc_id}-chunk-0000",
        similarity_score=score,
    )


def glue_corpus() -> InMemoryVectorStore:
    """Corpus whose best chunk scores 0.91 against the query vector [1, 0]."""
    store = InMemoryVectorStore()
    store.upsert(
        "bents",
        [
            make_document("glue", "Size end grain with thinned glue before assembly.", title="End Grain Glue-Ups"),
            make_document("finish", "Wipe-on poly builds slowly but evenly.", title="Finishing Basics"),
            make_document("draft", "Unindexed draft without a vector.", title="Draft"),
        ],
        [[0.91, sqrt(1 - 0.91**2)], [0.2, sqrt(1 - 0.2**2)], None],
    )
    return store


@pytest.fixture
def trace_store() -> InMemoryTraceStore:
    return InMemoryTraceStore()


def build_orchestrator(
    completion: ScriptedCompletionClient,
    *,
    embeddings: Embeddings | None = None,
    vector_store: InMemoryVectorStore | None = None,
    trace_recorder: TraceRecorder | None = None,
    embed_timeout: float = 5.0,
    **kwargs: object,
) -> Orchestrator:
    return Orchestrator(
        completion=completion,
        embedder=EmbeddingClient(
            embeddings or FixedEmbeddings([1.0, 0.0]), timeout_seconds=embed_timeout
        ),
        vector_store=vector_store or glue_corpus(),
        trace_recorder=trace_recorder or TraceRecorder([InMemoryTraceStore()]),
        **kwargs,
    )
