import asyncio

import pytest

from conftest import FixedEmbeddings
from woodshop_rag.errors import InvalidRequestError, StageTimeoutError, StageTransientError
from woodshop_rag.llm.bounded import BoundedCall
from woodshop_rag.llm.embedding import EmbeddingClient


class _Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("reset by peer")
        return "ok"


def test_retries_until_success() -> None:
    flaky = _Flaky(failures=2)

    result = asyncio.run(BoundedCall("embedding", max_attempts=3)(flaky))

    assert result == "ok"
    assert flaky.calls == 3


def test_exhausted_attempts_raise_transient_error() -> None:
    flaky = _Flaky(failures=5)

    with pytest.raises(StageTransientError) as excinfo:
        asyncio.run(BoundedCall("embedding", max_attempts=3)(flaky))

    assert flaky.calls == 3
    assert excinfo.value.stage == "embedding"
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_overall_deadline_raises_timeout_error() -> None:
    calls = 0

    async def _slow() -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(1.0)

    with pytest.raises(StageTimeoutError) as excinfo:
        asyncio.run(BoundedCall("embedding", max_attempts=3, deadline=0.05)(_slow))

    assert calls == 1
    assert excinfo.value.retryable is True


def test_per_attempt_timeout_allows_retry() -> None:
    attempts = 0

    async def _slow_then_fast() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            await asyncio.sleep(1.0)
        return "fast"

    bounded = BoundedCall("completion.generate", max_attempts=2, attempt_timeout=0.05)

    assert asyncio.run(bounded(_slow_then_fast)) == "fast"
    assert attempts == 2


def test_pipeline_errors_are_not_retried() -> None:
    calls = 0

    async def _invalid() -> None:
        nonlocal calls
        calls += 1
        raise InvalidRequestError("bad")

    with pytest.raises(InvalidRequestError):
        asyncio.run(BoundedCall("x", max_attempts=3)(_invalid))
    assert calls == 1


def test_embedding_client_times_out_without_fallback_vector() -> None:
    embeddings = FixedEmbeddings([1.0, 0.0], delay=1.0)
    client = EmbeddingClient(embeddings, max_retries=2, timeout_seconds=0.05)

    with pytest.raises(StageTimeoutError):
        asyncio.run(client.embed("end grain glue"))


def test_embedding_client_returns_floats() -> None:
    client = EmbeddingClient(FixedEmbeddings([1, 0]))

    assert asyncio.run(client.embed("glue")) == [1.0, 0.0]
