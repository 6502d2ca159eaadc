"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol, cast

from pydantic import SecretStr

from woodshop_rag.config import VectorStoreConfig
from woodshop_rag.errors import ConfigurationError, StageTimeoutError, StageTransientError
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import RetrievedDocument

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_SEARCH_SQL = """
SELECT id, text, title, url, chunk_id,
       1 - (vector <=> $1::vector) AS similarity_score
FROM {table}
WHERE vector IS NOT NULL
ORDER BY vector <=> $1::vector, id
LIMIT $2
"""


class VectorStore(Protocol):
    """Nearest-neighbor search contract used by the pipeline."""

    async def search(
        self, embedding: list[float], corpus: str, top_k: int
    ) -> list[RetrievedDocument]:
        """Return at most `top_k` documents ordered by descending similarity."""


def validate_corpus(corpus: str) -> str:
    if not _IDENTIFIER.match(corpus):
        raise ValueError(f"Invalid corpus identifier: {corpus!r}")
    return corpus


@dataclass(slots=True)
class StoredChunk:
    document: RetrievedDocument
    embedding: list[float] | None


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping.

    Mirrors the SQL adapter: cosine similarity, rows without a vector are never
    candidates, and equal scores are ordered by document id.
    """

    def __init__(self) -> None:
        self._corpora: dict[str, dict[str, StoredChunk]] = {}
        self.search_calls = 0

    def upsert(
        self,
        corpus: str,
        documents: list[RetrievedDocument],
        embeddings: list[list[float] | None],
    ) -> None:
        if len(documents) != len(embeddings):
            raise ValueError("documents and embeddings must have the same length")
        store = self._corpora.setdefault(validate_corpus(corpus), {})
        for document, embedding in zip(documents, embeddings, strict=True):
            store[document.id] = StoredChunk(document=document, embedding=embedding)

    async def search(
        self, embedding: list[float], corpus: str, top_k: int
    ) -> list[RetrievedDocument]:
        self.search_calls += 1
        candidates = [
            record
            for record in self._corpora.get(validate_corpus(corpus), {}).values()
            if record.embedding is not None
        ]
        scored = [
            (_cosine_similarity(embedding, record.embedding or []), record.document)
            for record in candidates
        ]
        ranked = sorted(scored, key=lambda item: (-item[0], item[1].id))
        return [
            _with_score(document, score) for score, document in ranked[: max(0, top_k)]
        ]


class PgVectorStore:
    """pgvector-backed store over a bounded asyncpg pool.

    The pool is created lazily on first search and shared by all requests.
    Connection acquisition is bounded by `connect_timeout_seconds`.
    """

    def __init__(self, config: VectorStoreConfig) -> None:
        self.config = config
        self._pool: Any | None = None
        self._pool_lock = asyncio.Lock()

    async def search(
        self, embedding: list[float], corpus: str, top_k: int
    ) -> list[RetrievedDocument]:
        if self.config.dsn is None:
            raise ConfigurationError("POSTGRES_URL is not configured", stage="vector_search")
        table = validate_corpus(corpus)
        literal = "[" + ",".join(repr(float(value)) for value in embedding) + "]"
        pool = await self._get_pool()
        try:
            async with pool.acquire(timeout=self.config.connect_timeout_seconds) as conn:
                rows = await conn.fetch(_SEARCH_SQL.format(table=table), literal, top_k)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(
                "Timed out acquiring a vector store connection", stage="vector_search"
            ) from exc
        except OSError as exc:
            raise StageTransientError(
                f"Vector store unavailable: {exc}", stage="vector_search"
            ) from exc

        documents = [
            RetrievedDocument(
                id=str(row["id"]),
                text=row["text"] or "",
                title=row["title"] or "",
                url=row["url"] or "",
                chunk_id=str(row["chunk_id"]),
                similarity_score=float(row["similarity_score"]),
            )
            for row in rows
        ]
        logger.info("vector_search_completed", table=table, count=len(documents))
        return documents

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("vector_pool_closed")

    async def _get_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                import asyncpg

                dsn = cast(SecretStr, self.config.dsn)
                try:
                    self._pool = await asyncpg.create_pool(
                        dsn.get_secret_value(),
                        min_size=0,
                        max_size=self.config.pool_max_size,
                        max_inactive_connection_lifetime=self.config.idle_timeout_seconds,
                        timeout=self.config.connect_timeout_seconds,
                    )
                except asyncio.TimeoutError as exc:
                    raise StageTimeoutError(
                        "Timed out connecting to the vector store", stage="vector_search"
                    ) from exc
                except OSError as exc:
                    raise StageTransientError(
                        f"Vector store unavailable: {exc}", stage="vector_search"
                    ) from exc
                logger.info(
                    "vector_pool_initialized",
                    max_size=self.config.pool_max_size,
                    idle_timeout_seconds=self.config.idle_timeout_seconds,
                )
        return self._pool


def _with_score(document: RetrievedDocument, score: float) -> RetrievedDocument:
    return RetrievedDocument(
        id=document.id,
        text=document.text,
        title=document.title,
        url=document.url,
        chunk_id=document.chunk_id,
        similarity_score=score,
    )


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
