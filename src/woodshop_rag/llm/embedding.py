"""Query embedding with a bounded retry/timeout policy."""

from __future__ import annotations

from langchain_core.embeddings import Embeddings

from woodshop_rag.config import EmbeddingConfig
from woodshop_rag.errors import ConfigurationError
from woodshop_rag.llm.bounded import BoundedCall
from woodshop_rag.obs.logging import get_logger

logger = get_logger(__name__)


class EmbeddingClient:
    """Embeds retrieval queries through a LangChain `Embeddings` provider.

    All attempts share one overall deadline (5s by default) and at most
    `max_retries` retries follow the first try. Exhaustion is fatal: the
    caller receives `StageTimeoutError` or `StageTransientError` and no
    substitute vector is produced.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        max_retries: int = 2,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.embeddings = embeddings
        self._bounded = BoundedCall(
            "embedding",
            max_attempts=max_retries + 1,
            deadline=timeout_seconds,
        )

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingClient":
        if config.api_key is None:
            raise ConfigurationError(
                "EMBEDDING_API_KEY / OPENAI_API_KEY is not configured", stage="embedding"
            )

        from langchain_openai import OpenAIEmbeddings

        embeddings = OpenAIEmbeddings(
            model=config.model,
            api_key=config.api_key,
            max_retries=0,
            timeout=config.timeout_seconds,
        )
        return cls(
            embeddings,
            max_retries=config.max_retries,
            timeout_seconds=config.timeout_seconds,
        )

    async def embed(self, text: str) -> list[float]:
        vector = await self._bounded(lambda: self.embeddings.aembed_query(text))
        logger.info("query_embedded", dimension=len(vector))
        return [float(value) for value in vector]
