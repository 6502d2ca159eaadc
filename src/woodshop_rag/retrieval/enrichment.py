"""Best-effort call to the related links/products service."""

from __future__ import annotations

import httpx

from woodshop_rag.config import EnrichmentConfig
from woodshop_rag.obs.logging import get_logger

logger = get_logger(__name__)


class EnrichmentClient:
    """Pre-warms the enrichment service with the assembled context.

    The response is never fed back into the answer; any failure is logged and
    dropped.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_config(cls, config: EnrichmentConfig) -> "EnrichmentClient | None":
        if not config.enabled:
            return None
        if not config.url:
            logger.warning("enrichment_enabled_without_url")
            return None
        return cls(config.url, timeout_seconds=config.timeout_seconds)

    async def prefetch(self, context: str, query: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url, json={"context": context, "query": query}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "enrichment_failed",
                url=self.url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return
        logger.info(
            "enrichment_prefetched",
            status=response.status_code,
            context_length=len(context),
        )
