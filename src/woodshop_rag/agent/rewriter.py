"""Retrieval-oriented query rewriting."""

from __future__ import annotations

from collections.abc import Sequence

from woodshop_rag.agent.prompts import HISTORY_WINDOW, REWRITE_LABEL, rewrite_prompt
from woodshop_rag.llm.completion import CompletionClient
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import ChatMessage

logger = get_logger(__name__)


def clean_rewrite(raw: str) -> str:
    text = raw.strip()
    if text.lower().startswith(REWRITE_LABEL.lower()):
        text = text[len(REWRITE_LABEL) :].strip()
    return text


class QueryRewriter:
    """Rewrites the query for recall; the only stage that recovers locally.

    Any provider failure, or an empty rewrite, yields the original query so
    retrieval can still run.
    """

    def __init__(self, client: CompletionClient, *, window: int = HISTORY_WINDOW) -> None:
        self.client = client
        self.window = window

    async def rewrite(self, query: str, history: Sequence[ChatMessage]) -> str:
        try:
            raw = await self.client.complete(rewrite_prompt(query, history, window=self.window))
        except Exception as exc:
            logger.warning(
                "query_rewrite_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return query
        rewritten = clean_rewrite(raw) or query
        logger.info("query_rewritten", changed=rewritten != query)
        return rewritten
