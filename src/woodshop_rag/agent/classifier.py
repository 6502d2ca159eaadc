"""Relevance classification of incoming queries."""

from __future__ import annotations

from collections.abc import Sequence

from woodshop_rag.agent.prompts import HISTORY_WINDOW, classify_prompt
from woodshop_rag.llm.completion import CompletionClient
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import ChatMessage, RelevanceLabel

logger = get_logger(__name__)

_LABELS = {label.value: label for label in RelevanceLabel}


def normalize_label(raw: str | RelevanceLabel | None) -> RelevanceLabel:
    """Map raw model output onto a label, failing safe to NOT_RELEVANT.

    Matching is exact after trimming and upper-casing, so "maybe", "" and
    anything with extra words all become NOT_RELEVANT. "NOT RELEVANT" is
    accepted as a spelling of NOT_RELEVANT.
    """
    if isinstance(raw, RelevanceLabel):
        return raw
    if raw is None:
        return RelevanceLabel.NOT_RELEVANT
    token = raw.strip().upper().replace(" ", "_")
    return _LABELS.get(token, RelevanceLabel.NOT_RELEVANT)


class RelevanceClassifier:
    """Labels a query as greeting, relevant, inappropriate or not relevant.

    Provider failures are not handled here; classification is mandatory and
    its errors abort the request.
    """

    def __init__(self, client: CompletionClient, *, window: int = HISTORY_WINDOW) -> None:
        self.client = client
        self.window = window

    async def classify(
        self, query: str, history: Sequence[ChatMessage]
    ) -> RelevanceLabel:
        raw = await self.client.complete(classify_prompt(query, history, window=self.window))
        label = normalize_label(raw)
        logger.info("relevance_classified", raw=raw[:40], label=label.value)
        return label
