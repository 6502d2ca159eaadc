"""Grounded answer generation for relevant queries."""

from __future__ import annotations

from collections.abc import Sequence

from woodshop_rag.agent.formatting import find_format_violations
from woodshop_rag.agent.prompts import (
    HISTORY_WINDOW,
    format_repair_prompt,
    generation_prompt,
)
from woodshop_rag.llm.completion import CompletionClient
from woodshop_rag.obs.logging import get_logger
from woodshop_rag.types import ChatMessage

logger = get_logger(__name__)


class AnswerGenerator:
    """Produces the persona-styled answer from history, context and question.

    After generation the answer is checked with `find_format_violations`.
    With `format_retries=0` violations are only logged; otherwise the model is
    asked to repair the formatting up to that many times and the last answer is
    kept either way.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        window: int = HISTORY_WINDOW,
        format_retries: int = 0,
    ) -> None:
        self.client = client
        self.window = window
        self.format_retries = format_retries

    async def generate(
        self, history: Sequence[ChatMessage], context: str, question: str
    ) -> str:
        payload = generation_prompt(history, context, question, window=self.window)
        answer = await self.client.complete(payload)

        for attempt in range(self.format_retries + 1):
            violations = find_format_violations(answer)
            if not violations:
                break
            logger.warning(
                "answer_format_violations",
                count=len(violations),
                first=violations[0],
                attempt=attempt,
            )
            if attempt == self.format_retries:
                break
            answer = await self.client.complete(
                format_repair_prompt(payload, answer, violations)
            )
        return answer
