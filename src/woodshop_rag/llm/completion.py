"""Chat completion provider interface and LangChain adapter."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from woodshop_rag.agent.prompts import PromptPayload
from woodshop_rag.config import LLMConfig
from woodshop_rag.errors import ConfigurationError
from woodshop_rag.llm.bounded import BoundedCall
from woodshop_rag.types import Role


class CompletionClient(Protocol):
    """Minimal completion contract used by every LLM-backed stage."""

    async def complete(self, payload: PromptPayload) -> str:
        """Return the full completion text."""

    def stream(self, payload: PromptPayload) -> AsyncIterator[str]:
        """Yield completion text deltas as the provider produces them."""


class LangChainCompletionClient:
    """Adapts any LangChain chat model to `CompletionClient`.

    Retries and per-attempt timeouts for `complete` go through `BoundedCall`;
    the underlying model should be built with its own retries disabled.
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        *,
        request_timeout: float | None = None,
        max_attempts: int = 1,
    ) -> None:
        self.chat_model = chat_model
        self.request_timeout = request_timeout
        self.max_attempts = max_attempts

    async def complete(self, payload: PromptPayload) -> str:
        model = self._model_for(payload)
        messages = to_langchain_messages(payload)
        bounded = BoundedCall(
            f"completion.{payload.stage.value}",
            max_attempts=self.max_attempts,
            attempt_timeout=self.request_timeout,
        )
        response = await bounded(lambda: model.ainvoke(messages))
        return message_text(response.content)

    async def stream(self, payload: PromptPayload) -> AsyncIterator[str]:
        model = self._model_for(payload)
        async with aclosing(model.astream(to_langchain_messages(payload))) as chunks:
            async for chunk in chunks:
                text = message_text(chunk.content)
                if text:
                    yield text

    def _model_for(self, payload: PromptPayload) -> Any:
        if payload.temperature is None:
            return self.chat_model
        return self.chat_model.bind(temperature=payload.temperature)


def to_langchain_messages(payload: PromptPayload) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if payload.system:
        messages.append(SystemMessage(content=payload.system))
    for message in payload.messages:
        if message.role is Role.ASSISTANT:
            messages.append(AIMessage(content=message.content))
        else:
            messages.append(HumanMessage(content=message.content))
    return messages


def message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


def build_chat_model(config: LLMConfig) -> BaseChatModel:
    if config.api_key is None:
        raise ConfigurationError("OPENAI_API_KEY is not configured", stage="llm")

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=config.model,
        api_key=config.api_key,
        timeout=config.request_timeout_seconds,
        max_retries=0,
    )
