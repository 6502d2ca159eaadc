import asyncio

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from woodshop_rag.agent.prompts import generation_prompt, greeting_prompt
from woodshop_rag.llm.completion import (
    LangChainCompletionClient,
    message_text,
    to_langchain_messages,
)
from woodshop_rag.types import ChatMessage


def test_payload_converts_to_langchain_messages() -> None:
    payload = generation_prompt(
        [ChatMessage.user("hi"), ChatMessage.assistant("hello")], "ctx", "question?"
    )

    messages = to_langchain_messages(payload)

    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert len(messages) == 2


def test_prompt_without_system_has_no_system_message() -> None:
    messages = to_langchain_messages(greeting_prompt("hey"))

    assert [type(message) for message in messages] == [HumanMessage]


def test_complete_returns_model_text() -> None:
    client = LangChainCompletionClient(FakeListChatModel(responses=["RELEVANT"]))

    assert asyncio.run(client.complete(greeting_prompt("hey"))) == "RELEVANT"


def test_stream_yields_incremental_chunks() -> None:
    client = LangChainCompletionClient(FakeListChatModel(responses=["Hello there"]))

    async def _collect() -> list[str]:
        return [chunk async for chunk in client.stream(greeting_prompt("hey"))]

    chunks = asyncio.run(_collect())

    assert len(chunks) > 1
    assert "".join(chunks) == "Hello there"


def test_message_text_flattens_content_parts() -> None:
    content = [{"type": "text", "text": "a"}, {"type": "image_url"}, "b"]

    assert message_text(content) == "ab"
    assert message_text(AIMessage(content="plain").content) == "plain"
