import asyncio

from conftest import ScriptedCompletionClient
from woodshop_rag.agent.prompts import PromptStage
from woodshop_rag.agent.rewriter import QueryRewriter, clean_rewrite
from woodshop_rag.errors import StageTransientError
from woodshop_rag.types import ChatMessage


def test_clean_rewrite_strips_echoed_label() -> None:
    assert clean_rewrite("Rewritten query: best glue for end grain joints") == (
        "best glue for end grain joints"
    )
    assert clean_rewrite("  dovetail spacing  ") == "dovetail spacing"


def test_rewrite_uses_model_output() -> None:
    client = ScriptedCompletionClient(
        {PromptStage.REWRITE: "Rewritten query: strongest glue for end-grain joints"}
    )
    rewriter = QueryRewriter(client)

    result = asyncio.run(
        rewriter.rewrite("which glue?", [ChatMessage.user("I'm gluing end grain")])
    )

    assert result == "strongest glue for end-grain joints"
    assert client.calls[0].temperature == 0.0
    assert "Original query: which glue?" in client.calls[0].messages[0].content


def test_rewrite_falls_back_to_original_query_on_failure() -> None:
    client = ScriptedCompletionClient(
        {PromptStage.REWRITE: StageTransientError("rate limited", stage="completion.rewrite")}
    )
    rewriter = QueryRewriter(client)

    assert asyncio.run(rewriter.rewrite("What glue is best?", [])) == "What glue is best?"


def test_rewrite_falls_back_when_model_returns_only_the_label() -> None:
    client = ScriptedCompletionClient({PromptStage.REWRITE: "Rewritten query:"})
    rewriter = QueryRewriter(client)

    assert asyncio.run(rewriter.rewrite("router bits", [])) == "router bits"
