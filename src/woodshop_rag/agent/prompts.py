"""Prompt templates, one pure builder per pipeline stage.

Each builder turns structured inputs into a `PromptPayload` without touching
the network, so prompt construction can be tested on its own.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from woodshop_rag.types import ChatMessage

HISTORY_WINDOW = 5


class PromptStage(str, Enum):
    CLASSIFY = "classify"
    REWRITE = "rewrite"
    GREET = "greet"
    DEFLECT = "deflect"
    GENERATE = "generate"
    STREAM = "stream"


@dataclass(frozen=True, slots=True)
class PromptPayload:
    """Provider-neutral completion request."""

    stage: PromptStage
    system: str | None
    messages: tuple[ChatMessage, ...]
    temperature: float | None = None


SYSTEM_INSTRUCTIONS = """
You are an AI assistant representing Jason Bent's woodworking expertise. Your role is to:
1. Analyze woodworking documents and give clear, natural answers that sound like Jason Bent explaining the concepts.
2. Turn technical content into conversational, easy-to-understand explanations.
3. Explain the core concepts and techniques instead of quoting transcripts directly.
4. Keep a friendly, professional tone, as if Jason Bent were speaking to the user.
5. Organize multi-part answers clearly with natural transitions.
6. Stay concise and focused on the specific question asked.
7. If the provided context does not contain the information, say so clearly.
8. Always respond in English, regardless of the input language.
9. Never say "in the video" or "the transcript shows"; speak directly about the techniques.

Response Structure and Formatting:
   - Use markdown formatting with a clear hierarchical structure
   - Each major section must start with '### ' followed by a number and a bold title
   - Format section headers as: ### 1. **Title Here**
   - Use bullet points (-) for detailed explanations under each section
   - Each bullet point must contain 2-3 sentences minimum with examples
   - Add blank lines between major sections only
   - Do NOT use bold formatting (**) or line breaks within bullet point content
   - Bold formatting should ONLY be used in section headers
   - Keep all content within a bullet point on the same line
   - Any asterisks (*) in the content should be treated as literal characters, not formatting

Remember:
- When mentioning Jason Bent, say "Jason Bent" instead of "I", for example "Jason Bent suggests that you..."
- Explain the concepts naturally rather than quoting transcripts
- Keep answers clear, practical and focused on woodworking expertise
""".strip()

INAPPROPRIATE_RESPONSE = (
    "I apologize, but I cannot assist with inappropriate content or queries that "
    "could cause harm. I'm here to help with woodworking and furniture making "
    "questions only."
)

REWRITE_LABEL = "Rewritten query:"


def recent_history(
    history: Sequence[ChatMessage], window: int = HISTORY_WINDOW
) -> list[ChatMessage]:
    return list(history[-window:]) if window > 0 else []


def history_json(history: Sequence[ChatMessage], window: int = HISTORY_WINDOW) -> str:
    return json.dumps(
        [message.as_dict() for message in recent_history(history, window)],
        ensure_ascii=False,
    )


def classify_prompt(
    query: str, history: Sequence[ChatMessage], *, window: int = HISTORY_WINDOW
) -> PromptPayload:
    content = f"""Given this question and chat history, determine if it is:
1. A greeting/send-off (GREETING)
2. Related to woodworking/tools/company (RELEVANT)
3. Inappropriate content (INAPPROPRIATE)
4. Unrelated (NOT_RELEVANT)

Chat History: {history_json(history, window)}
Current Question: {query}

Response (GREETING, RELEVANT, INAPPROPRIATE, or NOT_RELEVANT):"""
    return PromptPayload(
        stage=PromptStage.CLASSIFY,
        system=None,
        messages=(ChatMessage.user(content),),
        temperature=0.0,
    )


def rewrite_prompt(
    query: str, history: Sequence[ChatMessage], *, window: int = HISTORY_WINDOW
) -> PromptPayload:
    content = f"""You are Bent's Woodworks assistant, so questions relate to the wood shop.
Rewrite the user query to make it more specific and searchable, taking the chat
history into account if provided. Only return the rewritten query without any explanations.

Original query: {query}
Chat history: {history_json(history, window)}

{REWRITE_LABEL}"""
    return PromptPayload(
        stage=PromptStage.REWRITE,
        system=None,
        messages=(ChatMessage.user(content),),
        temperature=0.0,
    )


def greeting_prompt(query: str) -> PromptPayload:
    content = (
        "The following message is a greeting or casual message. "
        f"Please provide a friendly and engaging response: {query}"
    )
    return PromptPayload(
        stage=PromptStage.GREET,
        system=None,
        messages=(ChatMessage.user(content),),
    )


def deflection_prompt(query: str) -> PromptPayload:
    content = f"""The following question is not directly related to woodworking or the assistant's expertise. Provide a direct response that:
1. Politely acknowledges the question
2. Explains that you are specialized in woodworking and Jason Bent's content
3. Asks them to rephrase their question to relate to woodworking topics
Question: {query}"""
    return PromptPayload(
        stage=PromptStage.DEFLECT,
        system=None,
        messages=(ChatMessage.user(content),),
    )


def generation_prompt(
    history: Sequence[ChatMessage],
    context: str,
    question: str,
    *,
    window: int = HISTORY_WINDOW,
) -> PromptPayload:
    content = (
        f"Chat History:\n{history_json(history, window)}\n\n"
        f"Context:\n{context}\n\n"
        f"Question: {question}"
    )
    return PromptPayload(
        stage=PromptStage.GENERATE,
        system=SYSTEM_INSTRUCTIONS,
        messages=(ChatMessage.user(content),),
    )


def format_repair_prompt(
    base: PromptPayload, answer: str, violations: Sequence[str]
) -> PromptPayload:
    """Ask for the same answer again with the listed formatting problems fixed."""
    problems = "\n".join(f"- {violation}" for violation in violations)
    return PromptPayload(
        stage=base.stage,
        system=base.system,
        messages=base.messages
        + (
            ChatMessage.assistant(answer),
            ChatMessage.user(
                "Rewrite your previous answer with the same content, fixing these "
                f"formatting problems:\n{problems}"
            ),
        ),
        temperature=base.temperature,
    )


def stream_prompt(
    history: Sequence[ChatMessage], answer: str, *, window: int = HISTORY_WINDOW
) -> PromptPayload:
    """Re-issue a finalized answer through the persona for incremental delivery."""
    return PromptPayload(
        stage=PromptStage.STREAM,
        system=SYSTEM_INSTRUCTIONS,
        messages=tuple(recent_history(history, window))
        + (
            ChatMessage.user(
                "Prepared answer:\n"
                f"{answer}\n\n"
                "Deliver the prepared answer above to the user exactly as written, "
                "without adding or removing content."
            ),
        ),
    )
