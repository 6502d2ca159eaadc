"""Formatting of retrieved documents into the generation context."""

from __future__ import annotations

from collections.abc import Sequence

from woodshop_rag.types import RetrievedDocument


def format_block(document: RetrievedDocument) -> str:
    return f"Source: {document.title}\nContent: {document.text}\nURL: {document.url}"


def assemble_context(documents: Sequence[RetrievedDocument]) -> str:
    """Join one three-line block per document with a blank line, keeping order."""
    return "\n\n".join(format_block(document) for document in documents)
