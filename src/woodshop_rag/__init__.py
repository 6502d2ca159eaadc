"""Woodshop RAG assistant package."""

from .config import Settings
from .types import ChatMessage, PipelineResult, RelevanceLabel, RetrievedDocument

__all__ = ["ChatMessage", "PipelineResult", "RelevanceLabel", "RetrievedDocument", "Settings"]
