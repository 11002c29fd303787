"""LLM package initialization."""

from workflow_dsl.llm.factory import LLMFactory
from workflow_dsl.llm.provider import ChatReply, LLMProvider, ToolCall

__all__ = [
    "ChatReply",
    "LLMFactory",
    "LLMProvider",
    "ToolCall",
]
