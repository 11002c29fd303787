"""Local LLaMA LLM provider implementation."""

import logging
from typing import Any

from workflow_dsl.core.config import LLMConfig
from workflow_dsl.llm.provider import ChatReply, LLMProvider, ToolCall, parse_tool_arguments

logger = logging.getLogger(__name__)


class LLaMAProvider(LLMProvider):
    """Local LLaMA model provider implementation.

    Requires llama-cpp-python to be installed:
        pip install llama-cpp-python

    Tool calling depends on the model's chat format supporting functions.
    """

    def __init__(self, config: LLMConfig) -> None:
        """Initialize the LLaMA provider.

        Args:
            config: LLM configuration.

        Raises:
            ValueError: If model path is not provided.
            ImportError: If llama-cpp-python is not installed.
        """
        if not config.llama_model_path:
            raise ValueError("LLaMA model path is required")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for LLaMA provider. "
                "Install it with: pip install llama-cpp-python"
            ) from e

        self.config = config

        logger.info(f"Loading LLaMA model from: {config.llama_model_path}")

        self.llm = Llama(
            model_path=str(config.llama_model_path),
            n_ctx=config.llama_n_ctx,
            n_threads=config.llama_n_threads,
            verbose=False,
        )

        logger.info("LLaMA model loaded successfully")

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> ChatReply:
        """Generate chat completion using local LLaMA model."""
        logger.debug(f"Generating chat completion with {len(messages)} messages")

        if tools:
            kwargs["tools"] = tools

        result = self.llm.create_chat_completion(
            messages=messages,
            max_tokens=max_tokens if max_tokens is not None else 512,
            temperature=temperature if temperature is not None else 0.7,
            **kwargs,
        )

        message = result["choices"][0]["message"]
        content = message.get("content") or ""
        tool_calls = [
            ToolCall(
                id=call.get("id") or f"call_{idx}",
                name=call["function"]["name"],
                arguments=parse_tool_arguments(call["function"].get("arguments")),
            )
            for idx, call in enumerate(message.get("tool_calls") or [])
        ]
        logger.debug(f"Generated {len(content)} characters")

        return ChatReply(content=content, tool_calls=tool_calls)
