"""OpenAI LLM provider implementation."""

import logging
from typing import Any

from openai import OpenAI

from workflow_dsl.core.config import LLMConfig
from workflow_dsl.llm.provider import ChatReply, LLMProvider, ToolCall, parse_tool_arguments

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation."""

    def __init__(self, config: LLMConfig) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.

        Raises:
            ValueError: If API key is not provided.
        """
        if not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.client = OpenAI(api_key=config.openai_api_key, base_url=config.openai_base_url)
        self.model = config.openai_model
        self.temperature = config.openai_temperature

        logger.info(f"OpenAI provider initialized with model: {self.model}")

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> ChatReply:
        """Generate chat completion using OpenAI API.

        Args:
            messages: List of OpenAI-style message dicts.
            tools: Optional function tool specs.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: Additional OpenAI-specific parameters.

        Returns:
            Assistant reply with any tool calls.
        """
        temp = temperature if temperature is not None else self.temperature

        logger.debug(f"Generating chat completion with {len(messages)} messages")

        if tools:
            kwargs["tools"] = tools

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore
            max_tokens=max_tokens,
            temperature=temp,
            **kwargs,
        )

        message = response.choices[0].message
        content = message.content or ""
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=parse_tool_arguments(call.function.arguments),
            )
            for call in (message.tool_calls or [])
        ]
        logger.debug(f"Generated {len(content)} characters, {len(tool_calls)} tool calls")

        return ChatReply(content=content, tool_calls=tool_calls)
