"""Agent instantiation.

An agent is a system prompt plus a set of tools, backed by an LLM provider.
``run`` drives a tool-calling loop until the model answers without requesting
more tool calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from workflow_dsl.core.config import LLMConfig
from workflow_dsl.llm.factory import LLMFactory
from workflow_dsl.llm.provider import LLMProvider, ToolCall
from workflow_dsl.tools.base import Tool
from workflow_dsl.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class AgentRunError(RuntimeError):
    """The agent could not produce a final answer."""


def _tool_output_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class AgentInstance:
    """A runnable agent: ``await agent.run(text) -> {"result": str}``."""

    def __init__(
        self,
        *,
        provider_source: AgentService,
        prompt: str,
        tools: Sequence[Tool],
        max_tool_rounds: int,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self._provider_source = provider_source
        self.prompt = prompt
        self.tools = list(tools)
        self._tools_by_name = {tool.name: tool for tool in self.tools}
        self._max_tool_rounds = max_tool_rounds
        self._options = dict(options or {})

    async def _invoke_tool(self, call: ToolCall) -> str:
        tool = self._tools_by_name.get(call.name)
        if tool is None:
            return _tool_output_text({"error": f"Unknown tool: {call.name}"})
        try:
            output = await tool.call(call.arguments)
        except Exception as e:
            # The model gets the failure as the tool result and may recover.
            logger.warning(
                "Agent tool call failed",
                extra={"tool": call.name, "error": str(e)},
                exc_info=True,
            )
            return _tool_output_text({"error": str(e)})
        return _tool_output_text(output)

    async def run(self, input: Any) -> dict[str, str]:
        provider = self._provider_source.provider
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.prompt},
            {"role": "user", "content": input if isinstance(input, str) else _tool_output_text(input)},
        ]
        tool_specs = [tool.to_openai_tool() for tool in self.tools] or None

        for round_no in range(self._max_tool_rounds):
            reply = await asyncio.to_thread(
                provider.chat,
                messages,
                tool_specs,
                self._options.get("max_tokens"),
                self._options.get("temperature"),
            )
            if not reply.tool_calls:
                return {"result": reply.content}

            logger.debug(
                "Agent requested tools",
                extra={"round": round_no, "tools": [c.name for c in reply.tool_calls]},
            )
            messages.append(reply.to_message())
            for call in reply.tool_calls:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": await self._invoke_tool(call),
                    }
                )

        raise AgentRunError(f"Agent exceeded {self._max_tool_rounds} tool-calling rounds")


class AgentService:
    """Creates agent instances from a prompt and tool names.

    The LLM provider is created on first use so that compiling a workflow
    never requires provider credentials.
    """

    def __init__(
        self,
        tools: ToolRegistry,
        config: LLMConfig | None = None,
        provider: LLMProvider | None = None,
    ) -> None:
        self._tools = tools
        self.config = config or LLMConfig()
        self._provider = provider

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = LLMFactory.create(self.config)
        return self._provider

    async def create_agent_instance(
        self,
        prompt: str,
        tools: Sequence[str | Tool],
        options: Mapping[str, Any] | None = None,
        caller_id: str | None = None,
    ) -> AgentInstance:
        """Instantiate a runnable agent.

        Args:
            prompt: System prompt.
            tools: Tool names to look up, or already-instantiated tools.
            options: Optional ``temperature`` / ``max_tokens`` overrides.
            caller_id: Used for per-user toolkit settings.

        Raises:
            ToolNotFoundError: If a tool name cannot be resolved.
        """
        instances: list[Tool] = []
        seen: set[str] = set()
        for tool in tools:
            instance = (
                tool
                if isinstance(tool, Tool)
                else await self._tools.get_tool_by_name(tool, caller_id)
            )
            if instance.name in seen:
                continue
            seen.add(instance.name)
            instances.append(instance)

        return AgentInstance(
            provider_source=self,
            prompt=prompt,
            tools=instances,
            max_tool_rounds=self.config.max_tool_rounds,
            options=options,
        )
