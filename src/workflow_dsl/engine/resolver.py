"""Capability resolution: declared tool and agent names to live handles.

Agents declared by a workflow are persisted. When a workflow id is known, the
agent record is bound to (workflow id, agent name) so later compilations of
the same workflow reuse it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import weakref
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

from workflow_dsl.core.errors import UnknownToolError
from workflow_dsl.engine.dsl import AgentSpec, WorkflowDefinition
from workflow_dsl.state.store import AgentRecord, DefinitionStore
from workflow_dsl.tools.base import Tool, ToolNotFoundError
from workflow_dsl.tools.knowledge_base import KNOWLEDGE_BASE_TOOLKIT_ID

logger = logging.getLogger(__name__)

WORKFLOW_AGENT_OWNER = "workflow-system"

OUTPUT_INSTRUCTION = (
    "Always answer with JSON in exactly the following structure, "
    "without any other explanation:"
)


class AgentHandle(Protocol):
    async def run(self, input: Any) -> dict[str, str]: ...


class ToolLookup(Protocol):
    async def get_tool_by_name(self, name: str, caller_id: str | None = None) -> Tool: ...

    async def get_agent_tools(self, agent_id: str, caller_id: str | None = None) -> list[Tool]: ...


class AgentFactory(Protocol):
    async def create_agent_instance(
        self,
        prompt: str,
        tools: Sequence[str | Tool],
        options: Mapping[str, Any] | None = None,
        caller_id: str | None = None,
    ) -> AgentHandle: ...


@dataclass(frozen=True)
class CapabilityRegistry:
    """Resolved handles for one compilation, keyed by declared name."""

    tools: Mapping[str, Tool] = field(default_factory=dict)
    agents: Mapping[str, AgentHandle] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tools", MappingProxyType(dict(self.tools)))
        object.__setattr__(self, "agents", MappingProxyType(dict(self.agents)))


def build_agent_prompt(prompt: str, output_shape: Mapping[str, Any]) -> str:
    """Append the instruction to answer in the declared output shape."""

    shape = json.dumps(dict(output_shape), indent=2, ensure_ascii=False)
    return f"{prompt}\n{OUTPUT_INSTRUCTION}\n{shape}\n"


class CapabilityResolver:
    def __init__(self, tools: ToolLookup, agents: AgentFactory, store: DefinitionStore) -> None:
        self._tools = tools
        self._agents = agents
        self._store = store
        # Entries vanish once no coroutine holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, workflow_id: str, agent_name: str) -> asyncio.Lock:
        key = (workflow_id, agent_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _lookup_tool(self, name: str, caller_id: str | None) -> Tool:
        try:
            return await self._tools.get_tool_by_name(name, caller_id)
        except ToolNotFoundError as e:
            raise UnknownToolError(name) from e

    async def resolve_tools(
        self, names: Sequence[str], caller_id: str | None = None
    ) -> dict[str, Tool]:
        registry: dict[str, Tool] = {}
        for name in names:
            if name not in registry:
                registry[name] = await self._lookup_tool(name, caller_id)
        return registry

    def _create_agent_record(self, spec: AgentSpec, workflow_id: str | None) -> AgentRecord:
        name = (
            f"{workflow_id}_{spec.name}"
            if workflow_id
            else f"workflow_{spec.name}_{int(time.time() * 1000)}"
        )
        record = self._store.create_agent(
            name=name,
            description=spec.description or f"Workflow agent: {spec.name}",
            prompt=spec.prompt,
            options=dict(spec.output),
            created_by=WORKFLOW_AGENT_OWNER,
            is_workflow_generated=True,
        )
        logger.info(
            "Created workflow agent",
            extra={"agent_name": spec.name, "agent_id": record.id, "workflow_id": workflow_id},
        )
        return record

    async def _persisted_agent(self, spec: AgentSpec, workflow_id: str | None) -> AgentRecord:
        if not workflow_id:
            return self._create_agent_record(spec, None)

        async with self._lock_for(workflow_id, spec.name):
            binding = self._store.find_workflow_agent(workflow_id, spec.name)
            if binding is not None:
                existing = self._store.get_agent(binding.agent_id)
                if existing is not None:
                    logger.info(
                        "Found existing workflow agent",
                        extra={"agent_name": spec.name, "agent_id": existing.id, "workflow_id": workflow_id},
                    )
                    return existing
                logger.warning(
                    "Workflow agent binding points at a missing agent; recreating",
                    extra={"agent_name": spec.name, "agent_id": binding.agent_id, "workflow_id": workflow_id},
                )

            record = self._create_agent_record(spec, workflow_id)
            bound = self._store.create_workflow_agent(
                workflow_id, record.id, spec.name, replace=binding is not None
            )
            if bound.agent_id != record.id:
                # Another process bound this name first; adopt its agent.
                self._store.delete_agent(record.id)
                adopted = self._store.get_agent(bound.agent_id)
                if adopted is not None:
                    return adopted
                return record
            return record

    async def _agent_handle(
        self, spec: AgentSpec, workflow_id: str | None, caller_id: str | None
    ) -> AgentHandle:
        record = await self._persisted_agent(spec, workflow_id)

        tools: list[str | Tool] = list(spec.tools)
        if spec.knowledge_bases:
            self._store.set_agent_knowledge_bases(record.id, list(spec.knowledge_bases))
            record = self._store.attach_toolkit(record.id, KNOWLEDGE_BASE_TOOLKIT_ID)
        if record.toolkit_ids:
            tools.extend(await self._tools.get_agent_tools(record.id, caller_id))

        prompt = build_agent_prompt(record.prompt, record.options or spec.output)
        try:
            return await self._agents.create_agent_instance(prompt, tools, None, caller_id)
        except ToolNotFoundError as e:
            raise UnknownToolError(e.name, f"required by agent {spec.name}") from e

    async def resolve_agents(
        self,
        specs: Sequence[AgentSpec],
        workflow_id: str | None = None,
        caller_id: str | None = None,
    ) -> dict[str, AgentHandle]:
        # Check every agent tool before any agent row is written.
        for spec in specs:
            for tool_name in spec.tools:
                await self._lookup_tool(tool_name, caller_id)

        registry: dict[str, AgentHandle] = {}
        for spec in specs:
            registry[spec.name] = await self._agent_handle(spec, workflow_id, caller_id)
        return registry

    async def resolve(
        self,
        definition: WorkflowDefinition,
        workflow_id: str | None = None,
        caller_id: str | None = None,
    ) -> CapabilityRegistry:
        tools = await self.resolve_tools(definition.tools, caller_id)
        agents = await self.resolve_agents(definition.agents, workflow_id, caller_id)
        return CapabilityRegistry(tools=tools, agents=agents)
