"""Unit tests for capability resolution and workflow agent persistence."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from workflow_dsl.agents.service import AgentInstance, AgentService
from workflow_dsl.core.errors import UnknownToolError
from workflow_dsl.engine.dsl import AgentSpec, parse_definition
from workflow_dsl.engine.resolver import (
    OUTPUT_INSTRUCTION,
    WORKFLOW_AGENT_OWNER,
    CapabilityResolver,
    build_agent_prompt,
)
from workflow_dsl.state.store import DefinitionStore
from workflow_dsl.tools.knowledge_base import KNOWLEDGE_BASE_TOOLKIT_ID, KnowledgeBaseToolkit
from workflow_dsl.tools.registry import ToolRegistry
from workflow_dsl.tools.workflow_toolkit import WORKFLOW_TOOLKIT_ID, WorkflowToolkit

CHATBOT = AgentSpec(
    name="ChatBot",
    prompt="You are helpful.",
    output={"result": "string"},
    tools=["getCurrentTime"],
)


def test_build_agent_prompt_appends_output_shape() -> None:
    prompt = build_agent_prompt("Be brief.", {"result": "string"})

    assert prompt.startswith("Be brief.\n")
    assert OUTPUT_INSTRUCTION in prompt
    assert '"result": "string"' in prompt


@pytest.mark.asyncio
async def test_resolve_tools(resolver: CapabilityResolver) -> None:
    tools = await resolver.resolve_tools(["getCurrentTime", "httpRequest", "getCurrentTime"])

    assert list(tools) == ["getCurrentTime", "httpRequest"]


@pytest.mark.asyncio
async def test_resolve_tools_unknown(resolver: CapabilityResolver) -> None:
    with pytest.raises(UnknownToolError) as excinfo:
        await resolver.resolve_tools(["sendEmail"])

    assert excinfo.value.name == "sendEmail"


@pytest.mark.asyncio
async def test_agent_with_unknown_tool_writes_nothing(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    broken = AgentSpec(name="Broken", prompt="p", tools=["sendEmail"])

    with pytest.raises(UnknownToolError):
        await resolver.resolve_agents([CHATBOT, broken], workflow_id="wf-1")

    assert store.list_agents() == []
    assert store.list_workflow_agents("wf-1") == []


@pytest.mark.asyncio
async def test_agent_record_is_created_and_bound(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    agents = await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")

    [binding] = store.list_workflow_agents("wf-1")
    record = store.get_agent(binding.agent_id)
    assert record is not None
    assert binding.agent_name == "ChatBot"
    assert record.name == "wf-1_ChatBot"
    assert record.description == "Workflow agent: ChatBot"
    assert record.created_by == WORKFLOW_AGENT_OWNER
    assert record.is_workflow_generated is True
    assert record.options == {"result": "string"}

    handle = agents["ChatBot"]
    assert isinstance(handle, AgentInstance)
    assert handle.prompt.startswith("You are helpful.")
    assert [tool.name for tool in handle.tools] == ["getCurrentTime"]


@pytest.mark.asyncio
async def test_agent_is_reused_for_same_workflow(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    [first] = store.list_workflow_agents("wf-1")

    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    [second] = store.list_workflow_agents("wf-1")

    assert second.agent_id == first.agent_id
    assert len(store.list_agents()) == 1


@pytest.mark.asyncio
async def test_agent_without_workflow_id_is_not_bound(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    await resolver.resolve_agents([CHATBOT])

    [record] = store.list_agents()
    assert record.name.startswith("workflow_ChatBot_")
    assert store.list_workflow_agents("ChatBot") == []


@pytest.mark.asyncio
async def test_persisted_prompt_drives_the_agent(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    [binding] = store.list_workflow_agents("wf-1")
    store.update_agent(binding.agent_id, prompt="Answer in French.")

    agents = await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")

    assert agents["ChatBot"].prompt.startswith("Answer in French.")  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_dangling_binding_is_repointed(
    resolver: CapabilityResolver, store: DefinitionStore
) -> None:
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    [old] = store.list_workflow_agents("wf-1")
    store.delete_agent(old.agent_id)

    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")

    [new] = store.list_workflow_agents("wf-1")
    assert new.agent_id != old.agent_id
    assert store.get_agent(new.agent_id) is not None


@pytest.mark.asyncio
async def test_concurrent_binding_winner_is_adopted(
    resolver: CapabilityResolver, store: DefinitionStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    winner = store.create_agent(name="winner", description="", prompt="Winner prompt", created_by="other")
    store.create_workflow_agent("wf-1", winner.id, "ChatBot")
    # Simulate a second process that looked up the binding before it existed.
    monkeypatch.setattr(store, "find_workflow_agent", lambda workflow_id, agent_name: None)

    agents = await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")

    assert [agent.id for agent in store.list_agents()] == [winner.id]
    assert agents["ChatBot"].prompt.startswith("Winner prompt")  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_knowledge_bases_attach_toolkit_tools(
    tool_registry: ToolRegistry, agent_service: AgentService, store: DefinitionStore
) -> None:
    async def retriever(kb_ids: list[str], query: str, top_k: int) -> list[dict[str, Any]]:
        return [{"kb": kb_ids, "query": query}]

    tool_registry.register_toolkit(KnowledgeBaseToolkit(store, retriever))
    resolver = CapabilityResolver(tool_registry, agent_service, store)
    spec = AgentSpec(name="Librarian", prompt="p", knowledgeBases=["kb-1", "kb-1", "kb-2"])

    agents = await resolver.resolve_agents([spec], workflow_id="wf-kb")

    [binding] = store.list_workflow_agents("wf-kb")
    record = store.get_agent(binding.agent_id)
    assert record is not None
    assert record.knowledge_base_ids == ["kb-1", "kb-2"]
    assert record.toolkit_ids == [KNOWLEDGE_BASE_TOOLKIT_ID]
    librarian = agents["Librarian"]
    assert [tool.name for tool in librarian.tools] == ["searchKnowledgeBase"]  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_resolve_returns_read_only_registry(resolver: CapabilityResolver) -> None:
    definition = parse_definition(
        {
            "id": "doc",
            "name": "n",
            "description": "d",
            "version": "v1",
            "tools": ["getCurrentTime"],
            "agents": [CHATBOT.model_dump(by_alias=True)],
            "events": [{"type": "WORKFLOW_START"}, {"type": "WORKFLOW_STOP"}],
            "steps": [{"event": "WORKFLOW_START", "program": {"emit": "WORKFLOW_STOP"}}],
        }
    )

    registry = await resolver.resolve(definition, workflow_id="wf-1")

    assert set(registry.tools) == {"getCurrentTime"}
    assert set(registry.agents) == {"ChatBot"}
    with pytest.raises(TypeError):
        registry.tools["other"] = registry.tools["getCurrentTime"]  # type: ignore[index]


@pytest.mark.asyncio
async def test_binding_locks_are_released(resolver: CapabilityResolver) -> None:
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-2")

    assert len(resolver._locks) == 0


@pytest.mark.asyncio
async def test_linked_workflows_follow_the_caller(
    tool_registry: ToolRegistry, agent_service: AgentService, store: DefinitionStore
) -> None:
    private = store.create_workflow(
        name="Private", description="", dsl={"id": "private-flow"}, created_by="alice"
    )
    tool_registry.register_toolkit(WorkflowToolkit(store, runner=AsyncMock()))
    resolver = CapabilityResolver(tool_registry, agent_service, store)
    await resolver.resolve_agents([CHATBOT], workflow_id="wf-1")
    [binding] = store.list_workflow_agents("wf-1")
    store.attach_toolkit(binding.agent_id, WORKFLOW_TOOLKIT_ID)
    store.set_agent_workflows(binding.agent_id, [private.id])

    alice = await resolver.resolve_agents([CHATBOT], workflow_id="wf-1", caller_id="alice")
    bob = await resolver.resolve_agents([CHATBOT], workflow_id="wf-1", caller_id="bob")

    alice_tools = [tool.name for tool in alice["ChatBot"].tools]  # type: ignore[attr-defined]
    bob_tools = [tool.name for tool in bob["ChatBot"].tools]  # type: ignore[attr-defined]
    assert alice_tools == ["getCurrentTime", "workflow_private_flow"]
    assert bob_tools == ["getCurrentTime"]
