"""Test configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from workflow_dsl.agents.service import AgentService
from workflow_dsl.core.config import EngineConfig, LLMConfig, Settings, StoreConfig
from workflow_dsl.engine.resolver import CapabilityResolver
from workflow_dsl.engine.service import WorkflowService
from workflow_dsl.llm.provider import ChatReply, LLMProvider
from workflow_dsl.state.store import DefinitionStore
from workflow_dsl.tools.builtin import BuiltinToolkit
from workflow_dsl.tools.registry import ToolRegistry

IDENTITY_HANDLE = """
async def handle(event, context):
    return {"type": "WORKFLOW_STOP", "data": event.data}
"""


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".workflow_state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4o-mini",
        max_tool_rounds=3,
    )


@pytest.fixture
def store_config(temp_state_dir: Path) -> StoreConfig:
    return StoreConfig(storage_path=temp_state_dir)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(max_transitions=10)


@pytest.fixture
def settings(llm_config: LLMConfig, store_config: StoreConfig, engine_config: EngineConfig) -> Settings:
    """Provide a test root configuration."""
    return Settings(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        store=store_config,
        engine=engine_config,
    )


@pytest.fixture
def store(store_config: StoreConfig) -> DefinitionStore:
    return DefinitionStore(store_config.store_file)


@pytest.fixture
def provider() -> Mock:
    """An LLM provider that answers every chat with a fixed JSON reply."""
    mock = Mock(spec=LLMProvider)
    mock.chat.return_value = ChatReply(content='{"result": "hello"}')
    return mock


@pytest.fixture
def tool_registry(store: DefinitionStore) -> ToolRegistry:
    return ToolRegistry(store, [BuiltinToolkit()])


@pytest.fixture
def agent_service(tool_registry: ToolRegistry, llm_config: LLMConfig, provider: Mock) -> AgentService:
    return AgentService(tool_registry, llm_config, provider=provider)


@pytest.fixture
def resolver(
    tool_registry: ToolRegistry, agent_service: AgentService, store: DefinitionStore
) -> CapabilityResolver:
    return CapabilityResolver(tool_registry, agent_service, store)


@pytest.fixture
def workflow_service(
    store: DefinitionStore, resolver: CapabilityResolver, engine_config: EngineConfig
) -> WorkflowService:
    return WorkflowService(store, resolver, engine_config)


@pytest.fixture
def make_dsl() -> Callable[..., dict[str, Any]]:
    """Build a DSL document; keyword arguments replace top-level fields."""

    def _make(**overrides: Any) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": "identity",
            "name": "Identity",
            "description": "Returns its input unchanged",
            "version": "v1",
            "tools": [],
            "events": [
                {"type": "WORKFLOW_START", "data": {"input": "string"}},
                {"type": "WORKFLOW_STOP", "data": {"input": "string"}},
            ],
            "steps": [{"event": "WORKFLOW_START", "handle": IDENTITY_HANDLE}],
        }
        doc.update(overrides)
        return doc

    return _make
