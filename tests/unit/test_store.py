"""Unit tests for the JSON definition store."""

from __future__ import annotations

from pathlib import Path

import pytest

from workflow_dsl.state.store import DefinitionStore, StoreCorruptedError

DSL = {"id": "doc", "name": "Doc"}


def test_workflow_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "state" / "store.json"
    store = DefinitionStore(path)
    created = store.create_workflow(name="Doc", description="d", dsl=DSL, created_by="alice")

    reloaded = DefinitionStore(path).find_by_id(created.id)

    assert path.exists()
    assert reloaded == created
    assert reloaded is not None and reloaded.source == "api"


def test_missing_file_is_empty(tmp_path: Path) -> None:
    store = DefinitionStore(tmp_path / "nope.json")

    assert store.list_workflows() == []
    assert store.find_by_id("x") is None


@pytest.mark.parametrize(
    "content",
    ["{not json", "[]", '{"workflows": [{"name": "no id"}]}'],
    ids=["syntax", "wrong-shape", "invalid-record"],
)
def test_corrupt_file_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "store.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(StoreCorruptedError) as excinfo:
        DefinitionStore(path).list_workflows()
    assert excinfo.value.path == path


def test_corrupt_file_is_never_overwritten(store: DefinitionStore) -> None:
    store.create_workflow(name="a", description="", dsl=DSL, created_by="alice")
    store.create_workflow(name="b", description="", dsl=DSL, created_by="alice")
    truncated = store.path.read_bytes()[:40]
    store.path.write_bytes(truncated)

    with pytest.raises(StoreCorruptedError):
        store.create_workflow(name="c", description="", dsl=DSL, created_by="alice")

    assert store.path.read_bytes() == truncated


def test_save_leaves_no_temp_file(store: DefinitionStore) -> None:
    store.create_workflow(name="a", description="", dsl=DSL, created_by="alice")

    assert [p.name for p in store.path.parent.iterdir()] == ["store.json"]


def test_create_workflow_rejects_duplicate_id(store: DefinitionStore) -> None:
    store.create_workflow(name="a", description="", dsl=DSL, created_by=None, workflow_id="fixed")

    with pytest.raises(ValueError, match="fixed"):
        store.create_workflow(name="b", description="", dsl=DSL, created_by=None, workflow_id="fixed")


def test_upsert_workflow_reactivates(store: DefinitionStore) -> None:
    store.upsert_workflow(workflow_id="code-1", name="v1", description="", dsl=DSL, source="code")
    store.update_workflow("code-1", deleted=True)
    assert store.list_workflows() == []
    assert len(store.list_workflows(include_deleted=True)) == 1

    updated = store.upsert_workflow(workflow_id="code-1", name="v2", description="", dsl=DSL, source="code")

    assert updated.deleted is False
    assert updated.name == "v2"
    assert [wf.id for wf in store.list_workflows()] == ["code-1"]


def test_update_missing_workflow(store: DefinitionStore) -> None:
    with pytest.raises(KeyError):
        store.update_workflow("missing", deleted=True)


def test_binding_is_upsert_on_conflict(store: DefinitionStore) -> None:
    first = store.create_workflow_agent("wf", "agent-1", "ChatBot")
    second = store.create_workflow_agent("wf", "agent-2", "ChatBot")

    assert second.agent_id == "agent-1"
    assert second == first
    assert len(store.list_workflow_agents("wf")) == 1

    rebound = store.create_workflow_agent("wf", "agent-2", "ChatBot", replace=True)

    assert rebound.agent_id == "agent-2"
    assert store.find_workflow_agent("wf", "ChatBot") == rebound


def test_delete_workflow_agents_removes_agent_records(store: DefinitionStore) -> None:
    kept = store.create_agent(name="kept", description="", prompt="p", created_by="u")
    bound = store.create_agent(name="bound", description="", prompt="p", created_by="u")
    store.create_workflow_agent("wf", bound.id, "Bound")
    store.create_workflow_agent("other", kept.id, "Kept")

    removed = store.delete_workflow_agents("wf")

    assert [b.agent_name for b in removed] == ["Bound"]
    assert [a.id for a in store.list_agents()] == [kept.id]
    assert store.list_workflow_agents("other") != []
    assert store.delete_workflow_agents("wf") == []


def test_agent_updates(store: DefinitionStore) -> None:
    agent = store.create_agent(name="a", description="", prompt="p", created_by="u", options={"x": 1})

    linked = store.set_agent_knowledge_bases(agent.id, ["kb-2", "kb-1", "kb-2", ""])
    assert linked.knowledge_base_ids == ["kb-2", "kb-1"]

    store.attach_toolkit(agent.id, "toolkit-a")
    attached = store.attach_toolkit(agent.id, "toolkit-a")
    assert attached.toolkit_ids == ["toolkit-a"]

    assert store.delete_agent(agent.id) is True
    assert store.delete_agent(agent.id) is False
    with pytest.raises(KeyError):
        store.update_agent(agent.id, prompt="q")
