"""JSON-file backed definition store.

Holds workflow definitions, persisted agent records and the
(workflow, agent name) bindings that let repeated compilations of one
workflow reuse the same agent identity.

All records live in a single JSON document guarded by a lock. Binding
creation is upsert-on-conflict: the first binding written for a key wins.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

WorkflowSource = Literal["api", "code"]


class StoreCorruptedError(RuntimeError):
    """The store file exists but cannot be read back as a store document.

    Nothing is written while the file is in this state, so the records it holds
    can still be recovered by hand.
    """

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Store file {path} is corrupt: {reason}")
        self.path = path


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class StoredWorkflow(BaseModel):
    """A persisted workflow definition."""

    id: str
    name: str
    description: str = ""
    dsl: dict[str, Any]
    source: WorkflowSource = "api"
    created_by: str | None = None
    deleted: bool = False
    created_at: str
    updated_at: str


class AgentRecord(BaseModel):
    """A persisted agent. Workflow agents are created with ``is_workflow_generated``."""

    id: str
    name: str
    description: str = ""
    prompt: str
    options: dict[str, Any] = Field(default_factory=dict)
    created_by: str
    is_workflow_generated: bool = False
    knowledge_base_ids: list[str] = Field(default_factory=list)
    toolkit_ids: list[str] = Field(default_factory=list)
    workflow_ids: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


class WorkflowAgentBinding(BaseModel):
    """Links a named agent of a workflow to its persisted agent record."""

    workflow_id: str
    agent_id: str
    agent_name: str
    created_at: str


class StoreDocument(BaseModel):
    workflows: list[StoredWorkflow] = Field(default_factory=list)
    agents: list[AgentRecord] = Field(default_factory=list)
    workflow_agents: list[WorkflowAgentBinding] = Field(default_factory=list)


@dataclass
class DefinitionStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    # -- raw document ----------------------------------------------------

    def _load_unlocked(self) -> StoreDocument:
        if not self.path.exists():
            return StoreDocument()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Store file is not valid JSON", extra={"path": str(self.path), "error": str(e)})
            raise StoreCorruptedError(self.path, "not valid JSON") from e
        if not isinstance(raw, dict):
            logger.error("Store file has unexpected shape", extra={"path": str(self.path)})
            raise StoreCorruptedError(self.path, f"expected an object, got {type(raw).__name__}")
        try:
            return StoreDocument.model_validate(raw)
        except ValidationError as e:
            logger.error("Store file has invalid records", extra={"path": str(self.path), "error": str(e)})
            raise StoreCorruptedError(self.path, "invalid records") from e

    def _save_unlocked(self, doc: StoreDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write aside and swap in so a crash never leaves a half-written store.
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(
            json.dumps(doc.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        tmp_path.replace(self.path)

    # -- workflows -------------------------------------------------------

    def find_by_id(self, workflow_id: str) -> StoredWorkflow | None:
        with self._lock:
            for wf in self._load_unlocked().workflows:
                if wf.id == workflow_id:
                    return wf
            return None

    def list_workflows(self, *, include_deleted: bool = False) -> list[StoredWorkflow]:
        with self._lock:
            workflows = self._load_unlocked().workflows
        if include_deleted:
            return workflows
        return [wf for wf in workflows if not wf.deleted]

    def create_workflow(
        self,
        *,
        name: str,
        description: str,
        dsl: dict[str, Any],
        created_by: str | None,
        workflow_id: str | None = None,
        source: WorkflowSource = "api",
    ) -> StoredWorkflow:
        with self._lock:
            doc = self._load_unlocked()
            now = _utc_iso_now()
            record = StoredWorkflow(
                id=workflow_id or _new_id(),
                name=name,
                description=description,
                dsl=dsl,
                source=source,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            if any(wf.id == record.id for wf in doc.workflows):
                raise ValueError(f"Workflow id already exists: {record.id}")
            doc.workflows.append(record)
            self._save_unlocked(doc)
            return record

    def upsert_workflow(
        self,
        *,
        workflow_id: str,
        name: str,
        description: str,
        dsl: dict[str, Any],
        source: WorkflowSource,
    ) -> StoredWorkflow:
        """Create or replace a workflow, clearing its deleted flag."""

        with self._lock:
            doc = self._load_unlocked()
            now = _utc_iso_now()
            for idx, existing in enumerate(doc.workflows):
                if existing.id != workflow_id:
                    continue
                merged = existing.model_copy(
                    update={
                        "name": name,
                        "description": description,
                        "dsl": dsl,
                        "source": source,
                        "deleted": False,
                        "updated_at": now,
                    }
                )
                doc.workflows[idx] = merged
                self._save_unlocked(doc)
                return merged
            record = StoredWorkflow(
                id=workflow_id,
                name=name,
                description=description,
                dsl=dsl,
                source=source,
                created_at=now,
                updated_at=now,
            )
            doc.workflows.append(record)
            self._save_unlocked(doc)
            return record

    def update_workflow(self, workflow_id: str, **updates: object) -> StoredWorkflow:
        with self._lock:
            doc = self._load_unlocked()
            for idx, wf in enumerate(doc.workflows):
                if wf.id != workflow_id:
                    continue
                merged = wf.model_copy(update={"updated_at": _utc_iso_now(), **updates})
                doc.workflows[idx] = merged
                self._save_unlocked(doc)
                return merged
            raise KeyError(workflow_id)

    # -- agents ----------------------------------------------------------

    def list_agents(self) -> list[AgentRecord]:
        with self._lock:
            return self._load_unlocked().agents

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        with self._lock:
            for agent in self._load_unlocked().agents:
                if agent.id == agent_id:
                    return agent
            return None

    def create_agent(
        self,
        *,
        name: str,
        description: str,
        prompt: str,
        options: dict[str, Any] | None = None,
        created_by: str,
        is_workflow_generated: bool = False,
    ) -> AgentRecord:
        with self._lock:
            doc = self._load_unlocked()
            now = _utc_iso_now()
            record = AgentRecord(
                id=_new_id(),
                name=name,
                description=description,
                prompt=prompt,
                options=dict(options or {}),
                created_by=created_by,
                is_workflow_generated=is_workflow_generated,
                created_at=now,
                updated_at=now,
            )
            doc.agents.append(record)
            self._save_unlocked(doc)
            return record

    def update_agent(self, agent_id: str, **updates: object) -> AgentRecord:
        with self._lock:
            doc = self._load_unlocked()
            for idx, agent in enumerate(doc.agents):
                if agent.id != agent_id:
                    continue
                merged = agent.model_copy(update={"updated_at": _utc_iso_now(), **updates})
                doc.agents[idx] = merged
                self._save_unlocked(doc)
                return merged
            raise KeyError(agent_id)

    def delete_agent(self, agent_id: str) -> bool:
        with self._lock:
            doc = self._load_unlocked()
            remaining = [a for a in doc.agents if a.id != agent_id]
            if len(remaining) == len(doc.agents):
                return False
            doc.agents = remaining
            self._save_unlocked(doc)
            return True

    def set_agent_knowledge_bases(self, agent_id: str, knowledge_base_ids: list[str]) -> AgentRecord:
        """Replace the knowledge bases linked to an agent (duplicates dropped, order kept)."""

        unique = list(dict.fromkeys(kb for kb in knowledge_base_ids if kb))
        return self.update_agent(agent_id, knowledge_base_ids=unique)

    def set_agent_workflows(self, agent_id: str, workflow_ids: list[str]) -> AgentRecord:
        """Replace the workflows an agent may call as tools.

        Unknown or deleted workflow ids are skipped.
        """

        with self._lock:
            doc = self._load_unlocked()
            live = {wf.id for wf in doc.workflows if not wf.deleted}
            linked: list[str] = []
            for workflow_id in dict.fromkeys(workflow_ids):
                if workflow_id in live:
                    linked.append(workflow_id)
                else:
                    logger.warning(
                        "Workflow not found; not linking it to agent",
                        extra={"agent_id": agent_id, "workflow_id": workflow_id},
                    )
            for idx, agent in enumerate(doc.agents):
                if agent.id != agent_id:
                    continue
                merged = agent.model_copy(update={"workflow_ids": linked, "updated_at": _utc_iso_now()})
                doc.agents[idx] = merged
                self._save_unlocked(doc)
                return merged
            raise KeyError(agent_id)

    def attach_toolkit(self, agent_id: str, toolkit_id: str) -> AgentRecord:
        with self._lock:
            doc = self._load_unlocked()
            for idx, agent in enumerate(doc.agents):
                if agent.id != agent_id:
                    continue
                if toolkit_id in agent.toolkit_ids:
                    return agent
                merged = agent.model_copy(
                    update={
                        "toolkit_ids": [*agent.toolkit_ids, toolkit_id],
                        "updated_at": _utc_iso_now(),
                    }
                )
                doc.agents[idx] = merged
                self._save_unlocked(doc)
                return merged
            raise KeyError(agent_id)

    # -- workflow agent bindings -----------------------------------------

    def find_workflow_agent(self, workflow_id: str, agent_name: str) -> WorkflowAgentBinding | None:
        with self._lock:
            for binding in self._load_unlocked().workflow_agents:
                if binding.workflow_id == workflow_id and binding.agent_name == agent_name:
                    return binding
            return None

    def create_workflow_agent(
        self, workflow_id: str, agent_id: str, agent_name: str, *, replace: bool = False
    ) -> WorkflowAgentBinding:
        """Bind ``agent_name`` of ``workflow_id`` to ``agent_id``.

        (workflow_id, agent_name) is unique: if a binding already exists it is
        returned unchanged and the caller should adopt its ``agent_id``, unless
        ``replace`` is set, which repoints the existing binding.
        """

        with self._lock:
            doc = self._load_unlocked()
            for idx, binding in enumerate(doc.workflow_agents):
                if binding.workflow_id != workflow_id or binding.agent_name != agent_name:
                    continue
                if not replace:
                    return binding
                rebound = binding.model_copy(update={"agent_id": agent_id})
                doc.workflow_agents[idx] = rebound
                self._save_unlocked(doc)
                return rebound
            binding = WorkflowAgentBinding(
                workflow_id=workflow_id,
                agent_id=agent_id,
                agent_name=agent_name,
                created_at=_utc_iso_now(),
            )
            doc.workflow_agents.append(binding)
            self._save_unlocked(doc)
            return binding

    def list_workflow_agents(self, workflow_id: str) -> list[WorkflowAgentBinding]:
        with self._lock:
            return [b for b in self._load_unlocked().workflow_agents if b.workflow_id == workflow_id]

    def delete_workflow_agents(self, workflow_id: str) -> list[WorkflowAgentBinding]:
        """Remove all bindings of a workflow together with their agent records."""

        with self._lock:
            doc = self._load_unlocked()
            removed = [b for b in doc.workflow_agents if b.workflow_id == workflow_id]
            if not removed:
                return []
            removed_agent_ids = {b.agent_id for b in removed}
            doc.workflow_agents = [b for b in doc.workflow_agents if b.workflow_id != workflow_id]
            doc.agents = [a for a in doc.agents if a.id not in removed_agent_ids]
            self._save_unlocked(doc)
            return removed
