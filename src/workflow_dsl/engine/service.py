"""Workflow service: compile and execute DSL documents, manage stored definitions."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from workflow_dsl.core.config import EngineConfig
from workflow_dsl.core.errors import WorkflowError, WorkflowNotFoundError
from workflow_dsl.engine.compiler import HandlerCompiler
from workflow_dsl.engine.dsl import check_steps, parse_definition, validate
from workflow_dsl.engine.resolver import CapabilityResolver
from workflow_dsl.engine.state_machine import Workflow
from workflow_dsl.state.store import AgentRecord, DefinitionStore, StoredWorkflow, WorkflowAgentBinding

logger = logging.getLogger(__name__)


class ExecutionResult(BaseModel):
    """Envelope returned by :meth:`WorkflowService.execute`."""

    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(alias="workflowId")
    input: Any = None
    output: Any = None
    executed_at: str = Field(alias="executedAt")


@dataclass(frozen=True, slots=True)
class WorkflowAgent:
    """A workflow agent binding together with its agent record (if it still exists)."""

    binding: WorkflowAgentBinding
    agent: AgentRecord | None


class WorkflowService:
    def __init__(
        self,
        store: DefinitionStore,
        resolver: CapabilityResolver,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self.config = config or EngineConfig()

    # -- compile / execute -------------------------------------------------

    def validate_dsl(self, dsl: Any) -> None:
        validate(dsl)
        check_steps(parse_definition(dsl))

    async def compile(
        self,
        dsl: Any,
        workflow_id: str | None = None,
        caller_id: str | None = None,
        max_transitions: int | None = None,
    ) -> Workflow:
        """Build a runnable :class:`Workflow` from a DSL document.

        Args:
            dsl: The document (mapping or parsed definition).
            workflow_id: Stored workflow id. When given, declared agents are
                bound to it and reused by later compilations.
            caller_id: Used for per-user tool settings.
            max_transitions: Overrides ``EngineConfig.max_transitions``.

        Raises:
            SchemaError: The document is malformed.
            UnknownToolError: A tool cannot be resolved.
            UnknownAgentError: A program references an undeclared agent.
            HandlerCompileError: A program is malformed.
        """
        definition = parse_definition(dsl)
        check_steps(definition)

        registry = await self._resolver.resolve(definition, workflow_id, caller_id)
        compiler = HandlerCompiler(registry)

        workflow = Workflow(
            workflow_id=workflow_id or definition.id,
            event_types=definition.event_types,
            max_transitions=max_transitions or self.config.max_transitions,
            keep_failed_context=self.config.keep_failed_context,
        )
        for step in definition.steps:
            workflow.add_step(step.event, compiler.compile_step(step))

        logger.info(
            "Compiled workflow",
            extra={
                "workflow_id": workflow.workflow_id,
                "steps": len(workflow.step_table),
                "tools": sorted(registry.tools),
                "agents": sorted(registry.agents),
            },
        )
        return workflow

    async def execute(
        self,
        workflow_id: str,
        input: Any,
        context: Mapping[str, Any] | None = None,
        caller_id: str | None = None,
    ) -> ExecutionResult:
        """Load a stored workflow, compile it and run it once.

        The DSL's ``content`` object is available to steps as
        ``context["content"]`` unless the caller supplies that key.

        Raises:
            WorkflowNotFoundError: No visible, non-deleted workflow has this id.
            WorkflowError: Compilation or execution failed.
        """
        record = self.get_workflow(workflow_id, caller_id)
        workflow = await self.compile(record.dsl, workflow_id=record.id, caller_id=caller_id)

        run_context: dict[str, Any] = dict(context or {})
        content = record.dsl.get("content")
        if content is not None and "content" not in run_context:
            run_context["content"] = content

        started = time.monotonic()
        logger.info("Executing workflow", extra={"workflow_id": record.id, "caller_id": caller_id})
        try:
            output = await workflow.execute(input, run_context)
        except WorkflowError as e:
            logger.error(
                "Workflow execution failed",
                extra={"workflow_id": record.id, "error": str(e), "error_type": type(e).__name__},
            )
            raise
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Workflow completed", extra={"workflow_id": record.id, "elapsed_ms": elapsed_ms})

        return ExecutionResult(
            workflow_id=record.id,
            input=input,
            output=output,
            executed_at=datetime.now(tz=UTC).isoformat(),
        )

    # -- definitions -------------------------------------------------------

    def create_workflow(
        self,
        *,
        name: str,
        dsl: dict[str, Any],
        created_by: str | None,
        description: str = "",
    ) -> StoredWorkflow:
        self.validate_dsl(dsl)
        record = self._store.create_workflow(
            name=name,
            description=description,
            dsl=dsl,
            created_by=created_by,
        )
        logger.info("Workflow created", extra={"workflow_id": record.id, "created_by": created_by})
        return record

    def list_workflows(self, caller_id: str | None) -> list[StoredWorkflow]:
        """Non-deleted workflows owned by ``caller_id`` or defined in code, newest first."""

        visible = [
            wf
            for wf in self._store.list_workflows()
            if wf.source == "code" or wf.created_by == caller_id
        ]
        return sorted(visible, key=lambda wf: wf.created_at, reverse=True)

    def get_workflow(self, workflow_id: str, caller_id: str | None = None) -> StoredWorkflow:
        record = self._store.find_by_id(workflow_id)
        if record is None or record.deleted:
            raise WorkflowNotFoundError(workflow_id)
        # Code workflows are visible to everyone; API workflows only to their creator.
        if caller_id and record.source != "code" and record.created_by != caller_id:
            raise WorkflowNotFoundError(workflow_id)
        return record

    def delete_workflow(self, workflow_id: str, caller_id: str | None) -> StoredWorkflow:
        record = self.get_workflow(workflow_id, caller_id)
        if record.source == "code":
            raise WorkflowError("Cannot delete a code-defined workflow")
        deleted = self._store.update_workflow(workflow_id, deleted=True)
        logger.info("Workflow deleted", extra={"workflow_id": workflow_id, "caller_id": caller_id})
        return deleted

    # -- workflow agents ---------------------------------------------------

    def get_workflow_agents(self, workflow_id: str) -> list[WorkflowAgent]:
        return [
            WorkflowAgent(binding=binding, agent=self._store.get_agent(binding.agent_id))
            for binding in self._store.list_workflow_agents(workflow_id)
        ]

    def delete_workflow_agents(self, workflow_id: str) -> int:
        """Delete every agent bound to ``workflow_id``; returns how many bindings were removed."""

        removed = self._store.delete_workflow_agents(workflow_id)
        if removed:
            logger.info(
                "Deleted workflow agents",
                extra={"workflow_id": workflow_id, "agents": [b.agent_name for b in removed]},
            )
        return len(removed)

    def update_workflow_agent(
        self,
        workflow_id: str,
        agent_name: str,
        *,
        prompt: str | None = None,
        description: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> AgentRecord:
        """Update the persisted agent behind a workflow agent.

        The stored DSL is left unchanged; the next compilation of the workflow
        picks up the new prompt and options from the agent record.
        """
        binding = self._store.find_workflow_agent(workflow_id, agent_name)
        if binding is None:
            raise WorkflowError(f"Workflow agent {agent_name} not found")

        updates: dict[str, Any] = {}
        if prompt is not None:
            updates["prompt"] = prompt
        if description is not None:
            updates["description"] = description
        if options is not None:
            updates["options"] = dict(options)

        try:
            agent = self._store.update_agent(binding.agent_id, **updates)
        except KeyError as e:
            raise WorkflowError(f"Workflow agent {agent_name} not found") from e
        logger.info(
            "Workflow agent updated",
            extra={"workflow_id": workflow_id, "agent_name": agent_name, "fields": sorted(updates)},
        )
        return agent
