"""Expose stored workflows as tools.

Each workflow becomes a tool named ``workflow_<dsl id>`` whose parameters are
the fields of its ``WORKFLOW_START`` event. Calling the tool executes the
workflow and returns the result envelope as a JSON string.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from workflow_dsl.core.errors import WorkflowError
from workflow_dsl.state.store import DefinitionStore, StoredWorkflow
from workflow_dsl.tools.base import Tool, Toolkit

if TYPE_CHECKING:
    from workflow_dsl.engine.service import ExecutionResult

logger = logging.getLogger(__name__)

WORKFLOW_TOOLKIT_ID = "workflow-toolkit"

# Called as runner(workflow_id, input, caller_id=...).
WorkflowRunner = Callable[..., Awaitable["ExecutionResult"]]


def sanitize_tool_name(dsl_id: str) -> str:
    return "workflow_" + re.sub(r"[^a-zA-Z0-9]", "_", dsl_id)


def start_event_schema(dsl: Mapping[str, Any]) -> dict[str, Any]:
    """Build a JSON schema from the ``WORKFLOW_START`` event's data shape."""

    shape: Mapping[str, Any] = {}
    for event in dsl.get("events") or []:
        if isinstance(event, Mapping) and event.get("type") == "WORKFLOW_START":
            data = event.get("data")
            shape = data if isinstance(data, Mapping) else {}
            break

    properties: dict[str, dict[str, str]] = {}
    for key, value in shape.items():
        type_name = value if isinstance(value, str) else "string"
        properties[key] = {"type": type_name, "description": key}
    return {"type": "object", "properties": properties, "required": list(properties)}


class WorkflowTool(Tool):
    def __init__(
        self, workflow: StoredWorkflow, runner: WorkflowRunner, caller_id: str | None = None
    ) -> None:
        self._workflow = workflow
        self._runner = runner
        self._caller_id = caller_id
        self._name = sanitize_tool_name(str(workflow.dsl.get("id") or workflow.id))

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._workflow.description or self._workflow.name or self._name

    @property
    def parameters(self) -> dict[str, Any]:
        return start_event_schema(self._workflow.dsl)

    async def call(self, args: Mapping[str, Any] | None = None) -> Any:
        started = time.monotonic()
        logger.info(
            "Workflow tool called",
            extra={"tool": self._name, "workflow_id": self._workflow.id, "caller_id": self._caller_id},
        )
        try:
            result = await self._runner(self._workflow.id, dict(args or {}), caller_id=self._caller_id)
        except WorkflowError as e:
            # Agents see the failure as the tool's answer rather than an aborted run.
            logger.error("Workflow tool failed", extra={"tool": self._name, "error": str(e)})
            return json.dumps({"error": str(e)}, indent=2, ensure_ascii=False)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Workflow tool completed", extra={"tool": self._name, "elapsed_ms": elapsed_ms})
        return json.dumps(result.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)


def _visible_to(workflow: StoredWorkflow, caller_id: str | None) -> bool:
    if caller_id is None or workflow.source == "code":
        return True
    return workflow.created_by == caller_id


class WorkflowToolkit(Toolkit):
    """Tools for the workflows linked to an agent.

    Only workflows linked through the agent record's ``workflow_ids`` are
    exposed, and only those the caller may see. Without an agent there are no
    tools.
    """

    id = WORKFLOW_TOOLKIT_ID
    name = "Workflow Toolkit"
    description = "Discover and execute stored workflows"

    def __init__(
        self,
        store: DefinitionStore,
        runner: WorkflowRunner | None = None,
        settings: Mapping[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        super().__init__(settings)

    def bind(self, runner: WorkflowRunner) -> None:
        self._runner = runner

    async def get_tools(
        self, agent_id: str | None = None, caller_id: str | None = None
    ) -> list[Tool]:
        if self._runner is None or agent_id is None:
            return []
        agent = self._store.get_agent(agent_id)
        if agent is None or not agent.workflow_ids:
            return []

        linked = set(agent.workflow_ids)
        workflows = [
            wf
            for wf in self._store.list_workflows()
            if wf.id in linked and _visible_to(wf, caller_id)
        ]
        logger.debug(
            "Generated workflow tools",
            extra={"agent_id": agent_id, "caller_id": caller_id, "tools": len(workflows)},
        )
        return [WorkflowTool(wf, self._runner, caller_id) for wf in workflows]
