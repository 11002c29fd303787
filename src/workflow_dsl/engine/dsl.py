"""Workflow DSL document model and structural validation.

A document declares the tools and agents a workflow may use, the event types
it routes between and one step per non-terminal event type::

    {
      "id": "timeQuery", "name": "...", "description": "...", "version": "v1",
      "tools": ["getCurrentTime"],
      "agents": [{"name": "ChatBot", "prompt": "...", "output": {"result": "string"}}],
      "events": [{"type": "WORKFLOW_START", "data": {"input": "string"}},
                 {"type": "WORKFLOW_STOP", "data": {"result": "string"}}],
      "steps": [{"event": "WORKFLOW_START", "handle": "async def handle(event, context): ..."}]
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from workflow_dsl.core.errors import DuplicateStepError, SchemaError
from workflow_dsl.engine.events import WORKFLOW_START, WORKFLOW_STOP

REQUIRED_FIELDS: tuple[str, ...] = (
    "id",
    "name",
    "description",
    "version",
    "tools",
    "events",
    "steps",
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class EventSpec(_Frozen):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class StepSpec(_Frozen):
    event: str
    handle: str | None = None
    uses: list[str] | None = None
    program: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _one_body(self) -> StepSpec:
        if (self.handle is None) == (self.program is None):
            raise ValueError(f"Step for {self.event} must define exactly one of 'handle' or 'program'")
        return self


class AgentSpec(_Frozen):
    name: str
    description: str = ""
    prompt: str
    output: dict[str, Any] = Field(default_factory=dict)
    tools: list[str] = Field(default_factory=list)
    knowledge_bases: list[str] = Field(default_factory=list, alias="knowledgeBases")


class WorkflowDefinition(_Frozen):
    id: str
    name: str
    description: str
    version: str
    tools: list[str]
    agents: list[AgentSpec] = Field(default_factory=list)
    content: dict[str, Any] = Field(default_factory=dict)
    events: list[EventSpec]
    steps: list[StepSpec]

    @property
    def event_types(self) -> set[str]:
        return {event.type for event in self.events}

    def to_dsl(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def validate(doc: Any) -> None:
    """Structurally validate a DSL document.

    Does not check handler syntax or whether referenced names exist.

    Raises:
        SchemaError: If the document is malformed.
    """

    if not isinstance(doc, Mapping):
        raise SchemaError("DSL must be a valid object")

    for field in REQUIRED_FIELDS:
        value = doc.get(field)
        if value is None or value == "":
            raise SchemaError(f"DSL missing required field: {field}")

    events = doc["events"]
    if not isinstance(events, list) or len(events) < 2:
        raise SchemaError("DSL must have at least 2 events")

    types = {e.get("type") for e in events if isinstance(e, Mapping)}
    if WORKFLOW_START not in types:
        raise SchemaError(f"DSL must have {WORKFLOW_START} event")
    if WORKFLOW_STOP not in types:
        raise SchemaError(f"DSL must have {WORKFLOW_STOP} event")

    steps = doc["steps"]
    if not isinstance(steps, list) or len(steps) == 0:
        raise SchemaError("DSL must have at least 1 step")


def check_steps(definition: WorkflowDefinition) -> None:
    """Check the step table shape of a parsed definition.

    Raises:
        SchemaError: A step targets ``WORKFLOW_STOP`` or an undeclared event type.
        DuplicateStepError: Two steps target the same event type.
    """

    declared = definition.event_types
    seen: set[str] = set()
    for step in definition.steps:
        if step.event == WORKFLOW_STOP:
            raise SchemaError(f"{WORKFLOW_STOP} is terminal and cannot have a step")
        if step.event not in declared:
            raise SchemaError(f"Step references undeclared event type: {step.event}")
        if step.event in seen:
            raise DuplicateStepError(step.event)
        seen.add(step.event)


def parse_definition(doc: Any) -> WorkflowDefinition:
    """Validate ``doc`` and return it as a typed, immutable definition."""

    if isinstance(doc, WorkflowDefinition):
        return doc
    validate(doc)
    try:
        return WorkflowDefinition.model_validate(doc)
    except ValidationError as e:
        raise SchemaError(f"Invalid DSL: {e}") from e
