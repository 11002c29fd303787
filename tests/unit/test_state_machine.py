"""Unit tests for the workflow state machine.

These tests assert that runs end only on WORKFLOW_STOP, that bad chains fail
loudly and that runs never share context.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from workflow_dsl.core.errors import (
    DuplicateStepError,
    HandlerRuntimeError,
    SchemaError,
    TransitionLimitExceededError,
    UnhandledEventError,
)
from workflow_dsl.engine.events import WORKFLOW_START, WORKFLOW_STOP, WorkflowEvent
from workflow_dsl.engine.state_machine import Workflow


async def _identity(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
    return {"type": WORKFLOW_STOP, "data": event.data}


def _goto(next_type: str):
    async def step(event: WorkflowEvent, context: dict[str, Any]) -> WorkflowEvent:
        return WorkflowEvent(next_type, event.data)

    return step


@pytest.mark.asyncio
async def test_identity_workflow_returns_input() -> None:
    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, _identity)

    assert await workflow.execute({"input": "hi"}) == {"input": "hi"}


@pytest.mark.asyncio
async def test_context_is_threaded_between_steps() -> None:
    async def start(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["seen"] = [event.type]
        return {"type": "MIDDLE", "data": event.data + 1}

    async def middle(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["seen"].append(event.type)
        return {"type": WORKFLOW_STOP, "data": {"value": event.data, "seen": context["seen"]}}

    workflow = Workflow(event_types={WORKFLOW_START, "MIDDLE", WORKFLOW_STOP})
    workflow.add_step(WORKFLOW_START, start)
    workflow.add_step("MIDDLE", middle)

    result = await workflow.execute(1)

    assert result == {"value": 2, "seen": [WORKFLOW_START, "MIDDLE"]}


@pytest.mark.asyncio
async def test_caller_context_is_copied() -> None:
    async def start(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["written"] = True
        return {"type": WORKFLOW_STOP, "data": context["given"]}

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, start)
    initial = {"given": "value"}

    assert await workflow.execute(None, initial) == "value"
    assert initial == {"given": "value"}


@pytest.mark.asyncio
async def test_nested_input_and_context_are_copied() -> None:
    async def start(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["history"].append("start")
        event.data["items"].append("start")
        return {"type": WORKFLOW_STOP, "data": event.data}

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, start)
    payload = {"items": []}
    initial = {"history": []}

    assert await workflow.execute(payload, initial) == {"items": ["start"]}
    assert payload == {"items": []}
    assert initial == {"history": []}


@pytest.mark.asyncio
async def test_cycle_hits_transition_limit() -> None:
    workflow = Workflow(max_transitions=5)
    workflow.add_step(WORKFLOW_START, _goto("A"))
    workflow.add_step("A", _goto("B"))
    workflow.add_step("B", _goto("A"))

    with pytest.raises(TransitionLimitExceededError) as excinfo:
        await workflow.execute(None)

    assert excinfo.value.count == 5
    assert excinfo.value.limit == 5


@pytest.mark.asyncio
async def test_unhandled_event() -> None:
    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, _goto("NOWHERE"))

    with pytest.raises(UnhandledEventError) as excinfo:
        await workflow.execute(None)

    assert excinfo.value.event_type == "NOWHERE"


def test_add_step_rejects_duplicates() -> None:
    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, _identity)

    with pytest.raises(DuplicateStepError):
        workflow.add_step(WORKFLOW_START, _identity)

    assert len(workflow.event_bus.listeners(WORKFLOW_START)) == 1


def test_add_step_rejects_stop() -> None:
    with pytest.raises(SchemaError):
        Workflow().add_step(WORKFLOW_STOP, _identity)


def test_add_step_rejects_undeclared_event() -> None:
    workflow = Workflow(event_types={WORKFLOW_START, WORKFLOW_STOP})

    with pytest.raises(SchemaError):
        workflow.add_step("OTHER", _identity)


def test_max_transitions_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Workflow(max_transitions=0)


@pytest.mark.asyncio
async def test_step_exception_is_wrapped() -> None:
    async def broken(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        raise ValueError("boom")

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, broken)

    with pytest.raises(HandlerRuntimeError) as excinfo:
        await workflow.execute(None)

    assert excinfo.value.event_type == WORKFLOW_START
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert isinstance(excinfo.value.cause, ValueError)


@pytest.mark.asyncio
async def test_step_returning_non_event_fails() -> None:
    async def bad(event: WorkflowEvent, context: dict[str, Any]) -> int:
        return 42

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, bad)

    with pytest.raises(HandlerRuntimeError):
        await workflow.execute(None)


@pytest.mark.asyncio
async def test_failed_context_is_discarded_by_default() -> None:
    async def broken(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["partial"] = 1
        raise RuntimeError("boom")

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, broken)

    with pytest.raises(HandlerRuntimeError) as excinfo:
        await workflow.execute(None)

    assert not hasattr(excinfo.value, "context")


@pytest.mark.asyncio
async def test_failed_context_can_be_kept() -> None:
    async def broken(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["partial"] = 1
        raise RuntimeError("boom")

    workflow = Workflow(keep_failed_context=True)
    workflow.add_step(WORKFLOW_START, broken)

    with pytest.raises(HandlerRuntimeError) as excinfo:
        await workflow.execute(None, {"given": True})

    assert excinfo.value.context == {"given": True, "partial": 1}  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_context() -> None:
    async def remember(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        context["n"] = event.data
        await asyncio.sleep(0)
        return {"type": "CHECK", "data": None}

    async def check(event: WorkflowEvent, context: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        return {"type": WORKFLOW_STOP, "data": context["n"]}

    workflow = Workflow()
    workflow.add_step(WORKFLOW_START, remember)
    workflow.add_step("CHECK", check)

    results = await asyncio.gather(*(workflow.execute(n) for n in range(10)))

    assert results == list(range(10))
