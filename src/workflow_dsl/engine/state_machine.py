"""Event-driven workflow state machine.

States are event types. A run starts in ``WORKFLOW_START`` with the caller's
input and ends when a step returns a ``WORKFLOW_STOP`` event, whose data is
the run's result. Each step maps the current event to the next one.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable, Collection, Mapping
from typing import Any

from workflow_dsl.core.errors import (
    DuplicateStepError,
    HandlerRuntimeError,
    SchemaError,
    TransitionLimitExceededError,
    UnhandledEventError,
    WorkflowError,
    attach_context,
)
from workflow_dsl.engine.events import WORKFLOW_START, WORKFLOW_STOP, EventBus, WorkflowEvent

logger = logging.getLogger(__name__)

StepHandle = Callable[[WorkflowEvent, dict[str, Any]], Awaitable[Any]]

DEFAULT_MAX_TRANSITIONS = 100


class Workflow:
    """A compiled workflow: an event bus plus one step per non-terminal event type.

    A ``Workflow`` holds no per-run state, so one instance may execute many
    runs, concurrently or not.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        *,
        workflow_id: str | None = None,
        event_types: Collection[str] | None = None,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
        keep_failed_context: bool = False,
    ) -> None:
        if max_transitions <= 0:
            raise ValueError("max_transitions must be positive")
        self.event_bus = event_bus or EventBus()
        self.workflow_id = workflow_id
        self.event_types = frozenset(event_types) if event_types is not None else None
        self.max_transitions = max_transitions
        self.keep_failed_context = keep_failed_context
        self.step_table: dict[str, StepHandle] = {}

    def add_step(self, event_type: str, handle: StepHandle) -> None:
        if event_type == WORKFLOW_STOP:
            raise SchemaError(f"{WORKFLOW_STOP} is terminal and cannot have a step")
        if self.event_types is not None and event_type not in self.event_types:
            raise SchemaError(f"Step references undeclared event type: {event_type}")
        if event_type in self.step_table:
            raise DuplicateStepError(event_type)
        self.step_table[event_type] = handle
        self.event_bus.on(event_type, handle)

    async def _dispatch(self, event: WorkflowEvent, context: dict[str, Any]) -> WorkflowEvent:
        try:
            results = await self.event_bus.emit(event.type, event, context)
            return WorkflowEvent.from_value(results[0])
        except WorkflowError:
            raise
        except Exception as e:
            raise HandlerRuntimeError(event.type, e) from e

    async def execute(self, input: Any, context: Mapping[str, Any] | None = None) -> Any:
        """Run the chain from ``WORKFLOW_START`` and return the stop event's data.

        Args:
            input: Data of the start event. It is deep-copied, so steps never
                mutate the caller's object.
            context: Initial values of the run's context. The mapping is
                deep-copied; steps of this run share the copy by reference.

        Raises:
            UnhandledEventError: A non-terminal event has no step.
            TransitionLimitExceededError: The run did not stop within ``max_transitions``.
            HandlerRuntimeError: A step raised.
        """
        run_context: dict[str, Any] = copy.deepcopy(dict(context or {}))
        event = WorkflowEvent(type=WORKFLOW_START, data=copy.deepcopy(input))
        transitions = 0
        log_extra = {"workflow_id": self.workflow_id}

        try:
            while event.type != WORKFLOW_STOP:
                if event.type not in self.step_table:
                    raise UnhandledEventError(event.type)
                if transitions >= self.max_transitions:
                    raise TransitionLimitExceededError(transitions, self.max_transitions, event.type)

                logger.debug(
                    "Dispatching event",
                    extra={**log_extra, "event_type": event.type, "transition": transitions},
                )
                event = await self._dispatch(event, run_context)
                transitions += 1
        except WorkflowError as e:
            logger.debug(
                "Workflow run failed",
                extra={**log_extra, "transitions": transitions, "context_keys": sorted(run_context)},
            )
            if self.keep_failed_context:
                attach_context(e, run_context)
            raise

        logger.debug("Workflow run stopped", extra={**log_extra, "transitions": transitions})
        return event.data
