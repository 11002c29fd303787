"""Error taxonomy for workflow compilation and execution.

Every error raised by the engine derives from :class:`WorkflowError` so callers
(CLI, transport layers) can translate them in one place.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class SchemaError(WorkflowError, ValueError):
    """The DSL document is structurally malformed."""


class DuplicateStepError(SchemaError):
    """More than one step was registered for the same event type."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"Duplicate step for event type: {event_type}")
        self.event_type = event_type


class UnknownToolError(WorkflowError, LookupError):
    """A declared or referenced tool could not be resolved."""

    def __init__(self, name: str, reason: str | None = None) -> None:
        message = f"Unknown tool: {name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.name = name


class UnknownAgentError(WorkflowError, LookupError):
    """A referenced agent is not declared in the document."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown agent: {name}")
        self.name = name


class HandlerCompileError(WorkflowError):
    """A step handler could not be turned into a callable."""

    def __init__(self, event_type: str, message: str) -> None:
        super().__init__(f"Cannot compile handler for {event_type}: {message}")
        self.event_type = event_type


class HandlerRuntimeError(WorkflowError):
    """A step handler raised while running. The original error is ``__cause__``."""

    def __init__(self, event_type: str, cause: BaseException) -> None:
        super().__init__(f"Handler for {event_type} failed: {cause!r}")
        self.event_type = event_type
        self.cause = cause


class UnhandledEventError(WorkflowError):
    """A non-terminal event was produced but no step handles it."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"No step registered for event type: {event_type}")
        self.event_type = event_type


class TransitionLimitExceededError(WorkflowError):
    """A run exceeded the configured maximum number of transitions."""

    def __init__(self, count: int, limit: int, event_type: str) -> None:
        super().__init__(
            f"Workflow exceeded {limit} transitions (count={count}, pending event={event_type})"
        )
        self.count = count
        self.limit = limit
        self.event_type = event_type


class WorkflowNotFoundError(WorkflowError, LookupError):
    """No (visible, non-deleted) workflow exists with the given id."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow with id {workflow_id} not found")
        self.workflow_id = workflow_id


def attach_context(error: WorkflowError, context: dict[str, Any]) -> WorkflowError:
    """Keep a failed run's context on the error for post-mortem inspection."""

    error.context = context  # type: ignore[attr-defined]
    return error
