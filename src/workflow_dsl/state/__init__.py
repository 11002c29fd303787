"""Persistence for workflow definitions and workflow agents."""

from workflow_dsl.state.store import (
    AgentRecord,
    DefinitionStore,
    StoreCorruptedError,
    StoredWorkflow,
    WorkflowAgentBinding,
)

__all__ = [
    "AgentRecord",
    "DefinitionStore",
    "StoreCorruptedError",
    "StoredWorkflow",
    "WorkflowAgentBinding",
]
