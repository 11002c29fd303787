"""Workflow DSL engine: validation, capability resolution, compilation and execution."""

from workflow_dsl.engine.compiler import HandlerCompiler
from workflow_dsl.engine.discovery import BaseWorkflow, WorkflowDiscovery, workflow_id
from workflow_dsl.engine.dsl import WorkflowDefinition, parse_definition, validate
from workflow_dsl.engine.events import WORKFLOW_START, WORKFLOW_STOP, EventBus, WorkflowEvent
from workflow_dsl.engine.resolver import CapabilityRegistry, CapabilityResolver
from workflow_dsl.engine.service import ExecutionResult, WorkflowService
from workflow_dsl.engine.state_machine import Workflow

__all__ = [
    "BaseWorkflow",
    "CapabilityRegistry",
    "CapabilityResolver",
    "EventBus",
    "ExecutionResult",
    "HandlerCompiler",
    "WORKFLOW_START",
    "WORKFLOW_STOP",
    "Workflow",
    "WorkflowDefinition",
    "WorkflowDiscovery",
    "WorkflowEvent",
    "WorkflowService",
    "parse_definition",
    "validate",
    "workflow_id",
]
