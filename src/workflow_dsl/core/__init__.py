"""Core package initialization."""

from workflow_dsl.core.config import EngineConfig, LLMConfig, Settings, StoreConfig
from workflow_dsl.core.errors import (
    DuplicateStepError,
    HandlerCompileError,
    HandlerRuntimeError,
    SchemaError,
    TransitionLimitExceededError,
    UnhandledEventError,
    UnknownAgentError,
    UnknownToolError,
    WorkflowError,
    WorkflowNotFoundError,
)

__all__ = [
    "DuplicateStepError",
    "EngineConfig",
    "HandlerCompileError",
    "HandlerRuntimeError",
    "LLMConfig",
    "SchemaError",
    "Settings",
    "StoreConfig",
    "TransitionLimitExceededError",
    "UnhandledEventError",
    "UnknownAgentError",
    "UnknownToolError",
    "WorkflowError",
    "WorkflowNotFoundError",
]
