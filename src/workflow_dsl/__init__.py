"""Workflow DSL engine.

Declare workflows as JSON documents that wire tools and model-backed agents
through an event chain, then compile and execute them:
- DSL validation and typed definitions
- capability resolution with persisted workflow agents
- Python-source and declarative step handlers
- an event-driven state machine with a bounded transition count
"""

__version__ = "0.1.0"

from workflow_dsl.core.config import Settings

__all__ = ["__version__", "Settings"]
