"""Code-defined workflows. Importing this package registers them for discovery."""

from workflow_dsl.workflows.time_query import TimeQueryWorkflow

__all__ = ["TimeQueryWorkflow"]
