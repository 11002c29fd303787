"""Model-backed agents."""

from workflow_dsl.agents.service import AgentInstance, AgentRunError, AgentService

__all__ = ["AgentInstance", "AgentRunError", "AgentService"]
