"""Tools package initialization."""

from workflow_dsl.tools.base import FunctionTool, Tool, Toolkit, ToolNotFoundError
from workflow_dsl.tools.builtin import BUILTIN_TOOLKIT_ID, BuiltinToolkit
from workflow_dsl.tools.knowledge_base import KNOWLEDGE_BASE_TOOLKIT_ID, KnowledgeBaseToolkit
from workflow_dsl.tools.registry import ToolRegistry
from workflow_dsl.tools.workflow_toolkit import WORKFLOW_TOOLKIT_ID, WorkflowToolkit

__all__ = [
    "BUILTIN_TOOLKIT_ID",
    "BuiltinToolkit",
    "FunctionTool",
    "KNOWLEDGE_BASE_TOOLKIT_ID",
    "KnowledgeBaseToolkit",
    "Tool",
    "ToolNotFoundError",
    "ToolRegistry",
    "Toolkit",
    "WORKFLOW_TOOLKIT_ID",
    "WorkflowToolkit",
]
