"""Knowledge-base toolkit.

Retrieval itself (embeddings, similarity search) lives outside this package;
the toolkit only scopes a pluggable retriever to the knowledge bases linked to
an agent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from workflow_dsl.state.store import DefinitionStore
from workflow_dsl.tools.base import Tool, Toolkit

KNOWLEDGE_BASE_TOOLKIT_ID = "knowledge-base-toolkit"


class Retriever(Protocol):
    async def __call__(
        self, knowledge_base_ids: list[str], query: str, top_k: int
    ) -> list[dict[str, Any]]: ...


class KnowledgeBaseSearchTool(Tool):
    def __init__(self, retriever: Retriever, knowledge_base_ids: list[str], top_k: int) -> None:
        self._retriever = retriever
        self._knowledge_base_ids = knowledge_base_ids
        self._top_k = top_k

    @property
    def name(self) -> str:
        return "searchKnowledgeBase"

    @property
    def description(self) -> str:
        return "Search the knowledge bases linked to this agent and return matching passages."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "top_k": {"type": "integer"},
            },
            "required": ["query"],
        }

    async def call(self, args: Mapping[str, Any] | None = None) -> Any:
        args = dict(args or {})
        query = str(args.get("query") or "").strip()
        if not query:
            raise ValueError("searchKnowledgeBase requires 'query'")
        top_k = int(args.get("top_k") or self._top_k)
        return await self._retriever(list(self._knowledge_base_ids), query, top_k)


class KnowledgeBaseToolkit(Toolkit):
    id = KNOWLEDGE_BASE_TOOLKIT_ID
    name = "Knowledge Base Toolkit"
    description = "Search knowledge bases linked to an agent"

    def __init__(
        self,
        store: DefinitionStore,
        retriever: Retriever,
        settings: Mapping[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._retriever = retriever
        super().__init__(settings)

    def default_settings(self) -> dict[str, Any]:
        return {"top_k": 5}

    def validate_settings(self) -> None:
        if int(self.settings["top_k"]) <= 0:
            raise ValueError("top_k must be positive")

    async def get_tools(
        self, agent_id: str | None = None, caller_id: str | None = None
    ) -> list[Tool]:
        if agent_id is None:
            return []
        agent = self._store.get_agent(agent_id)
        if agent is None or not agent.knowledge_base_ids:
            return []
        return [
            KnowledgeBaseSearchTool(
                self._retriever,
                list(agent.knowledge_base_ids),
                int(self.settings["top_k"]),
            )
        ]
