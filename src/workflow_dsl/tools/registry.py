"""Tool lookup over registered toolkits."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from workflow_dsl.state.store import DefinitionStore
from workflow_dsl.tools.base import Tool, Toolkit, ToolNotFoundError

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Resolves tool names to tool instances.

    Toolkits are configured with their default settings unless the caller has
    stored per-user settings for that toolkit.
    """

    def __init__(
        self,
        store: DefinitionStore | None = None,
        toolkits: Iterable[Toolkit] = (),
    ) -> None:
        self._store = store
        self._toolkits: dict[str, Toolkit] = {}
        self._user_settings: dict[tuple[str, str], dict[str, Any]] = {}
        for toolkit in toolkits:
            self.register_toolkit(toolkit)

    def register_toolkit(self, toolkit: Toolkit) -> None:
        if toolkit.id in self._toolkits:
            raise ValueError(f"Toolkit with ID {toolkit.id} is already registered.")
        self._toolkits[toolkit.id] = toolkit
        logger.debug("Registered toolkit", extra={"toolkit_id": toolkit.id})

    def get_toolkit(self, toolkit_id: str) -> Toolkit | None:
        return self._toolkits.get(toolkit_id)

    @property
    def toolkit_ids(self) -> list[str]:
        return list(self._toolkits)

    def set_user_toolkit_settings(
        self, user_id: str, toolkit_id: str, settings: Mapping[str, Any]
    ) -> None:
        toolkit = self._toolkits.get(toolkit_id)
        if toolkit is None:
            raise KeyError(toolkit_id)
        # Validate eagerly so bad settings fail where they are written.
        toolkit.configured(settings)
        self._user_settings[(user_id, toolkit_id)] = dict(settings)

    def _toolkit_for(self, toolkit: Toolkit, caller_id: str | None) -> Toolkit:
        if caller_id:
            settings = self._user_settings.get((caller_id, toolkit.id))
            if settings:
                return toolkit.configured(settings)
        return toolkit

    async def list_tools(self, caller_id: str | None = None) -> list[Tool]:
        tools: list[Tool] = []
        for toolkit in self._toolkits.values():
            tools.extend(await self._toolkit_for(toolkit, caller_id).get_tools(caller_id=caller_id))
        return tools

    async def get_tool_by_name(self, name: str, caller_id: str | None = None) -> Tool:
        for toolkit in self._toolkits.values():
            for tool in await self._toolkit_for(toolkit, caller_id).get_tools(caller_id=caller_id):
                if tool.name == name:
                    return tool
        raise ToolNotFoundError(name)

    async def get_agent_tools(self, agent_id: str, caller_id: str | None = None) -> list[Tool]:
        """Return the tools of every toolkit attached to a persisted agent."""

        if self._store is None:
            return []
        agent = self._store.get_agent(agent_id)
        if agent is None:
            return []

        tools: list[Tool] = []
        for toolkit_id in agent.toolkit_ids:
            toolkit = self._toolkits.get(toolkit_id)
            if toolkit is None:
                logger.warning(
                    "Agent references unregistered toolkit",
                    extra={"agent_id": agent_id, "toolkit_id": toolkit_id},
                )
                continue
            toolkit_tools = await self._toolkit_for(toolkit, caller_id).get_tools(
                agent_id=agent_id, caller_id=caller_id
            )
            logger.info(
                "Loaded agent toolkit",
                extra={"agent_id": agent_id, "toolkit_id": toolkit_id, "tools": len(toolkit_tools)},
            )
            tools.extend(toolkit_tools)
        return tools
