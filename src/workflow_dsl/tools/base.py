"""Tool and toolkit abstractions.

A tool is a named async capability invoked with a single mapping of
arguments (``await tool.call({...})``). Tools are grouped into toolkits which
carry settings and may produce their tool list lazily.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from copy import copy, deepcopy
from typing import Any


class ToolNotFoundError(LookupError):
    """Raised by tool lookup when no toolkit provides the requested tool."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool {name} not found")
        self.name = name


class Tool(ABC):
    """Base interface for all tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the argument mapping."""
        return {"type": "object", "properties": {}}

    @abstractmethod
    async def call(self, args: Mapping[str, Any] | None = None) -> Any:
        """Invoke the tool.

        Args:
            args: Argument mapping matching :attr:`parameters`.

        Returns:
            Tool result (JSON-serialisable).
        """

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class FunctionTool(Tool):
    """Adapts a plain (sync or async) function taking keyword arguments."""

    def __init__(
        self,
        fn: Callable[..., Any] | Callable[..., Awaitable[Any]],
        *,
        name: str,
        description: str,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self._fn = fn
        self._name = name
        self._description = description
        self._parameters = parameters or {"type": "object", "properties": {}}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    async def call(self, args: Mapping[str, Any] | None = None) -> Any:
        result = self._fn(**dict(args or {}))
        if inspect.isawaitable(result):
            result = await result
        return result


class Toolkit(ABC):
    """A group of tools sharing settings."""

    id: str
    name: str
    description: str = ""

    def __init__(self, settings: Mapping[str, Any] | None = None) -> None:
        self.settings: dict[str, Any] = deepcopy(self.default_settings())
        if settings:
            self.apply_settings(settings)

    def default_settings(self) -> dict[str, Any]:
        return {}

    def apply_settings(self, settings: Mapping[str, Any]) -> None:
        for key, value in settings.items():
            if key not in self.settings:
                raise ValueError(f"Invalid setting for toolkit {self.id}: {key}")
            self.settings[key] = value
        self.validate_settings()

    def validate_settings(self) -> None:
        """Hook for subclasses; raise ``ValueError`` on bad settings."""

    def configured(self, settings: Mapping[str, Any] | None) -> Toolkit:
        """Return a copy of this toolkit with ``settings`` applied."""

        clone = copy(self)
        clone.settings = deepcopy(self.settings)
        if settings:
            clone.apply_settings(settings)
        return clone

    @abstractmethod
    async def get_tools(
        self, agent_id: str | None = None, caller_id: str | None = None
    ) -> list[Tool]:
        """Return the tools of this toolkit.

        Args:
            agent_id: Scope the tools to a persisted agent, when the toolkit
                keys its tools on agent records.
            caller_id: User on whose behalf the tools will be called.
        """
