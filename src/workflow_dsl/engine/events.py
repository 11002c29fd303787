from __future__ import annotations

import inspect
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

WORKFLOW_START = "WORKFLOW_START"
WORKFLOW_STOP = "WORKFLOW_STOP"

Listener = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    """A typed message driving one transition of a workflow run."""

    type: str
    data: Any = None

    @staticmethod
    def from_value(value: object) -> WorkflowEvent:
        """Normalize a handler return value (event or ``{"type", "data"}`` mapping)."""

        if isinstance(value, WorkflowEvent):
            return value
        if isinstance(value, Mapping):
            event_type = value.get("type")
            if isinstance(event_type, str) and event_type:
                return WorkflowEvent(type=event_type, data=value.get("data"))
        raise TypeError(f"Step must return an event with a string 'type', got: {value!r}")

    def to_json(self) -> dict[str, object]:
        return {"type": self.type, "data": self.data}


class EventBus:
    """Routes events to listeners keyed by event type.

    Listeners fire in registration order; coroutine results are awaited.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)

    def on(self, event_type: str, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def off(self, event_type: str, listener: Listener) -> bool:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listeners(self, event_type: str) -> list[Listener]:
        return list(self._listeners.get(event_type, []))

    async def emit(self, event_type: str, *args: Any) -> list[Any]:
        results: list[Any] = []
        for listener in self.listeners(event_type):
            result = listener(*args)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        return results
