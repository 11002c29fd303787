"""Declarative step programs.

A step may carry a ``program`` instead of Python source: a JSON expression
tree built from a fixed set of node kinds. Programs name the tools and agents
they call explicitly, so capability binding needs no source scanning and no
general-purpose evaluator is involved.

Node kinds (each node is an object with exactly one of these keys)::

    {"literal": value}
    {"field": "event.data.input"}            # roots: event, context, vars
    {"tool": "getCurrentTime", "args": {"timezone": {"literal": "UTC"}}}
    {"agent": "ChatBot", "input": <node>, "parse": false}
    {"if": <node>, "then": <node>, "else": <node>}
    {"equals": [<node>, <node>]}
    {"not": <node>}
    {"object": {"key": <node>}}
    {"list": [<node>, ...]}
    {"format": "Hello {name}", "values": {"name": <node>}}
    {"let": {"name": <node>}, "in": <node>}
    {"set": {"context_key": <node>}, "then": <node>}
    {"emit": "NEXT_EVENT", "data": <node>}

JSON scalars (strings, numbers, booleans, null) are accepted as literals.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from workflow_dsl.core.errors import (
    HandlerCompileError,
    HandlerRuntimeError,
    UnknownAgentError,
    UnknownToolError,
    WorkflowError,
)
from workflow_dsl.engine.events import WorkflowEvent
from workflow_dsl.engine.resolver import CapabilityRegistry

logger = logging.getLogger(__name__)

FIELD_ROOTS = ("event", "context", "vars")

# Node kind -> auxiliary keys it accepts.
NODE_KINDS: dict[str, frozenset[str]] = {
    "literal": frozenset(),
    "field": frozenset(),
    "tool": frozenset({"args"}),
    "agent": frozenset({"input", "parse"}),
    "if": frozenset({"then", "else"}),
    "equals": frozenset(),
    "not": frozenset(),
    "object": frozenset(),
    "list": frozenset(),
    "format": frozenset({"values"}),
    "let": frozenset({"in"}),
    "set": frozenset({"then"}),
    "emit": frozenset({"data"}),
}


@dataclass
class Scope:
    event: WorkflowEvent
    context: dict[str, Any]
    registry: CapabilityRegistry
    vars: dict[str, Any] = field(default_factory=dict)


class Node:
    async def evaluate(self, scope: Scope) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    async def evaluate(self, scope: Scope) -> Any:
        return self.value


@dataclass(frozen=True)
class FieldRef(Node):
    root: str
    path: tuple[str, ...]

    async def evaluate(self, scope: Scope) -> Any:
        current: Any
        if self.root == "event":
            current = scope.event.to_json()
        elif self.root == "context":
            current = scope.context
        else:
            current = scope.vars
        for part in self.path:
            if isinstance(current, Mapping):
                current = current.get(part)
            elif isinstance(current, list) and part.lstrip("-").isdigit():
                idx = int(part)
                current = current[idx] if -len(current) <= idx < len(current) else None
            else:
                return None
        return current


@dataclass(frozen=True)
class ToolCall(Node):
    name: str
    args: dict[str, Node]

    async def evaluate(self, scope: Scope) -> Any:
        args = {key: await node.evaluate(scope) for key, node in self.args.items()}
        return await scope.registry.tools[self.name].call(args)


@dataclass(frozen=True)
class AgentRun(Node):
    name: str
    input: Node
    parse: bool = False

    async def evaluate(self, scope: Scope) -> Any:
        value = await self.input.evaluate(scope)
        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        response = await scope.registry.agents[self.name].run(text)
        result = response["result"]
        return json.loads(result) if self.parse else result


@dataclass(frozen=True)
class Conditional(Node):
    condition: Node
    then: Node
    otherwise: Node

    async def evaluate(self, scope: Scope) -> Any:
        if await self.condition.evaluate(scope):
            return await self.then.evaluate(scope)
        return await self.otherwise.evaluate(scope)


@dataclass(frozen=True)
class Equals(Node):
    left: Node
    right: Node

    async def evaluate(self, scope: Scope) -> Any:
        return await self.left.evaluate(scope) == await self.right.evaluate(scope)


@dataclass(frozen=True)
class Not(Node):
    operand: Node

    async def evaluate(self, scope: Scope) -> Any:
        return not await self.operand.evaluate(scope)


@dataclass(frozen=True)
class ObjectNode(Node):
    items: dict[str, Node]

    async def evaluate(self, scope: Scope) -> Any:
        return {key: await node.evaluate(scope) for key, node in self.items.items()}


@dataclass(frozen=True)
class ListNode(Node):
    items: tuple[Node, ...]

    async def evaluate(self, scope: Scope) -> Any:
        return [await node.evaluate(scope) for node in self.items]


@dataclass(frozen=True)
class Format(Node):
    template: str
    values: dict[str, Node]

    async def evaluate(self, scope: Scope) -> Any:
        values = {key: await node.evaluate(scope) for key, node in self.values.items()}
        return self.template.format(**values)


@dataclass(frozen=True)
class Let(Node):
    bindings: dict[str, Node]
    body: Node

    async def evaluate(self, scope: Scope) -> Any:
        for name, node in self.bindings.items():
            scope.vars[name] = await node.evaluate(scope)
        return await self.body.evaluate(scope)


@dataclass(frozen=True)
class SetContext(Node):
    assignments: dict[str, Node]
    then: Node

    async def evaluate(self, scope: Scope) -> Any:
        for key, node in self.assignments.items():
            scope.context[key] = await node.evaluate(scope)
        return await self.then.evaluate(scope)


@dataclass(frozen=True)
class Emit(Node):
    event_type: str
    data: Node

    async def evaluate(self, scope: Scope) -> Any:
        return WorkflowEvent(type=self.event_type, data=await self.data.evaluate(scope))


class _Parser:
    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        self.tool_names: list[str] = []
        self.agent_names: list[str] = []

    def fail(self, path: str, message: str) -> HandlerCompileError:
        return HandlerCompileError(self.event_type, f"{path}: {message}")

    def _mapping(self, raw: Any, path: str) -> dict[str, Node]:
        if not isinstance(raw, Mapping):
            raise self.fail(path, "expected an object")
        return {str(key): self.parse(value, f"{path}.{key}") for key, value in raw.items()}

    def _name(self, raw: Any, path: str) -> str:
        if not isinstance(raw, str) or not raw:
            raise self.fail(path, "expected a non-empty string")
        return raw

    def parse(self, raw: Any, path: str = "program") -> Node:
        if raw is None or isinstance(raw, str | int | float | bool):
            return Literal(raw)
        if not isinstance(raw, Mapping):
            raise self.fail(path, f"expected a node object, got {type(raw).__name__}")

        kinds = [key for key in raw if key in NODE_KINDS]
        if len(kinds) != 1:
            raise self.fail(path, f"node must have exactly one kind key, found {kinds or 'none'}")
        kind = kinds[0]
        extra = set(raw) - {kind} - NODE_KINDS[kind]
        if extra:
            raise self.fail(path, f"unexpected keys for '{kind}' node: {sorted(extra)}")

        value = raw[kind]
        if kind == "literal":
            return Literal(value)
        if kind == "field":
            parts = self._name(value, path).split(".")
            if parts[0] not in FIELD_ROOTS:
                raise self.fail(path, f"field must start with one of {FIELD_ROOTS}")
            return FieldRef(parts[0], tuple(parts[1:]))
        if kind == "tool":
            name = self._name(value, path)
            self.tool_names.append(name)
            return ToolCall(name, self._mapping(raw.get("args", {}), f"{path}.args"))
        if kind == "agent":
            name = self._name(value, path)
            self.agent_names.append(name)
            if "input" not in raw:
                raise self.fail(path, "'agent' node requires 'input'")
            return AgentRun(name, self.parse(raw["input"], f"{path}.input"), bool(raw.get("parse", False)))
        if kind == "if":
            if "then" not in raw:
                raise self.fail(path, "'if' node requires 'then'")
            return Conditional(
                self.parse(value, f"{path}.if"),
                self.parse(raw["then"], f"{path}.then"),
                self.parse(raw.get("else"), f"{path}.else"),
            )
        if kind == "equals":
            if not isinstance(value, list) or len(value) != 2:
                raise self.fail(path, "'equals' takes a list of two nodes")
            return Equals(self.parse(value[0], f"{path}[0]"), self.parse(value[1], f"{path}[1]"))
        if kind == "not":
            return Not(self.parse(value, f"{path}.not"))
        if kind == "object":
            return ObjectNode(self._mapping(value, f"{path}.object"))
        if kind == "list":
            if not isinstance(value, list):
                raise self.fail(path, "'list' takes a list of nodes")
            return ListNode(tuple(self.parse(item, f"{path}[{i}]") for i, item in enumerate(value)))
        if kind == "format":
            if not isinstance(value, str):
                raise self.fail(path, "'format' takes a template string")
            return Format(value, self._mapping(raw.get("values", {}), f"{path}.values"))
        if kind == "let":
            if "in" not in raw:
                raise self.fail(path, "'let' node requires 'in'")
            return Let(self._mapping(value, f"{path}.let"), self.parse(raw["in"], f"{path}.in"))
        if kind == "set":
            if "then" not in raw:
                raise self.fail(path, "'set' node requires 'then'")
            return SetContext(self._mapping(value, f"{path}.set"), self.parse(raw["then"], f"{path}.then"))
        # emit
        data = raw.get("data")
        if _is_plain_object(data):
            data_node: Node = ObjectNode(self._mapping(data, f"{path}.data"))
        else:
            data_node = self.parse(data, f"{path}.data")
        return Emit(self._name(value, path), data_node)


def _is_plain_object(raw: Any) -> bool:
    """True for ``{"k": node}`` data maps, as opposed to a single node object."""

    return isinstance(raw, Mapping) and not any(key in NODE_KINDS for key in raw)


class ProgramHandler:
    """A step runner for a parsed program."""

    def __init__(self, event_type: str, root: Node, registry: CapabilityRegistry) -> None:
        self.event_type = event_type
        self.root = root
        self._registry = registry

    async def __call__(self, event: WorkflowEvent, context: dict[str, Any]) -> WorkflowEvent:
        scope = Scope(event=event, context=context, registry=self._registry)
        try:
            result = await self.root.evaluate(scope)
        except WorkflowError:
            raise
        except Exception as e:
            raise HandlerRuntimeError(self.event_type, e) from e
        if not isinstance(result, WorkflowEvent):
            raise HandlerRuntimeError(
                self.event_type, TypeError(f"program must end in an 'emit' node, got {result!r}")
            )
        return result


def compile_program(
    event_type: str, program: Mapping[str, Any], registry: CapabilityRegistry
) -> ProgramHandler:
    """Parse ``program`` and check every tool and agent it names is resolved.

    Raises:
        HandlerCompileError: The program is malformed.
        UnknownToolError: A ``tool`` node names an unresolved tool.
        UnknownAgentError: An ``agent`` node names an undeclared agent.
    """

    parser = _Parser(event_type)
    root = parser.parse(program)
    for name in parser.tool_names:
        if name not in registry.tools:
            raise UnknownToolError(name, f"used by step {event_type} but not declared")
    for name in parser.agent_names:
        if name not in registry.agents:
            raise UnknownAgentError(name)
    logger.debug(
        "Compiled program",
        extra={"event_type": event_type, "tools": parser.tool_names, "agents": parser.agent_names},
    )
    return ProgramHandler(event_type, root, registry)
