"""Handler compilation.

A step's ``handle`` is the literal source of one async function taking
``(event, context)``. Tools and agents are not imported by the handler; the
compiler binds every capability the handler uses as a global name, so the
source can simply say::

    async def handle(event, context):
        now = await getCurrentTime.call({"timezone": "UTC"})
        reply = await ChatBot.run(event.data["input"])
        return {"type": "WORKFLOW_STOP", "data": {"time": now, "answer": reply["result"]}}

Without an explicit ``uses`` list, bound names are found by substring search
of the source for every registered tool and agent name. Mentions in comments
bind harmlessly.
"""

from __future__ import annotations

import ast
import builtins
import json
import logging
import textwrap
from collections.abc import Iterable
from types import CodeType
from typing import Any

from workflow_dsl.core.errors import (
    HandlerCompileError,
    HandlerRuntimeError,
    UnknownToolError,
    WorkflowError,
)
from workflow_dsl.engine.dsl import StepSpec
from workflow_dsl.engine.events import WorkflowEvent
from workflow_dsl.engine.expressions import compile_program
from workflow_dsl.engine.resolver import CapabilityRegistry
from workflow_dsl.engine.state_machine import StepHandle

logger = logging.getLogger(__name__)

# Names every handler can use without declaring them.
HANDLER_GLOBALS: dict[str, Any] = {"json": json}

_ALLOWED_TOP_LEVEL = (ast.AsyncFunctionDef, ast.Import, ast.ImportFrom)


def scan_names(source: str, names: Iterable[str]) -> list[str]:
    """Return the ``names`` that occur anywhere in ``source``, in input order."""

    return [name for name in names if name in source]


def _handler_code(event_type: str, source: str) -> tuple[CodeType, str]:
    text = textwrap.dedent(source).strip()
    try:
        module = ast.parse(text, filename=f"<handler {event_type}>", mode="exec")
    except SyntaxError as e:
        raise HandlerCompileError(event_type, f"syntax error: {e.msg} (line {e.lineno})") from e

    functions: list[ast.AsyncFunctionDef] = []
    for node in module.body:
        if isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant):
            continue
        if not isinstance(node, _ALLOWED_TOP_LEVEL):
            raise HandlerCompileError(
                event_type, f"unexpected top-level {type(node).__name__} statement"
            )
        if isinstance(node, ast.AsyncFunctionDef):
            functions.append(node)

    if len(functions) != 1:
        raise HandlerCompileError(
            event_type, f"expected exactly one 'async def', found {len(functions)}"
        )
    fn = functions[0]
    positional = len(fn.args.posonlyargs) + len(fn.args.args)
    if positional != 2:
        raise HandlerCompileError(
            event_type, f"handler must take (event, context), got {positional} parameters"
        )

    return compile(module, f"<handler {event_type}>", "exec"), fn.name


class CompiledHandler:
    """A step runner for Python handler source.

    The source is parsed on first invocation and the code object cached;
    handles are looked up in the registry on every call.
    """

    def __init__(
        self,
        event_type: str,
        source: str,
        registry: CapabilityRegistry,
        tool_names: list[str],
        agent_names: list[str],
    ) -> None:
        self.event_type = event_type
        self.source = source
        self.tool_names = tool_names
        self.agent_names = agent_names
        self._registry = registry
        self._compiled: tuple[CodeType, str] | None = None

    def _load(self) -> tuple[CodeType, str]:
        if self._compiled is None:
            self._compiled = _handler_code(self.event_type, self.source)
        return self._compiled

    def _namespace(self) -> dict[str, Any]:
        namespace: dict[str, Any] = {"__builtins__": builtins, **HANDLER_GLOBALS}
        for name in self.tool_names:
            namespace[name] = self._registry.tools[name]
        for name in self.agent_names:
            namespace[name] = self._registry.agents[name]
        return namespace

    async def __call__(self, event: WorkflowEvent, context: dict[str, Any]) -> WorkflowEvent:
        code, fn_name = self._load()
        namespace = self._namespace()
        try:
            exec(code, namespace)
            result = await namespace[fn_name](event, context)
            return WorkflowEvent.from_value(result)
        except WorkflowError:
            raise
        except Exception as e:
            raise HandlerRuntimeError(self.event_type, e) from e


class HandlerCompiler:
    """Compiles the steps of one workflow against its capability registry."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self.registry = registry

    def _bound_names(self, step: StepSpec) -> tuple[list[str], list[str]]:
        source = step.handle or ""
        if step.uses is None:
            return (
                scan_names(source, self.registry.tools),
                scan_names(source, self.registry.agents),
            )

        tool_names: list[str] = []
        agent_names: list[str] = []
        for name in dict.fromkeys(step.uses):
            if name in self.registry.tools:
                tool_names.append(name)
            elif name in self.registry.agents:
                agent_names.append(name)
            else:
                raise UnknownToolError(name, f"used by step {step.event} but not declared")
        return tool_names, agent_names

    def compile_step(self, step: StepSpec) -> StepHandle:
        if step.program is not None:
            return compile_program(step.event, step.program, self.registry)

        tool_names, agent_names = self._bound_names(step)
        logger.debug(
            "Compiled handler",
            extra={"event_type": step.event, "tools": tool_names, "agents": agent_names},
        )
        return CompiledHandler(step.event, step.handle or "", self.registry, tool_names, agent_names)
