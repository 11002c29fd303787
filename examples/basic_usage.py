#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the engine components directly:

* load settings from `.env`
* register a DSL document whose single step is a declarative program
* execute it and print the result envelope

The workflow only calls the built-in ``getCurrentTime`` tool, so no LLM
credentials are needed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Sequence

from workflow_dsl.core.config import Settings
from workflow_dsl.core.errors import WorkflowError
from workflow_dsl.main import build_runtime

GREETING_DSL: dict[str, Any] = {
    "id": "greetingWorkflow",
    "name": "Greeting",
    "description": "Greets the caller and reports the current time",
    "version": "v1",
    "tools": ["getCurrentTime"],
    "events": [
        {"type": "WORKFLOW_START", "data": {"input": "string"}},
        {"type": "WORKFLOW_STOP", "data": {"result": "string"}},
    ],
    "steps": [
        {
            "event": "WORKFLOW_START",
            "program": {
                "let": {"now": {"tool": "getCurrentTime", "args": {"timezone": "UTC"}}},
                "in": {
                    "emit": "WORKFLOW_STOP",
                    "data": {
                        "result": {
                            "format": "Hello {name}, it is {now}.",
                            "values": {
                                "name": {"field": "event.data.input"},
                                "now": {"field": "vars.now"},
                            },
                        }
                    },
                },
            },
        }
    ],
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register and run a workflow (programmatic example).")
    parser.add_argument("--name", default="world", help="Name to greet")
    parser.add_argument("--user", default="example-user", help="Owner of the registered workflow")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = Settings()
    settings.setup_logging()

    runtime = build_runtime(settings)
    record = runtime.service.create_workflow(
        name=GREETING_DSL["name"],
        description=GREETING_DSL["description"],
        dsl=GREETING_DSL,
        created_by=args.user,
    )

    try:
        result = asyncio.run(runtime.service.execute(record.id, {"input": args.name}, caller_id=args.user))
    except WorkflowError as exc:
        print(f"Workflow failed: {exc}")
        return 1

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    print(f"Persisted to: {settings.store.store_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
