"""CLI entrypoint for the workflow DSL engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from workflow_dsl import __version__
from workflow_dsl.agents.service import AgentService
from workflow_dsl.core.config import Settings
from workflow_dsl.core.errors import WorkflowError
from workflow_dsl.engine.discovery import WorkflowDiscovery
from workflow_dsl.engine.resolver import CapabilityResolver
from workflow_dsl.engine.service import WorkflowService
from workflow_dsl.state.store import DefinitionStore, StoreCorruptedError
from workflow_dsl.tools.builtin import BuiltinToolkit
from workflow_dsl.tools.knowledge_base import KnowledgeBaseToolkit, Retriever
from workflow_dsl.tools.registry import ToolRegistry
from workflow_dsl.tools.workflow_toolkit import WorkflowToolkit

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Runtime:
    store: DefinitionStore
    tools: ToolRegistry
    agents: AgentService
    service: WorkflowService
    discovery: WorkflowDiscovery


def build_runtime(settings: Settings, retriever: Retriever | None = None) -> Runtime:
    """Wire the store, tool registry, agent service and workflow service together.

    The knowledge-base toolkit is only registered when a ``retriever`` is given.
    """
    # Registers the code-defined workflows for discovery.
    import workflow_dsl.workflows  # noqa: F401

    store = DefinitionStore(settings.store.store_file)
    workflow_toolkit = WorkflowToolkit(store)
    tools = ToolRegistry(store, [BuiltinToolkit(), workflow_toolkit])
    if retriever is not None:
        tools.register_toolkit(KnowledgeBaseToolkit(store, retriever))

    agents = AgentService(tools, settings.llm)
    resolver = CapabilityResolver(tools, agents, store)
    service = WorkflowService(store, resolver, settings.engine)
    workflow_toolkit.bind(service.execute)

    return Runtime(
        store=store,
        tools=tools,
        agents=agents,
        service=service,
        discovery=WorkflowDiscovery(store),
    )


def _json_value(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def _load_dsl(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-dsl",
        description="Validate, register and execute workflow DSL documents",
    )
    parser.add_argument("--version", action="version", version=f"workflow-dsl-engine {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_cmd = subparsers.add_parser("validate", help="Structurally validate a DSL file")
    validate_cmd.add_argument("file", type=Path, help="Path to a DSL JSON document")

    register = subparsers.add_parser("register", help="Store a DSL file as a workflow")
    register.add_argument("file", type=Path, help="Path to a DSL JSON document")
    register.add_argument("--name", default=None, help="Workflow name (defaults to the DSL name)")
    register.add_argument(
        "--description",
        default=None,
        help="Workflow description (defaults to the DSL description)",
    )
    register.add_argument("--user", required=True, help="Owner of the workflow")

    list_cmd = subparsers.add_parser("list", help="List workflows visible to a user")
    list_cmd.add_argument("--user", required=True, help="User whose workflows to list")

    execute = subparsers.add_parser("execute", help="Execute a stored workflow")
    execute.add_argument("workflow_id", help="Stored workflow id")
    execute.add_argument(
        "--input",
        type=_json_value,
        default={},
        help="WORKFLOW_START data as JSON, e.g. '{\"input\": \"What time is it?\"}'",
    )
    execute.add_argument(
        "--context",
        type=_json_value,
        default=None,
        help="Initial execution context as a JSON object",
    )
    execute.add_argument("--user", default=None, help="Caller id used for visibility checks")
    execute.add_argument(
        "--max-seconds",
        type=float,
        default=0.0,
        help="Abort the run after this many seconds (0 means no timeout)",
    )

    subparsers.add_parser(
        "sync-code-workflows",
        help="Store code-defined workflows and retire obsolete ones",
    )

    return parser


async def _execute(runtime: Runtime, args: argparse.Namespace) -> dict[str, Any]:
    run = runtime.service.execute(args.workflow_id, args.input, args.context, args.user)
    result = await (asyncio.wait_for(run, args.max_seconds) if args.max_seconds > 0 else run)
    return result.model_dump(mode="json", by_alias=True)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    settings.setup_logging()

    try:
        runtime = build_runtime(settings)

        if args.command == "validate":
            dsl = _load_dsl(args.file)
            runtime.service.validate_dsl(dsl)
            print(f"DSL is valid: {dsl['id']}")
            return 0

        if args.command == "register":
            dsl = _load_dsl(args.file)
            record = runtime.service.create_workflow(
                name=args.name or str(dsl.get("name") or ""),
                description=(
                    args.description
                    if args.description is not None
                    else str(dsl.get("description") or "")
                ),
                dsl=dsl,
                created_by=args.user,
            )
            logger.info(
                "Workflow persisted",
                extra={"path": str(settings.store.store_file), "workflow_id": record.id},
            )
            print(f"Registered workflow {record.id}: {record.name}")
            return 0

        if args.command == "list":
            for record in runtime.service.list_workflows(args.user):
                print(f"{record.id}\t{record.source}\t{record.name}")
            return 0

        if args.command == "execute":
            output = asyncio.run(_execute(runtime, args))
            print(json.dumps(output, indent=2, ensure_ascii=False))
            return 0

        if args.command == "sync-code-workflows":
            synced = runtime.discovery.run()
            print(f"Synced {len(synced)} code workflow(s): {', '.join(synced) or 'none'}")
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except WorkflowError as e:
        logger.error(str(e), extra={"error_type": type(e).__name__})
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 2

    except StoreCorruptedError as e:
        logger.error(str(e), extra={"path": str(e.path)})
        print(f"{e} (fix or move the file aside)", file=sys.stderr)
        return 2

    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Cannot read DSL file", extra={"error": str(e)})
        print(f"Cannot read DSL file: {e}", file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
