"""Workflows defined in Python code.

A code workflow is a :class:`BaseWorkflow` subclass tagged with
:func:`workflow_id`. On startup :class:`WorkflowDiscovery` upserts every
tagged workflow into the store with ``source="code"`` and soft-deletes code
workflows that no longer exist.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from workflow_dsl.engine.dsl import validate
from workflow_dsl.state.store import DefinitionStore

logger = logging.getLogger(__name__)

_W = TypeVar("_W", bound=type["BaseWorkflow"])

_REGISTERED: list[type[BaseWorkflow]] = []


class BaseWorkflow(ABC):
    """Base class of code-defined workflows."""

    workflow_id: str | None = None

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @abstractmethod
    def get_dsl(self) -> dict[str, Any]:
        """Return the workflow's DSL document."""

    @property
    def id(self) -> str:
        wf_id = type(self).workflow_id
        if not wf_id:
            raise ValueError(f"{type(self).__name__} is not tagged with @workflow_id")
        return wf_id


def workflow_id(wf_id: str) -> Callable[[_W], _W]:
    """Tag a :class:`BaseWorkflow` subclass with its stored id and register it."""

    def decorator(cls: _W) -> _W:
        cls.workflow_id = wf_id
        _REGISTERED.append(cls)
        return cls

    return decorator


def registered_workflows() -> list[type[BaseWorkflow]]:
    return list(_REGISTERED)


class WorkflowDiscovery:
    def __init__(
        self,
        store: DefinitionStore,
        workflows: Iterable[type[BaseWorkflow]] | None = None,
    ) -> None:
        self._store = store
        self._classes = list(workflows) if workflows is not None else registered_workflows()
        self._instances: dict[str, BaseWorkflow] = {}

    def discover(self) -> dict[str, BaseWorkflow]:
        """Instantiate every tagged workflow class.

        Raises:
            ValueError: Two classes share one workflow id.
        """
        instances: dict[str, BaseWorkflow] = {}
        for cls in self._classes:
            instance = cls()
            if instance.id in instances:
                raise ValueError(f"Workflow with ID {instance.id} is already registered.")
            instances[instance.id] = instance
            logger.info("Discovered code-defined workflow", extra={"workflow_id": instance.id})
        self._instances = instances
        return dict(instances)

    def sync(self) -> None:
        for wf_id, instance in self._instances.items():
            dsl = instance.get_dsl()
            validate(dsl)

            existing = self._store.find_by_id(wf_id)
            if existing is not None and existing.deleted:
                logger.info("Reactivating previously deleted code workflow", extra={"workflow_id": wf_id})

            self._store.upsert_workflow(
                workflow_id=wf_id,
                name=instance.name,
                description=instance.description,
                dsl=dsl,
                source="code",
            )
            logger.info("Synced code workflow", extra={"workflow_id": wf_id})

    def cleanup_obsolete(self) -> list[str]:
        """Soft-delete stored code workflows with no class behind them."""

        removed: list[str] = []
        for record in self._store.list_workflows():
            if record.source != "code" or record.id in self._instances:
                continue
            self._store.update_workflow(record.id, deleted=True)
            logger.warning("Marked obsolete code workflow as deleted", extra={"workflow_id": record.id})
            removed.append(record.id)
        return removed

    def run(self) -> list[str]:
        """Discover, sync and clean up; returns the ids of synced workflows."""

        logger.info("Starting workflow discovery and synchronization")
        self.discover()
        self.sync()
        self.cleanup_obsolete()
        logger.info("Workflow discovery and synchronization completed", extra={"count": len(self._instances)})
        return list(self._instances)

    def is_code_workflow(self, wf_id: str) -> bool:
        return wf_id in self._instances
