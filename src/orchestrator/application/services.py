from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, cast

import inject

from src.orchestrator.application.dispatcher import CompletionOutcome, ExecutionDispatcher
from src.orchestrator.application.resolver import DependencyResolver, ResolvedBatch
from src.orchestrator.application.task_store import TaskStore
from src.orchestrator.domain.exceptions import (
    BatchValidationError,
    ConcurrentModificationError,
    InvalidTransition,
    ViolationKind,
)
from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.models.task_spec import TaskSpec
from src.orchestrator.domain.models.task_state import FailureKind, TaskState

logger = logging.getLogger(__name__)


class TaskService:
    """Entry point used by the API and the event handlers."""

    def __init__(
        self,
        store: TaskStore | None = None,
        resolver: DependencyResolver | None = None,
        dispatcher: ExecutionDispatcher | None = None,
        *,
        commit_attempts: int = 3,
    ) -> None:
        self._store = store or cast(TaskStore, inject.instance(TaskStore))
        self._resolver = resolver or cast(DependencyResolver, inject.instance(DependencyResolver))
        self._dispatcher = dispatcher or cast(
            ExecutionDispatcher, inject.instance(ExecutionDispatcher)
        )
        self._commit_attempts = commit_attempts

    async def create_batch(self, specs: Sequence[TaskSpec]) -> dict[int, str]:
        """
        Validate and persist a batch of task specs atomically.

        Returns the created task ids keyed by ``uniqueId``.
        """
        resolved, _ = await self._resolve_and_create(specs, parent=None)
        return dict(resolved.id_map)

    async def create_task(self, spec: TaskSpec) -> Task:
        """Create a single top-level task."""
        _, tasks = await self._resolve_and_create([spec], parent=None)
        return tasks[0]

    async def create_subtask(self, parent_id: str, spec: TaskSpec) -> Task:
        """Attach a sub-task to a top-level task."""
        parent = await self._store.get(parent_id)
        if parent.parent_id is not None:
            raise BatchValidationError.single(
                ViolationKind.INVALID_PARENT_NESTING,
                f"Task '{parent_id}' is itself a sub-task and cannot have sub-tasks",
                unique_ids=[spec.unique_id] if spec.unique_id is not None else [],
                task_ids=[parent_id],
            )
        if parent.state not in (TaskState.PLANNED, TaskState.READY):
            # Once a parent is running or finished its sub-task set is fixed.
            raise InvalidTransition(parent_id, TaskState.READY, parent.state)
        _, tasks = await self._resolve_and_create([spec], parent=parent)
        return tasks[0]

    async def get_task(self, task_id: str) -> Task:
        return await self._store.get(task_id)

    async def list_tasks(
        self,
        *,
        state: TaskState | None = None,
        parent_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        return await self._store.repository.list_tasks(
            state=state, parent_id=parent_id, limit=limit, offset=offset
        )

    async def cancel_task(self, task_id: str, reason: str | None = None) -> list[Task]:
        return await self._store.cancel(task_id, reason)

    async def retry_task(self, task_id: str) -> Task:
        """Re-submit a failed or cancelled task."""
        task = await self._store.get(task_id)
        if task.state not in {TaskState.FAILED, TaskState.CANCELLED}:
            raise InvalidTransition(task_id, TaskState.FAILED, task.state)
        reopened = await self._store.resubmit(task)
        logger.info(
            "Task re-submitted",
            extra={"task_id": task_id, "state": reopened.state.value},
        )
        return reopened

    async def complete_task(self, task_id: str, result: Any = None) -> CompletionOutcome:
        return await self._dispatcher.complete(task_id, result)

    async def fail_task(
        self, task_id: str, reason: str, kind: FailureKind = FailureKind.INFRASTRUCTURE
    ) -> Task:
        return await self._dispatcher.fail(task_id, reason, kind)

    async def _resolve_and_create(
        self, specs: Sequence[TaskSpec], *, parent: Task | None
    ) -> tuple[ResolvedBatch, list[Task]]:
        attempts = 0
        while True:
            attempts += 1
            resolved = await self._resolver.resolve(specs, parent=parent)
            expected = set(resolved.external_ids)
            if parent is not None:
                expected.add(parent.id)
            try:
                created = await self._store.create(resolved.tasks, expected_existing=expected)
            except ConcurrentModificationError as exc:
                if attempts >= self._commit_attempts:
                    raise
                logger.info(
                    "Batch references changed before commit; re-validating",
                    extra={"missing": exc.missing_ids, "attempt": attempts},
                )
                continue
            return resolved, created
