from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Collection, Sequence
from typing import Any

from src.orchestrator.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransition,
    TaskNotFoundError,
)
from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.models.task_state import TaskState
from src.orchestrator.domain.repositories import TaskRepository


class InMemoryTaskRepository(TaskRepository):
    """Process-local task storage guarded by a single asyncio lock."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._children: dict[str, list[str]] = defaultdict(list)
        self._dependents: dict[str, list[str]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def insert_tasks(
        self, tasks: Sequence[Task], *, expected_existing: Collection[str] = ()
    ) -> None:
        async with self._lock:
            missing = [tid for tid in expected_existing if tid not in self._tasks]
            if missing:
                raise ConcurrentModificationError(missing)
            for task in tasks:
                if task.id is None or task.id in self._tasks:
                    raise ValueError(f"Task id {task.id!r} is missing or already used")
            for task in tasks:
                self._tasks[task.id] = task.model_copy(deep=True)
                for dep in task.dependencies:
                    self._dependents[dep].append(task.id)
                if task.parent_id is not None:
                    self._children[task.parent_id].append(task.id)
                    parent = self._tasks[task.parent_id]
                    if not parent.has_subtasks:
                        self._tasks[task.parent_id] = parent.model_copy(update={"has_subtasks": True})

    async def get_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    async def get_tasks(self, task_ids: Collection[str]) -> dict[str, Task]:
        return {
            tid: self._tasks[tid].model_copy(deep=True) for tid in task_ids if tid in self._tasks
        }

    async def list_tasks(
        self,
        *,
        state: TaskState | None = None,
        parent_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Task]:
        rows = [
            task
            for task in self._tasks.values()
            if (state is None or task.state == state)
            and (parent_id is None or task.parent_id == parent_id)
        ]
        rows.sort(key=Task.dispatch_key)
        end = offset + limit if limit is not None else None
        return [task.model_copy(deep=True) for task in rows[offset:end]]

    async def list_children(self, parent_id: str) -> list[Task]:
        children = [self._tasks[tid] for tid in self._children.get(parent_id, [])]
        return [task.model_copy(deep=True) for task in sorted(children, key=Task.dispatch_key)]

    async def list_dependents(self, task_id: str) -> list[Task]:
        return [self._tasks[tid].model_copy(deep=True) for tid in self._dependents.get(task_id, [])]

    async def compare_and_set(
        self,
        task_id: str,
        expected: TaskState,
        new_state: TaskState,
        changes: dict[str, Any] | None = None,
    ) -> Task:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if current.state != expected:
                raise InvalidTransition(task_id, expected, current.state)
            updated = current.model_copy(update={**(changes or {}), "state": new_state}, deep=True)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)
