from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any, Protocol

from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.models.task_state import TaskState


class TaskRepository(Protocol):
    """Persistence contract for tasks. ``compare_and_set`` is the only state mutation."""

    async def insert_tasks(
        self, tasks: Sequence[Task], *, expected_existing: Collection[str] = ()
    ) -> None:
        """Atomically persist ``tasks``.

        Raises ``ConcurrentModificationError`` when any id in ``expected_existing``
        is no longer stored. Parents of inserted sub-tasks get ``has_subtasks`` set.
        """

    async def get_task(self, task_id: str) -> Task:
        """Fetch a task by id or raise ``TaskNotFoundError``."""

    async def get_tasks(self, task_ids: Collection[str]) -> dict[str, Task]:
        """Fetch the stored subset of ``task_ids`` keyed by id."""

    async def list_tasks(
        self,
        *,
        state: TaskState | None = None,
        parent_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Task]:
        """List tasks in dispatch order with optional filters."""

    async def list_children(self, parent_id: str) -> list[Task]:
        """Return the sub-tasks of ``parent_id``."""

    async def list_dependents(self, task_id: str) -> list[Task]:
        """Return tasks whose dependencies include ``task_id``."""

    async def compare_and_set(
        self,
        task_id: str,
        expected: TaskState,
        new_state: TaskState,
        changes: dict[str, Any] | None = None,
    ) -> Task:
        """Move ``task_id`` from ``expected`` to ``new_state`` or raise ``InvalidTransition``."""


class TaskManagerRepository(Protocol):
    """Hands tasks to workers bound to their skill."""

    async def enqueue(self, task: Task) -> str:
        """Schedule a task for execution and return the broker message id."""
