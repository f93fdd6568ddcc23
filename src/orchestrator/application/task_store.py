from __future__ import annotations

import logging
from collections import deque
from collections.abc import Collection, Sequence
from datetime import UTC, datetime
from typing import Any

import inject

from src.orchestrator.domain.exceptions import InvalidTransition
from src.orchestrator.domain.models.feedback import RetryFeedback
from src.orchestrator.domain.models.task import Task, TaskFailure
from src.orchestrator.domain.models.task_state import FailureKind, TaskState
from src.orchestrator.domain.repositories import TaskRepository

logger = logging.getLogger(__name__)

_CAS_ATTEMPTS = 5
_REOPEN_CLEARS: dict[str, Any] = {
    "result": None,
    "failure": None,
    "started_at": None,
    "finished_at": None,
    "subtasks_completed": False,
}


class TaskStore:
    """
    Task lifecycle rules on top of a ``TaskRepository``.

    Every state change goes through the repository's compare-and-set; this class
    only decides which transitions to attempt.
    """

    def __init__(self, repository: TaskRepository | None = None) -> None:
        self._repository = repository or inject.instance(TaskRepository)

    @property
    def repository(self) -> TaskRepository:
        return self._repository

    async def create(
        self, tasks: Sequence[Task], *, expected_existing: Collection[str] = ()
    ) -> list[Task]:
        """Persist a resolved batch atomically with its initial states."""
        now = datetime.now(UTC)
        new_ids = {task.id for task in tasks}
        outside = {
            ref
            for task in tasks
            for ref in (*task.dependencies, task.parent_id)
            if ref is not None and ref not in new_ids
        }
        known = await self._repository.get_tasks(outside) if outside else {}

        for task in tasks:
            task.created_at = now
            task.updated_at = now
            task.state = (
                TaskState.READY if self._eligible_with(task, known) else TaskState.PLANNED
            )

        await self._repository.insert_tasks(
            tasks, expected_existing=set(expected_existing) | outside
        )
        logger.info(
            "Tasks created",
            extra={"count": len(tasks), "ready": sum(t.state == TaskState.READY for t in tasks)},
        )

        # A dependency may have succeeded between the read above and the insert.
        created = list(tasks)
        for index, task in enumerate(created):
            if task.state == TaskState.PLANNED and not (set(task.dependencies) & new_ids):
                promoted = await self._promote(task)
                if promoted is not None:
                    created[index] = promoted
        return created

    async def get(self, task_id: str) -> Task:
        return await self._repository.get_task(task_id)

    async def transition(
        self, task_id: str, from_state: TaskState, to_state: TaskState, **changes: Any
    ) -> Task:
        changes["updated_at"] = datetime.now(UTC)
        task = await self._repository.compare_and_set(task_id, from_state, to_state, changes)
        logger.debug(
            "Task transitioned",
            extra={"task_id": task_id, "from": from_state.value, "to": to_state.value},
        )
        return task

    async def on_dependency_succeeded(self, dep_id: str) -> list[Task]:
        """Promote dependents of ``dep_id`` whose dependencies have all succeeded."""
        promoted: list[Task] = []
        for dependent in await self._repository.list_dependents(dep_id):
            task = await self._promote(dependent)
            if task is not None:
                promoted.append(task)
        return promoted

    async def on_task_succeeded(self, task: Task) -> list[Task]:
        """Release dependents and apply the sub-task completion rule."""
        promoted = await self.on_dependency_succeeded(task.id)
        if task.parent_id is not None:
            parent = await self._complete_parent_if_done(task.parent_id)
            if parent is not None:
                promoted.extend(await self.on_task_succeeded(parent))
        return promoted

    async def on_task_failed(self, task: Task) -> list[Task]:
        """A failed sub-task fails its parent and cancels the remaining siblings."""
        if task.parent_id is None:
            return []
        affected: list[Task] = []
        failure = TaskFailure(
            kind=FailureKind.SUBTASK_FAILED,
            reason=f"Sub-task '{task.id}' failed",
        )
        parent = await self._force(
            task.parent_id,
            TaskState.FAILED,
            failure=failure,
            finished_at=datetime.now(UTC),
        )
        if parent is not None:
            affected.append(parent)
            logger.warning(
                "Parent failed by sub-task",
                extra={"task_id": parent.id, "subtask_id": task.id},
            )
        for sibling in await self._repository.list_children(task.parent_id):
            if sibling.state.is_terminal:
                continue
            cancelled = await self._force(sibling.id, TaskState.CANCELLED, finished_at=datetime.now(UTC))
            if cancelled is not None:
                affected.append(cancelled)
        return affected

    async def cancel(self, task_id: str, reason: str | None = None) -> list[Task]:
        """
        Cancel a task together with its incomplete sub-tasks, its parent and,
        transitively, every dependent that has not reached a terminal state.
        """
        root = await self._repository.get_task(task_id)
        if root.state.is_terminal:
            logger.info(
                "Cancel ignored for terminal task",
                extra={"task_id": task_id, "state": root.state.value},
            )
            return []

        cancelled: list[Task] = []
        seen: set[str] = set()
        queue: deque[str] = deque([task_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            task = await self._force(
                current,
                TaskState.CANCELLED,
                failure=None,
                finished_at=datetime.now(UTC),
            )
            if task is None:
                continue
            cancelled.append(task)
            for child in await self._repository.list_children(current):
                queue.append(child.id)
            for dependent in await self._repository.list_dependents(current):
                queue.append(dependent.id)
            if task.parent_id is not None:
                # A parent cannot complete once one of its sub-tasks is cancelled.
                queue.append(task.parent_id)

        logger.info(
            "Tasks cancelled",
            extra={"task_id": task_id, "count": len(cancelled), "reason": reason},
        )
        return cancelled

    async def reset_for_retry(
        self, task: Task, feedback: RetryFeedback, retry_count: int
    ) -> Task:
        """Re-open a terminal task as ``ready`` with critique feedback attached."""
        reset = await self.transition(
            task.id,
            task.state,
            TaskState.READY,
            retry_feedback=feedback,
            feedback_history=[*task.feedback_history, feedback],
            retry_count=retry_count,
            **_REOPEN_CLEARS,
        )
        await self._hold_dependents(reset.id)
        if reset.has_subtasks:
            await self._replay_children(reset, feedback)
        return reset

    async def resubmit(self, task: Task) -> Task:
        """Operator re-submission of a failed or cancelled task."""
        target = TaskState.READY if await self._is_eligible(task) else TaskState.PLANNED
        reopened = await self.transition(task.id, task.state, target, **_REOPEN_CLEARS)
        if reopened.has_subtasks:
            await self._replay_children(reopened, None)
        return reopened

    async def _replay_children(self, parent: Task, feedback: RetryFeedback | None) -> None:
        changes = dict(_REOPEN_CLEARS)
        if feedback is not None:
            changes["retry_feedback"] = feedback
        for child in await self._repository.list_children(parent.id):
            if child.state != TaskState.PLANNED:
                await self._force(child.id, TaskState.PLANNED, **changes)
            await self._hold_dependents(child.id)
        if parent.state == TaskState.READY:
            await self._open_children(parent)

    async def _hold_dependents(self, task_id: str) -> list[Task]:
        """Send ready dependents of a re-opened task back to ``planned``, transitively."""
        held: list[Task] = []
        seen: set[str] = set()
        queue: deque[str] = deque([task_id])
        while queue:
            current = queue.popleft()
            for dependent in await self._repository.list_dependents(current):
                if dependent.id in seen or dependent.state != TaskState.READY:
                    continue
                seen.add(dependent.id)
                try:
                    demoted = await self.transition(
                        dependent.id, TaskState.READY, TaskState.PLANNED
                    )
                except InvalidTransition:
                    continue
                held.append(demoted)
                queue.append(demoted.id)
                for child in await self._repository.list_children(demoted.id):
                    if child.state == TaskState.READY:
                        try:
                            held.append(
                                await self.transition(child.id, TaskState.READY, TaskState.PLANNED)
                            )
                        except InvalidTransition:
                            continue
        if held:
            logger.info(
                "Dependents held for rebuild",
                extra={"task_id": task_id, "held": [t.id for t in held]},
            )
        return held

    async def _complete_parent_if_done(self, parent_id: str) -> Task | None:
        children = await self._repository.list_children(parent_id)
        if not children or any(child.state != TaskState.SUCCEEDED for child in children):
            return None
        try:
            parent = await self.transition(
                parent_id,
                TaskState.READY,
                TaskState.SUCCEEDED,
                subtasks_completed=True,
                finished_at=datetime.now(UTC),
            )
        except InvalidTransition:
            return None
        logger.info("Parent completed by sub-tasks", extra={"task_id": parent_id})
        return parent

    async def _promote(self, task: Task) -> Task | None:
        if task.state != TaskState.PLANNED or not await self._is_eligible(task):
            return None
        try:
            promoted = await self.transition(task.id, TaskState.PLANNED, TaskState.READY)
        except InvalidTransition:
            return None
        if promoted.has_subtasks:
            await self._open_children(promoted)
        return promoted

    async def _open_children(self, parent: Task) -> None:
        for child in await self._repository.list_children(parent.id):
            await self._promote(child)

    async def _is_eligible(self, task: Task) -> bool:
        refs = set(task.dependencies)
        if task.parent_id is not None:
            refs.add(task.parent_id)
        known = await self._repository.get_tasks(refs) if refs else {}
        return self._eligible_with(task, known)

    @staticmethod
    def _eligible_with(task: Task, known: dict[str, Task]) -> bool:
        for dep in task.dependencies:
            dep_task = known.get(dep)
            if dep_task is None or dep_task.state != TaskState.SUCCEEDED:
                return False
        if task.parent_id is not None:
            parent = known.get(task.parent_id)
            if parent is None or parent.state != TaskState.READY:
                return False
        return True

    async def _force(self, task_id: str, to_state: TaskState, **changes: Any) -> Task | None:
        """Move a non-terminal task (or any task when re-planning) to ``to_state``, re-reading on races."""
        for _ in range(_CAS_ATTEMPTS):
            current = await self._repository.get_task(task_id)
            if current.state == to_state:
                return None
            if current.state.is_terminal and to_state != TaskState.PLANNED:
                return None
            try:
                return await self.transition(task_id, current.state, to_state, **changes)
            except InvalidTransition:
                continue
        logger.warning(
            "Gave up forcing task state",
            extra={"task_id": task_id, "to": to_state.value},
        )
        return None
