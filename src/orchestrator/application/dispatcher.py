from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import inject

from src.orchestrator.application.correctness_loop import CorrectnessLoopController, LoopOutcome
from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.application.task_store import TaskStore
from src.orchestrator.domain.exceptions import InvalidTransition
from src.orchestrator.domain.models.task import Task, TaskFailure
from src.orchestrator.domain.models.task_state import FailureKind, TaskState
from src.orchestrator.domain.repositories import TaskManagerRepository

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    task: Task
    loop: LoopOutcome | None = None
    released: list[Task] = field(default_factory=list)


class ExecutionDispatcher:
    """Releases ready tasks to workers, records completions and enforces timeouts."""

    def __init__(
        self,
        store: TaskStore,
        controller: CorrectnessLoopController,
        registry: SkillRegistry,
        task_manager: TaskManagerRepository | None = None,
    ) -> None:
        self._store = store
        self._controller = controller
        self._registry = registry
        self._task_manager = task_manager or inject.instance(TaskManagerRepository)

    async def next_ready(self, limit: int | None = None) -> list[Task]:
        """Ready tasks ordered by ``order``, then creation time, then batch position."""
        ready = await self._store.repository.list_tasks(state=TaskState.READY)
        dispatchable = sorted((t for t in ready if t.is_dispatchable), key=Task.dispatch_key)
        return dispatchable[:limit] if limit is not None else dispatchable

    async def dispatch(self, task: Task) -> Task:
        """Claim ``task`` with a CAS and hand it to a worker. Raises ``InvalidTransition`` if lost."""
        running = await self._store.transition(
            task.id, TaskState.READY, TaskState.RUNNING, started_at=datetime.now(UTC)
        )
        try:
            message_id = await self._task_manager.enqueue(running)
        except Exception as exc:
            logger.exception(
                "Failed to enqueue task", extra={"task_id": task.id, "skill_id": task.skill_id}
            )
            return await self.fail(task.id, f"enqueue failed: {exc}")
        logger.info(
            "Task dispatched",
            extra={"task_id": task.id, "skill_id": task.skill_id, "message_id": message_id},
        )
        return running

    async def dispatch_ready(self, limit: int | None = None) -> list[Task]:
        dispatched: list[Task] = []
        for task in await self.next_ready(limit):
            try:
                dispatched.append(await self.dispatch(task))
            except InvalidTransition:
                logger.debug("Task claimed elsewhere", extra={"task_id": task.id})
        return dispatched

    async def complete(self, task_id: str, result: Any = None) -> CompletionOutcome:
        """Record a worker's successful completion."""
        task = await self._store.transition(
            task_id,
            TaskState.RUNNING,
            TaskState.SUCCEEDED,
            result=result,
            finished_at=datetime.now(UTC),
        )
        logger.info("Task succeeded", extra={"task_id": task_id, "skill_id": task.skill_id})

        loop: LoopOutcome | None = None
        skill = self._registry.find(task.skill_id)
        if skill is not None and skill.category.can_trigger_retry:
            loop = await self._controller.on_critique_succeeded(task)
            if not loop.releases_dependents:
                return CompletionOutcome(task=loop.critique, loop=loop)

        released = await self._store.on_task_succeeded(task)
        return CompletionOutcome(task=task, loop=loop, released=released)

    async def fail(
        self,
        task_id: str,
        reason: str,
        kind: FailureKind = FailureKind.INFRASTRUCTURE,
    ) -> Task:
        """Record an infrastructure or timeout failure. Never retried automatically."""
        task = await self._store.transition(
            task_id,
            TaskState.RUNNING,
            TaskState.FAILED,
            failure=TaskFailure(kind=kind, reason=reason),
            finished_at=datetime.now(UTC),
        )
        logger.warning(
            "Task failed", extra={"task_id": task_id, "kind": kind.value, "reason": reason}
        )
        await self._store.on_task_failed(task)
        return task

    async def sweep_timeouts(self, now: datetime | None = None) -> list[Task]:
        now = now or datetime.now(UTC)
        timed_out: list[Task] = []
        for task in await self._store.repository.list_tasks(state=TaskState.RUNNING):
            if task.started_at is None:
                continue
            if now - task.started_at <= timedelta(seconds=task.timeout_seconds):
                continue
            try:
                timed_out.append(
                    await self.fail(
                        task.id,
                        f"running longer than {task.timeout_seconds}s",
                        FailureKind.TIMEOUT,
                    )
                )
            except InvalidTransition:
                continue
        return timed_out

    async def run(
        self,
        stop: asyncio.Event,
        *,
        dispatch_interval: float = 1.0,
        sweep_interval: float = 15.0,
        batch_size: int | None = None,
    ) -> None:
        """Dispatch and sweep until ``stop`` is set."""
        loop = asyncio.get_running_loop()
        next_sweep = loop.time()
        while not stop.is_set():
            try:
                await self.dispatch_ready(batch_size)
                if loop.time() >= next_sweep:
                    await self.sweep_timeouts()
                    next_sweep = loop.time() + sweep_interval
            except Exception:
                logger.exception("Dispatcher iteration failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=dispatch_interval)
            except TimeoutError:
                pass
