from __future__ import annotations

from dataclasses import dataclass

from src.orchestrator.application.correctness_loop import CorrectnessLoopController
from src.orchestrator.application.dispatcher import ExecutionDispatcher
from src.orchestrator.application.resolver import DependencyResolver
from src.orchestrator.application.services import TaskService
from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.application.task_store import TaskStore
from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.models.task_spec import TaskSpec
from src.orchestrator.domain.repositories import TaskManagerRepository
from src.orchestrator.infrastructure.memory.repository import InMemoryTaskRepository


class StubTaskManager(TaskManagerRepository):
    """Records enqueued tasks instead of talking to a broker."""

    def __init__(self, *, fail: bool = False) -> None:
        self.enqueued_tasks: list[Task] = []
        self.fail = fail

    async def enqueue(self, task: Task) -> str:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.enqueued_tasks.append(task)
        return f"msg-{len(self.enqueued_tasks)}"


@dataclass
class Stack:
    repository: InMemoryTaskRepository
    registry: SkillRegistry
    store: TaskStore
    controller: CorrectnessLoopController
    resolver: DependencyResolver
    dispatcher: ExecutionDispatcher
    service: TaskService
    task_manager: StubTaskManager

    async def run(self, task_id: str, result: object = None):
        """Dispatch a ready task and report it completed."""
        task = await self.store.get(task_id)
        await self.dispatcher.dispatch(task)
        return await self.dispatcher.complete(task_id, result)


def build_stack(*, max_retries: int = 3, task_manager: StubTaskManager | None = None) -> Stack:
    repository = InMemoryTaskRepository()
    registry = SkillRegistry()
    store = TaskStore(repository)
    controller = CorrectnessLoopController(store, max_retries=max_retries)
    resolver = DependencyResolver(repository, registry)
    task_manager = task_manager or StubTaskManager()
    dispatcher = ExecutionDispatcher(store, controller, registry, task_manager)
    service = TaskService(store, resolver, dispatcher)
    return Stack(
        repository=repository,
        registry=registry,
        store=store,
        controller=controller,
        resolver=resolver,
        dispatcher=dispatcher,
        service=service,
        task_manager=task_manager,
    )


def make_spec(
    unique_id: int | None,
    *,
    skill_id: str = "backend-development",
    deps: list[int] | None = None,
    **kwargs,
) -> TaskSpec:
    return TaskSpec(
        unique_id=unique_id,
        skill_id=skill_id,
        task_name=kwargs.pop("task_name", f"task-{unique_id}"),
        logical_dependencies=deps or [],
        **kwargs,
    )
