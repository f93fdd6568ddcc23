import pytest

from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.domain.models import RetryFeedback, SkillCategory, Task, TaskState
from src.orchestrator.infrastructure.celery.task_manager import CeleryTaskManager
from src.orchestrator.infrastructure.celery.task_registry import RUN_SKILL_TASK, TaskRegistry


class FakeAsyncResult:
    def __init__(self, message_id: str) -> None:
        self.id = message_id


class FakeCelery:
    def __init__(self) -> None:
        self.sent: list[tuple[str, list, str | None]] = []

    def send_task(self, name: str, args: list, queue: str | None = None) -> FakeAsyncResult:
        self.sent.append((name, args, queue))
        return FakeAsyncResult(f"celery-{len(self.sent)}")


@pytest.mark.asyncio
async def test_enqueue_routes_by_skill_category() -> None:
    celery = FakeCelery()
    manager = CeleryTaskManager(
        celery, SkillRegistry(), TaskRegistry({"critique": "critique-tasks"})
    )
    feedback = RetryFeedback(summary="add tests", attempt=1)
    task = Task(
        id="t1",
        skill_id="qa",
        name="review",
        state=TaskState.RUNNING,
        inputs={"critiquesTasks": ["t0"]},
        retry_feedback=feedback,
        retry_count=1,
    )

    message_id = await manager.enqueue(task)

    assert message_id == "celery-1"
    name, args, queue = celery.sent[0]
    assert (name, queue) == (RUN_SKILL_TASK, "critique-tasks")
    assert args[0]["task_id"] == "t1"
    assert args[0]["inputs"] == {"critiquesTasks": ["t0"]}
    assert args[0]["retry_feedback"]["summary"] == "add tests"


@pytest.mark.asyncio
async def test_enqueue_uses_default_queue_for_unmapped_category() -> None:
    celery = FakeCelery()
    manager = CeleryTaskManager(celery, SkillRegistry())

    await manager.enqueue(Task(id="t2", skill_id="testing", name="unit tests"))

    assert celery.sent[0][2] is None


def test_planner_has_no_route() -> None:
    with pytest.raises(ValueError):
        TaskRegistry().route_for_category(SkillCategory.PLANNER)
