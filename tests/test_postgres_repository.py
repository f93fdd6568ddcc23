from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.orchestrator.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransition,
    TaskNotFoundError,
)
from src.orchestrator.domain.models import FailureKind, RetryFeedback, Task, TaskFailure, TaskState
from src.orchestrator.infrastructure.postgres.orm import PostgresOrm
from src.orchestrator.infrastructure.postgres.repository import PostgresTaskRepository

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _task(task_id: str, **kwargs) -> Task:
    return Task(id=task_id, skill_id="backend-development", name=task_id, created_at=NOW, **kwargs)


async def _repository(tmp_path: Path) -> tuple[PostgresOrm, PostgresTaskRepository]:
    orm = PostgresOrm(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    await orm.create_schema()
    return orm, PostgresTaskRepository(orm)


@pytest.mark.asyncio
async def test_insert_and_read_back_with_dependencies(tmp_path: Path) -> None:
    orm, repository = await _repository(tmp_path)
    try:
        await repository.insert_tasks(
            [
                _task("a", state=TaskState.READY, inputs={"framework": "react"}),
                _task("b", dependencies=["a"], order=1, batch_position=1),
            ]
        )

        stored = await repository.get_task("b")
        dependents = await repository.list_dependents("a")
        ready = await repository.list_tasks(state=TaskState.READY)
    finally:
        await orm.dispose()

    assert stored.dependencies == ["a"]
    assert stored.order == 1
    assert stored.created_at == NOW
    assert [task.id for task in dependents] == ["b"]
    assert [task.id for task in ready] == ["a"]
    assert ready[0].inputs == {"framework": "react"}


@pytest.mark.asyncio
async def test_compare_and_set_only_applies_from_expected_state(tmp_path: Path) -> None:
    orm, repository = await _repository(tmp_path)
    try:
        await repository.insert_tasks([_task("a", state=TaskState.READY)])

        running = await repository.compare_and_set(
            "a", TaskState.READY, TaskState.RUNNING, {"started_at": NOW}
        )
        with pytest.raises(InvalidTransition) as excinfo:
            await repository.compare_and_set("a", TaskState.READY, TaskState.RUNNING)
        with pytest.raises(TaskNotFoundError):
            await repository.compare_and_set("zz", TaskState.READY, TaskState.RUNNING)
    finally:
        await orm.dispose()

    assert running.state == TaskState.RUNNING
    assert running.started_at == NOW
    assert excinfo.value.actual == TaskState.RUNNING


@pytest.mark.asyncio
async def test_failure_and_feedback_history_are_persisted(tmp_path: Path) -> None:
    orm, repository = await _repository(tmp_path)
    feedback = RetryFeedback(summary="missing tests", issues=["no unit tests"], attempt=1, created_at=NOW)
    try:
        await repository.insert_tasks([_task("a", state=TaskState.SUCCEEDED)])
        await repository.compare_and_set(
            "a",
            TaskState.SUCCEEDED,
            TaskState.READY,
            {"retry_feedback": feedback, "feedback_history": [feedback], "retry_count": 1},
        )
        failed = await repository.compare_and_set(
            "a",
            TaskState.READY,
            TaskState.FAILED,
            {"failure": TaskFailure(kind=FailureKind.RETRY_LIMIT_EXCEEDED, feedback=[feedback])},
        )
    finally:
        await orm.dispose()

    assert failed.retry_count == 1
    assert failed.retry_feedback == feedback
    assert failed.feedback_history == [feedback]
    assert failed.failure.kind == FailureKind.RETRY_LIMIT_EXCEEDED
    assert failed.failure.feedback == [feedback]


@pytest.mark.asyncio
async def test_insert_fails_when_referenced_task_vanished(tmp_path: Path) -> None:
    orm, repository = await _repository(tmp_path)
    try:
        with pytest.raises(ConcurrentModificationError) as excinfo:
            await repository.insert_tasks([_task("b")], expected_existing={"a"})
        remaining = await repository.list_tasks()
    finally:
        await orm.dispose()

    assert excinfo.value.missing_ids == ["a"]
    assert remaining == []


@pytest.mark.asyncio
async def test_subtask_insert_marks_parent(tmp_path: Path) -> None:
    orm, repository = await _repository(tmp_path)
    try:
        await repository.insert_tasks([_task("parent", state=TaskState.READY)])
        await repository.insert_tasks(
            [_task("child", parent_id="parent")], expected_existing={"parent"}
        )
        parent = await repository.get_task("parent")
        children = await repository.list_children("parent")
    finally:
        await orm.dispose()

    assert parent.has_subtasks is True
    assert [child.id for child in children] == ["child"]
