import pytest

from src.orchestrator.domain.exceptions import InvalidTransition, TaskNotFoundError
from src.orchestrator.domain.models import FailureKind, TaskState

from tests.support import make_spec


@pytest.mark.asyncio
async def test_dependents_become_ready_only_after_every_dependency_succeeds(stack) -> None:
    ids = await stack.service.create_batch(
        [make_spec(1), make_spec(2), make_spec(3, deps=[1, 2])]
    )

    await stack.run(ids[1], "first")
    assert (await stack.store.get(ids[3])).state == TaskState.PLANNED

    outcome = await stack.run(ids[2], "second")

    assert [task.id for task in outcome.released] == [ids[3]]
    assert (await stack.store.get(ids[3])).state == TaskState.READY


@pytest.mark.asyncio
async def test_transition_is_compare_and_set(stack) -> None:
    task = await stack.service.create_task(make_spec(None))

    with pytest.raises(InvalidTransition) as excinfo:
        await stack.store.transition(task.id, TaskState.RUNNING, TaskState.SUCCEEDED)

    assert excinfo.value.actual == TaskState.READY
    assert (await stack.store.get(task.id)).state == TaskState.READY


@pytest.mark.asyncio
async def test_unknown_task_raises_not_found(stack) -> None:
    with pytest.raises(TaskNotFoundError):
        await stack.store.get("missing")


@pytest.mark.asyncio
async def test_parent_succeeds_once_all_subtasks_succeed(stack) -> None:
    parent = await stack.service.create_task(make_spec(None, task_name="feature"))
    first = await stack.service.create_subtask(parent.id, make_spec(None, task_name="a"))
    second = await stack.service.create_subtask(parent.id, make_spec(None, task_name="b"))

    assert first.state == TaskState.READY
    assert [t.id for t in await stack.dispatcher.next_ready()] == [first.id, second.id]

    await stack.run(first.id, "a done")
    assert (await stack.store.get(parent.id)).state == TaskState.READY

    await stack.run(second.id, "b done")
    stored = await stack.store.get(parent.id)
    assert stored.state == TaskState.SUCCEEDED
    assert stored.subtasks_completed is True


@pytest.mark.asyncio
async def test_parent_completion_releases_its_dependents(stack) -> None:
    ids = await stack.service.create_batch([make_spec(1), make_spec(2, deps=[1])])
    child = await stack.service.create_subtask(ids[1], make_spec(None, task_name="only"))

    await stack.run(child.id, "done")

    assert (await stack.store.get(ids[2])).state == TaskState.READY


@pytest.mark.asyncio
async def test_failed_subtask_fails_parent_and_cancels_siblings(stack) -> None:
    parent = await stack.service.create_task(make_spec(None, task_name="feature"))
    first = await stack.service.create_subtask(parent.id, make_spec(None, task_name="a"))
    second = await stack.service.create_subtask(parent.id, make_spec(None, task_name="b"))

    await stack.dispatcher.dispatch(first)
    await stack.dispatcher.fail(first.id, "agent crashed")

    stored_parent = await stack.store.get(parent.id)
    assert stored_parent.state == TaskState.FAILED
    assert stored_parent.failure.kind == FailureKind.SUBTASK_FAILED
    assert (await stack.store.get(second.id)).state == TaskState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_cascades_to_dependents_and_subtasks(stack) -> None:
    ids = await stack.service.create_batch(
        [make_spec(1), make_spec(2, deps=[1]), make_spec(3, deps=[2]), make_spec(4)]
    )
    child = await stack.service.create_subtask(ids[1], make_spec(None, task_name="part"))

    cancelled = await stack.service.cancel_task(ids[1], "no longer needed")

    assert {task.id for task in cancelled} == {ids[1], ids[2], ids[3], child.id}
    assert (await stack.store.get(ids[4])).state == TaskState.READY


@pytest.mark.asyncio
async def test_cancelling_a_subtask_cancels_its_parent_and_siblings(stack) -> None:
    ids = await stack.service.create_batch([make_spec(1), make_spec(2, deps=[1])])
    first = await stack.service.create_subtask(ids[1], make_spec(None, task_name="a"))
    second = await stack.service.create_subtask(ids[1], make_spec(None, task_name="b"))

    cancelled = await stack.service.cancel_task(first.id, "dropped")

    assert {task.id for task in cancelled} == {first.id, second.id, ids[1], ids[2]}
    for task_id in (first.id, second.id, ids[1], ids[2]):
        assert (await stack.store.get(task_id)).state == TaskState.CANCELLED
    assert await stack.dispatcher.next_ready() == []


@pytest.mark.asyncio
async def test_subtask_cannot_be_added_to_a_running_parent(stack) -> None:
    parent = await stack.service.create_task(make_spec(None, task_name="feature"))
    await stack.dispatcher.dispatch(parent)

    with pytest.raises(InvalidTransition) as excinfo:
        await stack.service.create_subtask(parent.id, make_spec(None, task_name="late"))

    assert excinfo.value.actual == TaskState.RUNNING
    assert await stack.repository.list_children(parent.id) == []


@pytest.mark.asyncio
async def test_cancel_of_terminal_task_is_a_no_op(stack) -> None:
    task = await stack.service.create_task(make_spec(None))
    await stack.run(task.id, "done")

    assert await stack.service.cancel_task(task.id) == []
    assert (await stack.store.get(task.id)).state == TaskState.SUCCEEDED


@pytest.mark.asyncio
async def test_retry_task_reopens_failed_task(stack) -> None:
    ids = await stack.service.create_batch([make_spec(1), make_spec(2, deps=[1])])
    first = await stack.store.get(ids[1])
    await stack.dispatcher.dispatch(first)
    await stack.dispatcher.fail(first.id, "timeout talking to agent")

    reopened = await stack.service.retry_task(first.id)

    assert reopened.state == TaskState.READY
    assert reopened.failure is None
    assert (await stack.store.get(ids[2])).state == TaskState.PLANNED


@pytest.mark.asyncio
async def test_retry_task_rejects_live_tasks(stack) -> None:
    task = await stack.service.create_task(make_spec(None))

    with pytest.raises(InvalidTransition):
        await stack.service.retry_task(task.id)
