import pytest

from src.orchestrator.domain.exceptions import BatchValidationError, ViolationKind
from src.orchestrator.domain.models import CRITIQUES_TASKS_KEY, TaskState

from tests.support import make_spec


@pytest.mark.asyncio
async def test_linear_chain_starts_with_only_the_root_ready(stack) -> None:
    ids = await stack.service.create_batch(
        [make_spec(1), make_spec(2, deps=[1]), make_spec(3, deps=[2])]
    )

    first, second, third = [await stack.store.get(ids[uid]) for uid in (1, 2, 3)]
    assert first.state == TaskState.READY
    assert second.state == TaskState.PLANNED
    assert third.state == TaskState.PLANNED
    assert second.dependencies == [ids[1]]
    assert third.dependencies == [ids[2]]


@pytest.mark.asyncio
async def test_two_task_cycle_is_rejected_naming_both(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch([make_spec(1, deps=[2]), make_spec(2, deps=[1])])

    assert excinfo.value.kind == ViolationKind.CYCLE_DETECTED
    assert excinfo.value.unique_ids == {1, 2}
    assert await stack.repository.list_tasks() == []


@pytest.mark.asyncio
async def test_self_dependency_reports_cycle(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch([make_spec(1, deps=[1])])

    assert excinfo.value.kind == ViolationKind.CYCLE_DETECTED
    assert excinfo.value.kinds == {ViolationKind.SELF_DEPENDENCY, ViolationKind.CYCLE_DETECTED}
    assert excinfo.value.unique_ids == {1}


@pytest.mark.parametrize("targets", [1, "abc", {"uniqueId": 1}])
@pytest.mark.asyncio
async def test_critique_targets_must_be_a_list(stack, targets) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch(
            [
                make_spec(1),
                make_spec(2, skill_id="critique", inputs={CRITIQUES_TASKS_KEY: targets}),
            ]
        )

    assert excinfo.value.kind == ViolationKind.MISSING_REFERENCE
    assert excinfo.value.unique_ids == {2}
    assert await stack.repository.list_tasks() == []


@pytest.mark.asyncio
async def test_missing_reference_names_the_unknown_unique_id(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch([make_spec(1), make_spec(2, deps=[7])])

    assert excinfo.value.kind == ViolationKind.MISSING_REFERENCE
    assert excinfo.value.unique_ids == {2, 7}


@pytest.mark.asyncio
async def test_rejected_batch_leaves_no_residue(stack) -> None:
    with pytest.raises(BatchValidationError):
        await stack.service.create_batch([make_spec(1), make_spec(2, deps=[3])])

    ids = await stack.service.create_batch([make_spec(1), make_spec(2, deps=[1])])

    stored = await stack.repository.list_tasks()
    assert {task.id for task in stored} == set(ids.values())


@pytest.mark.asyncio
async def test_every_violation_is_collected(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch(
            [
                make_spec(1, skill_id="planner"),
                make_spec(2, skill_id="does-not-exist"),
                make_spec(2),
            ]
        )

    assert excinfo.value.kinds == {
        ViolationKind.INVALID_SKILL_CATEGORY,
        ViolationKind.UNKNOWN_SKILL,
        ViolationKind.DUPLICATE_UNIQUE_ID,
    }
    assert excinfo.value.to_dict()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_external_dependency_must_exist(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch([make_spec(1, dependencies=["nope"])])

    assert excinfo.value.kind == ViolationKind.MISSING_REFERENCE
    assert excinfo.value.violations[0].task_ids == ("nope",)


@pytest.mark.asyncio
async def test_dependency_on_succeeded_task_starts_ready(stack) -> None:
    existing = await stack.service.create_task(make_spec(None, task_name="schema"))
    await stack.run(existing.id, {"ok": True})

    created = await stack.service.create_task(
        make_spec(None, task_name="api", dependencies=[existing.id])
    )

    assert created.state == TaskState.READY


@pytest.mark.asyncio
async def test_critique_targets_become_dependencies(stack) -> None:
    ids = await stack.service.create_batch(
        [
            make_spec(1),
            make_spec(2, skill_id="critique", inputs={CRITIQUES_TASKS_KEY: [1]}),
        ]
    )

    critique = await stack.store.get(ids[2])
    assert critique.dependencies == [ids[1]]
    assert critique.critiques_tasks == [ids[1]]
    assert critique.state == TaskState.PLANNED


@pytest.mark.asyncio
async def test_only_critique_skills_may_declare_targets(stack) -> None:
    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_batch(
            [make_spec(1), make_spec(2, inputs={CRITIQUES_TASKS_KEY: [1]})]
        )

    assert excinfo.value.kind == ViolationKind.INVALID_SKILL_CATEGORY


@pytest.mark.asyncio
async def test_critique_cannot_target_a_subtask(stack) -> None:
    parent = await stack.service.create_task(make_spec(None, task_name="feature"))
    child = await stack.service.create_subtask(parent.id, make_spec(None, task_name="part"))

    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_task(
            make_spec(None, skill_id="qa", inputs={CRITIQUES_TASKS_KEY: [child.id]})
        )

    assert excinfo.value.kind == ViolationKind.INVALID_PARENT_NESTING


@pytest.mark.asyncio
async def test_subtasks_cannot_nest(stack) -> None:
    parent = await stack.service.create_task(make_spec(None, task_name="feature"))
    child = await stack.service.create_subtask(parent.id, make_spec(None, task_name="part"))

    with pytest.raises(BatchValidationError) as excinfo:
        await stack.service.create_subtask(child.id, make_spec(None, task_name="too deep"))

    assert excinfo.value.kind == ViolationKind.INVALID_PARENT_NESTING


@pytest.mark.asyncio
async def test_batch_positions_follow_unique_id_order(stack) -> None:
    ids = await stack.service.create_batch([make_spec(3), make_spec(1), make_spec(2)])

    positions = {uid: (await stack.store.get(tid)).batch_position for uid, tid in ids.items()}
    assert positions == {1: 0, 2: 1, 3: 2}
