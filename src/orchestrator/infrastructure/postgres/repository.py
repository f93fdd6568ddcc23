from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import selectinload

from src.orchestrator.domain.exceptions import (
    ConcurrentModificationError,
    InvalidTransition,
    TaskNotFoundError,
)
from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.models.task_state import TaskState
from src.orchestrator.domain.repositories import TaskRepository
from src.orchestrator.infrastructure.postgres.mappers import OrmMapper
from src.orchestrator.infrastructure.postgres.orm import (
    PostgresOrm,
    TaskDependencyRow,
    TaskRetryFeedbackRow,
    TaskRow,
)


def _task_select():
    return select(TaskRow).options(
        selectinload(TaskRow.dependency_links),
        selectinload(TaskRow.feedback_entries),
    )


class PostgresTaskRepository(TaskRepository):
    """Postgres-backed task storage using SQLAlchemy async sessions."""

    def __init__(self, orm: PostgresOrm) -> None:
        self._orm = orm

    async def insert_tasks(
        self, tasks: Sequence[Task], *, expected_existing: Collection[str] = ()
    ) -> None:
        """Persist a batch in one transaction after re-checking referenced tasks."""
        expected = set(expected_existing)
        parent_ids = {task.parent_id for task in tasks if task.parent_id is not None}

        async with self._orm.session_factory() as session:
            async with session.begin():
                if expected:
                    # Lock referenced rows so they cannot vanish before commit.
                    found = await session.execute(
                        select(TaskRow.id).where(TaskRow.id.in_(expected)).with_for_update()
                    )
                    missing = expected - set(found.scalars().all())
                    if missing:
                        raise ConcurrentModificationError(missing)

                session.add_all([OrmMapper.to_task_row(task) for task in tasks])
                if parent_ids:
                    await session.execute(
                        update(TaskRow)
                        .where(TaskRow.id.in_(parent_ids))
                        .values(has_subtasks=True)
                    )

    async def get_task(self, task_id: str) -> Task:
        async with self._orm.session_factory() as session:
            result = await session.execute(_task_select().where(TaskRow.id == task_id))
            row = result.scalar_one_or_none()
        if row is None:
            raise TaskNotFoundError(task_id)
        return OrmMapper.to_domain_task(row)

    async def get_tasks(self, task_ids: Collection[str]) -> dict[str, Task]:
        ids = set(task_ids)
        if not ids:
            return {}
        async with self._orm.session_factory() as session:
            result = await session.execute(_task_select().where(TaskRow.id.in_(ids)))
            rows = result.scalars().all()
        return {row.id: OrmMapper.to_domain_task(row) for row in rows}

    async def list_tasks(
        self,
        *,
        state: TaskState | None = None,
        parent_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Task]:
        statement = _task_select()
        if state is not None:
            statement = statement.where(TaskRow.state == state)
        if parent_id is not None:
            statement = statement.where(TaskRow.parent_id == parent_id)
        statement = statement.order_by(
            TaskRow.task_order, TaskRow.created_at, TaskRow.batch_position
        ).offset(offset)
        if limit is not None:
            statement = statement.limit(limit)

        async with self._orm.session_factory() as session:
            result = await session.execute(statement)
            rows = result.scalars().all()
        return [OrmMapper.to_domain_task(row) for row in rows]

    async def list_children(self, parent_id: str) -> list[Task]:
        return await self.list_tasks(parent_id=parent_id)

    async def list_dependents(self, task_id: str) -> list[Task]:
        statement = (
            _task_select()
            .join(TaskDependencyRow, TaskDependencyRow.task_id == TaskRow.id)
            .where(TaskDependencyRow.depends_on_id == task_id)
            .order_by(TaskRow.task_order, TaskRow.created_at, TaskRow.batch_position)
        )
        async with self._orm.session_factory() as session:
            result = await session.execute(statement)
            rows = result.scalars().all()
        return [OrmMapper.to_domain_task(row) for row in rows]

    async def compare_and_set(
        self,
        task_id: str,
        expected: TaskState,
        new_state: TaskState,
        changes: dict[str, Any] | None = None,
    ) -> Task:
        changes = changes or {}
        async with self._orm.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TaskRow)
                    .where(TaskRow.id == task_id, TaskRow.state == expected)
                    .values(state=new_state, **OrmMapper.to_column_values(changes))
                )
                if result.rowcount != 1:
                    actual = await session.scalar(select(TaskRow.state).where(TaskRow.id == task_id))
                    if actual is None:
                        raise TaskNotFoundError(task_id)
                    raise InvalidTransition(task_id, expected, actual)

                if "feedback_history" in changes:
                    await session.execute(
                        delete(TaskRetryFeedbackRow).where(TaskRetryFeedbackRow.task_id == task_id)
                    )
                    session.add_all(
                        OrmMapper.to_feedback_rows(task_id, changes["feedback_history"])
                    )
                    await session.flush()

                row = (
                    await session.execute(
                        _task_select()
                        .where(TaskRow.id == task_id)
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()
                return OrmMapper.to_domain_task(row)
