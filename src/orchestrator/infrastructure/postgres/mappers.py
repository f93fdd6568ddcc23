from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from src.orchestrator.domain.models.feedback import RetryFeedback
from src.orchestrator.domain.models.task import Task, TaskFailure
from src.orchestrator.domain.models.validation_criteria import ValidationCriteria
from src.orchestrator.infrastructure.postgres.orm import (
    TaskDependencyRow,
    TaskRetryFeedbackRow,
    TaskRow,
)

# Task fields stored outside the ``tasks`` row.
RELATION_FIELDS = frozenset({"dependencies", "feedback_history"})
_COLUMN_NAMES = {"order": "task_order"}


class OrmMapper:
    @staticmethod
    def to_task_row(task: Task) -> TaskRow:
        if task.id is None:
            raise ValueError("Task id is required to persist TaskRow.")
        row = TaskRow(
            id=task.id,
            skill_id=task.skill_id,
            name=task.name,
            description=task.description,
            task_order=task.order,
            inputs=_jsonable(task.inputs),
            validation_criteria=task.validation_criteria.model_dump(mode="json"),
            parent_id=task.parent_id,
            has_subtasks=task.has_subtasks,
            subtasks_completed=task.subtasks_completed,
            state=task.state,
            failure=_jsonable(task.failure),
            retry_feedback=_jsonable(task.retry_feedback),
            retry_count=task.retry_count,
            timeout_seconds=task.timeout_seconds,
            result=_jsonable(task.result),
            batch_position=task.batch_position,
            created_at=task.created_at,
            started_at=task.started_at,
            finished_at=task.finished_at,
            updated_at=task.updated_at,
        )
        row.dependency_links = OrmMapper.to_dependency_rows(task.id, task.dependencies)
        row.feedback_entries = OrmMapper.to_feedback_rows(task.id, task.feedback_history)
        return row

    @staticmethod
    def to_dependency_rows(task_id: str, dependencies: list[str]) -> list[TaskDependencyRow]:
        return [
            TaskDependencyRow(task_id=task_id, depends_on_id=dep, position=position)
            for position, dep in enumerate(dependencies)
        ]

    @staticmethod
    def to_feedback_rows(task_id: str, history: list[RetryFeedback]) -> list[TaskRetryFeedbackRow]:
        return [
            TaskRetryFeedbackRow(
                task_id=task_id,
                attempt=entry.attempt,
                summary=entry.summary,
                issues=_jsonable(entry.issues),
                suggestion=entry.suggestion,
                critique_task_id=entry.critique_task_id,
                created_at=entry.created_at,
            )
            for entry in history
        ]

    @staticmethod
    def to_column_values(changes: dict[str, Any]) -> dict[str, Any]:
        """Translate domain field updates into ``tasks`` column values."""
        return {
            _COLUMN_NAMES.get(field, field): _jsonable(value)
            for field, value in changes.items()
            if field not in RELATION_FIELDS
        }

    @staticmethod
    def to_domain_task(row: TaskRow) -> Task:
        return Task(
            id=row.id,
            skill_id=row.skill_id,
            name=row.name,
            description=row.description,
            order=row.task_order,
            inputs=row.inputs or {},
            validation_criteria=ValidationCriteria.model_validate(row.validation_criteria or {}),
            dependencies=[link.depends_on_id for link in row.dependency_links],
            parent_id=row.parent_id,
            has_subtasks=row.has_subtasks,
            subtasks_completed=row.subtasks_completed,
            state=row.state,
            failure=TaskFailure.model_validate(row.failure) if row.failure else None,
            retry_feedback=(
                RetryFeedback.model_validate(row.retry_feedback) if row.retry_feedback else None
            ),
            feedback_history=[OrmMapper.to_domain_feedback(entry) for entry in row.feedback_entries],
            retry_count=row.retry_count,
            timeout_seconds=row.timeout_seconds,
            result=row.result,
            batch_position=row.batch_position,
            created_at=_aware(row.created_at),
            started_at=_aware(row.started_at),
            finished_at=_aware(row.finished_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def to_domain_feedback(row: TaskRetryFeedbackRow) -> RetryFeedback:
        return RetryFeedback(
            summary=row.summary,
            issues=row.issues or [],
            suggestion=row.suggestion,
            critique_task_id=row.critique_task_id,
            attempt=row.attempt,
            created_at=_aware(row.created_at),
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
