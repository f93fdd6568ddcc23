from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.orchestrator.domain.models.feedback import RetryFeedback
from src.orchestrator.domain.models.task_state import FailureKind, TaskState
from src.orchestrator.domain.models.validation_criteria import ValidationCriteria

CRITIQUES_TASKS_KEY = "critiquesTasks"


class TaskFailure(BaseModel):
    kind: FailureKind = Field(description="Why the task failed.")
    reason: str | None = Field(default=None, description="Human readable failure reason.")
    feedback: list[RetryFeedback] = Field(
        default_factory=list,
        description="Accumulated critique feedback, filled when the retry limit is hit.",
    )


class Task(BaseModel):
    id: str | None = Field(default=None, description="Unique task identifier.")
    skill_id: str = Field(description="Skill the task is executed with.")
    name: str = Field(description="Task name.")
    description: str = Field(default="", description="Task description.")
    order: int = Field(default=0, description="Advisory sequencing hint.")
    inputs: dict[str, Any] = Field(
        default_factory=dict, description="Opaque inputs forwarded to the agent."
    )
    validation_criteria: ValidationCriteria = Field(
        default_factory=ValidationCriteria,
        description="Advisory criteria forwarded to the agent.",
    )
    dependencies: list[str] = Field(
        default_factory=list, description="Tasks that must succeed before this one runs."
    )
    parent_id: str | None = Field(default=None, description="Parent task for sub-tasks.")
    has_subtasks: bool = Field(default=False, description="Whether sub-tasks were attached.")
    subtasks_completed: bool = Field(
        default=False, description="Set once every sub-task has succeeded."
    )
    state: TaskState = Field(default=TaskState.PLANNED, description="Lifecycle state.")
    failure: TaskFailure | None = Field(default=None, description="Failure details.")
    retry_feedback: RetryFeedback | None = Field(
        default=None, description="Latest feedback injected by the correctness loop."
    )
    feedback_history: list[RetryFeedback] = Field(
        default_factory=list, description="Every feedback entry received, oldest first."
    )
    retry_count: int = Field(default=0, description="Correctness-loop retries so far.")
    timeout_seconds: int = Field(default=1800, gt=0, description="Running time limit.")
    result: Any | None = Field(default=None, description="Completion payload.")
    batch_position: int = Field(default=0, description="Position inside the creation batch.")
    created_at: datetime | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    finished_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    @property
    def critiques_tasks(self) -> list[str]:
        targets = self.inputs.get(CRITIQUES_TASKS_KEY)
        if not isinstance(targets, list):
            return []
        return [str(target) for target in targets]

    @property
    def is_dispatchable(self) -> bool:
        """Parents are executed through their sub-tasks, never directly."""
        return self.state == TaskState.READY and not self.has_subtasks

    def dispatch_key(self) -> tuple:
        return (self.order, self.created_at or datetime.min.replace(tzinfo=UTC), self.batch_position)
