from src.orchestrator.domain.models.feedback import RetryFeedback
from src.orchestrator.domain.models.skill import Skill, SkillCategory
from src.orchestrator.domain.models.task import (
    CRITIQUES_TASKS_KEY,
    Task,
    TaskFailure,
)
from src.orchestrator.domain.models.task_spec import TaskSpec
from src.orchestrator.domain.models.task_state import TERMINAL_STATES, FailureKind, TaskState
from src.orchestrator.domain.models.validation_criteria import ValidationCriteria
from src.orchestrator.domain.models.verdict import Verdict, VerdictOutcome

__all__ = [
    "Task",
    "TaskFailure",
    "TaskSpec",
    "TaskState",
    "TERMINAL_STATES",
    "FailureKind",
    "RetryFeedback",
    "Skill",
    "SkillCategory",
    "ValidationCriteria",
    "Verdict",
    "VerdictOutcome",
    "CRITIQUES_TASKS_KEY",
]
