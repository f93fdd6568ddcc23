from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from src.orchestrator.domain.models.task_state import TaskState


class TaskNotFoundError(Exception):
    """Raised when a task identifier does not exist in the task store."""
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id '{task_id}' was not found.")
        self.task_id = task_id


class UnknownSkillError(Exception):
    """Raised when a skill identifier is not present in the skill registry."""

    def __init__(self, skill_id: str) -> None:
        super().__init__(f"Skill '{skill_id}' is not registered.")
        self.skill_id = skill_id


class ViolationKind(str, Enum):
    MISSING_REFERENCE = "missing_reference"
    CYCLE_DETECTED = "cycle_detected"
    SELF_DEPENDENCY = "self_dependency"
    INVALID_PARENT_NESTING = "invalid_parent_nesting"
    DUPLICATE_UNIQUE_ID = "duplicate_unique_id"
    UNKNOWN_SKILL = "unknown_skill"
    INVALID_SKILL_CATEGORY = "invalid_skill_category"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    message: str
    unique_ids: tuple[int, ...] = ()
    task_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "uniqueIds": list(self.unique_ids),
            "taskIds": list(self.task_ids),
        }


class BatchValidationError(Exception):
    """A task batch was rejected before anything was persisted."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations = list(violations)
        if not self.violations:
            raise ValueError("BatchValidationError requires at least one violation")
        super().__init__("; ".join(v.message for v in self.violations))

    @classmethod
    def single(
        cls,
        kind: ViolationKind,
        message: str,
        *,
        unique_ids: Iterable[int] = (),
        task_ids: Iterable[str] = (),
    ) -> BatchValidationError:
        return cls([Violation(kind, message, tuple(unique_ids), tuple(task_ids))])

    @property
    def kind(self) -> ViolationKind:
        return self.violations[0].kind

    @property
    def kinds(self) -> set[ViolationKind]:
        return {v.kind for v in self.violations}

    @property
    def unique_ids(self) -> set[int]:
        return {uid for v in self.violations for uid in v.unique_ids}

    def to_dict(self) -> dict[str, object]:
        return {
            "error": "validation_error",
            "kind": self.kind.value,
            "violations": [v.to_dict() for v in self.violations],
        }


class InvalidTransition(Exception):
    """Compare-and-swap on a task state lost: the task was not in the expected state."""

    def __init__(self, task_id: str, expected: TaskState, actual: TaskState) -> None:
        super().__init__(
            f"Task '{task_id}' is '{actual.value}', expected '{expected.value}'."
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual


class ConcurrentModificationError(Exception):
    """Tasks referenced by a batch disappeared between validation and commit."""

    def __init__(self, missing_ids: Iterable[str]) -> None:
        self.missing_ids = sorted(missing_ids)
        super().__init__(f"Referenced tasks vanished before commit: {self.missing_ids}")


class RetryErrorKind(str, Enum):
    TARGET_NOT_TERMINAL = "target_not_terminal"
    TARGET_MISSING = "target_missing"


class RetryError(Exception):
    """The correctness loop cannot re-open its targets."""

    def __init__(self, kind: RetryErrorKind, critique_id: str, task_ids: Iterable[str]) -> None:
        self.kind = kind
        self.critique_id = critique_id
        self.task_ids = list(task_ids)
        super().__init__(
            f"Critique '{critique_id}' cannot retry {self.task_ids}: {kind.value}"
        )
