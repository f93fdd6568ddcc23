from enum import Enum


class TaskState(str, Enum):
    PLANNED = "planned"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED})


class FailureKind(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    TIMEOUT = "timeout"
    RETRY_LIMIT_EXCEEDED = "retry_limit_exceeded"
    SUBTASK_FAILED = "subtask_failed"
