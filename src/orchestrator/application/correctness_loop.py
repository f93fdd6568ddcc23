from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from src.orchestrator.application.task_store import TaskStore
from src.orchestrator.domain.exceptions import InvalidTransition, RetryError, RetryErrorKind
from src.orchestrator.domain.models.feedback import RetryFeedback
from src.orchestrator.domain.models.task import Task, TaskFailure
from src.orchestrator.domain.models.task_state import FailureKind, TaskState
from src.orchestrator.domain.models.verdict import Verdict

logger = logging.getLogger(__name__)

_RETRYABLE = {TaskState.SUCCEEDED, TaskState.FAILED}
_CAS_ATTEMPTS = 3


class LoopAction(str, Enum):
    RELEASED = "released"
    RETRIED = "retried"
    LIMIT_EXCEEDED = "retry_limit_exceeded"


@dataclass
class LoopOutcome:
    action: LoopAction
    critique: Task
    verdict: Verdict | None = None
    targets: list[Task] = field(default_factory=list)
    feedback: list[RetryFeedback] = field(default_factory=list)

    @property
    def releases_dependents(self) -> bool:
        return self.action == LoopAction.RELEASED


class CorrectnessLoopController:
    """
    Interprets a succeeded critique task and enacts the retry protocol.

    A ``fail`` verdict re-opens the critiqued tasks with feedback and parks the
    critique in ``planned`` until they succeed again. After ``max_retries``
    rounds the critique and its targets fail with ``retry_limit_exceeded``.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        max_retries: int = 3,
        feedback_history_limit: int = 5,
    ) -> None:
        self._store = store
        self._max_retries = max_retries
        self._history_limit = feedback_history_limit

    async def on_critique_succeeded(self, critique: Task) -> LoopOutcome:
        verdict = Verdict.from_result(critique.result)
        if verdict is None:
            logger.warning(
                "Critique finished without a verdict; releasing dependents",
                extra={"task_id": critique.id},
            )
            return LoopOutcome(LoopAction.RELEASED, critique)
        if verdict.passed:
            return LoopOutcome(LoopAction.RELEASED, critique, verdict)

        target_ids = critique.critiques_tasks
        if not target_ids:
            logger.warning(
                "Critique failed but names no tasks to retry",
                extra={"task_id": critique.id},
            )
            return LoopOutcome(LoopAction.RELEASED, critique, verdict)

        targets = await self._load_targets(critique, target_ids)
        attempt = max([critique.retry_count, *(t.retry_count for t in targets)]) + 1
        feedback = RetryFeedback(
            summary=verdict.summary,
            issues=list(verdict.issues),
            suggestion=verdict.feedback_for_rebuild,
            critique_task_id=critique.id,
            attempt=attempt,
            created_at=datetime.now(UTC),
        )

        if attempt > self._max_retries:
            return await self._give_up(critique, targets, verdict, feedback)

        retried = [await self._retry_target(critique, target, feedback, attempt) for target in targets]
        parked = await self._store.transition(
            critique.id,
            TaskState.SUCCEEDED,
            TaskState.PLANNED,
            retry_count=attempt,
            feedback_history=[*critique.feedback_history, feedback],
            result=None,
            started_at=None,
            finished_at=None,
        )
        logger.info(
            "Critique requested rebuild",
            extra={
                "task_id": critique.id,
                "targets": target_ids,
                "attempt": attempt,
                "max_retries": self._max_retries,
            },
        )
        return LoopOutcome(LoopAction.RETRIED, parked, verdict, retried, [feedback])

    async def _load_targets(self, critique: Task, target_ids: list[str]) -> list[Task]:
        found = await self._store.repository.get_tasks(target_ids)
        missing = [tid for tid in target_ids if tid not in found]
        if missing:
            logger.error(
                "Critique targets missing",
                extra={"task_id": critique.id, "missing": missing},
            )
            raise RetryError(RetryErrorKind.TARGET_MISSING, critique.id, missing)
        not_terminal = [tid for tid in target_ids if found[tid].state not in _RETRYABLE]
        if not_terminal:
            logger.error(
                "Critique targets are not terminal; aborting retry",
                extra={
                    "task_id": critique.id,
                    "targets": {tid: found[tid].state.value for tid in not_terminal},
                },
            )
            raise RetryError(RetryErrorKind.TARGET_NOT_TERMINAL, critique.id, not_terminal)
        return [found[tid] for tid in target_ids]

    async def _retry_target(
        self, critique: Task, target: Task, feedback: RetryFeedback, attempt: int
    ) -> Task:
        for _ in range(_CAS_ATTEMPTS):
            try:
                return await self._store.reset_for_retry(target, feedback, attempt)
            except InvalidTransition:
                target = await self._store.get(target.id)
                if target.state not in _RETRYABLE:
                    break
        raise RetryError(RetryErrorKind.TARGET_NOT_TERMINAL, critique.id, [target.id])

    async def _give_up(
        self,
        critique: Task,
        targets: list[Task],
        verdict: Verdict,
        feedback: RetryFeedback,
    ) -> LoopOutcome:
        history = [*critique.feedback_history, feedback][-self._history_limit:]
        failure = TaskFailure(
            kind=FailureKind.RETRY_LIMIT_EXCEEDED,
            reason=f"Critique failed {feedback.attempt} times (max {self._max_retries})",
            feedback=history,
        )
        now = datetime.now(UTC)
        failed_targets: list[Task] = []
        for target in targets:
            target_history = [*target.feedback_history, feedback]
            target_failure = failure.model_copy(
                update={"feedback": target_history[-self._history_limit:]}
            )
            failed_targets.append(
                await self._store.transition(
                    target.id,
                    target.state,
                    TaskState.FAILED,
                    failure=target_failure,
                    feedback_history=target_history,
                    finished_at=now,
                )
            )
        failed_critique = await self._store.transition(
            critique.id,
            TaskState.SUCCEEDED,
            TaskState.FAILED,
            failure=failure,
            feedback_history=[*critique.feedback_history, feedback],
            finished_at=now,
        )
        logger.error(
            "Retry limit exceeded",
            extra={
                "task_id": critique.id,
                "targets": [t.id for t in targets],
                "attempt": feedback.attempt,
                "feedback": [entry.summary for entry in history],
            },
        )
        return LoopOutcome(
            LoopAction.LIMIT_EXCEEDED, failed_critique, verdict, failed_targets, history
        )
