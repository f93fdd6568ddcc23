import logging

import inject

from src.orchestrator.application.dispatcher import ExecutionDispatcher
from src.orchestrator.domain.events.task_event import TaskEvent
from src.orchestrator.domain.exceptions import InvalidTransition
from src.orchestrator.domain.models.task_state import FailureKind

logger = logging.getLogger(__name__)


class TaskEventHandler:
    """Applies worker completion events to the dispatcher."""

    def __init__(self, dispatcher: ExecutionDispatcher | None = None) -> None:
        self._dispatcher = dispatcher or inject.instance(ExecutionDispatcher)

    async def handle_completed_event(self, event: TaskEvent) -> None:
        if "result" not in event.payload:
            raise ValueError("Completion payload is missing the result")
        try:
            outcome = await self._dispatcher.complete(event.task_id, event.payload["result"])
        except InvalidTransition as exc:
            # Late completion for a task that timed out, was cancelled or was re-planned.
            logger.warning(
                "Ignoring completion for task not running",
                extra={"task_id": event.task_id, "state": exc.actual.value},
            )
            return
        logger.info(
            "Completion applied",
            extra={
                "task_id": event.task_id,
                "loop": outcome.loop.action.value if outcome.loop else None,
                "released": [t.id for t in outcome.released],
            },
        )

    async def handle_failed_event(self, event: TaskEvent) -> None:
        reason = str(event.payload.get("reason") or "worker failure")
        try:
            await self._dispatcher.fail(event.task_id, reason, FailureKind.INFRASTRUCTURE)
        except InvalidTransition as exc:
            logger.warning(
                "Ignoring failure for task not running",
                extra={"task_id": event.task_id, "state": exc.actual.value},
            )
