from __future__ import annotations

import logging
from typing import Any

from src.orchestrator.domain.events.task_event import TaskEvent
from src.orchestrator.infrastructure.streams.publisher import StreamsSyncPublisher
from src.setup.stream_config import configure_stream_publisher

logger = logging.getLogger(__name__)


class TaskReporter:
    """Report skill outcomes back to the API through the task event stream."""

    def __init__(self, publisher: StreamsSyncPublisher | None = None) -> None:
        self._publisher = publisher or configure_stream_publisher()

    def report_completed(self, task_id: str, result: Any) -> dict:
        message_id = self._publisher.publish(TaskEvent.completed(task_id, result))
        logger.info("Reported completion", extra={"task_id": task_id, "message_id": message_id})
        return {"task_id": task_id, "state": "succeeded", "result": result}

    def report_failed(self, task_id: str, reason: str) -> dict:
        message_id = self._publisher.publish(TaskEvent.failed(task_id, reason))
        logger.warning(
            "Reported failure",
            extra={"task_id": task_id, "reason": reason, "message_id": message_id},
        )
        return {"task_id": task_id, "state": "failed", "reason": reason}
