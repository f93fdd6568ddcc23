from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"


class TaskEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid4().hex)
    type: EventType
    task_id: str
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def completed(cls, task_id: str, result: Any) -> TaskEvent:
        return cls(type=EventType.TASK_COMPLETED, task_id=task_id, payload={"result": result})

    @classmethod
    def failed(cls, task_id: str, reason: str) -> TaskEvent:
        return cls(type=EventType.TASK_FAILED, task_id=task_id, payload={"reason": reason})
