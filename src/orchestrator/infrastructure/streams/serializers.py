from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from src.orchestrator.domain.events.task_event import EventType, TaskEvent


def encode_event(event: TaskEvent) -> dict[str, str]:
    return {
        "event_id": event.event_id,
        "type": event.type.value,
        "task_id": event.task_id,
        "ts": event.ts.isoformat(),
        "payload": json.dumps(event.payload, default=str),
    }


def decode_event(fields: dict[str, Any]) -> TaskEvent:
    try:
        payload = json.loads(str(fields.get("payload", "{}")))
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid payload JSON") from exc

    try:
        return TaskEvent(
            event_id=str(fields.get("event_id", "")),
            type=EventType(str(fields.get("type", ""))),
            task_id=str(fields.get("task_id", "")),
            ts=datetime.fromisoformat(str(fields.get("ts", ""))),
            payload=payload,
        )
    except (ValidationError, ValueError) as exc:
        raise ValueError(f"Invalid event schema: {exc}") from exc
