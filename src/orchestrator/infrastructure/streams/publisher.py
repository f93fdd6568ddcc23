from __future__ import annotations

from src.orchestrator.domain.events.task_event import TaskEvent
from src.orchestrator.infrastructure.streams.client import SyncStreamsClient
from src.orchestrator.infrastructure.streams.serializers import encode_event


class StreamsSyncPublisher:
    """Worker-side publisher of task completion events."""

    def __init__(self, client: SyncStreamsClient, stream: str, *, maxlen: int | None = 10000) -> None:
        self._client = client
        self._stream = stream
        self._maxlen = maxlen

    def publish(self, event: TaskEvent) -> str:
        return self._client.redis.xadd(
            self._stream,
            encode_event(event),
            maxlen=self._maxlen,
            approximate=True,
        )
