import pytest

from src.orchestrator.domain.events.task_event import EventType, TaskEvent
from src.orchestrator.infrastructure.streams.consumer import StreamsConsumer
from src.orchestrator.infrastructure.streams.publisher import StreamsSyncPublisher
from src.orchestrator.infrastructure.streams.router import EventRouter
from src.orchestrator.infrastructure.streams.serializers import decode_event, encode_event


class FakeAsyncRedis:
    def __init__(self) -> None:
        self.acked: list[str] = []

    async def xack(self, stream: str, group: str, message_id: str) -> int:
        self.acked.append(message_id)
        return 1


class FakeSyncRedis:
    def __init__(self) -> None:
        self.entries: list[tuple[str, dict, int | None]] = []

    def xadd(self, stream: str, fields: dict, maxlen: int | None = None, approximate: bool = True) -> str:
        self.entries.append((stream, fields, maxlen))
        return f"{len(self.entries)}-0"


class FakeClient:
    def __init__(self, redis) -> None:
        self.redis = redis


def _consumer(router: EventRouter) -> tuple[StreamsConsumer, FakeAsyncRedis]:
    redis = FakeAsyncRedis()
    consumer = StreamsConsumer(
        FakeClient(redis),
        stream="events",
        group="api",
        consumer_name="api-1",
        router=router,
    )
    return consumer, redis


def test_decode_rejects_unknown_event_type() -> None:
    fields = encode_event(TaskEvent.completed("task-1", {"ok": True}))
    fields["type"] = "task.exploded"

    with pytest.raises(ValueError):
        decode_event(fields)


def test_publisher_writes_encoded_event() -> None:
    redis = FakeSyncRedis()
    publisher = StreamsSyncPublisher(FakeClient(redis), "events", maxlen=100)

    message_id = publisher.publish(TaskEvent.failed("task-1", "agent crashed"))

    assert message_id == "1-0"
    stream, fields, maxlen = redis.entries[0]
    assert (stream, maxlen) == ("events", 100)
    decoded = decode_event(fields)
    assert decoded.type == EventType.TASK_FAILED
    assert decoded.payload == {"reason": "agent crashed"}


@pytest.mark.asyncio
async def test_handled_message_is_acknowledged() -> None:
    seen: list[TaskEvent] = []

    async def handler(event: TaskEvent) -> None:
        seen.append(event)

    router = EventRouter()
    router.register(EventType.TASK_COMPLETED, handler)
    consumer, redis = _consumer(router)

    await consumer.handle_message("1-0", encode_event(TaskEvent.completed("task-1", "done")))

    assert [event.task_id for event in seen] == ["task-1"]
    assert redis.acked == ["1-0"]


@pytest.mark.asyncio
async def test_malformed_message_is_acknowledged_and_dropped() -> None:
    consumer, redis = _consumer(EventRouter())

    await consumer.handle_message("2-0", {"type": "task.completed", "payload": "{not json"})

    assert redis.acked == ["2-0"]


@pytest.mark.asyncio
async def test_failing_handler_leaves_message_pending() -> None:
    async def handler(event: TaskEvent) -> None:
        raise RuntimeError("database unavailable")

    router = EventRouter()
    router.register(EventType.TASK_FAILED, handler)
    consumer, redis = _consumer(router)

    await consumer.handle_message("3-0", encode_event(TaskEvent.failed("task-1", "boom")))

    assert redis.acked == []
