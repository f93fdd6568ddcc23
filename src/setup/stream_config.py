from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from src.orchestrator.application.handlers import TaskEventHandler
from src.orchestrator.domain.events.task_event import EventType
from src.orchestrator.infrastructure.streams.client import StreamsClient, SyncStreamsClient
from src.orchestrator.infrastructure.streams.consumer import (
    GROUP_API,
    STREAM_TASK_EVENTS,
    StreamsConsumer,
    consumer_name,
)
from src.orchestrator.infrastructure.streams.publisher import StreamsSyncPublisher
from src.orchestrator.infrastructure.streams.router import EventRouter

_stream_consumer: StreamsConsumer | None = None
_stream_publisher: StreamsSyncPublisher | None = None


class StreamSettings(BaseSettings):
    """Configuration for Redis Streams consumer/publisher wiring."""
    REDIS_URL: str = "redis://redis:6379/0"
    STREAM_NAME: str = STREAM_TASK_EVENTS
    GROUP_NAME: str = GROUP_API
    CONSUMER_NAME: str | None = None
    BLOCK_MS: int = 5000
    COUNT: int = 10
    RECLAIM_PENDING: bool = True
    RECLAIM_IDLE_MS: int = 60000
    MAXLEN: int | None = 10000

    model_config = ConfigDict(env_file=".env", extra="ignore")


def build_event_router(handler: TaskEventHandler | None = None) -> EventRouter:
    """Build an event router wired to the task event handler."""
    router = EventRouter()
    handler = handler or TaskEventHandler()
    router.register(EventType.TASK_COMPLETED, handler.handle_completed_event)
    router.register(EventType.TASK_FAILED, handler.handle_failed_event)
    return router


def build_stream_consumer(settings: StreamSettings | None = None) -> StreamsConsumer:
    """Create a streams consumer bound to the task event router."""
    if settings is None:
        settings = StreamSettings()
    # Consumer name is generated when not provided so multiple API instances can join the group.
    return StreamsConsumer(
        StreamsClient(settings.REDIS_URL),
        stream=settings.STREAM_NAME,
        group=settings.GROUP_NAME,
        consumer_name=settings.CONSUMER_NAME or consumer_name(),
        router=build_event_router(),
        block_ms=settings.BLOCK_MS,
        count=settings.COUNT,
        reclaim_pending=settings.RECLAIM_PENDING,
        reclaim_idle_ms=settings.RECLAIM_IDLE_MS,
    )


def configure_stream_publisher(settings: StreamSettings | None = None) -> StreamsSyncPublisher:
    """Return the worker-process singleton publisher."""
    global _stream_publisher
    if _stream_publisher is None:
        if settings is None:
            settings = StreamSettings()
        _stream_publisher = StreamsSyncPublisher(
            SyncStreamsClient(settings.REDIS_URL), settings.STREAM_NAME, maxlen=settings.MAXLEN
        )
    return _stream_publisher


def configure_stream_consumer() -> StreamsConsumer:
    """Return the singleton streams consumer used by the API process."""
    global _stream_consumer
    if _stream_consumer is None:
        _stream_consumer = build_stream_consumer()
    return _stream_consumer
