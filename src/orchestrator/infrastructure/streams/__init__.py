from src.orchestrator.infrastructure.streams.client import StreamsClient, SyncStreamsClient
from src.orchestrator.infrastructure.streams.consumer import StreamsConsumer
from src.orchestrator.infrastructure.streams.publisher import StreamsSyncPublisher
from src.orchestrator.infrastructure.streams.router import EventRouter

__all__ = [
    "StreamsClient",
    "SyncStreamsClient",
    "StreamsSyncPublisher",
    "StreamsConsumer",
    "EventRouter",
]
