from __future__ import annotations

import asyncio
import logging
import os
import socket

from redis.exceptions import ConnectionError as RedisConnectionError

from src.orchestrator.infrastructure.streams.client import StreamsClient
from src.orchestrator.infrastructure.streams.router import EventRouter
from src.orchestrator.infrastructure.streams.serializers import decode_event

logger = logging.getLogger(__name__)

STREAM_TASK_EVENTS = "orchestrator:task-events"
GROUP_API = "orchestrator-api"


def consumer_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class StreamsConsumer:
    """Reads completion events from a consumer group and routes them."""

    def __init__(
        self,
        client: StreamsClient,
        *,
        stream: str,
        group: str,
        consumer_name: str,
        router: EventRouter,
        block_ms: int = 5000,
        count: int = 10,
        reclaim_pending: bool = False,
        reclaim_idle_ms: int = 60000,
    ) -> None:
        self._client = client
        self._stream = stream
        self._group = group
        self._consumer = consumer_name
        self._router = router
        self._block_ms = block_ms
        self._count = count
        self._reclaim_pending = reclaim_pending
        self._reclaim_idle_ms = reclaim_idle_ms
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        await self._client.ensure_consumer_group(stream=self._stream, group=self._group)
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="task-event-consumer")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._client.close()

    async def _run(self) -> None:
        if self._reclaim_pending:
            await self._reclaim()
        while not self._stopping.is_set():
            try:
                response = await self._client.redis.xreadgroup(
                    groupname=self._group,
                    consumername=self._consumer,
                    streams={self._stream: ">"},
                    count=self._count,
                    block=self._block_ms,
                )
            except RedisConnectionError:
                logger.warning("Redis unavailable, retrying", extra={"stream": self._stream})
                await asyncio.sleep(1.0)
                continue
            for _stream, messages in response or []:
                for message_id, fields in messages:
                    await self.handle_message(message_id, fields)

    async def _reclaim(self) -> None:
        _next, messages, *_ = await self._client.redis.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._reclaim_idle_ms,
            count=self._count,
        )
        for message_id, fields in messages:
            await self.handle_message(message_id, fields)

    async def handle_message(self, message_id: str, fields: dict) -> None:
        """Route one message; it is acknowledged once handled or found malformed."""
        try:
            event = decode_event(fields)
        except ValueError:
            logger.exception("Dropping malformed task event", extra={"message_id": message_id})
            await self._client.redis.xack(self._stream, self._group, message_id)
            return
        try:
            await self._router.dispatch(event)
        except Exception:
            # Left pending so another consumer can reclaim it.
            logger.exception(
                "Task event handler failed",
                extra={"message_id": message_id, "task_id": event.task_id},
            )
            return
        await self._client.redis.xack(self._stream, self._group, message_id)
